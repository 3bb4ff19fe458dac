"""Error taxonomy for the video access core.

Domain denials (expired enrollment, rate limit, session cap) are normally
returned as ``Decision`` values, not raised.  These exceptions cover the
cases that are genuinely exceptional or that a caller must branch on:

  ValidationError               caller fault (bad ttl, malformed id); no retry
  NotFoundError                 session/module absent; terminal
  EntitlementDeniedError        denial surfaced at the transport seam
  ConcurrencySessionLimitError  session cap reached; end the other session first
  InfrastructureError           store/backend unavailable; retry with backoff

``status_code`` is the HTTP mapping used by the single exception handler
in video_access.main, so the transport layer stays a thin lookup.
"""

from __future__ import annotations


class VideoAccessError(Exception):
    status_code = 500
    retryable = False

    def __init__(self, message: str = "", *, reason: str | None = None) -> None:
        super().__init__(message or self.__class__.__name__)
        self.reason = reason


class ValidationError(VideoAccessError, ValueError):
    status_code = 422


class NotFoundError(VideoAccessError):
    status_code = 404


class EntitlementDeniedError(VideoAccessError):
    status_code = 403


class ConcurrencySessionLimitError(EntitlementDeniedError):
    status_code = 409

    def __init__(self, message: str = "", *, reason: str | None = None) -> None:
        super().__init__(
            message or "concurrent session limit reached",
            reason=reason or "session_limit",
        )


class InfrastructureError(VideoAccessError):
    status_code = 503
    retryable = True
