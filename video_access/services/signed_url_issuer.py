"""Capability URLs for video bytes.

A capability URL carries its own time-limited authorization: whoever
holds it can fetch one object until it expires, with no auth header.
The expiry is the real security boundary.  The inline-disposition and
no-cache response overrides only discourage saving the file.

Issuers know nothing about entitlement.  They must only be called after
an access Grant; VideoAccessService is the one caller.

Two backends:
  S3SignedUrlIssuer:   SigV4 presigned GET against the video bucket.
  HmacSignedUrlIssuer: self-signed URLs for local dev and tests, served
                       by whatever sits at LOCAL_MEDIA_BASE_URL.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
from datetime import UTC, datetime, timedelta
from typing import Protocol, runtime_checkable
from urllib.parse import parse_qs, quote, unquote, urlencode, urlsplit

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from video_access.core.clock import Clock, utcnow
from video_access.core.config import Settings
from video_access.core.errors import InfrastructureError, ValidationError
from video_access.core.metrics import SIGNED_URLS_ISSUED
from video_access.models.capability import IssuedCapability

logger = logging.getLogger(__name__)

MIN_TTL_MINUTES = 1
MAX_TTL_MINUTES = 120

INLINE_DISPOSITION = "inline"
NO_CACHE = "no-cache, no-store, must-revalidate"
VIDEO_CONTENT_TYPE = "video/mp4"


def validate_ttl(ttl_minutes: object) -> int:
    """Reject ttl values outside [1, 120] minutes.  Never clamps."""
    if isinstance(ttl_minutes, bool) or not isinstance(ttl_minutes, int):
        raise ValidationError("ttl_minutes must be an integer", reason="invalid_ttl")
    if not MIN_TTL_MINUTES <= ttl_minutes <= MAX_TTL_MINUTES:
        raise ValidationError(
            f"ttl_minutes must be between {MIN_TTL_MINUTES} and {MAX_TTL_MINUTES}",
            reason="invalid_ttl",
        )
    return ttl_minutes


@runtime_checkable
class SignedUrlIssuer(Protocol):
    backend: str

    async def issue_url(
        self, video_key: str, user_id: str, ttl_minutes: int
    ) -> IssuedCapability: ...


# Query parameters S3 ignores but records in its server access logs.
FORENSIC_PARAMS = ("x-uid", "x-iat")


def _stash_forensic_params(params, context, **kwargs) -> None:
    # get_object's input model rejects unknown params, so move them aside
    # before validation and pick them up again at signing time.
    for name in FORENSIC_PARAMS:
        if name in params:
            context[name] = params.pop(name)


def _add_forensic_query(request, **kwargs) -> None:
    extra = {n: request.context[n] for n in FORENSIC_PARAMS if n in request.context}
    if not extra:
        return
    separator = "&" if urlsplit(request.url).query else "?"
    # Added before SigV4 builds the canonical query, so they are signed.
    request.url = f"{request.url}{separator}{urlencode(extra)}"


class S3SignedUrlIssuer:
    """SigV4 presigned GETs.

    Each URL carries x-uid and x-iat query parameters.  They are part of
    the signed canonical request, so a leaked URL names who it was issued
    to and when, and the values cannot be edited without breaking it.
    """

    backend = "s3"

    def __init__(
        self,
        s3_client,
        *,
        bucket: str,
        prefix: str = "course-videos/",
        clock: Clock = utcnow,
    ) -> None:
        self._s3 = s3_client
        self._bucket = bucket
        self._prefix = prefix
        self._clock = clock
        events = s3_client.meta.events
        events.register("provide-client-params.s3.GetObject", _stash_forensic_params)
        events.register("before-sign.s3.GetObject", _add_forensic_query)

    async def issue_url(
        self, video_key: str, user_id: str, ttl_minutes: int
    ) -> IssuedCapability:
        ttl = validate_ttl(ttl_minutes)
        now = self._clock()
        params = {
            "Bucket": self._bucket,
            "Key": f"{self._prefix}{video_key}",
            "ResponseContentDisposition": INLINE_DISPOSITION,
            "ResponseCacheControl": NO_CACHE,
            "ResponseContentType": VIDEO_CONTENT_TYPE,
            "x-uid": user_id,
            "x-iat": str(int(now.timestamp())),
        }
        try:
            # Signing is local, but credential resolution may hit the
            # instance metadata endpoint, so keep it off the event loop.
            url = await asyncio.to_thread(
                self._s3.generate_presigned_url,
                ClientMethod="get_object",
                Params=params,
                ExpiresIn=ttl * 60,
            )
        except (BotoCoreError, ClientError) as e:
            logger.exception(
                "Failed to presign video %s for user=%s", video_key, user_id
            )
            raise InfrastructureError("object store signing failed") from e

        return _issued(self.backend, url, video_key, user_id, now, ttl)


class HmacSignedUrlIssuer:
    """Self-signed capability URLs.

    URL shape:
      {base}/{video_key}?expires=<unix>&uid=<user>&iat=<unix>
                        &disposition=inline&sig=<hex hmac-sha256>

    uid and iat sit in the URL for forensic traceability and are covered
    by the signature, so they cannot be swapped without invalidating it.
    """

    backend = "hmac"

    def __init__(self, secret: str, *, base_url: str, clock: Clock = utcnow) -> None:
        self._secret = secret.encode("utf-8")
        self._base_url = base_url.rstrip("/")
        self._clock = clock

    async def issue_url(
        self, video_key: str, user_id: str, ttl_minutes: int
    ) -> IssuedCapability:
        ttl = validate_ttl(ttl_minutes)
        now = self._clock().replace(microsecond=0)
        expires = int((now + timedelta(minutes=ttl)).timestamp())
        iat = int(now.timestamp())
        query = {
            "expires": expires,
            "uid": user_id,
            "iat": iat,
            "disposition": INLINE_DISPOSITION,
            "sig": self._sign(video_key, expires, user_id, iat),
        }
        url = f"{self._base_url}/{quote(video_key)}?{urlencode(query)}"
        return _issued(self.backend, url, video_key, user_id, now, ttl)

    def verify(self, url: str, *, now: datetime | None = None) -> bool:
        """True when the URL's signature is intact and it has not expired."""
        parts = urlsplit(url)
        base_path = urlsplit(self._base_url).path
        if not parts.path.startswith(base_path + "/"):
            return False
        video_key = unquote(parts.path[len(base_path) + 1 :])
        query = {k: v[0] for k, v in parse_qs(parts.query).items()}
        try:
            expires = int(query["expires"])
            iat = int(query["iat"])
            user_id = query["uid"]
            sig = query["sig"]
        except (KeyError, ValueError):
            return False

        expected = self._sign(video_key, expires, user_id, iat)
        if not hmac.compare_digest(sig, expected):
            return False
        current = now or self._clock()
        return current.timestamp() < expires

    def _sign(self, video_key: str, expires: int, user_id: str, iat: int) -> str:
        message = f"{video_key}\n{expires}\n{user_id}\n{iat}".encode()
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()


def make_s3_client(settings: Settings):
    return boto3.client(
        "s3",
        region_name=settings.s3_region,
        endpoint_url=settings.s3_endpoint_url,
        config=Config(
            signature_version="s3v4",
            s3={"addressing_style": "path"},
        ),
    )


def build_issuer(settings: Settings) -> SignedUrlIssuer:
    """S3 when a bucket is configured, otherwise local HMAC URLs."""
    if settings.video_bucket:
        return S3SignedUrlIssuer(
            make_s3_client(settings),
            bucket=settings.video_bucket,
            prefix=settings.video_prefix,
        )
    logger.info("No VIDEO_BUCKET configured, issuing local HMAC-signed URLs")
    return HmacSignedUrlIssuer(
        settings.url_signing_secret, base_url=settings.local_media_base_url
    )


def _issued(
    backend: str,
    url: str,
    video_key: str,
    user_id: str,
    now: datetime,
    ttl_minutes: int,
) -> IssuedCapability:
    capability = IssuedCapability(
        url=url,
        video_key=video_key,
        issued_to=user_id,
        issued_at=now.astimezone(UTC),
        expires_at=(now + timedelta(minutes=ttl_minutes)).astimezone(UTC),
    )
    SIGNED_URLS_ISSUED.labels(backend=backend).inc()
    logger.info(
        "Issued %s capability for video %s user=%s ttl=%dmin expires_at=%s",
        backend,
        video_key,
        user_id,
        ttl_minutes,
        capability.expires_at.isoformat(),
        extra={"user_id": user_id},
    )
    return capability
