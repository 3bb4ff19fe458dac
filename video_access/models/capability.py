from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class IssuedCapability:
    """A minted capability URL.  Built for one response; never persisted."""

    url: str
    video_key: str
    issued_to: str
    issued_at: datetime
    expires_at: datetime
