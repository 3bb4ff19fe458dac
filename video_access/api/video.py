"""Video access endpoints.

  POST /v1/video/modules/{module_id}/access     grant + session + capability URL
  GET  /v1/video/modules/{module_id}/access     read-only entitlement check
  POST /v1/video/sessions/{session_id}/end      close a streaming session
  POST /v1/video/sessions/{session_id}/heartbeat

Routes only translate.  Decisions come back from VideoAccessService as
values; a denial is re-raised as EntitlementDeniedError (or its
session-limit subclass) and a fault as InfrastructureError, and the
handler in video_access.main renders all of them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from video_access.api.dependencies import (
    client_info,
    get_video_access_service,
    require_user,
)
from video_access.core.config import SETTINGS
from video_access.core.errors import (
    ConcurrencySessionLimitError,
    EntitlementDeniedError,
    InfrastructureError,
)
from video_access.models.decision import Denied, Fault, ReasonCode
from video_access.models.principal import ClientInfo, Principal
from video_access.services.signed_url_issuer import MAX_TTL_MINUTES, MIN_TTL_MINUTES
from video_access.services.video_access_service import VideoAccessService

router = APIRouter(prefix="/v1/video", tags=["video"])

Service = Annotated[VideoAccessService, Depends(get_video_access_service)]
CurrentUser = Annotated[Principal, Depends(require_user)]
Client = Annotated[ClientInfo, Depends(client_info)]


class VideoAccessOut(BaseModel):
    granted: bool
    streaming_url: str
    session_id: str
    expires_at: datetime
    days_remaining: int


class AccessCheckOut(BaseModel):
    has_access: bool
    reason: str
    days_remaining: int


class SessionOut(BaseModel):
    session_id: str
    module_id: UUID
    state: str
    started_at: datetime
    last_heartbeat_at: datetime


class EndSessionOut(BaseModel):
    success: bool


@router.post("/modules/{module_id}/access", response_model=VideoAccessOut)
async def request_video_access(
    module_id: UUID,
    principal: CurrentUser,
    service: Service,
    client: Client,
    ttl_minutes: Annotated[
        int, Query(ge=MIN_TTL_MINUTES, le=MAX_TTL_MINUTES)
    ] = SETTINGS.default_url_ttl_minutes,
) -> VideoAccessOut:
    result = await service.request_video_access(
        principal, module_id, ttl_minutes, client
    )
    decision = result.decision
    if isinstance(decision, Fault):
        raise InfrastructureError("video access temporarily unavailable")
    if isinstance(decision, Denied):
        if decision.reason is ReasonCode.SESSION_LIMIT:
            raise ConcurrencySessionLimitError()
        raise EntitlementDeniedError("access denied", reason=decision.reason.value)

    return VideoAccessOut(
        granted=True,
        streaming_url=result.streaming_url or "",
        session_id=result.session_id or "",
        expires_at=result.expires_at,
        days_remaining=result.days_remaining or 0,
    )


@router.get("/modules/{module_id}/access", response_model=AccessCheckOut)
async def validate_access(
    module_id: UUID,
    principal: CurrentUser,
    service: Service,
    client: Client,
) -> AccessCheckOut:
    check = await service.validate_access(principal, module_id, client)
    if check.unavailable:
        raise InfrastructureError("video access temporarily unavailable")
    return AccessCheckOut(
        has_access=check.has_access,
        reason=check.reason,
        days_remaining=check.days_remaining,
    )


@router.post("/sessions/{session_id}/end", response_model=EndSessionOut)
async def end_video_session(
    session_id: str,
    principal: CurrentUser,
    service: Service,
) -> EndSessionOut:
    return EndSessionOut(
        success=await service.end_video_session(principal, session_id)
    )


@router.post("/sessions/{session_id}/heartbeat", response_model=SessionOut)
async def heartbeat(
    session_id: str,
    principal: CurrentUser,
    service: Service,
) -> SessionOut:
    session = await service.heartbeat(principal, session_id)
    return SessionOut(
        session_id=session.session_id,
        module_id=session.module_id,
        state=session.state.value,
        started_at=session.started_at,
        last_heartbeat_at=session.last_heartbeat_at,
    )
