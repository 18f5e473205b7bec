"""Nudge API endpoints"""
from fastapi import APIRouter, HTTPException, Depends, Query, status
from fastapi.concurrency import run_in_threadpool
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional, Union
import secrets
from app.agents.action.nudger import NudgeNotificationProcessor
from app.agents.cognition.responder import NudgeResponder
from app.api.auth import get_authenticated_user
from app.config import settings
from app.dependencies import (
    get_notification_processor,
    get_nudge_responder,
    get_nudge_service,
    get_nudge_store,
)
from app.exceptions import NudgeAccessDeniedError, NudgeNotFoundError
from app.models.nudge import Nudge, NudgeResponseChoice
from app.repositories.nudge_repository import NudgeStore
from app.services.backfill import backfill_notification_sent_field
from app.services.nudge_service import NudgeService
from app.utils.monitoring import StructuredLogger

router = APIRouter()
scheduler_security = HTTPBearer(auto_error=False)


class NudgeStatusUpdate(BaseModel):
    """Request model for changing a nudge's status"""
    status: Literal["completed", "snoozed", "dismissed"]
    snooze_days: int = 1
    response_value: Optional[Union[str, Dict[str, Any]]] = None


class NudgeRespondRequest(BaseModel):
    """Request model for a quick-reply response"""
    response: NudgeResponseChoice
    note: Optional[str] = None
    side_effects: Optional[List[str]] = Field(None, alias="sideEffects")

    class Config:
        populate_by_name = True


class NudgeFreeTextRequest(BaseModel):
    """Request model for a free-text response"""
    text: str = Field(..., min_length=1, max_length=2000)


async def verify_scheduler_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(scheduler_security),
):
    """Guard for the endpoints an external scheduler calls"""
    expected = settings.NUDGE_SCHEDULER_TOKEN
    if not expected:
        StructuredLogger.log_event(
            "scheduler_token_unset",
            "NUDGE_SCHEDULER_TOKEN not configured, allowing unauthenticated scheduler request",
            level="WARNING",
        )
        return

    provided = credentials.credentials if credentials else ""
    if not secrets.compare_digest(provided.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid scheduler token",
        )


def _nudge_http_error(e: Exception) -> HTTPException:
    if isinstance(e, NudgeNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Nudge not found")
    if isinstance(e, NudgeAccessDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized to modify this nudge")
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("", response_model=List[Nudge])
async def get_active_nudges(
    user = Depends(get_authenticated_user),
    service: NudgeService = Depends(get_nudge_service),
):
    """Get nudges that are due for the authenticated user"""
    try:
        return await run_in_threadpool(service.list_active, user.id)
    except Exception as e:
        StructuredLogger.log_error(
            e,
            context={"function": "get_active_nudges", "user_id": user.id},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch nudges: {str(e)}",
        )


@router.get("/history", response_model=List[Nudge])
async def get_nudge_history(
    limit: int = Query(20, description="Maximum number of nudges to return (capped at 50)"),
    user = Depends(get_authenticated_user),
    service: NudgeService = Depends(get_nudge_service),
):
    """Get completed and dismissed nudges for the authenticated user"""
    try:
        return await run_in_threadpool(service.list_history, user.id, limit)
    except Exception as e:
        StructuredLogger.log_error(
            e,
            context={"function": "get_nudge_history", "user_id": user.id},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch nudge history: {str(e)}",
        )


@router.patch("/{nudge_id}")
async def update_nudge(
    nudge_id: str,
    request: NudgeStatusUpdate,
    user = Depends(get_authenticated_user),
    service: NudgeService = Depends(get_nudge_service),
):
    """Complete, snooze or dismiss a nudge"""
    try:
        if request.status == "completed":
            await run_in_threadpool(service.complete, nudge_id, user.id, request.response_value)
            return {"success": True, "status": "completed"}

        if request.status == "snoozed":
            snoozed_until = await run_in_threadpool(service.snooze, nudge_id, user.id, request.snooze_days)
            return {"success": True, "status": "snoozed", "snoozed_until": snoozed_until.isoformat()}

        await run_in_threadpool(service.dismiss, nudge_id, user.id)
        return {"success": True, "status": "dismissed"}

    except HTTPException:
        raise
    except (NudgeNotFoundError, NudgeAccessDeniedError, ValueError) as e:
        raise _nudge_http_error(e)
    except Exception as e:
        StructuredLogger.log_error(
            e,
            context={"function": "update_nudge", "nudge_id": nudge_id},
            user_id=user.id,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to update nudge: {str(e)}",
        )


@router.post("/{nudge_id}/respond")
async def respond_to_nudge(
    nudge_id: str,
    request: NudgeRespondRequest,
    user = Depends(get_authenticated_user),
    responder: NudgeResponder = Depends(get_nudge_responder),
):
    """Record a quick-reply response and react to it"""
    try:
        outcome = await run_in_threadpool(
            responder.respond,
            nudge_id,
            user.id,
            request.response,
            None,
            request.note,
            request.side_effects,
        )
        return {"success": True, **outcome.model_dump(mode="json")}
    except HTTPException:
        raise
    except (NudgeNotFoundError, NudgeAccessDeniedError) as e:
        raise _nudge_http_error(e)
    except Exception as e:
        StructuredLogger.log_error(
            e,
            context={"function": "respond_to_nudge", "nudge_id": nudge_id},
            user_id=user.id,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to record response: {str(e)}",
        )


@router.post("/{nudge_id}/respond-text")
async def respond_to_nudge_with_text(
    nudge_id: str,
    request: NudgeFreeTextRequest,
    user = Depends(get_authenticated_user),
    responder: NudgeResponder = Depends(get_nudge_responder),
):
    """Record a free-text response, interpret it, and react to it"""
    try:
        outcome = await run_in_threadpool(responder.respond_free_text, nudge_id, user.id, request.text)
        return {"success": True, **outcome.model_dump(mode="json")}
    except HTTPException:
        raise
    except (NudgeNotFoundError, NudgeAccessDeniedError) as e:
        raise _nudge_http_error(e)
    except Exception as e:
        StructuredLogger.log_error(
            e,
            context={"function": "respond_to_nudge_with_text", "nudge_id": nudge_id},
            user_id=user.id,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to record response: {str(e)}",
        )


@router.post("/process-due", dependencies=[Depends(verify_scheduler_token)])
async def process_due_nudges(
    processor: NudgeNotificationProcessor = Depends(get_notification_processor),
):
    """Run one notification pass; called by an external scheduler"""
    try:
        stats = await run_in_threadpool(processor.process_due_nudges)
        return {"success": True, **stats.to_response()}
    except Exception as e:
        StructuredLogger.log_error(e, context={"function": "process_due_nudges"})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to process nudges: {str(e)}",
        )


@router.post("/backfill-notification-sent", dependencies=[Depends(verify_scheduler_token)])
async def backfill_notification_sent(
    store: NudgeStore = Depends(get_nudge_store),
):
    """Stamp notification_sent=false onto legacy pending nudges"""
    try:
        updated = await run_in_threadpool(backfill_notification_sent_field, store)
        return {"success": True, "updated": updated}
    except Exception as e:
        StructuredLogger.log_error(e, context={"function": "backfill_notification_sent"})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to backfill nudges: {str(e)}",
        )
