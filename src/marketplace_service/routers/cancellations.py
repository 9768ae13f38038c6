"""Cancellation request and dispute endpoints for running tasks."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from service_commons.exceptions import ServiceError
from starlette.concurrency import run_in_threadpool

from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import (
    extract_optional_int,
    extract_str,
    parse_json_body,
    require_actor,
    require_component,
)

if TYPE_CHECKING:
    from marketplace_service.services.cancellation_manager import CancellationManager

router = APIRouter()


def _cancellation_manager() -> CancellationManager:
    return require_component(get_app_state().cancellation_manager, "CancellationManager")


@router.post("/tasks/{task_id}/cancellation")
async def request_cancellation(request: Request, task_id: str) -> dict[str, Any]:
    """Ask the other party to cancel; a worker with nothing submitted cancels at once."""
    actor_id = require_actor(request)
    data = parse_json_body(await request.body())
    reason = extract_str(data, "reason")
    return await run_in_threadpool(
        _cancellation_manager().request_cancellation, actor_id, task_id, reason
    )


@router.post("/tasks/{task_id}/cancellation/approve")
async def approve_cancellation(request: Request, task_id: str) -> dict[str, Any]:
    actor_id = require_actor(request)
    data = parse_json_body(await request.body())
    refund_percentage = extract_optional_int(
        data, "refund_percentage", error="INVALID_REFUND_PERCENTAGE"
    )
    return await run_in_threadpool(
        _cancellation_manager().approve_cancellation,
        actor_id,
        task_id,
        100 if refund_percentage is None else refund_percentage,
    )


@router.post("/tasks/{task_id}/cancellation/reject")
async def reject_cancellation(request: Request, task_id: str) -> dict[str, Any]:
    actor_id = require_actor(request)
    return await run_in_threadpool(_cancellation_manager().reject_cancellation, actor_id, task_id)


@router.post("/tasks/{task_id}/disputes", status_code=201)
async def open_dispute(request: Request, task_id: str) -> JSONResponse:
    """Escalate a running task to admin arbitration."""
    actor_id = require_actor(request)
    data = parse_json_body(await request.body())
    reason = extract_str(data, "reason")
    description = extract_str(data, "description")
    attachments = data.get("attachments", [])
    if not isinstance(attachments, list):
        raise ServiceError("INVALID_PAYLOAD", "attachments must be a list", 400, {})

    result = await run_in_threadpool(
        _cancellation_manager().open_dispute,
        actor_id,
        task_id,
        reason,
        description,
        attachments,
    )
    return JSONResponse(status_code=201, content=result)


@router.get("/disputes")
async def list_my_disputes(request: Request) -> dict[str, Any]:
    actor_id = require_actor(request)
    disputes = await run_in_threadpool(_cancellation_manager().list_disputes, actor_id)
    return {"disputes": disputes}


@router.get("/disputes/{dispute_id}")
async def get_dispute(request: Request, dispute_id: str) -> dict[str, Any]:
    actor_id = require_actor(request)
    return await run_in_threadpool(_cancellation_manager().get_dispute, actor_id, dispute_id)
