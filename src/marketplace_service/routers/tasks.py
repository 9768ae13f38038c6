"""Task lifecycle endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import (
    extract_int,
    extract_optional_str,
    extract_str,
    parse_json_body,
    query_int,
    require_actor,
    require_component,
)

if TYPE_CHECKING:
    from marketplace_service.services.task_manager import TaskManager

router = APIRouter()


def _task_manager() -> TaskManager:
    return require_component(get_app_state().task_manager, "TaskManager")


# ---------------------------------------------------------------------------
# POST /tasks: create task (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201)
async def create_task(request: Request) -> JSONResponse:
    """Post a job (escrowed immediately) or a gig listing."""
    actor_id = require_actor(request)
    data = parse_json_body(await request.body())

    task_type = extract_str(data, "type")
    title = extract_str(data, "title")
    description = extract_str(data, "description")
    category = extract_str(data, "category")
    price = extract_int(data, "price", error="INVALID_PRICE")

    result = await run_in_threadpool(
        _task_manager().create_task, actor_id, task_type, title, description, category, price
    )
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# GET /tasks: list tasks (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.get("/tasks")
async def list_tasks(request: Request) -> dict[str, Any]:
    """List tasks with optional filters."""
    offset = query_int(request, "offset", minimum=0)
    limit = query_int(request, "limit", minimum=1)

    tasks = await run_in_threadpool(
        lambda: _task_manager().list_tasks(
            status=request.query_params.get("status"),
            task_type=request.query_params.get("type"),
            author_id=request.query_params.get("author_id"),
            assignee_id=request.query_params.get("assignee_id"),
            limit=limit,
            offset=offset,
        )
    )
    return {"tasks": tasks}


@router.get("/tasks/{task_id}")
async def get_task(task_id: str) -> dict[str, Any]:
    return await run_in_threadpool(_task_manager().get_task, task_id)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/claim")
async def claim_task(request: Request, task_id: str) -> dict[str, Any]:
    """Take a job, or order a gig (returns the new order task)."""
    actor_id = require_actor(request)
    return await run_in_threadpool(_task_manager().claim_task, actor_id, task_id)


@router.post("/tasks/{task_id}/submit")
async def submit_task(request: Request, task_id: str) -> dict[str, Any]:
    actor_id = require_actor(request)
    data = parse_json_body(await request.body())
    submission_ref = extract_str(data, "submission_ref")
    submission_name = extract_optional_str(data, "submission_name")
    return await run_in_threadpool(
        _task_manager().submit_task, actor_id, task_id, submission_ref, submission_name
    )


@router.post("/tasks/{task_id}/approve")
async def approve_task(request: Request, task_id: str) -> dict[str, Any]:
    """Accept the submitted work, paying out the escrow."""
    actor_id = require_actor(request)
    data = parse_json_body(await request.body())
    rating = extract_int(data, "rating", error="INVALID_RATING")
    review = extract_optional_str(data, "review") or ""
    return await run_in_threadpool(_task_manager().approve_task, actor_id, task_id, rating, review)


@router.post("/tasks/{task_id}/cancel")
async def cancel_task(request: Request, task_id: str) -> dict[str, Any]:
    """Withdraw an open task."""
    actor_id = require_actor(request)
    data = parse_json_body(await request.body())
    reason = extract_optional_str(data, "reason")
    return await run_in_threadpool(_task_manager().cancel_task, actor_id, task_id, reason)
