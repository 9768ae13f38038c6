"""Admin moderation, arbitration and reporting endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from service_commons.exceptions import ServiceError
from starlette.concurrency import run_in_threadpool

from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import (
    extract_optional_int,
    extract_str,
    parse_json_body,
    query_int,
    require_actor,
    require_component,
)

if TYPE_CHECKING:
    from marketplace_service.services.account_manager import AccountManager
    from marketplace_service.services.admin_reports import AdminReports
    from marketplace_service.services.cancellation_manager import CancellationManager

router = APIRouter(prefix="/admin")


def _cancellation_manager() -> CancellationManager:
    return require_component(get_app_state().cancellation_manager, "CancellationManager")


def _account_manager() -> AccountManager:
    return require_component(get_app_state().account_manager, "AccountManager")


def _reports() -> AdminReports:
    return require_component(get_app_state().admin_reports, "AdminReports")


# === Disputes ===


@router.get("/disputes")
async def list_disputes(request: Request) -> dict[str, Any]:
    admin_id = require_actor(request)
    limit = query_int(request, "limit", minimum=1)
    offset = query_int(request, "offset", minimum=0)
    disputes = await run_in_threadpool(
        lambda: _cancellation_manager().admin_list_disputes(
            admin_id,
            status=request.query_params.get("status"),
            limit=limit,
            offset=offset,
        )
    )
    return {"disputes": disputes}


@router.post("/disputes/{dispute_id}/review")
async def review_dispute(request: Request, dispute_id: str) -> dict[str, Any]:
    admin_id = require_actor(request)
    return await run_in_threadpool(
        _cancellation_manager().mark_dispute_under_review, admin_id, dispute_id
    )


@router.post("/disputes/{dispute_id}/resolve")
async def resolve_dispute(request: Request, dispute_id: str) -> dict[str, Any]:
    """Rule on a dispute, optionally refunding the client."""
    admin_id = require_actor(request)
    data = parse_json_body(await request.body())
    resolution = extract_str(data, "resolution")
    refund_to_client = data.get("refund_to_client", False)
    if not isinstance(refund_to_client, bool):
        raise ServiceError("INVALID_PAYLOAD", "refund_to_client must be a boolean", 400, {})
    refund_percentage = extract_optional_int(
        data, "refund_percentage", error="INVALID_REFUND_PERCENTAGE"
    )
    return await run_in_threadpool(
        _cancellation_manager().resolve_dispute,
        admin_id,
        dispute_id,
        resolution,
        refund_to_client,
        refund_percentage,
    )


@router.post("/disputes/{dispute_id}/dismiss")
async def dismiss_dispute(request: Request, dispute_id: str) -> dict[str, Any]:
    admin_id = require_actor(request)
    data = parse_json_body(await request.body())
    resolution = extract_str(data, "resolution")
    return await run_in_threadpool(
        _cancellation_manager().dismiss_dispute, admin_id, dispute_id, resolution
    )


# === Moderation ===


@router.post("/tasks/{task_id}/force-cancel")
async def force_cancel_task(request: Request, task_id: str) -> dict[str, Any]:
    admin_id = require_actor(request)
    data = parse_json_body(await request.body())
    reason = extract_str(data, "reason")
    return await run_in_threadpool(
        _cancellation_manager().force_cancel_task, admin_id, task_id, reason
    )


@router.post("/users/{user_id}/ban")
async def ban_user(request: Request, user_id: str) -> dict[str, Any]:
    admin_id = require_actor(request)
    data = parse_json_body(await request.body())
    reason = extract_str(data, "reason")
    return await run_in_threadpool(_account_manager().ban_user, admin_id, user_id, reason)


@router.post("/users/{user_id}/unban")
async def unban_user(request: Request, user_id: str) -> dict[str, Any]:
    admin_id = require_actor(request)
    return await run_in_threadpool(_account_manager().unban_user, admin_id, user_id)


@router.post("/users/{user_id}/verify")
async def verify_user(request: Request, user_id: str) -> dict[str, Any]:
    admin_id = require_actor(request)
    return await run_in_threadpool(_account_manager().verify_user, admin_id, user_id)


@router.post("/users/{user_id}/unverify")
async def unverify_user(request: Request, user_id: str) -> dict[str, Any]:
    admin_id = require_actor(request)
    return await run_in_threadpool(_account_manager().unverify_user, admin_id, user_id)


# === Finance ===


@router.get("/stats")
async def platform_stats(request: Request) -> dict[str, Any]:
    admin_id = require_actor(request)
    return await run_in_threadpool(_reports().platform_stats, admin_id)


@router.get("/commissions")
async def commission_history(request: Request) -> dict[str, Any]:
    admin_id = require_actor(request)
    limit = query_int(request, "limit", minimum=1)
    history = await run_in_threadpool(
        _reports().commission_history, admin_id, 50 if limit is None else limit
    )
    return {"commissions": history}


@router.get("/revenue")
async def platform_balance(request: Request) -> dict[str, Any]:
    admin_id = require_actor(request)
    return await run_in_threadpool(_reports().platform_balance, admin_id)


@router.post("/revenue/withdraw")
async def withdraw_revenue(request: Request) -> dict[str, Any]:
    admin_id = require_actor(request)
    data = parse_json_body(await request.body())
    amount = extract_optional_int(data, "amount", error="INVALID_AMOUNT")
    return await run_in_threadpool(_reports().withdraw_revenue, admin_id, amount)
