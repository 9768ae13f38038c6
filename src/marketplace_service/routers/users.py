"""User, profile, wallet and saved-task endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import (
    extract_int,
    extract_optional_bool,
    extract_optional_str,
    extract_str,
    parse_json_body,
    query_int,
    require_actor,
    require_component,
)

if TYPE_CHECKING:
    from marketplace_service.services.account_manager import AccountManager

router = APIRouter()


def _account_manager() -> AccountManager:
    return require_component(get_app_state().account_manager, "AccountManager")


# === Accounts ===


@router.post("/users", status_code=201)
async def register_user(request: Request) -> JSONResponse:
    """Register a Client or Freelancer."""
    data = parse_json_body(await request.body())
    name = extract_str(data, "name")
    role = extract_str(data, "role")
    user_id = extract_optional_str(data, "user_id")
    result = await run_in_threadpool(_account_manager().register_user, name, role, user_id)
    return JSONResponse(status_code=201, content=result)


@router.get("/me")
async def get_me(request: Request) -> dict[str, Any]:
    """Full account of the caller, including balance."""
    actor_id = require_actor(request)
    return await run_in_threadpool(_account_manager().get_user, actor_id)


@router.put("/me")
async def update_me(request: Request) -> dict[str, Any]:
    """Edit the caller's own profile; omitted fields keep their value."""
    actor_id = require_actor(request)
    data = parse_json_body(await request.body())
    bio = extract_optional_str(data, "bio")
    photo_url = extract_optional_str(data, "photo_url")
    telegram = extract_optional_str(data, "telegram")
    whatsapp = extract_optional_str(data, "whatsapp")
    open_for_work = extract_optional_bool(data, "open_for_work")
    return await run_in_threadpool(
        lambda: _account_manager().update_profile(
            actor_id,
            bio=bio,
            photo_url=photo_url,
            telegram=telegram,
            whatsapp=whatsapp,
            open_for_work=open_for_work,
        )
    )


@router.get("/users/{user_id}")
async def get_public_profile(user_id: str) -> dict[str, Any]:
    return await run_in_threadpool(_account_manager().get_public_profile, user_id)


# === Wallet ===


@router.post("/wallet/topup")
async def topup(request: Request) -> dict[str, Any]:
    actor_id = require_actor(request)
    data = parse_json_body(await request.body())
    amount = extract_int(data, "amount", error="INVALID_AMOUNT")
    return await run_in_threadpool(_account_manager().topup, actor_id, amount)


@router.post("/wallet/withdraw")
async def withdraw(request: Request) -> dict[str, Any]:
    actor_id = require_actor(request)
    data = parse_json_body(await request.body())
    amount = extract_int(data, "amount", error="INVALID_AMOUNT")
    return await run_in_threadpool(_account_manager().withdraw, actor_id, amount)


@router.post("/wallet/pro")
async def buy_pro(request: Request) -> dict[str, Any]:
    """Buy the PRO tier, waiving commission on future earnings."""
    actor_id = require_actor(request)
    return await run_in_threadpool(_account_manager().buy_pro, actor_id)


@router.get("/wallet/transactions")
async def list_transactions(request: Request) -> dict[str, Any]:
    actor_id = require_actor(request)
    limit = query_int(request, "limit", minimum=1)
    transactions = await run_in_threadpool(
        _account_manager().list_transactions, actor_id, 50 if limit is None else limit
    )
    return {"transactions": transactions}


# === Saved tasks ===


@router.post("/tasks/{task_id}/save")
async def toggle_saved_task(request: Request, task_id: str) -> dict[str, Any]:
    actor_id = require_actor(request)
    return await run_in_threadpool(_account_manager().toggle_saved_task, actor_id, task_id)


@router.get("/me/saved-tasks")
async def list_saved_tasks(request: Request) -> dict[str, Any]:
    actor_id = require_actor(request)
    tasks = await run_in_threadpool(_account_manager().list_saved_tasks, actor_id)
    return {"tasks": tasks}
