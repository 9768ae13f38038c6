"""Notification inbox endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import (
    query_bool,
    query_int,
    require_actor,
    require_component,
)

if TYPE_CHECKING:
    from marketplace_service.services.notifier import NotificationInbox

router = APIRouter()


def _inbox() -> NotificationInbox:
    return require_component(get_app_state().notification_inbox, "NotificationInbox")


@router.get("/notifications")
async def list_notifications(request: Request) -> dict[str, Any]:
    actor_id = require_actor(request)
    unread_only = query_bool(request, "unread_only")
    limit = query_int(request, "limit", minimum=1)
    notifications = await run_in_threadpool(
        lambda: _inbox().list_notifications(
            actor_id, unread_only=unread_only, limit=50 if limit is None else limit
        )
    )
    return {"notifications": notifications}


@router.get("/notifications/unread-count")
async def unread_count(request: Request) -> dict[str, int]:
    actor_id = require_actor(request)
    count = await run_in_threadpool(_inbox().unread_count, actor_id)
    return {"unread": count}


@router.post("/notifications/read-all")
async def mark_all_read(request: Request) -> dict[str, int]:
    actor_id = require_actor(request)
    updated = await run_in_threadpool(_inbox().mark_all_read, actor_id)
    return {"updated": updated}


@router.post("/notifications/{notification_id}/read")
async def mark_read(request: Request, notification_id: str) -> dict[str, Any]:
    actor_id = require_actor(request)
    return await run_in_threadpool(_inbox().mark_read, actor_id, notification_id)
