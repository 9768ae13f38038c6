"""Lookups and status guards shared by the task and cancellation managers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from service_commons.exceptions import ServiceError

from marketplace_service.services import permissions

if TYPE_CHECKING:
    from marketplace_service.services.marketplace_store import MarketplaceStore


def load_user(store: MarketplaceStore, user_id: str) -> dict[str, Any]:
    user = store.get_user(user_id)
    if user is None:
        raise ServiceError("USER_NOT_FOUND", "User not found", 404, {})
    return user


def load_active_user(store: MarketplaceStore, user_id: str) -> dict[str, Any]:
    """Load an actor, rejecting banned accounts."""
    user = load_user(store, user_id)
    if user["is_banned"]:
        raise ServiceError("ACCOUNT_SUSPENDED", "This account has been suspended", 403, {})
    return user


def load_task(store: MarketplaceStore, task_id: str) -> dict[str, Any]:
    task = store.get_task(task_id)
    if task is None:
        raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {})
    return task


def require_status(task: dict[str, Any], allowed: frozenset[str] | set[str], action: str) -> None:
    if task["status"] not in allowed:
        raise ServiceError(
            "INVALID_TRANSITION",
            f"Cannot {action} a task in '{task['status']}' status",
            409,
            {"status": task["status"]},
        )


def transition_task(
    store: MarketplaceStore,
    task: dict[str, Any],
    updates: dict[str, Any],
) -> dict[str, Any]:
    """
    Apply updates only if the task is still in the status it was read in.

    Raises INVALID_TRANSITION when another writer moved it first.
    """
    changed = store.update_task(task["task_id"], updates, expected_status=task["status"])
    if changed != 1:
        raise ServiceError(
            "INVALID_TRANSITION",
            "Task status changed concurrently; re-read and retry",
            409,
            {},
        )
    return {**task, **updates}


def load_admin(store: MarketplaceStore, user_id: str) -> dict[str, Any]:
    """Load an active actor who holds the moderator role."""
    user = load_active_user(store, user_id)
    if not permissions.can_moderate(user):
        raise ServiceError("FORBIDDEN", "Only an admin can perform this action", 403, {})
    return user


def require_text(value: object, field_name: str, max_length: int) -> str:
    """Validate a required, non-blank string field."""
    if not isinstance(value, str) or not value.strip():
        raise ServiceError("INVALID_PAYLOAD", f"{field_name} must be a non-empty string", 400, {})
    if len(value) > max_length:
        raise ServiceError(
            "INVALID_PAYLOAD",
            f"{field_name} must be at most {max_length} characters",
            400,
            {"max_length": max_length},
        )
    return value


def require_percentage(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 100:
        raise ServiceError(
            "INVALID_REFUND_PERCENTAGE",
            "refund_percentage must be an integer between 0 and 100",
            400,
            {},
        )
    return value
