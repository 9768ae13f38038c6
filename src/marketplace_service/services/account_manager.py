"""User accounts, wallet operations, PRO upgrades, saved tasks and moderation."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from service_commons.exceptions import ServiceError

from marketplace_service.domain import ROLE_ADMIN, USER_ROLES, Notification, now_iso
from marketplace_service.logging import get_logger
from marketplace_service.services import permissions
from marketplace_service.services.marketplace_store import DuplicateUserError
from marketplace_service.services.task_guards import (
    load_active_user,
    load_admin,
    load_task,
    load_user,
    require_text,
)

if TYPE_CHECKING:
    from marketplace_service.services.ledger import Ledger
    from marketplace_service.services.marketplace_store import MarketplaceStore
    from marketplace_service.services.notifier import NotificationEmitter

_RECENT_REVIEWS = 10


class AccountManager:
    """Registers users and moves money in and out of their wallets."""

    def __init__(
        self,
        store: MarketplaceStore,
        ledger: Ledger,
        emitter: NotificationEmitter,
        *,
        pro_price: int,
        max_name_length: int,
        max_reason_length: int,
        max_bio_length: int,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._emitter = emitter
        self._pro_price = pro_price
        self._max_name_length = max_name_length
        self._max_reason_length = max_reason_length
        self._max_bio_length = max_bio_length
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_user(self, name: str, role: str, user_id: str | None = None) -> dict[str, Any]:
        """
        Create a Client or Freelancer account with an empty wallet.

        Admin accounts are not self-registered; see ``create_admin``.
        """
        if role not in USER_ROLES or role == ROLE_ADMIN:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"role must be one of {sorted(USER_ROLES - {ROLE_ADMIN})}",
                400,
                {},
            )
        return self._insert_user(name, role, user_id)

    def create_admin(self, name: str, user_id: str | None = None) -> dict[str, Any]:
        return self._insert_user(name, ROLE_ADMIN, user_id)

    def ensure_platform_account(self, account_id: str, account_name: str) -> dict[str, Any]:
        """Create the commission-collecting admin account if it does not exist yet."""
        existing = self._store.get_user(account_id)
        if existing is not None:
            if existing["role"] != ROLE_ADMIN:
                msg = f"Platform account {account_id} exists but is not an admin"
                raise RuntimeError(msg)
            return existing
        return self.create_admin(account_name, account_id)

    def _insert_user(self, name: str, role: str, user_id: str | None) -> dict[str, Any]:
        require_text(name, "name", self._max_name_length)
        if user_id is not None:
            require_text(user_id, "user_id", self._max_name_length)
        user = {
            "user_id": user_id if user_id is not None else f"u-{uuid.uuid4()}",
            "name": name,
            "role": role,
            "balance": 0,
            "xp": 0,
            "level": 1,
            "completed_jobs": 0,
            "rating_sum": 0,
            "rating_count": 0,
            "is_pro": False,
            "is_verified": False,
            "is_banned": False,
            "banned_at": None,
            "ban_reason": None,
            "bio": "",
            "photo_url": "",
            "telegram": "",
            "whatsapp": "",
            "open_for_work": True,
            "created_at": now_iso(),
        }
        try:
            self._store.insert_user(user)
        except DuplicateUserError as exc:
            raise ServiceError(
                "USER_ALREADY_EXISTS", "A user with this id already exists", 409, {}
            ) from exc
        self._logger.info("User registered", extra={"user_id": user["user_id"], "role": role})
        return user

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_user(self, user_id: str) -> dict[str, Any]:
        return load_user(self._store, user_id)

    def get_public_profile(self, user_id: str) -> dict[str, Any]:
        """Profile fields safe to show other users, with recent reviews."""
        user = load_user(self._store, user_id)
        average = (
            round(user["rating_sum"] / user["rating_count"], 1) if user["rating_count"] else None
        )
        reviews = [
            {
                "task_id": task["task_id"],
                "title": task["title"],
                "rating": task["rating"],
                "review": task["review"],
                "completed_at": task["completed_at"],
            }
            for task in self._store.list_completed_tasks_for_worker(user_id, _RECENT_REVIEWS)
        ]
        return {
            "user_id": user["user_id"],
            "name": user["name"],
            "role": user["role"],
            "level": user["level"],
            "xp": user["xp"],
            "completed_jobs": user["completed_jobs"],
            "rating_average": average,
            "rating_count": user["rating_count"],
            "is_pro": user["is_pro"],
            "is_verified": user["is_verified"],
            "bio": user["bio"],
            "photo_url": user["photo_url"],
            "open_for_work": user["open_for_work"],
            "created_at": user["created_at"],
            "recent_reviews": reviews,
        }

    def update_profile(
        self,
        user_id: str,
        *,
        bio: str | None = None,
        photo_url: str | None = None,
        telegram: str | None = None,
        whatsapp: str | None = None,
        open_for_work: bool | None = None,
    ) -> dict[str, Any]:
        """
        Edit the caller's own profile.

        Only the given fields change; an empty string clears a text field.
        """
        updates: dict[str, Any] = {}
        for field_name, value, max_length in (
            ("bio", bio, self._max_bio_length),
            ("photo_url", photo_url, self._max_name_length),
            ("telegram", telegram, self._max_name_length),
            ("whatsapp", whatsapp, self._max_name_length),
        ):
            if value is None:
                continue
            if not isinstance(value, str) or len(value) > max_length:
                raise ServiceError(
                    "INVALID_PAYLOAD",
                    f"{field_name} must be a string of at most {max_length} characters",
                    400,
                    {"max_length": max_length},
                )
            updates[field_name] = value
        if open_for_work is not None:
            if not isinstance(open_for_work, bool):
                raise ServiceError("INVALID_PAYLOAD", "open_for_work must be a boolean", 400, {})
            updates["open_for_work"] = open_for_work

        with self._store.transaction():
            load_active_user(self._store, user_id)
            self._store.update_user(user_id, updates)
            updated = load_user(self._store, user_id)

        self._logger.info("Profile updated", extra={"user_id": user_id, "fields": sorted(updates)})
        return updated

    # ------------------------------------------------------------------
    # Wallet
    # ------------------------------------------------------------------

    def topup(self, user_id: str, amount: int) -> dict[str, Any]:
        """Add funds to a wallet."""
        with self._store.transaction():
            load_active_user(self._store, user_id)
            tx = self._ledger.credit(user_id, amount, "topup", "Wallet top-up")
        self._logger.info("Wallet topped up", extra={"user_id": user_id, "amount": amount})
        return {"balance": tx["balance_after"], "transaction": tx}

    def withdraw(self, user_id: str, amount: int) -> dict[str, Any]:
        """Take funds out of a wallet."""
        with self._store.transaction():
            load_active_user(self._store, user_id)
            tx = self._ledger.debit(user_id, amount, "withdraw", "Wallet withdrawal")
        self._logger.info("Wallet withdrawal", extra={"user_id": user_id, "amount": amount})
        return {"balance": tx["balance_after"], "transaction": tx}

    def buy_pro(self, user_id: str) -> dict[str, Any]:
        """Upgrade to PRO, which waives commission on future approvals."""
        with self._store.transaction():
            user = load_active_user(self._store, user_id)
            if user["is_pro"]:
                raise ServiceError("ALREADY_PRO", "Account is already PRO", 409, {})
            tx = self._ledger.debit(user_id, self._pro_price, "pay_pro", "PRO upgrade")
            self._store.update_user(user_id, {"is_pro": True})
            upgraded = load_user(self._store, user_id)

        self._logger.info("PRO purchased", extra={"user_id": user_id, "price": self._pro_price})
        self._emitter.emit(
            [
                Notification(
                    user_id=user_id,
                    type="system",
                    title="PRO activated",
                    message="Your account is now PRO; commission is waived on your earnings",
                    amount=self._pro_price,
                )
            ]
        )
        return {"user": upgraded, "transaction": tx}

    def list_transactions(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        return self._ledger.get_transactions(user_id, limit=limit)

    # ------------------------------------------------------------------
    # Saved tasks
    # ------------------------------------------------------------------

    def toggle_saved_task(self, user_id: str, task_id: str) -> dict[str, Any]:
        """Bookmark a task, or remove the bookmark if present."""
        with self._store.transaction():
            load_active_user(self._store, user_id)
            load_task(self._store, task_id)
            saved = self._store.toggle_saved_task(user_id, task_id, now_iso())
        return {"task_id": task_id, "saved": saved}

    def list_saved_tasks(self, user_id: str) -> list[dict[str, Any]]:
        load_user(self._store, user_id)
        return self._store.list_saved_tasks(user_id)

    # ------------------------------------------------------------------
    # Moderation
    # ------------------------------------------------------------------

    def ban_user(self, admin_id: str, user_id: str, reason: str) -> dict[str, Any]:
        require_text(reason, "reason", self._max_reason_length)
        with self._store.transaction():
            load_admin(self._store, admin_id)
            user = load_user(self._store, user_id)
            if permissions.can_moderate(user):
                raise ServiceError("FORBIDDEN", "Admin accounts cannot be banned", 403, {})
            self._store.update_user(
                user_id, {"is_banned": True, "banned_at": now_iso(), "ban_reason": reason}
            )
            banned = load_user(self._store, user_id)

        self._logger.info("User banned", extra={"user_id": user_id, "admin_id": admin_id})
        self._emitter.emit(
            [
                Notification(
                    user_id=user_id,
                    type="system",
                    title="Account suspended",
                    message="Your account has been suspended by an administrator",
                    reason=reason,
                )
            ]
        )
        return banned

    def unban_user(self, admin_id: str, user_id: str) -> dict[str, Any]:
        with self._store.transaction():
            load_admin(self._store, admin_id)
            load_user(self._store, user_id)
            self._store.update_user(
                user_id, {"is_banned": False, "banned_at": None, "ban_reason": None}
            )
            restored = load_user(self._store, user_id)

        self._logger.info("User unbanned", extra={"user_id": user_id, "admin_id": admin_id})
        self._emitter.emit(
            [
                Notification(
                    user_id=user_id,
                    type="system",
                    title="Account restored",
                    message="Your account suspension has been lifted",
                )
            ]
        )
        return restored

    def verify_user(self, admin_id: str, user_id: str) -> dict[str, Any]:
        """Mark an account as verified and tell its owner."""
        with self._store.transaction():
            load_admin(self._store, admin_id)
            load_user(self._store, user_id)
            self._store.update_user(user_id, {"is_verified": True})
            verified = load_user(self._store, user_id)

        self._logger.info("User verified", extra={"user_id": user_id, "admin_id": admin_id})
        self._emitter.emit(
            [
                Notification(
                    user_id=user_id,
                    type="system",
                    title="Account verified",
                    message="Your account has been verified",
                )
            ]
        )
        return verified

    def unverify_user(self, admin_id: str, user_id: str) -> dict[str, Any]:
        with self._store.transaction():
            load_admin(self._store, admin_id)
            load_user(self._store, user_id)
            self._store.update_user(user_id, {"is_verified": False})
            unverified = load_user(self._store, user_id)

        self._logger.info("User unverified", extra={"user_id": user_id, "admin_id": admin_id})
        return unverified
