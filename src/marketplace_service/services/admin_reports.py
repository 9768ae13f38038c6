"""Platform-wide financial and activity reporting for admins."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from service_commons.exceptions import ServiceError

from marketplace_service.domain import (
    ACTIVE_DISPUTE_STATUSES,
    DISPUTE_STATUSES,
    TASK_STATUSES,
    TRANSACTION_TYPES,
    USER_ROLES,
)
from marketplace_service.logging import get_logger
from marketplace_service.services.task_guards import load_admin

if TYPE_CHECKING:
    from marketplace_service.services.ledger import Ledger
    from marketplace_service.services.marketplace_store import MarketplaceStore


class AdminReports:
    """
    Aggregates read from structured columns.

    Commission totals come from ``commission_earn`` entries and their
    ``commission``/``counterparty_id`` fields, never from descriptions.
    """

    def __init__(self, store: MarketplaceStore, ledger: Ledger, platform_account_id: str) -> None:
        self._store = store
        self._ledger = ledger
        self._platform_account_id = platform_account_id
        self._logger = get_logger(__name__)

    def platform_stats(self, admin_id: str) -> dict[str, Any]:
        load_admin(self._store, admin_id)
        users = self._store.count_users_by_role()
        flagged = self._store.count_users_flagged()
        tasks = self._store.count_tasks_by_status()
        disputes = self._store.count_disputes_by_status()
        totals = self._store.sum_transactions_by_type()
        return {
            "users": {
                "total": sum(users.values()),
                "by_role": {role: users.get(role, 0) for role in sorted(USER_ROLES)},
                "pro": flagged["pro"],
                "verified": flagged["verified"],
                "banned": flagged["banned"],
            },
            "tasks": {
                "total": sum(tasks.values()),
                "by_status": {status: tasks.get(status, 0) for status in sorted(TASK_STATUSES)},
            },
            "disputes": {
                "total": sum(disputes.values()),
                "active": sum(disputes.get(status, 0) for status in ACTIVE_DISPUTE_STATUSES),
                "by_status": {
                    status: disputes.get(status, 0) for status in sorted(DISPUTE_STATUSES)
                },
            },
            "transactions": {tx_type: totals.get(tx_type, 0) for tx_type in sorted(TRANSACTION_TYPES)},
            "commission_total": totals.get("commission_earn", 0),
            "escrow_locked": self._store.total_locked_escrow(),
        }

    def commission_history(self, admin_id: str, limit: int = 50) -> list[dict[str, Any]]:
        """Most recent commission entries with the task and the worker who paid them."""
        load_admin(self._store, admin_id)
        rows = self._store.list_transactions(
            user_id=self._platform_account_id, tx_type="commission_earn", task_id=None, limit=limit
        )
        return [
            {
                "tx_id": row["tx_id"],
                "task_id": row["task_id"],
                "worker_id": row["counterparty_id"],
                "commission": row["commission"],
                "created_at": row["created_at"],
            }
            for row in rows
        ]

    def platform_balance(self, admin_id: str) -> dict[str, Any]:
        load_admin(self._store, admin_id)
        return {
            "account_id": self._platform_account_id,
            "balance": self._ledger.get_balance(self._platform_account_id),
        }

    def withdraw_revenue(self, admin_id: str, amount: int | None = None) -> dict[str, Any]:
        """Withdraw platform revenue; with no amount the whole balance is taken."""
        with self._store.transaction():
            load_admin(self._store, admin_id)
            if amount is None:
                amount = self._ledger.get_balance(self._platform_account_id)
                if amount == 0:
                    raise ServiceError("INVALID_AMOUNT", "No revenue to withdraw", 400, {})
            tx = self._ledger.debit(
                self._platform_account_id,
                amount,
                "withdraw",
                "Platform revenue withdrawal",
                counterparty_id=admin_id,
            )

        self._logger.info(
            "Platform revenue withdrawn", extra={"admin_id": admin_id, "amount": amount}
        )
        return {"balance": tx["balance_after"], "transaction": tx}
