"""Escrow lock, release and refund for task lifecycle transitions."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from service_commons.exceptions import ServiceError

from marketplace_service.domain import TASK_TYPE_JOB, now_iso
from marketplace_service.logging import get_logger
from marketplace_service.services.commission_policy import CommissionSplit, percent_of

if TYPE_CHECKING:
    from marketplace_service.services.ledger import Ledger
    from marketplace_service.services.marketplace_store import MarketplaceStore


class EscrowCoordinator:
    """
    Holds a task's price between payment and release.

    Each escrow row is locked once and resolved once: resolution is a
    conditional update on ``status = 'locked'``, so a second release or
    refund for the same task fails and rolls back the caller's unit.
    Must be called inside ``store.transaction()``.
    """

    def __init__(self, store: MarketplaceStore, ledger: Ledger, platform_account_id: str) -> None:
        self._store = store
        self._ledger = ledger
        self._platform_account_id = platform_account_id
        self._logger = get_logger(__name__)

    def lock(self, task: dict[str, Any], payer_id: str) -> dict[str, Any]:
        """Debit the task price from the payer and hold it against the task."""
        tx_type = "pay_job" if task["type"] == TASK_TYPE_JOB else "pay_gig"
        counterparty = task["author_id"] if payer_id != task["author_id"] else None
        self._ledger.debit(
            payer_id,
            task["price"],
            tx_type,
            f"Payment for '{task['title']}'",
            task_id=task["task_id"],
            counterparty_id=counterparty,
        )
        escrow = {
            "escrow_id": f"esc-{uuid.uuid4()}",
            "task_id": task["task_id"],
            "payer_id": payer_id,
            "amount": task["price"],
            "status": "locked",
            "payout_amount": None,
            "commission_amount": None,
            "refund_amount": None,
            "retained_amount": None,
            "created_at": now_iso(),
            "resolved_at": None,
        }
        self._store.insert_escrow(escrow)
        return escrow

    def _require_locked(self, task_id: str) -> dict[str, Any]:
        escrow = self._store.get_escrow_for_task(task_id)
        if escrow is None:
            raise ServiceError("ESCROW_NOT_FOUND", "No escrow is held for this task", 409, {})
        if escrow["status"] != "locked":
            raise ServiceError(
                "ESCROW_ALREADY_RESOLVED",
                f"Escrow for this task is already {escrow['status']}",
                409,
                {},
            )
        return escrow

    def _resolve(self, task_id: str, updates: dict[str, Any]) -> None:
        updates["resolved_at"] = now_iso()
        if self._store.resolve_escrow(task_id, updates) != 1:
            raise ServiceError(
                "ESCROW_ALREADY_RESOLVED", "Escrow for this task is already resolved", 409, {}
            )

    def release_to_worker(
        self, task: dict[str, Any], worker_id: str, split: CommissionSplit
    ) -> None:
        """Pay the worker and collect commission for the platform."""
        escrow = self._require_locked(task["task_id"])
        if split.payout + split.commission != escrow["amount"]:
            msg = "Commission split does not match escrowed amount"
            raise RuntimeError(msg)

        self._resolve(
            task["task_id"],
            {
                "status": "released",
                "payout_amount": split.payout,
                "commission_amount": split.commission,
            },
        )
        if split.payout > 0:
            self._ledger.credit(
                worker_id,
                split.payout,
                "earn",
                f"Earnings for '{task['title']}'",
                task_id=task["task_id"],
                commission=split.commission,
                counterparty_id=escrow["payer_id"],
            )
        if split.commission > 0:
            self._ledger.credit(
                self._platform_account_id,
                split.commission,
                "commission_earn",
                f"Commission for '{task['title']}'",
                task_id=task["task_id"],
                commission=split.commission,
                counterparty_id=worker_id,
            )

    def refund_to_payer(self, task: dict[str, Any], refund_percentage: int, description: str) -> int:
        """
        Return refund_percentage of the original price to the payer.

        The remainder of a partial refund stays with the platform.
        Returns the refunded amount.
        """
        escrow = self._require_locked(task["task_id"])
        refund_amount = percent_of(escrow["amount"], refund_percentage)
        self._resolve(
            task["task_id"],
            {
                "status": "refunded",
                "refund_amount": refund_amount,
                "retained_amount": escrow["amount"] - refund_amount,
            },
        )
        if refund_amount > 0:
            self._ledger.credit(
                escrow["payer_id"],
                refund_amount,
                "refund",
                description,
                task_id=task["task_id"],
            )
        return refund_amount

    def get_escrow(self, task_id: str) -> dict[str, Any] | None:
        return self._store.get_escrow_for_task(task_id)
