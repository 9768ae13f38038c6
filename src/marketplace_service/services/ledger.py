"""Ledger business logic: balance mutations and their transaction records."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from service_commons.exceptions import ServiceError

from marketplace_service.domain import TRANSACTION_TYPES, now_iso

if TYPE_CHECKING:
    from marketplace_service.services.marketplace_store import MarketplaceStore


def _is_positive_int(value: object) -> bool:
    """Check if value is a positive integer (not float, not bool)."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


class Ledger:
    """
    Applies balance mutations for a single user.

    Every mutation updates the balance and appends exactly one transaction
    record inside the same store transaction. When called inside an outer
    ``store.transaction()`` the mutation joins it, so a later failure in the
    caller rolls the balance and the record back together.

    Amounts and resulting balances are capped at ``max_amount``.

    The ledger does not deduplicate: callers guard each economic event
    with a status check so it runs once.
    """

    def __init__(self, store: MarketplaceStore, *, max_amount: int) -> None:
        self._store = store
        self._max_amount = max_amount

    def credit(
        self,
        user_id: str,
        amount: int,
        tx_type: str,
        description: str,
        *,
        task_id: str | None = None,
        commission: int | None = None,
        counterparty_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Add funds to a user's balance.

        Raises:
            ServiceError: INVALID_AMOUNT, USER_NOT_FOUND.
        """
        return self._apply(
            user_id,
            amount,
            tx_type,
            description,
            sign=1,
            task_id=task_id,
            commission=commission,
            counterparty_id=counterparty_id,
        )

    def debit(
        self,
        user_id: str,
        amount: int,
        tx_type: str,
        description: str,
        *,
        task_id: str | None = None,
        counterparty_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Remove funds from a user's balance.

        Raises:
            ServiceError: INVALID_AMOUNT, USER_NOT_FOUND, INSUFFICIENT_BALANCE.
        """
        return self._apply(
            user_id,
            amount,
            tx_type,
            description,
            sign=-1,
            task_id=task_id,
            commission=None,
            counterparty_id=counterparty_id,
        )

    def _apply(
        self,
        user_id: str,
        amount: int,
        tx_type: str,
        description: str,
        *,
        sign: int,
        task_id: str | None,
        commission: int | None,
        counterparty_id: str | None,
    ) -> dict[str, Any]:
        if not _is_positive_int(amount):
            raise ServiceError("INVALID_AMOUNT", "Amount must be a positive integer", 400, {})
        if amount > self._max_amount:
            raise ServiceError(
                "INVALID_AMOUNT",
                f"Amount must not exceed {self._max_amount}",
                400,
                {"max_amount": self._max_amount},
            )
        if tx_type not in TRANSACTION_TYPES:
            msg = f"Unknown transaction type: {tx_type}"
            raise ValueError(msg)

        with self._store.transaction():
            balance_after = self._store.apply_balance_delta(
                user_id, sign * amount, max_balance=self._max_amount
            )
            if balance_after is None:
                user = self._store.get_user(user_id)
                if user is None:
                    raise ServiceError("USER_NOT_FOUND", "User not found", 404, {})
                if sign > 0:
                    raise ServiceError(
                        "INVALID_AMOUNT",
                        f"Balance would exceed {self._max_amount}",
                        400,
                        {"balance": user["balance"], "max_amount": self._max_amount},
                    )
                raise ServiceError(
                    "INSUFFICIENT_BALANCE",
                    "Insufficient balance for this operation",
                    402,
                    {"balance": user["balance"], "required": amount},
                )

            tx = {
                "tx_id": f"tx-{uuid.uuid4()}",
                "user_id": user_id,
                "type": tx_type,
                "amount": sign * amount,
                "balance_after": balance_after,
                "description": description,
                "task_id": task_id,
                "commission": commission,
                "counterparty_id": counterparty_id,
                "created_at": now_iso(),
            }
            self._store.insert_transaction(tx)
        return tx

    def get_balance(self, user_id: str) -> int:
        """Current balance of a user."""
        user = self._store.get_user(user_id)
        if user is None:
            raise ServiceError("USER_NOT_FOUND", "User not found", 404, {})
        return int(user["balance"])

    def get_transactions(
        self,
        user_id: str,
        *,
        tx_type: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Transactions of a user, newest first."""
        if self._store.get_user(user_id) is None:
            raise ServiceError("USER_NOT_FOUND", "User not found", 404, {})
        return self._store.list_transactions(
            user_id=user_id, tx_type=tx_type, task_id=None, limit=limit
        )

    def get_task_transactions(self, task_id: str) -> list[dict[str, Any]]:
        """Every transaction recorded against a task, newest first."""
        return self._store.list_transactions(user_id=None, tx_type=None, task_id=task_id, limit=None)
