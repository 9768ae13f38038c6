"""Commission split between worker payout and platform fee."""

from __future__ import annotations

from dataclasses import dataclass


def percent_of(amount: int, percent: int) -> int:
    """Integer percentage of amount, rounded half up."""
    return (amount * percent + 50) // 100


@dataclass(frozen=True)
class CommissionSplit:
    """How an approved task's price is divided."""

    price: int
    payout: int
    commission: int


class CommissionPolicy:
    """Charges a flat percentage commission, waived for PRO workers."""

    def __init__(self, rate_percent: int) -> None:
        if not 0 <= rate_percent <= 100:
            msg = f"Commission rate must be between 0 and 100, got {rate_percent}"
            raise ValueError(msg)
        self._rate_percent = rate_percent

    @property
    def rate_percent(self) -> int:
        return self._rate_percent

    def split(self, price: int, worker_is_pro: bool) -> CommissionSplit:
        commission = 0 if worker_is_pro else percent_of(price, self._rate_percent)
        return CommissionSplit(price=price, payout=price - commission, commission=commission)
