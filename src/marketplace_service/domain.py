"""Marketplace vocabulary: roles, statuses, transaction kinds, notifications."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any, Literal

ROLE_CLIENT = "Client"
ROLE_FREELANCER = "Freelancer"
ROLE_ADMIN = "Admin"
USER_ROLES = frozenset({ROLE_CLIENT, ROLE_FREELANCER, ROLE_ADMIN})

TASK_TYPE_JOB = "job"
TASK_TYPE_GIG = "gig"
TASK_TYPES = frozenset({TASK_TYPE_JOB, TASK_TYPE_GIG})

TASK_STATUSES = frozenset({"open", "in_progress", "review", "completed", "cancelled"})
TERMINAL_STATUSES = frozenset({"completed", "cancelled"})
# Statuses from which the cancellation/dispute protocol may interrupt a task
INTERRUPTIBLE_STATUSES = frozenset({"in_progress", "review"})

DISPUTE_STATUSES = frozenset({"open", "under_review", "resolved", "rejected"})
ACTIVE_DISPUTE_STATUSES = frozenset({"open", "under_review"})

TRANSACTION_TYPES = frozenset(
    {"topup", "pay_job", "pay_gig", "earn", "withdraw", "pay_pro", "refund", "commission_earn"}
)

NotificationType = Literal[
    "task_assigned",
    "task_submitted",
    "task_approved",
    "task_cancelled",
    "payment_received",
    "review_received",
    "system",
    "cancellation_requested",
    "cancellation_approved",
    "cancellation_rejected",
    "dispute_opened",
    "dispute_resolved",
]


@dataclass(frozen=True)
class Notification:
    """
    A user-facing event emitted after a committed operation.

    The optional fields are the only payload a notification may carry;
    which of them are set depends on the type.
    """

    user_id: str
    type: NotificationType
    title: str
    message: str
    related_id: str | None = None
    related_type: Literal["task", "dispute"] | None = None
    amount: int | None = None
    commission: int | None = None
    refund_amount: int | None = None
    rating: int | None = None
    review: str | None = None
    reason: str | None = None
    requested_by: str | None = None
    dispute_id: str | None = None

    def payload(self) -> dict[str, Any]:
        """Optional fields that are set, for storage and transport."""
        base = {"user_id", "type", "title", "message", "related_id", "related_type"}
        return {
            key: value for key, value in asdict(self).items() if key not in base and value is not None
        }


def now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")
