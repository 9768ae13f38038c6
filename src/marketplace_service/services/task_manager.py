"""Task lifecycle management: create, claim, submit, approve, cancel."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from service_commons.exceptions import ServiceError

from marketplace_service.domain import (
    ACTIVE_DISPUTE_STATUSES,
    TASK_STATUSES,
    TASK_TYPE_GIG,
    TASK_TYPE_JOB,
    TASK_TYPES,
    Notification,
    now_iso,
)
from marketplace_service.logging import get_logger
from marketplace_service.services import permissions
from marketplace_service.services.task_guards import (
    load_active_user,
    load_task,
    load_user,
    require_status,
    require_text,
    transition_task,
)

if TYPE_CHECKING:
    from marketplace_service.services.commission_policy import CommissionPolicy
    from marketplace_service.services.escrow_coordinator import EscrowCoordinator
    from marketplace_service.services.marketplace_store import MarketplaceStore
    from marketplace_service.services.notifier import NotificationEmitter


def _is_positive_int(value: object) -> bool:
    """Check if value is a positive integer (not float, not bool)."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _require_not_disputed(task: dict[str, Any], action: str) -> None:
    if task["dispute_status"] in ACTIVE_DISPUTE_STATUSES:
        raise ServiceError(
            "INVALID_TRANSITION",
            f"Cannot {action} a task while its dispute is pending",
            409,
            {"dispute_status": task["dispute_status"]},
        )


class TaskManager:
    """
    Drives a task along open -> in_progress -> review -> completed.

    Every transition runs inside one store transaction: the status is read
    and checked, the task is updated with an expected-status guard, and the
    escrow and ledger effects are applied. Any failure rolls all of it back.
    Notifications go out only after the commit.
    """

    def __init__(
        self,
        store: MarketplaceStore,
        escrow_coordinator: EscrowCoordinator,
        commission_policy: CommissionPolicy,
        emitter: NotificationEmitter,
        *,
        xp_per_task: int,
        xp_per_level: int,
        max_title_length: int,
        max_description_length: int,
        max_amount: int,
    ) -> None:
        self._store = store
        self._escrow = escrow_coordinator
        self._commission_policy = commission_policy
        self._emitter = emitter
        self._xp_per_task = xp_per_task
        self._xp_per_level = xp_per_level
        self._max_title_length = max_title_length
        self._max_description_length = max_description_length
        self._max_amount = max_amount
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def create_task(
        self,
        author_id: str,
        task_type: str,
        title: str,
        description: str,
        category: str,
        price: int,
    ) -> dict[str, Any]:
        """
        Post a job or a gig.

        A job's price is escrowed from the author immediately; a gig
        listing holds no funds until a client orders it. Tasks posted by a
        PRO author are flagged ``is_pro``; gig orders inherit the flag.

        Raises:
            ServiceError: INVALID_PAYLOAD, INVALID_PRICE, USER_NOT_FOUND,
                ACCOUNT_SUSPENDED, FORBIDDEN, INSUFFICIENT_BALANCE.
        """
        if task_type not in TASK_TYPES:
            raise ServiceError(
                "INVALID_PAYLOAD", f"type must be one of {sorted(TASK_TYPES)}", 400, {}
            )
        if not _is_positive_int(price):
            raise ServiceError("INVALID_PRICE", "price must be a positive integer", 400, {})
        if price > self._max_amount:
            raise ServiceError(
                "INVALID_PRICE",
                f"price must not exceed {self._max_amount}",
                400,
                {"max_amount": self._max_amount},
            )
        require_text(title, "title", self._max_title_length)
        require_text(description, "description", self._max_description_length)
        require_text(category, "category", self._max_title_length)

        with self._store.transaction():
            author = load_active_user(self._store, author_id)
            if not permissions.can_create(author, task_type):
                raise ServiceError(
                    "FORBIDDEN",
                    f"A {author['role']} cannot post a {task_type}",
                    403,
                    {},
                )
            task = self._new_task(
                task_type=task_type,
                title=title,
                description=description,
                category=category,
                price=price,
                author_id=author_id,
                assignee_id=None,
                parent_task_id=None,
                is_pro=author["is_pro"],
                status="open",
            )
            self._store.insert_task(task)
            if task_type == TASK_TYPE_JOB:
                self._escrow.lock(task, author_id)

        self._logger.info(
            "Task created",
            extra={"task_id": task["task_id"], "type": task_type, "author_id": author_id, "price": price},
        )
        return task

    def claim_task(self, actor_id: str, task_id: str) -> dict[str, Any]:
        """
        Take a job, or order a gig.

        Claiming a job assigns the worker; its price was escrowed at
        creation. Ordering a gig leaves the listing open and returns a new
        order task, escrowing the price from the client.
        """
        with self._store.transaction():
            actor = load_active_user(self._store, actor_id)
            task = load_task(self._store, task_id)
            require_status(task, {"open"}, "claim")
            if not permissions.can_claim(actor, task):
                raise ServiceError("FORBIDDEN", "You cannot claim this task", 403, {})

            now = now_iso()
            if task["type"] == TASK_TYPE_JOB:
                claimed = transition_task(
                    self._store,
                    task,
                    {"status": "in_progress", "assignee_id": actor_id, "assigned_at": now},
                )
            else:
                claimed = self._new_task(
                    task_type=TASK_TYPE_GIG,
                    title=task["title"],
                    description=task["description"],
                    category=task["category"],
                    price=task["price"],
                    author_id=task["author_id"],
                    assignee_id=actor_id,
                    parent_task_id=task["task_id"],
                    is_pro=task["is_pro"],
                    status="in_progress",
                )
                claimed["assigned_at"] = now
                self._store.insert_task(claimed)
                self._escrow.lock(claimed, actor_id)

        self._logger.info(
            "Task claimed",
            extra={"task_id": claimed["task_id"], "source_task_id": task_id, "actor_id": actor_id},
        )
        self._emitter.emit(
            Notification(
                user_id=user_id,
                type="task_assigned",
                title="Task assigned",
                message=f"'{claimed['title']}' is now in progress",
                related_id=claimed["task_id"],
                related_type="task",
            )
            for user_id in (claimed["author_id"], claimed["assignee_id"])
        )
        return claimed

    def submit_task(
        self,
        actor_id: str,
        task_id: str,
        submission_ref: str,
        submission_name: str | None = None,
    ) -> dict[str, Any]:
        """Attach the delivered work and move the task to review."""
        require_text(submission_ref, "submission_ref", self._max_description_length)
        if submission_name is not None:
            require_text(submission_name, "submission_name", self._max_title_length)

        with self._store.transaction():
            actor = load_active_user(self._store, actor_id)
            task = load_task(self._store, task_id)
            require_status(task, {"in_progress"}, "submit")
            if not permissions.can_submit(actor, task):
                raise ServiceError("FORBIDDEN", "Only the worker can submit this task", 403, {})
            _require_not_disputed(task, "submit")
            submitted = transition_task(
                self._store,
                task,
                {
                    "status": "review",
                    "submission_ref": submission_ref,
                    "submission_name": submission_name,
                    "submitted_at": now_iso(),
                },
            )

        payer = permissions.payer_id(submitted)
        self._logger.info("Task submitted", extra={"task_id": task_id, "worker_id": actor_id})
        if payer is not None:
            self._emitter.emit(
                [
                    Notification(
                        user_id=payer,
                        type="task_submitted",
                        title="Work submitted",
                        message=f"Work for '{submitted['title']}' is ready for review",
                        related_id=task_id,
                        related_type="task",
                    )
                ]
            )
        return submitted

    def approve_task(
        self,
        actor_id: str,
        task_id: str,
        rating: int,
        review: str,
    ) -> dict[str, Any]:
        """
        Accept submitted work: pay the worker, collect commission, record the review.

        Returns ``{"task": ..., "worker": ...}``. A pending cancellation
        request is closed as rejected.
        """
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ServiceError("INVALID_RATING", "rating must be an integer from 1 to 5", 400, {})
        if not isinstance(review, str) or len(review) > self._max_description_length:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"review must be a string of at most {self._max_description_length} characters",
                400,
                {},
            )

        with self._store.transaction():
            actor = load_active_user(self._store, actor_id)
            task = load_task(self._store, task_id)
            require_status(task, {"review"}, "approve")
            if not permissions.can_approve(actor, task):
                raise ServiceError("FORBIDDEN", "Only the payer can approve this task", 403, {})
            _require_not_disputed(task, "approve")
            if task["submission_ref"] is None:
                raise ServiceError(
                    "INVALID_TRANSITION", "Task has no submission to approve", 409, {}
                )

            worker_id = permissions.worker_id(task)
            if worker_id is None:
                msg = "Task in review has no worker"
                raise RuntimeError(msg)
            worker = load_user(self._store, worker_id)
            split = self._commission_policy.split(task["price"], worker["is_pro"])

            updates: dict[str, Any] = {
                "status": "completed",
                "rating": rating,
                "review": review,
                "completed_at": now_iso(),
            }
            if task["cancellation_status"] == "pending":
                updates["cancellation_status"] = "rejected"
                updates["cancellation_requested"] = False
            completed = transition_task(self._store, task, updates)
            self._escrow.release_to_worker(completed, worker_id, split)

            xp = worker["xp"] + self._xp_per_task
            level = worker["level"]
            if xp >= level * self._xp_per_level:
                level += 1
            progress = {
                "xp": xp,
                "level": level,
                "completed_jobs": worker["completed_jobs"] + 1,
                "rating_sum": worker["rating_sum"] + rating,
                "rating_count": worker["rating_count"] + 1,
            }
            self._store.update_user(worker_id, progress)
            updated_worker = load_user(self._store, worker_id)

        self._logger.info(
            "Task approved",
            extra={
                "task_id": task_id,
                "worker_id": worker_id,
                "payout": split.payout,
                "commission": split.commission,
            },
        )
        self._emitter.emit(
            [
                Notification(
                    user_id=worker_id,
                    type="payment_received",
                    title="Payment received",
                    message=f"You earned {split.payout} for '{completed['title']}'",
                    related_id=task_id,
                    related_type="task",
                    amount=split.payout,
                    commission=split.commission,
                ),
                Notification(
                    user_id=worker_id,
                    type="review_received",
                    title="New review",
                    message=f"You received a {rating}-star review for '{completed['title']}'",
                    related_id=task_id,
                    related_type="task",
                    rating=rating,
                    review=review,
                ),
            ]
        )
        return {"task": completed, "worker": updated_worker}

    def cancel_task(self, actor_id: str, task_id: str, reason: str | None = None) -> dict[str, Any]:
        """
        Withdraw an open task.

        An open job returns its escrow to the author in full; an open gig
        listing holds no funds.
        """
        if reason is not None:
            require_text(reason, "reason", self._max_description_length)

        with self._store.transaction():
            actor = load_active_user(self._store, actor_id)
            task = load_task(self._store, task_id)
            require_status(task, {"open"}, "cancel")
            if not permissions.can_cancel_directly(actor, task):
                raise ServiceError("FORBIDDEN", "Only the author can cancel this task", 403, {})
            cancelled = transition_task(
                self._store,
                task,
                {
                    "status": "cancelled",
                    "cancelled_at": now_iso(),
                    "cancelled_by": actor_id,
                    "cancellation_reason": reason,
                },
            )
            refund_amount = 0
            if self._store.get_escrow_for_task(task_id) is not None:
                refund_amount = self._escrow.refund_to_payer(
                    cancelled, 100, f"Refund for withdrawn '{cancelled['title']}'"
                )

        self._logger.info(
            "Task withdrawn",
            extra={"task_id": task_id, "author_id": actor_id, "refund_amount": refund_amount},
        )
        return cancelled

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> dict[str, Any]:
        return load_task(self._store, task_id)

    def list_tasks(
        self,
        *,
        status: str | None = None,
        task_type: str | None = None,
        author_id: str | None = None,
        assignee_id: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        """List tasks matching every given filter, newest first."""
        if status is not None and status not in TASK_STATUSES:
            raise ServiceError(
                "INVALID_PAYLOAD", f"status must be one of {sorted(TASK_STATUSES)}", 400, {}
            )
        if task_type is not None and task_type not in TASK_TYPES:
            raise ServiceError(
                "INVALID_PAYLOAD", f"type must be one of {sorted(TASK_TYPES)}", 400, {}
            )
        return self._store.list_tasks(
            status=status,
            task_type=task_type,
            author_id=author_id,
            assignee_id=assignee_id,
            limit=limit,
            offset=offset,
        )

    def get_stats(self) -> dict[str, int]:
        """Task counts by status, with every status present."""
        counts = self._store.count_tasks_by_status()
        stats = {status: counts.get(status, 0) for status in sorted(TASK_STATUSES)}
        stats["total"] = sum(counts.values())
        return stats

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _new_task(
        *,
        task_type: str,
        title: str,
        description: str,
        category: str,
        price: int,
        author_id: str,
        assignee_id: str | None,
        parent_task_id: str | None,
        is_pro: bool,
        status: str,
    ) -> dict[str, Any]:
        return {
            "task_id": f"t-{uuid.uuid4()}",
            "type": task_type,
            "title": title,
            "description": description,
            "category": category,
            "price": price,
            "author_id": author_id,
            "assignee_id": assignee_id,
            "parent_task_id": parent_task_id,
            "is_pro": is_pro,
            "status": status,
            "submission_ref": None,
            "submission_name": None,
            "submitted_at": None,
            "rating": None,
            "review": None,
            "cancellation_requested": False,
            "cancellation_status": "none",
            "cancellation_requested_by": None,
            "cancellation_reason": None,
            "cancelled_at": None,
            "cancelled_by": None,
            "dispute_opened": False,
            "dispute_opened_by": None,
            "dispute_reason": None,
            "dispute_status": "none",
            "dispute_resolution": None,
            "dispute_resolved_by": None,
            "dispute_resolved_at": None,
            "created_at": now_iso(),
            "assigned_at": None,
            "completed_at": None,
        }
