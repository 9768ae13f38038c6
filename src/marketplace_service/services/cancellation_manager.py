"""Cancellation requests, disputes and admin arbitration for running tasks."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from service_commons.exceptions import ServiceError

from marketplace_service.domain import (
    ACTIVE_DISPUTE_STATUSES,
    DISPUTE_STATUSES,
    INTERRUPTIBLE_STATUSES,
    TERMINAL_STATUSES,
    Notification,
    now_iso,
)
from marketplace_service.logging import get_logger
from marketplace_service.services import permissions
from marketplace_service.services.task_guards import (
    load_active_user,
    load_admin,
    load_task,
    require_percentage,
    require_status,
    require_text,
    transition_task,
)

if TYPE_CHECKING:
    from marketplace_service.services.escrow_coordinator import EscrowCoordinator
    from marketplace_service.services.marketplace_store import MarketplaceStore
    from marketplace_service.services.notifier import NotificationEmitter


def _parties(task: dict[str, Any]) -> list[str]:
    return [user_id for user_id in (task["author_id"], task["assignee_id"]) if user_id is not None]


class CancellationManager:
    """
    Interrupts running tasks by agreement or through arbitration.

    Cancellation state moves none -> pending -> approved | rejected |
    disputed. Opening a dispute freezes the plain cancellation path until
    an admin resolves or dismisses it. Refunds are always computed against
    the original price and happen at most once, since the task becomes
    cancelled on the first one.
    """

    def __init__(
        self,
        store: MarketplaceStore,
        escrow_coordinator: EscrowCoordinator,
        emitter: NotificationEmitter,
        *,
        max_reason_length: int,
        max_description_length: int,
        max_attachments: int,
    ) -> None:
        self._store = store
        self._escrow = escrow_coordinator
        self._emitter = emitter
        self._max_reason_length = max_reason_length
        self._max_description_length = max_description_length
        self._max_attachments = max_attachments
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Two-party cancellation
    # ------------------------------------------------------------------

    def request_cancellation(self, actor_id: str, task_id: str, reason: str) -> dict[str, Any]:
        """
        Ask to cancel a running task.

        A worker who has not submitted anything yet cancels at once with a
        full refund to the payer. Otherwise the request waits for the
        other party. Returns ``{"task": ..., "auto_approved": bool}``.
        """
        require_text(reason, "reason", self._max_reason_length)

        with self._store.transaction():
            actor = load_active_user(self._store, actor_id)
            task = load_task(self._store, task_id)
            require_status(task, INTERRUPTIBLE_STATUSES, "request cancellation for")
            if not permissions.can_request_cancellation(actor, task):
                raise ServiceError(
                    "FORBIDDEN", "Only a party to this task can request cancellation", 403, {}
                )
            self._require_not_frozen(task)
            if task["cancellation_status"] == "pending":
                raise ServiceError(
                    "ALREADY_PENDING", "A cancellation request is already pending", 409, {}
                )

            request = {
                "cancellation_requested": True,
                "cancellation_requested_by": actor_id,
                "cancellation_reason": reason,
            }
            auto_approved = (
                permissions.worker_id(task) == actor_id
                and task["status"] == "in_progress"
                and task["submission_ref"] is None
            )
            refund_amount = 0
            if auto_approved:
                updated = transition_task(
                    self._store,
                    task,
                    {
                        **request,
                        "cancellation_status": "approved",
                        "status": "cancelled",
                        "cancelled_at": now_iso(),
                        "cancelled_by": actor_id,
                    },
                )
                refund_amount = self._escrow.refund_to_payer(
                    updated, 100, f"Refund for cancelled '{updated['title']}'"
                )
            else:
                updated = transition_task(
                    self._store, task, {**request, "cancellation_status": "pending"}
                )

        counterpart = permissions.counterparty_id(updated, actor_id)
        if auto_approved:
            self._logger.info(
                "Cancellation auto-approved",
                extra={"task_id": task_id, "worker_id": actor_id, "refund_amount": refund_amount},
            )
            self._emitter.emit(
                self._cancellation_approved_notifications(updated, refund_amount, reason)
            )
        else:
            self._logger.info(
                "Cancellation requested", extra={"task_id": task_id, "requested_by": actor_id}
            )
            if counterpart is not None:
                self._emitter.emit(
                    [
                        Notification(
                            user_id=counterpart,
                            type="cancellation_requested",
                            title="Cancellation requested",
                            message=f"Cancellation was requested for '{updated['title']}'",
                            related_id=task_id,
                            related_type="task",
                            reason=reason,
                            requested_by=actor_id,
                        )
                    ]
                )
        return {"task": updated, "auto_approved": auto_approved}

    def approve_cancellation(
        self, actor_id: str, task_id: str, refund_percentage: int = 100
    ) -> dict[str, Any]:
        """Agree to a pending request; refund_percentage of the price goes back to the payer."""
        require_percentage(refund_percentage)

        with self._store.transaction():
            task = self._load_pending_for_response(actor_id, task_id)
            cancelled = transition_task(
                self._store,
                task,
                {
                    "status": "cancelled",
                    "cancellation_status": "approved",
                    "cancelled_at": now_iso(),
                    "cancelled_by": actor_id,
                },
            )
            refund_amount = self._escrow.refund_to_payer(
                cancelled, refund_percentage, f"Refund for cancelled '{cancelled['title']}'"
            )

        self._logger.info(
            "Cancellation approved",
            extra={
                "task_id": task_id,
                "approved_by": actor_id,
                "refund_percentage": refund_percentage,
                "refund_amount": refund_amount,
            },
        )
        self._emitter.emit(
            self._cancellation_approved_notifications(
                cancelled, refund_amount, cancelled["cancellation_reason"]
            )
        )
        return cancelled

    def reject_cancellation(self, actor_id: str, task_id: str) -> dict[str, Any]:
        """Decline a pending request; the requester may ask again later."""
        with self._store.transaction():
            task = self._load_pending_for_response(actor_id, task_id)
            rejected = transition_task(
                self._store,
                task,
                {"cancellation_status": "rejected", "cancellation_requested": False},
            )

        requester = task["cancellation_requested_by"]
        self._logger.info(
            "Cancellation rejected", extra={"task_id": task_id, "rejected_by": actor_id}
        )
        self._emitter.emit(
            [
                Notification(
                    user_id=requester,
                    type="cancellation_rejected",
                    title="Cancellation rejected",
                    message=f"Your cancellation request for '{rejected['title']}' was rejected",
                    related_id=task_id,
                    related_type="task",
                )
            ]
        )
        return rejected

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    def open_dispute(
        self,
        actor_id: str,
        task_id: str,
        reason: str,
        description: str,
        attachments: list[str] | None = None,
    ) -> dict[str, Any]:
        """Escalate a running task to admin arbitration."""
        require_text(reason, "reason", self._max_reason_length)
        require_text(description, "description", self._max_description_length)
        attachment_list = list(attachments or [])
        if len(attachment_list) > self._max_attachments or not all(
            isinstance(item, str) and item for item in attachment_list
        ):
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"attachments must be at most {self._max_attachments} non-empty strings",
                400,
                {},
            )

        with self._store.transaction():
            actor = load_active_user(self._store, actor_id)
            task = load_task(self._store, task_id)
            require_status(task, INTERRUPTIBLE_STATUSES, "dispute")
            if not permissions.can_open_dispute(actor, task):
                raise ServiceError(
                    "FORBIDDEN", "Only a party to this task can open a dispute", 403, {}
                )
            if task["dispute_opened"]:
                raise ServiceError(
                    "ALREADY_OPEN", "A dispute has already been opened for this task", 409, {}
                )
            against = permissions.counterparty_id(task, actor_id)
            if against is None:
                msg = "Running task has no counterparty"
                raise RuntimeError(msg)

            dispute = {
                "dispute_id": f"dsp-{uuid.uuid4()}",
                "task_id": task_id,
                "opened_by": actor_id,
                "against": against,
                "reason": reason,
                "description": description,
                "attachments": attachment_list,
                "status": "open",
                "resolution": None,
                "resolved_by": None,
                "resolved_at": None,
                "refund_percentage": None,
                "refund_amount": None,
                "created_at": now_iso(),
            }
            self._store.insert_dispute(dispute)
            transition_task(
                self._store,
                task,
                {
                    "dispute_opened": True,
                    "dispute_opened_by": actor_id,
                    "dispute_reason": reason,
                    "dispute_status": "open",
                    "cancellation_status": "disputed",
                },
            )

        self._logger.info(
            "Dispute opened",
            extra={"task_id": task_id, "dispute_id": dispute["dispute_id"], "opened_by": actor_id},
        )
        self._emitter.emit(
            [
                Notification(
                    user_id=against,
                    type="dispute_opened",
                    title="Dispute opened",
                    message=f"A dispute was opened for '{task['title']}'",
                    related_id=dispute["dispute_id"],
                    related_type="dispute",
                    reason=reason,
                    dispute_id=dispute["dispute_id"],
                )
            ]
        )
        return dispute

    def resolve_dispute(
        self,
        admin_id: str,
        dispute_id: str,
        resolution: str,
        refund_to_client: bool,
        refund_percentage: int | None = None,
    ) -> dict[str, Any]:
        """
        Close a dispute with an admin ruling.

        With refund_to_client the task is cancelled and refund_percentage
        (default 100) of the price goes back to the payer. Without it the
        task keeps its status and the freeze is lifted.
        """
        require_text(resolution, "resolution", self._max_description_length)
        if refund_to_client:
            refund_percentage = require_percentage(
                100 if refund_percentage is None else refund_percentage
            )

        with self._store.transaction():
            load_admin(self._store, admin_id)
            dispute = self._load_active_dispute(dispute_id)
            task = load_task(self._store, dispute["task_id"])
            now = now_iso()
            ruling = {
                "dispute_status": "resolved",
                "dispute_resolution": resolution,
                "dispute_resolved_by": admin_id,
                "dispute_resolved_at": now,
            }
            refund_amount: int | None = None
            if refund_to_client:
                require_status(task, INTERRUPTIBLE_STATUSES, "refund")
                updated = transition_task(
                    self._store,
                    task,
                    {
                        **ruling,
                        "status": "cancelled",
                        "cancellation_status": "approved",
                        "cancelled_at": now,
                        "cancelled_by": admin_id,
                    },
                )
                refund_amount = self._escrow.refund_to_payer(
                    updated,
                    refund_percentage if refund_percentage is not None else 100,
                    f"Dispute refund for '{updated['title']}'",
                )
            else:
                refund_percentage = None
                updated = transition_task(
                    self._store,
                    task,
                    {**ruling, "cancellation_status": "none", "cancellation_requested": False},
                )

            dispute_updates = {
                "status": "resolved",
                "resolution": resolution,
                "resolved_by": admin_id,
                "resolved_at": now,
                "refund_percentage": refund_percentage,
                "refund_amount": refund_amount,
            }
            self._update_dispute(dispute_id, dispute_updates)
            resolved = {**dispute, **dispute_updates}

        self._logger.info(
            "Dispute resolved",
            extra={
                "dispute_id": dispute_id,
                "task_id": task["task_id"],
                "admin_id": admin_id,
                "refund_amount": refund_amount,
            },
        )
        self._emitter.emit(self._dispute_resolved_notifications(updated, resolved))
        return resolved

    def mark_dispute_under_review(self, admin_id: str, dispute_id: str) -> dict[str, Any]:
        """Record that an admin has picked the dispute up."""
        with self._store.transaction():
            load_admin(self._store, admin_id)
            dispute = self._load_active_dispute(dispute_id)
            if dispute["status"] != "open":
                raise ServiceError(
                    "INVALID_TRANSITION",
                    f"Cannot review a dispute in '{dispute['status']}' status",
                    409,
                    {},
                )
            task = load_task(self._store, dispute["task_id"])
            self._update_dispute(dispute_id, {"status": "under_review"})
            transition_task(self._store, task, {"dispute_status": "under_review"})

        self._logger.info(
            "Dispute under review", extra={"dispute_id": dispute_id, "admin_id": admin_id}
        )
        return {**dispute, "status": "under_review"}

    def dismiss_dispute(self, admin_id: str, dispute_id: str, resolution: str) -> dict[str, Any]:
        """Reject a dispute without moving funds; the task continues normally."""
        require_text(resolution, "resolution", self._max_description_length)

        with self._store.transaction():
            load_admin(self._store, admin_id)
            dispute = self._load_active_dispute(dispute_id)
            task = load_task(self._store, dispute["task_id"])
            now = now_iso()
            updated = transition_task(
                self._store,
                task,
                {
                    "dispute_status": "rejected",
                    "dispute_resolution": resolution,
                    "dispute_resolved_by": admin_id,
                    "dispute_resolved_at": now,
                    "cancellation_status": "none",
                    "cancellation_requested": False,
                },
            )
            dispute_updates = {
                "status": "rejected",
                "resolution": resolution,
                "resolved_by": admin_id,
                "resolved_at": now,
            }
            self._update_dispute(dispute_id, dispute_updates)
            dismissed = {**dispute, **dispute_updates}

        self._logger.info("Dispute dismissed", extra={"dispute_id": dispute_id, "admin_id": admin_id})
        self._emitter.emit(self._dispute_resolved_notifications(updated, dismissed))
        return dismissed

    def force_cancel_task(self, admin_id: str, task_id: str, reason: str) -> dict[str, Any]:
        """
        Remove a non-terminal task as an admin.

        Any escrow still held is refunded in full and an active dispute is
        closed with the given reason.
        """
        require_text(reason, "reason", self._max_reason_length)

        with self._store.transaction():
            load_admin(self._store, admin_id)
            task = load_task(self._store, task_id)
            if task["status"] in TERMINAL_STATUSES:
                raise ServiceError(
                    "INVALID_TRANSITION",
                    f"Cannot cancel a task in '{task['status']}' status",
                    409,
                    {"status": task["status"]},
                )
            now = now_iso()
            updates: dict[str, Any] = {
                "status": "cancelled",
                "cancelled_at": now,
                "cancelled_by": admin_id,
                "cancellation_reason": reason,
            }
            if task["cancellation_status"] == "pending":
                updates["cancellation_status"] = "approved"

            active_disputes = [
                dispute
                for dispute in self._store.list_disputes_for_task(task_id)
                if dispute["status"] in ACTIVE_DISPUTE_STATUSES
            ]
            if active_disputes:
                updates.update(
                    {
                        "dispute_status": "resolved",
                        "dispute_resolution": reason,
                        "dispute_resolved_by": admin_id,
                        "dispute_resolved_at": now,
                        "cancellation_status": "approved",
                    }
                )
            cancelled = transition_task(self._store, task, updates)

            escrow = self._store.get_escrow_for_task(task_id)
            refunded = escrow is not None and escrow["status"] == "locked"
            refund_amount = 0
            if refunded:
                refund_amount = self._escrow.refund_to_payer(
                    cancelled, 100, f"Refund for removed '{cancelled['title']}'"
                )
            for dispute in active_disputes:
                self._update_dispute(
                    dispute["dispute_id"],
                    {
                        "status": "resolved",
                        "resolution": reason,
                        "resolved_by": admin_id,
                        "resolved_at": now,
                        "refund_percentage": 100 if refunded else None,
                        "refund_amount": refund_amount,
                    },
                )

        self._logger.info(
            "Task force-cancelled",
            extra={"task_id": task_id, "admin_id": admin_id, "refund_amount": refund_amount},
        )
        self._emitter.emit(
            Notification(
                user_id=user_id,
                type="task_cancelled",
                title="Task cancelled",
                message=f"'{cancelled['title']}' was cancelled by an administrator",
                related_id=task_id,
                related_type="task",
                reason=reason,
                refund_amount=refund_amount if user_id == permissions.payer_id(cancelled) else None,
            )
            for user_id in _parties(cancelled)
        )
        return cancelled

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_dispute(self, actor_id: str, dispute_id: str) -> dict[str, Any]:
        """A dispute, visible to its parties and to admins."""
        actor = load_active_user(self._store, actor_id)
        dispute = self._store.get_dispute(dispute_id)
        if dispute is None:
            raise ServiceError("DISPUTE_NOT_FOUND", "Dispute not found", 404, {})
        if actor_id not in (dispute["opened_by"], dispute["against"]) and not (
            permissions.can_moderate(actor)
        ):
            raise ServiceError("FORBIDDEN", "You cannot view this dispute", 403, {})
        return dispute

    def list_disputes(self, actor_id: str) -> list[dict[str, Any]]:
        """Disputes opened by or against the actor."""
        load_active_user(self._store, actor_id)
        return self._store.list_disputes(party_id=actor_id, status=None, limit=None, offset=None)

    def admin_list_disputes(
        self,
        admin_id: str,
        *,
        status: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        load_admin(self._store, admin_id)
        if status is not None and status not in DISPUTE_STATUSES:
            raise ServiceError(
                "INVALID_PAYLOAD", f"status must be one of {sorted(DISPUTE_STATUSES)}", 400, {}
            )
        return self._store.list_disputes(party_id=None, status=status, limit=limit, offset=offset)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_not_frozen(task: dict[str, Any]) -> None:
        if task["cancellation_status"] == "disputed" or (
            task["dispute_status"] in ACTIVE_DISPUTE_STATUSES
        ):
            raise ServiceError(
                "INVALID_TRANSITION",
                "Cancellation is frozen while a dispute is pending",
                409,
                {"dispute_status": task["dispute_status"]},
            )

    def _load_pending_for_response(self, actor_id: str, task_id: str) -> dict[str, Any]:
        actor = load_active_user(self._store, actor_id)
        task = load_task(self._store, task_id)
        if not permissions.is_party(actor, task):
            raise ServiceError(
                "FORBIDDEN", "Only a party to this task can answer a cancellation", 403, {}
            )
        if task["cancellation_status"] != "pending":
            raise ServiceError(
                "NO_PENDING_REQUEST", "There is no pending cancellation request", 409, {}
            )
        if not permissions.can_respond_to_cancellation(actor, task):
            raise ServiceError(
                "FORBIDDEN", "You cannot answer your own cancellation request", 403, {}
            )
        require_status(task, INTERRUPTIBLE_STATUSES, "cancel")
        return task

    def _load_active_dispute(self, dispute_id: str) -> dict[str, Any]:
        dispute = self._store.get_dispute(dispute_id)
        if dispute is None:
            raise ServiceError("DISPUTE_NOT_FOUND", "Dispute not found", 404, {})
        if dispute["status"] not in ACTIVE_DISPUTE_STATUSES:
            raise ServiceError(
                "INVALID_TRANSITION",
                f"Dispute is already {dispute['status']}",
                409,
                {"status": dispute["status"]},
            )
        return dispute

    def _update_dispute(self, dispute_id: str, updates: dict[str, Any]) -> None:
        changed = self._store.update_dispute(
            dispute_id, updates, expected_statuses=ACTIVE_DISPUTE_STATUSES
        )
        if changed != 1:
            raise ServiceError(
                "INVALID_TRANSITION", "Dispute changed concurrently; re-read and retry", 409, {}
            )

    @staticmethod
    def _cancellation_approved_notifications(
        task: dict[str, Any], refund_amount: int, reason: str | None
    ) -> list[Notification]:
        payer = permissions.payer_id(task)
        return [
            Notification(
                user_id=user_id,
                type="cancellation_approved",
                title="Cancellation approved",
                message=f"'{task['title']}' has been cancelled",
                related_id=task["task_id"],
                related_type="task",
                refund_amount=refund_amount if user_id == payer else None,
                reason=reason,
            )
            for user_id in _parties(task)
        ]

    @staticmethod
    def _dispute_resolved_notifications(
        task: dict[str, Any], dispute: dict[str, Any]
    ) -> list[Notification]:
        outcome = "resolved" if dispute["status"] == "resolved" else "dismissed"
        return [
            Notification(
                user_id=user_id,
                type="dispute_resolved",
                title=f"Dispute {outcome}",
                message=f"The dispute for '{task['title']}' was {outcome}",
                related_id=dispute["dispute_id"],
                related_type="dispute",
                refund_amount=dispute.get("refund_amount"),
                reason=dispute["resolution"],
                dispute_id=dispute["dispute_id"],
            )
            for user_id in _parties(task)
        ]
