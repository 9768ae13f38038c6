"""
Capability predicates for task transitions.

Each predicate answers whether an actor may perform one transition on a
task. Status checks are not made here; they belong to the transition
itself so that a stale status surfaces as INVALID_TRANSITION.
"""

from __future__ import annotations

from typing import Any

from marketplace_service.domain import (
    ROLE_ADMIN,
    ROLE_CLIENT,
    ROLE_FREELANCER,
    TASK_TYPE_GIG,
    TASK_TYPE_JOB,
)


def payer_id(task: dict[str, Any]) -> str | None:
    """The party whose money is escrowed: author of a job, client of a gig order."""
    if task["type"] == TASK_TYPE_JOB:
        return str(task["author_id"])
    return task["assignee_id"]


def worker_id(task: dict[str, Any]) -> str | None:
    """The party who delivers: assignee of a job, author of a gig."""
    if task["type"] == TASK_TYPE_JOB:
        return task["assignee_id"]
    return str(task["author_id"])


def counterparty_id(task: dict[str, Any], user_id: str) -> str | None:
    """The other party of a task from user_id's point of view."""
    if user_id == task["author_id"]:
        return task["assignee_id"]
    if user_id == task["assignee_id"]:
        return str(task["author_id"])
    return None


def is_party(actor: dict[str, Any], task: dict[str, Any]) -> bool:
    return actor["user_id"] in (task["author_id"], task["assignee_id"])


def can_moderate(actor: dict[str, Any]) -> bool:
    return bool(actor["role"] == ROLE_ADMIN)


def can_create(actor: dict[str, Any], task_type: str) -> bool:
    """Clients post jobs; freelancers post gigs."""
    if task_type == TASK_TYPE_JOB:
        return bool(actor["role"] == ROLE_CLIENT)
    if task_type == TASK_TYPE_GIG:
        return bool(actor["role"] == ROLE_FREELANCER)
    return False


def can_claim(actor: dict[str, Any], task: dict[str, Any]) -> bool:
    """Freelancers take jobs; clients order gigs. Nobody claims their own task."""
    if actor["user_id"] == task["author_id"]:
        return False
    if task["type"] == TASK_TYPE_JOB:
        return bool(actor["role"] == ROLE_FREELANCER)
    return bool(actor["role"] == ROLE_CLIENT) and task["parent_task_id"] is None


def can_submit(actor: dict[str, Any], task: dict[str, Any]) -> bool:
    return worker_id(task) == actor["user_id"]


def can_approve(actor: dict[str, Any], task: dict[str, Any]) -> bool:
    return payer_id(task) == actor["user_id"]


def can_cancel_directly(actor: dict[str, Any], task: dict[str, Any]) -> bool:
    return bool(actor["user_id"] == task["author_id"])


def can_request_cancellation(actor: dict[str, Any], task: dict[str, Any]) -> bool:
    return is_party(actor, task)


def can_respond_to_cancellation(actor: dict[str, Any], task: dict[str, Any]) -> bool:
    """Only the party who did not ask may approve or reject a cancellation."""
    return is_party(actor, task) and actor["user_id"] != task["cancellation_requested_by"]


def can_open_dispute(actor: dict[str, Any], task: dict[str, Any]) -> bool:
    return is_party(actor, task)
