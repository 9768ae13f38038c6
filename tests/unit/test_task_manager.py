"""Unit tests for the task lifecycle: create, claim, submit, approve, cancel."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest
from service_commons.exceptions import ServiceError


def _error(exc_info: pytest.ExceptionInfo[ServiceError]) -> str:
    return exc_info.value.error


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_create_job_escrows_price(market) -> None:
    client = market.user("Client", 5000)

    task = market.tasks.create_task(client, "job", "Write copy", "Landing page", "writing", 3000)

    assert task["status"] == "open"
    assert market.balance(client) == 2000
    escrow = market.escrow.get_escrow(task["task_id"])
    assert escrow["status"] == "locked"
    assert escrow["amount"] == 3000
    [payment] = market.ledger.get_transactions(client, tx_type="pay_job")
    assert payment["amount"] == -3000
    assert payment["task_id"] == task["task_id"]


@pytest.mark.unit
def test_create_job_without_funds_leaves_nothing_behind(market) -> None:
    client = market.user("Client", 100)

    with pytest.raises(ServiceError) as exc_info:
        market.tasks.create_task(client, "job", "Write copy", "Landing page", "writing", 3000)

    assert _error(exc_info) == "INSUFFICIENT_BALANCE"
    assert market.balance(client) == 100
    assert market.tasks.list_tasks() == []


@pytest.mark.unit
def test_create_gig_holds_no_funds(market) -> None:
    freelancer = market.user("Freelancer")
    gig = market.tasks.create_task(freelancer, "gig", "Logo", "Any logo", "design", 1500)
    assert gig["status"] == "open"
    assert market.escrow.get_escrow(gig["task_id"]) is None


@pytest.mark.unit
@pytest.mark.parametrize(
    ("role", "task_type"),
    [("Freelancer", "job"), ("Client", "gig")],
)
def test_create_with_wrong_role_forbidden(market, role, task_type) -> None:
    author = market.user(role, 1000)
    with pytest.raises(ServiceError) as exc_info:
        market.tasks.create_task(author, task_type, "Title", "Desc", "misc", 100)
    assert _error(exc_info) == "FORBIDDEN"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("kwargs", "code"),
    [
        ({"price": 0}, "INVALID_PRICE"),
        ({"price": -1}, "INVALID_PRICE"),
        ({"price": 10.5}, "INVALID_PRICE"),
        ({"price": 1_000_000_001}, "INVALID_PRICE"),
        ({"price": 2**63}, "INVALID_PRICE"),
        ({"task_type": "contest"}, "INVALID_PAYLOAD"),
        ({"title": "   "}, "INVALID_PAYLOAD"),
        ({"title": "x" * 201}, "INVALID_PAYLOAD"),
    ],
)
def test_create_validates_input(market, kwargs, code) -> None:
    client = market.user("Client", 1000)
    args = {
        "task_type": "job",
        "title": "Title",
        "description": "Desc",
        "category": "misc",
        "price": 100,
        **kwargs,
    }
    with pytest.raises(ServiceError) as exc_info:
        market.tasks.create_task(client, **args)
    assert _error(exc_info) == code


@pytest.mark.unit
def test_banned_user_cannot_create(market) -> None:
    client = market.user("Client", 1000)
    market.accounts.ban_user(market.platform_id, client, "spam")
    with pytest.raises(ServiceError) as exc_info:
        market.tasks.create_task(client, "job", "Title", "Desc", "misc", 100)
    assert _error(exc_info) == "ACCOUNT_SUSPENDED"


# ---------------------------------------------------------------------------
# claim
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_claim_job_assigns_worker_and_notifies_both(market) -> None:
    client = market.user("Client", 1000)
    worker = market.user("Freelancer")
    task = market.tasks.create_task(client, "job", "Title", "Desc", "misc", 1000)

    claimed = market.tasks.claim_task(worker, task["task_id"])

    assert claimed["status"] == "in_progress"
    assert claimed["assignee_id"] == worker
    assert market.balance(client) == 0
    assert market.sink.types_for(client) == ["task_assigned"]
    assert market.sink.types_for(worker) == ["task_assigned"]


@pytest.mark.unit
def test_claim_twice_is_invalid_transition(market) -> None:
    client = market.user("Client", 1000)
    first = market.user("Freelancer")
    second = market.user("Freelancer")
    task = market.tasks.create_task(client, "job", "Title", "Desc", "misc", 1000)
    market.tasks.claim_task(first, task["task_id"])

    with pytest.raises(ServiceError) as exc_info:
        market.tasks.claim_task(second, task["task_id"])
    assert _error(exc_info) == "INVALID_TRANSITION"


@pytest.mark.unit
def test_client_cannot_claim_job(market) -> None:
    author = market.user("Client", 1000)
    other_client = market.user("Client")
    task = market.tasks.create_task(author, "job", "Title", "Desc", "misc", 1000)
    with pytest.raises(ServiceError) as exc_info:
        market.tasks.claim_task(other_client, task["task_id"])
    assert _error(exc_info) == "FORBIDDEN"


@pytest.mark.unit
def test_gig_order_creates_in_progress_order_and_escrows_from_client(market) -> None:
    freelancer = market.user("Freelancer")
    client = market.user("Client", 2000)
    gig = market.tasks.create_task(freelancer, "gig", "Logo", "Any logo", "design", 1500)

    order = market.tasks.claim_task(client, gig["task_id"])

    assert order["task_id"] != gig["task_id"]
    assert order["parent_task_id"] == gig["task_id"]
    assert order["status"] == "in_progress"
    assert order["author_id"] == freelancer
    assert order["assignee_id"] == client
    assert market.tasks.get_task(gig["task_id"])["status"] == "open"
    assert market.balance(client) == 500
    [payment] = market.ledger.get_transactions(client, tx_type="pay_gig")
    assert payment["amount"] == -1500


@pytest.mark.unit
def test_pro_listing_flag_is_inherited_by_orders(market) -> None:
    pro_freelancer = market.user("Freelancer", pro=True)
    client = market.user("Client", 2000)
    gig = market.tasks.create_task(pro_freelancer, "gig", "Logo", "Any logo", "design", 1500)
    job = market.tasks.create_task(client, "job", "Copy", "Landing page", "writing", 100)

    order = market.tasks.claim_task(client, gig["task_id"])

    assert gig["is_pro"] is True
    assert order["is_pro"] is True
    assert market.tasks.get_task(order["task_id"])["is_pro"] is True
    assert job["is_pro"] is False


@pytest.mark.unit
def test_gig_order_without_funds_creates_no_order(market) -> None:
    freelancer = market.user("Freelancer")
    client = market.user("Client", 100)
    gig = market.tasks.create_task(freelancer, "gig", "Logo", "Any logo", "design", 1500)

    with pytest.raises(ServiceError) as exc_info:
        market.tasks.claim_task(client, gig["task_id"])

    assert _error(exc_info) == "INSUFFICIENT_BALANCE"
    assert len(market.tasks.list_tasks()) == 1
    assert market.sink.published == []


# ---------------------------------------------------------------------------
# submit / approve
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_submit_by_non_worker_forbidden(market) -> None:
    task_id, client, _worker = market.job_in_progress(1000)
    with pytest.raises(ServiceError) as exc_info:
        market.tasks.submit_task(client, task_id, "files/x.zip")
    assert _error(exc_info) == "FORBIDDEN"


@pytest.mark.unit
def test_submit_moves_to_review_and_notifies_payer(market) -> None:
    task_id, client, worker = market.job_in_progress(1000)

    submitted = market.tasks.submit_task(worker, task_id, "files/x.zip", "x.zip")

    assert submitted["status"] == "review"
    assert submitted["submission_ref"] == "files/x.zip"
    assert submitted["submitted_at"] is not None
    assert "task_submitted" in market.sink.types_for(client)


@pytest.mark.unit
def test_approve_pays_worker_and_platform_commission(market) -> None:
    """price 10000, non-PRO worker: +9500 earn to worker, +500 commission to platform."""
    task_id, client, worker = market.job_in_review(10000)

    result = market.tasks.approve_task(client, task_id, 5, "Great work")

    assert result["task"]["status"] == "completed"
    assert result["task"]["rating"] == 5
    assert market.balance(worker) == 9500
    assert market.balance(market.platform_id) == 500
    [earn] = market.ledger.get_transactions(worker, tx_type="earn")
    assert earn["amount"] == 9500
    assert earn["commission"] == 500
    [commission] = market.ledger.get_transactions(market.platform_id, tx_type="commission_earn")
    assert commission["amount"] == 500
    assert commission["counterparty_id"] == worker

    escrow = market.escrow.get_escrow(task_id)
    assert escrow["status"] == "released"
    assert escrow["payout_amount"] + escrow["commission_amount"] == 10000

    worker_after = result["worker"]
    assert worker_after["completed_jobs"] == 1
    assert worker_after["xp"] == 100
    assert worker_after["rating_sum"] == 5
    assert worker_after["rating_count"] == 1
    assert market.sink.types_for(worker)[-2:] == ["payment_received", "review_received"]


@pytest.mark.unit
def test_approve_pro_worker_pays_no_commission(market) -> None:
    task_id, client, worker = market.job_in_review(10000, worker_pro=True)

    market.tasks.approve_task(client, task_id, 4, "Fine")

    assert market.balance(worker) == 10000
    assert market.balance(market.platform_id) == 0
    assert all(tx["type"] != "commission_earn" for tx in market.ledger.get_task_transactions(task_id))


@pytest.mark.unit
def test_gig_order_approve_pays_gig_author(market) -> None:
    freelancer = market.user("Freelancer")
    client = market.user("Client", 2000)
    gig = market.tasks.create_task(freelancer, "gig", "Logo", "Any logo", "design", 2000)
    order = market.tasks.claim_task(client, gig["task_id"])
    market.tasks.submit_task(freelancer, order["task_id"], "files/logo.png")

    market.tasks.approve_task(client, order["task_id"], 5, "")

    assert market.balance(freelancer) == 1900
    assert market.balance(market.platform_id) == 100


@pytest.mark.unit
def test_approve_twice_second_is_invalid_transition(market) -> None:
    task_id, client, worker = market.job_in_review(10000)
    market.tasks.approve_task(client, task_id, 5, "Great")
    balances = (market.balance(worker), market.balance(market.platform_id))

    with pytest.raises(ServiceError) as exc_info:
        market.tasks.approve_task(client, task_id, 5, "Again")

    assert _error(exc_info) == "INVALID_TRANSITION"
    assert (market.balance(worker), market.balance(market.platform_id)) == balances


@pytest.mark.unit
def test_concurrent_approvals_exactly_one_succeeds(market) -> None:
    task_id, client, worker = market.job_in_review(10000)

    def approve(_: int) -> str:
        try:
            market.tasks.approve_task(client, task_id, 5, "Race")
        except ServiceError as exc:
            return exc.error
        return "ok"

    with ThreadPoolExecutor(max_workers=2) as pool:
        outcomes = sorted(pool.map(approve, range(2)))

    assert outcomes == ["INVALID_TRANSITION", "ok"]
    assert market.balance(worker) == 9500
    assert len(market.ledger.get_transactions(worker, tx_type="earn")) == 1


@pytest.mark.unit
def test_approve_by_worker_forbidden(market) -> None:
    task_id, _client, worker = market.job_in_review(1000)
    with pytest.raises(ServiceError) as exc_info:
        market.tasks.approve_task(worker, task_id, 5, "Self")
    assert _error(exc_info) == "FORBIDDEN"


@pytest.mark.unit
@pytest.mark.parametrize("rating", [0, 6, 3.5, True])
def test_approve_rejects_bad_rating(market, rating) -> None:
    task_id, client, _worker = market.job_in_review(1000)
    with pytest.raises(ServiceError) as exc_info:
        market.tasks.approve_task(client, task_id, rating, "")
    assert _error(exc_info) == "INVALID_RATING"
    assert market.tasks.get_task(task_id)["status"] == "review"


@pytest.mark.unit
def test_approve_before_submission_is_invalid_transition(market) -> None:
    task_id, client, _worker = market.job_in_progress(1000)
    with pytest.raises(ServiceError) as exc_info:
        market.tasks.approve_task(client, task_id, 5, "")
    assert _error(exc_info) == "INVALID_TRANSITION"


@pytest.mark.unit
def test_level_up_after_enough_xp(market) -> None:
    client = market.user("Client", 10 * 100)
    worker = market.user("Freelancer")
    for _ in range(10):
        task = market.tasks.create_task(client, "job", "Small", "Small job", "misc", 100)
        market.tasks.claim_task(worker, task["task_id"])
        market.tasks.submit_task(worker, task["task_id"], "files/out.txt")
        result = market.tasks.approve_task(client, task["task_id"], 4, "")

    assert result["worker"]["xp"] == 1000
    assert result["worker"]["level"] == 2
    assert result["worker"]["completed_jobs"] == 10


@pytest.mark.unit
def test_level_rises_at_most_one_step_per_approval(market) -> None:
    task_id, client, worker = market.job_in_review(100)
    market.store.update_user(worker, {"xp": 2950})

    result = market.tasks.approve_task(client, task_id, 5, "")

    assert result["worker"]["xp"] == 3050
    assert result["worker"]["level"] == 2


@pytest.mark.unit
def test_approve_closes_pending_cancellation(market) -> None:
    task_id, client, worker = market.job_in_review(1000)
    market.cancellations.request_cancellation(worker, task_id, "Changed my mind")

    result = market.tasks.approve_task(client, task_id, 5, "")

    assert result["task"]["cancellation_status"] == "rejected"
    assert result["task"]["cancellation_requested"] is False


# ---------------------------------------------------------------------------
# cancel-direct
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_cancel_open_job_refunds_escrow(market) -> None:
    client = market.user("Client", 1000)
    task = market.tasks.create_task(client, "job", "Title", "Desc", "misc", 1000)

    cancelled = market.tasks.cancel_task(client, task["task_id"], "No longer needed")

    assert cancelled["status"] == "cancelled"
    assert market.balance(client) == 1000
    [refund] = market.ledger.get_transactions(client, tx_type="refund")
    assert refund["amount"] == 1000
    assert market.escrow.get_escrow(task["task_id"])["status"] == "refunded"


@pytest.mark.unit
def test_cancel_open_gig_moves_no_funds(market) -> None:
    freelancer = market.user("Freelancer")
    gig = market.tasks.create_task(freelancer, "gig", "Logo", "Any", "design", 500)

    cancelled = market.tasks.cancel_task(freelancer, gig["task_id"])

    assert cancelled["status"] == "cancelled"
    assert market.ledger.get_transactions(freelancer) == []


@pytest.mark.unit
def test_cancel_direct_requires_author_and_open_status(market) -> None:
    task_id, client, worker = market.job_in_progress(1000)

    with pytest.raises(ServiceError) as exc_info:
        market.tasks.cancel_task(client, task_id)
    assert _error(exc_info) == "INVALID_TRANSITION"

    other = market.user("Client", 100)
    open_task = market.tasks.create_task(other, "job", "Title", "Desc", "misc", 100)
    with pytest.raises(ServiceError) as exc_info:
        market.tasks.cancel_task(worker, open_task["task_id"])
    assert _error(exc_info) == "FORBIDDEN"


# ---------------------------------------------------------------------------
# queries
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_get_missing_task(market) -> None:
    with pytest.raises(ServiceError) as exc_info:
        market.tasks.get_task("t-missing")
    assert _error(exc_info) == "TASK_NOT_FOUND"


@pytest.mark.unit
def test_stats_cover_every_status(market) -> None:
    market.job_in_progress(100)
    stats = market.tasks.get_stats()
    assert stats["total"] == 1
    assert stats["in_progress"] == 1
    assert stats["completed"] == 0
