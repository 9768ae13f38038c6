"""Unit tests for accounts, wallets, PRO upgrades and moderation."""

from __future__ import annotations

import pytest
from service_commons.exceptions import ServiceError


@pytest.mark.unit
def test_register_user_starts_empty(market) -> None:
    user = market.accounts.register_user("Ada", "Freelancer")

    assert user["user_id"].startswith("u-")
    assert user["balance"] == 0
    assert user["level"] == 1
    assert user["is_pro"] is False
    assert market.accounts.get_user(user["user_id"])["name"] == "Ada"


@pytest.mark.unit
@pytest.mark.parametrize("role", ["Admin", "Moderator", ""])
def test_register_rejects_non_marketplace_roles(market, role) -> None:
    with pytest.raises(ServiceError) as exc_info:
        market.accounts.register_user("Eve", role)
    assert exc_info.value.error == "INVALID_PAYLOAD"


@pytest.mark.unit
def test_register_duplicate_id(market) -> None:
    market.accounts.register_user("Ada", "Client", "u-ada")
    with pytest.raises(ServiceError) as exc_info:
        market.accounts.register_user("Ada again", "Client", "u-ada")
    assert exc_info.value.error == "USER_ALREADY_EXISTS"
    assert exc_info.value.status_code == 409


@pytest.mark.unit
def test_ensure_platform_account_is_idempotent(market) -> None:
    first = market.accounts.ensure_platform_account(market.platform_id, "Platform")
    second = market.accounts.ensure_platform_account(market.platform_id, "Renamed")
    assert first["user_id"] == second["user_id"] == market.platform_id
    assert second["role"] == "Admin"


@pytest.mark.unit
def test_topup_and_withdraw(market) -> None:
    user = market.user("Client")

    topped = market.accounts.topup(user, 1200)
    withdrawn = market.accounts.withdraw(user, 200)

    assert topped["balance"] == 1200
    assert withdrawn["balance"] == 1000
    assert withdrawn["transaction"]["type"] == "withdraw"
    assert [tx["type"] for tx in market.accounts.list_transactions(user)] == ["withdraw", "topup"]

    with pytest.raises(ServiceError) as exc_info:
        market.accounts.withdraw(user, 1001)
    assert exc_info.value.error == "INSUFFICIENT_BALANCE"


@pytest.mark.unit
def test_buy_pro_charges_once(market) -> None:
    worker = market.user("Freelancer", 1000)

    result = market.accounts.buy_pro(worker)

    assert result["user"]["is_pro"] is True
    assert result["transaction"]["type"] == "pay_pro"
    assert market.balance(worker) == 10
    assert market.sink.types_for(worker) == ["system"]

    with pytest.raises(ServiceError) as exc_info:
        market.accounts.buy_pro(worker)
    assert exc_info.value.error == "ALREADY_PRO"
    assert market.balance(worker) == 10


@pytest.mark.unit
def test_buy_pro_without_funds(market) -> None:
    worker = market.user("Freelancer", 100)
    with pytest.raises(ServiceError) as exc_info:
        market.accounts.buy_pro(worker)
    assert exc_info.value.error == "INSUFFICIENT_BALANCE"
    assert market.accounts.get_user(worker)["is_pro"] is False


@pytest.mark.unit
def test_ban_blocks_actions_until_unban(market) -> None:
    admin = market.user("Admin")
    client = market.user("Client", 500)

    banned = market.accounts.ban_user(admin, client, "Chargeback fraud")
    assert banned["is_banned"] is True
    assert banned["ban_reason"] == "Chargeback fraud"

    with pytest.raises(ServiceError) as exc_info:
        market.accounts.withdraw(client, 100)
    assert exc_info.value.error == "ACCOUNT_SUSPENDED"

    market.accounts.unban_user(admin, client)
    assert market.accounts.withdraw(client, 100)["balance"] == 400
    assert market.sink.types_for(client) == ["system", "system"]


@pytest.mark.unit
def test_ban_requires_admin_and_spares_admins(market) -> None:
    admin = market.user("Admin")
    client = market.user("Client")

    with pytest.raises(ServiceError) as exc_info:
        market.accounts.ban_user(client, admin, "Revenge")
    assert exc_info.value.error == "FORBIDDEN"

    with pytest.raises(ServiceError) as exc_info:
        market.accounts.ban_user(admin, market.platform_id, "Oops")
    assert exc_info.value.error == "FORBIDDEN"


@pytest.mark.unit
def test_public_profile_shows_reviews(market) -> None:
    task_id, client, worker = market.job_in_review(1000)
    market.tasks.approve_task(client, task_id, 4, "Good job")

    profile = market.accounts.get_public_profile(worker)

    assert profile["rating_average"] == 4.0
    assert profile["completed_jobs"] == 1
    assert profile["recent_reviews"][0]["review"] == "Good job"
    assert "balance" not in profile
    assert market.accounts.get_public_profile(client)["rating_average"] is None


@pytest.mark.unit
def test_saved_tasks_toggle(market) -> None:
    task_id, _client, worker = market.job_in_progress(100)

    assert market.accounts.toggle_saved_task(worker, task_id) == {"task_id": task_id, "saved": True}
    assert [t["task_id"] for t in market.accounts.list_saved_tasks(worker)] == [task_id]
    assert market.accounts.toggle_saved_task(worker, task_id)["saved"] is False
    assert market.accounts.list_saved_tasks(worker) == []

    with pytest.raises(ServiceError) as exc_info:
        market.accounts.toggle_saved_task(worker, "t-missing")
    assert exc_info.value.error == "TASK_NOT_FOUND"


@pytest.mark.unit
def test_update_profile_changes_only_given_fields(market) -> None:
    worker = market.user("Freelancer")

    market.accounts.update_profile(worker, bio="Logo designer", telegram="@ada")
    updated = market.accounts.update_profile(worker, open_for_work=False, telegram="")

    assert updated["bio"] == "Logo designer"
    assert updated["telegram"] == ""
    assert updated["open_for_work"] is False
    profile = market.accounts.get_public_profile(worker)
    assert profile["bio"] == "Logo designer"
    assert profile["open_for_work"] is False
    assert "telegram" not in profile


@pytest.mark.unit
@pytest.mark.parametrize(
    "kwargs",
    [{"bio": "x" * 10001}, {"photo_url": 42}, {"open_for_work": "yes"}],
)
def test_update_profile_rejects_bad_fields(market, kwargs) -> None:
    worker = market.user("Freelancer")
    with pytest.raises(ServiceError) as exc_info:
        market.accounts.update_profile(worker, **kwargs)
    assert exc_info.value.error == "INVALID_PAYLOAD"
    assert market.accounts.get_user(worker)["bio"] == ""


@pytest.mark.unit
def test_banned_user_cannot_update_profile(market) -> None:
    worker = market.user("Freelancer")
    market.accounts.ban_user(market.platform_id, worker, "Spam")
    with pytest.raises(ServiceError) as exc_info:
        market.accounts.update_profile(worker, bio="Back")
    assert exc_info.value.error == "ACCOUNT_SUSPENDED"


@pytest.mark.unit
def test_verify_and_unverify(market) -> None:
    worker = market.user("Freelancer")

    verified = market.accounts.verify_user(market.platform_id, worker)

    assert verified["is_verified"] is True
    assert market.accounts.get_public_profile(worker)["is_verified"] is True
    assert market.sink.types_for(worker) == ["system"]

    unverified = market.accounts.unverify_user(market.platform_id, worker)
    assert unverified["is_verified"] is False
    assert market.sink.types_for(worker) == ["system"]


@pytest.mark.unit
def test_verify_requires_admin(market) -> None:
    client = market.user("Client")
    worker = market.user("Freelancer")
    with pytest.raises(ServiceError) as exc_info:
        market.accounts.verify_user(client, worker)
    assert exc_info.value.error == "FORBIDDEN"

    with pytest.raises(ServiceError) as exc_info:
        market.accounts.verify_user(market.platform_id, "u-missing")
    assert exc_info.value.error == "USER_NOT_FOUND"
