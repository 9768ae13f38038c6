"""Unit tests for notification inbox endpoints."""

import pytest

from tests.helpers import as_user, register


async def _claimed_job(client) -> str:
    await register(client, "u-client", "Client", 300)
    await register(client, "u-worker", "Freelancer")
    response = await client.post(
        "/tasks",
        json={
            "type": "job",
            "title": "Write tests",
            "description": "For the parser",
            "category": "dev",
            "price": 300,
        },
        headers=as_user("u-client"),
    )
    task_id = response.json()["task_id"]
    await client.post(f"/tasks/{task_id}/claim", headers=as_user("u-worker"))
    return task_id


@pytest.mark.unit
async def test_inbox_lists_and_counts(client):
    task_id = await _claimed_job(client)

    count = await client.get("/notifications/unread-count", headers=as_user("u-worker"))
    assert count.json() == {"unread": 1}

    listing = await client.get("/notifications", headers=as_user("u-worker"))
    [notification] = listing.json()["notifications"]
    assert notification["type"] == "task_assigned"
    assert notification["related_id"] == task_id
    assert notification["read"] is False


@pytest.mark.unit
async def test_mark_one_and_all_read(client):
    await _claimed_job(client)
    listing = await client.get("/notifications", headers=as_user("u-client"))
    notification_id = listing.json()["notifications"][0]["notification_id"]

    response = await client.post(
        f"/notifications/{notification_id}/read", headers=as_user("u-client")
    )
    assert response.status_code == 200
    assert response.json()["read"] is True

    unread = await client.get(
        "/notifications", params={"unread_only": "true"}, headers=as_user("u-client")
    )
    assert unread.json()["notifications"] == []

    response = await client.post("/notifications/read-all", headers=as_user("u-worker"))
    assert response.json() == {"updated": 1}


@pytest.mark.unit
async def test_foreign_notification_not_found(client):
    await _claimed_job(client)
    listing = await client.get("/notifications", headers=as_user("u-client"))
    notification_id = listing.json()["notifications"][0]["notification_id"]

    response = await client.post(
        f"/notifications/{notification_id}/read", headers=as_user("u-worker")
    )
    assert response.status_code == 404
    assert response.json()["error"] == "NOTIFICATION_NOT_FOUND"
