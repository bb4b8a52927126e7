"""
Notification inbox and health endpoint tests.
"""

import pytest


@pytest.mark.asyncio
async def test_inbox_read_and_read_all(
    client, operator, customer, customer_bin, collectors, approve, tomorrow, headers_for
):
    await approve(customer, customer_bin, collectors[0], tomorrow)

    response = await client.get("/v1/notifications", headers=headers_for(customer))
    assert response.status_code == 200
    inbox = response.json()
    assert [n["type"] for n in inbox] == ["REQUEST_APPROVED"]
    assert inbox[0]["is_read"] is False

    response = await client.patch(f"/v1/notifications/{inbox[0]['id']}/read", headers=headers_for(customer))
    assert response.json() == {"status": "success"}

    response = await client.get("/v1/notifications", params={"unread_only": True}, headers=headers_for(customer))
    assert response.json() == []

    # Another user's notification is not reachable
    operator_inbox = (await client.get("/v1/notifications", headers=headers_for(operator))).json()
    assert [n["type"] for n in operator_inbox] == ["NEW_REQUEST"]
    response = await client.patch(f"/v1/notifications/{operator_inbox[0]['id']}/read", headers=headers_for(customer))
    assert response.status_code == 404

    response = await client.patch("/v1/notifications/read-all", headers=headers_for(operator))
    assert response.json() == {"status": "success", "count": 1}
    response = await client.patch("/v1/notifications/read-all", headers=headers_for(operator))
    assert response.json()["count"] == 0


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["redis"] == "up"


@pytest.mark.asyncio
async def test_whoami_echoes_principal(client, customer, headers_for):
    response = await client.get("/auth/me", headers=headers_for(customer))

    assert response.status_code == 200
    assert response.json()["authenticated_user"]["user_id"] == customer.id
