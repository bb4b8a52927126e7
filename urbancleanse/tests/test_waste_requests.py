"""
Integration tests for customer waste requests.

Submission, bin conflict detection, schedule check, listing and access
control.
"""

import pytest
from datetime import date, timedelta
from urbancleanse.app.models.audit_log import AuditLog
from urbancleanse.app.models.bin import Bin
from urbancleanse.app.models.enums import UserRole
from urbancleanse.app.models.notification import Notification, NotificationType
from urbancleanse.app.models.scheduling_enums import BinStatus


@pytest.mark.asyncio
async def test_list_waste_types(client, customer, waste_types, headers_for):
    response = await client.get("/v1/waste/types", headers=headers_for(customer))

    assert response.status_code == 200
    types = {t["name"]: t["base_cost"] for t in response.json()}
    assert types == {"food": 20.0, "polythene": 30.0, "paper": 25.0, "hazardous": 50.0, "ewaste": 45.0}


@pytest.mark.asyncio
async def test_create_request(client, customer, customer_bin, operator, submit, tomorrow, fetch):
    """A new request is pending/pending at the type's base cost."""
    data = await submit(customer, customer_bin, tomorrow, "hazardous", "14:00-16:00")

    assert data["request_id"].startswith("WR-")
    assert data["status"] == "pending"
    assert data["payment_status"] == "pending"
    assert data["cost"] == 50.0
    assert data["preferred_date"] == tomorrow.isoformat()
    assert data["preferred_time_slot"] == "14:00-16:00"
    assert data["assigned_worker_id"] is None
    assert data["route_id"] is None
    assert data["address"] == customer_bin.address

    # Empty bin gets the base fill estimate
    bin = (await fetch(Bin, bin_id=customer_bin.bin_id))[0]
    assert bin.fill_level == 60
    assert bin.status == BinStatus.HALF_FULL

    # Operators are told about the new request
    notes = await fetch(Notification, user_id=operator.id)
    assert len(notes) == 1
    assert notes[0].type == NotificationType.NEW_REQUEST
    assert data["request_id"] in notes[0].message

    audit = await fetch(AuditLog, entity_id=data["request_id"])
    assert [a.action for a in audit] == ["REQUEST_CREATED"]


@pytest.mark.asyncio
async def test_duplicate_bin_type_day_conflicts(client, customer, customer_bin, submit, tomorrow, headers_for):
    first = await submit(customer, customer_bin, tomorrow, "food")

    response = await client.post("/v1/waste/requests", json={
        "bin_id": customer_bin.bin_id,
        "collection_type": "food",
        "preferred_date": tomorrow.isoformat(),
        "preferred_time_slot": "16:00-18:00",
    }, headers=headers_for(customer))

    assert response.status_code == 409
    body = response.json()
    assert body["error_code"] == "ERR_CONFLICT_001"
    assert body["details"]["conflict_type"] == "bin_schedule"
    assert body["details"]["conflicting_request"]["request_id"] == first["request_id"]
    assert body["details"]["conflicting_request"]["status"] == "pending"


@pytest.mark.asyncio
async def test_other_type_or_day_does_not_conflict(customer, customer_bin, submit, tomorrow):
    await submit(customer, customer_bin, tomorrow, "food")
    await submit(customer, customer_bin, tomorrow, "paper")
    await submit(customer, customer_bin, tomorrow + timedelta(days=1), "food")


@pytest.mark.asyncio
async def test_create_validation_errors(client, customer, customer_bin, waste_types, tomorrow, headers_for):
    base = {
        "bin_id": customer_bin.bin_id,
        "collection_type": "food",
        "preferred_date": tomorrow.isoformat(),
        "preferred_time_slot": "08:00-10:00",
    }
    cases = [
        ({"bin_id": "bin-42"}, 400),
        ({"collection_type": "glass"}, 400),
        ({"preferred_date": (date.today() - timedelta(days=1)).isoformat()}, 400),
        ({"preferred_date": "next tuesday"}, 400),
        ({"preferred_time_slot": "07:00-09:00"}, 400),
        ({"bin_id": "BIN-1700000000000-NOSUCH"}, 404),
    ]
    for override, expected in cases:
        response = await client.post("/v1/waste/requests", json={**base, **override}, headers=headers_for(customer))
        assert response.status_code == expected, (override, response.text)


@pytest.mark.asyncio
async def test_bin_must_be_owned_and_approved(client, customer, other_customer, bin_factory, submit, tomorrow):
    foreign = await bin_factory(other_customer)
    unapproved = await bin_factory(customer, approved=False)

    await submit(customer, foreign, tomorrow, expect=403)
    await submit(customer, unapproved, tomorrow, expect=400)


@pytest.mark.asyncio
async def test_only_customers_submit(client, operator, customer_bin, submit, tomorrow):
    await submit(operator, customer_bin, tomorrow, expect=403)


@pytest.mark.asyncio
async def test_inactive_principal_rejected(client, customer_bin, user_factory, headers_for, waste_types):
    inactive = await user_factory("dormant", UserRole.CUSTOMER, is_active=False)

    response = await client.get("/v1/waste/types", headers=headers_for(inactive))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_missing_or_bad_token(client):
    response = await client.get("/v1/waste/types")
    assert response.status_code in (401, 403)

    response = await client.get("/v1/waste/types", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json()["error_code"] == "ERR_UNAUTHORIZED"


@pytest.mark.asyncio
async def test_check_schedule(client, customer, customer_bin, submit, tomorrow, headers_for):
    params = {"bin_id": customer_bin.bin_id, "collection_type": "food", "date": tomorrow.isoformat()}

    response = await client.get("/v1/waste/check-schedule", params=params, headers=headers_for(customer))
    assert response.status_code == 200
    assert response.json()["available"] is True
    assert response.json()["requests_that_day"] == 0

    created = await submit(customer, customer_bin, tomorrow, "food")
    await submit(customer, customer_bin, tomorrow, "ewaste")

    response = await client.get("/v1/waste/check-schedule", params=params, headers=headers_for(customer))
    body = response.json()
    assert body["available"] is False
    assert body["conflicting_request"]["request_id"] == created["request_id"]
    assert body["scheduled_types"] == ["ewaste", "food"]

    params["collection_type"] = "paper"
    response = await client.get("/v1/waste/check-schedule", params=params, headers=headers_for(customer))
    assert response.json()["available"] is True


@pytest.mark.asyncio
async def test_check_schedule_rejects_past_date_and_foreign_bin(
    client, customer, other_customer, bin_factory, headers_for, tomorrow
):
    foreign = await bin_factory(other_customer)
    response = await client.get("/v1/waste/check-schedule", params={
        "bin_id": foreign.bin_id, "collection_type": "food", "date": tomorrow.isoformat(),
    }, headers=headers_for(customer))
    assert response.status_code == 403

    own = await bin_factory(customer)
    response = await client.get("/v1/waste/check-schedule", params={
        "bin_id": own.bin_id, "collection_type": "food", "date": "2001-01-01",
    }, headers=headers_for(customer))
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_list_and_get_own_requests(
    client, customer, other_customer, operator, customer_bin, bin_factory, submit, tomorrow, headers_for
):
    mine = await submit(customer, customer_bin, tomorrow, "food")
    await submit(customer, customer_bin, tomorrow, "paper")
    theirs = await submit(other_customer, await bin_factory(other_customer), tomorrow, "food")

    response = await client.get("/v1/waste/requests", headers=headers_for(customer))
    body = response.json()
    assert body["total"] == 2
    assert theirs["request_id"] not in {r["request_id"] for r in body["requests"]}

    response = await client.get(
        "/v1/waste/requests", params={"status": "approved"}, headers=headers_for(customer)
    )
    assert response.json()["total"] == 0

    response = await client.get(f"/v1/waste/requests/{mine['request_id']}", headers=headers_for(customer))
    assert response.status_code == 200

    response = await client.get(f"/v1/waste/requests/{theirs['request_id']}", headers=headers_for(customer))
    assert response.status_code == 403

    response = await client.get(f"/v1/waste/requests/{theirs['request_id']}", headers=headers_for(operator))
    assert response.status_code == 200

    response = await client.get("/v1/waste/requests/WR-0-NOPE00", headers=headers_for(operator))
    assert response.status_code == 404
