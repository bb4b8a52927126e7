"""
End-to-end scheduling scenarios.

Submit -> pay -> approve -> route -> collect, and the conflict paths an
operator hits along the way.
"""

import pytest
from urbancleanse.app.models.route import Route
from urbancleanse.app.models.route_bin_task import RouteBinTask
from urbancleanse.app.models.waste_request import WasteRequest


@pytest.mark.asyncio
async def test_scenario_a_duplicate_type_same_day(customer, customer_bin, submit, tomorrow):
    first = await submit(customer, customer_bin, tomorrow, "food", "08:00-10:00")
    assert first["status"] == "pending"
    assert first["cost"] == 20.0

    await submit(customer, customer_bin, tomorrow, "food", "12:00-14:00", expect=409)


@pytest.mark.asyncio
async def test_scenario_b_unpaid_request_not_approved(customer, customer_bin, collectors, submit, set_status, tomorrow, fetch):
    request = await submit(customer, customer_bin, tomorrow)

    response = await set_status(
        request["request_id"], "approved",
        worker_id=collectors[0].id, scheduled_date=tomorrow, scheduled_time_slot="10:00-12:00",
    )

    assert response.status_code == 400
    assert "payment not completed" in response.json()["message"]
    assert await fetch(Route) == []
    assert (await fetch(WasteRequest))[0].status.value == "pending"


@pytest.mark.asyncio
async def test_scenario_c_two_approvals_share_route(
    customer, bin_factory, collectors, submit, pay, set_status, tomorrow, fetch
):
    w1 = collectors[0]
    first = await submit(customer, await bin_factory(customer), tomorrow)
    second = await submit(customer, await bin_factory(customer), tomorrow)
    for request, slot in ((first, "08:00-10:00"), (second, "10:00-12:00")):
        await pay(request["request_id"])
        response = await set_status(
            request["request_id"], "approved",
            worker_id=w1.id, scheduled_date=tomorrow, scheduled_time_slot=slot,
        )
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["status"] == "approved"
        assert body["assigned_worker_id"] == w1.id
        assert body["scheduled_time_slot"] == slot

    routes = await fetch(Route, collector_id=w1.id, assigned_date=tomorrow)
    assert len(routes) == 1
    assert routes[0].total_bins == 2
    assert routes[0].status.value == "assigned"

    requests = await fetch(WasteRequest)
    assert {r.route_id for r in requests} == {routes[0].route_id}


@pytest.mark.asyncio
async def test_scenario_d_slot_conflict_names_holder(
    customer, bin_factory, collectors, submit, pay, set_status, tomorrow, fetch
):
    w1 = collectors[0]
    requests = [await submit(customer, await bin_factory(customer), tomorrow) for _ in range(3)]
    for request in requests:
        await pay(request["request_id"])

    for request, slot in zip(requests[:2], ("08:00-10:00", "10:00-12:00")):
        response = await set_status(
            request["request_id"], "approved", worker_id=w1.id, scheduled_date=tomorrow, scheduled_time_slot=slot
        )
        assert response.status_code == 200

    response = await set_status(
        requests[2]["request_id"], "approved",
        worker_id=w1.id, scheduled_date=tomorrow, scheduled_time_slot="08:00-10:00",
    )

    assert response.status_code == 409
    details = response.json()["details"]
    assert details["conflict_type"] == "time_slot"
    assert details["conflicting_request"]["request_id"] == requests[0]["request_id"]

    # Nothing changed for the rejected request or the route
    third = (await fetch(WasteRequest, request_id=requests[2]["request_id"]))[0]
    assert third.status.value == "pending"
    assert third.assigned_worker_id is None
    assert (await fetch(Route))[0].total_bins == 2


@pytest.mark.asyncio
async def test_scenario_e_collections_complete_route(
    client, customer, bin_factory, collectors, submit, pay, set_status, tomorrow, headers_for, fetch
):
    w1 = collectors[0]
    bins = [await bin_factory(customer), await bin_factory(customer)]
    for bin, slot in zip(bins, ("08:00-10:00", "10:00-12:00")):
        request = await submit(customer, bin, tomorrow)
        await pay(request["request_id"])
        await set_status(request["request_id"], "approved", worker_id=w1.id, scheduled_date=tomorrow, scheduled_time_slot=slot)

    response = await client.post("/v1/collection/scan", json={"bin_id": bins[0].bin_id}, headers=headers_for(w1))
    assert response.status_code == 201, response.text
    body = response.json()
    assert body["route_status"] == "in_progress"
    assert body["completed_bins"] == 1
    assert body["request_status"] == "completed"

    response = await client.post("/v1/collection/manual", json={"bin_id": bins[1].bin_id}, headers=headers_for(w1))
    assert response.status_code == 201, response.text
    body = response.json()
    assert body["route_status"] == "completed"
    assert body["completed_bins"] == body["total_bins"] == 2
    assert body["collection"]["method"] == "manual"

    route = (await fetch(Route))[0]
    assert route.actual_duration is not None
    assert route.end_time is not None
    assert {r.status.value for r in await fetch(WasteRequest)} == {"completed"}


@pytest.mark.asyncio
async def test_scenario_f_reset_removes_task_and_empty_route(
    customer, customer_bin, collectors, submit, pay, set_status, tomorrow, fetch
):
    request = await submit(customer, customer_bin, tomorrow)
    await pay(request["request_id"])
    await set_status(
        request["request_id"], "approved",
        worker_id=collectors[0].id, scheduled_date=tomorrow, scheduled_time_slot="08:00-10:00",
    )
    assert len(await fetch(Route)) == 1

    response = await set_status(request["request_id"], "pending", notes="Customer asked to reschedule")

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["status"] == "pending"
    assert body["assigned_worker_id"] is None
    assert body["scheduled_date"] is None
    assert body["route_id"] is None
    assert "Customer asked to reschedule" in body["notes"]
    assert await fetch(Route) == []
    assert await fetch(RouteBinTask) == []


@pytest.mark.asyncio
async def test_reset_keeps_other_tasks_on_route(
    customer, bin_factory, collectors, submit, pay, set_status, tomorrow, fetch
):
    w1 = collectors[0]
    requests = []
    for slot in ("08:00-10:00", "10:00-12:00"):
        request = await submit(customer, await bin_factory(customer), tomorrow)
        await pay(request["request_id"])
        await set_status(request["request_id"], "approved", worker_id=w1.id, scheduled_date=tomorrow, scheduled_time_slot=slot)
        requests.append(request)

    response = await set_status(requests[0]["request_id"], "cancelled")
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"

    route = (await fetch(Route))[0]
    assert route.total_bins == 1
    tasks = await fetch(RouteBinTask)
    assert [(t.request_id, t.sequence) for t in tasks] == [(requests[1]["request_id"], 1)]


@pytest.mark.asyncio
async def test_cancel_then_recreate_same_day(customer, customer_bin, submit, set_status, tomorrow):
    """A cancelled request frees its bin/type/day."""
    request = await submit(customer, customer_bin, tomorrow)
    response = await set_status(request["request_id"], "cancelled")
    assert response.status_code == 200

    again = await submit(customer, customer_bin, tomorrow)

    # The old one cannot be reopened while the new one is active
    response = await set_status(request["request_id"], "pending")
    assert response.status_code == 409
    assert response.json()["details"]["conflicting_request"]["request_id"] == again["request_id"]
