"""
Concurrency Tests.

Validates that scheduling keys serialize competing operations and that a
busy key fails fast instead of hanging.
"""

import pytest
import asyncio
from datetime import date
from urbancleanse.app.core.exceptions import ConflictError
from urbancleanse.app.models.route import Route
from urbancleanse.app.models.route_bin_task import RouteBinTask
from urbancleanse.app.models.waste_request import WasteRequest
from urbancleanse.app.services.scheduling_locks import SchedulingLocks, bin_key, request_key, worker_key


@pytest.mark.asyncio
async def test_same_key_is_serialized():
    """Two holders of one key never overlap."""
    locks = SchedulingLocks(acquire_timeout=2.0)
    day = date(2026, 6, 1)
    events = []

    async def worker(name):
        async with locks.hold(*worker_key(7, day)):
            events.append(f"{name}-in")
            await asyncio.sleep(0.05)
            events.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert events in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])
    # Registry entries are dropped once nobody holds or waits
    assert locks._local == {}


@pytest.mark.asyncio
async def test_different_keys_run_in_parallel():
    locks = SchedulingLocks(acquire_timeout=2.0)
    day = date(2026, 6, 1)
    inside = asyncio.Event()
    release = asyncio.Event()

    async def first():
        async with locks.hold(*worker_key(1, day)):
            inside.set()
            await release.wait()

    task = asyncio.create_task(first())
    await inside.wait()
    async with locks.hold(*worker_key(2, day)):
        pass
    release.set()
    await task


@pytest.mark.asyncio
async def test_busy_key_raises_conflict():
    """Acquisition is time-bounded."""
    locks = SchedulingLocks(acquire_timeout=0.05)
    key = bin_key("BIN-1700000000000-ABC123", date(2026, 6, 1))
    inside = asyncio.Event()
    release = asyncio.Event()

    async def holder():
        async with locks.hold(*key):
            inside.set()
            await release.wait()

    task = asyncio.create_task(holder())
    await inside.wait()

    with pytest.raises(ConflictError) as exc:
        async with locks.hold(*key):
            pass
    assert "busy" in exc.value.message

    release.set()
    await task


@pytest.mark.asyncio
async def test_hold_many_acquires_in_order():
    locks = SchedulingLocks(acquire_timeout=2.0)
    day = date(2026, 6, 1)
    keys = [bin_key("BIN-1-A", day), worker_key(3, day)]

    async with locks.hold_many(keys):
        assert set(locks._local) == set(keys)
    assert locks._local == {}


def test_keys_are_normalized():
    assert bin_key("BIN-1-A", date(2026, 6, 1)) == ("bin", "BIN-1-A", "2026-06-01")
    assert worker_key(5, date(2026, 6, 1)) == ("worker", "5", "2026-06-01")
    assert request_key("WR-1700000000000-ABCDEF") == ("request", "WR-1700000000000-ABCDEF")


def test_unknown_backend_rejected():
    with pytest.raises(ValueError):
        SchedulingLocks(backend="zookeeper")


# --- Competing API calls ---

@pytest.mark.asyncio
async def test_one_request_approved_to_two_workers_lands_once(
    customer, customer_bin, collectors, submit, pay, set_status, tomorrow, fetch
):
    """The request key serializes approvals of one request to different workers."""
    _, w2, w3 = collectors
    request = await submit(customer, customer_bin, tomorrow)
    await pay(request["request_id"])

    responses = await asyncio.gather(
        set_status(request["request_id"], "approved",
                   worker_id=w2.id, scheduled_date=tomorrow, scheduled_time_slot="08:00-10:00"),
        set_status(request["request_id"], "approved",
                   worker_id=w3.id, scheduled_date=tomorrow, scheduled_time_slot="08:00-10:00"),
    )

    assert sorted(r.status_code for r in responses) == [200, 409]
    loser = next(r for r in responses if r.status_code == 409)
    assert loser.json()["error_code"] == "ERR_CONFLICT_001"

    stored = (await fetch(WasteRequest, request_id=request["request_id"]))[0]
    tasks = await fetch(RouteBinTask, request_id=request["request_id"])
    assert len(tasks) == 1
    routes = await fetch(Route)
    assert len(routes) == 1
    assert routes[0].id == tasks[0].route_pk
    assert routes[0].collector_id == stored.assigned_worker_id
    assert routes[0].total_bins == 1


@pytest.mark.asyncio
async def test_two_requests_for_one_worker_slot(
    customer, bin_factory, collectors, submit, pay, set_status, tomorrow, fetch
):
    """Only one of two requests racing for a worker's slot is approved."""
    w1 = collectors[0]
    first = await submit(customer, await bin_factory(customer), tomorrow)
    second = await submit(customer, await bin_factory(customer), tomorrow)
    for request in (first, second):
        await pay(request["request_id"])

    responses = await asyncio.gather(*(
        set_status(request["request_id"], "approved",
                   worker_id=w1.id, scheduled_date=tomorrow, scheduled_time_slot="08:00-10:00")
        for request in (first, second)
    ))

    assert sorted(r.status_code for r in responses) == [200, 409]
    approved = [r for r in await fetch(WasteRequest) if r.status.value == "approved"]
    assert len(approved) == 1
    routes = await fetch(Route, collector_id=w1.id)
    assert len(routes) == 1
    assert routes[0].total_bins == 1


@pytest.mark.asyncio
async def test_duplicate_submissions_for_one_bin_day(
    client, customer, customer_bin, waste_types, tomorrow, headers_for, fetch
):
    """The bin key lets only one of two identical submissions through."""
    body = {
        "bin_id": customer_bin.bin_id,
        "collection_type": "food",
        "preferred_date": tomorrow.isoformat(),
        "preferred_time_slot": "08:00-10:00",
    }

    responses = await asyncio.gather(*(
        client.post("/v1/waste/requests", json=body, headers=headers_for(customer)) for _ in range(2)
    ))

    assert sorted(r.status_code for r in responses) == [201, 409]
    assert len(await fetch(WasteRequest, bin_id=customer_bin.bin_id)) == 1
