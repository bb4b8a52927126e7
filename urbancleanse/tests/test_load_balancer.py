"""
Worker load balancer tests.

Least-loaded pick with id tie-break, slot and capacity exclusion, operator
worker validation and the availability board.
"""

import pytest
from urbancleanse.app.core.exceptions import AssignmentError, ConflictError
from urbancleanse.app.domain.scheduling import load_balancer
from urbancleanse.app.domain.scheduling.identifiers import new_request_id
from urbancleanse.app.models.enums import UserRole
from urbancleanse.app.models.scheduling_enums import CollectionType, PaymentStatus, RequestStatus
from urbancleanse.app.models.waste_request import WasteRequest

SLOTS = ["08:00-10:00", "10:00-12:00", "12:00-14:00", "14:00-16:00", "16:00-18:00"]
TYPES = list(CollectionType)


async def _hold(db, customer, bin, worker, day, slot, ctype, status=RequestStatus.APPROVED):
    request = WasteRequest(
        request_id=new_request_id(),
        user_id=customer.id,
        bin_id=bin.bin_id,
        collection_type=ctype,
        preferred_date=day,
        preferred_time_slot=slot,
        scheduled_date=day,
        scheduled_time_slot=slot,
        status=status,
        payment_status=PaymentStatus.PAID,
        cost=20.0,
        assigned_worker_id=worker.id,
    )
    db.add(request)
    await db.commit()
    return request


@pytest.mark.asyncio
async def test_pick_lowest_id_on_tie(db_session, collectors, tomorrow):
    worker = await load_balancer.pick_worker(db_session, tomorrow)
    assert worker.id == collectors[0].id


@pytest.mark.asyncio
async def test_pick_least_loaded_and_skip_slot_holder(db_session, collectors, customer, bin_factory, tomorrow):
    w1, w2, w3 = collectors
    bin = await bin_factory(customer)

    await _hold(db_session, customer, bin, w1, tomorrow, SLOTS[0], TYPES[0])
    await _hold(db_session, customer, bin, w2, tomorrow, SLOTS[1], TYPES[1])
    await _hold(db_session, customer, bin, w2, tomorrow, SLOTS[2], TYPES[2])
    await _hold(db_session, customer, bin, w3, tomorrow, SLOTS[1], TYPES[3])
    await _hold(db_session, customer, bin, w3, tomorrow, SLOTS[2], TYPES[4])

    assert (await load_balancer.pick_worker(db_session, tomorrow)).id == w1.id
    # w1 holds the slot; w2 and w3 tie on load, lowest id wins
    assert (await load_balancer.pick_worker(db_session, tomorrow, SLOTS[0])).id == w2.id


@pytest.mark.asyncio
async def test_workload_ignores_pending_and_other_days(db_session, collectors, customer, bin_factory, tomorrow):
    w1 = collectors[0]
    bin = await bin_factory(customer)
    await _hold(db_session, customer, bin, w1, tomorrow, SLOTS[0], TYPES[0], status=RequestStatus.PENDING)

    assert await load_balancer.workload(db_session, w1.id, tomorrow) == 0

    await _hold(db_session, customer, bin, w1, tomorrow, SLOTS[1], TYPES[1], status=RequestStatus.COMPLETED)
    assert await load_balancer.workload(db_session, w1.id, tomorrow) == 1


@pytest.mark.asyncio
async def test_worker_at_capacity_is_never_picked(db_session, collectors, customer, bin_factory, tomorrow):
    w1, w2, w3 = collectors
    bin = await bin_factory(customer)
    for slot, ctype in zip(SLOTS, TYPES):
        await _hold(db_session, customer, bin, w1, tomorrow, slot, ctype)

    other = await bin_factory(customer)
    for slot, ctype in zip(SLOTS[:3], TYPES[:3]):
        await _hold(db_session, customer, other, w2, tomorrow, slot, ctype)
        await _hold(db_session, customer, await bin_factory(customer), w3, tomorrow, slot, ctype)

    picked = await load_balancer.pick_worker(db_session, tomorrow)
    assert picked.id == w2.id

    with pytest.raises(AssignmentError):
        await load_balancer.validate_worker(db_session, w1.id, tomorrow, SLOTS[0])


@pytest.mark.asyncio
async def test_no_eligible_collector(db_session, operator, tomorrow):
    with pytest.raises(AssignmentError):
        await load_balancer.pick_worker(db_session, tomorrow)


@pytest.mark.asyncio
async def test_validate_worker_rejections(db_session, operator, user_factory, tomorrow):
    inactive = await user_factory("retired", UserRole.WC2, is_active=False)

    with pytest.raises(AssignmentError):
        await load_balancer.validate_worker(db_session, 9999, tomorrow, SLOTS[0])
    with pytest.raises(AssignmentError):
        await load_balancer.validate_worker(db_session, inactive.id, tomorrow, SLOTS[0])
    with pytest.raises(AssignmentError) as exc:
        await load_balancer.validate_worker(db_session, operator.id, tomorrow, SLOTS[0])
    assert "not a waste collector" in exc.value.message


@pytest.mark.asyncio
async def test_validate_worker_slot_conflict(db_session, collectors, customer, bin_factory, tomorrow):
    w1 = collectors[0]
    bin = await bin_factory(customer)
    held = await _hold(db_session, customer, bin, w1, tomorrow, SLOTS[0], TYPES[0])

    with pytest.raises(ConflictError) as exc:
        await load_balancer.validate_worker(db_session, w1.id, tomorrow, SLOTS[0])
    assert exc.value.details["conflict_type"] == "time_slot"
    assert exc.value.details["conflicting_request"]["request_id"] == held.request_id

    # Re-validating the holder itself is not a conflict
    worker = await load_balancer.validate_worker(
        db_session, w1.id, tomorrow, SLOTS[0], exclude_request_id=held.request_id
    )
    assert worker.id == w1.id


@pytest.mark.asyncio
async def test_availability_board(db_session, collectors, customer, bin_factory, tomorrow):
    w1, w2, w3 = collectors
    bin = await bin_factory(customer)
    held = await _hold(db_session, customer, bin, w1, tomorrow, SLOTS[0], TYPES[0])
    await _hold(db_session, customer, bin, w2, tomorrow, SLOTS[1], TYPES[1])

    board = await load_balancer.availability(db_session, tomorrow, SLOTS[0])

    assert [w.worker_id for w in board] == [w3.id, w2.id, w1.id]
    by_id = {w.worker_id: w for w in board}
    assert by_id[w3.id].availability == load_balancer.AVAILABLE
    assert by_id[w2.id].availability == load_balancer.BUSY
    assert by_id[w1.id].availability == load_balancer.NOT_AVAILABLE
    assert by_id[w1.id].conflicting_request_id == held.request_id
    assert by_id[w1.id].occupied_slots == [SLOTS[0]]
    assert SLOTS[0] not in by_id[w1.id].available_slots
    assert by_id[w2.id].remaining_capacity == 4

    # Excluding the request being reassigned frees its slot
    board = await load_balancer.availability(db_session, tomorrow, SLOTS[0], exclude_request_id=held.request_id)
    assert {w.worker_id: w for w in board}[w1.id].availability == load_balancer.AVAILABLE
