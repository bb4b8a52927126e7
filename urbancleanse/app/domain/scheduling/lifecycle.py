"""
Request Lifecycle Manager.

Owns every status change of a waste request:

    pending   -> approved | cancelled
    approved  -> completed | cancelled | pending
    completed -> pending
    cancelled -> pending

``completed`` is only reached through the collection flow
(``complete_request``); operators cannot set it. Each change is made under
the relevant scheduling locks, committed as one transaction together with
the route mutation and the audit row, and followed by best-effort side
effects (bin heuristics, notifications) that never undo the transition.
"""

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from urbancleanse.app.core.exceptions import (
    AppException,
    ConflictError,
    InsufficientPermissionsError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from urbancleanse.app.domain.scheduling import bin_state, route_aggregator
from urbancleanse.app.domain.scheduling.conflicts import (
    BIN_BLOCKING_STATUSES,
    ensure_no_bin_conflict,
    parse_schedule_date,
    validate_time_slot,
)
from urbancleanse.app.domain.scheduling.identifiers import is_valid_bin_id, new_request_id, utcnow
from urbancleanse.app.domain.scheduling.load_balancer import pick_worker, validate_worker
from urbancleanse.app.domain.scheduling.state_machine import advance_request, can_transition_request
from urbancleanse.app.models.bin import Bin
from urbancleanse.app.models.enums import UserRole
from urbancleanse.app.models.notification import NotificationType
from urbancleanse.app.models.scheduling_enums import CollectionType, PaymentStatus, RequestStatus
from urbancleanse.app.models.user import User
from urbancleanse.app.models.waste_request import WasteRequest
from urbancleanse.app.models.waste_type import WasteType
from urbancleanse.app.services.audit import AuditAction, log_event
from urbancleanse.app.services.notification_service import NotificationDispatcher
from urbancleanse.app.services.scheduling_locks import SchedulingLocks, bin_key, request_key, worker_key
from urbancleanse.app.services.stats import invalidate_stats

logger = logging.getLogger(__name__)

_CUSTOMER_MESSAGES = {
    RequestStatus.APPROVED: (
        NotificationType.REQUEST_APPROVED,
        "Waste Collection Approved",
        "Your waste collection request {request_id} has been approved. "
        "Collection is scheduled for {scheduled_date} ({time_slot}).",
    ),
    RequestStatus.COMPLETED: (
        NotificationType.REQUEST_COMPLETED,
        "Waste Collection Completed",
        "Your waste collection request {request_id} has been completed successfully. "
        "Thank you for using UrbanCleanse!",
    ),
    RequestStatus.CANCELLED: (
        NotificationType.REQUEST_CANCELLED,
        "Waste Collection Cancelled",
        "Your waste collection request {request_id} has been cancelled. "
        "Please contact support for more information.",
    ),
    RequestStatus.PENDING: (
        NotificationType.INFO,
        "Waste Collection Rescheduling",
        "Your waste collection request {request_id} is pending again and will be rescheduled.",
    ),
}


def complete_request(request: WasteRequest, note: str) -> None:
    """approved -> completed; used only by the collection flow, which commits."""
    advance_request(request, RequestStatus.COMPLETED)
    request.append_note(note)


@asynccontextmanager
async def scheduling_transaction(
    db: AsyncSession,
    context: str,
    conflict_message: str = "Scheduling conflict detected, the slot was taken concurrently",
):
    """
    Run a block of scheduling writes and commit it.

    Store errors raised while flushing inside the block or while committing
    are rolled back and mapped: unique index violations to ConflictError,
    anything else to InternalError. Cached statistics are dropped after a
    successful commit.
    """
    try:
        yield
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        logger.warning("Integrity conflict during %s: %s", context, exc.orig)
        raise ConflictError(conflict_message, details={"operation": context})
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Persistence failure during %s", context)
        raise InternalError(details={"operation": context})
    await invalidate_stats()


async def notify_customer(dispatcher: NotificationDispatcher, request: WasteRequest) -> None:
    ntype, title, template = _CUSTOMER_MESSAGES[request.status]
    message = template.format(
        request_id=request.request_id,
        scheduled_date=request.scheduled_date.isoformat() if request.scheduled_date else "-",
        time_slot=request.scheduled_time_slot or "-",
    )
    await dispatcher.notify(request.user_id, ntype, title, message, related_id=request.request_id)


class RequestLifecycleManager:
    """Request state machine bound to one session, lock registry and dispatcher."""

    def __init__(self, db: AsyncSession, locks: SchedulingLocks, dispatcher: NotificationDispatcher):
        self.db = db
        self.locks = locks
        self.dispatcher = dispatcher

    async def get_request(self, request_id: str) -> WasteRequest:
        result = await self.db.execute(select(WasteRequest).where(WasteRequest.request_id == request_id))
        request = result.scalar_one_or_none()
        if request is None:
            raise NotFoundError("Waste request", request_id)
        return request

    # Creation

    async def create(
        self,
        principal: dict,
        bin_id: str,
        collection_type: Union[CollectionType, str],
        preferred_date: Union[str, date],
        preferred_time_slot: str,
        notes: Optional[str] = None,
        address: Optional[dict] = None,
    ) -> WasteRequest:
        """
        Submit a pickup request as ``pending``/``pending`` at the waste type's base cost.

        Validates:
        - Bin id format, principal active
        - Preferred date (today or later) and time slot
        - Bin exists, belongs to the principal, is active and approved
        - Waste type exists and is active
        - No other active request for the same bin, type and day
        """
        if not is_valid_bin_id(bin_id):
            raise ValidationError(
                "Invalid Bin ID format. Expected format: BIN-timestamp-randomString",
                details={"field": "bin_id", "value": bin_id},
            )
        if principal.get("is_active") is False:
            raise InsufficientPermissionsError("Account is inactive. Please contact support.")

        try:
            collection_type = CollectionType(collection_type)
        except ValueError:
            raise ValidationError("Invalid collection type", details={"field": "collection_type"})
        day = parse_schedule_date(preferred_date)
        slot = validate_time_slot(preferred_time_slot)
        user_id = principal["user_id"]

        result = await self.db.execute(select(Bin).where(Bin.bin_id == bin_id))
        bin = result.scalar_one_or_none()
        if bin is None:
            raise NotFoundError("Bin", bin_id)
        if bin.owner_id != user_id:
            raise InsufficientPermissionsError("You can only request collections for your own bins")
        if not bin.is_active or not bin.is_approved:
            raise ValidationError(
                "Bin not found or not approved. Please ensure you have a registered and approved bin.",
                details={"bin_id": bin_id, "is_active": bin.is_active, "is_approved": bin.is_approved},
            )

        result = await self.db.execute(select(WasteType).where(WasteType.name == collection_type))
        waste_type = result.scalar_one_or_none()
        if waste_type is None or not waste_type.is_active:
            raise ValidationError("Invalid collection type", details={"collection_type": collection_type.value})

        async with self.locks.hold(*bin_key(bin_id, day)), scheduling_transaction(self.db, "create_request"):
            await ensure_no_bin_conflict(self.db, bin_id, collection_type, day)

            request = WasteRequest(
                request_id=new_request_id(),
                user_id=user_id,
                bin_id=bin_id,
                collection_type=collection_type,
                preferred_date=day,
                preferred_time_slot=slot,
                status=RequestStatus.PENDING,
                payment_status=PaymentStatus.PENDING,
                cost=waste_type.base_cost,
                notes=notes or None,
                address=address or bin.address or {},
            )
            self.db.add(request)
            await self.db.flush()
            await log_event(
                self.db,
                AuditAction.REQUEST_CREATED,
                actor_id=user_id,
                actor_username=principal.get("sub"),
                entity_type="waste_request",
                entity_id=request.request_id,
                metadata={"bin_id": bin_id, "collection_type": collection_type.value, "date": day.isoformat()},
                commit=False,
            )

        logger.info("Created request %s for bin %s (%s on %s)", request.request_id, bin_id, collection_type.value, day)

        await self._apply_bin_request_created(request)
        customer = await self.db.get(User, user_id)
        await self.dispatcher.notify_role(
            UserRole.OPERATOR,
            NotificationType.NEW_REQUEST,
            "New Waste Collection Request",
            f"New {collection_type.value} collection request from "
            f"{customer.display_name if customer else principal.get('sub')}. Request ID: {request.request_id}",
            related_id=request.request_id,
        )
        await self.db.refresh(request)
        return request

    # Operator status updates

    async def update_status(
        self,
        request_id: str,
        operator: dict,
        status: RequestStatus,
        worker_id: Optional[int] = None,
        scheduled_date: Optional[Union[str, date]] = None,
        time_slot: Optional[str] = None,
        notes: Optional[str] = None,
        auto_assign: bool = False,
    ) -> WasteRequest:
        """
        Operator entry point for the request state machine.

        Same-status updates only append the note. ``completed`` is rejected;
        it is reached through collection.
        """
        request = await self.get_request(request_id)

        if status == request.status:
            if notes:
                async with scheduling_transaction(self.db, "update_notes"):
                    request.append_note(notes)
                await self.db.refresh(request)
            return request

        if status == RequestStatus.COMPLETED:
            raise ValidationError(
                "Requests are completed by the collection flow, not by status update",
                details={"request_id": request_id},
            )
        if not can_transition_request(request.status, status):
            raise ConflictError(
                f"Cannot change request status from {request.status.value} to {status.value}",
                details={"request_id": request_id, "from": request.status.value, "to": status.value},
            )

        if status == RequestStatus.APPROVED:
            return await self.approve(request, operator, worker_id, scheduled_date, time_slot, notes, auto_assign)
        if status == RequestStatus.PENDING:
            return await self.reset_to_pending(request, operator, notes)
        return await self.cancel(request, operator, notes)

    async def approve(
        self,
        request: WasteRequest,
        operator: dict,
        worker_id: Optional[int],
        scheduled_date: Optional[Union[str, date]],
        time_slot: Optional[str],
        notes: Optional[str] = None,
        auto_assign: bool = False,
    ) -> WasteRequest:
        """
        pending -> approved.

        Validates:
        - Payment is ``paid``
        - Scheduled date (today or later) and time slot
        - Worker given (or picked by the load balancer when ``auto_assign``)
        - Worker eligible, below capacity and free in the slot

        Runs under the request key, then the worker key, so one request is
        never placed on two routes. Route placement and the assignment fields
        are committed together.
        """
        if request.payment_status != PaymentStatus.PAID:
            raise ValidationError(
                "Cannot approve request - payment not completed",
                details={"request_id": request.request_id, "payment_status": request.payment_status.value},
            )
        if scheduled_date is None:
            raise ValidationError("Scheduled collection date is required for approval", details={"field": "scheduled_date"})
        if time_slot is None:
            raise ValidationError("Scheduled time slot is required for approval", details={"field": "scheduled_time_slot"})
        day = parse_schedule_date(scheduled_date)
        slot = validate_time_slot(time_slot)

        if worker_id is None:
            if not auto_assign:
                raise ValidationError("Worker assignment is required for approval", details={"field": "worker_id"})
            worker_id = (await pick_worker(self.db, day, slot)).id

        keys = [request_key(request.request_id), worker_key(worker_id, day)]
        async with self.locks.hold_many(keys), scheduling_transaction(self.db, "approve_request"):
            await self.db.refresh(request)
            if request.status != RequestStatus.PENDING or request.payment_status != PaymentStatus.PAID:
                raise ConflictError(
                    "Request changed while waiting for the schedule lock",
                    details={"request_id": request.request_id, "status": request.status.value},
                )

            worker = await validate_worker(self.db, worker_id, day, slot, exclude_request_id=request.request_id)
            route = await route_aggregator.assign(self.db, request, worker_id, day, operator.get("user_id"))

            advance_request(request, RequestStatus.APPROVED)
            request.assigned_worker_id = worker_id
            request.assigned_by_id = operator.get("user_id")
            request.assigned_at = utcnow()
            request.scheduled_date = day
            request.scheduled_time_slot = slot
            request.route_id = route.route_id
            request.append_note(
                f"Approved and assigned to {worker.display_name} on {day.isoformat()} ({slot}), route {route.route_id}"
            )
            request.append_note(notes)

            await log_event(
                self.db,
                AuditAction.REQUEST_STATUS_CHANGED,
                actor_id=operator.get("user_id"),
                actor_username=operator.get("sub"),
                entity_type="waste_request",
                entity_id=request.request_id,
                metadata={
                    "from": RequestStatus.PENDING.value,
                    "to": RequestStatus.APPROVED.value,
                    "worker_id": worker_id,
                    "route_id": route.route_id,
                },
                commit=False,
            )

        logger.info("Approved %s: worker %s, %s %s, route %s", request.request_id, worker_id, day, slot, route.route_id)

        await self._apply_bin_request_approved(request)
        await notify_customer(self.dispatcher, request)
        await self.dispatcher.notify(
            worker_id,
            NotificationType.ROUTE_ASSIGNED,
            "New Route Assigned",
            f"You have been assigned collection route {route.route_id} for {day.isoformat()}. "
            f"Total bins: {route.total_bins}",
            related_id=route.route_id,
        )
        await self.db.refresh(request)
        return request

    async def reset_to_pending(self, request: WasteRequest, operator: dict, notes: Optional[str] = None) -> WasteRequest:
        """approved | completed | cancelled -> pending; re-checks the bin schedule."""
        return await self._release(request, operator, RequestStatus.PENDING, notes)

    async def cancel(self, request: WasteRequest, operator: dict, notes: Optional[str] = None) -> WasteRequest:
        """pending | approved -> cancelled."""
        return await self._release(request, operator, RequestStatus.CANCELLED, notes)

    async def _release(
        self,
        request: WasteRequest,
        operator: dict,
        target: RequestStatus,
        notes: Optional[str],
    ) -> WasteRequest:
        request_id = request.request_id

        async with self.locks.hold(*request_key(request_id)):
            # Re-read under the request key before choosing the worker key
            await self.db.refresh(request)
            keys = [bin_key(request.bin_id, request.preferred_date)]
            if request.assigned_worker_id and request.scheduled_date:
                keys.append(worker_key(request.assigned_worker_id, request.scheduled_date))

            async with self.locks.hold_many(keys), scheduling_transaction(self.db, f"{target.value}_request"):
                request, previous = await self._release_locked(request, operator, target, notes)

        logger.info("Request %s %s -> %s", request_id, previous.value, target.value)
        await notify_customer(self.dispatcher, request)
        await self.db.refresh(request)
        return request

    async def _release_locked(
        self,
        request: WasteRequest,
        operator: dict,
        target: RequestStatus,
        notes: Optional[str],
    ):
        request_id = request.request_id
        await self.db.refresh(request)
        previous = request.status
        if not can_transition_request(previous, target):
            raise ConflictError(
                f"Cannot change request status from {previous.value} to {target.value}",
                details={"request_id": request_id, "from": previous.value, "to": target.value},
            )
        if target == RequestStatus.PENDING:
            await ensure_no_bin_conflict(
                self.db, request.bin_id, request.collection_type, request.preferred_date,
                exclude_request_id=request_id,
            )

        try:
            await route_aggregator.remove(self.db, request)
        except (SQLAlchemyError, AppException):
            # Status must still change; the stale task is dropped by the next route repair
            logger.exception("Route removal failed for %s, continuing with status change", request_id)
            await self.db.rollback()
            request = await self.get_request(request_id)

        advance_request(request, target)
        request.clear_assignment()
        if target == RequestStatus.PENDING:
            request.append_note(f"Request reset to pending by operator (was {previous.value}). Assignment cleared.")
        else:
            request.append_note("Request cancelled by operator. Assignment cleared.")
        request.append_note(notes)

        await log_event(
            self.db,
            AuditAction.REQUEST_STATUS_CHANGED,
            actor_id=operator.get("user_id"),
            actor_username=operator.get("sub"),
            entity_type="waste_request",
            entity_id=request_id,
            metadata={"from": previous.value, "to": target.value},
            commit=False,
        )
        return request, previous

    async def set_payment_status(self, request_id: str, operator: dict, payment_status: PaymentStatus) -> WasteRequest:
        """Gateway callback: record the payment outcome. An approved request must stay paid."""
        request = await self.get_request(request_id)
        async with self.locks.hold(*request_key(request_id)), scheduling_transaction(self.db, "payment_update"):
            await self.db.refresh(request)
            if request.payment_status == payment_status:
                return request
            if request.status == RequestStatus.APPROVED and payment_status != PaymentStatus.PAID:
                raise ConflictError(
                    "Cannot change payment of an approved request; reset it to pending first",
                    details={"request_id": request_id},
                )

            previous = request.payment_status
            request.payment_status = payment_status
            request.append_note(f"Payment status changed from {previous.value} to {payment_status.value}")
            await log_event(
                self.db,
                AuditAction.REQUEST_PAYMENT_UPDATED,
                actor_id=operator.get("user_id"),
                actor_username=operator.get("sub"),
                entity_type="waste_request",
                entity_id=request_id,
                metadata={"from": previous.value, "to": payment_status.value},
                commit=False,
            )
        await self.db.refresh(request)
        return request

    # Best-effort bin heuristics

    async def _apply_bin_request_created(self, request: WasteRequest) -> None:
        try:
            result = await self.db.execute(select(Bin).where(Bin.bin_id == request.bin_id))
            bin = result.scalar_one_or_none()
            if bin is None:
                return
            result = await self.db.execute(
                select(WasteRequest.status).where(
                    WasteRequest.bin_id == request.bin_id,
                    WasteRequest.preferred_date == request.preferred_date,
                    WasteRequest.request_id != request.request_id,
                )
            )
            statuses = result.scalars().all()
            active = sum(1 for s in statuses if s in BIN_BLOCKING_STATUSES)
            completed = any(s == RequestStatus.COMPLETED for s in statuses)
            if bin_state.apply_request_created(bin, active, completed) is not None:
                await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            logger.exception("Bin update after request %s failed", request.request_id)

    async def _apply_bin_request_approved(self, request: WasteRequest) -> None:
        try:
            result = await self.db.execute(select(Bin).where(Bin.bin_id == request.bin_id))
            bin = result.scalar_one_or_none()
            if bin is not None and bin_state.apply_request_approved(bin) is not None:
                await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            logger.exception("Bin update after approving %s failed", request.request_id)
