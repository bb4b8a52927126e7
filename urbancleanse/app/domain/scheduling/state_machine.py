"""
Transition tables for waste requests and routes.

Every status write goes through ``advance_request`` or ``advance_route``;
call sites never assign ``status`` directly.
"""

from typing import Dict, FrozenSet

from urbancleanse.app.core.exceptions import ConflictError
from urbancleanse.app.models.route import Route
from urbancleanse.app.models.scheduling_enums import RequestStatus, RouteStatus
from urbancleanse.app.models.waste_request import WasteRequest

REQUEST_TRANSITIONS: Dict[RequestStatus, FrozenSet[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({RequestStatus.APPROVED, RequestStatus.CANCELLED}),
    RequestStatus.APPROVED: frozenset({RequestStatus.COMPLETED, RequestStatus.CANCELLED, RequestStatus.PENDING}),
    RequestStatus.COMPLETED: frozenset({RequestStatus.PENDING}),
    RequestStatus.CANCELLED: frozenset({RequestStatus.PENDING}),
}

ROUTE_TRANSITIONS: Dict[RouteStatus, FrozenSet[RouteStatus]] = {
    RouteStatus.ASSIGNED: frozenset({RouteStatus.IN_PROGRESS, RouteStatus.COMPLETED, RouteStatus.CANCELLED}),
    RouteStatus.IN_PROGRESS: frozenset({RouteStatus.COMPLETED, RouteStatus.CANCELLED}),
    RouteStatus.COMPLETED: frozenset(),
    RouteStatus.CANCELLED: frozenset(),
}


def can_transition_request(current: RequestStatus, target: RequestStatus) -> bool:
    return target in REQUEST_TRANSITIONS[current]


def can_transition_route(current: RouteStatus, target: RouteStatus) -> bool:
    return target in ROUTE_TRANSITIONS[current]


def advance_request(request: WasteRequest, target: RequestStatus) -> RequestStatus:
    """
    Move a request to ``target``.

    Returns:
        The previous status

    Raises:
        ConflictError: transition not allowed from the current status
    """
    current = request.status
    if not can_transition_request(current, target):
        raise ConflictError(
            f"Cannot change request status from {current.value} to {target.value}",
            details={"request_id": request.request_id, "from": current.value, "to": target.value},
        )
    request.status = target
    return current


def release_assignment(request: WasteRequest, note: str) -> bool:
    """
    Return an approved request to pending and clear its assignment.

    Returns:
        True when the request was reset, False when it was not approved
    """
    if request.status != RequestStatus.APPROVED:
        return False
    advance_request(request, RequestStatus.PENDING)
    request.clear_assignment()
    request.append_note(note)
    return True


def advance_route(route: Route, target: RouteStatus) -> RouteStatus:
    """
    Move a route to ``target``.

    Raises:
        ConflictError: transition not allowed from the current status
    """
    current = route.status
    if not can_transition_route(current, target):
        raise ConflictError(
            f"Cannot change route status from {current.value} to {target.value}",
            details={"route_id": route.route_id, "from": current.value, "to": target.value},
        )
    route.status = target
    return current
