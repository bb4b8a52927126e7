"""
Audit logging service for scheduling state changes.

Provides centralized logging of request, route and collection events.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from urbancleanse.app.models.audit_log import AuditLog


class AuditAction:
    """Standardized audit action constants."""
    REQUEST_CREATED = "REQUEST_CREATED"
    REQUEST_STATUS_CHANGED = "REQUEST_STATUS_CHANGED"
    REQUEST_PAYMENT_UPDATED = "REQUEST_PAYMENT_UPDATED"

    ROUTE_STATUS_CHANGED = "ROUTE_STATUS_CHANGED"
    ROUTE_CREATED = "ROUTE_CREATED"
    ROUTE_CANCELLED = "ROUTE_CANCELLED"

    ALERT_RESOLVED = "ALERT_RESOLVED"

    BIN_COLLECTED = "BIN_COLLECTED"
    COLLECTION_ISSUE_REPORTED = "COLLECTION_ISSUE_REPORTED"
    BIN_READING_UPDATED = "BIN_READING_UPDATED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    actor_username: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    commit: bool = True,
) -> AuditLog:
    """
    Log a scheduling event to the audit log.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor_id: ID of user performing the action
        actor_username: Username of actor
        entity_type: Kind of entity acted upon (request, route, bin, collection)
        entity_id: Public identifier of that entity
        metadata: Additional context as JSON
        commit: Commit immediately; pass False to join the caller's transaction

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        actor_username=actor_username,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_data=metadata,
    )

    db.add(audit_log)
    if commit:
        await db.commit()
        await db.refresh(audit_log)
    else:
        await db.flush()

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering, most recent first.
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if entity_id:
        query = query.where(AuditLog.entity_id == entity_id)

    if action:
        query = query.where(AuditLog.action == action)

    result = await db.execute(query.limit(limit))
    return result.scalars().all()
