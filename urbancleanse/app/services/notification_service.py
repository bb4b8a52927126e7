"""
Notification Service.

``NotificationDispatcher`` is the outbound, fire-and-forget publish path used
by the scheduling core. It writes through its own session so a delivery
failure can never touch the caller's transaction. Dispatch is time-bounded,
guarded by a circuit breaker, and failures land in the dead-letter queue.

``NotificationService`` holds the read/mark-read helpers for the in-app
notification inbox.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from urbancleanse.app.core.config import settings
from urbancleanse.app.core.reliability import CircuitBreaker, notification_circuit_breaker
from urbancleanse.app.db.session import AsyncSessionLocal
from urbancleanse.app.domain.scheduling.identifiers import utcnow
from urbancleanse.app.models.dlq import DeadLetterQueue, DLQStatus
from urbancleanse.app.models.enums import UserRole
from urbancleanse.app.models.notification import Notification, NotificationType
from urbancleanse.app.models.user import User

logger = logging.getLogger(__name__)


class NotificationDispatcher:

    def __init__(
        self,
        session_factory=AsyncSessionLocal,
        breaker: CircuitBreaker = notification_circuit_breaker,
        timeout: float = settings.notification_timeout_seconds,
    ):
        self._session_factory = session_factory
        self._breaker = breaker
        self._timeout = timeout

    async def notify(
        self,
        user_id: int,
        type: NotificationType,
        title: str,
        message: str,
        related_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[int]:
        """
        Publish one notification. Never raises.

        Returns:
            The notification id, or None when delivery failed
        """
        try:
            return await self._breaker.call(
                self._deliver_bounded, user_id, type, title, message, related_id, metadata
            )
        except Exception as exc:  # delivery is best effort
            logger.warning(
                "Notification %s to user %s failed: %r", type.value, user_id, exc
            )
            await self._dead_letter(
                error=repr(exc),
                payload={
                    "user_id": user_id,
                    "type": type.value,
                    "title": title,
                    "message": message,
                    "related_id": related_id,
                },
            )
            return None

    async def notify_role(
        self,
        role: UserRole,
        type: NotificationType,
        title: str,
        message: str,
        related_id: Optional[str] = None,
    ) -> int:
        """Publish to every active user holding ``role``. Returns the number delivered."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(User.id).where(User.role == role, User.is_active == True)  # noqa: E712
                )
                user_ids = result.scalars().all()
        except SQLAlchemyError as exc:
            logger.warning("Could not resolve %s recipients: %s", role.value, exc)
            return 0

        results = await asyncio.gather(
            *(self.notify(user_id, type, title, message, related_id) for user_id in user_ids)
        )
        return sum(1 for r in results if r is not None)

    async def _deliver_bounded(self, *args) -> int:
        # Bounded inside the breaker call; a timeout counts as a failure
        return await asyncio.wait_for(self._deliver(*args), timeout=self._timeout)

    async def _deliver(self, user_id, type, title, message, related_id, metadata) -> int:
        async with self._session_factory() as session:
            notif = Notification(
                user_id=user_id,
                type=type,
                title=title,
                message=message,
                related_id=related_id,
                metadata_payload=metadata,
            )
            session.add(notif)
            await session.commit()
            return notif.id

    async def _dead_letter(self, error: str, payload: Dict[str, Any]) -> None:
        try:
            async with self._session_factory() as session:
                session.add(DeadLetterQueue(
                    task_name="notification.dispatch",
                    error_message=error,
                    payload=payload,
                    status=DLQStatus.FAILED,
                ))
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Could not record failed notification in DLQ")


_dispatcher: Optional[NotificationDispatcher] = None


def get_dispatcher() -> NotificationDispatcher:
    """FastAPI dependency returning the process-wide dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher


class NotificationService:

    @staticmethod
    async def list_for_user(
        db: AsyncSession,
        user_id: int,
        unread_only: bool = False,
        limit: int = 50,
    ) -> List[Notification]:
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.is_read == False)  # noqa: E712
        result = await db.execute(query.order_by(Notification.id.desc()).limit(limit))
        return list(result.scalars().all())

    @staticmethod
    async def mark_read(db: AsyncSession, notification_id: int, user_id: int) -> bool:
        """Mark a notification as read."""
        stmt = update(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id
        ).values(
            is_read=True,
            read_at=utcnow()
        )
        result = await db.execute(stmt)
        return result.rowcount > 0

    @staticmethod
    async def mark_all_read(db: AsyncSession, user_id: int) -> int:
        """Mark all notifications for user as read."""
        stmt = update(Notification).where(
            Notification.user_id == user_id,
            Notification.is_read == False  # noqa: E712
        ).values(
            is_read=True,
            read_at=utcnow()
        )
        result = await db.execute(stmt)
        return result.rowcount
