import logging
from datetime import datetime, timedelta
from typing import Optional, Union

from sqlmodel import Session, select, desc, func

from fleetdeck.core.security import ActorContext, UNKNOWN_ACTOR
from fleetdeck.models import App, AuditAction, AuditEntry, Host
from fleetdeck.utils.time import format_duration, utcnow

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500


class AuditService:
    """Append-only record of state-changing actions and its paginated query.

    Entries copy the resource name and type at write time, so history stays
    readable after the resource is renamed or removed. Nothing here updates
    or deletes an entry.
    """
    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        actor: Optional[ActorContext],
        action: Union[AuditAction, str],
        resource_type: str,
        resource_id,
        resource_name: str,
        details: str = "",
        now: Optional[datetime] = None
    ) -> AuditEntry:
        """Writes one audit entry and commits it.

        Args:
            actor: Who acted. ``None`` or a blank username is recorded as
                ``unknown``; a missing actor never blocks the write.
            action: Tag from the closed :class:`AuditAction` vocabulary.
            resource_type: ``app``, ``server``, ``user`` or ``project``.
            resource_id: Identifier of the resource, stored as text.
            resource_name: Display name at the time of the action.
            details: Free text such as the run duration.
            now: Creation timestamp, defaults to the current UTC time.

        Returns:
            The persisted entry.
        """
        actor = actor or ActorContext()
        action_value = AuditAction(action).value
        entry = AuditEntry(
            user_id=actor.user_id,
            username=actor.display_name or UNKNOWN_ACTOR,
            action=action_value,
            resource_type=resource_type,
            resource_id="" if resource_id is None else str(resource_id),
            resource_name=resource_name or "",
            details=details or "",
            ip_address=actor.ip_address or "",
            user_agent=actor.user_agent or "",
            created_at=now or utcnow(),
        )
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        logger.info(f"Audit: {entry.username} {action_value} {resource_type}/{entry.resource_id} {details}")
        return entry

    def record_safely(self, *args, **kwargs) -> Optional[AuditEntry]:
        """Like :meth:`record`, but a failed write is rolled back and logged.

        Used after a transition has already been committed: losing the audit
        row must not turn a successful start/stop into a reported failure.
        """
        try:
            return self.record(*args, **kwargs)
        except Exception:
            logger.exception("Failed to write audit entry")
            self.db.rollback()
            return None

    def query(
        self,
        user_id: Optional[str] = None,
        action: Optional[str] = None,
        resource_type: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> tuple[list[AuditEntry], int]:
        """Retrieves a page of entries, newest first, with the filtered total.

        Args:
            user_id: Exact actor id filter.
            action: Exact action tag filter.
            resource_type: Exact resource type filter.
            limit: Page size, clamped to 1..500.
            offset: Number of entries to skip.

        Returns:
            A tuple of (entries, total_matching_count). The total does not
            depend on ``limit``/``offset``.
        """
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = max(0, offset)

        query = select(AuditEntry)
        if user_id:
            query = query.where(AuditEntry.user_id == user_id)
        if action:
            query = query.where(AuditEntry.action == action)
        if resource_type:
            query = query.where(AuditEntry.resource_type == resource_type)

        count_query = select(func.count()).select_from(query.subquery())
        total_count = self.db.exec(count_query).one()

        query = query.order_by(desc(AuditEntry.created_at), desc(AuditEntry.id))
        entries = self.db.exec(query.offset(offset).limit(limit)).all()
        return list(entries), total_count


def format_app_details(app: App, host: Optional[Host], duration: Optional[timedelta] = None, label: str = "Duration") -> str:
    """Detail line for app actions, e.g. ``App: web on server edge-1, Duration: 47m12s``."""
    server = host.name if host else str(app.host_id)
    details = f"App: {app.name} on server {server}"
    if duration is not None:
        details += f", {label}: {format_duration(duration)}"
    return details
