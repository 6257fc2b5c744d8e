import asyncio
import logging
import shlex
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, List, Optional

from sqlmodel import Session, select

from fleetdeck.core.config import get_settings
from fleetdeck.core.errors import AppNotFound, FleetError, RemoteExecutionError, RemoteSessionError, ValidationError
from fleetdeck.core.security import ActorContext, SYSTEM_ACTOR
from fleetdeck.models import App, AppStatus, AuditAction, Host
from fleetdeck.services.audit import AuditService, format_app_details
from fleetdeck.services.inventory import InventoryService
from fleetdeck.services.remote import RemoteSession, SSHCredentials
from fleetdeck.utils.time import to_epoch, utcnow

settings = get_settings()
logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "domain", "app_url", "compose_path", "host_id", "auto_stop_mins")


@dataclass
class StartResult:
    output: str
    timer_ends_at: Optional[datetime]

    @property
    def timer_ends_at_epoch(self) -> int:
        """Epoch seconds of the auto-stop instant, 0 for manual-stop-only."""
        return to_epoch(self.timer_ends_at)


@dataclass
class StopResult:
    output: str
    duration: Optional[timedelta]


def compose_command(compose_path: str, verb: str) -> str:
    return f"cd {shlex.quote(compose_path)} && {settings.COMPOSE_COMMAND} {verb}"


def time_remaining(app: App, now: datetime) -> Optional[timedelta]:
    """Time left before auto-stop, ``None`` when the app has no auto-stop pending."""
    if app.status != AppStatus.RUNNING or app.timer_ends_at is None:
        return None
    return max(app.timer_ends_at - now, timedelta(0))


def is_expired(app: App, now: datetime) -> bool:
    return (
        app.status == AppStatus.RUNNING
        and app.timer_ends_at is not None
        and app.timer_ends_at <= now
    )


class LifecycleService:
    """Drives apps between ``stopped`` and ``running`` on their host.

    Transitions on the same app are serialized through a per-app lock;
    different apps never wait on each other. The record is only written after
    the remote command succeeded, so a failed transition leaves it untouched.

    Attributes:
        db (Session): SQLModel session for app, host and audit records.
        session (RemoteSession): SSH executor used for compose commands.
    """
    _locks: dict[int, asyncio.Lock] = {}

    def __init__(self, db: Session, session: Optional[RemoteSession] = None):
        self.db = db
        self.session = session or RemoteSession()
        self.inventory = InventoryService(db)
        self.audit = AuditService(db)

    def _get_lock(self, app_id: int) -> asyncio.Lock:
        if app_id not in LifecycleService._locks:
            LifecycleService._locks[app_id] = asyncio.Lock()
        return LifecycleService._locks[app_id]

    # --- Lookup ---

    def get_app(self, app_id: int) -> App:
        """Resolves a live app or raises :class:`AppNotFound`."""
        app = self.db.get(App, app_id)
        if not app or app.deleted_at is not None:
            raise AppNotFound(app_id)
        return app

    def list_apps(self) -> List[App]:
        statement = select(App).where(App.deleted_at.is_(None)).order_by(App.name)
        return list(self.db.exec(statement).all())

    def _resolve(self, app_id: int) -> tuple[App, Host]:
        app = self.get_app(app_id)
        host = self.inventory.get_host(app.host_id)
        if not app.compose_path or not app.compose_path.strip():
            raise ValidationError(f"App {app.name} has no compose path")
        return app, host

    # --- Registration ---

    def create_app(
        self,
        name: str,
        compose_path: str,
        host_id: int,
        domain: str = "",
        app_url: str = "",
        auto_stop_mins: int = 60,
        actor: Optional[ActorContext] = None
    ) -> App:
        if not compose_path or not compose_path.strip():
            raise ValidationError("Compose path is required")
        host = self.inventory.get_host(host_id)
        app = App(
            name=name,
            compose_path=compose_path.strip(),
            host_id=host.id,
            domain=domain,
            app_url=app_url,
            auto_stop_mins=max(auto_stop_mins, 0),
        )
        self.db.add(app)
        self.db.commit()
        self.db.refresh(app)
        self.audit.record_safely(actor, AuditAction.CREATE_APP, "app", app.id, app.name, format_app_details(app, host))
        return app

    def update_app(self, app_id: int, data: dict[str, Any], actor: Optional[ActorContext] = None) -> App:
        app = self.get_app(app_id)
        if data.get("host_id") is not None:
            self.inventory.get_host(data["host_id"])
        for k in EDITABLE_FIELDS:
            if data.get(k) is not None:
                setattr(app, k, data[k])
        app.auto_stop_mins = max(app.auto_stop_mins, 0)
        app.updated_at = utcnow()
        if app.status == AppStatus.RUNNING:
            # a running app's timer follows its current auto-stop setting
            started_at = app.started_at or app.updated_at
            app.timer_ends_at = started_at + timedelta(minutes=app.auto_stop_mins) if app.auto_stop_mins > 0 else None
        self.db.add(app)
        self.db.commit()
        self.db.refresh(app)
        self.audit.record_safely(actor, AuditAction.UPDATE_APP, "app", app.id, app.name, "App updated")
        return app

    def delete_app(self, app_id: int, actor: Optional[ActorContext] = None) -> None:
        app = self.get_app(app_id)
        app.deleted_at = utcnow()
        self.db.add(app)
        self.db.commit()
        lock = LifecycleService._locks.get(app_id)
        if lock is not None and not lock.locked():
            del LifecycleService._locks[app_id]
        self.audit.record_safely(actor, AuditAction.DELETE_APP, "app", app.id, app.name, "App deleted")

    # --- Transitions ---

    async def start(
        self,
        app_id: int,
        timeout_minutes: int,
        actor: Optional[ActorContext],
        now: datetime
    ) -> StartResult:
        """Brings an app up and arms its auto-stop timer.

        Starting an app that is already running re-issues the compose command
        and restarts the clock from ``now``.

        Args:
            app_id: App to start.
            timeout_minutes: Minutes until auto-stop; 0 or less means manual
                stop only and overwrites the configured value.
            actor: Who is starting the app.
            now: Start instant, also the base of the timer.

        Returns:
            The command output and the absolute auto-stop instant (or None).

        Raises:
            AppNotFound, HostNotFound: Unresolved ids, before any remote call.
            RemoteExecutionError: The compose command failed. Nothing was saved.
        """
        async with self._get_lock(app_id):
            app, host = self._resolve(app_id)
            try:
                output = await self.session.execute(
                    SSHCredentials.from_host(host), compose_command(app.compose_path, "up -d")
                )
            except RemoteSessionError as e:
                logger.error(f"Command failed on {host.address} while starting {app.name}: {e.message}")
                raise RemoteExecutionError("start", e)

            timeout = timeout_minutes if timeout_minutes and timeout_minutes > 0 else 0
            app.status = AppStatus.RUNNING
            app.started_at = now
            app.auto_stop_mins = timeout
            app.timer_ends_at = now + timedelta(minutes=timeout) if timeout > 0 else None
            app.updated_at = now
            self.db.add(app)
            self.db.commit()
            self.db.refresh(app)

            if timeout > 0:
                details = format_app_details(app, host, timedelta(minutes=timeout), label="Auto-stop")
            else:
                details = format_app_details(app, host) + ", Auto-stop: manual"
            self.audit.record_safely(actor, AuditAction.START_APP, "app", app.id, app.name, details, now=now)
            logger.info(f"App {app.name} started on {host.address}, timer ends at {app.timer_ends_at or 'never'}")
            return StartResult(output=output, timer_ends_at=app.timer_ends_at)

    async def stop(
        self,
        app_id: int,
        actor: Optional[ActorContext],
        now: datetime,
        only_if_expired: bool = False
    ) -> Optional[StopResult]:
        """Tears an app down and clears its run timestamps.

        Stopping an app with no recorded start succeeds; the audit entry then
        carries no duration.

        Args:
            only_if_expired: Re-check the timer under the app's lock and skip
                the stop (returning None) unless it is still running with an
                auto-stop instant at or before ``now``.

        Raises:
            AppNotFound, HostNotFound: Unresolved ids, before any remote call.
            RemoteExecutionError: The compose command failed. Nothing was saved.
        """
        async with self._get_lock(app_id):
            app, host = self._resolve(app_id)
            if only_if_expired:
                self.db.refresh(app)
                if not is_expired(app, now):
                    logger.info(f"Skipping auto-stop of {app.name}: timer no longer elapsed")
                    return None
            try:
                output = await self.session.execute(
                    SSHCredentials.from_host(host), compose_command(app.compose_path, "down")
                )
            except RemoteSessionError as e:
                logger.error(f"Command failed on {host.address} while stopping {app.name}: {e.message}")
                raise RemoteExecutionError("stop", e)

            duration = None
            if app.started_at is not None:
                duration = max(now - app.started_at, timedelta(0))

            app.status = AppStatus.STOPPED
            app.started_at = None
            app.timer_ends_at = None
            app.updated_at = now
            self.db.add(app)
            self.db.commit()
            self.db.refresh(app)

            self.audit.record_safely(
                actor, AuditAction.STOP_APP, "app", app.id, app.name,
                format_app_details(app, host, duration), now=now
            )
            logger.info(f"App {app.name} stopped on {host.address}")
            return StopResult(output=output, duration=duration)

    # --- Auto-expiry ---

    def list_expired(self, now: datetime) -> List[App]:
        """Running apps whose auto-stop instant is at or before ``now``."""
        statement = (
            select(App)
            .where(App.deleted_at.is_(None))
            .where(App.status == AppStatus.RUNNING)
            .where(App.timer_ends_at.is_not(None))
            .where(App.timer_ends_at <= now)
            .order_by(App.timer_ends_at)
        )
        return list(self.db.exec(statement).all())

    async def stop_expired(self, now: datetime, actor: Optional[ActorContext] = None) -> List[App]:
        """Stops every expired app. A failure on one app does not block the rest.

        Returns:
            The apps that were stopped.
        """
        stopped = []
        for app in self.list_expired(now):
            try:
                if await self.stop(app.id, actor or SYSTEM_ACTOR, now, only_if_expired=True):
                    stopped.append(app)
            except FleetError as e:
                logger.error(f"Auto-stop of {app.name} failed: {e.message}")
        return stopped
