import asyncio
import logging
from typing import Any, List, Optional

from sqlmodel import Session, select

from fleetdeck.core.errors import HostNotFound, ValidationError
from fleetdeck.core.security import ActorContext, encrypt_secret
from fleetdeck.models import AuditAction, Host, HostStatus
from fleetdeck.services.audit import AuditService
from fleetdeck.services.probe import HealthProbe, ProbeResult
from fleetdeck.utils.time import utcnow

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "address", "ssh_user", "ssh_port")


class InventoryService:
    """Registered hosts and their reconciliation against observed state.

    A host's status, running workload count and last check time are only
    ever written here, together, from a single probe.
    """
    def __init__(self, db: Session, probe: Optional[HealthProbe] = None):
        self.db = db
        self.probe = probe or HealthProbe()
        self.audit = AuditService(db)

    # --- Lookup ---

    def get_host(self, host_id: int) -> Host:
        """Resolves a live host or raises :class:`HostNotFound`."""
        host = self.db.get(Host, host_id)
        if not host or host.deleted_at is not None:
            raise HostNotFound(host_id)
        return host

    def list_hosts(self) -> List[Host]:
        statement = select(Host).where(Host.deleted_at.is_(None)).order_by(Host.name)
        return list(self.db.exec(statement).all())

    # --- Registration ---

    def create_host(
        self,
        name: str,
        address: str,
        ssh_user: str = "root",
        ssh_port: int = 22,
        private_key: Optional[str] = None,
        actor: Optional[ActorContext] = None
    ) -> Host:
        if not address or not address.strip():
            raise ValidationError("Server address is required")
        host = Host(
            name=(name or address).strip(),
            address=address.strip(),
            ssh_user=ssh_user,
            ssh_port=ssh_port,
            ssh_key_encrypted=encrypt_secret(private_key) if private_key else None,
        )
        self.db.add(host)
        self.db.commit()
        self.db.refresh(host)
        self.audit.record_safely(actor, AuditAction.CREATE_SERVER, "server", host.id, host.name, "Server registered")
        return host

    def update_host(self, host_id: int, data: dict[str, Any], actor: Optional[ActorContext] = None) -> Host:
        """Applies editable fields; ``private_key`` is re-encrypted when given."""
        host = self.get_host(host_id)
        for k in EDITABLE_FIELDS:
            if data.get(k) is not None:
                setattr(host, k, data[k])
        if not host.address:
            raise ValidationError("Server address is required")
        if data.get("private_key"):
            host.ssh_key_encrypted = encrypt_secret(data["private_key"])
        host.updated_at = utcnow()
        self.db.add(host)
        self.db.commit()
        self.db.refresh(host)
        self.audit.record_safely(actor, AuditAction.UPDATE_SERVER, "server", host.id, host.name, "Server updated")
        return host

    def delete_host(self, host_id: int, actor: Optional[ActorContext] = None) -> None:
        host = self.get_host(host_id)
        host.deleted_at = utcnow()
        self.db.add(host)
        self.db.commit()
        self.audit.record_safely(actor, AuditAction.DELETE_SERVER, "server", host.id, host.name, "Server deleted")

    # --- Reconciliation ---

    def _apply(self, host: Host, result: ProbeResult) -> Host:
        host.status = result.status
        host.running_apps_count = result.workload_count if result.online else 0
        host.last_checked = result.checked_at
        host.updated_at = result.checked_at
        self.db.add(host)
        self.db.commit()
        self.db.refresh(host)
        return host

    async def refresh_one(self, host_id: int, actor: Optional[ActorContext] = None) -> Host:
        """Probes a single host and stores the result.

        Raises:
            HostNotFound: The id does not resolve to a live host.
        """
        host = self.get_host(host_id)
        result = await self.probe.probe(host)
        host = self._apply(host, result)
        details = f"Status: {host.status}, running apps: {host.running_apps_count}"
        if result.error:
            details += f" ({result.error})"
        self.audit.record_safely(actor, AuditAction.REFRESH_SERVER, "server", host.id, host.name, details)
        return host

    async def refresh_all(self, actor: Optional[ActorContext] = None) -> List[Host]:
        """Probes every live host concurrently and stores each result on its own.

        One host's failure, whether in the probe or in its write, is folded
        into that host as ``offline`` and never affects the others.
        """
        hosts = self.list_hosts()
        results = await asyncio.gather(*(self.probe.probe(h) for h in hosts), return_exceptions=True)

        refreshed = []
        for host, result in zip(hosts, results):
            if isinstance(result, BaseException):
                logger.error(f"Probe of {host.name} ({host.address}) raised: {result}")
                result = ProbeResult(status=HostStatus.OFFLINE, workload_count=0, checked_at=utcnow(), error=str(result))
            try:
                refreshed.append(self._apply(host, result))
            except Exception:
                logger.exception(f"Failed to store refresh result for {host.name}")
                self.db.rollback()
                refreshed.append(host)

        online = len([h for h in refreshed if h.status == HostStatus.ONLINE])
        details = f"{len(refreshed)} servers refreshed: {online} online, {len(refreshed) - online} offline"
        self.audit.record_safely(actor, AuditAction.REFRESH_ALL_SERVERS, "server", "", "all", details)
        return refreshed
