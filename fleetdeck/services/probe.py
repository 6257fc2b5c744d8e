import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from fleetdeck.core.config import get_settings
from fleetdeck.core.errors import FleetError
from fleetdeck.models import Host, HostStatus
from fleetdeck.services.remote import RemoteSession, SSHCredentials
from fleetdeck.utils import network
from fleetdeck.utils.time import utcnow

settings = get_settings()
logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    status: str
    workload_count: int
    checked_at: datetime
    error: Optional[str] = None

    @property
    def online(self) -> bool:
        return self.status == HostStatus.ONLINE


class HealthProbe:
    """Point-in-time health check of one host.

    Network and credential failures are the thing being measured, so they
    end up in ``ProbeResult.status`` and ``ProbeResult.error`` instead of
    being raised.
    """

    def __init__(
        self,
        session: Optional[RemoteSession] = None,
        clock: Callable[[], datetime] = utcnow,
        reachability_timeout: Optional[float] = None
    ):
        self.session = session or RemoteSession()
        self.clock = clock
        self.reachability_timeout = reachability_timeout or settings.REACHABILITY_TIMEOUT

    async def probe(self, host: Host) -> ProbeResult:
        status, count, error = await self._check(host)
        return ProbeResult(status=status, workload_count=count, checked_at=self.clock(), error=error)

    async def _check(self, host: Host) -> tuple[str, int, Optional[str]]:
        logger.info(f"Testing connection to server {host.name} ({host.address}:{host.ssh_port}) with user {host.ssh_user}")
        if not host.address:
            return HostStatus.OFFLINE, 0, "server address is empty"

        reach = await network.check_port(host.address, host.ssh_port, timeout=self.reachability_timeout)
        if not reach.reachable:
            logger.info(f"Server {host.name} ({host.address}:{host.ssh_port}) network connectivity failed: {reach.error}")
            return HostStatus.OFFLINE, 0, "network connectivity failed"

        credentials = SSHCredentials.from_host(host)
        if not credentials.has_key:
            logger.info(f"Server {host.name} ({host.address}) is reachable (network only, no SSH test)")
            return HostStatus.ONLINE, 0, None

        try:
            await self.session.execute(credentials, settings.HEALTH_CHECK_COMMAND)
        except FleetError as e:
            logger.info(f"Server {host.name} ({host.address}) SSH connection failed: {e.message}")
            return HostStatus.OFFLINE, 0, f"SSH connection failed: {e.message}"

        logger.info(f"Server {host.name} ({host.address}) is online via SSH ({reach.latency_ms}ms)")
        return HostStatus.ONLINE, await self._count_workloads(host, credentials), None

    async def _count_workloads(self, host: Host, credentials: SSHCredentials) -> int:
        try:
            output = await self.session.execute(credentials, settings.WORKLOAD_COUNT_COMMAND)
        except FleetError as e:
            logger.warning(f"Failed to get container count on {host.address}: {e.message}")
            return 0
        count = parse_count(output)
        if count is None:
            logger.warning(f"Failed to parse container count on {host.address}: {output!r}")
            return 0
        return count


def parse_count(output: str) -> Optional[int]:
    """Reads the leading integer of a ``wc -l`` style output."""
    tokens = (output or "").split()
    if not tokens:
        return None
    try:
        value = int(tokens[0])
    except ValueError:
        return None
    return value if value >= 0 else None
