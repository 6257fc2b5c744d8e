from fastapi import APIRouter, Depends
from fleetdeck.core.security import ActorContext
from fleetdeck.dependencies import get_actor, get_inventory_service
from fleetdeck.models import Host
from fleetdeck.schemas.host import HostProbe, HostRefreshAll
from fleetdeck.services import InventoryService
from fleetdeck.utils.time import to_epoch

router = APIRouter(prefix="/api/servers", tags=["servers"])

def _to_probe(host: Host) -> HostProbe:
    return HostProbe(
        id=host.id,
        name=host.name,
        address=host.address,
        status=host.status,
        runningAppsCount=host.running_apps_count,
        lastChecked=to_epoch(host.last_checked) if host.last_checked else None,
    )

@router.post("/refresh", response_model=HostRefreshAll)
async def refresh_all_servers(
    service: InventoryService = Depends(get_inventory_service),
    actor: ActorContext = Depends(get_actor)
) -> HostRefreshAll:
    """Re-probes every registered server.

    Why: Unreachable servers come back as ``offline`` in the list instead of
    failing the request, so one dead host never hides the state of the rest.

    Args:
        service: Injected InventoryService.
        actor: Caller identity for the audit trail.

    Returns:
        All servers with their fresh status.
    """
    hosts = await service.refresh_all(actor=actor)
    return HostRefreshAll(message="All servers refreshed", servers=[_to_probe(h) for h in hosts])

@router.post("/{host_id}/test", response_model=HostProbe)
async def test_server_connection(
    host_id: int,
    service: InventoryService = Depends(get_inventory_service),
    actor: ActorContext = Depends(get_actor)
) -> HostProbe:
    host = await service.refresh_one(host_id, actor=actor)
    return _to_probe(host)
