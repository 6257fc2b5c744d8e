from fastapi import APIRouter, Depends
from fleetdeck.core.security import ActorContext
from fleetdeck.dependencies import get_actor, get_lifecycle_service
from fleetdeck.schemas.app import AppStartRequest, AppStartResponse, AppStopResponse, AppTimer
from fleetdeck.services import LifecycleService
from fleetdeck.services.lifecycle import time_remaining
from fleetdeck.utils.time import to_epoch, utcnow

router = APIRouter(prefix="/api/apps", tags=["apps"])

@router.post("/{app_id}/start", response_model=AppStartResponse)
async def start_app(
    app_id: int,
    body: AppStartRequest,
    service: LifecycleService = Depends(get_lifecycle_service),
    actor: ActorContext = Depends(get_actor)
) -> AppStartResponse:
    """Brings an app up on its host and arms the auto-stop timer.

    Args:
        app_id: Target app ID.
        body: Requested auto-stop timeout in minutes (0 = manual stop).
        service: Injected LifecycleService.
        actor: Caller identity for the audit trail.

    Returns:
        Compose output and the auto-stop instant in epoch seconds (0 if none).
    """
    result = await service.start(app_id, body.timeout_minutes, actor, utcnow())
    app = service.get_app(app_id)
    return AppStartResponse(
        message="App started",
        output=result.output,
        timer_ends_at=result.timer_ends_at_epoch,
        app_url=app.app_url,
    )

@router.post("/{app_id}/stop", response_model=AppStopResponse)
async def stop_app(
    app_id: int,
    service: LifecycleService = Depends(get_lifecycle_service),
    actor: ActorContext = Depends(get_actor)
) -> AppStopResponse:
    result = await service.stop(app_id, actor, utcnow())
    return AppStopResponse(message="App stopped", output=result.output)

@router.get("/{app_id}/timer", response_model=AppTimer)
def get_app_timer(
    app_id: int,
    service: LifecycleService = Depends(get_lifecycle_service)
) -> AppTimer:
    """Reports the auto-stop countdown; ``remaining_seconds`` is null for manual-stop apps."""
    app = service.get_app(app_id)
    remaining = time_remaining(app, utcnow())
    return AppTimer(
        timer_ends_at=to_epoch(app.timer_ends_at),
        remaining_seconds=int(remaining.total_seconds()) if remaining is not None else None,
    )
