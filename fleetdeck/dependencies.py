from sqlmodel import Session
from fleetdeck.core.database import engine
from typing import Generator
from fastapi import Depends, Request
from fleetdeck.core.security import ActorContext, actor_from_token
from fleetdeck.services import AuditService, InventoryService, LifecycleService

def get_db() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session

def get_inventory_service(db: Session = Depends(get_db)) -> InventoryService:
    return InventoryService(db)

def get_lifecycle_service(db: Session = Depends(get_db)) -> LifecycleService:
    return LifecycleService(db)

def get_audit_service(db: Session = Depends(get_db)) -> AuditService:
    return AuditService(db)

def get_actor(request: Request) -> ActorContext:
    """Reads the acting principal and origin for audit attribution.

    Authentication happens in front of this service; an absent or
    unreadable token is recorded as ``unknown`` rather than rejected.
    """
    token = request.cookies.get("access_token")
    if not token:
        token = request.headers.get("Authorization")
    ip_address = request.client.host if request.client else ""
    return actor_from_token(token, ip_address=ip_address, user_agent=request.headers.get("User-Agent", ""))
