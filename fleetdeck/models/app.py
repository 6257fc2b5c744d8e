from datetime import datetime
from typing import Optional
from sqlmodel import Field, SQLModel
from fleetdeck.utils.time import utcnow

class AppStatus:
    STOPPED = "stopped"
    RUNNING = "running"

class App(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    domain: str = Field(default="")
    app_url: str = Field(default="")
    compose_path: str  # Directory holding the compose definition on the host
    host_id: int = Field(index=True)  # Resolved on demand, no ORM relationship
    status: str = Field(default=AppStatus.STOPPED, index=True)
    started_at: Optional[datetime] = Field(default=None)
    auto_stop_mins: int = Field(default=60)  # 0 means manual stop only
    timer_ends_at: Optional[datetime] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = Field(default=None, index=True)
