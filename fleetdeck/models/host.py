from datetime import datetime
from typing import Optional
from sqlmodel import Field, SQLModel
from fleetdeck.utils.time import utcnow

class HostStatus:
    ONLINE = "online"
    OFFLINE = "offline"

class Host(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)  # Friendly name
    address: str = Field(index=True)  # IP or FQDN
    ssh_user: str = Field(default="root")
    ssh_port: int = Field(default=22)
    ssh_key_encrypted: Optional[str] = Field(default=None)  # Fernet token of the PEM key
    status: str = Field(default=HostStatus.OFFLINE)
    running_apps_count: int = Field(default=0)  # Last observed, rewritten by every probe
    last_checked: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = Field(default=None, index=True)
