from typing import Optional
from pydantic import BaseModel, Field

class HostProbe(BaseModel):
    id: int
    name: str
    address: str
    status: str
    runningAppsCount: int = Field(default=0)
    lastChecked: Optional[int] = None

class HostRefreshAll(BaseModel):
    message: str
    servers: list[HostProbe]
