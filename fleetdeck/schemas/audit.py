from datetime import datetime
from typing import Optional
from pydantic import BaseModel

class AuditEntryRead(BaseModel):
    id: int
    userId: Optional[str] = None
    username: str
    action: str
    resourceType: str
    resourceId: str
    resourceName: str
    details: str
    ipAddress: str
    userAgent: str
    createdAt: datetime

class AuditPage(BaseModel):
    logs: list[AuditEntryRead]
    total: int
    limit: int
    offset: int
