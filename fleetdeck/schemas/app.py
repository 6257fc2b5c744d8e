from typing import Optional
from pydantic import BaseModel, Field

class AppStartRequest(BaseModel):
    timeout_minutes: int = Field(default=0, ge=0)

class AppStartResponse(BaseModel):
    message: str
    output: str
    timer_ends_at: int
    app_url: str = ""

class AppStopResponse(BaseModel):
    message: str
    output: str

class AppTimer(BaseModel):
    timer_ends_at: int
    remaining_seconds: Optional[int] = None
