from datetime import datetime
from enum import Enum
from typing import Optional
from sqlmodel import Field, SQLModel
from fleetdeck.utils.time import utcnow

class AuditAction(str, Enum):
    START_APP = "start_app"
    STOP_APP = "stop_app"
    CREATE_APP = "create_app"
    UPDATE_APP = "update_app"
    DELETE_APP = "delete_app"
    CREATE_SERVER = "create_server"
    UPDATE_SERVER = "update_server"
    DELETE_SERVER = "delete_server"
    REFRESH_SERVER = "refresh_server"
    REFRESH_ALL_SERVERS = "refresh_all_servers"
    CREATE_USER = "create_user"
    UPDATE_USER = "update_user"
    DELETE_USER = "delete_user"
    CREATE_PROJECT = "create_project"
    UPDATE_PROJECT = "update_project"
    DELETE_PROJECT = "delete_project"

class AuditEntry(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[str] = Field(default=None, index=True)
    username: str = Field(default="unknown")
    action: str = Field(index=True)  # AuditAction value
    resource_type: str = Field(index=True)  # app, server, user, project
    resource_id: str = Field(default="")
    resource_name: str = Field(default="")  # Copied at write time
    details: str = Field(default="")
    ip_address: str = Field(default="")
    user_agent: str = Field(default="")
    created_at: datetime = Field(default_factory=utcnow, index=True)
