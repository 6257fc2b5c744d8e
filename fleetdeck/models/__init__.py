from .host import Host, HostStatus
from .app import App, AppStatus
from .audit import AuditEntry, AuditAction
