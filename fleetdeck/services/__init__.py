from .remote import RemoteSession, SSHCredentials
from .probe import HealthProbe, ProbeResult
from .audit import AuditService
from .inventory import InventoryService
from .lifecycle import LifecycleService, StartResult, StopResult
