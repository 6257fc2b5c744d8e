from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    KEY_PARSE = "key_parse"
    CONNECT = "connect"
    COMMAND = "command"
    REMOTE_EXECUTION = "remote_execution"


class FleetError(Exception):
    """Base class for every failure the fleet core reports to callers.

    Each error carries a machine-readable ``kind`` so routers and the
    scheduler can branch without matching on message text, plus any remote
    output captured before the failure.
    """
    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, output: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.output = output

    def to_dict(self) -> dict:
        data = {"error": self.message, "kind": self.kind.value}
        if self.output:
            data["output"] = self.output
        return data


class ValidationError(FleetError):
    kind = ErrorKind.VALIDATION


class NotFoundError(FleetError):
    kind = ErrorKind.NOT_FOUND


class HostNotFound(NotFoundError):
    def __init__(self, host_id):
        super().__init__(f"Server {host_id} not found")
        self.host_id = host_id


class AppNotFound(NotFoundError):
    def __init__(self, app_id):
        super().__init__(f"App {app_id} not found")
        self.app_id = app_id


class RemoteSessionError(FleetError):
    """Failure of a single SSH invocation. ``address`` never includes credentials."""
    kind = ErrorKind.CONNECT

    def __init__(self, address: str, message: str, output: Optional[str] = None):
        super().__init__(f"{address}: {message}", output=output)
        self.address = address


class KeyParseError(RemoteSessionError):
    kind = ErrorKind.KEY_PARSE


class ConnectError(RemoteSessionError):
    kind = ErrorKind.CONNECT


class CommandError(RemoteSessionError):
    kind = ErrorKind.COMMAND

    def __init__(
        self,
        address: str,
        message: str,
        output: Optional[str] = None,
        exit_status: Optional[int] = None
    ):
        super().__init__(address, message, output=output)
        self.exit_status = exit_status


class RemoteExecutionError(FleetError):
    """A start/stop transition aborted because its remote command failed."""
    kind = ErrorKind.REMOTE_EXECUTION

    def __init__(self, action: str, cause: RemoteSessionError):
        super().__init__(f"Failed to {action} app: {cause.message}", output=cause.output)
        self.action = action
        self.cause_kind = cause.kind
        self.address = cause.address
