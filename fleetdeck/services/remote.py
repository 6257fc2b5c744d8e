import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

import asyncssh

from fleetdeck.core.config import get_settings
from fleetdeck.core.errors import ValidationError, KeyParseError, ConnectError, CommandError
from fleetdeck.core.security import decrypt_secret
from fleetdeck.models import Host

settings = get_settings()
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SSHCredentials:
    address: str
    port: int
    username: str
    private_key: str = field(default="", repr=False)

    @property
    def has_key(self) -> bool:
        return bool(self.username and self.private_key)

    @classmethod
    def from_host(cls, host: Host) -> "SSHCredentials":
        """Builds credentials for a host, decrypting the stored key material."""
        return cls(
            address=host.address or "",
            port=host.ssh_port,
            username=host.ssh_user or "",
            private_key=normalize_private_key(decrypt_secret(host.ssh_key_encrypted or "")),
        )


def normalize_private_key(raw_key: str) -> str:
    """Repairs keys pasted through forms or env files (escaped newlines, CRLF)."""
    if not raw_key:
        return ""
    key = raw_key.replace("\\n", "\n").replace("\\r", "").replace("\r\n", "\n").strip()
    return key + "\n"


class RemoteSession:
    """Runs a single command on a host over SSH.

    One instance holds only the timeouts; every :meth:`execute` call opens
    its own connection and releases it before returning. Host keys are not
    verified: hosts are registered by operators, never discovered.
    """

    def __init__(
        self,
        connect_timeout: Optional[float] = None,
        command_timeout: Optional[float] = None
    ):
        self.connect_timeout = connect_timeout or settings.SSH_CONNECT_TIMEOUT
        self.command_timeout = command_timeout or settings.COMMAND_TIMEOUT

    async def execute(self, credentials: SSHCredentials, command: str) -> str:
        """Runs ``command`` to completion and returns combined stdout/stderr.

        Args:
            credentials: Target address, port, login and PEM key material.
            command: A single shell command line.

        Returns:
            The command's combined output.

        Raises:
            ValidationError: The address is empty.
            KeyParseError: The key material could not be parsed. No
                connection is attempted.
            ConnectError: TCP, handshake or authentication failed or timed out.
            CommandError: The command exited non-zero, timed out, or the
                channel failed. ``output`` holds what was captured.
        """
        address = credentials.address
        if not address:
            raise ValidationError("Server address is empty")

        try:
            client_key = asyncssh.import_private_key(credentials.private_key)
        except (asyncssh.KeyImportError, ValueError, TypeError) as e:
            raise KeyParseError(address, f"could not parse private key: {e}") from None

        try:
            conn = await asyncssh.connect(
                address,
                port=credentials.port,
                username=credentials.username,
                client_keys=[client_key],
                known_hosts=None,
                connect_timeout=self.connect_timeout,
            )
        except (OSError, asyncssh.Error, asyncio.TimeoutError) as e:
            logger.warning(f"SSH connect to {address}:{credentials.port} failed: {e}")
            raise ConnectError(address, f"connection failed: {str(e) or 'timed out'}") from None

        async with conn:
            logger.info(f"Executing command on {address}: {command}")
            try:
                result = await asyncio.wait_for(
                    conn.run(command, check=False, stderr=asyncssh.STDOUT),
                    timeout=self.command_timeout,
                )
            except asyncio.TimeoutError:
                raise CommandError(
                    address, f"command timed out after {self.command_timeout:g}s"
                ) from None
            except (OSError, asyncssh.Error) as e:
                raise CommandError(address, f"channel failed: {e}") from None

        output = _as_text(result.stdout)
        if result.exit_status != 0:
            logger.error(f"Command failed on {address} with exit status {result.exit_status}")
            raise CommandError(
                address,
                f"command exited with status {result.exit_status}",
                output=output,
                exit_status=result.exit_status,
            )
        return output


def _as_text(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data
