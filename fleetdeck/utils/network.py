import asyncio
import time
import logging
from typing import NamedTuple, Optional

logger = logging.getLogger(__name__)


class Reachability(NamedTuple):
    reachable: bool
    latency_ms: float
    error: Optional[str] = None


async def check_port(address: str, port: int, timeout: float = 5.0) -> Reachability:
    """
    Opens and immediately closes a TCP connection to ``address:port``.
    Only tells whether something accepts connections there, not that it speaks SSH.
    """
    started = time.perf_counter()

    def elapsed() -> float:
        return round((time.perf_counter() - started) * 1000, 2)

    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(address, port), timeout=timeout)
        latency = elapsed()
        writer.close()
        await writer.wait_closed()
    except asyncio.TimeoutError:
        return Reachability(False, elapsed(), f"no answer within {timeout:g}s")
    except OSError as e:
        logger.debug(f"TCP connect to {address}:{port} failed: {e}")
        return Reachability(False, elapsed(), e.strerror or str(e))
    return Reachability(True, latency)
