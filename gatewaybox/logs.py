"""Best-effort access to the gateway's startup output."""

import asyncio
import logging
import time
from typing import Optional

from gatewaybox.config import LOG_READ_TIMEOUT_MS, STARTUP_LOG_PATH
from gatewaybox.errors import ProcessWaitTimeout
from gatewaybox.sandbox import Sandbox, SandboxProcess

logger = logging.getLogger(__name__)


async def wait_for_process(
    process: SandboxProcess, timeout_ms: int, poll_interval: float = 0.1
) -> None:
    """Poll until ``process`` is no longer starting or running."""
    deadline = time.monotonic() + timeout_ms / 1000
    while True:
        status = await process.get_status()
        if not status.is_alive:
            return
        if time.monotonic() >= deadline:
            raise ProcessWaitTimeout(
                f"Process {process.id} still {status.value} after {timeout_ms}ms"
            )
        await asyncio.sleep(poll_interval)


async def read_startup_logs(
    sandbox: Sandbox, log_path: str = STARTUP_LOG_PATH
) -> Optional[str]:
    """Read the startup log file, or None if it is missing, empty or unreadable.

    The file outlives the gateway process, so this works after it exited.
    """
    proc = None
    try:
        proc = await sandbox.start_process(f"cat {log_path} 2>/dev/null")
        await wait_for_process(proc, LOG_READ_TIMEOUT_MS)
        logs = await proc.get_logs()
    except ProcessWaitTimeout as e:
        logger.debug(f"Could not read startup logs from {log_path}: {e}")
        await _kill_quietly(proc)
        return None
    except Exception as e:
        logger.debug(f"Could not read startup logs from {log_path}: {e}")
        return None
    return logs.stdout or None


async def _kill_quietly(process: SandboxProcess) -> None:
    try:
        await process.kill()
    except Exception as e:
        logger.debug(f"Failed to kill log reader {process.id}: {e}")
