import logging

from gatewaybox.models import ReadinessResult
from gatewaybox.sandbox import SandboxProcess

logger = logging.getLogger(__name__)


async def wait_ready(process: SandboxProcess, port: int, timeout_ms: int) -> ReadinessResult:
    """Wait until ``port`` accepts TCP connections from ``process``.

    The timeout is passed through untouched. Callers reusing a process that
    already reports "running" still get the full wait, since its listener may
    not be bound yet. Never terminates the process.
    """
    logger.info(f"Waiting for gateway {process.id} on port {port} (timeout {timeout_ms}ms)")
    try:
        await process.wait_for_port(port, mode="tcp", timeout_ms=timeout_ms)
    except Exception as e:
        logger.info(f"Gateway {process.id} not reachable on port {port}: {e}")
        return ReadinessResult(ready=False, error=str(e) or type(e).__name__)
    logger.info(f"Gateway {process.id} is reachable on port {port}")
    return ReadinessResult(ready=True)
