"""Find the gateway process among everything running in the sandbox."""

import logging

from gatewaybox.models import CommandKind, DiscoveryOutcome, DiscoveryResult
from gatewaybox.sandbox import Sandbox

logger = logging.getLogger(__name__)

GATEWAY_MARKERS = ("start-moltbot.sh", "clawdbot gateway")

# Utility invocations of the same binary, e.g. "clawdbot devices list"
CLI_MARKERS = ("clawdbot devices", "clawdbot --version")


def classify_command(command: str) -> CommandKind:
    """Classify a process by its command line.

    CLI markers win over gateway markers, so a short-lived utility call is never
    mistaken for the gateway even though it shares the program name.
    """
    if any(marker in command for marker in CLI_MARKERS):
        return CommandKind.CLI
    if any(marker in command for marker in GATEWAY_MARKERS):
        return CommandKind.GATEWAY
    return CommandKind.OTHER


async def find_gateway_process(sandbox: Sandbox) -> DiscoveryResult:
    """Return the first gateway process that is starting or running.

    Listing failures are logged and reported as an ``unknown`` outcome rather
    than raised, so startup can carry on as if nothing was found.
    """
    try:
        processes = await sandbox.list_processes()
    except Exception as e:
        logger.warning(f"Could not list processes: {e}")
        return DiscoveryResult(outcome=DiscoveryOutcome.UNKNOWN, error=str(e))

    for proc in processes:
        if classify_command(proc.command) is not CommandKind.GATEWAY:
            continue
        if proc.status.is_alive:
            return DiscoveryResult(outcome=DiscoveryOutcome.FOUND, process=proc)

    return DiscoveryResult(outcome=DiscoveryOutcome.ABSENT)
