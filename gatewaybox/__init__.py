# gatewaybox - keeps one healthy gateway running in a sandbox
"""
gatewaybox - Gateway lifecycle control for sandboxed deployments.

Finds, reuses, restarts or starts the gateway process and records the outcome
of each startup attempt for a status endpoint.
"""

from gatewaybox.controller import GatewayController
from gatewaybox.errors import GatewayError, SandboxError, StartupFailed
from gatewaybox.models import ProcessLogs, ProcessStatus
from gatewaybox.sandbox import ProcessApiSandbox, Sandbox, SandboxProcess
from gatewaybox.state import StartupSnapshot, StartupState

__all__ = [
    "GatewayController",
    "GatewayError",
    "SandboxError",
    "StartupFailed",
    "ProcessLogs",
    "ProcessStatus",
    "ProcessApiSandbox",
    "Sandbox",
    "SandboxProcess",
    "StartupSnapshot",
    "StartupState",
]

__version__ = "0.1.0"
