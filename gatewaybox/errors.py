"""Exceptions raised by gatewaybox."""


class GatewayError(Exception):
    """Base class for gateway lifecycle errors."""


class StartupFailed(GatewayError):
    """The gateway could not be started or never became reachable."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SandboxError(Exception):
    """The sandbox backend rejected a request or could not be reached."""


class ProcessNotFound(SandboxError):
    """The sandbox does not know the requested process."""


class PortWaitTimeout(SandboxError):
    """A port did not accept connections before the timeout."""


class ProcessExited(SandboxError):
    """A process exited while something was waiting on it."""


class ProcessWaitTimeout(SandboxError):
    """A process did not finish before the timeout."""
