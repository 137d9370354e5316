"""Internal models for the gateway controller."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ProcessStatus(str, Enum):
    """Status of a process inside the sandbox."""
    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ProcessStatus":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_alive(self) -> bool:
        return self in (ProcessStatus.STARTING, ProcessStatus.RUNNING)


class CommandKind(str, Enum):
    """What a process command line looks like."""
    GATEWAY = "gateway"
    CLI = "cli"  # Short-lived utility invocations of the gateway binary
    OTHER = "other"


@dataclass
class ProcessLogs:
    """Captured output of a sandbox process."""
    stdout: str
    stderr: str


class DiscoveryOutcome(str, Enum):
    FOUND = "found"
    ABSENT = "absent"  # Listing worked, nothing qualified
    UNKNOWN = "unknown"  # Listing failed


@dataclass
class DiscoveryResult:
    """Result of scanning the sandbox for a gateway process."""
    outcome: DiscoveryOutcome
    process: Optional[Any] = None
    error: Optional[str] = None


@dataclass
class ReadinessResult:
    """Result of waiting for the gateway port."""
    ready: bool
    error: Optional[str] = None
