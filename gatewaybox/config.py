"""Configuration for the gateway controller.

The module-level constants are the built-in defaults. ``GatewaySettings.from_env``
lets a deployment override the tunable ones through environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

# TCP port the gateway listens on inside the sandbox
GATEWAY_PORT = 18789

# Cold starts restore state from storage and install channels, so be generous
STARTUP_TIMEOUT_MS = 180_000

STARTUP_SCRIPT = "/usr/local/bin/start-moltbot.sh"

# Combined stdout/stderr of the startup script, readable after it exits
STARTUP_LOG_PATH = "/tmp/moltbot-startup.log"

LOG_READ_TIMEOUT_MS = 5000

DEFAULT_PROCESS_API_URL = "http://127.0.0.1:2024"

# Where the storage bucket is mounted inside the sandbox
STORAGE_MOUNT_PATH = "/data/moltbot"


def startup_command(script: str = STARTUP_SCRIPT, log_path: str = STARTUP_LOG_PATH) -> str:
    """Shell command that runs the startup script with output captured to a file."""
    return f"{script} > {log_path} 2>&1"


@dataclass
class StorageSettings:
    """Credentials for the bucket mounted into the sandbox."""
    bucket: str = "moltbot-data"
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    account_id: Optional[str] = None
    mount_path: str = STORAGE_MOUNT_PATH

    @property
    def configured(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key and self.account_id)

    @property
    def endpoint(self) -> str:
        return f"https://{self.account_id}.r2.cloudflarestorage.com"


@dataclass
class GatewaySettings:
    port: int = GATEWAY_PORT
    startup_timeout_ms: int = STARTUP_TIMEOUT_MS
    startup_script: str = STARTUP_SCRIPT
    startup_log_path: str = STARTUP_LOG_PATH
    process_api_url: str = DEFAULT_PROCESS_API_URL
    status_host: str = "0.0.0.0"
    status_port: int = 8080
    storage: StorageSettings = field(default_factory=StorageSettings)

    @property
    def startup_command(self) -> str:
        return startup_command(self.startup_script, self.startup_log_path)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "GatewaySettings":
        """Build settings from environment variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        storage = StorageSettings(
            bucket=env.get("R2_BUCKET_NAME", "moltbot-data"),
            access_key_id=env.get("R2_ACCESS_KEY_ID"),
            secret_access_key=env.get("R2_SECRET_ACCESS_KEY"),
            account_id=env.get("CF_ACCOUNT_ID"),
        )
        return cls(
            port=int(env.get("GATEWAY_PORT", str(GATEWAY_PORT))),
            startup_timeout_ms=int(env.get("STARTUP_TIMEOUT_MS", str(STARTUP_TIMEOUT_MS))),
            startup_script=env.get("STARTUP_SCRIPT", STARTUP_SCRIPT),
            startup_log_path=env.get("STARTUP_LOG_PATH", STARTUP_LOG_PATH),
            process_api_url=env.get("PROCESS_API_URL", DEFAULT_PROCESS_API_URL),
            status_host=env.get("STATUS_HOST", "0.0.0.0"),
            status_port=int(env.get("STATUS_PORT", "8080")),
            storage=storage,
        )
