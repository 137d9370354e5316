import logging
from typing import Callable, Mapping, Optional

from gatewaybox.config import GatewaySettings
from gatewaybox.discovery import find_gateway_process
from gatewaybox.env import build_env_vars
from gatewaybox.errors import StartupFailed
from gatewaybox.logs import read_startup_logs
from gatewaybox.readiness import wait_ready
from gatewaybox.sandbox import Sandbox, SandboxProcess
from gatewaybox.state import StartupState
from gatewaybox.storage import StorageMounter

logger = logging.getLogger(__name__)


class GatewayController:
    """Makes sure exactly one reachable gateway runs in a sandbox.

    Flow of a single ``ensure_gateway`` call:
    - mount persistent storage (failures handled by the mounter)
    - look for an existing gateway process and wait for its port
    - kill it if it never becomes reachable
    - otherwise, or after a kill, start a fresh one and wait for its port

    Concurrent calls are not serialized. Reused processes always get the full
    startup timeout, so two callers converge on the same process instead of
    killing each other's still-initializing gateway.
    """

    def __init__(
        self,
        settings: Optional[GatewaySettings] = None,
        state: Optional[StartupState] = None,
        env_builder: Callable[[Mapping[str, str]], dict[str, str]] = build_env_vars,
        storage: Optional[StorageMounter] = None,
    ):
        self.settings = settings or GatewaySettings()
        self.state = state or StartupState()
        self.env_builder = env_builder
        self.storage = storage or StorageMounter()

    async def ensure_gateway(self, sandbox: Sandbox, env: Mapping[str, str]) -> SandboxProcess:
        """Return a reachable gateway process, starting one if needed.

        Raises:
            StartupFailed: the new process could not be spawned or never
                became reachable. The message includes captured startup logs
                when there are any.
        """
        self.state.mark_in_progress()
        try:
            return await self._ensure(sandbox, env)
        except StartupFailed:
            raise
        except Exception as e:
            # Keep the state consistent if a collaborator blows up
            self.state.mark_failed(str(e) or type(e).__name__)
            raise

    async def _ensure(self, sandbox: Sandbox, env: Mapping[str, str]) -> SandboxProcess:
        await self.storage.mount(sandbox, env)

        discovery = await find_gateway_process(sandbox)
        existing = discovery.process
        if existing is not None:
            logger.info(f"Found existing gateway process {existing.id} (status: {existing.status.value})")
            readiness = await wait_ready(existing, self.settings.port, self.settings.startup_timeout_ms)
            if readiness.ready:
                self.state.mark_success()
                return existing

            logger.warning(
                f"Existing process {existing.id} not reachable after full timeout, "
                "killing and restarting"
            )
            try:
                await existing.kill()
            except Exception as e:
                logger.warning(f"Failed to kill process {existing.id}: {e}")

        return await self._start_fresh(sandbox, env)

    async def _start_fresh(self, sandbox: Sandbox, env: Mapping[str, str]) -> SandboxProcess:
        env_vars = self.env_builder(env)
        command = self.settings.startup_command
        logger.info(f"Starting new gateway: {command}")
        logger.info(f"Environment vars being passed: {sorted(env_vars)}")

        try:
            process = await sandbox.start_process(command, env=env_vars or None)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"Failed to start gateway process: {message}")
            self.state.mark_failed(message)
            raise StartupFailed(message) from e
        logger.info(f"Process started with id {process.id} (status: {process.status.value})")

        readiness = await wait_ready(process, self.settings.port, self.settings.startup_timeout_ms)
        startup_logs = await read_startup_logs(sandbox, self.settings.startup_log_path)

        if readiness.ready:
            self.state.mark_success()
            if startup_logs:
                logger.info(f"Gateway startup logs:\n{startup_logs}")
            return process

        logger.error(f"Gateway startup failed. Logs: {startup_logs or '(empty)'}")
        if startup_logs:
            message = f"Gateway failed to start:\n{startup_logs}"
        else:
            message = f"Gateway failed to start: {readiness.error}"
        self.state.mark_failed(message)
        raise StartupFailed(message)
