"""Mount the persistent storage bucket into the sandbox.

The startup script restores gateway state from the mount on boot and backs it
up there afterwards. Mounting is optional: without credentials, or when the
mount fails, the gateway simply starts without persisted state.
"""

import logging
from typing import Mapping

from gatewaybox.config import GatewaySettings, StorageSettings
from gatewaybox.logs import wait_for_process
from gatewaybox.sandbox import Sandbox

logger = logging.getLogger(__name__)

PASSWD_FILE = "/etc/passwd-s3fs"
MOUNT_TIMEOUT_MS = 30_000
CHECK_TIMEOUT_MS = 5000


class StorageMounter:
    async def mount(self, sandbox: Sandbox, env: Mapping[str, str]) -> bool:
        """Mount the bucket if configured. Returns True when it is mounted."""
        storage = GatewaySettings.from_env(env).storage
        if not storage.configured:
            logger.info("Storage credentials not configured, skipping mount")
            return False

        try:
            if await self._is_mounted(sandbox, storage):
                logger.info(f"Storage already mounted at {storage.mount_path}")
                return True

            await self._run(
                sandbox,
                f'printf "%s:%s" "$R2_ACCESS_KEY_ID" "$R2_SECRET_ACCESS_KEY" > {PASSWD_FILE}'
                f" && chmod 600 {PASSWD_FILE}",
                CHECK_TIMEOUT_MS,
                env={
                    "R2_ACCESS_KEY_ID": storage.access_key_id,
                    "R2_SECRET_ACCESS_KEY": storage.secret_access_key,
                },
            )
            await self._run(
                sandbox,
                f"mkdir -p {storage.mount_path} && s3fs {storage.bucket} {storage.mount_path}"
                f" -o passwd_file={PASSWD_FILE} -o url={storage.endpoint}"
                " -o use_path_request_style",
                MOUNT_TIMEOUT_MS,
            )

            if await self._is_mounted(sandbox, storage):
                logger.info(f"Mounted bucket {storage.bucket} at {storage.mount_path}")
                return True
            logger.error(f"Bucket {storage.bucket} not mounted after s3fs returned")
            return False
        except Exception as e:
            logger.error(f"Failed to mount storage: {e}")
            return False

    async def _is_mounted(self, sandbox: Sandbox, storage: StorageSettings) -> bool:
        logs = await self._run(
            sandbox, f'mount | grep "s3fs on {storage.mount_path}"', CHECK_TIMEOUT_MS
        )
        return bool(logs.stdout.strip())

    async def _run(self, sandbox: Sandbox, command: str, timeout_ms: int, env=None):
        proc = await sandbox.start_process(command, env=env)
        await wait_for_process(proc, timeout_ms)
        return await proc.get_logs()
