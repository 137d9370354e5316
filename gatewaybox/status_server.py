"""HTTP status surface for the gateway.

Reports whether the gateway is up and what happened on the last startup
attempt, and lets callers trigger ``ensure_gateway``.

Endpoints:
    GET  /health                - Health check
    GET  /api/status            - Gateway process + startup state
    POST /api/gateway/ensure    - Start or reuse the gateway and wait for it

Usage:
    gatewaybox-status --addr 0.0.0.0:8080 --process-api-url http://127.0.0.1:2024
"""

import argparse
import asyncio
import logging
import os
from http import HTTPStatus
from typing import Mapping, Optional

from aiohttp import web

from gatewaybox.config import GatewaySettings
from gatewaybox.controller import GatewayController
from gatewaybox.discovery import find_gateway_process
from gatewaybox.errors import StartupFailed
from gatewaybox.models import DiscoveryOutcome
from gatewaybox.sandbox import ProcessApiSandbox, Sandbox
from gatewaybox.state import StartupState

logger = logging.getLogger(__name__)


class StatusAPI:
    def __init__(
        self,
        controller: GatewayController,
        sandbox: Sandbox,
        env: Optional[Mapping[str, str]] = None,
    ):
        self.controller = controller
        self.sandbox = sandbox
        self.env = dict(os.environ) if env is None else env
        self._background: set[asyncio.Task] = set()

    @property
    def state(self) -> StartupState:
        return self.controller.state

    def _start_in_background(self) -> None:
        task = asyncio.create_task(self._ensure_quietly())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _ensure_quietly(self) -> None:
        try:
            await self.controller.ensure_gateway(self.sandbox, self.env)
        except Exception as e:
            # Already recorded in the startup state for /api/status
            logger.error(f"Background gateway startup failed: {e}")

    async def _cancel_background(self, app: web.Application) -> None:
        """Cancel startups still running when the app shuts down."""
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info(f"Cancelling {len(tasks)} background gateway startup(s)")
            await asyncio.gather(*tasks, return_exceptions=True)

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})

    async def status(self, request: web.Request) -> web.Response:
        """Report the gateway process and the last startup outcome.

        If no gateway is running and nobody is starting one, kick off a
        startup in the background so a polling client eventually sees it.
        """
        discovery = await find_gateway_process(self.sandbox)
        startup = self.state.snapshot()
        body = {"ok": False, "status": "not_running", "startup": startup.to_dict()}

        if discovery.outcome is DiscoveryOutcome.FOUND:
            process = discovery.process
            body.update(ok=True, status=process.status.value, process_id=process.id)
        elif discovery.outcome is DiscoveryOutcome.UNKNOWN:
            body.update(status="unknown", error=discovery.error)

        if not body["ok"] and not startup.in_progress:
            self._start_in_background()
            body["starting"] = True

        return web.json_response(body)

    async def ensure(self, request: web.Request) -> web.Response:
        try:
            process = await self.controller.ensure_gateway(self.sandbox, self.env)
        except StartupFailed as e:
            return web.json_response(
                {"error": e.message, "startup": self.state.snapshot().to_dict()},
                status=HTTPStatus.SERVICE_UNAVAILABLE,
            )
        return web.json_response({
            "process_id": process.id,
            "status": process.status.value,
            "startup": self.state.snapshot().to_dict(),
        })

    def create_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = web.Application()
        app.router.add_get("/health", self.health)
        app.router.add_get("/api/status", self.status)
        app.router.add_post("/api/gateway/ensure", self.ensure)
        app.on_cleanup.append(self._cancel_background)
        return app


def main():
    logging.basicConfig(level=logging.INFO)
    settings = GatewaySettings.from_env()

    parser = argparse.ArgumentParser(description="Gateway status server")
    parser.add_argument(
        "--addr",
        default=f"{settings.status_host}:{settings.status_port}",
        help="Address to listen on (default: %(default)s)",
    )
    parser.add_argument(
        "--process-api-url",
        default=settings.process_api_url,
        help="URL of the sandbox process_api (default: %(default)s)",
    )
    args = parser.parse_args()

    host, port = args.addr.rsplit(":", 1)
    port = int(port)

    sandbox = ProcessApiSandbox(args.process_api_url)
    controller = GatewayController(settings=settings, state=StartupState())
    api = StatusAPI(controller, sandbox)
    app = api.create_app()

    async def close_sandbox(app: web.Application) -> None:
        await sandbox.close()

    app.on_cleanup.append(close_sandbox)

    logger.info(f"Status server listening on {host}:{port}, process_api at {args.process_api_url}")

    web.run_app(app, host=host, port=port, print=None)


if __name__ == "__main__":
    main()
