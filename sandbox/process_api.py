#!/usr/bin/env python3
"""
process_api - Process agent for the gateway sandbox.

Runs inside the sandbox, listens on port 2024 and manages long-running
background processes on behalf of the gateway controller.

Endpoints:
    GET  /health                    - Health check
    GET  /process/list              - List known processes
    POST /process/start             - Start a background shell command
    GET  /process/{id}              - Process info
    GET  /process/{id}/logs         - Captured stdout/stderr (forgets finished processes)
    POST /process/{id}/kill         - Kill a process
    POST /process/{id}/wait-port    - Wait until a TCP port accepts connections

Usage:
    ./process_api --addr 0.0.0.0:2024
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import time
import uuid
from asyncio.subprocess import PIPE
from http import HTTPStatus
from typing import Optional

from aiohttp import web

logger = logging.getLogger(__name__)

PORT_POLL_INTERVAL = 0.25

# Finished processes are forgotten once their logs are fetched. This bounds the
# ones nobody asks about.
MAX_FINISHED_PROCESSES = 20


class BackgroundProcess:
    """A shell command started by the agent, with its output buffered."""

    def __init__(self, command: str, process: asyncio.subprocess.Process):
        self.id = uuid.uuid4().hex[:12]
        self.command = command
        self.process = process
        self.started_at = time.time()
        self.stdout: list[str] = []
        self.stderr: list[str] = []
        self._readers = [
            asyncio.create_task(self._read(process.stdout, self.stdout)),
            asyncio.create_task(self._read(process.stderr, self.stderr)),
        ]

    @staticmethod
    async def _read(stream, buffer: list[str]) -> None:
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            buffer.append(chunk.decode("utf-8", errors="replace"))

    @property
    def exit_code(self) -> Optional[int]:
        return self.process.returncode

    @property
    def status(self) -> str:
        if self.exit_code is None:
            return "running"
        return "exited" if self.exit_code == 0 else "failed"

    async def drain(self) -> None:
        """Wait for the output readers once the process has finished."""
        await asyncio.gather(*self._readers, return_exceptions=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "command": self.command,
            "status": self.status,
            "exit_code": self.exit_code,
            "started_at": self.started_at,
        }


class ProcessAPI:
    def __init__(self, port_host: str = "127.0.0.1"):
        self.port_host = port_host
        self.processes: dict[str, BackgroundProcess] = {}

    async def _json_body(self, request: web.Request) -> Optional[dict]:
        if not request.can_read_body:
            return {}
        try:
            body = await request.json()
        except json.JSONDecodeError:
            return None
        return body if isinstance(body, dict) else None

    def _prune_finished(self) -> None:
        """Drop the oldest finished processes whose logs nobody fetched."""
        finished = [p.id for p in self.processes.values() if p.exit_code is not None]
        for process_id in finished[:max(0, len(finished) - MAX_FINISHED_PROCESSES)]:
            del self.processes[process_id]

    def _get(self, request: web.Request) -> Optional[BackgroundProcess]:
        return self.processes.get(request.match_info["process_id"])

    @staticmethod
    def _not_found(request: web.Request) -> web.Response:
        return web.json_response(
            {"error": f"Process {request.match_info['process_id']} not found"},
            status=HTTPStatus.NOT_FOUND,
        )

    async def health(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.json_response({"status": "ok"})

    async def list_processes(self, request: web.Request) -> web.Response:
        return web.json_response(
            {"processes": [p.to_dict() for p in self.processes.values()]}
        )

    async def start_process(self, request: web.Request) -> web.Response:
        """Start a command in the background and return immediately."""
        body = await self._json_body(request)
        if body is None:
            return web.json_response(
                {"error": "Invalid JSON"}, status=HTTPStatus.BAD_REQUEST
            )

        command = body.get("command")
        if not command:
            return web.json_response(
                {"error": "Missing 'command' field"}, status=HTTPStatus.BAD_REQUEST
            )

        env = None
        if body.get("env"):
            env = {**os.environ, **{k: str(v) for k, v in body["env"].items()}}

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=PIPE,
                stderr=PIPE,
                env=env,
                cwd=body.get("workdir"),
                start_new_session=True,
            )
        except OSError as e:
            return web.json_response(
                {"error": f"Failed to start process: {e}"},
                status=HTTPStatus.INTERNAL_SERVER_ERROR,
            )

        proc = BackgroundProcess(command, process)
        self._prune_finished()
        self.processes[proc.id] = proc
        logger.info(f"Started process {proc.id} (pid {process.pid}): {command}")
        return web.json_response(proc.to_dict())

    async def get_process(self, request: web.Request) -> web.Response:
        proc = self._get(request)
        if proc is None:
            return self._not_found(request)
        return web.json_response(proc.to_dict())

    async def get_logs(self, request: web.Request) -> web.Response:
        proc = self._get(request)
        if proc is None:
            return self._not_found(request)
        finished = proc.exit_code is not None
        if finished:
            await proc.drain()
        response = web.json_response({
            "stdout": "".join(proc.stdout),
            "stderr": "".join(proc.stderr),
        })
        if finished:
            # Output has been collected, nothing left to track
            self.processes.pop(proc.id, None)
        return response

    async def kill_process(self, request: web.Request) -> web.Response:
        proc = self._get(request)
        if proc is None:
            return self._not_found(request)
        if proc.exit_code is None:
            try:
                # Kill the whole session so children of the shell go too
                os.killpg(proc.process.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
            await proc.process.wait()
            logger.info(f"Killed process {proc.id}")
        return web.json_response({"success": True})

    async def wait_port(self, request: web.Request) -> web.Response:
        """Wait until a TCP connection to the port succeeds.

        Fails early with 409 if the process exits before the port opens.
        """
        proc = self._get(request)
        if proc is None:
            return self._not_found(request)

        body = await self._json_body(request)
        if body is None or "port" not in body:
            return web.json_response(
                {"error": "Missing 'port' field"}, status=HTTPStatus.BAD_REQUEST
            )
        if body.get("mode", "tcp") != "tcp":
            return web.json_response(
                {"error": f"Unsupported mode: {body['mode']}"},
                status=HTTPStatus.BAD_REQUEST,
            )

        port = int(body["port"])
        timeout = int(body.get("timeout_ms", 60_000)) / 1000
        deadline = time.monotonic() + timeout

        while True:
            if await self._port_open(port):
                return web.json_response({"ready": True})
            if proc.exit_code is not None:
                return web.json_response(
                    {"error": f"Process {proc.id} exited with code {proc.exit_code} "
                              f"before port {port} was ready"},
                    status=HTTPStatus.CONFLICT,
                )
            if time.monotonic() >= deadline:
                return web.json_response(
                    {"error": f"Port {port} not ready after {timeout}s"},
                    status=HTTPStatus.REQUEST_TIMEOUT,
                )
            await asyncio.sleep(PORT_POLL_INTERVAL)

    async def _port_open(self, port: int) -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.port_host, port), timeout=1.0
            )
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    def create_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = web.Application()
        app.router.add_get("/health", self.health)
        app.router.add_get("/process/list", self.list_processes)
        app.router.add_post("/process/start", self.start_process)
        app.router.add_get("/process/{process_id}", self.get_process)
        app.router.add_get("/process/{process_id}/logs", self.get_logs)
        app.router.add_post("/process/{process_id}/kill", self.kill_process)
        app.router.add_post("/process/{process_id}/wait-port", self.wait_port)
        return app


def main():
    logging.basicConfig(level=logging.INFO)

    parser = argparse.ArgumentParser(description="Sandbox process agent")
    parser.add_argument(
        "--addr",
        default="0.0.0.0:2024",
        help="Address to listen on (default: 0.0.0.0:2024)",
    )
    args = parser.parse_args()

    host, port = args.addr.rsplit(":", 1)
    port = int(port)

    api = ProcessAPI()
    app = api.create_app()

    logger.info(f"process_api listening on {host}:{port}")

    web.run_app(app, host=host, port=port, print=None)


if __name__ == "__main__":
    main()
