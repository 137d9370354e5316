"""Tests for the in-sandbox process agent, and the controller driving it over HTTP."""

import asyncio
import os
import signal
import socket
import sys

import pytest
import pytest_asyncio
from aiohttp import test_utils

from gatewaybox.config import GatewaySettings
from gatewaybox.controller import GatewayController
from gatewaybox.errors import StartupFailed
from gatewaybox.logs import read_startup_logs
from gatewaybox.sandbox import ProcessApiSandbox
from gatewaybox.state import StartupState
from sandbox import process_api
from sandbox.process_api import ProcessAPI


def free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest_asyncio.fixture
async def api():
    api = ProcessAPI()
    yield api
    for proc in list(api.processes.values()):
        if proc.exit_code is None:
            try:
                os.killpg(proc.process.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
        # Reap before the loop closes so no subprocess transport is left open
        await proc.process.wait()
        await proc.drain()


@pytest_asyncio.fixture
async def client(api):
    async with test_utils.TestClient(test_utils.TestServer(api.create_app())) as client:
        yield client


async def start(client, command, **extra) -> dict:
    response = await client.post("/process/start", json={"command": command, **extra})
    assert response.status == 200
    return await response.json()


async def wait_finished(client, process_id) -> dict:
    for _ in range(100):
        info = await (await client.get(f"/process/{process_id}")).json()
        if info["status"] != "running":
            return info
        await asyncio.sleep(0.05)
    raise AssertionError(f"process {process_id} still running")


class TestProcessLifecycle:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert await response.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_output_is_captured(self, client):
        proc = await start(client, "echo hello; echo oops >&2")

        info = await wait_finished(client, proc["id"])
        logs = await (await client.get(f"/process/{proc['id']}/logs")).json()

        assert info["status"] == "exited"
        assert info["exit_code"] == 0
        assert logs == {"stdout": "hello\n", "stderr": "oops\n"}

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_failed(self, client):
        proc = await start(client, "exit 3")
        info = await wait_finished(client, proc["id"])
        assert info["status"] == "failed"
        assert info["exit_code"] == 3

    @pytest.mark.asyncio
    async def test_env_is_merged(self, client):
        proc = await start(client, 'echo "$GATEWAYBOX_TEST_VAR:$PATH"', env={"GATEWAYBOX_TEST_VAR": "v"})

        await wait_finished(client, proc["id"])
        logs = await (await client.get(f"/process/{proc['id']}/logs")).json()

        value, path = logs["stdout"].strip().split(":", 1)
        assert value == "v"
        assert path

    @pytest.mark.asyncio
    async def test_list_and_kill(self, client):
        proc = await start(client, "sleep 30")

        listing = await (await client.get("/process/list")).json()
        assert [p["status"] for p in listing["processes"] if p["id"] == proc["id"]] == ["running"]

        response = await client.post(f"/process/{proc['id']}/kill")
        assert await response.json() == {"success": True}
        info = await (await client.get(f"/process/{proc['id']}")).json()
        assert info["status"] == "failed"

    @pytest.mark.asyncio
    async def test_fetching_logs_forgets_finished_process(self, api, client):
        proc = await start(client, "echo done")
        await wait_finished(client, proc["id"])

        await client.get(f"/process/{proc['id']}/logs")

        assert proc["id"] not in api.processes
        listing = await (await client.get("/process/list")).json()
        assert listing["processes"] == []

    @pytest.mark.asyncio
    async def test_running_process_kept_after_logs(self, api, client):
        proc = await start(client, "sleep 30")
        await client.get(f"/process/{proc['id']}/logs")
        assert proc["id"] in api.processes

    @pytest.mark.asyncio
    async def test_unfetched_finished_processes_are_capped(self, api, client, monkeypatch):
        monkeypatch.setattr(process_api, "MAX_FINISHED_PROCESSES", 3)
        ids = []
        for _ in range(5):
            process_id = (await start(client, "true"))["id"]
            await api.processes[process_id].process.wait()
            ids.append(process_id)

        running = await start(client, "sleep 30")

        assert list(api.processes) == ids[2:] + [running["id"]]

    @pytest.mark.asyncio
    async def test_unknown_process(self, client):
        response = await client.get("/process/nope/logs")
        assert response.status == 404

    @pytest.mark.asyncio
    async def test_missing_command(self, client):
        response = await client.post("/process/start", json={})
        assert response.status == 400


class TestWaitPort:
    @pytest.mark.asyncio
    async def test_ready_when_listening(self, client):
        server = await asyncio.start_server(lambda r, w: w.close(), "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        try:
            proc = await start(client, "sleep 30")
            response = await client.post(
                f"/process/{proc['id']}/wait-port", json={"port": port, "timeout_ms": 2000}
            )
            assert response.status == 200
            assert await response.json() == {"ready": True}
        finally:
            server.close()
            await server.wait_closed()

    @pytest.mark.asyncio
    async def test_timeout(self, client):
        proc = await start(client, "sleep 30")
        response = await client.post(
            f"/process/{proc['id']}/wait-port", json={"port": free_port(), "timeout_ms": 300}
        )
        assert response.status == 408

    @pytest.mark.asyncio
    async def test_process_exits_first(self, client):
        proc = await start(client, "exit 1")
        response = await client.post(
            f"/process/{proc['id']}/wait-port", json={"port": free_port(), "timeout_ms": 5000}
        )
        assert response.status == 409
        assert "exited with code 1" in (await response.json())["error"]

    @pytest.mark.asyncio
    async def test_unsupported_mode(self, client):
        proc = await start(client, "sleep 30")
        response = await client.post(
            f"/process/{proc['id']}/wait-port", json={"port": 1, "mode": "http"}
        )
        assert response.status == 400


class TestControllerOverHttp:
    @pytest_asyncio.fixture
    async def sandbox(self, client):
        sandbox = ProcessApiSandbox(str(client.make_url("")))
        yield sandbox
        await sandbox.close()

    @pytest.mark.asyncio
    async def test_repeated_log_reads_leave_nothing_behind(self, api, sandbox, tmp_path):
        log_path = tmp_path / "startup.log"
        log_path.write_text("booting\n")

        for _ in range(20):
            assert await read_startup_logs(sandbox, str(log_path)) == "booting\n"

        assert api.processes == {}
        assert await sandbox.list_processes() == []

    @pytest.mark.asyncio
    async def test_fresh_start_becomes_ready(self, sandbox, tmp_path):
        port = free_port()
        script = (
            f'{sys.executable} -c "import socket, time; s = socket.socket(); '
            f"s.bind(('127.0.0.1', {port})); s.listen(); print('listening', flush=True); "
            f'time.sleep(30)"'
        )
        settings = GatewaySettings(
            port=port,
            startup_timeout_ms=10_000,
            startup_script=script,
            startup_log_path=str(tmp_path / "startup.log"),
        )
        controller = GatewayController(settings=settings, state=StartupState())

        process = await controller.ensure_gateway(sandbox, {})

        assert process.status.is_alive
        assert controller.state.snapshot().last_error is None

    @pytest.mark.asyncio
    async def test_failed_start_reports_logs(self, sandbox, tmp_path):
        settings = GatewaySettings(
            port=free_port(),
            startup_timeout_ms=5000,
            startup_script="sh -c 'echo \"panic: bind address in use\"; exit 1'",
            startup_log_path=str(tmp_path / "startup.log"),
        )
        controller = GatewayController(settings=settings, state=StartupState())

        with pytest.raises(StartupFailed, match="panic: bind address in use"):
            await controller.ensure_gateway(sandbox, {})

        snap = controller.state.snapshot()
        assert "panic: bind address in use" in snap.last_error
        assert snap.failure_count == 1
