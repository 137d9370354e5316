"""Sandbox backend interface and an HTTP client for the in-sandbox process_api."""

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

import httpx

from gatewaybox.errors import PortWaitTimeout, ProcessExited, ProcessNotFound, SandboxError
from gatewaybox.models import ProcessLogs, ProcessStatus

logger = logging.getLogger(__name__)

# Added to operation timeouts so the HTTP request outlives the server-side wait
REQUEST_MARGIN_S = 5.0


class SandboxProcess(Protocol):
    """A process living inside the sandbox."""

    id: str
    command: str
    status: ProcessStatus

    async def wait_for_port(self, port: int, mode: str = "tcp", timeout_ms: int = 60_000) -> None:
        """Block until ``port`` accepts connections. Raises on timeout or exit."""
        ...

    async def get_logs(self) -> ProcessLogs:
        ...

    async def get_status(self) -> ProcessStatus:
        ...

    async def kill(self) -> None:
        ...


class Sandbox(Protocol):
    """The execution environment the gateway runs in."""

    async def list_processes(self) -> list[SandboxProcess]:
        ...

    async def start_process(
        self, command: str, env: Optional[dict[str, str]] = None
    ) -> SandboxProcess:
        ...


@dataclass
class RemoteProcess:
    """Handle to a process managed by a remote process_api."""

    id: str
    command: str
    status: ProcessStatus
    sandbox: "ProcessApiSandbox" = field(repr=False)
    exit_code: Optional[int] = None

    async def wait_for_port(self, port: int, mode: str = "tcp", timeout_ms: int = 60_000) -> None:
        await self.sandbox.wait_for_port(self.id, port, mode=mode, timeout_ms=timeout_ms)

    async def get_logs(self) -> ProcessLogs:
        return await self.sandbox.get_logs(self.id)

    async def get_status(self) -> ProcessStatus:
        info = await self.sandbox.get_process(self.id)
        self.status = info.status
        self.exit_code = info.exit_code
        return self.status

    async def kill(self) -> None:
        await self.sandbox.kill(self.id)


class ProcessApiSandbox:
    """Talks to ``sandbox/process_api.py`` running inside the sandbox."""

    def __init__(self, api_url: str, timeout: float = 30.0):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create a shared httpx client for connection reuse."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        client = await self._get_http_client()
        kwargs = {"json": json}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            response = await client.request(method, f"{self.api_url}{path}", **kwargs)
        except httpx.HTTPError as e:
            raise SandboxError(f"{method} {path} failed: {e}") from e

        if response.status_code == 404:
            raise ProcessNotFound(_error_text(response))
        return response

    def _to_process(self, data: dict) -> RemoteProcess:
        return RemoteProcess(
            id=data["id"],
            command=data.get("command", ""),
            status=ProcessStatus.parse(data.get("status")),
            exit_code=data.get("exit_code"),
            sandbox=self,
        )

    async def health(self) -> bool:
        try:
            response = await self._request("GET", "/health", timeout=2.0)
        except SandboxError:
            return False
        return response.status_code == 200

    async def list_processes(self) -> list[RemoteProcess]:
        response = await self._request("GET", "/process/list")
        _raise_for_status(response)
        return [self._to_process(p) for p in response.json().get("processes", [])]

    async def start_process(
        self, command: str, env: Optional[dict[str, str]] = None
    ) -> RemoteProcess:
        payload = {"command": command}
        if env:
            payload["env"] = env
        response = await self._request("POST", "/process/start", json=payload)
        _raise_for_status(response)
        return self._to_process(response.json())

    async def get_process(self, process_id: str) -> RemoteProcess:
        response = await self._request("GET", f"/process/{process_id}")
        _raise_for_status(response)
        return self._to_process(response.json())

    async def get_logs(self, process_id: str) -> ProcessLogs:
        response = await self._request("GET", f"/process/{process_id}/logs")
        _raise_for_status(response)
        data = response.json()
        return ProcessLogs(stdout=data.get("stdout", ""), stderr=data.get("stderr", ""))

    async def kill(self, process_id: str) -> None:
        response = await self._request("POST", f"/process/{process_id}/kill")
        _raise_for_status(response)

    async def wait_for_port(
        self, process_id: str, port: int, mode: str = "tcp", timeout_ms: int = 60_000
    ) -> None:
        response = await self._request(
            "POST",
            f"/process/{process_id}/wait-port",
            json={"port": port, "mode": mode, "timeout_ms": timeout_ms},
            timeout=timeout_ms / 1000 + REQUEST_MARGIN_S,
        )
        if response.status_code == 408:
            raise PortWaitTimeout(_error_text(response))
        if response.status_code == 409:
            raise ProcessExited(_error_text(response))
        _raise_for_status(response)


def _error_text(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict) and data.get("error"):
        return data["error"]
    return response.text


def _raise_for_status(response: httpx.Response) -> None:
    if response.status_code >= 400:
        raise SandboxError(f"process_api returned {response.status_code}: {_error_text(response)}")
