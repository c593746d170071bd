# bridge.py
# Request/response correlation with long-lived external processes.
#
# Wire format: one JSON object per line over the child's stdin/stdout.
#   request  {"id": int, "method": "call_tool", "params": {"name": str, "arguments": obj}}
#   response {"id": int, "result"?: any, "error"?: {"message": str}}
# Lines without a numeric id are notifications and are ignored, as is
# anything that does not parse.

import asyncio
import json
import os
import shlex
from dataclasses import dataclass, field
from typing import Any

from goal_engine import display
from goal_engine.errors import BridgeError, BridgeTimeout, ConfigurationError


@dataclass
class _Service:
    name: str
    process: asyncio.subprocess.Process
    tasks: list[asyncio.Task] = field(default_factory=list)


class ProcessBridge:
    """
    At most one subprocess per named service.

    The launch command for service FOO is read from FOO_MCP_COMMAND the first
    time FOO is called. A service whose process has exited is relaunched on
    the next call.
    """

    def __init__(self, timeout: float = 15.0) -> None:
        self._timeout = timeout
        self._services: dict[str, _Service] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._pending: dict[int, tuple[str, asyncio.Future]] = {}
        self._next_id = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def call_tool(
        self,
        service: str,
        name: str,
        arguments: Any,
        timeout: float | None = None,
    ) -> Any:
        """
        Send one call_tool request and wait for its response.

        Raises BridgeTimeout when no answer arrives in time, BridgeError when
        the service answers with an error or dies, ConfigurationError when
        the service has no launch command.
        """
        loop = asyncio.get_running_loop()
        self._next_id += 1
        request_id = self._next_id
        future: asyncio.Future = loop.create_future()
        self._pending[request_id] = (service, future)

        request = {
            "id": request_id,
            "method": "call_tool",
            "params": {"name": name, "arguments": arguments},
        }
        line = (json.dumps(request) + "\n").encode("utf-8")

        try:
            await self._send(service, line)
            return await asyncio.wait_for(future, timeout or self._timeout)
        except asyncio.TimeoutError:
            raise BridgeTimeout(f"{service} MCP timeout ({name})") from None
        finally:
            self._pending.pop(request_id, None)

    async def shutdown(self) -> None:
        """Terminate every live subprocess. Safe to call more than once."""
        services = list(self._services.values())
        self._services.clear()
        for entry in services:
            await self._terminate(entry)
        self._fail_pending(None, BridgeError("Bridge shut down."))

    @property
    def live_services(self) -> list[str]:
        return list(self._services)

    # ------------------------------------------------------------------
    # Process management
    # ------------------------------------------------------------------

    def _lock_for(self, service: str) -> asyncio.Lock:
        if service not in self._locks:
            self._locks[service] = asyncio.Lock()
        return self._locks[service]

    async def _send(self, service: str, line: bytes) -> None:
        # Writes are serialized per service so messages never interleave.
        async with self._lock_for(service):
            for attempt in range(2):
                entry = await self._get_or_start(service)
                try:
                    entry.process.stdin.write(line)
                    await entry.process.stdin.drain()
                    return
                except (BrokenPipeError, ConnectionResetError) as exc:
                    self._forget(entry)
                    if attempt == 1:
                        raise BridgeError(f"{service} MCP stdin is not available") from exc

    async def _get_or_start(self, service: str) -> _Service:
        existing = self._services.get(service)
        if existing is not None and existing.process.returncode is None:
            return existing

        env_key = f"{service}_MCP_COMMAND"
        command_line = os.environ.get(env_key)
        if not command_line:
            raise ConfigurationError(f"Environment variable {env_key} is not defined.")

        argv = shlex.split(command_line)
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        entry = _Service(name=service, process=process)
        entry.tasks.append(asyncio.create_task(self._read_stdout(entry)))
        entry.tasks.append(asyncio.create_task(self._read_stderr(entry)))
        self._services[service] = entry
        display.service_started(service, argv[0])
        return entry

    def _forget(self, entry: _Service) -> None:
        if self._services.get(entry.name) is entry:
            del self._services[entry.name]

    async def _terminate(self, entry: _Service) -> None:
        process = entry.process
        if process.returncode is None:
            try:
                process.terminate()
                await asyncio.wait_for(process.wait(), 5)
            except ProcessLookupError:
                pass
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
        for task in entry.tasks:
            task.cancel()

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    async def _read_stdout(self, entry: _Service) -> None:
        buffer = b""
        stream = entry.process.stdout
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            buffer += chunk
            *lines, buffer = buffer.split(b"\n")
            for line in lines:
                self._handle_line(line)

        code = await entry.process.wait()
        if self._services.get(entry.name) is entry:
            self._forget(entry)
            display.service_exited(entry.name, code)
            self._fail_pending(entry.name, BridgeError(f"{entry.name} MCP exited with code {code}"))

    async def _read_stderr(self, entry: _Service) -> None:
        stream = entry.process.stderr
        while True:
            line = await stream.readline()
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                display.service_stderr(entry.name, text)

    def _handle_line(self, line: bytes) -> None:
        if not line.strip():
            return
        try:
            message = json.loads(line)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return
        if not isinstance(message, dict):
            return
        request_id = message.get("id")
        if not isinstance(request_id, int) or isinstance(request_id, bool):
            return

        waiter = self._pending.pop(request_id, None)
        if waiter is None:
            return
        _, future = waiter
        if future.done():
            return

        error = message.get("error")
        if error:
            detail = error.get("message") if isinstance(error, dict) else str(error)
            future.set_exception(BridgeError(detail or "MCP internal error"))
        else:
            future.set_result(message.get("result"))

    def _fail_pending(self, service: str | None, exc: BridgeError) -> None:
        for request_id, (owner, future) in list(self._pending.items()):
            if service is not None and owner != service:
                continue
            self._pending.pop(request_id, None)
            if not future.done():
                future.set_exception(exc)
