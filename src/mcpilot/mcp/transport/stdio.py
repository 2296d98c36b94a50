"""Stdio transport: an MCP server running as a child process."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import AsyncIterator

from mcpilot.lib import oj
from mcpilot.mcp.transport.base import ConnectionError, SessionError, Transport, TransportError
from mcpilot.mcp.transport.types import TransportEvent, TransportEventType

logger = logging.getLogger(__name__)

# Large tool results arrive as single lines
STREAM_LIMIT = 16 * 1024 * 1024


class StdioTransport(Transport):
    """
    Newline-delimited JSON-RPC over a child process's stdin/stdout.

    All server output, including responses, flows through :meth:`receive`.
    Lines that are not valid JSON objects are dropped. stderr is forwarded
    to the log.
    """

    def __init__(
        self,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        terminate_timeout: float = 5.0,
    ):
        super().__init__()
        self.command = command
        self.args = list(args or [])
        self.env = dict(env or {})
        self.cwd = cwd
        self.terminate_timeout = terminate_timeout
        self._process: asyncio.subprocess.Process | None = None
        self._inbound: asyncio.Queue[dict | None] = asyncio.Queue()
        self._reader_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        if self.is_connected():
            return
        if not self.command:
            raise ConnectionError("stdio transport requires a command")

        self._emit_event(
            TransportEvent(
                type=TransportEventType.CONNECTING,
                timestamp=time.time(),
                data={"command": self.command},
            )
        )
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **self.env},
                cwd=self.cwd,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise ConnectionError(f"Failed to start MCP server '{self.command}': {e}", cause=e)

        self._reader_task = asyncio.create_task(self._read_stdout(), name=f"mcp-stdio-{self.command}")
        self._stderr_task = asyncio.create_task(self._drain_stderr(), name=f"mcp-stderr-{self.command}")
        logger.info(f"Started MCP stdio server: {self.command} (pid={self._process.pid})")
        self._emit_event(TransportEvent(type=TransportEventType.CONNECTED, timestamp=time.time()))

    async def _read_stdout(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        try:
            while True:
                line = await self._process.stdout.readline()
                if not line:
                    break
                if not line.strip():
                    continue
                try:
                    message = oj.loads(line)
                except oj.JSONDecodeError:
                    logger.debug(f"Dropping malformed line from {self.command}: {line[:200]!r}")
                    continue
                if isinstance(message, dict):
                    await self._inbound.put(message)
        finally:
            # Wake the receiver so it notices EOF
            await self._inbound.put(None)

    async def _drain_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        while True:
            line = await self._process.stderr.readline()
            if not line:
                break
            logger.debug(f"[{self.command}] {line.decode('utf-8', errors='replace').rstrip()}")

    async def _write(self, message: dict) -> None:
        if not self.is_connected():
            raise SessionError("Transport not connected")
        assert self._process is not None and self._process.stdin is not None
        async with self._write_lock:
            try:
                self._process.stdin.write(oj.dumpb(message) + b"\n")
                await self._process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise TransportError(f"MCP server '{self.command}' closed its input: {e}", cause=e)

    async def send(self, message: dict) -> dict | None:
        await self._write(message)
        return None

    async def send_notification(self, message: dict) -> None:
        await self._write(message)

    async def disconnect(self) -> None:
        process = self._process
        if process is None:
            return
        self._process = None

        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        if process.returncode is None:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=self.terminate_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"MCP server '{self.command}' did not exit, killing it")
                process.kill()
                await process.wait()

        for task in (self._reader_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._reader_task = None
        self._stderr_task = None
        self._inbound.put_nowait(None)
        self._emit_event(TransportEvent(type=TransportEventType.DISCONNECTED, timestamp=time.time()))

    async def receive(self) -> AsyncIterator[dict]:
        while True:
            message = await self._inbound.get()
            if message is None:
                return
            yield message

    def is_connected(self) -> bool:
        return self._process is not None and self._process.returncode is None
