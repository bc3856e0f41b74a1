"""Language server subprocess speaking JSON-RPC 2.0 over stdio."""

from __future__ import annotations

import asyncio
import itertools
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from cadence_ext.core.asyncio_utils import cancel_and_wait, create_logged_task
from cadence_ext.core.logging_utils import get_module_logger

EXECUTE_COMMAND = "workspace/executeCommand"


class LanguageServerError(Exception):
    """Transport failure or JSON-RPC error returned by the language server."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data


def encode_message(payload: Dict[str, Any]) -> bytes:
    body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return f"Content-Length: {len(body)}\r\n\r\n".encode("ascii") + body


async def read_message(reader: asyncio.StreamReader) -> Optional[Dict[str, Any]]:
    """Read one framed message. Returns None on EOF."""
    content_length: Optional[int] = None
    while True:
        line = await reader.readline()
        if not line:
            return None
        decoded = line.decode("ascii", errors="replace").strip()
        if not decoded:
            if content_length is None:
                continue
            break
        name, _, value = decoded.partition(":")
        if name.strip().lower() == "content-length":
            content_length = int(value.strip())

    try:
        body = await reader.readexactly(content_length)
    except asyncio.IncompleteReadError:
        return None
    return json.loads(body.decode("utf-8"))


class LanguageClient:
    """Owns one language server process and its request/response plumbing."""

    def __init__(
        self,
        command: str,
        args: List[str],
        initialization_options: Optional[Dict[str, Any]] = None,
        *,
        root_path: Optional[Path] = None,
        name: str = "cadence",
    ):
        self.command = command
        self.args = list(args)
        self.initialization_options = initialization_options or {}
        self.root_path = root_path
        self.logger = get_module_logger(f"LanguageClient.{name}")

        self.process: Optional[asyncio.subprocess.Process] = None
        self.server_capabilities: Dict[str, Any] = {}

        self._ids = itertools.count(1)
        self._pending: Dict[int, asyncio.Future] = {}
        self._write_lock = asyncio.Lock()
        self._stdout_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        # Set once stdout hits EOF; no response can arrive after that.
        self._closed = False

    def is_running(self) -> bool:
        return self.process is not None and self.process.returncode is None

    async def start(self) -> None:
        if self.process is not None:
            raise LanguageServerError("Language server already started")

        cmd = [self.command] + self.args
        self.logger.info("Starting language server: %s", " ".join(cmd))

        try:
            self.process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.root_path) if self.root_path else None,
            )
        except OSError as e:
            raise LanguageServerError(f"Could not launch '{self.command}': {e}") from e

        self._closed = False

        self.logger.info("Process started with PID: %d", self.process.pid)
        self._stdout_task = create_logged_task(self._stdout_reader(), logger=self.logger, context="lsp-stdout")
        self._stderr_task = create_logged_task(self._stderr_reader(), logger=self.logger, context="lsp-stderr")

        try:
            result = await self.send_request("initialize", {
                "processId": os.getpid(),
                "rootUri": self.root_path.resolve().as_uri() if self.root_path else None,
                "capabilities": {},
                "initializationOptions": self.initialization_options,
            })
            self.server_capabilities = (result or {}).get("capabilities", {})
            await self.send_notification("initialized", {})
        except BaseException:
            await self._terminate()
            raise

    async def send_request(self, method: str, params: Any = None) -> Any:
        if not self.is_running() or self._closed:
            raise LanguageServerError(f"Cannot send {method}: language server is not running")

        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._write({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params})
            return await future
        finally:
            self._pending.pop(request_id, None)

    async def send_notification(self, method: str, params: Any = None) -> None:
        await self._write({"jsonrpc": "2.0", "method": method, "params": params})

    async def execute_command(self, command: str, arguments: Optional[List[Any]] = None) -> Any:
        return await self.send_request(EXECUTE_COMMAND, {"command": command, "arguments": arguments or []})

    async def _write(self, payload: Dict[str, Any]) -> None:
        if not self.process or not self.process.stdin:
            raise LanguageServerError("Language server stdin is closed")
        async with self._write_lock:
            try:
                self.process.stdin.write(encode_message(payload))
                await self.process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise LanguageServerError(f"Language server pipe closed: {e}") from e

    async def _stdout_reader(self) -> None:
        if not self.process or not self.process.stdout:
            return

        try:
            while True:
                message = await read_message(self.process.stdout)
                if message is None:
                    break
                await self._dispatch(message)
        except (ValueError, asyncio.LimitOverrunError) as e:
            self.logger.error("Malformed message from language server: %s", e)
        except LanguageServerError as e:
            self.logger.error("Language server connection lost: %s", e)
        finally:
            self._closed = True
            self._fail_pending(LanguageServerError("Language server exited"))

    async def _stderr_reader(self) -> None:
        if not self.process or not self.process.stderr:
            return

        while True:
            line = await self.process.stderr.readline()
            if not line:
                break
            line_str = line.decode(errors="replace").strip()
            if line_str:
                self.logger.debug("Language server stderr: %s", line_str)

    async def _dispatch(self, message: Dict[str, Any]) -> None:
        if "id" in message and ("result" in message or "error" in message):
            future = self._pending.get(message["id"])
            if future is None or future.done():
                self.logger.debug("Dropping response for unknown request %s", message["id"])
                return
            error = message.get("error")
            if error:
                future.set_exception(LanguageServerError(
                    error.get("message", "Unknown error"),
                    code=error.get("code"),
                    data=error.get("data"),
                ))
            else:
                future.set_result(message.get("result"))
            return

        method = message.get("method")
        if "id" in message:
            # Server-to-client request; nothing here needs a real answer.
            self.logger.debug("Server request %s", method)
            await self._write({"jsonrpc": "2.0", "id": message["id"], "result": None})
        elif method == "window/logMessage":
            self.logger.debug("Server log: %s", (message.get("params") or {}).get("message"))
        else:
            self.logger.debug("Server notification %s", method)

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)

    async def stop(self, timeout: float = 10.0) -> None:
        if self.process is None:
            self.logger.debug("Process not running")
            return

        self.logger.info("Stopping language server")
        try:
            if self.is_running():
                await asyncio.wait_for(self.send_request("shutdown"), timeout=timeout)
                await self.send_notification("exit")
        except (LanguageServerError, asyncio.TimeoutError) as e:
            self.logger.warning("Graceful shutdown failed: %s", e)
        finally:
            await self._terminate(timeout)

    async def _terminate(self, timeout: float = 2.0) -> None:
        process = self.process
        if process is None:
            return

        try:
            if process.returncode is None:
                try:
                    await asyncio.wait_for(process.wait(), timeout=timeout)
                except asyncio.TimeoutError:
                    self.logger.warning("Process did not exit gracefully, terminating...")
                    process.terminate()
                    try:
                        await asyncio.wait_for(process.wait(), timeout=2.0)
                    except asyncio.TimeoutError:
                        self.logger.error("Process did not terminate, killing...")
                        process.kill()
                        await process.wait()
        except ProcessLookupError:
            pass
        finally:
            await cancel_and_wait(self._stdout_task)
            await cancel_and_wait(self._stderr_task)
            self._fail_pending(LanguageServerError("Language server stopped"))
            self.process = None
            self.logger.info("Language server stopped")


__all__ = ["LanguageClient", "LanguageServerError", "encode_message", "read_message", "EXECUTE_COMMAND"]
