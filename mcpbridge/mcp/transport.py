"""MCP server communication via stdio subprocess transport."""

from __future__ import annotations

import json
import logging
import os
import subprocess
import threading
from typing import Any, Callable, List, Optional

from mcpbridge.mcp.errors import DecodeError, MCPConnectionError, TransportWriteError
from mcpbridge.validation.config import ServerParameters

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 65536


def preview(value: Any, limit: int = 200) -> str:
    """Short single-line rendering of a message for debug logs."""
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    if len(text) > limit:
        return text[:limit] + "..."
    return text


class LineBuffer:
    """
    Reassembles newline-delimited JSON from arbitrarily split byte chunks.

    The unterminated tail is kept as raw bytes, so a UTF-8 sequence split
    across two chunks is decoded only once it is complete.
    """

    def __init__(self) -> None:
        self._pending = b""

    def feed(self, chunk: bytes) -> List[Any]:
        """Append ``chunk`` and return every complete message, in order."""
        self._pending += chunk
        messages: List[Any] = []
        while True:
            newline = self._pending.find(b"\n")
            if newline == -1:
                break
            line = self._pending[:newline].strip()
            self._pending = self._pending[newline + 1:]
            if not line:
                continue
            try:
                messages.append(self.decode_line(line))
            except DecodeError as exc:
                logger.error("%s", exc)
        return messages

    @staticmethod
    def decode_line(line: bytes) -> Any:
        try:
            return json.loads(line.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise DecodeError(line, exc) from exc

    @property
    def pending(self) -> bytes:
        return self._pending

    def clear(self) -> None:
        self._pending = b""


class StdioTransport:
    """
    Own a child process and exchange line-delimited JSON over its stdio.

    Decoded messages are handed to ``on_message`` from a single reader
    thread, in the order they arrived. ``on_close`` runs once when the
    child's stdout reaches EOF.
    """

    def __init__(
        self,
        params: ServerParameters,
        on_message: Callable[[Any], None],
        on_close: Optional[Callable[[], None]] = None,
        name: Optional[str] = None,
    ):
        self.params = params
        self.name = name or params.command
        self._on_message = on_message
        self._on_close = on_close
        self._process: Optional[subprocess.Popen] = None
        self._buffer = LineBuffer()
        self._write_lock = threading.Lock()
        self._threads: List[threading.Thread] = []
        self._closed = False

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def start(self) -> None:
        """Spawn the MCP server subprocess and its reader threads."""
        if self.is_running:
            return

        merged_env = {**os.environ, **self.params.env}
        cwd = self.params.allowed_directory or None
        logger.debug("[%s] Spawning process: %s %s", self.name, self.params.command, " ".join(self.params.args))
        try:
            self._process = subprocess.Popen(
                [self.params.command] + list(self.params.args),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=merged_env,
                cwd=cwd,
            )
        except FileNotFoundError as exc:
            raise MCPConnectionError(
                f"MCP server command not found: {self.params.command}. "
                "Make sure the server package is installed."
            ) from exc
        except OSError as exc:
            raise MCPConnectionError(f"Failed to start MCP server {self.params.command}: {exc}") from exc

        self._closed = False
        self._buffer.clear()
        self._threads = [
            threading.Thread(target=self._read_stdout, name=f"mcp-{self.name}-stdout", daemon=True),
            threading.Thread(target=self._read_stderr, name=f"mcp-{self.name}-stderr", daemon=True),
        ]
        for thread in self._threads:
            thread.start()
        logger.debug("[%s] Process started (pid=%d)", self.name, self._process.pid)

    def close(self) -> None:
        """Terminate the MCP server subprocess and release its pipes."""
        if self._closed and self._process is None:
            return
        self._closed = True
        process, self._process = self._process, None
        if process is not None:
            if process.poll() is None:
                try:
                    process.terminate()
                    process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    process.kill()
                    process.wait()
            for stream in (process.stdin, process.stdout, process.stderr):
                if stream is None:
                    continue
                try:
                    stream.close()
                except OSError:
                    pass
            logger.debug("[%s] Process exited with code %s", self.name, process.returncode)
        current = threading.current_thread()
        for thread in self._threads:
            if thread is not current:
                thread.join(timeout=1)
        self._threads = []
        self._buffer.clear()

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    # ── Outbound ──────────────────────────────────────────────────────────

    def send(self, message: Any) -> None:
        """Write one message as a single JSON line."""
        line = (json.dumps(message) + "\n").encode("utf-8")
        with self._write_lock:
            process = self._process
            if self._closed or process is None or process.stdin is None:
                raise TransportWriteError(f"[{self.name}] Transport is closed")
            if process.poll() is not None:
                raise TransportWriteError(
                    f"[{self.name}] MCP server exited with code {process.returncode}"
                )
            logger.debug("[%s] Sending message (%d bytes): %s", self.name, len(line), preview(message))
            try:
                process.stdin.write(line)
                process.stdin.flush()
            except (BrokenPipeError, OSError, ValueError) as exc:
                raise TransportWriteError(f"[{self.name}] Failed to send message: {exc}") from exc

    # ── Inbound ───────────────────────────────────────────────────────────

    def _handle_chunk(self, chunk: bytes) -> None:
        for message in self._buffer.feed(chunk):
            logger.debug("[%s] Received message: %s", self.name, preview(message))
            try:
                self._on_message(message)
            except Exception:
                logger.exception("[%s] Message handler failed", self.name)

    def _read_stdout(self) -> None:
        process = self._process
        stream = process.stdout if process is not None else None
        if stream is None:
            return
        try:
            while True:
                chunk = stream.read1(READ_CHUNK_SIZE)
                if not chunk:
                    break
                self._handle_chunk(chunk)
        except (OSError, ValueError) as exc:
            if not self._closed:
                logger.error("[%s] Failed reading from MCP server: %s", self.name, exc)
        if not self._closed:
            logger.info("[%s] MCP server closed its output stream", self.name)
        if self._on_close is not None:
            self._on_close()

    def _read_stderr(self) -> None:
        process = self._process
        stream = process.stderr if process is not None else None
        if stream is None:
            return
        try:
            for raw in iter(stream.readline, b""):
                text = raw.decode("utf-8", errors="replace").rstrip()
                if text:
                    logger.warning("[%s] Process stderr: %s", self.name, text)
        except (OSError, ValueError):
            pass
