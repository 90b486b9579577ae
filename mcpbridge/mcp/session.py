"""One logical connection to one MCP server process."""

from __future__ import annotations

import enum
import itertools
import logging
import threading
from typing import Any, Dict, List, Optional, Set

from pydantic import ValidationError

from mcpbridge.mcp.correlation import DEFAULT_TIMEOUT, CorrelationTable
from mcpbridge.mcp.errors import (
    MCPConnectionError,
    PeerError,
    ProtocolError,
    SessionClosedError,
    SessionNotInitializedError,
    ToolExecutionError,
)
from mcpbridge.mcp.schema import InitializeResult, ToolDescriptor
from mcpbridge.mcp.transport import StdioTransport, preview
from mcpbridge.validation.config import ServerParameters

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "0.1.0"
CLIENT_INFO = {"name": "MCPLLMBridge", "version": "1.0.0"}
CLIENT_CAPABILITIES = {"tools": {"call": True, "list": True}}


class SessionState(enum.Enum):
    UNCONNECTED = "unconnected"
    CONNECTING = "connecting"
    INITIALIZED = "initialized"
    CLOSED = "closed"


class MCPSession:
    """
    Handshake, tool listing and tool invocation against one MCP server.

    Each session owns its transport, its request id counter and its
    correlation table; sessions share nothing with each other.

    Example:
        >>> session = MCPSession("files", ServerParameters(command="mcp-files"))
        >>> session.connect()
        >>> tools = session.list_tools()
        >>> session.call_tool("read_file", {"path": "README.md"})
        >>> session.close()
    """

    def __init__(
        self,
        name: str,
        params: ServerParameters,
        request_timeout: float = DEFAULT_TIMEOUT,
        client_info: Optional[Dict[str, Any]] = None,
    ):
        self.name = name
        self.params = params
        self.request_timeout = request_timeout
        self.client_info = client_info or dict(CLIENT_INFO)
        self.state = SessionState.UNCONNECTED
        self.protocol_version: Optional[str] = None
        self.server_capabilities: Any = None
        self.server_info: Any = None
        self.known_tools: Set[str] = set()
        self._ids = itertools.count(1)
        self._table = CorrelationTable(default_timeout=request_timeout)
        self._transport: Optional[StdioTransport] = None
        self._state_lock = threading.Lock()

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def connect(self) -> None:
        """Spawn the server, perform the handshake and cache its tool names."""
        with self._state_lock:
            if self.state is SessionState.CLOSED:
                raise SessionClosedError(f"[{self.name}] Session is closed")
            if self.state is not SessionState.UNCONNECTED:
                return
            self.state = SessionState.CONNECTING

        logger.debug("[%s] Starting connection...", self.name)
        try:
            self._transport = StdioTransport(
                self.params,
                on_message=self._dispatch,
                on_close=self._connection_lost,
                name=self.name,
            )
            self._transport.start()
            self._initialize()
        except Exception as exc:
            logger.error("[%s] Connection failed: %s", self.name, exc)
            self._reset()
            raise

        with self._state_lock:
            if self.state is SessionState.CONNECTING:
                self.state = SessionState.INITIALIZED
        logger.debug("[%s] Session initialized (protocol %s)", self.name, self.protocol_version)

        try:
            self.list_tools()
        except Exception as exc:
            logger.error("[%s] Failed to update available tools: %s", self.name, exc)

    def _initialize(self) -> None:
        reply = self._request(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": CLIENT_CAPABILITIES,
                "clientInfo": self.client_info,
            },
        )
        if not isinstance(reply, dict):
            raise ProtocolError(f"[{self.name}] Invalid initialization response from server")
        try:
            result = InitializeResult.model_validate(reply)
        except ValidationError as exc:
            raise ProtocolError(
                f"[{self.name}] Invalid initialization response from server: {exc.errors()[0]['msg']}"
            ) from exc

        self.protocol_version = result.protocol_version
        self.server_capabilities = result.capabilities
        self.server_info = result.server_info
        self._notify("notifications/initialized")
        logger.debug("[%s] Server info: %s", self.name, self.server_info)
        logger.debug("[%s] Server capabilities: %s", self.name, self.server_capabilities)

    def close(self) -> None:
        """Stop the server process. Further operations raise ``SessionClosedError``."""
        with self._state_lock:
            if self.state is SessionState.CLOSED:
                return
            self.state = SessionState.CLOSED
        logger.debug("[%s] Closing connection...", self.name)
        self._table.fail_all(SessionClosedError(f"[{self.name}] Session closed"))
        if self._transport is not None:
            self._transport.close()
            self._transport = None
        self.known_tools.clear()

    def _reset(self) -> None:
        self._table.fail_all(MCPConnectionError(f"[{self.name}] Connection aborted"))
        if self._transport is not None:
            self._transport.close()
            self._transport = None
        self.protocol_version = None
        self.server_capabilities = None
        self.server_info = None
        self.known_tools.clear()
        with self._state_lock:
            if self.state is not SessionState.CLOSED:
                self.state = SessionState.UNCONNECTED

    def __enter__(self) -> "MCPSession":
        self.connect()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def is_initialized(self) -> bool:
        return self.state is SessionState.INITIALIZED

    # ── Peer operations ───────────────────────────────────────────────────

    def list_tools(self) -> List[ToolDescriptor]:
        """Fetch the server's tool descriptors and refresh ``known_tools``."""
        self._require_initialized()
        reply = self._request("tools/list", {})
        raw_tools = reply.get("tools") if isinstance(reply, dict) else None
        if not isinstance(raw_tools, list):
            raw_tools = []

        tools: List[ToolDescriptor] = []
        for raw in raw_tools:
            try:
                tools.append(ToolDescriptor.model_validate(raw))
            except ValidationError as exc:
                logger.warning("[%s] Skipping malformed tool descriptor %s: %s", self.name, preview(raw), exc)
        self.known_tools = {tool.name for tool in tools}
        logger.debug("[%s] Updated available tools: %s", self.name, ", ".join(sorted(self.known_tools)))
        return tools

    def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        """Invoke a tool and return the peer's result payload unchanged."""
        self._require_initialized()
        if name not in self.known_tools:
            logger.warning(
                "[%s] Unknown tool '%s'. Available tools: %s",
                self.name, name, ", ".join(sorted(self.known_tools)),
            )
        logger.debug("[%s] Calling tool '%s' with args: %s", self.name, name, preview(arguments or {}))
        try:
            return self._request("tools/call", {"name": name, "arguments": arguments or {}})
        except PeerError as exc:
            raise ToolExecutionError(str(exc), code=exc.code, data=exc.data) from exc

    def request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Send an arbitrary request on an initialized session."""
        self._require_initialized()
        return self._request(method, params)

    def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Send an arbitrary notification on an initialized session."""
        self._require_initialized()
        self._notify(method, params)

    # ── JSON-RPC plumbing ─────────────────────────────────────────────────

    def _require_initialized(self) -> None:
        if self.state is SessionState.CLOSED:
            raise SessionClosedError(f"[{self.name}] Session is closed")
        if self.state is not SessionState.INITIALIZED:
            raise SessionNotInitializedError(f"[{self.name}] Client not initialized")

    def _live_transport(self) -> StdioTransport:
        transport = self._transport
        if transport is None:
            raise MCPConnectionError(f"[{self.name}] Connection not established")
        return transport

    def _request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        transport = self._live_transport()
        request_id = next(self._ids)
        message: Dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            message["params"] = params

        future = self._table.register(request_id, self.request_timeout)
        try:
            transport.send(message)
        except Exception:
            self._table.discard(request_id)
            raise
        return future.result()

    def _notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        message: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        self._live_transport().send(message)

    def _dispatch(self, message: Any) -> None:
        if not isinstance(message, dict):
            logger.warning("[%s] Ignoring non-object message: %s", self.name, preview(message))
            return
        if "method" in message:
            # Server-initiated request or notification; the bridge advertises none.
            logger.debug("[%s] Ignoring server message '%s'", self.name, message.get("method"))
            return
        request_id = message.get("id")
        if not isinstance(request_id, (int, str)) or isinstance(request_id, bool):
            logger.warning("[%s] Ignoring message without a usable id: %s", self.name, preview(message))
            return
        if "error" in message:
            error = message["error"]
            logger.error("[%s] Message error: %s", self.name, preview(error))
            self._table.complete(request_id, True, error)
        elif "result" in message:
            self._table.complete(request_id, False, message["result"])
        else:
            logger.warning("[%s] Reply %r carries neither result nor error", self.name, request_id)

    def _connection_lost(self) -> None:
        failed = self._table.fail_all(MCPConnectionError(f"[{self.name}] MCP server connection lost"))
        if failed:
            logger.error("[%s] Connection lost with %d request(s) pending", self.name, failed)
