"""Error taxonomy shared by the transport, correlation and session layers."""

from typing import Any, Optional


class MCPError(Exception):
    """Base class for every MCP bridge error."""


class MCPConnectionError(MCPError, ConnectionError):
    """Raised when the child process cannot be spawned or its pipes are lost."""


class TransportWriteError(MCPConnectionError):
    """Raised when a message cannot be written to the child process."""


class ProtocolError(MCPError):
    """Raised when a peer reply is malformed or semantically invalid."""


class RequestTimeout(MCPError, TimeoutError):
    """Raised when a request receives no reply within its time bound."""

    def __init__(self, request_id: Any, timeout: float):
        super().__init__(f"MCP request {request_id} timed out after {timeout:g} seconds")
        self.request_id = request_id
        self.timeout = timeout


class UnknownToolError(MCPError, LookupError):
    """Raised when a tool call names a tool no session owns."""

    def __init__(self, tool_name: str):
        super().__init__(f"No MCP found for tool: {tool_name}")
        self.tool_name = tool_name


class PeerError(MCPError):
    """A JSON-RPC error object returned by the peer."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data

    @classmethod
    def from_payload(cls, payload: Any) -> "PeerError":
        """Build from the ``error`` member of a JSON-RPC reply."""
        if isinstance(payload, dict):
            message = payload.get("message")
            code = payload.get("code")
            return cls(
                str(message) if message is not None else "Unknown MCP error",
                code=code if isinstance(code, int) else None,
                data=payload.get("data"),
            )
        return cls(str(payload) if payload is not None else "Unknown MCP error")


class ToolExecutionError(PeerError):
    """Raised when the peer answers a tool invocation with an error."""


class DecodeError(MCPError):
    """A single inbound line could not be decoded as JSON."""

    def __init__(self, line: bytes, cause: Exception):
        preview = line[:200].decode("utf-8", errors="replace")
        super().__init__(f"Failed to decode message: {cause} (line: {preview!r})")
        self.line = line
        self.cause = cause


class SessionNotInitializedError(MCPError):
    """Raised when an operation needs an initialized session."""


class SessionClosedError(MCPError):
    """Raised when an operation is attempted on a closed session."""

