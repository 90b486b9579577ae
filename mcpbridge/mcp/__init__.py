"""
MCP client side of the bridge.

Each configured server runs as a child process; messages are exchanged as
line-delimited JSON-RPC over its stdin/stdout. Replies are matched to their
requests by id and every request is bounded by a timeout.
"""

from mcpbridge.mcp.correlation import CorrelationTable, PendingRequest
from mcpbridge.mcp.errors import (
    DecodeError,
    MCPConnectionError,
    MCPError,
    PeerError,
    ProtocolError,
    RequestTimeout,
    SessionClosedError,
    SessionNotInitializedError,
    ToolExecutionError,
    TransportWriteError,
    UnknownToolError,
)
from mcpbridge.mcp.schema import InitializeResult, InputSchema, ToolDescriptor
from mcpbridge.mcp.session import MCPSession, SessionState
from mcpbridge.mcp.transport import LineBuffer, StdioTransport

__all__ = [
    "CorrelationTable",
    "PendingRequest",
    "DecodeError",
    "MCPConnectionError",
    "MCPError",
    "PeerError",
    "ProtocolError",
    "RequestTimeout",
    "SessionClosedError",
    "SessionNotInitializedError",
    "ToolExecutionError",
    "TransportWriteError",
    "UnknownToolError",
    "InitializeResult",
    "InputSchema",
    "ToolDescriptor",
    "MCPSession",
    "SessionState",
    "LineBuffer",
    "StdioTransport",
]
