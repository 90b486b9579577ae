"""
MCP Bridge - Connect a language model to MCP tool servers over stdio.

Each configured MCP server runs as a child process speaking line-delimited
JSON-RPC. The bridge lists their tools, hands them to the model, runs the
tool calls the model asks for, and feeds the results back until the model
gives a final answer.

Architecture:
- mcpbridge.mcp: stdio transport, request correlation, protocol sessions
- mcpbridge.core: tool directory and the tool-calling loop
- mcpbridge.providers: chat providers and the history-keeping LLM client
- mcpbridge.validation: configuration loading and validation
"""

__version__ = "1.0.0"
__license__ = "Apache-2.0"

from mcpbridge.core.bridge import Bridge, build_bridge
from mcpbridge.validation.config import Config

__all__ = [
    "Bridge",
    "Config",
    "build_bridge",
    "__version__",
]
