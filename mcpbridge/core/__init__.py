"""
MCP Bridge core module.

Provides the tool directory and the tool-calling loop that connects the
model to MCP sessions.
"""

from mcpbridge.core.bridge import Bridge, ConversationState, ToolResult, build_bridge
from mcpbridge.core.directory import ToolDirectory
from mcpbridge.core.instructions import ToolInstructionSelector

__all__ = [
    "Bridge",
    "ConversationState",
    "ToolResult",
    "build_bridge",
    "ToolDirectory",
    "ToolInstructionSelector",
]
