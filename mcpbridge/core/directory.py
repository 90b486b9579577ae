"""Tool directory: which tools exist and which session executes each one."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from mcpbridge.mcp.schema import ToolDescriptor

if TYPE_CHECKING:
    from mcpbridge.mcp.session import MCPSession


class ToolDirectory:
    """
    Aggregates tool descriptors from every connected session.

    A name maps to one descriptor and at most one owning session; the last
    registration for a name wins. Built during bridge initialization and
    only read while tool calls are dispatched.
    """

    def __init__(self) -> None:
        self._tools: Dict[str, ToolDescriptor] = {}
        self._owners: Dict[str, "MCPSession"] = {}

    @classmethod
    def from_openai(cls, tools: Iterable[Dict[str, Any]]) -> "ToolDirectory":
        """Build a directory, without owners, from OpenAI-format tool definitions."""
        directory = cls()
        for tool in tools:
            descriptor = ToolDescriptor.from_openai(tool)
            if descriptor is not None:
                directory.register_tool(descriptor)
        return directory

    def register_tool(self, descriptor: ToolDescriptor, owner: Optional["MCPSession"] = None) -> None:
        """Insert or overwrite ``descriptor``; ``owner`` replaces any previous owner."""
        self._tools.pop(descriptor.name, None)
        self._tools[descriptor.name] = descriptor
        if owner is None:
            self._owners.pop(descriptor.name, None)
        else:
            self._owners[descriptor.name] = owner

    def owner_of(self, name: str) -> Optional["MCPSession"]:
        return self._owners.get(name)

    def get(self, name: str) -> Optional[ToolDescriptor]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def descriptors(self) -> List[ToolDescriptor]:
        return list(self._tools.values())

    def to_openai(self) -> List[Dict[str, Any]]:
        """Flattened tool list in the function-tool format the model expects."""
        return [tool.to_openai() for tool in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools
