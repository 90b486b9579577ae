"""Pick a tool-specific system prompt from the wording of a user message."""

import re
from typing import Dict, Optional

from mcpbridge.mcp.schema import ToolDescriptor


def _mentions(prompt: str, phrase: str) -> bool:
    return bool(re.search(rf"(?<!\w){re.escape(phrase)}(?!\w)", prompt))


class ToolInstructionSelector:
    """
    Heuristic: if the prompt names a tool, use that tool's instructions.

    A tool is mentioned when its name, or its name with ``_``/``-`` read as
    spaces, appears as a whole phrase in the prompt. The longest mentioned
    name wins.
    """

    def __init__(self, instructions: Optional[Dict[str, str]] = None):
        self._instructions = dict(instructions or {})
        self._tools: Dict[str, ToolDescriptor] = {}

    def register_tool(self, descriptor: ToolDescriptor) -> None:
        self._tools[descriptor.name] = descriptor

    def detect_tool(self, prompt: str) -> Optional[str]:
        text = prompt.lower()
        best: Optional[str] = None
        for name in self._tools:
            lowered = name.lower()
            spaced = re.sub(r"[_\-]+", " ", lowered)
            if _mentions(text, lowered) or _mentions(text, spaced):
                if best is None or len(name) > len(best):
                    best = name
        return best

    def instructions_for(self, name: str) -> Optional[str]:
        if name in self._instructions:
            return self._instructions[name]
        tool = self._tools.get(name)
        if tool is None:
            return None
        lines = [f"You can use the `{tool.name}` tool to answer this request."]
        if tool.description:
            lines.append(f"Tool description: {tool.description}")
        required = tool.required_params()
        if required:
            lines.append(f"Always provide these arguments: {', '.join(required)}.")
        lines.append("Call the tool when it helps, then answer the user from its results.")
        return "\n".join(lines)
