"""Data models for MCP wire payloads: handshake replies and tool descriptors."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError

logger = logging.getLogger(__name__)


class InputSchema(BaseModel):
    """JSON schema of a tool's arguments. Only the object form is inspected."""

    model_config = ConfigDict(extra="allow")

    type: str = "object"
    properties: Dict[str, Any] = Field(default_factory=dict)
    required: List[str] = Field(default_factory=list)


class ToolDescriptor(BaseModel):
    """A tool as advertised by a peer's ``tools/list`` reply."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: StrictStr
    description: Optional[str] = None
    input_schema: Optional[InputSchema] = Field(default=None, alias="inputSchema")

    def to_openai(self) -> Dict[str, Any]:
        """Function-tool form understood by OpenAI-style chat APIs."""
        schema = self.input_schema or InputSchema()
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description or f"Use the {self.name} tool",
                "parameters": {
                    "type": "object",
                    "properties": schema.properties,
                    "required": schema.required,
                },
            },
        }

    @classmethod
    def from_openai(cls, tool: Dict[str, Any]) -> Optional["ToolDescriptor"]:
        """
        Inverse of :meth:`to_openai`; ``None`` for entries without a function.

        Parameters that are not a valid object schema are dropped with a
        warning, leaving the tool without declared arguments.
        """
        function = tool.get("function") if isinstance(tool, dict) else None
        if not isinstance(function, dict) or not isinstance(function.get("name"), str):
            return None
        name = function["name"]
        parameters = function.get("parameters")
        schema = None
        if isinstance(parameters, dict):
            try:
                schema = InputSchema.model_validate(parameters)
            except ValidationError as exc:
                logger.warning("Ignoring malformed parameters of tool %s: %s", name, exc)
        description = function.get("description")
        return cls(
            name=name,
            description=description if isinstance(description, str) else None,
            input_schema=schema,
        )

    def required_params(self) -> List[str]:
        return list(self.input_schema.required) if self.input_schema else []


class InitializeResult(BaseModel):
    """
    Reply to the ``initialize`` handshake.

    Only ``protocolVersion`` is checked, and it must be a string. The other
    fields are kept as the server sent them.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    protocol_version: StrictStr = Field(alias="protocolVersion")
    capabilities: Any = None
    server_info: Any = Field(default=None, alias="serverInfo")
