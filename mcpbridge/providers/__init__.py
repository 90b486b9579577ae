"""
MCP Bridge providers module.

This module provides abstractions for various LLM providers and the
history-keeping client the bridge talks to.
"""

from mcpbridge.providers.base import ChatProvider, ModelResponse, ProviderFactory, ToolCall
from mcpbridge.providers.client import LLMClient

__all__ = ["ChatProvider", "LLMClient", "ModelResponse", "ProviderFactory", "ToolCall"]
