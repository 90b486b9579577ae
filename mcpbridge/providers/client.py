"""Conversation-keeping model client used by the bridge."""

import logging
from typing import Any, Dict, List, Optional, Sequence

from mcpbridge.providers.base import ChatProvider, ModelResponse

logger = logging.getLogger(__name__)


class LLMClient:
    """
    Keeps the chat history for one bridge and forwards it to a provider.

    ``invoke_with_prompt`` starts a user turn; ``invoke`` continues one with
    tool results or system instructions. Tool results may be any object
    with a ``to_message()`` method, or ``{"tool_call_id", "output"}`` dicts.
    """

    def __init__(
        self,
        provider: ChatProvider,
        system_prompt: Optional[str] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        max_history: int = 50,
    ):
        self.provider = provider
        self.system_prompt = system_prompt
        self.tools: List[Dict[str, Any]] = list(tools or [])
        self.max_history = max_history
        self.history: List[Dict[str, Any]] = []

    def invoke_with_prompt(self, prompt: str) -> ModelResponse:
        """Send a user message and return the model's reply."""
        self._drop_unanswered_tool_calls()
        return self._send([{"role": "user", "content": prompt}])

    def invoke(self, messages: Sequence[Any]) -> ModelResponse:
        """Send tool results and/or role-tagged messages and return the reply."""
        return self._send([self._to_message(message) for message in messages])

    def reset(self) -> None:
        self.history.clear()

    def _send(self, messages: List[Dict[str, Any]]) -> ModelResponse:
        # A failed request leaves the history as it was before the call.
        saved = list(self.history)
        for message in messages:
            self._append(message)
        try:
            return self._complete()
        except Exception:
            self.history[:] = saved
            raise

    def _complete(self) -> ModelResponse:
        messages: List[Dict[str, Any]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.extend(self.history)

        logger.debug("Sending %d message(s) to %s", len(messages), self.provider.provider_name)
        response = self.provider.chat(messages, tools=self.tools or None)
        logger.debug(
            "Model replied (tool calls: %s, tokens: %d)",
            ", ".join(call.name for call in response.tool_calls) or "none",
            response.token_usage,
        )
        self._append(response.to_message())
        return response

    @staticmethod
    def _to_message(message: Any) -> Dict[str, Any]:
        if hasattr(message, "to_message"):
            return message.to_message()
        if isinstance(message, dict) and "tool_call_id" in message and "role" not in message:
            return {"role": "tool", "tool_call_id": message["tool_call_id"], "content": message.get("output", "")}
        if isinstance(message, dict):
            return message
        raise TypeError(f"Unsupported message type: {type(message).__name__}")

    def _drop_unanswered_tool_calls(self) -> None:
        # A user turn may not follow an assistant tool-call turn without its tool replies.
        if self.history and self.history[-1].get("role") == "assistant" and self.history[-1].get("tool_calls"):
            self.history.pop()

    def _append(self, message: Dict[str, Any]) -> None:
        self.history.append(message)
        if self.max_history and len(self.history) > self.max_history:
            del self.history[: len(self.history) - self.max_history]
            while self.history and self.history[0].get("role") == "tool":
                self.history.pop(0)
