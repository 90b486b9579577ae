"""
MCP Bridge - Tool-calling loop between a language model and MCP servers.

One call to ``process_message`` is one turn:
1. Send the user message to the model
2. While the reply asks for tools, dispatch them to their MCP sessions
   and send the results back
3. Stop early when the model repeats an identical batch of tool calls,
   and never run more than ``max_iterations`` dispatch rounds
4. When stopped early, ask once more for an answer built from the results
   collected so far
"""

from __future__ import annotations

import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from mcpbridge.core.directory import ToolDirectory
from mcpbridge.core.instructions import ToolInstructionSelector
from mcpbridge.mcp.errors import MCPError, UnknownToolError
from mcpbridge.mcp.session import MCPSession
from mcpbridge.providers.base import ProviderFactory, ToolCall
from mcpbridge.providers.client import LLMClient
from mcpbridge.validation.config import BridgeConfig

logger = logging.getLogger(__name__)

LAST_ITERATION_INSTRUCTION = (
    "This is your last opportunity to use tools. After processing these results, "
    "please provide a final answer to the user's question without requesting "
    "additional tool calls."
)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class ToolResult:
    """Outcome of one tool call, as fed back to the model."""

    tool_call_id: str
    name: str
    output: str
    is_error: bool = False

    def to_message(self) -> Dict[str, Any]:
        return {"role": "tool", "tool_call_id": self.tool_call_id, "content": self.output}


@dataclass
class ConversationState:
    """Bookkeeping for a single turn. Never shared between turns."""

    iteration_count: int = 0
    seen_signatures: Set[str] = field(default_factory=set)
    tool_results: List[ToolResult] = field(default_factory=list)


@dataclass
class _Dispatch:
    call: ToolCall
    started: threading.Event = field(default_factory=threading.Event)
    started_at: float = 0.0


def tool_call_signature(tool_calls: Sequence[ToolCall]) -> str:
    """
    Canonical text of a batch of tool calls, used to spot repeats.

    Arguments are compared as the raw text the model sent, so the same
    arguments serialized with a different key order count as different.
    """
    return json.dumps([{"name": call.name, "args": call.arguments} for call in tool_calls])


def build_forcing_prompt(message: str, results: Sequence[ToolResult]) -> str:
    """The original question plus every collected result, asking for a final answer."""
    compiled = ""
    if results:
        compiled = "Here are the tool results I've found:\n\n"
        for index, result in enumerate(results, start=1):
            compiled += f"Result {index}: {result.output}\n\n"
    return (
        f"{message}\n\n{compiled}\n\n"
        "Based on these results, please provide a comprehensive answer. "
        "Do not make another tool request."
    )


def parse_arguments(name: str, arguments: str) -> Dict[str, Any]:
    if not arguments or not arguments.strip():
        return {}
    try:
        parsed = json.loads(arguments)
    except ValueError as exc:
        raise ValueError(f"Invalid arguments for tool {name}: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValueError(f"Invalid arguments for tool {name}: expected a JSON object")
    return parsed


# ---------------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------------

class Bridge:
    """
    Connects one LLM client to every configured MCP server.

    Example:
        >>> bridge = Bridge(Config.load().merged)
        >>> if bridge.initialize():
        ...     print(bridge.process_message("List the files in my home directory"))
        >>> bridge.close()
    """

    def __init__(
        self,
        config: BridgeConfig,
        llm: Optional[LLMClient] = None,
        session_factory: Callable[..., MCPSession] = MCPSession,
    ):
        self.config = config
        self.settings = config.bridge
        if llm is None:
            llm = LLMClient(
                ProviderFactory.create(config.llm),
                system_prompt=config.llm.system_prompt,
                max_history=config.llm.max_history,
            )
        self.llm = llm
        self.base_system_prompt = llm.system_prompt
        self.sessions: Dict[str, MCPSession] = {
            name: session_factory(name, params, request_timeout=self.settings.request_timeout)
            for name, params in config.enabled_servers()
        }
        self.failed_servers: Dict[str, str] = {}
        self.directory = ToolDirectory()
        self.selector = ToolInstructionSelector(self.settings.tool_instructions)
        self._tools: List[Dict[str, Any]] = []
        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.max_parallel_tools,
            thread_name_prefix="mcp-tool",
        )
        self._turn_lock = threading.Lock()
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> bool:
        """
        Connect every session and register its tools.

        A server that fails to connect is skipped and recorded in
        ``failed_servers``. Returns False if that happens while
        ``require_all_servers`` is set, or if no configured server connected.
        """
        logger.info("Connecting to MCP servers...")
        for name, session in self.sessions.items():
            logger.info("Connecting to MCP: %s", name)
            try:
                session.connect()
                tools = session.list_tools()
            except MCPError as exc:
                logger.error("MCP %s failed to initialize: %s", name, exc)
                session.close()
                self.failed_servers[name] = str(exc)
                continue

            logger.info("Received %d tools from %s", len(tools), name)
            for tool in tools:
                self.directory.register_tool(tool, owner=session)
                self.selector.register_tool(tool)
                logger.debug("Registered tool %s from %s", tool.name, name)

        self._tools = self.directory.to_openai()
        self.llm.tools = self._tools
        logger.info("Initialized with %d total tools", len(self._tools))
        logger.debug("Available tools: %s", ", ".join(self.directory.names()))

        if self.failed_servers and self.settings.require_all_servers:
            return False
        return not self.sessions or len(self.failed_servers) < len(self.sessions)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for session in self.sessions.values():
            session.close()
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "Bridge":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    @property
    def tools(self) -> List[Dict[str, Any]]:
        return self._tools

    def set_tools(self, tools: List[Dict[str, Any]], owners: Optional[Dict[str, str]] = None) -> None:
        """
        Replace the tool list wholesale with externally supplied definitions.

        The directory is rebuilt from ``tools``; a tool keeps a session only
        if ``owners`` maps its name to a configured server name.
        """
        directory = ToolDirectory.from_openai(tools)
        selector = ToolInstructionSelector(self.settings.tool_instructions)
        for descriptor in directory.descriptors():
            selector.register_tool(descriptor)

        for tool_name, server_name in (owners or {}).items():
            session = self.sessions.get(server_name)
            descriptor = directory.get(tool_name)
            if session is None or descriptor is None:
                logger.warning("Cannot assign tool %s to MCP %s", tool_name, server_name)
                continue
            directory.register_tool(descriptor, owner=session)

        self.directory = directory
        self.selector = selector
        self._tools = list(tools)
        self.llm.tools = self._tools

    # ------------------------------------------------------------------
    # Turn processing
    # ------------------------------------------------------------------

    def process_message(self, message: str) -> str:
        """Run one turn and return the model's final answer, or an error string."""
        with self._turn_lock:
            try:
                return self._run_turn(message)
            except Exception as exc:
                logger.error("Error processing message: %s", exc)
                return f"Error processing message: {exc}"

    def _run_turn(self, message: str) -> str:
        self._select_instructions(message)
        max_iterations = self.settings.max_iterations

        logger.info("Sending message to LLM...")
        response = self.llm.invoke_with_prompt(message)
        logger.info("LLM response received, isToolCall: %s", response.is_tool_call)

        state = ConversationState()
        while response.is_tool_call and state.iteration_count < max_iterations:
            signature = tool_call_signature(response.tool_calls)
            if signature in state.seen_signatures:
                logger.warning("Detected repeated tool call pattern, breaking the loop")
                return self._force_final_answer(message, state)

            state.seen_signatures.add(signature)
            state.iteration_count += 1
            logger.info("Processing tool calls iteration %d/%d", state.iteration_count, max_iterations)

            results = self.handle_tool_calls(response.tool_calls)
            state.tool_results.extend(results)
            logger.info("Tool calls completed, sending results back to LLM")

            follow_up: List[Any] = list(results)
            if state.iteration_count >= max_iterations - 1:
                follow_up.append({"role": "system", "content": LAST_ITERATION_INSTRUCTION})
            response = self.llm.invoke(follow_up)

        if response.is_tool_call:
            logger.warning("Reached maximum tool call iterations (%d), forcing final answer", max_iterations)
            return self._force_final_answer(message, state)

        return response.content

    def _select_instructions(self, message: str) -> None:
        tool_name = self.selector.detect_tool(message)
        instructions = self.selector.instructions_for(tool_name) if tool_name else None
        if instructions:
            logger.info("Detected tool: %s", tool_name)
        self.llm.system_prompt = instructions or self.base_system_prompt

    def _force_final_answer(self, message: str, state: ConversationState) -> str:
        logger.info("Sending final prompt with compiled results")
        return self.llm.invoke_with_prompt(build_forcing_prompt(message, state.tool_results)).content

    # ------------------------------------------------------------------
    # Tool dispatch
    # ------------------------------------------------------------------

    def handle_tool_calls(self, tool_calls: Sequence[ToolCall]) -> List[ToolResult]:
        """
        Run a batch of tool calls concurrently.

        Results come back in request order. Each call gets
        ``tool_call_timeout`` seconds from the moment it starts; a failure
        of any kind becomes an ``Error: ...`` result instead of an exception.
        """
        timeout = self.settings.tool_call_timeout
        dispatches = [_Dispatch(call) for call in tool_calls]
        futures = [self._executor.submit(self._run_dispatch, dispatch) for dispatch in dispatches]

        results: List[ToolResult] = []
        for dispatch, future in zip(dispatches, futures):
            call = dispatch.call
            try:
                while not dispatch.started.wait(0.1):
                    if future.done():
                        break
                remaining = timeout - (time.monotonic() - dispatch.started_at)
                output = future.result(timeout=max(remaining, 0))
            except FuturesTimeoutError:
                logger.error("[MCP] Tool %s timed out after %gs", call.name, timeout)
                results.append(ToolResult(call.id, call.name, f"Error: MCP call timed out after {timeout:g} seconds", True))
            except Exception as exc:
                logger.error("[MCP] Tool execution failed for %s: %s", call.name, exc)
                results.append(ToolResult(call.id, call.name, f"Error: {exc}", True))
            else:
                results.append(ToolResult(call.id, call.name, output))
        return results

    def _run_dispatch(self, dispatch: _Dispatch) -> str:
        dispatch.started_at = time.monotonic()
        dispatch.started.set()
        return self._execute_tool_call(dispatch.call)

    def _execute_tool_call(self, call: ToolCall) -> str:
        logger.debug("[MCP] Looking up tool name: %s", call.name)
        session = self.directory.owner_of(call.name)
        if session is None:
            raise UnknownToolError(call.name)

        arguments = parse_arguments(call.name, call.arguments)
        logger.info("[MCP] Calling %s on %s with %s", call.name, session.name, json.dumps(arguments)[:200])
        result = session.call_tool(call.name, arguments)
        logger.info("[MCP] Received response from %s", session.name)
        return result if isinstance(result, str) else json.dumps(result)


def build_bridge(config: BridgeConfig, llm: Optional[LLMClient] = None) -> Bridge:
    """Create a bridge and connect it; raises MCPError when it cannot start."""
    bridge = Bridge(config, llm=llm)
    if not bridge.initialize():
        failures = "; ".join(f"{name}: {error}" for name, error in bridge.failed_servers.items())
        bridge.close()
        raise MCPError(f"Bridge initialization failed ({failures or 'no MCP server connected'})")
    return bridge
