from __future__ import annotations

import asyncio
import contextlib
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from apicopilot.core.logger import setup_logger
from apicopilot.models.chat_model import ChatContext, ChatMessage, ChatRequest
from apicopilot.models.event_model import (
    ContentEvent,
    EndEvent,
    ErrorEvent,
    StartEvent,
    StreamEvent,
    ToolCallStartEvent,
    ToolErrorEvent,
    ToolExecutingEvent,
    ToolResultEvent,
)
from apicopilot.models.tool_model import ExecutionResult
from apicopilot.services.event_channel import ChannelClosed, EventChannel
from apicopilot.services.system_prompt import PromptContext, SystemPrompts
from apicopilot.services.upstream_llm import ModelProvider
from apicopilot.tools.compiler import SchemaCompiler
from apicopilot.tools.executor import ToolExecutor
from apicopilot.tools.registry import ToolCatalog

logger = setup_logger(__name__)


DEFAULT_TIMEOUT_S = 30.0
DEFAULT_MAX_TOOL_ROUNDS = 5
INCOMPLETE_TOOL_CALL = "Incomplete tool call"
INTERRUPTED_TOOL_CALL = "Tool call interrupted by an upstream failure"

# Turns whose task is still running are kept here so they are not garbage-collected mid-flight.
_RUNNING_TURNS: Set[asyncio.Task] = set()


class TurnState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    ACCUMULATING_TOOL_CALL = "accumulating_tool_call"
    DISPATCHING_TOOL = "dispatching_tool"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PartialToolCall:
    """A tool call whose argument text is still arriving from the model."""

    id: str
    name: str
    index: int
    arguments_buffer: str = ""


@dataclass
class _ToolOutcome:
    call: PartialToolCall
    content: str


def _tool_result_to_content(result: ExecutionResult) -> str:
    """Render an execution result as the `tool` message the model reads next."""
    if not result.success:
        payload: Dict[str, Any] = {"error": result.error}
        if result.status is not None:
            payload["status"] = result.status
        return json.dumps(payload, ensure_ascii=False)
    data = result.data
    # Avoid double-encoding strings (json.dumps("hi") -> '"hi"')
    return data if isinstance(data, str) else json.dumps(data, ensure_ascii=False)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class ChatTurn:
    """
    One user message and everything the model does about it.

    `events()` starts a single producer task and yields StreamEvents from the
    channel until the turn reaches DONE or FAILED. The stream always ends with
    exactly one `end` or `error` event unless the consumer goes away first.
    """

    def __init__(
        self,
        *,
        conversation_id: str,
        user_message: str,
        messages: List[Dict[str, Any]],
        catalog: ToolCatalog,
        executor: ToolExecutor,
        provider: ModelProvider,
        compiler: SchemaCompiler,
        auth_token: Optional[str] = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
    ) -> None:
        self.conversation_id = conversation_id
        self.user_message = user_message
        self.messages = messages
        self.state = TurnState.IDLE

        self._catalog = catalog
        self._executor = executor
        self._provider = provider
        self._compiler = compiler
        self._auth_token = auth_token
        self._timeout_s = timeout_s
        self._max_tool_rounds = max_tool_rounds

        self._channel = EventChannel()
        self._task: Optional[asyncio.Task] = None
        self._reply_parts: List[str] = []
        self._open_calls: Dict[int, PartialToolCall] = {}
        self._last_opened: Optional[PartialToolCall] = None

    @property
    def reply(self) -> str:
        return "".join(self._reply_parts)

    # ----------------------------
    # consumer side
    # ----------------------------

    async def events(self) -> AsyncIterator[StreamEvent]:
        if self._task is not None:
            raise RuntimeError("ChatTurn.events() can only be consumed once")

        self._task = asyncio.create_task(self._run(), name=f"chat-turn-{self.conversation_id}")
        _RUNNING_TURNS.add(self._task)
        self._task.add_done_callback(_RUNNING_TURNS.discard)

        try:
            async for event in self._channel:
                yield event
        finally:
            self.close()

    def close(self) -> None:
        """Consumer is gone. Stop the turn, unless a tool call is in flight."""
        self._channel.close()
        task = self._task
        if task is None or task.done():
            return
        if self.state is TurnState.DISPATCHING_TOOL:
            # The in-flight call completes; the task stops at its next emit.
            logger.info(f"Client left turn {self.conversation_id} during a tool call; letting it finish.")
            return
        logger.info(f"Client left turn {self.conversation_id} in state {self.state.value}; cancelling.")
        task.cancel()

    async def wait(self) -> None:
        """Wait for the producer task to finish (however it ends)."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    # ----------------------------
    # producer side
    # ----------------------------

    async def _emit(self, event: StreamEvent) -> None:
        await self._channel.send(event)

    async def _run(self) -> None:
        try:
            await self._drive()
        except ChannelClosed:
            logger.info(f"Turn {self.conversation_id} stopped after client disconnect (state={self.state.value}).")
        except Exception as e:
            logger.exception(f"Turn {self.conversation_id} failed unexpectedly")
            self.state = TurnState.FAILED
            with contextlib.suppress(ChannelClosed):
                await self._emit(ErrorEvent(error="internal_error", message=str(e)))
        finally:
            self._channel.finish()

    async def _drive(self) -> None:
        logger.info(f"Turn {self.conversation_id} start (tools={len(self._catalog)})")
        await self._emit(StartEvent(conversation_id=self.conversation_id, message=self.user_message))

        tools = self._catalog.openai_tools() or None
        rounds = 0

        while True:
            rounds += 1
            reply_mark = len(self._reply_parts)

            outcomes = await self._consume_stream(tools)
            if self.state is TurnState.FAILED:
                return
            if not outcomes:
                break

            if rounds >= self._max_tool_rounds:
                logger.warning(f"Turn {self.conversation_id} exceeded {self._max_tool_rounds} tool rounds")
                await self._emit(
                    ErrorEvent(
                        error="tool_loop_exceeded",
                        message=f"Exceeded max tool iterations ({self._max_tool_rounds}).",
                    )
                )
                self.state = TurnState.FAILED
                return

            self._append_tool_round("".join(self._reply_parts[reply_mark:]), outcomes)

        await self._emit(
            EndEvent(
                conversation_id=self.conversation_id,
                message=self.reply,
                timestamp=_utc_timestamp(),
            )
        )
        self.state = TurnState.DONE
        logger.info(f"Turn {self.conversation_id} done (rounds={rounds}, reply_len={len(self.reply)})")

    async def _consume_stream(self, tools: Optional[List[Dict[str, Any]]]) -> List[_ToolOutcome]:
        """Run one provider stream to its end, dispatching tool calls as they complete."""
        self.state = TurnState.STREAMING
        self._open_calls = {}
        self._last_opened = None
        outcomes: List[_ToolOutcome] = []

        iterator = self._provider.stream_chat(self.messages, tools).__aiter__()
        try:
            while True:
                try:
                    chunk = await asyncio.wait_for(iterator.__anext__(), timeout=self._timeout_s)
                except StopAsyncIteration:
                    break
                outcomes.extend(await self._handle_chunk(chunk))
        except ChannelClosed:
            raise
        except asyncio.TimeoutError:
            logger.error(f"Turn {self.conversation_id}: no upstream chunk within {self._timeout_s:g}s")
            await self._fail(
                "upstream_timeout", f"Model did not respond within {self._timeout_s:g} seconds"
            )
            return outcomes
        except Exception as e:
            logger.exception("Streaming upstream failed (runtime)")
            await self._fail("upstream_stream_error", str(e) or type(e).__name__)
            return outcomes
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                with contextlib.suppress(RuntimeError):
                    await aclose()

        # Stream ended without the completion signal for these calls.
        for call in self._take_open_calls():
            logger.warning(f"Dropping incomplete tool call {call.id} ({call.name})")
            await self._emit(ToolErrorEvent(tool_id=call.id, tool_name=call.name, error=INCOMPLETE_TOOL_CALL))

        return outcomes

    async def _handle_chunk(self, chunk: Dict[str, Any]) -> List[_ToolOutcome]:
        choice0 = (chunk.get("choices") or [{}])[0] or {}
        delta = choice0.get("delta") or {}

        content = delta.get("content")
        if content:
            self._reply_parts.append(content)
            await self._emit(ContentEvent(content=content))

        # Tool call deltas are accumulated, never forwarded.
        for tc in delta.get("tool_calls") or []:
            await self._accumulate(tc)

        self.state = TurnState.ACCUMULATING_TOOL_CALL if self._open_calls else TurnState.STREAMING

        if choice0.get("finish_reason") == "tool_calls" and self._open_calls:
            return await self._dispatch_open_calls()
        return []

    async def _accumulate(self, tc: Dict[str, Any]) -> None:
        fn = tc.get("function") or {}
        index = tc.get("index")

        if tc.get("id") and fn.get("name"):
            call_id = str(tc["id"])
            # Some providers repeat id and name on every argument chunk.
            existing = next((c for c in self._open_calls.values() if c.id == call_id), None)
            if existing is not None and (index is None or existing.index == int(index)):
                existing.arguments_buffer += fn.get("arguments") or ""
                return

            call = PartialToolCall(
                id=call_id,
                name=str(fn["name"]),
                index=int(index) if index is not None else len(self._open_calls),
                arguments_buffer=fn.get("arguments") or "",
            )
            self._open_calls[call.index] = call
            self._last_opened = call
            logger.info(f"[tool-stream] tool call opened id={call.id} name={call.name} index={call.index}")
            await self._emit(ToolCallStartEvent(tool_id=call.id, tool_name=call.name))
            return

        fragment = fn.get("arguments")
        if not fragment:
            return

        call = self._open_calls.get(int(index)) if index is not None else None
        if call is None and self._last_opened is not None and self._last_opened.index in self._open_calls:
            call = self._last_opened
        if call is None:
            logger.warning(f"[tool-stream] argument fragment with no open call (index={index}); dropped")
            return
        call.arguments_buffer += fragment

    def _take_open_calls(self) -> List[PartialToolCall]:
        calls = [self._open_calls[i] for i in sorted(self._open_calls)]
        self._open_calls = {}
        self._last_opened = None
        return calls

    async def _dispatch_open_calls(self) -> List[_ToolOutcome]:
        self.state = TurnState.DISPATCHING_TOOL
        outcomes = []
        # Strictly sequential so every result lands on its own call id.
        for call in self._take_open_calls():
            outcomes.append(await self._dispatch(call))
        self.state = TurnState.STREAMING
        return outcomes

    async def _dispatch(self, call: PartialToolCall) -> _ToolOutcome:
        raw_args = call.arguments_buffer.strip() or "{}"
        try:
            arguments = json.loads(raw_args)
        except json.JSONDecodeError as e:
            return await self._reject(call, f"Invalid tool arguments: {e.msg}")
        if not isinstance(arguments, dict):
            return await self._reject(call, "Invalid tool arguments: expected a JSON object")

        tool = self._catalog.get_tool(call.name)
        if tool is None:
            return await self._reject(call, f"Unknown tool: {call.name}")

        errors = self._compiler.validation_errors(tool, arguments)
        if errors:
            return await self._reject(call, f"Invalid parameters: {'; '.join(errors)}")

        await self._emit(ToolExecutingEvent(tool_id=call.id, tool_name=call.name, parameters=arguments))

        params = dict(arguments)
        if self._auth_token:
            params["authorization"] = self._auth_token

        logger.info(
            f"[tool-stream] executing tool name={tool.name} call_id={call.id} args_len={len(call.arguments_buffer)}"
        )
        try:
            result = await self._executor.execute(tool, params)
        except Exception as e:
            logger.exception(f"[tool-stream] executor raised for tool name={tool.name} call_id={call.id}")
            result = ExecutionResult.fail(f"Internal error: {e}", error_type="internal")
        logger.info(
            f"[tool-stream] tool complete name={tool.name} call_id={call.id} "
            f"success={result.success} elapsed_ms={result.execution_time_ms}"
        )

        await self._emit(
            ToolResultEvent(
                tool_id=call.id,
                tool_name=call.name,
                success=result.success,
                result=result.data,
                execution_time_ms=result.execution_time_ms,
                status=result.status,
                error=result.error,
            )
        )
        return _ToolOutcome(call=call, content=_tool_result_to_content(result))

    async def _reject(self, call: PartialToolCall, error: str) -> _ToolOutcome:
        logger.warning(f"[tool-stream] rejected tool call {call.id} ({call.name}): {error}")
        await self._emit(ToolErrorEvent(tool_id=call.id, tool_name=call.name, error=error))
        return _ToolOutcome(call=call, content=json.dumps({"error": error}, ensure_ascii=False))

    async def _fail(self, code: str, message: str) -> None:
        for call in self._take_open_calls():
            await self._emit(ToolErrorEvent(tool_id=call.id, tool_name=call.name, error=INTERRUPTED_TOOL_CALL))
        await self._emit(ErrorEvent(error=code, message=message))
        self.state = TurnState.FAILED

    def _append_tool_round(self, round_text: str, outcomes: List[_ToolOutcome]) -> None:
        self.messages.append(
            ChatMessage(
                role="assistant",
                content=round_text or None,
                tool_calls=[
                    {
                        "id": o.call.id,
                        "type": "function",
                        "function": {"name": o.call.name, "arguments": o.call.arguments_buffer or "{}"},
                    }
                    for o in outcomes
                ],
            ).to_dict()
        )
        for o in outcomes:
            self.messages.append(
                ChatMessage(
                    role="tool",
                    content=o.content,
                    tool_call_id=o.call.id,
                    name=o.call.name,
                ).to_dict()
            )


class ChatOrchestrator:
    """Builds ChatTurns from requests; holds the app-scoped collaborators."""

    def __init__(
        self,
        *,
        catalog: ToolCatalog,
        executor: ToolExecutor,
        provider: ModelProvider,
        compiler: Optional[SchemaCompiler] = None,
        prompts: Optional[SystemPrompts] = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
    ) -> None:
        self.catalog = catalog
        self.executor = executor
        self.provider = provider
        self.compiler = compiler or SchemaCompiler()
        self.prompts = prompts or SystemPrompts()
        self.timeout_s = timeout_s
        self.max_tool_rounds = max_tool_rounds

    def prepare_turn(self, request: ChatRequest, auth_token: Optional[str] = None) -> ChatTurn:
        context = request.context or ChatContext()
        system_prompt = self.prompts.build_system_prompt(
            PromptContext(
                user_role=context.user_role or "CUSTOMER",
                partner_id=context.partner_id,
                current_page=context.current_page,
                available_tools=self.catalog.tools(),
            )
        )
        messages = [
            ChatMessage(role="system", content=system_prompt).to_dict(),
            ChatMessage(role="user", content=request.message).to_dict(),
        ]
        conversation_id = request.conversation_id or f"conv_{uuid.uuid4().hex[:12]}"

        return ChatTurn(
            conversation_id=conversation_id,
            user_message=request.message,
            messages=messages,
            catalog=self.catalog,
            executor=self.executor,
            provider=self.provider,
            compiler=self.compiler,
            auth_token=auth_token,
            timeout_s=self.timeout_s,
            max_tool_rounds=self.max_tool_rounds,
        )
