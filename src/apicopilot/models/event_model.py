from __future__ import annotations

import json
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Event(BaseModel):
    """Base for client-facing stream events.

    `type` names the SSE event; everything else is the JSON payload (camelCase).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude={"type"}, exclude_none=True)

    def to_sse(self) -> str:
        return f"event: {self.type}\ndata: {json.dumps(self.payload(), ensure_ascii=False)}\n\n"


class StartEvent(_Event):
    type: Literal["start"] = "start"
    conversation_id: Optional[str] = None
    message: str


class ContentEvent(_Event):
    type: Literal["content"] = "content"
    content: str


class ToolCallStartEvent(_Event):
    type: Literal["tool_call_start"] = "tool_call_start"
    tool_id: str
    tool_name: str


class ToolExecutingEvent(_Event):
    type: Literal["tool_executing"] = "tool_executing"
    tool_id: str
    tool_name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)


class ToolResultEvent(_Event):
    type: Literal["tool_result"] = "tool_result"
    tool_id: str
    tool_name: str
    success: bool
    result: Any = None
    execution_time_ms: Optional[int] = None
    status: Optional[int] = None
    error: Optional[str] = None


class ToolErrorEvent(_Event):
    type: Literal["tool_error"] = "tool_error"
    tool_id: str
    tool_name: str
    error: str


class EndEvent(_Event):
    type: Literal["end"] = "end"
    conversation_id: Optional[str] = None
    message: str
    timestamp: str


class ErrorEvent(_Event):
    type: Literal["error"] = "error"
    error: str
    message: str


StreamEvent = Annotated[
    Union[
        StartEvent,
        ContentEvent,
        ToolCallStartEvent,
        ToolExecutingEvent,
        ToolResultEvent,
        ToolErrorEvent,
        EndEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]
