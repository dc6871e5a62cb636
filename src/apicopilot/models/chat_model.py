from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatContext(_CamelModel):
    """Optional hints about where the user is and who they are."""

    user_role: Optional[str] = None
    partner_id: Optional[str] = None
    current_page: Optional[str] = None


class ChatRequest(_CamelModel):
    message: str = Field(..., min_length=1)
    conversation_id: Optional[str] = None
    context: Optional[ChatContext] = None


class ChatMessage(BaseModel):
    """
    A minimal OpenAI-compatible message model with optional tool fields.
    """
    role: str
    content: Optional[str] = None

    # Optional OpenAI/tool-calling fields
    name: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None

    def to_dict(self) -> Dict[str, Any]:
        # Ensure we serialize only non-null fields so upstream payload stays clean.
        return self.model_dump(exclude_none=True)


class ExecuteToolRequest(_CamelModel):
    tool_name: str = Field(..., min_length=1)
    parameters: Dict[str, Any] = Field(default_factory=dict)


class ErrorMessage(BaseModel):
    type: str
    message: str
    retryable: bool
    details: Optional[Any] = None


class ChatErrorMessage(BaseModel):
    error: ErrorMessage
