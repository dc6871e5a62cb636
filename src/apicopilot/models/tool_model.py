from __future__ import annotations

from typing import Any, Dict, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


BodyMode = Literal["none", "flatten", "wrap"]
ExecutionErrorType = Literal["http", "connection", "internal", "validation"]


class HttpBinding(BaseModel):
    """
    Everything the executor needs to turn a parameter bag into an HTTP request.

    - `path` keeps its `{param}` placeholders.
    - `query_params` / `header_params` are the declared names, used to keep them
      out of the request body.
    - `body_mode` records whether body fields were flattened into the tool's
      top-level schema or wrapped under a single `body` property.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    method: str
    path: str
    path_params: Tuple[str, ...] = ()
    query_params: Tuple[str, ...] = ()
    header_params: Tuple[str, ...] = ()
    body_schema: Optional[Dict[str, Any]] = None
    body_required: bool = False
    body_mode: BodyMode = "none"


class ToolDefinition(BaseModel):
    """
    A tool compiled from one API operation.
    - `name` is the model-facing tool name (stable across compilations).
    - `input_schema` is the JSON schema advertised to the model and used for validation.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    name: str
    description: str
    input_schema: Dict[str, Any]
    binding: HttpBinding

    def listing(self) -> Dict[str, Any]:
        """Public catalog entry (name, description, endpoint, inputSchema)."""
        return {
            "name": self.name,
            "description": self.description,
            "endpoint": {"method": self.binding.method, "path": self.binding.path},
            "inputSchema": self.input_schema,
        }


class ToolCallRequest(BaseModel):
    """
    A single model-requested invocation of a tool.
    This is *not* the same thing as a ToolDefinition.
    """

    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ExecutionResult(BaseModel):
    """
    The normalized outcome of executing a tool against the target API.

    Success carries `data`, `status`, `headers`. Failure carries `error` and
    `error_type`; `status`/`data` only when the remote answered with an error.
    `execution_time_ms` is recorded either way.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    data: Any = None
    status: Optional[int] = None
    headers: Optional[Dict[str, str]] = None
    execution_time_ms: int = 0

    error: Optional[str] = None
    error_type: Optional[ExecutionErrorType] = None

    @model_validator(mode="after")
    def _check_payload(self) -> "ExecutionResult":
        if self.success:
            if self.error is not None or self.error_type is not None:
                raise ValueError("a successful result cannot carry an error")
        else:
            if not self.error or self.error_type is None:
                raise ValueError("a failed result needs an error message and error_type")
            if self.error_type != "http" and (self.status is not None or self.data is not None):
                raise ValueError("only HTTP failures carry status/data")
        return self

    @classmethod
    def ok(
        cls,
        data: Any,
        *,
        status: int,
        headers: Optional[Dict[str, str]] = None,
        execution_time_ms: int = 0,
    ) -> "ExecutionResult":
        return cls(
            success=True,
            data=data,
            status=status,
            headers=headers,
            execution_time_ms=execution_time_ms,
        )

    @classmethod
    def fail(
        cls,
        error: str,
        *,
        error_type: ExecutionErrorType,
        execution_time_ms: int = 0,
        status: Optional[int] = None,
        data: Any = None,
    ) -> "ExecutionResult":
        return cls(
            success=False,
            error=error,
            error_type=error_type,
            execution_time_ms=execution_time_ms,
            status=status,
            data=data,
        )

    def to_payload(self) -> Dict[str, Any]:
        """JSON-safe wire form (camelCase, unset fields omitted)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
