"""Runtime validators built from compiled tool input schemas.

A JSON-schema object is turned into a pydantic annotation (nested models for
objects, constrained strict types for scalars) and checked with a TypeAdapter.
Only the keywords the compiler carries over are honoured.
"""

from __future__ import annotations

from typing import Annotated, Any, Callable, Dict, List, Tuple

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    TypeAdapter,
    ValidationError,
    create_model,
)


def _field_kwargs(schema: Dict[str, Any], mapping: Dict[str, str]) -> Dict[str, Any]:
    return {dst: schema[src] for src, dst in mapping.items() if schema.get(src) is not None}


def _is_member(value: Any, member: Any) -> bool:
    # True == 1 in Python; an enum of numbers must not admit booleans.
    if isinstance(value, bool) or isinstance(member, bool):
        return value is member
    return value == member


def _one_of(values: List[Any]) -> Callable[[Any], Any]:
    def check(value: Any) -> Any:
        if not any(_is_member(value, member) for member in values):
            raise ValueError(f"Input should be one of {values!r}")
        return value

    return check


def _object_model(schema: Dict[str, Any], name: str) -> type[BaseModel]:
    properties = schema.get("properties") or {}
    required = set(schema.get("required") or [])
    extra = "allow" if schema.get("additionalProperties") else "forbid"

    fields: Dict[str, Tuple[Any, Any]] = {}
    for i, (key, sub) in enumerate(properties.items()):
        annotation = schema_to_annotation(sub, f"{name}_{i}")
        if key in required:
            fields[f"field_{i}"] = (annotation, Field(..., alias=key))
        else:
            # Absent is fine, explicit null is not.
            fields[f"field_{i}"] = (annotation, Field(default=None, alias=key))

    return create_model(
        name,
        __config__=ConfigDict(extra=extra, regex_engine="python-re"),
        **fields,
    )


def schema_to_annotation(schema: Any, name: str = "ToolInput") -> Any:
    """Convert a JSON-schema fragment into a pydantic-compatible annotation."""
    if not isinstance(schema, dict):
        return Any

    annotation = _type_annotation(schema, name)

    enum = schema.get("enum")
    if enum and schema.get("type") not in ("object", "array"):
        # The declared type is checked first, then membership.
        return Annotated[annotation, AfterValidator(_one_of(list(enum)))]
    return annotation


def _type_annotation(schema: Dict[str, Any], name: str) -> Any:
    schema_type = schema.get("type")

    if schema_type == "string":
        kwargs = _field_kwargs(
            schema,
            {"minLength": "min_length", "maxLength": "max_length", "pattern": "pattern"},
        )
        return Annotated[str, Field(strict=True, **kwargs)]

    if schema_type == "integer":
        kwargs = _field_kwargs(schema, {"minimum": "ge", "maximum": "le"})
        return Annotated[StrictInt, Field(**kwargs)]

    if schema_type == "number":
        kwargs = _field_kwargs(schema, {"minimum": "ge", "maximum": "le"})
        return Annotated[float, Field(strict=True, **kwargs)]

    if schema_type == "boolean":
        return StrictBool

    if schema_type == "array":
        items = schema.get("items")
        item_annotation = schema_to_annotation(items, f"{name}_item") if items else Any
        return List[item_annotation]

    if schema_type == "object":
        if "properties" in schema or schema.get("additionalProperties") is False:
            return _object_model(schema, name)
        return Dict[str, Any]

    return Any


def build_validator(schema: Dict[str, Any], name: str = "ToolInput") -> TypeAdapter:
    return TypeAdapter(schema_to_annotation(schema, name))


def validation_errors(schema: Dict[str, Any], params: Any, name: str = "ToolInput") -> List[str]:
    """Return human-readable validation diagnostics (empty list when valid)."""
    try:
        adapter = build_validator(schema, name)
    except Exception as e:
        return [f"could not build validator: {e}"]

    try:
        adapter.validate_python(params)
    except ValidationError as e:
        errors = []
        for err in e.errors():
            loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
            errors.append(f"{loc}: {err.get('msg')}")
        return errors
    return []
