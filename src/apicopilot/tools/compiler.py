from __future__ import annotations

import copy
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

import jsonref

from apicopilot.core.logger import setup_logger
from apicopilot.models.tool_model import HttpBinding, ToolDefinition
from apicopilot.tools.validator import validation_errors

logger = setup_logger(__name__)


RECOGNIZED_METHODS = ("get", "post", "put", "delete", "patch")
KNOWN_TYPES = ("string", "number", "integer", "boolean", "array", "object")

# Cyclic $ref graphs resolve into cyclic dicts; stop descending past this depth.
MAX_SCHEMA_DEPTH = 32

_PATH_PARAM_RE = re.compile(r"{([^}]+)}")


def _local_refs_only(uri: str) -> Any:
    raise ValueError(f"remote $ref not supported: {uri}")


def sanitize_tool_name(name: str) -> str:
    name = str(name).lower()
    name = re.sub(r"[^a-z0-9_]", "_", name)
    name = re.sub(r"_+", "_", name)
    return name.strip("_")


def extract_path_parameters(path: str) -> List[str]:
    return _PATH_PARAM_RE.findall(path)


def convert_schema(schema: Any, _depth: int = 0) -> Dict[str, Any]:
    """Structurally copy the subset of JSON schema the tools understand.

    An absent or unrecognized type becomes `string`.
    """
    if not isinstance(schema, dict):
        return {"type": "string"}

    schema_type = schema.get("type")
    result: Dict[str, Any] = {
        "type": schema_type if isinstance(schema_type, str) and schema_type in KNOWN_TYPES else "string"
    }

    if _depth >= MAX_SCHEMA_DEPTH:
        return result

    if schema.get("description"):
        result["description"] = schema["description"]

    if schema.get("enum"):
        result["enum"] = list(schema["enum"])

    if result["type"] == "object" and isinstance(schema.get("properties"), dict):
        result["properties"] = {
            key: convert_schema(sub, _depth + 1) for key, sub in schema["properties"].items()
        }
        if isinstance(schema.get("required"), list) and schema["required"]:
            result["required"] = list(schema["required"])

    if result["type"] == "object" and isinstance(schema.get("additionalProperties"), bool):
        result["additionalProperties"] = schema["additionalProperties"]

    if result["type"] == "array" and schema.get("items"):
        result["items"] = convert_schema(schema["items"], _depth + 1)

    for key in ("minimum", "maximum", "minLength", "maxLength"):
        if schema.get(key) is not None:
            result[key] = schema[key]
    if schema.get("pattern"):
        result["pattern"] = schema["pattern"]

    return result


def _json_body_schema(request_body: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(request_body, dict):
        return None
    content = request_body.get("content")
    if not isinstance(content, dict):
        return None

    media = content.get("application/json")
    if not isinstance(media, dict):
        media = next(
            (v for k, v in content.items() if "json" in str(k).lower() and isinstance(v, dict)),
            None,
        )
    if not media or not isinstance(media.get("schema"), dict):
        return None
    return media["schema"]


def _merge_parameters(shared: Any, own: Any) -> List[Dict[str, Any]]:
    """Path-item parameters apply to every operation unless overridden by (name, in)."""
    merged: Dict[Tuple[Any, Any], Dict[str, Any]] = {}
    for group in (shared, own):
        if not isinstance(group, list):
            continue
        for param in group:
            if isinstance(param, dict):
                merged[(param.get("name"), param.get("in"))] = param
    return list(merged.values())


def _dedupe(names: Iterable[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for n in names:
        seen.setdefault(n, None)
    return list(seen)


class SchemaCompiler:
    """Compiles an OpenAPI description into tool definitions.

    Pure transformation: the input document is never mutated and the same
    document always compiles to the same list (names, schemas, ordering).
    """

    def compile(self, api_description: Dict[str, Any]) -> List[ToolDefinition]:
        doc = self._resolve_refs(api_description)
        paths = doc.get("paths") or {}
        if not isinstance(paths, dict):
            logger.warning("API description has no usable 'paths'; compiled 0 tools.")
            return []

        tools: List[ToolDefinition] = []
        seen: set[str] = set()

        for path, path_item in paths.items():
            if not isinstance(path_item, dict):
                logger.warning(f"Skipping path {path!r}: path item is not an object")
                continue

            shared_params = path_item.get("parameters")

            for method, operation in path_item.items():
                if str(method).lower() not in RECOGNIZED_METHODS:
                    continue

                try:
                    tool = self._tool_from_operation(
                        str(path), str(method).upper(), operation, shared_params
                    )
                except Exception as e:
                    logger.warning(f"Skipping {str(method).upper()} {path}: malformed operation ({e})")
                    continue

                if tool is None:
                    continue

                if tool.name in seen:
                    logger.warning(f"Duplicate tool name '{tool.name}' ({tool.binding.method} {path})")
                seen.add(tool.name)
                tools.append(tool)

        logger.info(f"Compiled {len(tools)} tools from {len(paths)} paths.")
        return tools

    def validate(self, tool: ToolDefinition, params: Any) -> bool:
        """Check a parameter bag against the tool's input schema. Never raises."""
        errors = self.validation_errors(tool, params)
        if errors:
            logger.warning(f"Parameter validation failed for tool '{tool.name}': {errors}")
            return False
        return True

    def validation_errors(self, tool: ToolDefinition, params: Any) -> List[str]:
        return validation_errors(tool.input_schema, params, name=f"{tool.name}_input")

    # ----------------------------
    # internals
    # ----------------------------

    def _resolve_refs(self, api_description: Dict[str, Any]) -> Dict[str, Any]:
        doc = copy.deepcopy(api_description or {})
        try:
            # proxies=False returns plain dicts rather than JsonRef objects
            resolved = jsonref.replace_refs(doc, proxies=False, loader=_local_refs_only)
        except Exception as e:
            logger.warning(f"Could not resolve $refs in API description, compiling as-is: {e}")
            return doc
        return resolved if isinstance(resolved, dict) else doc

    def _tool_from_operation(
        self, path: str, method: str, operation: Any, shared_params: Any = None
    ) -> Optional[ToolDefinition]:
        if not isinstance(operation, dict):
            return None

        operation_id = operation.get("operationId") or (
            f"{method.lower()}_{re.sub(r'[^a-zA-Z0-9]', '_', path)}"
        )
        name = sanitize_tool_name(operation_id)
        if not name:
            logger.warning(f"Skipping {method} {path}: empty tool name after sanitizing {operation_id!r}")
            return None

        summary = operation.get("summary") or f"{method} {path}"
        description = operation.get("description") or summary

        parameters = _merge_parameters(shared_params, operation.get("parameters"))
        input_schema, binding = self._build_input_schema(operation, parameters, method, path)

        return ToolDefinition(
            name=name,
            description=f"{description}\n\nEndpoint: {method} {path}",
            input_schema=input_schema,
            binding=binding,
        )

    def _build_input_schema(
        self,
        operation: Dict[str, Any],
        declared: List[Dict[str, Any]],
        method: str,
        path: str,
    ) -> Tuple[Dict[str, Any], HttpBinding]:
        properties: Dict[str, Any] = {}
        required: List[str] = []

        declared_path = {p.get("name"): p for p in declared if p.get("in") == "path"}

        # 1. Path parameters straight from the template; always required strings.
        path_params = extract_path_parameters(path)
        for param in path_params:
            properties[param] = {
                "type": "string",
                "description": (declared_path.get(param) or {}).get("description")
                or f"path parameter: {param}",
            }
            required.append(param)

        # 2. Declared query/header parameters.
        query_params: List[str] = []
        header_params: List[str] = []
        for param in declared:
            location = param.get("in")
            prop_name = param.get("name")
            if location not in ("query", "header") or not prop_name:
                continue

            prop = convert_schema(param.get("schema") or {"type": "string"})
            prop["description"] = param.get("description") or f"{location} parameter: {prop_name}"
            properties[prop_name] = prop
            if param.get("required"):
                required.append(prop_name)
            (query_params if location == "query" else header_params).append(prop_name)

        # 3. Request body: flatten named properties, otherwise wrap as `body`.
        request_body = operation.get("requestBody")
        body_schema = _json_body_schema(request_body)
        body_required = bool(isinstance(request_body, dict) and request_body.get("required"))
        body_mode = "none"
        converted_body: Optional[Dict[str, Any]] = None

        if body_schema is not None:
            converted_body = convert_schema(body_schema)
            if isinstance(body_schema.get("properties"), dict):
                body_mode = "flatten"
                for key, sub in body_schema["properties"].items():
                    properties[key] = convert_schema(sub)
                if isinstance(body_schema.get("required"), list):
                    required.extend(str(r) for r in body_schema["required"])
            else:
                body_mode = "wrap"
                properties["body"] = dict(converted_body, description="Request body")
                if body_required:
                    required.append("body")

        # 4. Closed schema.
        schema: Dict[str, Any] = {"type": "object", "properties": properties}
        required = _dedupe(required)
        if required:
            schema["required"] = required
        schema["additionalProperties"] = False

        binding = HttpBinding(
            method=method,
            path=path,
            path_params=tuple(path_params),
            query_params=tuple(query_params),
            header_params=tuple(header_params),
            body_schema=converted_body,
            body_required=body_required,
            body_mode=body_mode,
        )
        return schema, binding
