from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from apicopilot.core.logger import setup_logger
from apicopilot.models.tool_model import ToolDefinition
from apicopilot.tools.compiler import SchemaCompiler, sanitize_tool_name

logger = setup_logger(__name__)


class ToolCatalog:
    def __init__(self, tools: Optional[Iterable[ToolDefinition]] = None) -> None:
        self._tools: Dict[str, ToolDefinition] = {}
        if tools:
            self.register_tools(tools)

    def register_tool(self, tool: ToolDefinition) -> None:
        self._tools[tool.name] = tool

    def register_tools(self, tools: Iterable[ToolDefinition]) -> None:
        for tool in tools:
            self.register_tool(tool)

    def get_tool(self, name: Optional[str]) -> Optional[ToolDefinition]:
        # Models sometimes echo the raw operationId (e.g. "getOrders") instead of the sanitized name.
        if not name:
            return None
        return self._tools.get(name) or self._tools.get(sanitize_tool_name(name))

    def tools(self) -> List[ToolDefinition]:
        return list(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def openai_tools(self) -> List[Dict[str, Any]]:
        # OpenAI-style function tools, as expected by OpenAI-compatible upstreams.
        return [
            {
                "type": "function",
                "function": {
                    "name": t.name,
                    "description": t.description,
                    "parameters": t.input_schema,
                },
            }
            for t in self._tools.values()
        ]

    def listing(self) -> List[Dict[str, Any]]:
        return [t.listing() for t in self._tools.values()]


def build_catalog(compiler: SchemaCompiler, api_description: Dict[str, Any]) -> ToolCatalog:
    catalog = ToolCatalog(compiler.compile(api_description))
    logger.info(f"Tool catalog ready with {len(catalog)} tools.")
    return catalog
