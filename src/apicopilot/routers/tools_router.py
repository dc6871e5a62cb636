from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from apicopilot.core.logger import setup_logger
from apicopilot.models.chat_model import ExecuteToolRequest
from apicopilot.utils.auth import get_auth_token_from_request

logger = setup_logger(__name__)

router = APIRouter()


def _not_ready(what: str) -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"success": False, "error": f"Service unavailable: {what} not initialized"},
    )


@router.get("/tools")
async def list_tools(raw_req: Request):
    catalog = getattr(raw_req.app.state, "catalog", None)
    if catalog is None:
        return _not_ready("tool catalog")

    tools = catalog.listing()
    return {"success": True, "data": {"tools": tools, "count": len(tools)}}


@router.post("/execute")
async def execute_tool(req: ExecuteToolRequest, raw_req: Request):
    state = raw_req.app.state
    catalog = getattr(state, "catalog", None)
    executor = getattr(state, "executor", None)
    compiler = getattr(state, "compiler", None)
    if catalog is None or executor is None or compiler is None:
        return _not_ready("tool execution")

    tool = catalog.get_tool(req.tool_name)
    if tool is None:
        return JSONResponse(
            status_code=404,
            content={"success": False, "error": f"Tool not found: {req.tool_name}"},
        )

    errors = compiler.validation_errors(tool, req.parameters)
    if errors:
        logger.warning(f"Rejected /execute for tool '{tool.name}': {errors}")
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Invalid parameters", "details": errors},
        )

    params: Dict[str, Any] = dict(req.parameters)
    auth_token = get_auth_token_from_request(raw_req)
    if auth_token:
        params["authorization"] = auth_token

    result = await executor.execute(tool, params)
    return result.to_payload()
