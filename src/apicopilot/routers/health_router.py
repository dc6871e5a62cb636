from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict
from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health(raw_req: Request) -> Dict[str, Any]:
    """Component health: tool catalog, target API reachability, model provider.

    Reads from app.state, so it answers even when startup left parts missing.
    """
    state = raw_req.app.state

    catalog = getattr(state, "catalog", None)
    executor = getattr(state, "executor", None)
    provider = getattr(state, "provider", None)
    init_error = getattr(state, "init_error", None)

    if executor is not None:
        check = await executor.health_check()
        executor_health: Dict[str, Any] = {
            "status": "healthy" if check.success else "unhealthy",
            "baseUrl": executor.config.base_url,
        }
        if not check.success:
            executor_health["error"] = check.error
    else:
        executor_health = {"status": "unavailable"}

    payload: Dict[str, Any] = {
        "success": True,
        "data": {
            "parser": {
                "status": "healthy" if catalog is not None else "unavailable",
                "toolsCount": len(catalog) if catalog is not None else 0,
            },
            "executor": executor_health,
            "ai": {"configured": bool(getattr(provider, "is_configured", False))},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    }

    # Only include init error if present (keeps the happy-path response clean).
    if init_error:
        payload["data"]["initError"] = init_error

    return payload
