from fastapi import APIRouter, Request
from apicopilot.services.system_prompt import SystemPrompts

router = APIRouter()


@router.get("/prompts")
async def list_prompts(raw_req: Request):
    prompts = getattr(raw_req.app.state, "prompts", None) or SystemPrompts()
    return {
        "success": True,
        "data": [p.model_dump() for p in prompts.get_available_prompts()],
    }
