from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from apicopilot.models.chat_model import ChatRequest
from apicopilot.services.chat_service import dispatch_chat_request

router = APIRouter()


def _bad_request(details) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid request data", "details": details},
    )


@router.post("/chat")
async def chat(raw_req: Request):
    try:
        body = await raw_req.json()
    except ValueError:
        return _bad_request("Request body must be a JSON object")

    try:
        req = ChatRequest.model_validate(body)
    except ValidationError as e:
        return _bad_request(e.errors(include_url=False, include_context=False))
    return await dispatch_chat_request(req, raw_req)
