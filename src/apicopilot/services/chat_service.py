from fastapi import Request
from fastapi.responses import JSONResponse, StreamingResponse
from apicopilot.models.chat_model import ChatRequest, ErrorMessage, ChatErrorMessage
from apicopilot.core.logger import setup_logger
from apicopilot.utils.auth import get_auth_token_from_request
import uuid

logger = setup_logger(__name__)


SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def dispatch_chat_request(req: ChatRequest, raw_req: Request):
    """
    Entry point for chat requests.
    Prepares a turn on the app-scoped orchestrator and streams its events as SSE.
    """

    req_id = raw_req.headers.get("x-request-id") or uuid.uuid4().hex[:8]
    raw_req.state.req_id = req_id

    orchestrator = getattr(raw_req.app.state, "orchestrator", None)
    if orchestrator is None:
        err = ChatErrorMessage(
            error=ErrorMessage(
                type="server_error",
                message="Service unavailable: chat orchestrator not initialized.",
                retryable=True,
            )
        )
        logger.error("Chat orchestrator not initialized on app.state. req_id=%s state_keys=%s", req_id, list(vars(raw_req.app.state).keys()))
        return JSONResponse(content=err.model_dump(), status_code=503, headers={"X-Request-Id": req_id})

    auth_token = get_auth_token_from_request(raw_req)

    try:
        turn = orchestrator.prepare_turn(req, auth_token=auth_token)
    except Exception as e:
        logger.exception(f"Failed to prepare chat turn req_id={req_id}")
        err = ChatErrorMessage(
            error=ErrorMessage(
                type="chat_prepare_error",
                message=f"Internal error while preparing the chat: {e}",
                retryable=False,
            )
        )
        return JSONResponse(content=err.model_dump(), status_code=500, headers={"X-Request-Id": req_id})

    logger.info(f"Dispatching streaming chat request req_id={req_id} conversation_id={turn.conversation_id}")

    async def sse_generator():
        async for event in turn.events():
            yield event.to_sse()

    return StreamingResponse(
        sse_generator(),
        media_type="text/event-stream",
        headers={**SSE_HEADERS, "X-Request-Id": req_id},
    )
