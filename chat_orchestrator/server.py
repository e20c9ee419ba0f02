"""
FastAPI transport for the chat pipeline.
"""

from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from .core import ChatPipeline
from .core.executor import EventStream
from .models import ChatRequest
from .utils import get_logger
from .utils.error_handling import OrchestratorError, RequestValidationError

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

logger = get_logger(__name__)


class ChatRequestBody(BaseModel):
    """Inbound chat payload as sent by the client."""
    messages: List[Dict[str, Any]]
    files: List[Dict[str, Any]] = []
    userOverride: Optional[str] = None
    useRAG: bool = False
    mode: str = "primary"
    deepWebSearch: bool = False
    personalInfoContext: str = ""
    memoryContext: str = ""
    agent: str = "chat"
    taskType: Optional[str] = None


async def sse_events(stream: EventStream) -> AsyncIterator[str]:
    """Frame stream events as server-sent events; closing the iterator cancels the producer."""
    try:
        async for event in stream:
            yield event.to_sse()
    finally:
        await stream.aclose()


def create_app(pipeline: ChatPipeline) -> FastAPI:
    """
    Build the HTTP application around a pipeline.

    Args:
        pipeline: Configured chat pipeline shared by all requests

    Returns:
        FastAPI application
    """
    app = FastAPI(title="Chat Orchestrator")

    def error_response(error: OrchestratorError) -> JSONResponse:
        payload = error.to_payload()
        payload["availableProviders"] = pipeline.registry.available_names()
        logger.warning(f"Request rejected ({error.status_code}): {error.message}")
        return JSONResponse(status_code=error.status_code, content=payload)

    @app.post("/api/chat")
    async def chat(body: ChatRequestBody):
        try:
            request = ChatRequest.from_dict(body.model_dump())
        except (ValueError, TypeError) as e:
            return error_response(RequestValidationError(f"Invalid request: {e}"))

        try:
            # Planning may probe local providers over blocking HTTP
            plan = await run_in_threadpool(pipeline.plan, request)
        except OrchestratorError as e:
            return error_response(e)

        stream = pipeline.stream(request, plan)
        return StreamingResponse(sse_events(stream), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.get("/api/providers")
    async def providers():
        return {"providers": pipeline.providers_status()}

    return app
