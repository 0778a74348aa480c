"""
Streaming chat endpoint.

POST /chat
Body: {"messages": [...], "model_id"?, "conversation_id"?, "context", "current_path"?}
Headers: X-User-ID (set by the authenticating proxy; absent for guests)

Response: text/event-stream of ``data: {"type": ..., "data": {...}}`` events
(meta, text, tool_call, tool_result, error, done). The served model is also
returned in the X-Served-Model header.
"""
from typing import Optional

from fastapi import APIRouter, Header
from fastapi.responses import StreamingResponse

from assistant.core.logging import get_logger
from assistant.models.chat import ChatRequest
from assistant.services.ai.orchestration import get_chat_orchestrator

logger = get_logger(__name__)
router = APIRouter()


@router.post("")
async def chat(
    body: ChatRequest,
    x_user_id: Optional[str] = Header(None),
):
    orchestrator = get_chat_orchestrator()
    turn = await orchestrator.prepare_turn(body, user_id=x_user_id)

    async def event_stream():
        async for event in orchestrator.stream(turn):
            yield event.to_sse()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "X-Conversation-ID": turn.conversation_id,
            "X-Served-Model": turn.model.id,
            "X-Model-Fallback": "true" if turn.model_fallback else "false",
        },
    )
