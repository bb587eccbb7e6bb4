"""
Chat feature: API routes for conversations (batch + SSE streaming).
"""

import json
import logging

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import StreamingResponse

from study_assistant.core.dependencies import get_chat_service
from study_assistant.core.exceptions import ASSISTANT_UNAVAILABLE, AppBaseError, NotFoundError, app_error_to_http
from study_assistant.features.chat.schemas import (
    Conversation,
    ConversationHistory,
    ConversationList,
    DeleteHistoryResponse,
    NewConversationRequest,
    SendMessageRequest,
    SendMessageResponse,
)
from study_assistant.features.chat.service import ChatService

logger = logging.getLogger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def sse_frame(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


@router.post("/message", response_model=SendMessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    data: SendMessageRequest,
    service: ChatService = Depends(get_chat_service),
):
    """Send a message and wait for the full assistant reply."""
    return await service.send_message(data.student_id, data.message, data.conversation_id)


@router.post("/message/stream")
async def stream_message(
    data: SendMessageRequest,
    service: ChatService = Depends(get_chat_service),
):
    """Send a message and stream the reply as Server-Sent Events.

    Frames: {"conversationId"} first, then {"token"} per fragment, ending
    with {"done": true, "messageId"} or a single {"error"}. A failure to
    resolve the conversation yields the {"error"} frame alone.
    """
    events = service.stream_message(data.student_id, data.message, data.conversation_id)

    async def generate_event_stream():
        try:
            async for event in events:
                yield sse_frame(event)
        except AppBaseError as e:
            logger.warning(f"Chat stream failed: {e.message}")
            yield sse_frame({"error": e.message})
        except Exception as e:
            logger.error(f"Chat stream error: {e}", exc_info=True)
            yield sse_frame({"error": ASSISTANT_UNAVAILABLE})
        finally:
            await events.aclose()

    return StreamingResponse(
        generate_event_stream(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/conversation/new", response_model=Conversation, status_code=status.HTTP_201_CREATED)
async def new_conversation(
    data: NewConversationRequest,
    service: ChatService = Depends(get_chat_service),
):
    return await service.start_new_conversation(data.student_id, data.initial_context)


@router.get("/history/{student_id}", response_model=ConversationHistory | ConversationList)
async def get_history(
    student_id: str,
    conversation_id: str | None = Query(None, alias="conversationId"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    service: ChatService = Depends(get_chat_service),
):
    """Messages of one conversation (conversationId given) or the student's conversations."""
    history = await service.get_history(student_id, conversation_id, page, limit)
    if history is None:
        raise app_error_to_http(NotFoundError("Conversation", conversation_id))
    return history


@router.delete("/history/{student_id}/{conversation_id}", response_model=DeleteHistoryResponse)
async def delete_history(
    student_id: str,
    conversation_id: str,
    service: ChatService = Depends(get_chat_service),
):
    deleted = await service.delete_history(student_id, conversation_id)
    if deleted is None:
        raise app_error_to_http(NotFoundError("Conversation", conversation_id))
    return DeleteHistoryResponse(deleted_messages=deleted)
