"""Chat endpoints.

POST /api/v1/chat/stream - Run one turn and stream it as Server-Sent Events
GET  /api/v1/chat/models - Models offered by the LLM proxy

The stream emits ``token`` events for each delta, then exactly one of
``done``, ``cancelled`` or ``error``. A client disconnect cancels the
generator, which closes the relay and with it the upstream LLM call.
"""

from __future__ import annotations

import contextlib
import uuid
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from chatspace.agent.llm import ChatCompletionRequest, LLMClient
from chatspace.agent.runtime import TurnRuntime
from chatspace.api.dependencies import get_turn_runtime
from chatspace.infra.streaming import sse_response
from chatspace.plugins.context import ConversationContext, Message, MessageRole
from chatspace.telemetry import bind_conversation_context

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


class HistoryMessage(BaseModel):
    role: MessageRole
    content: str


class ChatRequestBody(BaseModel):
    message: str = Field(
        ...,
        min_length=1,
        max_length=32_000,
        description="User message for this turn",
    )
    conversation_id: uuid.UUID | None = Field(
        default=None,
        description="Continue an existing conversation. Omit to start a new one.",
    )
    history: list[HistoryMessage] = Field(
        default_factory=list,
        description="Earlier messages of the conversation, oldest first",
    )
    user_id: str = ""
    workspace_id: str = ""
    user_settings: dict[str, Any] = Field(default_factory=dict)
    model: str | None = Field(default=None, description="Override the default model")
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)


class ModelListResponse(BaseModel):
    models: list[str]


def _build_turn(body: ChatRequestBody) -> tuple[Message, ConversationContext, ChatCompletionRequest]:
    conversation_id = body.conversation_id or uuid.uuid4()
    context = ConversationContext(
        conversation_id=conversation_id,
        history=[
            Message(role=m.role, content=m.content, conversation_id=conversation_id)
            for m in body.history
        ],
        user_id=body.user_id,
        workspace_id=body.workspace_id,
        user_settings=body.user_settings,
    )
    message = Message(role=MessageRole.USER, content=body.message, conversation_id=conversation_id)
    request = ChatCompletionRequest(
        messages=[],
        model=body.model,
        temperature=body.temperature,
        max_tokens=body.max_tokens,
    )
    return message, context, request


@router.post(
    "/stream",
    summary="Send a message with streaming response",
    description="Runs one chat turn through the plugin runtime and streams it as SSE.",
)
async def chat_stream(
    body: ChatRequestBody,
    runtime: TurnRuntime = Depends(get_turn_runtime),
) -> StreamingResponse:
    """Streaming chat endpoint using SSE."""
    message, context, llm_request = _build_turn(body)
    conversation_id = str(context.conversation_id)

    async def generate():
        bind_conversation_context(
            conversation_id, user_id=body.user_id, workspace_id=body.workspace_id
        )
        async with contextlib.aclosing(runtime.run_turn(message, context, llm_request)) as events:
            async for event in events:
                yield event.to_stream_event(conversation_id=conversation_id).to_sse()

    log.info("chat.stream_started", conversation_id=conversation_id, history=len(body.history))
    return sse_response(generate())


@router.get(
    "/models",
    response_model=ModelListResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelListResponse:
    client: LLMClient | None = getattr(request.app.state, "llm_client", None)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="LLM client is not initialized",
        )
    return ModelListResponse(models=await client.list_models())
