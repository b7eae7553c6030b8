"""
Chat API Endpoint.

Conversational booking: each message goes through the dialogue
orchestrator and the session context is persisted between turns.
"""

import logging
import time
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from dental_scheduler.api.dependencies import (
    Services,
    get_current_user,
    get_services,
    get_tenant_id,
)
from dental_scheduler.core.intelligence.session.models import ChatUser, TenantInfo

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["Chat"])


class ChatRequest(BaseModel):
    """Chat message request."""

    message: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="User's message",
        examples=["I'd like to book a cleaning on Monday at 10"],
    )
    session_id: Optional[str] = Field(
        default=None,
        description="Existing session ID for conversation continuity",
        examples=["550e8400-e29b-41d4-a716-446655440000"],
    )


class ChatOptionModel(BaseModel):
    """Selectable option."""

    value: str
    label: str


class ChatReply(BaseModel):
    """Chat response."""

    message: str = Field(..., description="Assistant reply")
    session_id: str = Field(..., description="Session ID for continuing conversation")
    state: str = Field(..., description="Conversation state after this turn")
    intent: Optional[str] = Field(default=None, description="Intent of the current task")
    suggested_replies: list[str] = Field(default_factory=list)
    requires_input: bool = False
    input_type: Optional[str] = Field(
        default=None,
        description="text, date, time, select or confirmation",
    )
    options: list[ChatOptionModel] = Field(default_factory=list)
    completed: bool = False
    escalate: bool = False
    data: Optional[dict[str, Any]] = None
    processing_time_ms: Optional[float] = None


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    detail: Optional[str] = None


@router.post(
    "",
    response_model=ChatReply,
    status_code=status.HTTP_200_OK,
    summary="Send a chat message",
    description="Send a message to the appointment assistant and get a response.",
    responses={
        200: {"description": "Successful response"},
        404: {"model": ErrorResponse, "description": "Unknown tenant"},
        503: {"model": ErrorResponse, "description": "Chat unavailable"},
    },
)
async def chat(
    request: ChatRequest,
    tenant_id: str = Depends(get_tenant_id),
    user: ChatUser = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> ChatReply:
    """
    Process a chat message.

    The session_id should be preserved across requests to maintain
    conversation context. A session that has completed or escalated only
    answers with a "start a new conversation" reply.
    """
    if services.orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Chat is not configured",
        )

    start = time.perf_counter()
    handle = await services.tenants.resolve(tenant_id)
    tenant = TenantInfo(
        id=handle.tenant_id,
        name=handle.name,
        timezone=handle.timezone,
        business_hours=handle.business_hours,
    )

    context = await services.sessions.get_or_create(tenant, user, request.session_id)
    response = await services.orchestrator.handle_message(request.message, context)
    await services.sessions.save(context)

    payload = response.to_dict()
    return ChatReply(
        session_id=context.session_id,
        state=context.state.value,
        intent=context.current_intent.value if context.current_intent else None,
        processing_time_ms=(time.perf_counter() - start) * 1000,
        **payload,
    )


@router.get(
    "/session/{session_id}",
    response_model=dict,
    summary="Get session data",
    description="Retrieve the current state of a conversation session.",
    responses={
        200: {"description": "Session data"},
        404: {"model": ErrorResponse, "description": "Session not found"},
    },
)
async def get_session(
    session_id: str,
    tenant_id: str = Depends(get_tenant_id),
    user: ChatUser = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict:
    """Get session information."""
    context = await services.sessions.get(tenant_id, session_id)

    if context is None or context.user.user_id != user.user_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )

    return {
        "session_id": context.session_id,
        "tenant_id": context.tenant.id,
        "state": context.state.value,
        "current_intent": context.current_intent.value if context.current_intent else None,
        "collected_slots": context.collected_slots.to_dict(),
        "confirmation_pending": context.confirmation_pending,
        "message_count": len(context.messages),
        "created_at": context.created_at.isoformat(),
        "updated_at": context.updated_at.isoformat(),
    }


@router.delete(
    "/session/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a session",
    description="Discard a conversation session.",
)
async def delete_session(
    session_id: str,
    tenant_id: str = Depends(get_tenant_id),
    user: ChatUser = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> None:
    """Delete a session."""
    context = await services.sessions.get(tenant_id, session_id)
    if context is None or context.user.user_id != user.user_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )

    deleted = await services.sessions.delete(tenant_id, session_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )
