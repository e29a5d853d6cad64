"""
Conversation and message API endpoints
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from messenger.config import settings
from messenger.dependencies import CurrentUser, get_conversation_service, get_current_user
from messenger.errors import NotFound
from messenger.models.conversation import ConversationSummary
from messenger.schemas.conversation import (
    ConversationCreate,
    ConversationCreatedResponse,
    ConversationLookupResponse,
    MessageResponse,
    SendMessageRequest,
)
from messenger.services.conversation_service import ConversationService
from messenger.sse import EventType, snapshot_stream
from messenger.utils.identity import safe_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/conversations", tags=["conversations"])


@router.get("", response_model=List[ConversationSummary])
async def list_conversations(
    current_user: CurrentUser = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service),
):
    """Get all conversations of the current user"""
    try:
        return await conversations.list_conversations(current_user.identity)
    except NotFound:
        # No conversation list yet means zero conversations
        return []


@router.get("/stream")
async def stream_conversations(
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service),
):
    """Server-Sent Events: the current user's conversations on every change"""
    return StreamingResponse(
        snapshot_stream(
            conversations.watch_conversations(current_user.identity),
            request,
            EventType.CONVERSATIONS,
            serialize=lambda summary: summary.model_dump(),
            heartbeat_interval=settings.SSE_HEARTBEAT_SECONDS,
        ),
        media_type="text/event-stream",
    )


@router.post("", response_model=ConversationCreatedResponse)
async def create_conversation(
    payload: ConversationCreate,
    current_user: CurrentUser = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service),
):
    """
    Start a conversation with another user by sending a first message.

    When the two users already share a conversation, the message is sent
    into it instead of creating a duplicate.
    """
    recipient = safe_email(payload.recipient_email)
    if recipient == current_user.identity:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot start a conversation with yourself",
        )

    message = payload.message.to_message(
        sender_email=current_user.identity,
        sender_name=current_user.name or "",
        recipient_email=recipient,
    )

    existing_id = None
    # Look in both lists: a create that stopped early leaves only one of them
    for holder, counterpart in ((recipient, current_user.identity), (current_user.identity, recipient)):
        try:
            existing_id = await conversations.conversation_exists(counterpart, holder)
            break
        except NotFound:
            continue

    if existing_id is not None:
        sent = await conversations.continue_conversation(
            existing_id, current_user.identity, recipient, payload.recipient_name, message
        )
        if not sent:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Failed to send message",
            )
        return {"conversationId": existing_id, "created": False}

    try:
        conversation_id = await conversations.create_conversation(
            current_user.identity, recipient, payload.recipient_name, message
        )
    except NotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Register before starting conversations",
        )
    return {"conversationId": conversation_id, "created": True}


@router.get("/with/{email}", response_model=ConversationLookupResponse)
async def find_conversation(
    email: str,
    current_user: CurrentUser = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service),
):
    """Get the id of the conversation shared with another user"""
    try:
        conversation_id = await conversations.conversation_exists(current_user.identity, email)
    except NotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No conversation with this user")
    return {"conversationId": conversation_id}


async def require_participant(
    conversation_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service),
) -> ConversationSummary:
    """
    Dependency resolving the caller's own summary of a conversation

    Raises:
        HTTPException: 403 if the conversation is not in the caller's list
    """
    try:
        return await conversations.get_summary(current_user.identity, conversation_id)
    except NotFound:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to access this conversation",
        )


@router.get("/{conversation_id}/messages", response_model=List[MessageResponse])
async def list_messages(
    conversation_id: str,
    summary: ConversationSummary = Depends(require_participant),
    conversations: ConversationService = Depends(get_conversation_service),
):
    """Get message history for a conversation"""
    try:
        messages = await conversations.list_messages(conversation_id)
    except NotFound:
        # A conversation whose log was never written has no messages yet
        return []
    return [MessageResponse.from_message(message) for message in messages]


@router.get("/{conversation_id}/messages/stream")
async def stream_messages(
    conversation_id: str,
    request: Request,
    summary: ConversationSummary = Depends(require_participant),
    conversations: ConversationService = Depends(get_conversation_service),
):
    """Server-Sent Events: the conversation's messages on every change"""
    return StreamingResponse(
        snapshot_stream(
            conversations.watch_messages(conversation_id),
            request,
            EventType.MESSAGES,
            serialize=lambda message: MessageResponse.from_message(message).model_dump(
                by_alias=True, mode="json"
            ),
            heartbeat_interval=settings.SSE_HEARTBEAT_SECONDS,
        ),
        media_type="text/event-stream",
    )


@router.post("/{conversation_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_message(
    conversation_id: str,
    payload: SendMessageRequest,
    current_user: CurrentUser = Depends(get_current_user),
    summary: ConversationSummary = Depends(require_participant),
    conversations: ConversationService = Depends(get_conversation_service),
):
    """
    Send a message into an existing conversation

    The recipient is the other participant recorded in the caller's summary.
    """
    message = payload.message.to_message(
        sender_email=current_user.identity,
        sender_name=current_user.name or "",
        recipient_email=summary.other_user_email,
    )
    sent = await conversations.append_message(
        conversation_id,
        current_user.identity,
        summary.other_user_email,
        summary.name,
        message,
    )
    if not sent:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found or message not delivered",
        )
    return {"ok": True, "messageId": message.message_id}


@router.delete("/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    conversations: ConversationService = Depends(get_conversation_service),
):
    """Remove a conversation from the current user's list"""
    deleted = await conversations.delete_conversation(current_user.identity, conversation_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found or delete failed"
        )
    return {"ok": True}
