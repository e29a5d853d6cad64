"""
Conversation request/response schemas
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from messenger.models.message import Location, Message, MessageKind, MEDIA_KINDS
from messenger.utils.identity import create_message_id
from messenger.utils.timestamps import format_timestamp, utc_now


class MessageCreate(BaseModel):
    """Schema for a message sent by the current user"""

    message_id: Optional[str] = Field(
        None, alias="messageId", description="Generated when omitted"
    )
    kind: MessageKind = MessageKind.TEXT
    text: Optional[str] = None
    media_url: Optional[str] = Field(None, alias="mediaUrl")
    location: Optional[Location] = None
    sent_at: Optional[datetime] = Field(None, alias="sentAt")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "kind": "location",
                "location": {"longitude": -122.0312, "latitude": 37.3318},
            }
        },
    )

    @model_validator(mode="after")
    def payload_matches_kind(self):
        if self.kind in MEDIA_KINDS and not self.media_url:
            raise ValueError(f"{self.kind.value} messages need a mediaUrl")
        if self.kind == MessageKind.LOCATION and self.location is None:
            raise ValueError("location messages need a location")
        return self

    def to_message(self, sender_email: str, sender_name: str, recipient_email: str) -> Message:
        sent_at = self.sent_at or utc_now()
        return Message(
            message_id=self.message_id or create_message_id(recipient_email, sender_email, sent_at),
            kind=self.kind,
            sender_email=sender_email,
            sender_name=sender_name,
            sent_at=sent_at,
            text=self.text,
            media_url=self.media_url,
            location=self.location,
        )


class ConversationCreate(BaseModel):
    """Schema for starting (or continuing) a conversation with another user"""

    recipient_email: EmailStr = Field(..., alias="recipientEmail")
    recipient_name: str = Field(..., min_length=1, alias="recipientName")
    message: MessageCreate

    model_config = ConfigDict(populate_by_name=True)


class ConversationCreatedResponse(BaseModel):
    conversation_id: str = Field(..., alias="conversationId")
    created: bool = Field(..., description="False when an existing conversation was reused")

    model_config = ConfigDict(populate_by_name=True)


class SendMessageRequest(BaseModel):
    """Schema for sending a message into an existing conversation"""

    message: MessageCreate


class ConversationLookupResponse(BaseModel):
    conversation_id: str = Field(..., alias="conversationId")

    model_config = ConfigDict(populate_by_name=True)


class MessageResponse(BaseModel):
    """A message as returned to clients"""

    message_id: str = Field(..., alias="messageId")
    kind: MessageKind
    content: str
    location: Optional[Location] = None
    sender_email: str = Field(..., alias="senderEmail")
    sender_name: str = Field(..., alias="senderName")
    sent_at: str = Field(..., alias="sentAt")
    is_read: bool = Field(False, alias="isRead")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_message(cls, message: Message) -> "MessageResponse":
        return cls(
            message_id=message.message_id,
            kind=message.kind,
            content=message.render_content(),
            location=message.location,
            sender_email=message.sender_email,
            sender_name=message.sender_name,
            sent_at=format_timestamp(message.sent_at),
            is_read=message.is_read,
        )
