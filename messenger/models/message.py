"""
Message Models for Messenger Backend

A conversation's message log lives at ``conversation/{conversationId}`` as
``{"messages": [MessageRecord, ...]}``. ``Message`` is the typed view used by
the service layer; ``MessageRecord`` is the stored shape.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from messenger.utils.timestamps import format_timestamp, parse_timestamp, utc_now

logger = logging.getLogger(__name__)


class MessageKind(str, Enum):
    """Message kind enumeration (stored in the record's ``type`` field)"""

    TEXT = "text"
    ATTRIBUTED_TEXT = "attributedText"
    PHOTO = "photo"
    VIDEO = "video"
    LOCATION = "location"
    EMOJI = "emoji"
    AUDIO = "audio"
    CONTACT = "contact"
    LINK_PREVIEW = "linkPreview"
    CUSTOM = "custom"


TEXT_KINDS = {MessageKind.TEXT, MessageKind.ATTRIBUTED_TEXT, MessageKind.EMOJI}
MEDIA_KINDS = {MessageKind.PHOTO, MessageKind.VIDEO}


class Location(BaseModel):
    """A shared map coordinate"""

    longitude: float
    latitude: float

    def encode(self) -> str:
        # repr of a float round-trips exactly
        return f"{self.longitude!r},{self.latitude!r}"

    @classmethod
    def decode(cls, content: str) -> "Location":
        """
        Parse a "longitude,latitude" string.

        Raises:
            ValueError: If the string does not hold exactly two numbers
        """
        parts = content.split(",")
        if len(parts) != 2:
            raise ValueError(f"Malformed location payload: {content!r}")
        return cls(longitude=float(parts[0]), latitude=float(parts[1]))


class MessageRecord(BaseModel):
    """
    Stored message shape

    Path: conversation/{conversationId}/messages/{index}
    """

    id: str
    type: str
    content: str
    date: str
    sender_email: str
    is_read: bool = False
    name: str


class Message(BaseModel):
    """A single message in a conversation"""

    message_id: str = Field(..., min_length=1)
    kind: MessageKind = MessageKind.TEXT
    sender_email: str
    sender_name: str = ""
    sent_at: datetime = Field(default_factory=utc_now)
    text: Optional[str] = None
    media_url: Optional[str] = None
    location: Optional[Location] = None
    is_read: bool = False

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "message_id": "b-x-com_a-x-com_20240120T100000000000Z",
                "kind": "text",
                "sender_email": "a-x-com",
                "sender_name": "Alice Smith",
                "sent_at": "2024-01-20T10:00:00+00:00",
                "text": "hi",
                "is_read": False,
            }
        }
    )

    @field_validator("media_url")
    @classmethod
    def media_url_must_be_absolute(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not is_fetchable_url(value):
            raise ValueError(f"Not a fetchable URL: {value!r}")
        return value

    def render_content(self) -> str:
        """Render the payload stored in the record's ``content`` field"""
        if self.kind in TEXT_KINDS:
            return self.text or ""
        if self.kind in MEDIA_KINDS:
            return self.media_url or ""
        if self.kind == MessageKind.LOCATION:
            return self.location.encode() if self.location else ""
        # Kinds without payload semantics keep whatever text they carry
        return self.text or ""

    def to_record(self) -> Dict[str, Any]:
        return MessageRecord(
            id=self.message_id,
            type=self.kind.value,
            content=self.render_content(),
            date=format_timestamp(self.sent_at),
            sender_email=self.sender_email,
            is_read=self.is_read,
            name=self.sender_name,
        ).model_dump()

    @classmethod
    def from_record(cls, data: Any) -> Optional["Message"]:
        """
        Build a Message from a stored record.

        Returns None for records that cannot be parsed (missing field,
        unparseable date, malformed location, media content that is not a
        URL) so one corrupt entry never fails a whole read.
        """
        try:
            record = MessageRecord.model_validate(data)
            sent_at = parse_timestamp(record.date)
            try:
                kind = MessageKind(record.type)
            except ValueError:
                # Unknown kinds are shown as text
                kind = MessageKind.TEXT

            payload: Dict[str, Any] = {}
            if kind in MEDIA_KINDS:
                payload["media_url"] = record.content
            elif kind == MessageKind.LOCATION:
                payload["location"] = Location.decode(record.content)
            else:
                payload["text"] = record.content

            return cls(
                message_id=record.id,
                kind=kind,
                sender_email=record.sender_email,
                sender_name=record.name,
                sent_at=sent_at,
                is_read=record.is_read,
                **payload,
            )
        except (ValidationError, ValueError, TypeError) as e:
            logger.warning("Dropping unreadable message record: %s", e)
            return None


def is_fetchable_url(value: str) -> bool:
    parsed = urlparse(value)
    return bool(parsed.scheme and parsed.netloc)
