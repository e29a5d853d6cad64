"""
User Models for Messenger Backend

This module defines the user record and directory entry models that
represent user data stored in the Firebase Realtime Database.
"""

from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from messenger.models.conversation import ConversationSummary, SummaryIndex


class UserRecord(BaseModel):
    """
    Complete user record

    Path: user/{safeIdentity}
    """

    first_name: str = Field(..., description="User's first name")
    last_name: str = Field(default="", description="User's last name")
    conversations: List[ConversationSummary] = Field(
        default_factory=list, description="Embedded conversation summaries"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "first_name": "Alice",
                "last_name": "Smith",
                "conversations": [],
            }
        }
    )

    @field_validator("conversations", mode="before")
    @classmethod
    def tolerate_stored_conversations(cls, value: Any) -> Any:
        return SummaryIndex.from_stored(value).summaries()

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class DirectoryEntry(BaseModel):
    """
    One registered user in the flat user directory

    Path: directory/users/{index}
    """

    name: str
    email: str = Field(..., description="Safe identity of the user")

    def to_stored(self) -> Dict[str, str]:
        return self.model_dump()
