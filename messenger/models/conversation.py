"""
Conversation summary models

Each participant embeds its own summary of a conversation in
``user/{safeIdentity}/conversations``. The two copies point at each other
through ``other_user_email`` and are kept in step by the conversation
service.
"""

import logging
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from messenger.models.message import Message
from messenger.utils.sparse import stored_list
from messenger.utils.timestamps import format_timestamp, try_parse_timestamp

logger = logging.getLogger(__name__)


class LatestMessage(BaseModel):
    """Preview of the most recent message in a conversation"""

    date: str
    message: str
    is_read: bool = False

    @classmethod
    def from_message(cls, message: Message) -> "LatestMessage":
        return cls(
            date=format_timestamp(message.sent_at),
            message=message.render_content(),
            is_read=False,
        )

    @property
    def sent_at(self) -> Optional[datetime]:
        return try_parse_timestamp(self.date)

    def is_older_than(self, other: "LatestMessage") -> bool:
        """True when ``other`` was sent later; unparseable dates count as oldest"""
        mine, theirs = self.sent_at, other.sent_at
        if theirs is None:
            return False
        if mine is None:
            return True
        return mine < theirs


class ConversationSummary(BaseModel):
    """
    A user's pointer to a conversation plus its latest-message preview

    Path: user/{safeIdentity}/conversations/{index}
    """

    id: str
    other_user_email: str
    name: str
    latest_message: LatestMessage


class SummaryIndex:
    """
    Ordered mapping of conversation id -> summary for one user.

    Loaded from and written back to the stored list shape. Duplicated ids
    keep their first occurrence, and malformed entries are dropped.
    """

    def __init__(self, summaries: Optional[List[ConversationSummary]] = None):
        self._entries: "OrderedDict[str, ConversationSummary]" = OrderedDict()
        for summary in summaries or []:
            self._entries.setdefault(summary.id, summary)

    @classmethod
    def from_stored(cls, value: Any) -> "SummaryIndex":
        summaries = []
        for item in stored_list(value):
            try:
                summaries.append(ConversationSummary.model_validate(item))
            except ValidationError as e:
                logger.warning("Dropping unreadable conversation summary: %s", e)
        return cls(summaries)

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, conversation_id: str) -> Optional[ConversationSummary]:
        return self._entries.get(conversation_id)

    def upsert(self, summary: ConversationSummary) -> None:
        """Replace an entry in place, or append it when new"""
        self._entries[summary.id] = summary

    def remove(self, conversation_id: str) -> bool:
        return self._entries.pop(conversation_id, None) is not None

    def find_by_counterpart(self, other_user_email: str) -> Optional[ConversationSummary]:
        for summary in self._entries.values():
            if summary.other_user_email == other_user_email:
                return summary
        return None

    def summaries(self) -> List[ConversationSummary]:
        return list(self._entries.values())

    def to_stored(self) -> List[Dict[str, Any]]:
        return [summary.model_dump() for summary in self._entries.values()]
