from messenger.models.user import UserRecord, DirectoryEntry
from messenger.models.conversation import ConversationSummary, LatestMessage, SummaryIndex
from messenger.models.message import Message, MessageKind, MessageRecord, Location

__all__ = [
    "UserRecord",
    "DirectoryEntry",
    "ConversationSummary",
    "LatestMessage",
    "SummaryIndex",
    "Message",
    "MessageKind",
    "MessageRecord",
    "Location",
]
