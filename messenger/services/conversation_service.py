"""
Conversation storage: per-user conversation summaries and per-conversation
message logs.

Layout in the document store:

    user/{safeIdentity}/conversations = [ConversationSummary, ...]
    conversation/{conversationId}     = {"messages": [MessageRecord, ...]}

Both participants hold their own summary of a conversation. Nothing here is
transactional across documents: creating a conversation is three separate
writes and appending a message is one log write followed by two summary
writes. Each individual write is an ETag-guarded read-modify-write, and
summaries that fall behind their log are repaired by
``reconcile_conversations``.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from messenger.config import settings
from messenger.errors import FetchFailed, NotFound, StoreError
from messenger.models.conversation import ConversationSummary, LatestMessage, SummaryIndex
from messenger.models.message import Message
from messenger.services.document_store import DocumentStore, Subscription
from messenger.utils.identity import safe_email
from messenger.utils.sparse import stored_list

logger = logging.getLogger(__name__)

USER_ROOT = "user"
CONVERSATION_ROOT = "conversation"


def user_path(identity: str) -> str:
    return f"{USER_ROOT}/{identity}"


def conversations_path(identity: str) -> str:
    return f"{USER_ROOT}/{identity}/conversations"


def conversation_path(conversation_id: str) -> str:
    return f"{CONVERSATION_ROOT}/{conversation_id}"


def messages_path(conversation_id: str) -> str:
    return f"{CONVERSATION_ROOT}/{conversation_id}/messages"


def conversation_id_for(first_message: Message) -> str:
    return f"conversation_{first_message.message_id}"


def _as_list(value: Any, path: str) -> List[Any]:
    try:
        return stored_list(value)
    except TypeError as e:
        raise FetchFailed(f"{path}: {e}") from e


def _load_index(value: Any, path: str) -> SummaryIndex:
    try:
        return SummaryIndex.from_stored(value)
    except TypeError as e:
        raise FetchFailed(f"{path}: {e}") from e


def _display_name(record: Any, identity: str) -> str:
    if not isinstance(record, dict):
        return identity
    return " ".join(
        part for part in (record.get("first_name"), record.get("last_name")) if part
    ) or identity


def _parse_messages(value: Any, path: str) -> List[Message]:
    messages = []
    for item in _as_list(value, path):
        message = Message.from_record(item)
        if message is not None:
            messages.append(message)
    return messages


class ConversationService:
    """Creates, updates, lists and deletes conversations for pairs of users"""

    def __init__(self, store: DocumentStore, reconcile_on_read: Optional[bool] = None):
        self.store = store
        self.reconcile_on_read = (
            settings.RECONCILE_ON_READ if reconcile_on_read is None else reconcile_on_read
        )

    # ============================================
    # SUMMARY HELPERS
    # ============================================

    async def _upsert_summary(self, identity: str, summary: ConversationSummary) -> None:
        path = conversations_path(identity)

        def upsert(current: Any) -> List[Dict[str, Any]]:
            index = _load_index(current, path)
            index.upsert(summary)
            return index.to_stored()

        await self.store.update(path, upsert)

    async def _refresh_latest(
        self,
        identity: str,
        conversation_id: str,
        latest: LatestMessage,
        fallback: ConversationSummary,
    ) -> None:
        """
        Point one participant's summary at ``latest``.

        A missing entry is rebuilt from ``fallback``; an entry already showing
        a newer message is left alone.
        """
        path = conversations_path(identity)

        def refresh(current: Any) -> List[Dict[str, Any]]:
            index = _load_index(current, path)
            existing = index.get(conversation_id)
            if existing is None:
                logger.info("Restoring missing summary of %s for %s", conversation_id, identity)
                index.upsert(fallback.model_copy(update={"latest_message": latest}))
            elif not latest.is_older_than(existing.latest_message):
                index.upsert(existing.model_copy(update={"latest_message": latest}))
            return index.to_stored()

        await self.store.update(path, refresh)

    # ============================================
    # WRITES
    # ============================================

    async def create_conversation(
        self,
        initiator_id: str,
        counterpart_id: str,
        counterpart_name: str,
        first_message: Message,
    ) -> str:
        """
        Create a conversation between two users with its first message.

        Args:
            initiator_id: Email or safe identity of the user starting it
            counterpart_id: Email or safe identity of the other user
            counterpart_name: Display name of the other user
            first_message: The message that opens the conversation

        Returns:
            The new conversation id ("conversation_" + first message id)

        Raises:
            NotFound: If the initiator has no user record
            WriteFailed / Conflict: If one of the three writes fails. Writes
                already made are not rolled back.
        """
        initiator = safe_email(initiator_id)
        counterpart = safe_email(counterpart_id)

        record = await self.store.get(user_path(initiator))
        if not isinstance(record, dict):
            raise NotFound(f"No user record for {initiator}")

        initiator_name = first_message.sender_name or _display_name(record, initiator)
        first_message = first_message.model_copy(
            update={"sender_email": initiator, "sender_name": initiator_name}
        )

        conversation_id = conversation_id_for(first_message)
        latest = LatestMessage.from_message(first_message)

        writes = [
            (
                f"summary of {initiator}",
                lambda: self._upsert_summary(initiator, ConversationSummary(
                    id=conversation_id,
                    other_user_email=counterpart,
                    name=counterpart_name,
                    latest_message=latest,
                )),
            ),
            (
                f"summary of {counterpart}",
                lambda: self._upsert_summary(counterpart, ConversationSummary(
                    id=conversation_id,
                    other_user_email=initiator,
                    name=initiator_name,
                    latest_message=latest,
                )),
            ),
            (
                "message log",
                lambda: self.store.set(
                    conversation_path(conversation_id),
                    {"messages": [first_message.to_record()]},
                ),
            ),
        ]

        for done, (label, write) in enumerate(writes):
            try:
                await write()
            except StoreError as e:
                logger.error(
                    "Creating %s failed at the %s (%d of %d writes done): %s",
                    conversation_id, label, done, len(writes), e,
                )
                raise

        logger.info("Created %s between %s and %s", conversation_id, initiator, counterpart)
        return conversation_id

    async def append_message(
        self,
        conversation_id: str,
        sender_id: str,
        counterpart_id: str,
        counterpart_name: str,
        message: Message,
    ) -> bool:
        """
        Append a message to an existing conversation and refresh both
        participants' latest-message previews.

        Returns:
            True when the log and both summaries were written. False when the
            conversation does not exist (nothing is written) or a write
            failed; a failure after the log write leaves summaries behind
            until the next reconciliation.
        """
        return await self._append(
            conversation_id, sender_id, counterpart_id, counterpart_name, message,
            seed_missing_log=False,
        )

    async def continue_conversation(
        self,
        conversation_id: str,
        sender_id: str,
        counterpart_id: str,
        counterpart_name: str,
        message: Message,
    ) -> bool:
        """
        Send a message into a conversation the two users already share.

        Unlike ``append_message``, a conversation whose summaries exist but
        whose message log was never written (a create that failed at its
        last write) gets its log started with this message.
        """
        return await self._append(
            conversation_id, sender_id, counterpart_id, counterpart_name, message,
            seed_missing_log=True,
        )

    async def _append(
        self,
        conversation_id: str,
        sender_id: str,
        counterpart_id: str,
        counterpart_name: str,
        message: Message,
        seed_missing_log: bool,
    ) -> bool:
        sender = safe_email(sender_id)
        counterpart = safe_email(counterpart_id)
        path = messages_path(conversation_id)

        def append(current: Any) -> List[Any]:
            if current is None:
                if not seed_missing_log:
                    raise NotFound(f"Conversation {conversation_id} does not exist")
                logger.info("Starting missing message log of %s", conversation_id)
                return [record]
            messages = _as_list(current, path)
            # A retried write may already have landed
            if any(isinstance(item, dict) and item.get("id") == record["id"] for item in messages):
                return messages
            messages.append(record)
            return messages

        try:
            if not message.sender_name:
                sender_record = await self.store.get(user_path(sender))
                message = message.model_copy(
                    update={"sender_name": _display_name(sender_record, sender)}
                )
            message = message.model_copy(update={"sender_email": sender})
            record = message.to_record()
            await self.store.update(path, append)
        except StoreError as e:
            logger.warning("Could not append to %s: %s", conversation_id, e)
            return False

        latest = LatestMessage.from_message(message)
        results = await asyncio.gather(
            self._refresh_latest(sender, conversation_id, latest, ConversationSummary(
                id=conversation_id,
                other_user_email=counterpart,
                name=counterpart_name,
                latest_message=latest,
            )),
            self._refresh_latest(counterpart, conversation_id, latest, ConversationSummary(
                id=conversation_id,
                other_user_email=sender,
                name=message.sender_name,
                latest_message=latest,
            )),
            return_exceptions=True,
        )

        failed = False
        for identity, result in zip((sender, counterpart), results):
            if isinstance(result, StoreError):
                logger.error(
                    "Message %s stored in %s but summary of %s not updated: %s",
                    message.message_id, conversation_id, identity, result,
                )
                failed = True
            elif isinstance(result, BaseException):
                raise result
        return not failed

    async def delete_conversation(self, user_id: str, conversation_id: str) -> bool:
        """
        Remove a conversation from one user's list.

        Only the exact matching entry is removed; the other participant's
        summary and the message log are untouched.

        Returns:
            False when the user has no such conversation (nothing written)
        """
        identity = safe_email(user_id)
        path = conversations_path(identity)

        def remove(current: Any) -> List[Dict[str, Any]]:
            if current is None:
                raise NotFound(f"{identity} has no conversations")
            index = _load_index(current, path)
            if not index.remove(conversation_id):
                raise NotFound(f"{identity} has no conversation {conversation_id}")
            return index.to_stored()

        try:
            await self.store.update(path, remove)
        except StoreError as e:
            logger.warning("Could not delete %s for %s: %s", conversation_id, identity, e)
            return False

        logger.info("Deleted %s from %s", conversation_id, identity)
        return True

    # ============================================
    # READS
    # ============================================

    async def list_conversations(
        self, user_id: str, reconcile: Optional[bool] = None
    ) -> List[ConversationSummary]:
        """
        Get a user's conversation summaries in stored order.

        Raises:
            NotFound: If the user has no conversation list (zero conversations)
            FetchFailed: If the stored value has the wrong shape
        """
        identity = safe_email(user_id)
        path = conversations_path(identity)
        value = await self.store.get(path)
        if value is None:
            raise NotFound(f"{identity} has no conversations")
        index = _load_index(value, path)

        if self.reconcile_on_read if reconcile is None else reconcile:
            try:
                await self._reconcile(identity, index)
            except StoreError as e:
                logger.warning("Reconciling conversations of %s failed: %s", identity, e)

        return index.summaries()

    async def list_messages(self, conversation_id: str) -> List[Message]:
        """
        Get the messages of a conversation in insertion order.

        Unreadable entries are skipped rather than failing the read.

        Raises:
            NotFound: If the conversation has no message log
        """
        path = messages_path(conversation_id)
        value = await self.store.get(path)
        if value is None:
            raise NotFound(f"Conversation {conversation_id} has no messages")
        return _parse_messages(value, path)

    async def get_summary(self, user_id: str, conversation_id: str) -> ConversationSummary:
        """
        Get one conversation from a user's own list.

        Raises:
            NotFound: If the conversation is not in the user's list
        """
        identity = safe_email(user_id)
        path = conversations_path(identity)
        summary = _load_index(await self.store.get(path), path).get(conversation_id)
        if summary is None:
            raise NotFound(f"{identity} has no conversation {conversation_id}")
        return summary

    async def conversation_exists(self, current_user_id: str, target_user_id: str) -> str:
        """
        Find the conversation the target user already has with the current user.

        Returns:
            The conversation id

        Raises:
            NotFound: If the target has no conversation with the current user
        """
        current = safe_email(current_user_id)
        target = safe_email(target_user_id)
        path = conversations_path(target)
        value = await self.store.get(path)
        if value is None:
            raise NotFound(f"{target} has no conversations")

        summary = _load_index(value, path).find_by_counterpart(current)
        if summary is None:
            raise NotFound(f"No conversation between {current} and {target}")
        return summary.id

    # ============================================
    # SUBSCRIPTIONS
    # ============================================

    def _summaries_or_empty(self, path: str) -> Callable[[Any], List[ConversationSummary]]:
        def transform(value: Any) -> List[ConversationSummary]:
            try:
                return _load_index(value, path).summaries()
            except FetchFailed as e:
                logger.warning("Ignoring unreadable conversation list: %s", e)
                return []
        return transform

    def _messages_or_empty(self, path: str) -> Callable[[Any], List[Message]]:
        def transform(value: Any) -> List[Message]:
            if value is None:
                return []
            try:
                return _parse_messages(value, path)
            except FetchFailed as e:
                logger.warning("Ignoring unreadable message log: %s", e)
                return []
        return transform

    def subscribe_conversations(
        self, user_id: str, callback: Callable[[List[ConversationSummary]], None]
    ) -> Subscription:
        """Deliver the user's summaries now and on every change until closed"""
        path = conversations_path(safe_email(user_id))
        transform = self._summaries_or_empty(path)
        return self.store.listen(path, lambda value: callback(transform(value)))

    def subscribe_messages(
        self, conversation_id: str, callback: Callable[[List[Message]], None]
    ) -> Subscription:
        """Deliver the conversation's messages now and on every change until closed"""
        path = messages_path(conversation_id)
        transform = self._messages_or_empty(path)
        return self.store.listen(path, lambda value: callback(transform(value)))

    def watch_conversations(self, user_id: str) -> AsyncIterator[List[ConversationSummary]]:
        path = conversations_path(safe_email(user_id))
        return self.store.watch(path, self._summaries_or_empty(path))

    def watch_messages(self, conversation_id: str) -> AsyncIterator[List[Message]]:
        path = messages_path(conversation_id)
        return self.store.watch(path, self._messages_or_empty(path))

    # ============================================
    # RECONCILIATION
    # ============================================

    async def _inspect_log(self, conversation_id: str) -> Tuple[bool, Optional[LatestMessage]]:
        """Whether the message log exists, and its last readable message"""
        path = messages_path(conversation_id)
        value = await self.store.get(path)
        if value is None:
            return False, None
        messages = _parse_messages(value, path)
        if not messages:
            return True, None
        return True, LatestMessage.from_message(messages[-1])

    async def _find_repairs(
        self, index: SummaryIndex
    ) -> Tuple[Dict[str, LatestMessage], List[ConversationSummary]]:
        """
        Summaries whose preview lags behind their log, and summaries whose log
        was never written (a create that stopped before its last write).
        """
        summaries = index.summaries()
        logs = await asyncio.gather(*(self._inspect_log(summary.id) for summary in summaries))
        repairs = {}
        unfinished = []
        for summary, (exists, latest) in zip(summaries, logs):
            if not exists:
                unfinished.append(summary)
            elif latest is not None and summary.latest_message.is_older_than(latest):
                repairs[summary.id] = latest
        return repairs, unfinished

    async def _apply_repairs(self, identity: str, repairs: Dict[str, LatestMessage]) -> None:
        path = conversations_path(identity)

        def apply(current: Any) -> List[Dict[str, Any]]:
            index = _load_index(current, path)
            for conversation_id, latest in repairs.items():
                summary = index.get(conversation_id)
                if summary is not None and summary.latest_message.is_older_than(latest):
                    index.upsert(summary.model_copy(update={"latest_message": latest}))
            return index.to_stored()

        await self.store.update(path, apply)
        logger.info("Repaired %d conversation summaries of %s", len(repairs), identity)

    async def _restore_counterparts(
        self, identity: str, unfinished: List[ConversationSummary]
    ) -> int:
        """Give the other participant of each unfinished conversation its summary back"""
        restored = 0
        name = None
        for summary in unfinished:
            counterpart = summary.other_user_email
            path = conversations_path(counterpart)
            if summary.id in _load_index(await self.store.get(path), path):
                continue
            if name is None:
                name = _display_name(await self.store.get(user_path(identity)), identity)
            mirrored = ConversationSummary(
                id=summary.id,
                other_user_email=identity,
                name=name,
                latest_message=summary.latest_message,
            )
            await self._upsert_summary(counterpart, mirrored)
            logger.info("Restored summary of %s for %s", summary.id, counterpart)
            restored += 1
        return restored

    async def _reconcile(self, identity: str, index: SummaryIndex) -> int:
        """Repair ``index`` in the store and in place; returns the repair count"""
        repairs, unfinished = await self._find_repairs(index)
        if repairs:
            await self._apply_repairs(identity, repairs)
            for conversation_id, latest in repairs.items():
                summary = index.get(conversation_id)
                if summary is not None:
                    index.upsert(summary.model_copy(update={"latest_message": latest}))
        return len(repairs) + await self._restore_counterparts(identity, unfinished)

    async def reconcile_conversations(self, user_id: str) -> int:
        """
        Bring a user's conversations back in step with the message logs.

        Lagging latest-message previews are updated, and conversations whose
        log was never written get the other participant's summary restored.
        The log itself is started by the next message sent into it (see
        ``continue_conversation``).

        Returns:
            Number of summaries repaired
        """
        identity = safe_email(user_id)
        path = conversations_path(identity)
        value = await self.store.get(path)
        if value is None:
            return 0
        return await self._reconcile(identity, _load_index(value, path))
