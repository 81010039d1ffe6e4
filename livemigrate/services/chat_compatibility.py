"""Conversation and message reads across the legacy and modern shapes."""

import logging
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Sequence

from ..errors import InvalidArgumentError
from ..models.record import (
    Conversation,
    ConversationType,
    Message,
    ReadResult,
    ReadStatus,
)
from ..models.schema import Direction, OrderBy, where
from ..stores.base import DocumentStore
from .compatibility import CompatibilityService, FallbackQuery
from .normalizer import (
    build_message,
    conversation_placeholder,
    legacy_participant_ids,
    message_placeholder,
    normalize_conversation,
    parse_timestamp,
)
from .validator import RecordValidator

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _check_limit(limit: Any) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_PAGE_SIZE:
        raise InvalidArgumentError(f"Limit must be an integer between 1 and {MAX_PAGE_SIZE}")
    return limit


def _message_time(doc: Mapping[str, Any]) -> Optional[datetime]:
    value = doc.get("createdAt")
    if value is None:
        value = doc.get("timestamp")
    return parse_timestamp(value)


def _check_id(value: Any, what: str) -> str:
    if not isinstance(value, str) or not value:
        raise InvalidArgumentError(f"{what} must be a non-empty string")
    return value


class ChatCompatibilityService(CompatibilityService):
    """
    Reads conversations and their messages whatever their stored shape.

    Messages live in the ``<collection>/<conversation id>/messages``
    subcollection.
    """

    entity_name = "conversation"

    def __init__(
        self,
        store: DocumentStore,
        collection: str = "conversations",
        validator: Optional[RecordValidator] = None,
        merge_legacy: bool = True,
    ):
        super().__init__(store, collection, validator)
        self.merge_legacy = merge_legacy

    def normalize(self, raw: Mapping[str, Any]) -> Conversation:
        return normalize_conversation(raw)

    def placeholder(self, doc_id: str) -> Conversation:
        return conversation_placeholder(doc_id)

    def messages_collection(self, conversation_id: str) -> str:
        return f"{self.collection}/{conversation_id}/messages"

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def query_by_user(self, user_id: str, limit: int = 50) -> List[ReadResult]:
        """
        Conversations the user takes part in, most recently updated first.

        The legacy path scans the ``limit * 2`` most recent conversations and
        keeps those whose participant objects include the user.

        Raises:
            InvalidArgumentError: on an empty user id or a limit outside 1..100
        """
        _check_id(user_id, "User id")
        _check_limit(limit)
        newest_first = [OrderBy("updatedAt", Direction.DESC)]

        async def legacy_scan():
            docs = await self.store.query(self.collection, order_by=newest_first, limit=limit * 2)
            return [d for d in docs if user_id in legacy_participant_ids(d.get("participants"))]

        plan = FallbackQuery(
            name="conversations by user",
            primary=self.constraint_step(
                [[where("participantIds", "array-contains", user_id)]],
                order_by=newest_first,
                limit=limit,
            ),
            fallback=legacy_scan,
            merge=self.merge_legacy,
        )
        results = self.read_results(await plan.run())
        results.sort(key=lambda r: r.entity.updated_at or _EPOCH, reverse=True)
        return results[:limit]

    async def search_conversations(self, user_id: str, term: str) -> List[ReadResult]:
        """Case-insensitive match on title or participant name; blank term -> []."""
        _check_id(user_id, "User id")
        if not isinstance(term, str) or not term.strip():
            return []

        needle = term.strip().lower()
        matches = []
        for result in await self.query_by_user(user_id, limit=MAX_PAGE_SIZE):
            if result.degraded:
                continue
            conversation = result.entity
            names = [p.name for p in conversation.participants]
            haystack = [conversation.title or ""] + names
            if any(needle in text.lower() for text in haystack):
                matches.append(result)
        return matches

    async def get_direct_conversation(self, user_ids: Sequence[str]) -> ReadResult:
        """
        The direct conversation between exactly two users.

        Raises:
            InvalidArgumentError: unless given two distinct non-empty ids
        """
        if not isinstance(user_ids, (list, tuple)) or len(user_ids) != 2:
            raise InvalidArgumentError("Direct conversations need exactly two user ids")
        first, second = (_check_id(uid, "User id") for uid in user_ids)
        if first == second:
            raise InvalidArgumentError("Direct conversations need two distinct user ids")

        wanted = {first, second}
        for result in await self.query_by_user(first, limit=MAX_PAGE_SIZE):
            conversation = result.entity
            if (
                not result.degraded
                and conversation.type == ConversationType.DIRECT
                and set(conversation.participant_ids) == wanted
            ):
                return result
        return ReadResult(status=ReadStatus.NOT_FOUND, doc_id="")

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def message_result(self, raw: Mapping[str, Any], conversation_id: str) -> ReadResult:
        """Degrade-on-error read of one message document."""
        doc_id = str(raw.get("id", "")) if isinstance(raw, Mapping) else ""
        try:
            message = build_message(raw, conversation_id)
        except Exception as e:
            logger.warning(f"Degraded message {doc_id} in {conversation_id}: {e}")
            return ReadResult(
                status=ReadStatus.DEGRADED,
                doc_id=doc_id,
                entity=message_placeholder(doc_id, conversation_id),
                error=str(e),
            )
        return ReadResult(status=ReadStatus.FOUND, doc_id=doc_id, entity=message)

    async def get_messages(
        self,
        conversation_id: str,
        limit: int = 50,
        before_message_id: Optional[str] = None,
    ) -> List[ReadResult]:
        """
        The newest ``limit`` messages of a conversation, in chronological order.

        When the store cannot order messages by time, the subcollection is
        read unordered and sorted in memory.

        Args:
            conversation_id: Conversation to read
            limit: Page size, 1..100
            before_message_id: Only return messages older than this one

        Raises:
            InvalidArgumentError: on an empty conversation id or a bad limit
        """
        _check_id(conversation_id, "Conversation id")
        _check_limit(limit)
        collection = self.messages_collection(conversation_id)

        cursor = None
        if before_message_id is not None:
            _check_id(before_message_id, "Message id")
            anchor = await self.store.get(collection, before_message_id)
            if anchor is None:
                logger.warning(f"Message cursor {before_message_id} not found in {conversation_id}")
                return []
            cursor = anchor

        def step(time_field: str):
            async def run():
                start_after = cursor.get(time_field) if cursor is not None else None
                if cursor is not None and start_after is None:
                    return []
                return await self.store.query(
                    collection,
                    order_by=[OrderBy(time_field, Direction.DESC)],
                    limit=limit,
                    start_after=start_after,
                )
            return run

        async def unordered():
            docs = await self.store.query(collection)
            if cursor is None:
                return docs
            anchor_time = _message_time(cursor)
            if anchor_time is None:
                return []
            return [
                doc for doc in docs
                if doc.get("id") != cursor.get("id")
                and (_message_time(doc) or _EPOCH) < anchor_time
            ]

        plan = FallbackQuery(
            name="messages by conversation",
            primary=step("createdAt"),
            fallback=unordered,
            merge=self.merge_legacy,
            merge_step=step("timestamp"),
        )
        results = [self.message_result(doc, conversation_id) for doc in await plan.run()]
        results.sort(key=lambda r: r.entity.created_at or _EPOCH)
        return results[-limit:]

    def validate_message(self, message: Any) -> bool:
        """Whether a Message (or stored message) passes structural validation."""
        if message is None:
            return False
        return self.validator.is_valid(self.validator.validate_message(message))
