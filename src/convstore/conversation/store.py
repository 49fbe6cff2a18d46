"""Conversation log store on top of a KeyValueStore.

A conversation lives in one partition: a metadata record under the
metadata sort key plus one record per message under a zero-padded
sequence sort key, so a prefix query returns messages in order.

Appends are not safe against concurrent writers on the same
conversation. Two writers can read the same MessageCount and assign the
same sequence numbers; the later transaction then overwrites the earlier
messages. Callers must serialize writes per conversation.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Sequence

from ..config import StoreConfig
from ..dynamo import record
from ..dynamo.client import KeyValueStore
from ..dynamo.errors import is_conditional_failure
from ..dynamo.expressions import Condition, ExpressionSession
from ..dynamo.requests import (
    GetItemRequest,
    PutItemRequest,
    QueryRequest,
    ReturnValues,
    TransactDelete,
    TransactPut,
    TransactUpdate,
    TransactWriteRequest,
    UpdateItemRequest,
)
from ..dynamo.update import UpdateClauseSet
from ..dynamo.values import AttributeValue, Item
from ..errors import (
    ConversationErrorCodes,
    ConversationStoreError,
    StoreError,
    StoreResult,
    conversation_not_found,
)
from ..logging import JSONLLogger
from .content import deserialize_blocks, serialize_blocks
from .models import (
    ContentBlock,
    Conversation,
    ConversationMessage,
    ConversationMetadata,
    ConversationPage,
    DeleteSummary,
    MessageInput,
    Role,
    TokenUsage,
)
from .pagination import decode_cursor, encode_cursor

logger = logging.getLogger(__name__)

# Record attributes
ID = "Id"
CONVERSATION_ID = "ConversationId"
CREATED_AT = "CreatedAt"
UPDATED_AT = "UpdatedAt"
MESSAGE_COUNT = "MessageCount"
TITLE = "Title"
TAGS = "Tags"
MODEL_ID = "ModelId"
CUSTOM_DATA = "CustomData"
TOTAL_INPUT_TOKENS = "TotalInputTokens"
TOTAL_OUTPUT_TOKENS = "TotalOutputTokens"
TOTAL_TOKENS = "TotalTokens"
SEQUENCE_NUMBER = "SequenceNumber"
ROLE = "Role"
CONTENT = "Content"
INPUT_TOKENS = "InputTokens"
OUTPUT_TOKENS = "OutputTokens"
TOKENS = "Tokens"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _epoch(moment: datetime) -> AttributeValue:
    return AttributeValue.number(int(moment.timestamp()))


def _validation(code: str, description: str, **details) -> StoreResult:
    return StoreResult.failure(StoreError.validation(code, description, **details))


class ConversationStore:
    """Persists conversations and their ordered message logs.

    Every operation returns a StoreResult. Expected failures (missing
    conversation, invalid cursor, store errors) are carried as errors,
    never raised.
    """

    def __init__(
        self,
        client: KeyValueStore,
        config: StoreConfig | None = None,
        event_logger: JSONLLogger | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.client = client
        self.config = config or StoreConfig()
        self.event_logger = event_logger
        self._clock = clock or _utcnow
        self._new_id = id_factory or (lambda: uuid.uuid4().hex)

    # Keys and time

    def _now(self) -> datetime:
        return self._clock().astimezone(timezone.utc).replace(microsecond=0)

    def _metadata_key(self, conversation_id: str) -> Item:
        cfg = self.config
        return {
            cfg.partition_key_name: AttributeValue.string(cfg.partition_key(conversation_id)),
            cfg.sort_key_name: AttributeValue.string(cfg.metadata_sort_key),
        }

    def _message_key(self, conversation_id: str, sequence_number: int) -> Item:
        cfg = self.config
        return {
            cfg.partition_key_name: AttributeValue.string(cfg.partition_key(conversation_id)),
            cfg.sort_key_name: AttributeValue.string(cfg.message_sort_key(sequence_number)),
        }

    def _record_event(
        self,
        event: str,
        conversation_id: str | None,
        started: float,
        result: StoreResult,
        items: int | None = None,
    ) -> None:
        if self.event_logger is None:
            return
        self.event_logger.log_operation(
            event,
            conversation_id,
            result.ok,
            duration_ms=(time.monotonic() - started) * 1000,
            items=items,
            error=result.error.code if result.error else None,
        )

    # Conversations

    async def create_conversation(
        self, metadata: ConversationMetadata | None = None
    ) -> StoreResult[Conversation]:
        """Create an empty conversation with a fresh id."""
        started = time.monotonic()
        cfg = self.config
        now = self._now()
        conversation_id = self._new_id()
        expires_at = now + cfg.default_ttl if cfg.default_ttl else None

        item = self._metadata_key(conversation_id)
        item.update(
            {
                ID: AttributeValue.string(conversation_id),
                CREATED_AT: _epoch(now),
                UPDATED_AT: _epoch(now),
                MESSAGE_COUNT: AttributeValue.number(0),
            }
        )
        if metadata is not None:
            item.update(_metadata_attributes(metadata))
        if expires_at is not None:
            item[cfg.ttl_attribute_name] = _epoch(expires_at)

        put = await self.client.put_item(
            PutItemRequest.guarded(
                cfg.table_name, item, Condition.attribute_not_exists(cfg.partition_key_name)
            )
        )
        if put.is_error:
            if is_conditional_failure(put.error):
                error = StoreError.conflict(
                    ConversationErrorCodes.ALREADY_EXISTS,
                    f"Conversation with id '{conversation_id}' already exists",
                    conversation_id=conversation_id,
                )
            else:
                error = put.error
            result: StoreResult[Conversation] = StoreResult.failure(error)
        else:
            logger.info("Created conversation %s", conversation_id)
            result = StoreResult.success(
                Conversation(
                    id=conversation_id,
                    created_at=now,
                    updated_at=now,
                    message_count=0,
                    metadata=metadata if metadata is not None and not metadata.is_empty else None,
                    expires_at=expires_at,
                )
            )

        self._record_event("conversation_create", conversation_id, started, result)
        return result

    async def get_conversation(self, conversation_id: str) -> StoreResult[Conversation]:
        cfg = self.config
        read = await self.client.get_item(
            GetItemRequest(cfg.table_name, self._metadata_key(conversation_id), consistent_read=True)
        )
        if read.is_error:
            return StoreResult.failure(read.error)
        if read.value is None:
            return StoreResult.failure(conversation_not_found(conversation_id))
        return self._conversation_from_item(read.value)

    async def update_conversation(
        self, conversation_id: str, metadata: ConversationMetadata
    ) -> StoreResult[Conversation]:
        """Overwrite the supplied metadata fields and bump UpdatedAt.

        Empty tags or custom_data leave the stored values untouched.
        """
        started = time.monotonic()
        cfg = self.config
        update = UpdateClauseSet().set(UPDATED_AT, _epoch(self._now()))
        for name, value in _metadata_attributes(metadata).items():
            update.set(name, value)
        update.where(update.session.attribute_exists(cfg.partition_key_name))

        written = await self.client.update_item(
            UpdateItemRequest.from_clauses(
                cfg.table_name,
                self._metadata_key(conversation_id),
                update,
                return_values=ReturnValues.ALL_NEW,
            )
        )
        if written.is_error:
            if is_conditional_failure(written.error):
                result: StoreResult[Conversation] = StoreResult.failure(
                    conversation_not_found(conversation_id)
                )
            else:
                result = StoreResult.failure(written.error)
        elif written.value is None:
            result = StoreResult.failure(conversation_not_found(conversation_id))
        else:
            result = self._conversation_from_item(written.value)

        self._record_event("conversation_update", conversation_id, started, result)
        return result

    async def delete_conversation(self, conversation_id: str) -> StoreResult[DeleteSummary]:
        """Delete the conversation and all its messages.

        Items are removed in batches, messages first and the metadata
        record last. A failure after the first batch reports a partial
        delete; running the delete again finishes the job.
        """
        started = time.monotonic()
        result = await self._delete_conversation(conversation_id)
        items = result.value.items_deleted if result.ok else result.error.details.get("deleted")
        self._record_event("conversation_delete", conversation_id, started, result, items=items)
        return result

    async def _delete_conversation(self, conversation_id: str) -> StoreResult[DeleteSummary]:
        cfg = self.config
        keys = await self._collect_keys(conversation_id)
        if keys.is_error:
            return StoreResult.failure(keys.error)
        if not keys.value:
            return StoreResult.failure(conversation_not_found(conversation_id))

        # Metadata last, so the conversation stays visible until its messages are gone.
        metadata_sk = AttributeValue.string(cfg.metadata_sort_key)
        ordered = sorted(keys.value, key=lambda k: k[cfg.sort_key_name] == metadata_sk)

        batch_size = min(cfg.delete_batch_size, self.client.max_transaction_items)
        deleted = 0
        batches = 0
        try:
            for offset in range(0, len(ordered), batch_size):
                batch = ordered[offset : offset + batch_size]
                written = await self.client.transact_write(
                    TransactWriteRequest([TransactDelete(cfg.table_name, key) for key in batch])
                )
                if written.is_error:
                    if batches == 0:
                        return StoreResult.failure(written.error)
                    remaining = len(ordered) - deleted
                    logger.warning(
                        "Partial delete of conversation %s: %d deleted, %d remaining (%s)",
                        conversation_id,
                        deleted,
                        remaining,
                        written.error.code,
                    )
                    return StoreResult.failure(
                        StoreError.failure(
                            ConversationErrorCodes.PARTIAL_DELETE,
                            f"Deleted {deleted} of {len(ordered)} items of conversation "
                            f"'{conversation_id}' before failing: {written.error.description}",
                            conversation_id=conversation_id,
                            deleted=deleted,
                            remaining=remaining,
                            cause=written.error.code,
                        )
                    )
                deleted += len(batch)
                batches += 1
        except asyncio.CancelledError:
            logger.warning(
                "Delete of conversation %s cancelled after %d of %d items",
                conversation_id,
                deleted,
                len(ordered),
            )
            raise

        logger.info("Deleted conversation %s (%d items, %d batches)", conversation_id, deleted, batches)
        return StoreResult.success(DeleteSummary(conversation_id, deleted, batches))

    async def _collect_keys(self, conversation_id: str) -> StoreResult[list[Item]]:
        cfg = self.config
        session = ExpressionSession()
        condition = session.equals(cfg.partition_key_name, cfg.partition_key(conversation_id))
        keys: list[Item] = []
        start_key: Item | None = None
        while True:
            page = await self.client.query(
                QueryRequest.from_condition(cfg.table_name, condition, exclusive_start_key=start_key)
            )
            if page.is_error:
                return StoreResult.failure(page.error)
            for item in page.value.items:
                keys.append(
                    {
                        cfg.partition_key_name: item[cfg.partition_key_name],
                        cfg.sort_key_name: item[cfg.sort_key_name],
                    }
                )
            if not page.value.has_more:
                return StoreResult.success(keys)
            start_key = page.value.last_evaluated_key

    # Messages

    async def add_message(
        self,
        conversation_id: str,
        role: Role,
        content: list[ContentBlock],
        token_usage: TokenUsage | None = None,
    ) -> StoreResult[ConversationMessage]:
        added = await self.add_messages(conversation_id, [MessageInput(role, content, token_usage)])
        if added.is_error:
            return StoreResult.failure(added.error)
        return StoreResult.success(added.value[0])

    async def add_messages(
        self, conversation_id: str, messages: Sequence[MessageInput]
    ) -> StoreResult[list[ConversationMessage]]:
        """Append messages atomically.

        The messages get sequence numbers N+1..N+k, where N is the stored
        message count, and the count, UpdatedAt and token totals are updated
        in the same transaction.
        """
        started = time.monotonic()
        result = await self._add_messages(conversation_id, messages)
        self._record_event(
            "messages_append", conversation_id, started, result, items=len(messages)
        )
        return result

    async def _add_messages(
        self, conversation_id: str, messages: Sequence[MessageInput]
    ) -> StoreResult[list[ConversationMessage]]:
        cfg = self.config
        if not messages:
            return _validation(ConversationErrorCodes.MESSAGES_EMPTY, "At least one message is required")
        limit = self.client.max_transaction_items
        if len(messages) + 1 > limit:
            return _validation(
                ConversationErrorCodes.TOO_MANY_MESSAGES,
                f"Cannot append {len(messages)} messages in one call, at most {limit - 1} are allowed",
                count=len(messages),
                limit=limit - 1,
            )

        conversation = await self.get_conversation(conversation_id)
        if conversation.is_error:
            return StoreResult.failure(conversation.error)

        now = self._now()
        expires_at = conversation.value.expires_at
        if expires_at is None and cfg.default_ttl:
            expires_at = now + cfg.default_ttl

        first = conversation.value.message_count + 1
        last = first + len(messages) - 1
        if last > cfg.max_sequence_number:
            return _validation(
                ConversationErrorCodes.SEQUENCE_EXHAUSTED,
                f"Conversation {conversation_id} cannot hold more than {cfg.max_sequence_number} messages",
                message_count=first - 1,
                limit=cfg.max_sequence_number,
            )

        members: list = []
        created: list[ConversationMessage] = []
        totals: TokenUsage | None = None

        for offset, message in enumerate(messages):
            content = serialize_blocks(message.content)
            if content.is_error:
                return StoreResult.failure(content.error)

            sequence_number = first + offset
            message_id = self._new_id()
            item = self._message_key(conversation_id, sequence_number)
            item.update(
                {
                    ID: AttributeValue.string(message_id),
                    CONVERSATION_ID: AttributeValue.string(conversation_id),
                    SEQUENCE_NUMBER: AttributeValue.number(sequence_number),
                    ROLE: AttributeValue.string(message.role.value),
                    CREATED_AT: _epoch(now),
                    CONTENT: content.value,
                }
            )
            usage = message.token_usage
            if usage is not None:
                item[INPUT_TOKENS] = AttributeValue.number(usage.input_tokens)
                item[OUTPUT_TOKENS] = AttributeValue.number(usage.output_tokens)
                item[TOKENS] = AttributeValue.number(usage.total_tokens)
                totals = usage if totals is None else totals + usage
            if expires_at is not None:
                item[cfg.ttl_attribute_name] = _epoch(expires_at)

            members.append(TransactPut(cfg.table_name, item))
            created.append(
                ConversationMessage(
                    id=message_id,
                    conversation_id=conversation_id,
                    sequence_number=sequence_number,
                    role=message.role,
                    content=list(message.content),
                    created_at=now,
                    token_usage=usage,
                )
            )

        update = UpdateClauseSet().increment(MESSAGE_COUNT, len(messages)).set(UPDATED_AT, _epoch(now))
        if totals is not None:
            update.accumulate(TOTAL_INPUT_TOKENS, totals.input_tokens)
            update.accumulate(TOTAL_OUTPUT_TOKENS, totals.output_tokens)
            update.accumulate(TOTAL_TOKENS, totals.total_tokens)
        update.where(update.session.attribute_exists(cfg.partition_key_name))
        members.append(
            TransactUpdate.from_clauses(cfg.table_name, self._metadata_key(conversation_id), update)
        )

        written = await self.client.transact_write(TransactWriteRequest(members))
        if written.is_error:
            if is_conditional_failure(written.error):
                # Deleted between the read and the transaction.
                return StoreResult.failure(conversation_not_found(conversation_id))
            return StoreResult.failure(written.error)

        logger.debug(
            "Appended messages %d..%d to conversation %s",
            first,
            last,
            conversation_id,
        )
        return StoreResult.success(created)

    async def get_conversation_with_messages(
        self,
        conversation_id: str,
        limit: int | None = None,
        pagination_token: str | None = None,
    ) -> StoreResult[ConversationPage]:
        """Read the conversation and one page of messages in ascending order."""
        started = time.monotonic()
        result = await self._read_page(conversation_id, limit, pagination_token)
        items = len(result.value.messages) if result.ok else None
        self._record_event("messages_read", conversation_id, started, result, items=items)
        return result

    async def _read_page(
        self, conversation_id: str, limit: int | None, pagination_token: str | None
    ) -> StoreResult[ConversationPage]:
        cfg = self.config
        effective_limit = cfg.default_message_limit if limit is None else limit
        if effective_limit < 1:
            return _validation(
                ConversationErrorCodes.INVALID_LIMIT,
                f"Limit must be at least 1, got {effective_limit}",
                limit=effective_limit,
            )

        conversation = await self.get_conversation(conversation_id)
        if conversation.is_error:
            return StoreResult.failure(conversation.error)

        partition = AttributeValue.string(cfg.partition_key(conversation_id))
        start_key: Item | None = None
        if pagination_token:
            decoded = decode_cursor(pagination_token)
            if decoded.is_error:
                return StoreResult.failure(decoded.error)
            start_key = decoded.value
            if start_key.get(cfg.partition_key_name) != partition:
                return _validation(
                    ConversationErrorCodes.PAGINATION_TOKEN_INVALID,
                    "Pagination token does not belong to this conversation",
                )

        session = ExpressionSession()
        condition = session.equals(cfg.partition_key_name, partition).and_(
            session.begins_with(cfg.sort_key_name, cfg.message_sk_prefix)
        )
        page = await self.client.query(
            QueryRequest.from_condition(
                cfg.table_name,
                condition,
                limit=effective_limit,
                scan_index_forward=True,
                exclusive_start_key=start_key,
            )
        )
        if page.is_error:
            return StoreResult.failure(page.error)

        messages = []
        for item in page.value.items:
            message = self._message_from_item(item)
            if message.is_error:
                return StoreResult.failure(message.error)
            messages.append(message.value)

        next_token = None
        if page.value.has_more:
            next_token = encode_cursor(page.value.last_evaluated_key)

        return StoreResult.success(
            ConversationPage(
                conversation=conversation.value,
                messages=messages,
                next_pagination_token=next_token,
                has_more_messages=page.value.has_more,
            )
        )

    async def iter_messages(
        self, conversation_id: str, page_size: int | None = None
    ) -> AsyncIterator[ConversationMessage]:
        """Yield every message in order, following pagination cursors.

        Raises:
            ConversationStoreError: If any page cannot be read.
        """
        token = None
        while True:
            page = await self.get_conversation_with_messages(conversation_id, page_size, token)
            if page.is_error:
                raise ConversationStoreError(page.error)
            for message in page.value.messages:
                yield message
            if not page.value.has_more_messages or not page.value.next_pagination_token:
                return
            token = page.value.next_pagination_token

    # Record parsing

    def _conversation_from_item(self, item: Item) -> StoreResult[Conversation]:
        conversation_id = record.get_string(item, ID)
        if conversation_id is None:
            return _validation(ConversationErrorCodes.MISSING_ID, "Conversation record is missing Id attribute")
        created_at = record.get_timestamp(item, CREATED_AT)
        if created_at is None:
            return _validation(
                ConversationErrorCodes.MISSING_CREATED_AT, "Conversation record is missing CreatedAt attribute"
            )
        updated_at = record.get_timestamp(item, UPDATED_AT)
        if updated_at is None:
            return _validation(
                ConversationErrorCodes.MISSING_UPDATED_AT, "Conversation record is missing UpdatedAt attribute"
            )

        message_count = record.get_int(item, MESSAGE_COUNT)
        return StoreResult.success(
            Conversation(
                id=conversation_id,
                created_at=created_at,
                updated_at=updated_at,
                message_count=message_count if message_count is not None else 0,
                metadata=_metadata_from_item(item),
                total_token_usage=_usage_from_item(item, TOTAL_INPUT_TOKENS, TOTAL_OUTPUT_TOKENS, TOTAL_TOKENS),
                expires_at=record.get_timestamp(item, self.config.ttl_attribute_name),
            )
        )

    def _message_from_item(self, item: Item) -> StoreResult[ConversationMessage]:
        codes = ConversationErrorCodes
        message_id = record.get_string(item, ID)
        if message_id is None:
            return _validation(codes.MESSAGE_MISSING_ID, "Message record is missing Id attribute")
        conversation_id = record.get_string(item, CONVERSATION_ID)
        if conversation_id is None:
            return _validation(
                codes.MESSAGE_MISSING_CONVERSATION_ID, "Message record is missing ConversationId attribute"
            )
        sequence_number = record.get_int(item, SEQUENCE_NUMBER)
        if sequence_number is None:
            return _validation(
                codes.MESSAGE_MISSING_SEQUENCE_NUMBER, "Message record is missing SequenceNumber attribute"
            )
        role = record.get_enum(item, ROLE, Role)
        if role is None:
            return _validation(codes.MESSAGE_MISSING_ROLE, "Message record is missing or has invalid Role attribute")
        created_at = record.get_timestamp(item, CREATED_AT)
        if created_at is None:
            return _validation(codes.MESSAGE_MISSING_CREATED_AT, "Message record is missing CreatedAt attribute")
        raw_content = record.get_list(item, CONTENT)
        if raw_content is None:
            return _validation(codes.MESSAGE_MISSING_CONTENT, "Message record is missing Content attribute")

        content = deserialize_blocks(raw_content)
        if content.is_error:
            return StoreResult.failure(content.error)

        return StoreResult.success(
            ConversationMessage(
                id=message_id,
                conversation_id=conversation_id,
                sequence_number=sequence_number,
                role=role,
                content=content.value,
                created_at=created_at,
                token_usage=_usage_from_item(item, INPUT_TOKENS, OUTPUT_TOKENS, TOKENS),
            )
        )


def _metadata_attributes(metadata: ConversationMetadata) -> Item:
    attributes: Item = {}
    if metadata.title is not None:
        attributes[TITLE] = AttributeValue.string(metadata.title)
    if metadata.model_id is not None:
        attributes[MODEL_ID] = AttributeValue.string(metadata.model_id)
    if metadata.tags:
        attributes[TAGS] = AttributeValue.string_set(metadata.tags)
    if metadata.custom_data:
        attributes[CUSTOM_DATA] = AttributeValue.map(
            {k: AttributeValue.string(v) for k, v in metadata.custom_data.items()}
        )
    return attributes


def _metadata_from_item(item: Item) -> ConversationMetadata | None:
    metadata = ConversationMetadata(
        title=record.get_string(item, TITLE),
        model_id=record.get_string(item, MODEL_ID),
        tags=record.get_string_set(item, TAGS) or [],
        custom_data=record.get_string_map(item, CUSTOM_DATA) or {},
    )
    return None if metadata.is_empty else metadata


def _usage_from_item(item: Item, input_name: str, output_name: str, total_name: str) -> TokenUsage | None:
    input_tokens = record.get_int(item, input_name)
    output_tokens = record.get_int(item, output_name)
    total_tokens = record.get_int(item, total_name)
    if input_tokens is None or output_tokens is None or total_tokens is None:
        return None
    return TokenUsage(input_tokens, output_tokens, total_tokens)
