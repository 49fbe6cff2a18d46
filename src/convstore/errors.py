"""Result and error types shared by the store layers.

Expected failures (missing conversation, malformed cursor, a store call
that failed) travel as values inside a StoreResult. Only programmer errors
raise.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorKind(Enum):
    """Category of a store error."""

    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    FAILURE = "failure"


@dataclass(frozen=True)
class StoreError:
    """A machine-readable error with a human-readable description.

    Attributes:
        kind: Broad category used for control flow.
        code: Stable dotted code, e.g. 'convstore.conversation.NotFound'.
        description: Message suitable for logs and CLI output.
        details: Extra structured data (counts, cancellation reasons).
    """

    kind: ErrorKind
    code: str
    description: str
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def not_found(cls, code: str, description: str, **details: Any) -> StoreError:
        return cls(ErrorKind.NOT_FOUND, code, description, details)

    @classmethod
    def validation(cls, code: str, description: str, **details: Any) -> StoreError:
        return cls(ErrorKind.VALIDATION, code, description, details)

    @classmethod
    def conflict(cls, code: str, description: str, **details: Any) -> StoreError:
        return cls(ErrorKind.CONFLICT, code, description, details)

    @classmethod
    def failure(cls, code: str, description: str, **details: Any) -> StoreError:
        return cls(ErrorKind.FAILURE, code, description, details)

    def __str__(self) -> str:
        return f"[{self.code}] {self.description}"


class ConversationStoreError(Exception):
    """Raised when a StoreResult is unwrapped or an iterator hits an error."""

    def __init__(self, error: StoreError) -> None:
        super().__init__(str(error))
        self.error = error


@dataclass
class StoreResult(Generic[T]):
    """Outcome of a store operation: a value or an error, never both."""

    value: T | None = None
    error: StoreError | None = None

    @classmethod
    def success(cls, value: T | None = None) -> StoreResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: StoreError) -> StoreResult[T]:
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def unwrap(self) -> T:
        """Return the value, raising ConversationStoreError on error."""
        if self.error is not None:
            raise ConversationStoreError(self.error)
        return self.value  # type: ignore[return-value]


class ConversationErrorCodes:
    """Error codes produced by the conversation log store."""

    PREFIX = "convstore.conversation"

    NOT_FOUND = f"{PREFIX}.NotFound"
    ALREADY_EXISTS = f"{PREFIX}.AlreadyExists"
    MESSAGES_EMPTY = f"{PREFIX}.MessagesEmpty"
    TOO_MANY_MESSAGES = f"{PREFIX}.TooManyMessages"
    SEQUENCE_EXHAUSTED = f"{PREFIX}.SequenceExhausted"
    INVALID_LIMIT = f"{PREFIX}.InvalidLimit"
    PARTIAL_DELETE = f"{PREFIX}.PartialDelete"

    # Conversation record read-back
    MISSING_ID = f"{PREFIX}.MissingId"
    MISSING_CREATED_AT = f"{PREFIX}.MissingCreatedAt"
    MISSING_UPDATED_AT = f"{PREFIX}.MissingUpdatedAt"

    # Message record read-back
    MESSAGE_MISSING_ID = f"{PREFIX}.Message.MissingId"
    MESSAGE_MISSING_CONVERSATION_ID = f"{PREFIX}.Message.MissingConversationId"
    MESSAGE_MISSING_SEQUENCE_NUMBER = f"{PREFIX}.Message.MissingSequenceNumber"
    MESSAGE_MISSING_ROLE = f"{PREFIX}.Message.MissingRole"
    MESSAGE_MISSING_CREATED_AT = f"{PREFIX}.Message.MissingCreatedAt"
    MESSAGE_MISSING_CONTENT = f"{PREFIX}.Message.MissingContent"

    PAGINATION_TOKEN_INVALID = f"{PREFIX}.PaginationToken.Invalid"

    # Content blocks
    CONTENT_BLOCK_EMPTY = f"{PREFIX}.ContentBlock.Empty"
    CONTENT_BLOCK_INVALID_FORMAT = f"{PREFIX}.ContentBlock.InvalidFormat"
    CONTENT_BLOCK_MISSING_TYPE = f"{PREFIX}.ContentBlock.MissingType"
    CONTENT_BLOCK_UNKNOWN_TYPE = f"{PREFIX}.ContentBlock.UnknownType"
    CONTENT_BLOCK_TEXT_MISSING = f"{PREFIX}.ContentBlock.Text.Missing"
    CONTENT_BLOCK_IMAGE_MISSING_FORMAT = f"{PREFIX}.ContentBlock.Image.MissingFormat"
    CONTENT_BLOCK_IMAGE_BYTES_NOT_SUPPORTED = f"{PREFIX}.ContentBlock.Image.BytesNotSupported"
    CONTENT_BLOCK_IMAGE_MISSING_SOURCE = f"{PREFIX}.ContentBlock.Image.MissingSource"
    CONTENT_BLOCK_DOCUMENT_MISSING_FORMAT = f"{PREFIX}.ContentBlock.Document.MissingFormat"
    CONTENT_BLOCK_DOCUMENT_MISSING_NAME = f"{PREFIX}.ContentBlock.Document.MissingName"
    CONTENT_BLOCK_DOCUMENT_BYTES_NOT_SUPPORTED = f"{PREFIX}.ContentBlock.Document.BytesNotSupported"
    CONTENT_BLOCK_DOCUMENT_MISSING_SOURCE = f"{PREFIX}.ContentBlock.Document.MissingSource"
    CONTENT_BLOCK_TOOL_USE_MISSING_ID = f"{PREFIX}.ContentBlock.ToolUse.MissingId"
    CONTENT_BLOCK_TOOL_USE_MISSING_NAME = f"{PREFIX}.ContentBlock.ToolUse.MissingName"
    CONTENT_BLOCK_TOOL_USE_MISSING_INPUT = f"{PREFIX}.ContentBlock.ToolUse.MissingInput"
    CONTENT_BLOCK_TOOL_USE_INVALID_INPUT = f"{PREFIX}.ContentBlock.ToolUse.InvalidInput"
    CONTENT_BLOCK_TOOL_RESULT_MISSING_ID = f"{PREFIX}.ContentBlock.ToolResult.MissingId"
    CONTENT_BLOCK_TOOL_RESULT_MISSING_CONTENT = f"{PREFIX}.ContentBlock.ToolResult.MissingContent"


def conversation_not_found(conversation_id: str) -> StoreError:
    """Build the NotFound error for a conversation id."""
    return StoreError.not_found(
        ConversationErrorCodes.NOT_FOUND,
        f"Conversation with id '{conversation_id}' was not found",
        conversation_id=conversation_id,
    )
