"""Data models for conversations and their messages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union


class Role(Enum):
    """Author of a message."""

    USER = "User"
    ASSISTANT = "Assistant"


@dataclass(frozen=True)
class MediaSource:
    """Location of an image or document.

    Only S3 references can be stored. Inline data is accepted here so
    callers get a clear validation error rather than a silent drop.
    """

    s3_uri: str | None = None
    bucket_owner: str | None = None
    data: bytes | None = None


@dataclass(frozen=True)
class TextBlock:
    text: str


@dataclass(frozen=True)
class ImageBlock:
    format: str
    source: MediaSource


@dataclass(frozen=True)
class DocumentBlock:
    format: str
    name: str
    source: MediaSource


@dataclass(frozen=True)
class ToolUseBlock:
    tool_use_id: str
    name: str
    input: Any


@dataclass(frozen=True)
class ToolResultBlock:
    tool_use_id: str
    content: list[ContentBlock]
    status: str | None = None


ContentBlock = Union[TextBlock, ImageBlock, DocumentBlock, ToolUseBlock, ToolResultBlock]


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            self.input_tokens + other.input_tokens,
            self.output_tokens + other.output_tokens,
            self.total_tokens + other.total_tokens,
        )


@dataclass
class ConversationMetadata:
    """Optional descriptive fields of a conversation.

    Attributes:
        title: Display title.
        model_id: Model the conversation runs against.
        tags: Labels, stored as a string set.
        custom_data: Free-form string key/value pairs.
    """

    title: str | None = None
    model_id: str | None = None
    tags: list[str] = field(default_factory=list)
    custom_data: dict[str, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return self.title is None and self.model_id is None and not self.tags and not self.custom_data


@dataclass
class Conversation:
    id: str
    created_at: datetime
    updated_at: datetime
    message_count: int = 0
    metadata: ConversationMetadata | None = None
    total_token_usage: TokenUsage | None = None
    expires_at: datetime | None = None


@dataclass
class ConversationMessage:
    id: str
    conversation_id: str
    sequence_number: int
    role: Role
    content: list[ContentBlock]
    created_at: datetime
    token_usage: TokenUsage | None = None


@dataclass
class MessageInput:
    """A message to append."""

    role: Role
    content: list[ContentBlock]
    token_usage: TokenUsage | None = None


@dataclass
class ConversationPage:
    """A conversation with one page of its messages."""

    conversation: Conversation
    messages: list[ConversationMessage]
    next_pagination_token: str | None = None
    has_more_messages: bool = False


@dataclass(frozen=True)
class DeleteSummary:
    conversation_id: str
    items_deleted: int
    batches: int
