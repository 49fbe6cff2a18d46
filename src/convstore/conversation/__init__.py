"""Conversation log store and its data models."""

from .models import (
    ContentBlock,
    Conversation,
    ConversationMessage,
    ConversationMetadata,
    ConversationPage,
    DeleteSummary,
    DocumentBlock,
    ImageBlock,
    MediaSource,
    MessageInput,
    Role,
    TextBlock,
    TokenUsage,
    ToolResultBlock,
    ToolUseBlock,
)
from .pagination import decode_cursor, encode_cursor
from .store import ConversationStore

__all__ = [
    "ContentBlock",
    "Conversation",
    "ConversationMessage",
    "ConversationMetadata",
    "ConversationPage",
    "ConversationStore",
    "DeleteSummary",
    "DocumentBlock",
    "ImageBlock",
    "MediaSource",
    "MessageInput",
    "Role",
    "TextBlock",
    "TokenUsage",
    "ToolResultBlock",
    "ToolUseBlock",
    "decode_cursor",
    "encode_cursor",
]
