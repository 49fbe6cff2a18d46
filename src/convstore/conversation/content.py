"""Content block serialization to and from attribute maps.

Layout per block type:

    text        {"type": "text", "text"}
    image       {"type": "image", "format", "s3Uri", "s3BucketOwner"?}
    document    {"type": "document", "format", "name", "s3Uri", "s3BucketOwner"?}
    toolUse     {"type": "toolUse", "toolUseId", "name", "input": JSON text}
    toolResult  {"type": "toolResult", "toolUseId", "content": [block...], "status"?}
"""

from __future__ import annotations

import json
from typing import Iterable

from ..dynamo import record
from ..dynamo.values import AttributeKind, AttributeValue
from ..errors import ConversationErrorCodes as Codes
from ..errors import StoreError, StoreResult
from .models import (
    ContentBlock,
    DocumentBlock,
    ImageBlock,
    MediaSource,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)

TYPE_ATTRIBUTE = "type"
TEXT_TYPE = "text"
IMAGE_TYPE = "image"
DOCUMENT_TYPE = "document"
TOOL_USE_TYPE = "toolUse"
TOOL_RESULT_TYPE = "toolResult"


def _invalid(code: str, description: str) -> StoreResult:
    return StoreResult.failure(StoreError.validation(code, description))


def _check_source(source: MediaSource, label: str) -> StoreError | None:
    bytes_code, missing_code = {
        "Image": (Codes.CONTENT_BLOCK_IMAGE_BYTES_NOT_SUPPORTED, Codes.CONTENT_BLOCK_IMAGE_MISSING_SOURCE),
        "Document": (Codes.CONTENT_BLOCK_DOCUMENT_BYTES_NOT_SUPPORTED, Codes.CONTENT_BLOCK_DOCUMENT_MISSING_SOURCE),
    }[label]
    if source.data is not None:
        return StoreError.validation(
            bytes_code, f"{label} blocks with inline bytes are not supported, use an S3 location"
        )
    if not source.s3_uri:
        return StoreError.validation(missing_code, f"{label} block must have an S3 location")
    return None


def _source_entries(source: MediaSource) -> dict[str, AttributeValue]:
    entries = {"s3Uri": AttributeValue.string(source.s3_uri)}
    if source.bucket_owner is not None:
        entries["s3BucketOwner"] = AttributeValue.string(source.bucket_owner)
    return entries


def serialize_block(block: ContentBlock) -> StoreResult[AttributeValue]:
    """Serialize one content block to a map attribute."""
    if isinstance(block, TextBlock):
        return StoreResult.success(
            AttributeValue.map(
                {TYPE_ATTRIBUTE: AttributeValue.string(TEXT_TYPE), "text": AttributeValue.string(block.text)}
            )
        )

    if isinstance(block, ImageBlock):
        error = _check_source(block.source, "Image")
        if error:
            return StoreResult.failure(error)
        return StoreResult.success(
            AttributeValue.map(
                {
                    TYPE_ATTRIBUTE: AttributeValue.string(IMAGE_TYPE),
                    "format": AttributeValue.string(block.format),
                    **_source_entries(block.source),
                }
            )
        )

    if isinstance(block, DocumentBlock):
        error = _check_source(block.source, "Document")
        if error:
            return StoreResult.failure(error)
        return StoreResult.success(
            AttributeValue.map(
                {
                    TYPE_ATTRIBUTE: AttributeValue.string(DOCUMENT_TYPE),
                    "format": AttributeValue.string(block.format),
                    "name": AttributeValue.string(block.name),
                    **_source_entries(block.source),
                }
            )
        )

    if isinstance(block, ToolUseBlock):
        try:
            input_json = json.dumps(block.input, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            return _invalid(Codes.CONTENT_BLOCK_TOOL_USE_INVALID_INPUT, f"ToolUse input is not JSON serializable: {e}")
        return StoreResult.success(
            AttributeValue.map(
                {
                    TYPE_ATTRIBUTE: AttributeValue.string(TOOL_USE_TYPE),
                    "toolUseId": AttributeValue.string(block.tool_use_id),
                    "name": AttributeValue.string(block.name),
                    "input": AttributeValue.string(input_json),
                }
            )
        )

    if isinstance(block, ToolResultBlock):
        content = serialize_blocks(block.content)
        if content.is_error:
            return StoreResult.failure(content.error)
        entries = {
            TYPE_ATTRIBUTE: AttributeValue.string(TOOL_RESULT_TYPE),
            "toolUseId": AttributeValue.string(block.tool_use_id),
            "content": content.value,
        }
        if block.status is not None:
            entries["status"] = AttributeValue.string(block.status)
        return StoreResult.success(AttributeValue.map(entries))

    return _invalid(Codes.CONTENT_BLOCK_EMPTY, "Content block must have at least one content type set")


def serialize_blocks(blocks: Iterable[ContentBlock]) -> StoreResult[AttributeValue]:
    """Serialize a block list to a list attribute, stopping at the first error."""
    values = []
    for block in blocks:
        result = serialize_block(block)
        if result.is_error:
            return StoreResult.failure(result.error)
        values.append(result.value)
    return StoreResult.success(AttributeValue.list(values))


def deserialize_block(value: AttributeValue) -> StoreResult[ContentBlock]:
    """Parse one map attribute back into a content block."""
    if value.kind is not AttributeKind.M:
        return _invalid(Codes.CONTENT_BLOCK_INVALID_FORMAT, "Content block must be a map")

    entries = value.value
    block_type = record.get_string(entries, TYPE_ATTRIBUTE)
    if block_type is None:
        return _invalid(Codes.CONTENT_BLOCK_MISSING_TYPE, "Content block must have a type attribute")

    parser = _PARSERS.get(block_type)
    if parser is None:
        return _invalid(Codes.CONTENT_BLOCK_UNKNOWN_TYPE, f"Unknown content block type: {block_type}")
    return parser(entries)


def deserialize_blocks(values: Iterable[AttributeValue]) -> StoreResult[list[ContentBlock]]:
    blocks = []
    for value in values:
        result = deserialize_block(value)
        if result.is_error:
            return StoreResult.failure(result.error)
        blocks.append(result.value)
    return StoreResult.success(blocks)


def _read_source(entries) -> MediaSource:
    return MediaSource(
        s3_uri=record.get_string(entries, "s3Uri"),
        bucket_owner=record.get_string(entries, "s3BucketOwner"),
    )


def _text(entries) -> StoreResult[ContentBlock]:
    text = record.get_string(entries, "text")
    if text is None:
        return _invalid(Codes.CONTENT_BLOCK_TEXT_MISSING, "Text block must have a text attribute")
    return StoreResult.success(TextBlock(text))


def _image(entries) -> StoreResult[ContentBlock]:
    fmt = record.get_string(entries, "format")
    if fmt is None:
        return _invalid(Codes.CONTENT_BLOCK_IMAGE_MISSING_FORMAT, "Image block must have a format attribute")
    return StoreResult.success(ImageBlock(fmt, _read_source(entries)))


def _document(entries) -> StoreResult[ContentBlock]:
    fmt = record.get_string(entries, "format")
    if fmt is None:
        return _invalid(Codes.CONTENT_BLOCK_DOCUMENT_MISSING_FORMAT, "Document block must have a format attribute")
    name = record.get_string(entries, "name")
    if name is None:
        return _invalid(Codes.CONTENT_BLOCK_DOCUMENT_MISSING_NAME, "Document block must have a name attribute")
    return StoreResult.success(DocumentBlock(fmt, name, _read_source(entries)))


def _tool_use(entries) -> StoreResult[ContentBlock]:
    tool_use_id = record.get_string(entries, "toolUseId")
    if tool_use_id is None:
        return _invalid(Codes.CONTENT_BLOCK_TOOL_USE_MISSING_ID, "ToolUse block must have a toolUseId attribute")
    name = record.get_string(entries, "name")
    if name is None:
        return _invalid(Codes.CONTENT_BLOCK_TOOL_USE_MISSING_NAME, "ToolUse block must have a name attribute")
    raw_input = record.get_string(entries, "input")
    if raw_input is None:
        return _invalid(Codes.CONTENT_BLOCK_TOOL_USE_MISSING_INPUT, "ToolUse block must have an input attribute")
    try:
        tool_input = json.loads(raw_input)
    except json.JSONDecodeError as e:
        return _invalid(Codes.CONTENT_BLOCK_TOOL_USE_INVALID_INPUT, f"ToolUse input is not valid JSON: {e}")
    return StoreResult.success(ToolUseBlock(tool_use_id, name, tool_input))


def _tool_result(entries) -> StoreResult[ContentBlock]:
    tool_use_id = record.get_string(entries, "toolUseId")
    if tool_use_id is None:
        return _invalid(Codes.CONTENT_BLOCK_TOOL_RESULT_MISSING_ID, "ToolResult block must have a toolUseId attribute")
    content = record.get_list(entries, "content")
    if content is None:
        return _invalid(
            Codes.CONTENT_BLOCK_TOOL_RESULT_MISSING_CONTENT, "ToolResult block must have a content attribute"
        )
    blocks = deserialize_blocks(content)
    if blocks.is_error:
        return StoreResult.failure(blocks.error)
    return StoreResult.success(
        ToolResultBlock(tool_use_id, blocks.value, record.get_string(entries, "status"))
    )


_PARSERS = {
    TEXT_TYPE: _text,
    IMAGE_TYPE: _image,
    DOCUMENT_TYPE: _document,
    TOOL_USE_TYPE: _tool_use,
    TOOL_RESULT_TYPE: _tool_result,
}
