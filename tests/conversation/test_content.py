"""Tests for content block serialization."""

import pytest

from convstore.conversation.content import (
    deserialize_block,
    deserialize_blocks,
    serialize_block,
    serialize_blocks,
)
from convstore.conversation.models import (
    DocumentBlock,
    ImageBlock,
    MediaSource,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from convstore.dynamo.values import AttributeKind
from convstore.dynamo.values import AttributeValue as AV
from convstore.errors import ConversationErrorCodes as Codes
from convstore.errors import ErrorKind

S3 = MediaSource(s3_uri="s3://bucket/cat.png", bucket_owner="123456789012")


class TestSerialize:
    """Tests for block to attribute conversion."""

    def test_text(self):
        value = serialize_block(TextBlock("hi")).unwrap()
        assert value.m == {"type": AV.string("text"), "text": AV.string("hi")}

    def test_image_with_owner(self):
        value = serialize_block(ImageBlock("png", S3)).unwrap()
        assert value.m["type"].s == "image"
        assert value.m["s3Uri"].s == "s3://bucket/cat.png"
        assert value.m["s3BucketOwner"].s == "123456789012"

    def test_document_without_owner(self):
        block = DocumentBlock("pdf", "report", MediaSource(s3_uri="s3://b/r.pdf"))
        value = serialize_block(block).unwrap()
        assert value.m["name"].s == "report"
        assert "s3BucketOwner" not in value.m

    def test_tool_use_input_is_compact_json(self):
        value = serialize_block(ToolUseBlock("t1", "search", {"q": "cats", "n": 2})).unwrap()
        assert value.m["input"].s == '{"q":"cats","n":2}'

    def test_tool_result_nests_blocks(self):
        block = ToolResultBlock("t1", [TextBlock("found")], status="success")
        value = serialize_block(block).unwrap()
        assert value.m["content"].kind is AttributeKind.L
        assert value.m["status"].s == "success"

    @pytest.mark.parametrize(
        "block,code",
        [
            (ImageBlock("png", MediaSource(data=b"raw")), Codes.CONTENT_BLOCK_IMAGE_BYTES_NOT_SUPPORTED),
            (ImageBlock("png", MediaSource()), Codes.CONTENT_BLOCK_IMAGE_MISSING_SOURCE),
            (DocumentBlock("pdf", "d", MediaSource(data=b"raw")), Codes.CONTENT_BLOCK_DOCUMENT_BYTES_NOT_SUPPORTED),
            (DocumentBlock("pdf", "d", MediaSource()), Codes.CONTENT_BLOCK_DOCUMENT_MISSING_SOURCE),
            (ToolUseBlock("t", "n", {"bad": object()}), Codes.CONTENT_BLOCK_TOOL_USE_INVALID_INPUT),
            ("not a block", Codes.CONTENT_BLOCK_EMPTY),
        ],
    )
    def test_invalid_blocks(self, block, code):
        result = serialize_block(block)
        assert result.error.code == code
        assert result.error.kind is ErrorKind.VALIDATION

    def test_inline_bytes_reported_before_missing_location(self):
        result = serialize_block(ImageBlock("png", MediaSource(s3_uri=None, data=b"x")))
        assert result.error.code == Codes.CONTENT_BLOCK_IMAGE_BYTES_NOT_SUPPORTED

    def test_list_stops_at_first_error(self):
        result = serialize_blocks([TextBlock("ok"), ImageBlock("png", MediaSource()), "junk"])
        assert result.error.code == Codes.CONTENT_BLOCK_IMAGE_MISSING_SOURCE

    def test_nested_error_propagates(self):
        block = ToolResultBlock("t1", [ImageBlock("png", MediaSource())])
        assert serialize_block(block).error.code == Codes.CONTENT_BLOCK_IMAGE_MISSING_SOURCE


class TestDeserialize:
    """Tests for attribute to block conversion."""

    def test_blocks_survive_storage(self):
        blocks = [
            TextBlock("hello"),
            ImageBlock("png", S3),
            DocumentBlock("pdf", "report", MediaSource(s3_uri="s3://b/r.pdf")),
            ToolUseBlock("t1", "search", {"q": ["a", 1, None]}),
            ToolResultBlock("t1", [TextBlock("done")], "success"),
        ]
        stored = serialize_blocks(blocks).unwrap()
        assert deserialize_blocks(stored.l).unwrap() == blocks

    def test_missing_s3_uri_yields_empty_source(self):
        value = AV.map({"type": AV.string("image"), "format": AV.string("png")})
        block = deserialize_block(value).unwrap()
        assert block.source == MediaSource(None)

    @pytest.mark.parametrize(
        "entries,code",
        [
            ({"text": AV.string("x")}, Codes.CONTENT_BLOCK_MISSING_TYPE),
            ({"type": AV.string("video")}, Codes.CONTENT_BLOCK_UNKNOWN_TYPE),
            ({"type": AV.string("text")}, Codes.CONTENT_BLOCK_TEXT_MISSING),
            ({"type": AV.string("image")}, Codes.CONTENT_BLOCK_IMAGE_MISSING_FORMAT),
            ({"type": AV.string("document"), "format": AV.string("pdf")}, Codes.CONTENT_BLOCK_DOCUMENT_MISSING_NAME),
            ({"type": AV.string("toolUse"), "name": AV.string("n")}, Codes.CONTENT_BLOCK_TOOL_USE_MISSING_ID),
            (
                {"type": AV.string("toolUse"), "toolUseId": AV.string("t"), "name": AV.string("n")},
                Codes.CONTENT_BLOCK_TOOL_USE_MISSING_INPUT,
            ),
            (
                {
                    "type": AV.string("toolUse"),
                    "toolUseId": AV.string("t"),
                    "name": AV.string("n"),
                    "input": AV.string("{nope"),
                },
                Codes.CONTENT_BLOCK_TOOL_USE_INVALID_INPUT,
            ),
            ({"type": AV.string("toolResult"), "toolUseId": AV.string("t")}, Codes.CONTENT_BLOCK_TOOL_RESULT_MISSING_CONTENT),
        ],
    )
    def test_invalid_entries(self, entries, code):
        assert deserialize_block(AV.map(entries)).error.code == code

    def test_non_map_rejected(self):
        result = deserialize_block(AV.string("text"))
        assert result.error.code == Codes.CONTENT_BLOCK_INVALID_FORMAT
