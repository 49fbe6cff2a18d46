"""Opaque pagination cursors.

A cursor is the base64 of the UTF-8 JSON of a query's last evaluated key
in wire form, for example {"PK": {"S": "..."}, "SK": {"S": "..."}}.
"""

import base64
import binascii
import json
from typing import Mapping

from ..dynamo.values import AttributeValue, Item, item_from_wire, item_to_wire
from ..errors import ConversationErrorCodes, StoreError, StoreResult


def encode_cursor(key: Mapping[str, AttributeValue]) -> str:
    payload = json.dumps(item_to_wire(key), sort_keys=True, separators=(",", ":"))
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def decode_cursor(token: str) -> StoreResult[Item]:
    """Decode a cursor. Never raises; bad input yields a validation error."""
    try:
        raw = base64.b64decode(token, validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError, TypeError, RecursionError) as e:
        return _invalid(f"Pagination token could not be decoded: {e}")

    if not isinstance(data, dict) or not data:
        return _invalid("Pagination token must encode a non-empty key")

    try:
        key = item_from_wire(data)
    except (ValueError, TypeError, RecursionError) as e:
        return _invalid(f"Pagination token holds an invalid key: {e}")
    return StoreResult.success(key)


def _invalid(description: str) -> StoreResult[Item]:
    return StoreResult.failure(
        StoreError.validation(ConversationErrorCodes.PAGINATION_TOKEN_INVALID, description)
    )
