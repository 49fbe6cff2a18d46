"""Typed read accessors over stored items.

Each accessor returns None when the attribute is absent or holds a
different variant, so callers can decide whether absence is an error.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Mapping, TypeVar

from .values import AttributeKind, AttributeValue

E = TypeVar("E", bound=Enum)


def get_string(item: Mapping[str, AttributeValue], name: str) -> str | None:
    value = item.get(name)
    if value is None or value.kind is not AttributeKind.S:
        return None
    return value.value


def get_int(item: Mapping[str, AttributeValue], name: str) -> int | None:
    """Read an integral number attribute."""
    value = item.get(name)
    if value is None or value.kind is not AttributeKind.N:
        return None
    try:
        number = Decimal(value.value)
    except InvalidOperation:
        return None
    if number != number.to_integral_value():
        return None
    return int(number)


def get_timestamp(item: Mapping[str, AttributeValue], name: str) -> datetime | None:
    """Read epoch seconds as an aware UTC datetime."""
    seconds = get_int(item, name)
    if seconds is None:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def get_bool(item: Mapping[str, AttributeValue], name: str) -> bool | None:
    value = item.get(name)
    if value is None or value.kind is not AttributeKind.BOOL:
        return None
    return value.value


def get_string_set(item: Mapping[str, AttributeValue], name: str) -> list[str] | None:
    """Read a string set, sorted for stable output."""
    value = item.get(name)
    if value is None or value.kind is not AttributeKind.SS:
        return None
    return sorted(value.value)


def get_list(item: Mapping[str, AttributeValue], name: str) -> list[AttributeValue] | None:
    value = item.get(name)
    if value is None or value.kind is not AttributeKind.L:
        return None
    return list(value.value)


def get_map(item: Mapping[str, AttributeValue], name: str) -> dict[str, AttributeValue] | None:
    value = item.get(name)
    if value is None or value.kind is not AttributeKind.M:
        return None
    return dict(value.value)


def get_string_map(item: Mapping[str, AttributeValue], name: str) -> dict[str, str] | None:
    """Read a map whose values are strings. Non-string entries are skipped."""
    entries = get_map(item, name)
    if entries is None:
        return None
    return {k: v.value for k, v in entries.items() if v.kind is AttributeKind.S}


def get_enum(item: Mapping[str, AttributeValue], name: str, enum_cls: type[E]) -> E | None:
    """Read a string attribute as an enum member, matching value or name case-insensitively."""
    raw = get_string(item, name)
    if raw is None:
        return None
    wanted = raw.strip().lower()
    for member in enum_cls:
        if str(member.value).lower() == wanted or member.name.lower() == wanted:
            return member
    return None
