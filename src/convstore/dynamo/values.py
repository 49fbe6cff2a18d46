"""Tagged-union model of DynamoDB attribute values.

An AttributeValue holds exactly one variant. Constructors validate the
payload for the variant, and from_wire rejects wire dicts with zero or
several populated variants.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterable, Mapping

Item = dict[str, "AttributeValue"]


class AttributeKind(Enum):
    """DynamoDB type descriptors."""

    S = "S"
    N = "N"
    B = "B"
    SS = "SS"
    NS = "NS"
    BS = "BS"
    M = "M"
    L = "L"
    BOOL = "BOOL"
    NULL = "NULL"


def format_number(value: int | float | Decimal | str) -> str:
    """Format a number as locale-invariant decimal text.

    Raises:
        TypeError: For bool or non-numeric types.
        ValueError: For NaN, infinity or unparseable text.
    """
    if isinstance(value, bool):
        raise TypeError("bool is not a number")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        value = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            value = Decimal(value.strip())
        except InvalidOperation as e:
            raise ValueError(f"Not a number: {value!r}") from e
    elif not isinstance(value, Decimal):
        raise TypeError(f"Unsupported number type: {type(value).__name__}")

    if not value.is_finite():
        raise ValueError(f"Number must be finite: {value}")
    if value == value.to_integral_value():
        return format(value.to_integral_value(), "f")
    return format(value.normalize(), "f")


def parse_number(text: str) -> int | Decimal:
    """Parse stored decimal text into an int when integral, else Decimal."""
    number = Decimal(text)
    if number == number.to_integral_value():
        return int(number)
    return number


@dataclass(frozen=True)
class AttributeValue:
    """A single DynamoDB attribute value.

    Use the classmethod constructors rather than instantiating directly.
    """

    kind: AttributeKind
    value: Any

    def __post_init__(self) -> None:
        _validate(self.kind, self.value)

    # Constructors, one per variant

    @classmethod
    def string(cls, value: str) -> AttributeValue:
        return cls(AttributeKind.S, value)

    @classmethod
    def number(cls, value: int | float | Decimal | str) -> AttributeValue:
        return cls(AttributeKind.N, format_number(value))

    @classmethod
    def binary(cls, value: bytes) -> AttributeValue:
        return cls(AttributeKind.B, bytes(value))

    @classmethod
    def string_set(cls, values: Iterable[str]) -> AttributeValue:
        return cls(AttributeKind.SS, frozenset(values))

    @classmethod
    def number_set(cls, values: Iterable[int | float | Decimal | str]) -> AttributeValue:
        return cls(AttributeKind.NS, frozenset(format_number(v) for v in values))

    @classmethod
    def binary_set(cls, values: Iterable[bytes]) -> AttributeValue:
        return cls(AttributeKind.BS, frozenset(bytes(v) for v in values))

    @classmethod
    def map(cls, values: Mapping[str, AttributeValue]) -> AttributeValue:
        return cls(AttributeKind.M, dict(values))

    @classmethod
    def list(cls, values: Iterable[AttributeValue]) -> AttributeValue:
        return cls(AttributeKind.L, tuple(values))

    @classmethod
    def boolean(cls, value: bool) -> AttributeValue:
        return cls(AttributeKind.BOOL, value)

    @classmethod
    def null(cls) -> AttributeValue:
        return cls(AttributeKind.NULL, True)

    @classmethod
    def of(cls, value: Any) -> AttributeValue:
        """Convert a plain Python value into an AttributeValue.

        Sets must be non-empty and homogeneous (str, number or bytes).
        """
        if isinstance(value, AttributeValue):
            return value
        if value is None:
            return cls.null()
        if isinstance(value, bool):
            return cls.boolean(value)
        if isinstance(value, str):
            return cls.string(value)
        if isinstance(value, (int, float, Decimal)):
            return cls.number(value)
        if isinstance(value, (bytes, bytearray)):
            return cls.binary(bytes(value))
        if isinstance(value, Mapping):
            return cls.map({str(k): cls.of(v) for k, v in value.items()})
        if isinstance(value, (set, frozenset)):
            if not value:
                raise ValueError("Cannot infer the type of an empty set")
            if all(isinstance(v, str) for v in value):
                return cls.string_set(value)
            if all(isinstance(v, (bytes, bytearray)) for v in value):
                return cls.binary_set(value)
            if all(isinstance(v, (int, float, Decimal)) and not isinstance(v, bool) for v in value):
                return cls.number_set(value)
            raise TypeError("Set elements must all be str, bytes or numbers")
        if isinstance(value, (list, tuple)):
            return cls.list(cls.of(v) for v in value)
        raise TypeError(f"Cannot convert {type(value).__name__} to AttributeValue")

    # Wire format

    @classmethod
    def from_wire(cls, wire: Mapping[str, Any]) -> AttributeValue:
        """Build from DynamoDB JSON such as {"S": "abc"}.

        Raises:
            ValueError: If the dict does not hold exactly one known variant.
        """
        if not isinstance(wire, Mapping):
            raise ValueError(f"Attribute value must be an object, got {type(wire).__name__}")
        populated = [k for k, v in wire.items() if v is not None]
        if len(populated) != 1:
            raise ValueError(
                f"Attribute value must have exactly one populated variant, got {populated}"
            )
        key = populated[0]
        try:
            kind = AttributeKind(key)
        except ValueError:
            raise ValueError(f"Unknown attribute type: {key}") from None
        raw = wire[key]

        if kind is AttributeKind.S:
            return cls.string(raw)
        if kind is AttributeKind.N:
            return cls.number(_require_str(raw, kind))
        if kind is AttributeKind.B:
            return cls.binary(_decode_binary(raw))
        if kind is AttributeKind.SS:
            return cls.string_set(_require_list(raw, kind))
        if kind is AttributeKind.NS:
            return cls.number_set(_require_str(v, kind) for v in _require_list(raw, kind))
        if kind is AttributeKind.BS:
            return cls.binary_set(_decode_binary(v) for v in _require_list(raw, kind))
        if kind is AttributeKind.M:
            if not isinstance(raw, Mapping):
                raise ValueError("M must be an object")
            return cls.map({k: cls.from_wire(v) for k, v in raw.items()})
        if kind is AttributeKind.L:
            return cls.list(cls.from_wire(v) for v in _require_list(raw, kind))
        if kind is AttributeKind.BOOL:
            if not isinstance(raw, bool):
                raise ValueError("BOOL must be a boolean")
            return cls.boolean(raw)
        if raw is not True:
            raise ValueError("NULL must be true")
        return cls.null()

    def to_wire(self) -> dict[str, Any]:
        """Render as DynamoDB JSON. Binary payloads are base64 text."""
        kind = self.kind
        if kind is AttributeKind.B:
            return {"B": base64.b64encode(self.value).decode("ascii")}
        if kind in (AttributeKind.SS, AttributeKind.NS):
            return {kind.value: sorted(self.value)}
        if kind is AttributeKind.BS:
            return {"BS": sorted(base64.b64encode(v).decode("ascii") for v in self.value)}
        if kind is AttributeKind.M:
            return {"M": {k: v.to_wire() for k, v in self.value.items()}}
        if kind is AttributeKind.L:
            return {"L": [v.to_wire() for v in self.value]}
        return {kind.value: self.value}

    def to_python(self) -> Any:
        """Convert to a plain Python value (numbers become int or Decimal)."""
        kind = self.kind
        if kind is AttributeKind.N:
            return parse_number(self.value)
        if kind is AttributeKind.NS:
            return {parse_number(v) for v in self.value}
        if kind in (AttributeKind.SS, AttributeKind.BS):
            return set(self.value)
        if kind is AttributeKind.M:
            return {k: v.to_python() for k, v in self.value.items()}
        if kind is AttributeKind.L:
            return [v.to_python() for v in self.value]
        if kind is AttributeKind.NULL:
            return None
        return self.value

    # Accessors returning None for other variants

    @property
    def s(self) -> str | None:
        return self.value if self.kind is AttributeKind.S else None

    @property
    def n(self) -> str | None:
        return self.value if self.kind is AttributeKind.N else None

    @property
    def m(self) -> dict[str, AttributeValue] | None:
        return self.value if self.kind is AttributeKind.M else None

    @property
    def l(self) -> tuple[AttributeValue, ...] | None:  # noqa: E743
        return self.value if self.kind is AttributeKind.L else None

    def __hash__(self) -> int:
        if self.kind is AttributeKind.M:
            return hash((self.kind, tuple(sorted(self.value.items(), key=lambda kv: kv[0]))))
        return hash((self.kind, self.value))


def item_to_wire(item: Mapping[str, AttributeValue]) -> dict[str, dict[str, Any]]:
    """Render an item (or key) as DynamoDB JSON."""
    return {name: value.to_wire() for name, value in item.items()}


def item_from_wire(wire: Mapping[str, Any]) -> Item:
    """Parse a DynamoDB JSON item (or key)."""
    return {name: AttributeValue.from_wire(value) for name, value in wire.items()}


def _validate(kind: AttributeKind, value: Any) -> None:
    if not isinstance(kind, AttributeKind):
        raise TypeError(f"kind must be AttributeKind, got {type(kind).__name__}")

    if kind is AttributeKind.S:
        ok = isinstance(value, str)
    elif kind is AttributeKind.N:
        ok = isinstance(value, str) and _is_number_text(value)
    elif kind is AttributeKind.B:
        ok = isinstance(value, bytes)
    elif kind is AttributeKind.SS:
        ok = isinstance(value, frozenset) and bool(value) and all(isinstance(v, str) for v in value)
    elif kind is AttributeKind.NS:
        ok = (
            isinstance(value, frozenset)
            and bool(value)
            and all(isinstance(v, str) and _is_number_text(v) for v in value)
        )
    elif kind is AttributeKind.BS:
        ok = isinstance(value, frozenset) and bool(value) and all(isinstance(v, bytes) for v in value)
    elif kind is AttributeKind.M:
        ok = isinstance(value, dict) and all(
            isinstance(k, str) and isinstance(v, AttributeValue) for k, v in value.items()
        )
    elif kind is AttributeKind.L:
        ok = isinstance(value, tuple) and all(isinstance(v, AttributeValue) for v in value)
    elif kind is AttributeKind.BOOL:
        ok = isinstance(value, bool)
    else:
        ok = value is True

    if not ok:
        raise ValueError(f"Invalid payload for {kind.value}: {value!r}")


def _is_number_text(text: str) -> bool:
    try:
        return Decimal(text).is_finite()
    except InvalidOperation:
        return False


def _require_list(raw: Any, kind: AttributeKind) -> list[Any]:
    if not isinstance(raw, list):
        raise ValueError(f"{kind.value} must be an array")
    return raw


def _require_str(raw: Any, kind: AttributeKind) -> str:
    if not isinstance(raw, str):
        raise ValueError(f"{kind.value} must be encoded as a string")
    return raw


def _decode_binary(raw: Any) -> bytes:
    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw)
    if not isinstance(raw, str):
        raise ValueError("Binary values must be base64 text")
    try:
        return base64.b64decode(raw, validate=True)
    except ValueError as e:
        raise ValueError(f"Invalid base64 binary value: {e}") from e
