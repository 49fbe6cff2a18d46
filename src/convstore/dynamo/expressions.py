"""Condition expressions with placeholder substitution.

Two placeholder schemes are available:

- Condition's static builders derive tokens from the attribute name
  (#Status / :Status). They are pure and deterministic, but combining two
  conditions on the same attribute collapses their map entries
  (last writer wins).
- ExpressionSession allocates numbered tokens (#n0, :v0, ...) and reuses
  the name token for an attribute already seen in the session. Conditions
  and update clauses built from one session never collide.

Raw attribute names and values never appear in the expression text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from .values import AttributeKind, AttributeValue

_TOKEN_PATTERN = re.compile(r"[#:][A-Za-z0-9_]+")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_]")

ATTRIBUTE_TYPES = frozenset(kind.value for kind in AttributeKind)


def placeholder_safe(attribute: str) -> str:
    """Derive the token body for an attribute name."""
    if not attribute:
        raise ValueError("Attribute name cannot be empty")
    return _UNSAFE_CHARS.sub("_", attribute)


def referenced_tokens(expression: str) -> set[str]:
    """Return every #name and :value token in an expression."""
    return set(_TOKEN_PATTERN.findall(expression))


def merge_maps(target: dict[str, Any], source: Mapping[str, Any]) -> None:
    """Merge substitution entries into target.

    Raises:
        ValueError: If a token is already bound to a different entry.
    """
    for token, entry in source.items():
        existing = target.get(token)
        if existing is not None and existing != entry:
            raise ValueError(
                f"Placeholder {token} is bound to {existing!r}, cannot rebind to {entry!r}"
            )
        target[token] = entry


@dataclass(frozen=True)
class Condition:
    """A condition expression plus its name and value substitution maps.

    Every token referenced in the expression must have an entry in names
    (#tokens) or values (:tokens).
    """

    expression: str
    names: dict[str, str] = field(default_factory=dict)
    values: dict[str, AttributeValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.expression or not self.expression.strip():
            raise ValueError("Condition expression cannot be empty")
        missing = sorted(
            token
            for token in referenced_tokens(self.expression)
            if token not in (self.names if token.startswith("#") else self.values)
        )
        if missing:
            raise ValueError(f"Unbound placeholders in condition: {', '.join(missing)}")

    # Comparison and function builders (name-derived tokens)

    @staticmethod
    def equals(attribute: str, value: Any) -> Condition:
        return _NameDerivedBuilder().equals(attribute, value)

    @staticmethod
    def not_equals(attribute: str, value: Any) -> Condition:
        return _NameDerivedBuilder().not_equals(attribute, value)

    @staticmethod
    def greater_than(attribute: str, value: Any) -> Condition:
        return _NameDerivedBuilder().greater_than(attribute, value)

    @staticmethod
    def greater_than_or_equals(attribute: str, value: Any) -> Condition:
        return _NameDerivedBuilder().greater_than_or_equals(attribute, value)

    @staticmethod
    def less_than(attribute: str, value: Any) -> Condition:
        return _NameDerivedBuilder().less_than(attribute, value)

    @staticmethod
    def less_than_or_equals(attribute: str, value: Any) -> Condition:
        return _NameDerivedBuilder().less_than_or_equals(attribute, value)

    @staticmethod
    def between(attribute: str, low: Any, high: Any) -> Condition:
        return _NameDerivedBuilder().between(attribute, low, high)

    @staticmethod
    def begins_with(attribute: str, prefix: Any) -> Condition:
        return _NameDerivedBuilder().begins_with(attribute, prefix)

    @staticmethod
    def contains(attribute: str, value: Any) -> Condition:
        return _NameDerivedBuilder().contains(attribute, value)

    @staticmethod
    def not_contains(attribute: str, value: Any) -> Condition:
        return _NameDerivedBuilder().not_contains(attribute, value)

    @staticmethod
    def size_equals(attribute: str, size: int) -> Condition:
        return _NameDerivedBuilder().size_equals(attribute, size)

    @staticmethod
    def size_not_equals(attribute: str, size: int) -> Condition:
        return _NameDerivedBuilder().size_not_equals(attribute, size)

    @staticmethod
    def size_greater_than(attribute: str, size: int) -> Condition:
        return _NameDerivedBuilder().size_greater_than(attribute, size)

    @staticmethod
    def size_greater_than_or_equals(attribute: str, size: int) -> Condition:
        return _NameDerivedBuilder().size_greater_than_or_equals(attribute, size)

    @staticmethod
    def size_less_than(attribute: str, size: int) -> Condition:
        return _NameDerivedBuilder().size_less_than(attribute, size)

    @staticmethod
    def size_less_than_or_equals(attribute: str, size: int) -> Condition:
        return _NameDerivedBuilder().size_less_than_or_equals(attribute, size)

    @staticmethod
    def attribute_exists(attribute: str) -> Condition:
        return _NameDerivedBuilder().attribute_exists(attribute)

    @staticmethod
    def attribute_not_exists(attribute: str) -> Condition:
        return _NameDerivedBuilder().attribute_not_exists(attribute)

    @staticmethod
    def attribute_type(attribute: str, type_code: str) -> Condition:
        return _NameDerivedBuilder().attribute_type(attribute, type_code)

    @staticmethod
    def in_(attribute: str, *values: Any) -> Condition:
        return _NameDerivedBuilder().in_(attribute, *values)

    # Combinators

    def and_(self, *others: Condition) -> Condition:
        """Join with AND. Usable as Condition.and_(a, b, c) or a.and_(b)."""
        return _combine(" AND ", (self, *others))

    def or_(self, *others: Condition) -> Condition:
        """Join with OR. Usable as Condition.or_(a, b, c) or a.or_(b)."""
        return _combine(" OR ", (self, *others))

    def not_(self) -> Condition:
        return Condition(f"NOT ({self.expression})", dict(self.names), dict(self.values))

    def parenthesized(self) -> Condition:
        return Condition(f"({self.expression})", dict(self.names), dict(self.values))

    # Fluent chaining

    def and_equals(self, attribute: str, value: Any) -> Condition:
        return self.and_(Condition.equals(attribute, value))

    def and_not_equals(self, attribute: str, value: Any) -> Condition:
        return self.and_(Condition.not_equals(attribute, value))

    def and_greater_than(self, attribute: str, value: Any) -> Condition:
        return self.and_(Condition.greater_than(attribute, value))

    def and_less_than(self, attribute: str, value: Any) -> Condition:
        return self.and_(Condition.less_than(attribute, value))

    def and_between(self, attribute: str, low: Any, high: Any) -> Condition:
        return self.and_(Condition.between(attribute, low, high))

    def and_begins_with(self, attribute: str, prefix: Any) -> Condition:
        return self.and_(Condition.begins_with(attribute, prefix))

    def and_contains(self, attribute: str, value: Any) -> Condition:
        return self.and_(Condition.contains(attribute, value))

    def and_attribute_exists(self, attribute: str) -> Condition:
        return self.and_(Condition.attribute_exists(attribute))

    def and_attribute_not_exists(self, attribute: str) -> Condition:
        return self.and_(Condition.attribute_not_exists(attribute))

    def or_equals(self, attribute: str, value: Any) -> Condition:
        return self.or_(Condition.equals(attribute, value))

    def or_not_equals(self, attribute: str, value: Any) -> Condition:
        return self.or_(Condition.not_equals(attribute, value))

    def or_attribute_exists(self, attribute: str) -> Condition:
        return self.or_(Condition.attribute_exists(attribute))

    def or_attribute_not_exists(self, attribute: str) -> Condition:
        return self.or_(Condition.attribute_not_exists(attribute))


def _combine(keyword: str, conditions: Iterable[Condition]) -> Condition:
    conditions = list(conditions)
    if not conditions:
        raise ValueError("At least one condition is required")
    names: dict[str, str] = {}
    values: dict[str, AttributeValue] = {}
    for condition in conditions:
        # Last writer wins on token collisions.
        names.update(condition.names)
        values.update(condition.values)
    expression = keyword.join(c.expression for c in conditions)
    return Condition(expression, names, values)


class ConditionBuilder:
    """Comparison and function builders over an abstract token scheme."""

    def _name(self, attribute: str) -> str:
        raise NotImplementedError

    def _value(self, attribute: str, value: AttributeValue, suffix: str = "") -> str:
        raise NotImplementedError

    def _resolve(self, token: str) -> tuple[str, Any]:
        raise NotImplementedError

    def _finish(self, expression: str) -> Condition:
        names: dict[str, str] = {}
        values: dict[str, AttributeValue] = {}
        for token in referenced_tokens(expression):
            kind, entry = self._resolve(token)
            (names if kind == "name" else values)[token] = entry
        return Condition(expression, names, values)

    def _compare(self, attribute: str, operator: str, value: Any) -> Condition:
        name = self._name(attribute)
        token = self._value(attribute, AttributeValue.of(value))
        return self._finish(f"{name} {operator} {token}")

    def _size_compare(self, attribute: str, operator: str, size: int) -> Condition:
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            raise ValueError(f"Size must be a non-negative int, got {size!r}")
        name = self._name(attribute)
        token = self._value(attribute, AttributeValue.number(size))
        return self._finish(f"size({name}) {operator} {token}")

    def equals(self, attribute: str, value: Any) -> Condition:
        return self._compare(attribute, "=", value)

    def not_equals(self, attribute: str, value: Any) -> Condition:
        return self._compare(attribute, "<>", value)

    def greater_than(self, attribute: str, value: Any) -> Condition:
        return self._compare(attribute, ">", value)

    def greater_than_or_equals(self, attribute: str, value: Any) -> Condition:
        return self._compare(attribute, ">=", value)

    def less_than(self, attribute: str, value: Any) -> Condition:
        return self._compare(attribute, "<", value)

    def less_than_or_equals(self, attribute: str, value: Any) -> Condition:
        return self._compare(attribute, "<=", value)

    def between(self, attribute: str, low: Any, high: Any) -> Condition:
        name = self._name(attribute)
        low_token = self._value(attribute, AttributeValue.of(low), "1")
        high_token = self._value(attribute, AttributeValue.of(high), "2")
        return self._finish(f"{name} BETWEEN {low_token} AND {high_token}")

    def begins_with(self, attribute: str, prefix: Any) -> Condition:
        value = AttributeValue.of(prefix)
        if value.kind not in (AttributeKind.S, AttributeKind.B):
            raise TypeError("begins_with requires a string or binary prefix")
        name = self._name(attribute)
        token = self._value(attribute, value)
        return self._finish(f"begins_with({name}, {token})")

    def contains(self, attribute: str, value: Any) -> Condition:
        name = self._name(attribute)
        token = self._value(attribute, AttributeValue.of(value))
        return self._finish(f"contains({name}, {token})")

    def not_contains(self, attribute: str, value: Any) -> Condition:
        name = self._name(attribute)
        token = self._value(attribute, AttributeValue.of(value))
        return self._finish(f"NOT contains({name}, {token})")

    def size_equals(self, attribute: str, size: int) -> Condition:
        return self._size_compare(attribute, "=", size)

    def size_not_equals(self, attribute: str, size: int) -> Condition:
        return self._size_compare(attribute, "<>", size)

    def size_greater_than(self, attribute: str, size: int) -> Condition:
        return self._size_compare(attribute, ">", size)

    def size_greater_than_or_equals(self, attribute: str, size: int) -> Condition:
        return self._size_compare(attribute, ">=", size)

    def size_less_than(self, attribute: str, size: int) -> Condition:
        return self._size_compare(attribute, "<", size)

    def size_less_than_or_equals(self, attribute: str, size: int) -> Condition:
        return self._size_compare(attribute, "<=", size)

    def attribute_exists(self, attribute: str) -> Condition:
        return self._finish(f"attribute_exists({self._name(attribute)})")

    def attribute_not_exists(self, attribute: str) -> Condition:
        return self._finish(f"attribute_not_exists({self._name(attribute)})")

    def attribute_type(self, attribute: str, type_code: str) -> Condition:
        if type_code not in ATTRIBUTE_TYPES:
            raise ValueError(
                f"Unknown attribute type {type_code!r}, expected one of {sorted(ATTRIBUTE_TYPES)}"
            )
        name = self._name(attribute)
        token = self._value(attribute, AttributeValue.string(type_code))
        return self._finish(f"attribute_type({name}, {token})")

    def in_(self, attribute: str, *values: Any) -> Condition:
        if not values:
            raise ValueError("At least one value must be provided for IN condition")
        name = self._name(attribute)
        tokens = [
            self._value(attribute, AttributeValue.of(value), str(i))
            for i, value in enumerate(values)
        ]
        return self._finish(f"{name} IN ({', '.join(tokens)})")


class _NameDerivedBuilder(ConditionBuilder):
    """One-shot builder deriving #attr / :attr tokens from the attribute name."""

    def __init__(self) -> None:
        self._names: dict[str, str] = {}
        self._values: dict[str, AttributeValue] = {}

    def _name(self, attribute: str) -> str:
        token = f"#{placeholder_safe(attribute)}"
        self._names[token] = attribute
        return token

    def _value(self, attribute: str, value: AttributeValue, suffix: str = "") -> str:
        token = f":{placeholder_safe(attribute)}{suffix}"
        self._values[token] = value
        return token

    def _resolve(self, token: str) -> tuple[str, Any]:
        if token.startswith("#"):
            return "name", self._names[token]
        return "value", self._values[token]


class ExpressionSession(ConditionBuilder):
    """Session-scoped placeholder allocator shared by conditions and updates.

    Name tokens are #n0, #n1, ... and are reused for an attribute already
    registered in the session. Value tokens are :v0, :v1, ... and are always
    fresh.
    """

    def __init__(self) -> None:
        self.names: dict[str, str] = {}
        self.values: dict[str, AttributeValue] = {}
        self._name_tokens: dict[str, str] = {}

    def name(self, attribute: str) -> str:
        """Return the token for an attribute, registering it if new."""
        if not attribute:
            raise ValueError("Attribute name cannot be empty")
        token = self._name_tokens.get(attribute)
        if token is None:
            token = self.fresh_name(attribute)
            self._name_tokens[attribute] = token
        return token

    def fresh_name(self, attribute: str) -> str:
        """Allocate a new token for an attribute even if it was seen before."""
        if not attribute:
            raise ValueError("Attribute name cannot be empty")
        token = _next_free("#n", self.names)
        self.names[token] = attribute
        return token

    def value(self, value: Any) -> str:
        """Allocate a new token bound to a value."""
        token = _next_free(":v", self.values)
        self.values[token] = AttributeValue.of(value)
        return token

    def adopt(self, condition: Condition) -> Condition:
        """Register a condition's maps, rebinding tokens taken in this session.

        Tokens already bound to the same entry are shared. A token bound to
        something else here gets a fresh session token and the expression is
        rewritten to use it.
        """
        clashes: list[str] = []
        for token, entry in [*condition.names.items(), *condition.values.items()]:
            target = self.names if token.startswith("#") else self.values
            existing = target.get(token)
            if existing is None:
                target[token] = entry
            elif existing != entry:
                clashes.append(token)
        if not clashes:
            return condition

        renamed: dict[str, str] = {}
        for token in clashes:
            if token.startswith("#"):
                renamed[token] = self.name(condition.names[token])
            else:
                renamed[token] = self.value(condition.values[token])
        expression = _TOKEN_PATTERN.sub(
            lambda m: renamed.get(m.group(0), m.group(0)), condition.expression
        )
        return Condition(
            expression,
            {renamed.get(t, t): name for t, name in condition.names.items()},
            {renamed.get(t, t): value for t, value in condition.values.items()},
        )

    def _name(self, attribute: str) -> str:
        return self.name(attribute)

    def _value(self, attribute: str, value: AttributeValue, suffix: str = "") -> str:
        return self.value(value)

    def _resolve(self, token: str) -> tuple[str, Any]:
        if token.startswith("#"):
            return "name", self.names[token]
        return "value", self.values[token]


def _next_free(prefix: str, taken: Mapping[str, Any]) -> str:
    index = len(taken)
    while f"{prefix}{index}" in taken:
        index += 1
    return f"{prefix}{index}"
