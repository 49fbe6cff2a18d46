"""Update expression builder.

Clauses are collected per category and rendered in the fixed order
SET, REMOVE, ADD, DELETE. All placeholders come from one ExpressionSession,
so a guard condition built from the same session shares its tokens.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable

from .expressions import Condition, ExpressionSession
from .values import AttributeValue

_NAME_SEGMENT = re.compile(r"[A-Za-z_][^.\[\]]*")
_INDEX_SEGMENT = re.compile(r"\[(\d+)\]")


@dataclass(frozen=True)
class PathSegment:
    """One step of a document path: an attribute name or a list index."""

    name: str | None = None
    index: int | None = None

    @property
    def is_index(self) -> bool:
        return self.index is not None


def parse_path(path: str) -> list[PathSegment]:
    """Split a document path like 'a.b[2].c' into segments.

    Raises:
        ValueError: On an empty segment, unclosed bracket, non-numeric
            index or a path starting with an index.
    """
    if not path:
        raise ValueError("Path cannot be empty")

    segments: list[PathSegment] = []
    pos = 0
    expect_name = True
    while pos < len(path):
        if expect_name:
            match = _NAME_SEGMENT.match(path, pos)
            if match is None:
                raise ValueError(f"Expected attribute name at position {pos} in {path!r}")
            segments.append(PathSegment(name=match.group(0)))
            pos = match.end()
            expect_name = False
            continue

        char = path[pos]
        if char == ".":
            pos += 1
            expect_name = True
            if pos == len(path):
                raise ValueError(f"Path {path!r} ends with '.'")
        elif char == "[":
            match = _INDEX_SEGMENT.match(path, pos)
            if match is None:
                raise ValueError(f"Malformed list index at position {pos} in {path!r}")
            segments.append(PathSegment(index=int(match.group(1))))
            pos = match.end()
        else:
            raise ValueError(f"Unexpected {char!r} at position {pos} in {path!r}")

    return segments


def _require_amount(amount: Any) -> Any:
    if isinstance(amount, bool) or not isinstance(amount, (int, float, Decimal)):
        raise TypeError(f"Amount must be int, float or Decimal, got {type(amount).__name__}")
    return amount


def _strip_keyword(raw: str, keyword: str) -> str:
    text = raw.strip()
    if text.upper().startswith(keyword + " "):
        text = text[len(keyword) + 1:].strip()
    if not text:
        raise ValueError(f"Empty {keyword} clause")
    return text


class UpdateClauseSet:
    """Collects SET/REMOVE/ADD/DELETE clauses for one update request.

    Every mutator returns self, so calls can be chained:

        update = (
            UpdateClauseSet()
            .increment("MessageCount", 2)
            .set("UpdatedAt", now)
            .where(session_condition)
        )
    """

    def __init__(self, session: ExpressionSession | None = None):
        self.session = session or ExpressionSession()
        self._set: list[str] = []
        self._remove: list[str] = []
        self._add: list[str] = []
        self._delete: list[str] = []
        self.condition: Condition | None = None

    # SET

    def set(self, name: str, value: Any) -> UpdateClauseSet:
        s = self.session
        self._set.append(f"{s.name(name)} = {s.value(value)}")
        return self

    def set_expression(self, raw: str) -> UpdateClauseSet:
        self._set.append(_strip_keyword(raw, "SET"))
        return self

    def set_if_not_exists(self, name: str, default: Any) -> UpdateClauseSet:
        s = self.session
        token = s.name(name)
        self._set.append(f"{token} = if_not_exists({token}, {s.value(default)})")
        return self

    def set_list_append(
        self, name: str, values: Iterable[Any], append_to_end: bool = True
    ) -> UpdateClauseSet:
        s = self.session
        token = s.name(name)
        value = s.value(AttributeValue.list(AttributeValue.of(v) for v in values))
        if append_to_end:
            self._set.append(f"{token} = list_append({token}, {value})")
        else:
            self._set.append(f"{token} = list_append({value}, {token})")
        return self

    def increment(self, name: str, amount: int | float | Decimal = 1) -> UpdateClauseSet:
        """Add to an existing number. The update fails if the attribute is absent."""
        s = self.session
        token = s.name(name)
        self._set.append(f"{token} = {token} + {s.value(_require_amount(amount))}")
        return self

    def decrement(self, name: str, amount: int | float | Decimal = 1) -> UpdateClauseSet:
        s = self.session
        token = s.name(name)
        self._set.append(f"{token} = {token} - {s.value(_require_amount(amount))}")
        return self

    def accumulate(
        self, name: str, amount: int | float | Decimal, start: int | float | Decimal = 0
    ) -> UpdateClauseSet:
        """Increment, treating a missing attribute as start."""
        s = self.session
        token = s.name(name)
        start_token = s.value(_require_amount(start))
        amount_token = s.value(_require_amount(amount))
        self._set.append(f"{token} = if_not_exists({token}, {start_token}) + {amount_token}")
        return self

    def set_list_element(self, name: str, index: int, value: Any) -> UpdateClauseSet:
        if index < 0:
            raise ValueError(f"List index must be non-negative, got {index}")
        s = self.session
        self._set.append(f"{s.name(name)}[{index}] = {s.value(value)}")
        return self

    def set_path(self, path: str, value: Any) -> UpdateClauseSet:
        self._set.append(f"{self._render_path(path)} = {self.session.value(value)}")
        return self

    # REMOVE

    def remove(self, *names: str) -> UpdateClauseSet:
        if names:
            self._remove.append(", ".join(self.session.name(n) for n in names))
        return self

    def remove_list_element(self, name: str, index: int) -> UpdateClauseSet:
        if index < 0:
            raise ValueError(f"List index must be non-negative, got {index}")
        self._remove.append(f"{self.session.name(name)}[{index}]")
        return self

    def remove_path(self, path: str) -> UpdateClauseSet:
        self._remove.append(self._render_path(path))
        return self

    # ADD / DELETE

    def add(self, name: str, value: Any) -> UpdateClauseSet:
        """Numeric add or set union. Creates the attribute if absent."""
        s = self.session
        self._add.append(f"{s.name(name)} {s.value(value)}")
        return self

    def add_expression(self, raw: str) -> UpdateClauseSet:
        self._add.append(_strip_keyword(raw, "ADD"))
        return self

    def delete(self, name: str, values: Any) -> UpdateClauseSet:
        """Remove elements from a set attribute."""
        s = self.session
        self._delete.append(f"{s.name(name)} {s.value(values)}")
        return self

    def delete_expression(self, raw: str) -> UpdateClauseSet:
        self._delete.append(_strip_keyword(raw, "DELETE"))
        return self

    # Guard

    def where(self, condition: Condition) -> UpdateClauseSet:
        """Attach a condition that must hold for the update to apply.

        Tokens of a condition built outside the session that clash with
        session tokens are rebound, so any condition can be attached.
        """
        condition = self.session.adopt(condition)
        if self.condition is None:
            self.condition = condition
        else:
            self.condition = self.condition.and_(condition)
        return self

    # Output

    @property
    def names(self) -> dict[str, str]:
        return self.session.names

    @property
    def values(self) -> dict[str, AttributeValue]:
        return self.session.values

    @property
    def is_empty(self) -> bool:
        return not (self._set or self._remove or self._add or self._delete)

    def build(self) -> str:
        """Render the update expression.

        Raises:
            ValueError: If no clause was added.
        """
        if self.is_empty:
            raise ValueError("Update has no clauses")
        parts = []
        for keyword, fragments in (
            ("SET", self._set),
            ("REMOVE", self._remove),
            ("ADD", self._add),
            ("DELETE", self._delete),
        ):
            if fragments:
                parts.append(f"{keyword} {', '.join(fragments)}")
        return " ".join(parts)

    def _render_path(self, path: str) -> str:
        rendered = ""
        for segment in parse_path(path):
            if segment.is_index:
                rendered += f"[{segment.index}]"
            else:
                token = self.session.fresh_name(segment.name)
                rendered = f"{rendered}.{token}" if rendered else token
        return rendered
