"""Evaluator for DynamoDB condition and update expressions.

Parses expression text into a small tree and evaluates it against an item,
resolving #name and :value placeholders from the request maps. Used by the
in-memory store.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum, auto
from functools import lru_cache
from typing import Iterator, Mapping, NoReturn, Union

from .values import AttributeKind, AttributeValue, Item, format_number


class ExpressionError(Exception):
    """An expression is malformed or cannot be applied to the item."""


class TokenType(Enum):
    NAME_REF = auto()
    VALUE_REF = auto()
    NUMBER = auto()
    IDENT = auto()
    OP = auto()
    END = auto()


@dataclass(frozen=True)
class Token:
    type: TokenType
    text: str
    pos: int


_TOKEN_PATTERN = re.compile(
    r"""
    (?P<NAME_REF>\#[A-Za-z0-9_]+)
    |(?P<VALUE_REF>:[A-Za-z0-9_]+)
    |(?P<NUMBER>\d+)
    |(?P<IDENT>[A-Za-z_][A-Za-z0-9_]*)
    |(?P<OP><>|<=|>=|[=<>()\[\],.+\-])
    |(?P<SKIP>\s+)
    |(?P<MISMATCH>.)
    """,
    re.VERBOSE,
)

KEYWORDS = frozenset({"AND", "OR", "NOT", "BETWEEN", "IN", "SET", "REMOVE", "ADD", "DELETE"})
CONDITION_FUNCTIONS = frozenset(
    {"attribute_exists", "attribute_not_exists", "attribute_type", "begins_with", "contains"}
)
COMPARATORS = frozenset({"=", "<>", "<", "<=", ">", ">="})


def tokenize(text: str) -> list[Token]:
    tokens = []
    for match in _TOKEN_PATTERN.finditer(text):
        kind = match.lastgroup
        if kind == "SKIP":
            continue
        if kind == "MISMATCH":
            raise ExpressionError(f"Unexpected character {match.group()!r} at position {match.start()}")
        tokens.append(Token(TokenType[kind], match.group(), match.start()))
    tokens.append(Token(TokenType.END, "", len(text)))
    return tokens


# Expression tree


@dataclass(frozen=True)
class Path:
    # Each segment is a name (placeholder or bare identifier) or a list index.
    segments: tuple[Union[str, int], ...]


@dataclass(frozen=True)
class ValueRef:
    token: str


@dataclass(frozen=True)
class Size:
    path: Path


@dataclass(frozen=True)
class Compare:
    op: str
    left: object
    right: object


@dataclass(frozen=True)
class Between:
    operand: object
    low: object
    high: object


@dataclass(frozen=True)
class In:
    operand: object
    options: tuple[object, ...]


@dataclass(frozen=True)
class Function:
    name: str
    args: tuple[object, ...]


@dataclass(frozen=True)
class BoolOp:
    op: str
    operands: tuple[object, ...]


@dataclass(frozen=True)
class Not:
    operand: object


@dataclass(frozen=True)
class Arithmetic:
    op: str
    left: object
    right: object


@dataclass(frozen=True)
class IfNotExists:
    path: Path
    default: object


@dataclass(frozen=True)
class ListAppend:
    first: object
    second: object


@dataclass(frozen=True)
class UpdatePlan:
    sets: tuple[tuple[Path, object], ...] = ()
    removes: tuple[Path, ...] = ()
    adds: tuple[tuple[Path, ValueRef], ...] = ()
    deletes: tuple[tuple[Path, ValueRef], ...] = ()


class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = tokenize(text)
        self.pos = 0

    def peek(self, offset: int = 0) -> Token:
        return self.tokens[min(self.pos + offset, len(self.tokens) - 1)]

    def advance(self) -> Token:
        token = self.tokens[self.pos]
        if token.type is not TokenType.END:
            self.pos += 1
        return token

    def at_op(self, text: str) -> bool:
        token = self.peek()
        return token.type is TokenType.OP and token.text == text

    def at_keyword(self, word: str) -> bool:
        token = self.peek()
        return token.type is TokenType.IDENT and token.text.upper() == word

    def expect_op(self, text: str) -> Token:
        if not self.at_op(text):
            self.fail(f"expected {text!r}")
        return self.advance()

    def expect_end(self) -> None:
        if self.peek().type is not TokenType.END:
            self.fail("unexpected trailing input")

    def fail(self, message: str) -> NoReturn:
        token = self.peek()
        found = token.text or "end of expression"
        raise ExpressionError(f"Syntax error in {self.text!r} at position {token.pos}: {message}, found {found!r}")

    # Shared pieces

    def path(self) -> Path:
        segments: list[Union[str, int]] = [self._path_name()]
        while True:
            if self.at_op("."):
                self.advance()
                segments.append(self._path_name())
            elif self.at_op("["):
                self.advance()
                if self.peek().type is not TokenType.NUMBER:
                    self.fail("expected list index")
                index = int(self.advance().text)
                self.expect_op("]")
                segments.append(index)
            else:
                return Path(tuple(segments))

    def _path_name(self) -> str:
        token = self.peek()
        if token.type is TokenType.NAME_REF:
            return self.advance().text
        if token.type is TokenType.IDENT and token.text.upper() not in KEYWORDS:
            return self.advance().text
        self.fail("expected attribute name")

    def value_ref(self) -> ValueRef:
        token = self.peek()
        if token.type is not TokenType.VALUE_REF:
            self.fail("expected value placeholder")
        return ValueRef(self.advance().text)

    # Conditions

    def condition(self) -> object:
        operands = [self._and()]
        while self.at_keyword("OR"):
            self.advance()
            operands.append(self._and())
        return operands[0] if len(operands) == 1 else BoolOp("OR", tuple(operands))

    def _and(self) -> object:
        operands = [self._not()]
        while self.at_keyword("AND"):
            self.advance()
            operands.append(self._not())
        return operands[0] if len(operands) == 1 else BoolOp("AND", tuple(operands))

    def _not(self) -> object:
        if self.at_keyword("NOT"):
            self.advance()
            return Not(self._not())
        return self._primary()

    def _primary(self) -> object:
        if self.at_op("("):
            self.advance()
            inner = self.condition()
            self.expect_op(")")
            return inner

        token = self.peek()
        if (
            token.type is TokenType.IDENT
            and token.text in CONDITION_FUNCTIONS
            and self.peek(1).text == "("
        ):
            return self._function()

        left = self._operand()
        if self.at_keyword("BETWEEN"):
            self.advance()
            low = self._operand()
            if not self.at_keyword("AND"):
                self.fail("expected AND in BETWEEN")
            self.advance()
            return Between(left, low, self._operand())
        if self.at_keyword("IN"):
            self.advance()
            self.expect_op("(")
            options = [self._operand()]
            while self.at_op(","):
                self.advance()
                options.append(self._operand())
            self.expect_op(")")
            return In(left, tuple(options))

        token = self.peek()
        if token.type is not TokenType.OP or token.text not in COMPARATORS:
            self.fail("expected comparison")
        op = self.advance().text
        return Compare(op, left, self._operand())

    def _function(self) -> Function:
        name = self.advance().text
        self.expect_op("(")
        args: list[object] = [self.path()]
        if name in ("attribute_type", "begins_with", "contains"):
            self.expect_op(",")
            args.append(self._operand())
        self.expect_op(")")
        return Function(name, tuple(args))

    def _operand(self) -> object:
        token = self.peek()
        if token.type is TokenType.VALUE_REF:
            return self.value_ref()
        if token.type is TokenType.IDENT and token.text == "size" and self.peek(1).text == "(":
            self.advance()
            self.expect_op("(")
            path = self.path()
            self.expect_op(")")
            return Size(path)
        return self.path()

    # Updates

    def update(self) -> UpdatePlan:
        sets: list[tuple[Path, object]] = []
        removes: list[Path] = []
        adds: list[tuple[Path, ValueRef]] = []
        deletes: list[tuple[Path, ValueRef]] = []
        seen: set[str] = set()

        if self.peek().type is TokenType.END:
            self.fail("expected update clause")

        while self.peek().type is not TokenType.END:
            token = self.peek()
            keyword = token.text.upper() if token.type is TokenType.IDENT else ""
            if keyword not in ("SET", "REMOVE", "ADD", "DELETE"):
                self.fail("expected SET, REMOVE, ADD or DELETE")
            if keyword in seen:
                self.fail(f"{keyword} clause repeated")
            seen.add(keyword)
            self.advance()

            while True:
                if keyword == "SET":
                    path = self.path()
                    self.expect_op("=")
                    sets.append((path, self._set_value()))
                elif keyword == "REMOVE":
                    removes.append(self.path())
                elif keyword == "ADD":
                    adds.append((self.path(), self.value_ref()))
                else:
                    deletes.append((self.path(), self.value_ref()))
                if not self.at_op(","):
                    break
                self.advance()

        return UpdatePlan(tuple(sets), tuple(removes), tuple(adds), tuple(deletes))

    def _set_value(self) -> object:
        left = self._set_operand()
        if self.at_op("+") or self.at_op("-"):
            op = self.advance().text
            return Arithmetic(op, left, self._set_operand())
        return left

    def _set_operand(self) -> object:
        token = self.peek()
        if token.type is TokenType.IDENT and self.peek(1).text == "(":
            if token.text == "if_not_exists":
                self.advance()
                self.expect_op("(")
                path = self.path()
                self.expect_op(",")
                default = self._set_operand()
                self.expect_op(")")
                return IfNotExists(path, default)
            if token.text == "list_append":
                self.advance()
                self.expect_op("(")
                first = self._set_operand()
                self.expect_op(",")
                second = self._set_operand()
                self.expect_op(")")
                return ListAppend(first, second)
            self.fail(f"unknown function {token.text}")
        if token.type is TokenType.VALUE_REF:
            return self.value_ref()
        return self.path()


@lru_cache(maxsize=512)
def parse_condition(text: str) -> object:
    parser = _Parser(text)
    tree = parser.condition()
    parser.expect_end()
    return tree


@lru_cache(maxsize=512)
def parse_update(text: str) -> UpdatePlan:
    parser = _Parser(text)
    return parser.update()


# Evaluation


class _Context:
    def __init__(self, names: Mapping[str, str], values: Mapping[str, AttributeValue]):
        self.names = names
        self.values = values

    def name(self, segment: str) -> str:
        if not segment.startswith("#"):
            return segment
        try:
            return self.names[segment]
        except KeyError:
            raise ExpressionError(f"An expression attribute name used in the document path is not defined: {segment}") from None

    def value(self, ref: ValueRef) -> AttributeValue:
        try:
            return self.values[ref.token]
        except KeyError:
            raise ExpressionError(f"An expression attribute value used in expression is not defined: {ref.token}") from None

    def resolve(self, path: Path) -> tuple[Union[str, int], ...]:
        return tuple(s if isinstance(s, int) else self.name(s) for s in path.segments)


def _lookup(item: Mapping[str, AttributeValue], segments: tuple[Union[str, int], ...]) -> AttributeValue | None:
    first = segments[0]
    if isinstance(first, int):
        return None
    current = item.get(first)
    for segment in segments[1:]:
        if current is None:
            return None
        if isinstance(segment, int):
            if current.kind is not AttributeKind.L or segment >= len(current.value):
                return None
            current = current.value[segment]
        else:
            if current.kind is not AttributeKind.M:
                return None
            current = current.value.get(segment)
    return current


def _sort_value(value: AttributeValue):
    if value.kind is AttributeKind.N:
        return Decimal(value.value)
    return value.value


def _same_value(a: AttributeValue, b: AttributeValue) -> bool:
    if a.kind is not b.kind:
        return False
    if a.kind is AttributeKind.N:
        return Decimal(a.value) == Decimal(b.value)
    if a.kind is AttributeKind.NS:
        return {Decimal(v) for v in a.value} == {Decimal(v) for v in b.value}
    return a == b


def _ordered(op: str, a: AttributeValue, b: AttributeValue) -> bool:
    if a.kind is not b.kind or a.kind not in (AttributeKind.S, AttributeKind.N, AttributeKind.B):
        return False
    left, right = _sort_value(a), _sort_value(b)
    if op == "<":
        return left < right
    if op == "<=":
        return left <= right
    if op == ">":
        return left > right
    return left >= right


def _size(value: AttributeValue | None) -> AttributeValue | None:
    if value is None:
        return None
    if value.kind in (AttributeKind.S, AttributeKind.B, AttributeKind.SS, AttributeKind.NS,
                      AttributeKind.BS, AttributeKind.L, AttributeKind.M):
        return AttributeValue.number(len(value.value))
    return None


def _contains(container: AttributeValue | None, needle: AttributeValue | None) -> bool:
    if container is None or needle is None:
        return False
    kind = container.kind
    if kind is AttributeKind.S and needle.kind is AttributeKind.S:
        return needle.value in container.value
    if kind is AttributeKind.B and needle.kind is AttributeKind.B:
        return needle.value in container.value
    if kind is AttributeKind.SS and needle.kind is AttributeKind.S:
        return needle.value in container.value
    if kind is AttributeKind.NS and needle.kind is AttributeKind.N:
        return Decimal(needle.value) in {Decimal(v) for v in container.value}
    if kind is AttributeKind.BS and needle.kind is AttributeKind.B:
        return needle.value in container.value
    if kind is AttributeKind.L:
        return any(_same_value(element, needle) for element in container.value)
    return False


def _begins_with(value: AttributeValue | None, prefix: AttributeValue | None) -> bool:
    if value is None or prefix is None or value.kind is not prefix.kind:
        return False
    if value.kind in (AttributeKind.S, AttributeKind.B):
        return value.value.startswith(prefix.value)
    return False


class _ConditionEvaluator:
    def __init__(self, item: Mapping[str, AttributeValue], ctx: _Context):
        self.item = item
        self.ctx = ctx

    def operand(self, node: object) -> AttributeValue | None:
        if isinstance(node, ValueRef):
            return self.ctx.value(node)
        if isinstance(node, Size):
            return _size(_lookup(self.item, self.ctx.resolve(node.path)))
        if isinstance(node, Path):
            return _lookup(self.item, self.ctx.resolve(node))
        raise ExpressionError(f"Invalid operand: {node!r}")

    def evaluate(self, node: object) -> bool:
        if isinstance(node, BoolOp):
            results = [self.evaluate(operand) for operand in node.operands]
            return all(results) if node.op == "AND" else any(results)
        if isinstance(node, Not):
            return not self.evaluate(node.operand)
        if isinstance(node, Compare):
            left, right = self.operand(node.left), self.operand(node.right)
            if left is None or right is None:
                return node.op == "<>"
            if node.op == "=":
                return _same_value(left, right)
            if node.op == "<>":
                return not _same_value(left, right)
            return _ordered(node.op, left, right)
        if isinstance(node, Between):
            value, low, high = (self.operand(n) for n in (node.operand, node.low, node.high))
            if value is None or low is None or high is None:
                return False
            return _ordered(">=", value, low) and _ordered("<=", value, high)
        if isinstance(node, In):
            value = self.operand(node.operand)
            if value is None:
                return False
            return any(
                option is not None and _same_value(value, option)
                for option in (self.operand(o) for o in node.options)
            )
        if isinstance(node, Function):
            return self._function(node)
        raise ExpressionError(f"Invalid condition node: {node!r}")

    def _function(self, node: Function) -> bool:
        target = _lookup(self.item, self.ctx.resolve(node.args[0]))
        if node.name == "attribute_exists":
            return target is not None
        if node.name == "attribute_not_exists":
            return target is None
        argument = self.operand(node.args[1])
        if node.name == "attribute_type":
            if argument is None or argument.kind is not AttributeKind.S:
                raise ExpressionError("attribute_type requires a string type code")
            return target is not None and target.kind.value == argument.value
        if node.name == "begins_with":
            return _begins_with(target, argument)
        return _contains(target, argument)


def evaluate_condition(
    expression: str,
    item: Mapping[str, AttributeValue] | None,
    names: Mapping[str, str],
    values: Mapping[str, AttributeValue],
) -> bool:
    """Evaluate a condition expression against an item (None means absent)."""
    tree = parse_condition(expression)
    return _ConditionEvaluator(item or {}, _Context(names, values)).evaluate(tree)


# Updates


def _set_in(current: AttributeValue | None, segments, new: AttributeValue) -> AttributeValue:
    segment = segments[0]
    rest = segments[1:]
    if isinstance(segment, int):
        if current is None or current.kind is not AttributeKind.L:
            raise ExpressionError("The document path provided in the update expression is invalid for update")
        elements = list(current.value)
        if not rest:
            if segment < len(elements):
                elements[segment] = new
            else:
                elements.append(new)
        else:
            if segment >= len(elements):
                raise ExpressionError("The document path provided in the update expression is invalid for update")
            elements[segment] = _set_in(elements[segment], rest, new)
        return AttributeValue.list(elements)

    if current is None or current.kind is not AttributeKind.M:
        raise ExpressionError("The document path provided in the update expression is invalid for update")
    entries = dict(current.value)
    if not rest:
        entries[segment] = new
    else:
        entries[segment] = _set_in(entries.get(segment), rest, new)
    return AttributeValue.map(entries)


def _remove_in(current: AttributeValue | None, segments) -> AttributeValue | None:
    if current is None:
        return None
    segment = segments[0]
    rest = segments[1:]
    if isinstance(segment, int):
        if current.kind is not AttributeKind.L or segment >= len(current.value):
            return current
        elements = list(current.value)
        if rest:
            elements[segment] = _remove_in(elements[segment], rest) or elements[segment]
        else:
            del elements[segment]
        return AttributeValue.list(elements)
    if current.kind is not AttributeKind.M or segment not in current.value:
        return current
    entries = dict(current.value)
    if rest:
        entries[segment] = _remove_in(entries[segment], rest) or entries[segment]
    else:
        del entries[segment]
    return AttributeValue.map(entries)


def _assign(item: Item, segments, new: AttributeValue) -> None:
    head, rest = segments[0], segments[1:]
    if not rest:
        item[head] = new
        return
    item[head] = _set_in(item.get(head), rest, new)


def _number(value: AttributeValue | None, what: str) -> Decimal:
    if value is None:
        raise ExpressionError(f"The provided expression refers to an attribute that does not exist in the item: {what}")
    if value.kind is not AttributeKind.N:
        raise ExpressionError("An operand in the update expression has an incorrect data type")
    return Decimal(value.value)


class _UpdateEvaluator:
    def __init__(self, item: Mapping[str, AttributeValue], ctx: _Context):
        self.item = item
        self.ctx = ctx

    def value(self, node: object) -> AttributeValue:
        if isinstance(node, ValueRef):
            return self.ctx.value(node)
        if isinstance(node, Path):
            found = _lookup(self.item, self.ctx.resolve(node))
            if found is None:
                raise ExpressionError(
                    "The provided expression refers to an attribute that does not exist in the item"
                )
            return found
        if isinstance(node, IfNotExists):
            found = _lookup(self.item, self.ctx.resolve(node.path))
            return found if found is not None else self.value(node.default)
        if isinstance(node, ListAppend):
            first, second = self.value(node.first), self.value(node.second)
            if first.kind is not AttributeKind.L or second.kind is not AttributeKind.L:
                raise ExpressionError("list_append requires two lists")
            return AttributeValue.list(first.value + second.value)
        if isinstance(node, Arithmetic):
            left = _number(self.value_or_none(node.left), repr(node.left))
            right = _number(self.value_or_none(node.right), repr(node.right))
            result = left + right if node.op == "+" else left - right
            return AttributeValue.number(format_number(result))
        raise ExpressionError(f"Invalid update operand: {node!r}")

    def value_or_none(self, node: object) -> AttributeValue | None:
        if isinstance(node, Path):
            return _lookup(self.item, self.ctx.resolve(node))
        return self.value(node)


def _add(existing: AttributeValue | None, operand: AttributeValue) -> AttributeValue:
    if operand.kind is AttributeKind.N:
        base = Decimal(0) if existing is None else _number(existing, "ADD")
        return AttributeValue.number(format_number(base + Decimal(operand.value)))
    if operand.kind in (AttributeKind.SS, AttributeKind.NS, AttributeKind.BS):
        if existing is None:
            return operand
        if existing.kind is not operand.kind:
            raise ExpressionError("An operand in the update expression has an incorrect data type")
        return AttributeValue(operand.kind, existing.value | operand.value)
    raise ExpressionError("ADD only supports numbers and sets")


def _delete(existing: AttributeValue | None, operand: AttributeValue) -> AttributeValue | None:
    if operand.kind not in (AttributeKind.SS, AttributeKind.NS, AttributeKind.BS):
        raise ExpressionError("DELETE only supports sets")
    if existing is None:
        return None
    if existing.kind is not operand.kind:
        raise ExpressionError("An operand in the update expression has an incorrect data type")
    remaining = existing.value - operand.value
    return AttributeValue(existing.kind, remaining) if remaining else None


def _remove_order(segments) -> tuple:
    # Higher list indices first so earlier removals do not shift later ones.
    return tuple(-s if isinstance(s, int) else 0 for s in segments)


def apply_update(
    expression: str,
    item: Mapping[str, AttributeValue] | None,
    names: Mapping[str, str],
    values: Mapping[str, AttributeValue],
) -> Item:
    """Apply an update expression, returning the new item.

    All right-hand sides are evaluated against the item as it was before
    the update.
    """
    plan = parse_update(expression)
    ctx = _Context(names, values)
    before: Item = dict(item or {})
    evaluator = _UpdateEvaluator(before, ctx)
    result: Item = dict(before)

    touched = [ctx.resolve(p) for p, _ in plan.sets] + [ctx.resolve(p) for p in plan.removes]
    touched += [ctx.resolve(p) for p, _ in plan.adds] + [ctx.resolve(p) for p, _ in plan.deletes]
    _check_overlaps(touched)

    assignments = [(ctx.resolve(path), evaluator.value(node)) for path, node in plan.sets]
    for segments, new in assignments:
        _assign(result, segments, new)

    for segments in sorted((ctx.resolve(p) for p in plan.removes), key=_remove_order):
        head, rest = segments[0], segments[1:]
        if not rest:
            result.pop(head, None)
        elif head in result:
            updated = _remove_in(result[head], rest)
            if updated is not None:
                result[head] = updated

    for path, ref in plan.adds:
        segments = ctx.resolve(path)
        if len(segments) != 1:
            raise ExpressionError("ADD only supports top-level attributes")
        result[segments[0]] = _add(result.get(segments[0]), ctx.value(ref))

    for path, ref in plan.deletes:
        segments = ctx.resolve(path)
        if len(segments) != 1:
            raise ExpressionError("DELETE only supports top-level attributes")
        remaining = _delete(result.get(segments[0]), ctx.value(ref))
        if remaining is None:
            result.pop(segments[0], None)
        else:
            result[segments[0]] = remaining

    return result


def _check_overlaps(paths: list[tuple]) -> None:
    for i, first in enumerate(paths):
        for second in paths[i + 1:]:
            shorter = min(len(first), len(second))
            if first[:shorter] == second[:shorter]:
                raise ExpressionError(
                    f"Two document paths overlap with each other: {_render(first)} and {_render(second)}"
                )


def _render(segments) -> str:
    out = ""
    for s in segments:
        out += f"[{s}]" if isinstance(s, int) else (f".{s}" if out else s)
    return out


def iter_paths(expression: str) -> Iterator[tuple]:
    """Yield the raw path segments an update expression writes to."""
    plan = parse_update(expression)
    for path, _ in plan.sets:
        yield path.segments
    for path in plan.removes:
        yield path.segments
    for path, _ in plan.adds:
        yield path.segments
    for path, _ in plan.deletes:
        yield path.segments
