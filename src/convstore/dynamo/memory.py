"""In-memory KeyValueStore with DynamoDB expression semantics.

Tables are created on first use and share one key schema. Writes are
applied only after every condition passes; transactions apply all members
or none.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Mapping

from ..errors import StoreResult
from .client import MAX_TRANSACTION_ITEMS, KeyValueStore
from .errors import service_error
from .evaluator import ExpressionError, apply_update, evaluate_condition, iter_paths
from .expressions import referenced_tokens
from .requests import (
    DeleteItemRequest,
    GetItemRequest,
    PutItemRequest,
    QueryPage,
    QueryRequest,
    ReturnValues,
    TransactConditionCheck,
    TransactDelete,
    TransactPut,
    TransactUpdate,
    TransactWriteRequest,
    UpdateItemRequest,
)
from .values import AttributeKind, AttributeValue, Item

logger = logging.getLogger(__name__)

_KEY_KINDS = (AttributeKind.S, AttributeKind.N, AttributeKind.B)


class _Rejected(Exception):
    """Request rejected before any write; carries the service error name."""

    def __init__(self, error_name: str, message: str, **details: Any) -> None:
        super().__init__(message)
        self.error_name = error_name
        self.details = details


def _validation(message: str) -> _Rejected:
    return _Rejected("ValidationException", message)


def _check_placeholders(
    expressions: list[str | None], names: Mapping[str, str], values: Mapping[str, AttributeValue]
) -> None:
    used: set[str] = set()
    for expression in expressions:
        if expression:
            used |= referenced_tokens(expression)
    unused_names = sorted(set(names) - used)
    if unused_names:
        raise _validation(f"Value provided in ExpressionAttributeNames unused in expressions: keys: {{{', '.join(unused_names)}}}")
    unused_values = sorted(set(values) - used)
    if unused_values:
        raise _validation(f"Value provided in ExpressionAttributeValues unused in expressions: keys: {{{', '.join(unused_values)}}}")


class InMemoryStore(KeyValueStore):
    """Dict-backed store for tests and local runs."""

    def __init__(
        self,
        partition_key_name: str = "PK",
        sort_key_name: str | None = "SK",
        max_transaction_items: int = MAX_TRANSACTION_ITEMS,
    ) -> None:
        self.partition_key_name = partition_key_name
        self.sort_key_name = sort_key_name
        self._max_transaction_items = max_transaction_items
        self.tables: dict[str, dict[tuple, Item]] = {}

    @property
    def max_transaction_items(self) -> int:
        return self._max_transaction_items

    # Helpers

    def _table(self, name: str) -> dict[tuple, Item]:
        return self.tables.setdefault(name, {})

    def _key_of(self, item: Mapping[str, AttributeValue], *, exact: bool) -> tuple:
        names = [self.partition_key_name]
        if self.sort_key_name:
            names.append(self.sort_key_name)
        if exact and set(item) != set(names):
            raise _validation("The provided key element does not match the schema")
        parts = []
        for name in names:
            value = item.get(name)
            if value is None or value.kind not in _KEY_KINDS:
                raise _validation(f"Missing or invalid key attribute {name}")
            parts.append((value.kind.value, value.value))
        return tuple(parts)

    def _check_condition(
        self, expression: str | None, item: Item | None, names, values
    ) -> bool:
        if not expression:
            return True
        try:
            return evaluate_condition(expression, item, names, values)
        except ExpressionError as e:
            raise _validation(str(e)) from e

    def _updated(self, request, current: Item | None, key: Item) -> Item:
        key_names = {self.partition_key_name, self.sort_key_name}
        for segments in iter_paths(request.update_expression):
            head = segments[0]
            head = request.names.get(head, head) if isinstance(head, str) else head
            if head in key_names:
                raise _validation(f"Cannot update attribute {head}. This attribute is part of the key")
        try:
            base = current if current is not None else dict(key)
            return apply_update(request.update_expression, base, request.names, request.values)
        except ExpressionError as e:
            raise _validation(str(e)) from e

    def _failure(self, rejected: _Rejected) -> StoreResult:
        logger.debug("In-memory store rejected request: %s", rejected)
        return StoreResult.failure(service_error(rejected.error_name, str(rejected), **rejected.details))

    # KeyValueStore

    async def get_item(self, request: GetItemRequest) -> StoreResult[Item | None]:
        await asyncio.sleep(0)
        try:
            key = self._key_of(request.key, exact=True)
        except _Rejected as e:
            return self._failure(e)
        item = self._table(request.table_name).get(key)
        return StoreResult.success(dict(item) if item is not None else None)

    async def put_item(self, request: PutItemRequest) -> StoreResult[None]:
        await asyncio.sleep(0)
        try:
            _check_placeholders([request.condition_expression], request.names, request.values)
            key = self._key_of(request.item, exact=False)
            table = self._table(request.table_name)
            if not self._check_condition(
                request.condition_expression, table.get(key), request.names, request.values
            ):
                raise _Rejected("ConditionalCheckFailedException", "The conditional request failed")
        except _Rejected as e:
            return self._failure(e)
        table[key] = dict(request.item)
        return StoreResult.success(None)

    async def update_item(self, request: UpdateItemRequest) -> StoreResult[Item | None]:
        await asyncio.sleep(0)
        try:
            _check_placeholders(
                [request.update_expression, request.condition_expression], request.names, request.values
            )
            key = self._key_of(request.key, exact=True)
            table = self._table(request.table_name)
            current = table.get(key)
            if not self._check_condition(
                request.condition_expression, current, request.names, request.values
            ):
                raise _Rejected("ConditionalCheckFailedException", "The conditional request failed")
            updated = self._updated(request, current, request.key)
        except _Rejected as e:
            return self._failure(e)

        table[key] = updated
        return StoreResult.success(_return_values(request.return_values, current, updated))

    async def delete_item(self, request: DeleteItemRequest) -> StoreResult[None]:
        await asyncio.sleep(0)
        try:
            _check_placeholders([request.condition_expression], request.names, request.values)
            key = self._key_of(request.key, exact=True)
            table = self._table(request.table_name)
            if not self._check_condition(
                request.condition_expression, table.get(key), request.names, request.values
            ):
                raise _Rejected("ConditionalCheckFailedException", "The conditional request failed")
        except _Rejected as e:
            return self._failure(e)
        table.pop(key, None)
        return StoreResult.success(None)

    async def query(self, request: QueryRequest) -> StoreResult[QueryPage]:
        await asyncio.sleep(0)
        if request.limit is not None and request.limit < 1:
            return self._failure(_validation("Limit must be greater than or equal to 1"))
        try:
            _check_placeholders([request.key_condition_expression], request.names, request.values)
            matches = [
                item
                for item in self._table(request.table_name).values()
                if self._check_condition(
                    request.key_condition_expression, item, request.names, request.values
                )
            ]
            start = (
                self._key_of(request.exclusive_start_key, exact=True)
                if request.exclusive_start_key
                else None
            )
        except _Rejected as e:
            return self._failure(e)

        matches.sort(key=self._sort_position, reverse=not request.scan_index_forward)
        if start is not None:
            keys = [self._key_of(item, exact=False) for item in matches]
            if start in keys:
                matches = matches[keys.index(start) + 1:]
            elif self.sort_key_name:
                start_position = _position(start[-1])
                if request.scan_index_forward:
                    matches = [i for i in matches if self._sort_position(i) > start_position]
                else:
                    matches = [i for i in matches if self._sort_position(i) < start_position]
            else:
                matches = []

        page = matches if request.limit is None else matches[: request.limit]
        last_key = None
        # Only report a continuation key when items remain.
        if len(page) < len(matches):
            last_key = self._extract_key(page[-1])
        return StoreResult.success(QueryPage(items=[dict(i) for i in page], last_evaluated_key=last_key))

    async def transact_write(self, request: TransactWriteRequest) -> StoreResult[None]:
        await asyncio.sleep(0)
        members = request.items
        if len(members) > self.max_transaction_items:
            raise ValueError(
                f"Transaction has {len(members)} items, limit is {self.max_transaction_items}"
            )
        try:
            if not members:
                raise _validation("TransactItems must contain at least one item")
            writes = self._plan_transaction(members)
        except _Rejected as e:
            return self._failure(e)

        for table_name, key, new_item in writes:
            table = self._table(table_name)
            if new_item is None:
                table.pop(key, None)
            else:
                table[key] = new_item
        return StoreResult.success(None)

    def _plan_transaction(self, members) -> list[tuple[str, tuple, Item | None]]:
        """Check every member against current state and compute the writes."""
        seen: set[tuple] = set()
        reasons: list[str] = []
        writes: list[tuple[str, tuple, Item | None]] = []

        for member in members:
            expressions = [member.condition_expression]
            if isinstance(member, TransactUpdate):
                expressions.append(member.update_expression)
            _check_placeholders(expressions, member.names, member.values)

            if isinstance(member, TransactPut):
                key = self._key_of(member.item, exact=False)
            else:
                key = self._key_of(member.key, exact=True)
            table_key = (member.table_name, key)
            if table_key in seen:
                raise _validation("Transaction request cannot include multiple operations on one item")
            seen.add(table_key)

            current = self._table(member.table_name).get(key)
            if not self._check_condition(
                member.condition_expression, current, member.names, member.values
            ):
                reasons.append("ConditionalCheckFailed")
                continue

            if isinstance(member, TransactPut):
                writes.append((member.table_name, key, dict(member.item)))
            elif isinstance(member, TransactUpdate):
                try:
                    writes.append((member.table_name, key, self._updated(member, current, member.key)))
                except _Rejected:
                    reasons.append("ValidationError")
                    continue
            elif isinstance(member, TransactDelete):
                writes.append((member.table_name, key, None))
            elif not isinstance(member, TransactConditionCheck):
                raise TypeError(f"Unsupported transaction member: {type(member).__name__}")
            reasons.append("None")

        if any(reason != "None" for reason in reasons):
            raise _Rejected(
                "TransactionCanceledException",
                f"Transaction cancelled, please refer cancellation reasons for specific reasons [{', '.join(reasons)}]",
                cancellation_reasons=reasons,
            )
        return writes

    def _sort_position(self, item: Mapping[str, AttributeValue]):
        if not self.sort_key_name:
            return 0
        return _position(
            (item[self.sort_key_name].kind.value, item[self.sort_key_name].value)
        )

    def _extract_key(self, item: Mapping[str, AttributeValue]) -> Item:
        names = [self.partition_key_name] + ([self.sort_key_name] if self.sort_key_name else [])
        return {name: item[name] for name in names}


def _position(part: tuple[str, Any]):
    kind, value = part
    if kind == AttributeKind.N.value:
        return Decimal(value)
    return value


def _return_values(mode: ReturnValues, old: Item | None, new: Item) -> Item | None:
    if mode is ReturnValues.NONE:
        return None
    if mode is ReturnValues.ALL_NEW:
        return dict(new)
    if mode is ReturnValues.ALL_OLD:
        return dict(old) if old else None
    old = old or {}
    changed = {name for name in set(old) | set(new) if old.get(name) != new.get(name)}
    source = new if mode is ReturnValues.UPDATED_NEW else old
    return {name: source[name] for name in changed if name in source} or None
