"""Request and response types for the key-value store interface."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from .expressions import Condition
from .update import UpdateClauseSet
from .values import AttributeValue, Item


class ReturnValues(Enum):
    NONE = "NONE"
    ALL_OLD = "ALL_OLD"
    UPDATED_OLD = "UPDATED_OLD"
    ALL_NEW = "ALL_NEW"
    UPDATED_NEW = "UPDATED_NEW"


@dataclass
class GetItemRequest:
    table_name: str
    key: Item
    consistent_read: bool = False


@dataclass
class PutItemRequest:
    table_name: str
    item: Item
    condition_expression: str | None = None
    names: dict[str, str] = field(default_factory=dict)
    values: dict[str, AttributeValue] = field(default_factory=dict)

    @classmethod
    def guarded(cls, table_name: str, item: Item, condition: Condition | None) -> PutItemRequest:
        if condition is None:
            return cls(table_name, item)
        return cls(table_name, item, condition.expression, dict(condition.names), dict(condition.values))


@dataclass
class UpdateItemRequest:
    table_name: str
    key: Item
    update_expression: str
    condition_expression: str | None = None
    names: dict[str, str] = field(default_factory=dict)
    values: dict[str, AttributeValue] = field(default_factory=dict)
    return_values: ReturnValues = ReturnValues.NONE

    @classmethod
    def from_clauses(
        cls,
        table_name: str,
        key: Item,
        update: UpdateClauseSet,
        return_values: ReturnValues = ReturnValues.NONE,
    ) -> UpdateItemRequest:
        """Build from a clause set, carrying its guard condition if any."""
        condition = update.condition
        return cls(
            table_name=table_name,
            key=key,
            update_expression=update.build(),
            condition_expression=condition.expression if condition else None,
            names=dict(update.names),
            values=dict(update.values),
            return_values=return_values,
        )


@dataclass
class DeleteItemRequest:
    table_name: str
    key: Item
    condition_expression: str | None = None
    names: dict[str, str] = field(default_factory=dict)
    values: dict[str, AttributeValue] = field(default_factory=dict)


@dataclass
class QueryRequest:
    table_name: str
    key_condition_expression: str
    names: dict[str, str] = field(default_factory=dict)
    values: dict[str, AttributeValue] = field(default_factory=dict)
    limit: int | None = None
    scan_index_forward: bool = True
    exclusive_start_key: Item | None = None
    consistent_read: bool = False

    @classmethod
    def from_condition(cls, table_name: str, condition: Condition, **kwargs) -> QueryRequest:
        return cls(table_name, condition.expression, dict(condition.names), dict(condition.values), **kwargs)


@dataclass
class QueryPage:
    """One page of query results."""

    items: list[Item]
    last_evaluated_key: Item | None = None

    @property
    def has_more(self) -> bool:
        return bool(self.last_evaluated_key)


# Transaction members


@dataclass
class TransactPut:
    table_name: str
    item: Item
    condition_expression: str | None = None
    names: dict[str, str] = field(default_factory=dict)
    values: dict[str, AttributeValue] = field(default_factory=dict)


@dataclass
class TransactUpdate:
    table_name: str
    key: Item
    update_expression: str
    condition_expression: str | None = None
    names: dict[str, str] = field(default_factory=dict)
    values: dict[str, AttributeValue] = field(default_factory=dict)

    @classmethod
    def from_clauses(cls, table_name: str, key: Item, update: UpdateClauseSet) -> TransactUpdate:
        condition = update.condition
        return cls(
            table_name=table_name,
            key=key,
            update_expression=update.build(),
            condition_expression=condition.expression if condition else None,
            names=dict(update.names),
            values=dict(update.values),
        )


@dataclass
class TransactDelete:
    table_name: str
    key: Item
    condition_expression: str | None = None
    names: dict[str, str] = field(default_factory=dict)
    values: dict[str, AttributeValue] = field(default_factory=dict)


@dataclass
class TransactConditionCheck:
    table_name: str
    key: Item
    condition_expression: str
    names: dict[str, str] = field(default_factory=dict)
    values: dict[str, AttributeValue] = field(default_factory=dict)


TransactItem = Union[TransactPut, TransactUpdate, TransactDelete, TransactConditionCheck]


@dataclass
class TransactWriteRequest:
    items: list[TransactItem] = field(default_factory=list)
