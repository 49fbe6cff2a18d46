"""DynamoDB value model, expression builders and store adapters."""

from .client import MAX_TRANSACTION_ITEMS, KeyValueStore
from .errors import DynamoErrorCodes, is_conditional_failure, is_retryable, is_throttling
from .expressions import Condition, ExpressionSession, merge_maps
from .memory import InMemoryStore
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
from .update import UpdateClauseSet, parse_path
from .values import AttributeKind, AttributeValue, Item, format_number

__all__ = [
    "MAX_TRANSACTION_ITEMS",
    "AttributeKind",
    "AttributeValue",
    "Condition",
    "DeleteItemRequest",
    "DynamoErrorCodes",
    "ExpressionSession",
    "GetItemRequest",
    "InMemoryStore",
    "Item",
    "KeyValueStore",
    "PutItemRequest",
    "QueryPage",
    "QueryRequest",
    "ReturnValues",
    "TransactConditionCheck",
    "TransactDelete",
    "TransactPut",
    "TransactUpdate",
    "TransactWriteRequest",
    "UpdateClauseSet",
    "UpdateItemRequest",
    "format_number",
    "is_conditional_failure",
    "is_retryable",
    "is_throttling",
    "merge_maps",
    "parse_path",
]
