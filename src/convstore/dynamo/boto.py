"""KeyValueStore backed by the boto3 DynamoDB client.

boto3 is synchronous, so every call runs in the default executor.
Retries are left to botocore's retry configuration.
"""

import asyncio
import functools
import logging
from typing import Any, Mapping

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..config import AwsConfig
from ..errors import StoreResult
from .client import KeyValueStore
from .errors import map_client_error, transport_error
from .requests import (
    DeleteItemRequest,
    GetItemRequest,
    PutItemRequest,
    QueryPage,
    QueryRequest,
    TransactConditionCheck,
    TransactDelete,
    TransactItem,
    TransactPut,
    TransactUpdate,
    TransactWriteRequest,
    UpdateItemRequest,
)
from .values import AttributeKind, AttributeValue, Item, item_from_wire

logger = logging.getLogger(__name__)


def to_boto_value(value: AttributeValue) -> dict[str, Any]:
    """Render a value for the low-level client, which takes raw bytes for binaries."""
    if value.kind is AttributeKind.B:
        return {"B": value.value}
    if value.kind is AttributeKind.BS:
        return {"BS": sorted(value.value)}
    if value.kind is AttributeKind.M:
        return {"M": {k: to_boto_value(v) for k, v in value.value.items()}}
    if value.kind is AttributeKind.L:
        return {"L": [to_boto_value(v) for v in value.value]}
    return value.to_wire()


def to_boto_item(item: Mapping[str, AttributeValue]) -> dict[str, Any]:
    return {name: to_boto_value(value) for name, value in item.items()}


def _expression_kwargs(
    condition_expression: str | None,
    names: Mapping[str, str],
    values: Mapping[str, AttributeValue],
) -> dict[str, Any]:
    kwargs: dict[str, Any] = {}
    if condition_expression:
        kwargs["ConditionExpression"] = condition_expression
    if names:
        kwargs["ExpressionAttributeNames"] = dict(names)
    if values:
        kwargs["ExpressionAttributeValues"] = to_boto_item(values)
    return kwargs


def _transact_member(member: TransactItem) -> dict[str, Any]:
    exprs = _expression_kwargs(member.condition_expression, member.names, member.values)
    if isinstance(member, TransactPut):
        return {"Put": {"TableName": member.table_name, "Item": to_boto_item(member.item), **exprs}}
    if isinstance(member, TransactUpdate):
        return {
            "Update": {
                "TableName": member.table_name,
                "Key": to_boto_item(member.key),
                "UpdateExpression": member.update_expression,
                **exprs,
            }
        }
    if isinstance(member, TransactDelete):
        return {"Delete": {"TableName": member.table_name, "Key": to_boto_item(member.key), **exprs}}
    if isinstance(member, TransactConditionCheck):
        return {
            "ConditionCheck": {"TableName": member.table_name, "Key": to_boto_item(member.key), **exprs}
        }
    raise TypeError(f"Unsupported transaction member: {type(member).__name__}")


class BotoDynamoStore(KeyValueStore):
    """DynamoDB store using a boto3 low-level client.

    The client is created lazily from AwsConfig unless one is injected.
    """

    def __init__(self, client: Any | None = None, aws_config: AwsConfig | None = None) -> None:
        self.aws_config = aws_config or AwsConfig()
        self._client = client

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client

        cfg = self.aws_config
        session = boto3.session.Session(profile_name=cfg.profile_name)
        client_kwargs: dict[str, Any] = {
            "config": BotoConfig(
                retries={"max_attempts": cfg.max_attempts, "mode": cfg.retry_mode},
            ),
        }
        if cfg.region_name:
            client_kwargs["region_name"] = cfg.region_name
        if cfg.endpoint_url:
            client_kwargs["endpoint_url"] = cfg.endpoint_url
            logger.debug("Using DynamoDB endpoint %s", cfg.endpoint_url)

        self._client = session.client("dynamodb", **client_kwargs)
        return self._client

    async def _call(self, operation: str, **kwargs: Any) -> StoreResult[dict[str, Any]]:
        """Run one client operation in the executor and map its errors."""
        client = self._get_client()
        method = getattr(client, operation)
        logger.debug("DynamoDB %s on %s", operation, kwargs.get("TableName", "<transaction>"))

        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(None, functools.partial(method, **kwargs))
        except ClientError as e:
            error = map_client_error(e.response)
            logger.debug("DynamoDB %s failed: %s", operation, error)
            return StoreResult.failure(error)
        except BotoCoreError as e:
            logger.warning("DynamoDB %s transport error: %s", operation, e)
            return StoreResult.failure(transport_error(str(e)))
        return StoreResult.success(response)

    async def get_item(self, request: GetItemRequest) -> StoreResult[Item | None]:
        result = await self._call(
            "get_item",
            TableName=request.table_name,
            Key=to_boto_item(request.key),
            ConsistentRead=request.consistent_read,
        )
        if result.is_error:
            return StoreResult.failure(result.error)
        raw = result.value.get("Item")
        return StoreResult.success(item_from_wire(raw) if raw else None)

    async def put_item(self, request: PutItemRequest) -> StoreResult[None]:
        result = await self._call(
            "put_item",
            TableName=request.table_name,
            Item=to_boto_item(request.item),
            **_expression_kwargs(request.condition_expression, request.names, request.values),
        )
        if result.is_error:
            return StoreResult.failure(result.error)
        return StoreResult.success(None)

    async def update_item(self, request: UpdateItemRequest) -> StoreResult[Item | None]:
        result = await self._call(
            "update_item",
            TableName=request.table_name,
            Key=to_boto_item(request.key),
            UpdateExpression=request.update_expression,
            ReturnValues=request.return_values.value,
            **_expression_kwargs(request.condition_expression, request.names, request.values),
        )
        if result.is_error:
            return StoreResult.failure(result.error)
        raw = result.value.get("Attributes")
        return StoreResult.success(item_from_wire(raw) if raw else None)

    async def delete_item(self, request: DeleteItemRequest) -> StoreResult[None]:
        result = await self._call(
            "delete_item",
            TableName=request.table_name,
            Key=to_boto_item(request.key),
            **_expression_kwargs(request.condition_expression, request.names, request.values),
        )
        if result.is_error:
            return StoreResult.failure(result.error)
        return StoreResult.success(None)

    async def query(self, request: QueryRequest) -> StoreResult[QueryPage]:
        kwargs: dict[str, Any] = {
            "TableName": request.table_name,
            "KeyConditionExpression": request.key_condition_expression,
            "ScanIndexForward": request.scan_index_forward,
            "ConsistentRead": request.consistent_read,
        }
        if request.names:
            kwargs["ExpressionAttributeNames"] = dict(request.names)
        if request.values:
            kwargs["ExpressionAttributeValues"] = to_boto_item(request.values)
        if request.limit is not None:
            kwargs["Limit"] = request.limit
        if request.exclusive_start_key:
            kwargs["ExclusiveStartKey"] = to_boto_item(request.exclusive_start_key)

        result = await self._call("query", **kwargs)
        if result.is_error:
            return StoreResult.failure(result.error)

        response = result.value
        items = [item_from_wire(raw) for raw in response.get("Items", [])]
        last_key = response.get("LastEvaluatedKey")
        return StoreResult.success(
            QueryPage(items=items, last_evaluated_key=item_from_wire(last_key) if last_key else None)
        )

    async def transact_write(self, request: TransactWriteRequest) -> StoreResult[None]:
        if len(request.items) > self.max_transaction_items:
            raise ValueError(
                f"Transaction has {len(request.items)} items, limit is {self.max_transaction_items}"
            )
        result = await self._call(
            "transact_write_items",
            TransactItems=[_transact_member(m) for m in request.items],
        )
        if result.is_error:
            return StoreResult.failure(result.error)
        return StoreResult.success(None)
