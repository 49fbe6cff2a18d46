"""Abstract key-value store interface."""

from abc import ABC, abstractmethod

from ..errors import StoreResult
from .requests import (
    DeleteItemRequest,
    GetItemRequest,
    PutItemRequest,
    QueryPage,
    QueryRequest,
    TransactWriteRequest,
    UpdateItemRequest,
)
from .values import Item

MAX_TRANSACTION_ITEMS = 100


class KeyValueStore(ABC):
    """Base interface for DynamoDB-compatible stores.

    Every call is a single awaitable and reports expected failures
    (conditional check failed, throttling, transport) as a failed
    StoreResult instead of raising.
    """

    @property
    def max_transaction_items(self) -> int:
        """Upper bound on members of one transact_write call."""
        return MAX_TRANSACTION_ITEMS

    @abstractmethod
    async def get_item(self, request: GetItemRequest) -> StoreResult[Item | None]:
        """Point read. The value is None when the item does not exist."""
        ...

    @abstractmethod
    async def put_item(self, request: PutItemRequest) -> StoreResult[None]:
        ...

    @abstractmethod
    async def update_item(self, request: UpdateItemRequest) -> StoreResult[Item | None]:
        """Apply an update, returning attributes per request.return_values."""
        ...

    @abstractmethod
    async def delete_item(self, request: DeleteItemRequest) -> StoreResult[None]:
        ...

    @abstractmethod
    async def query(self, request: QueryRequest) -> StoreResult[QueryPage]:
        ...

    @abstractmethod
    async def transact_write(self, request: TransactWriteRequest) -> StoreResult[None]:
        """Apply all members atomically, or none of them."""
        ...
