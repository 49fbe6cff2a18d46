"""Store and AWS configuration.

Loads configuration from ~/.convstore/config.json, with environment
variables layered on top by config_from_env().
"""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".convstore" / "config.json"

DEFAULT_TTL = timedelta(days=7)


@dataclass
class StoreConfig:
    """Table layout and behavior of the conversation store.

    Attributes:
        table_name: DynamoDB table holding conversations and messages.
        partition_key_name: Name of the partition key attribute.
        sort_key_name: Name of the sort key attribute.
        ttl_attribute_name: Attribute holding the expiry (epoch seconds).
        conversation_pk_prefix: Prefix prepended to conversation ids.
        metadata_sort_key: Sort key of the conversation record.
        message_sk_prefix: Prefix of message sort keys.
        sequence_width: Zero-padding width of message sequence numbers.
        default_ttl: Expiry applied to new records. None disables expiry.
        default_message_limit: Page size when the caller gives none.
        delete_batch_size: Items per delete transaction.
    """

    table_name: str = "conversations"
    partition_key_name: str = "PK"
    sort_key_name: str = "SK"
    ttl_attribute_name: str = "TTL"
    conversation_pk_prefix: str = "Conversation#"
    metadata_sort_key: str = "_"
    message_sk_prefix: str = "message#"
    sequence_width: int = 10
    default_ttl: timedelta | None = DEFAULT_TTL
    default_message_limit: int = 50
    delete_batch_size: int = 25

    def __post_init__(self) -> None:
        """Validate config."""
        if not self.table_name:
            raise ValueError("table_name cannot be empty")
        if not self.partition_key_name or not self.sort_key_name:
            raise ValueError("key attribute names cannot be empty")
        if self.partition_key_name == self.sort_key_name:
            raise ValueError("partition and sort key names must differ")
        if self.sequence_width < 1:
            raise ValueError("sequence_width must be at least 1")
        if self.default_ttl is not None and self.default_ttl <= timedelta(0):
            raise ValueError("default_ttl must be positive or None")
        if self.default_message_limit < 1:
            raise ValueError("default_message_limit must be at least 1")
        if self.delete_batch_size < 1:
            raise ValueError("delete_batch_size must be at least 1")
        if self.metadata_sort_key.startswith(self.message_sk_prefix):
            raise ValueError("metadata_sort_key must not share the message prefix")

    def partition_key(self, conversation_id: str) -> str:
        return f"{self.conversation_pk_prefix}{conversation_id}"

    @property
    def max_sequence_number(self) -> int:
        return 10**self.sequence_width - 1

    def message_sort_key(self, sequence_number: int) -> str:
        """Zero-padded message sort key, e.g. 'message#0000000007'."""
        if sequence_number < 1 or sequence_number > self.max_sequence_number:
            raise ValueError(
                f"Sequence number {sequence_number} is out of range for width {self.sequence_width}"
            )
        return f"{self.message_sk_prefix}{sequence_number:0{self.sequence_width}d}"


@dataclass
class AwsConfig:
    """Connection settings for the boto3 client."""

    region_name: str | None = None
    endpoint_url: str | None = None
    profile_name: str | None = None
    max_attempts: int = 3
    retry_mode: str = "standard"

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.retry_mode not in ("legacy", "standard", "adaptive"):
            raise ValueError(f"Unknown retry_mode: {self.retry_mode}")


@dataclass
class Config:
    store: StoreConfig = field(default_factory=StoreConfig)
    aws: AwsConfig = field(default_factory=AwsConfig)


def load_config(config_path: Path | None = None) -> Config:
    """Load Config from a JSON file.

    The config file should have this structure:
    ```json
    {
      "store": {
        "table_name": "conversations",
        "ttl_days": 7,
        "default_message_limit": 50
      },
      "aws": {
        "region_name": "eu-west-1",
        "endpoint_url": "http://localhost:8000"
      }
    }
    ```

    Missing or unreadable files fall back to defaults.
    """
    path = config_path or DEFAULT_CONFIG_PATH

    if not path.exists():
        logger.debug("No config file at %s, using defaults", path)
        return Config()

    try:
        with open(path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.warning("Invalid JSON in %s: %s. Using defaults.", path, e)
        return Config()
    except OSError as e:
        logger.warning("Cannot read %s: %s. Using defaults.", path, e)
        return Config()

    if not isinstance(data, dict):
        logger.warning("Config in %s is not an object. Using defaults.", path)
        return Config()

    try:
        return _parse_config(data)
    except (TypeError, ValueError) as e:
        logger.warning("Invalid config in %s: %s. Using defaults.", path, e)
        return Config()


_STORE_FIELDS = (
    "table_name",
    "partition_key_name",
    "sort_key_name",
    "ttl_attribute_name",
    "conversation_pk_prefix",
    "metadata_sort_key",
    "message_sk_prefix",
    "sequence_width",
    "default_message_limit",
    "delete_batch_size",
)

_AWS_FIELDS = ("region_name", "endpoint_url", "profile_name", "max_attempts", "retry_mode")


def _parse_config(data: dict[str, Any]) -> Config:
    store_data = data.get("store", {})
    if not isinstance(store_data, dict):
        store_data = {}
    aws_data = data.get("aws", {})
    if not isinstance(aws_data, dict):
        aws_data = {}

    store_kwargs: dict[str, Any] = {k: store_data[k] for k in _STORE_FIELDS if k in store_data}
    if "ttl_days" in store_data:
        store_kwargs["default_ttl"] = _ttl_from_days(store_data["ttl_days"])

    aws_kwargs = {k: aws_data[k] for k in _AWS_FIELDS if k in aws_data}

    return Config(store=StoreConfig(**store_kwargs), aws=AwsConfig(**aws_kwargs))


def _ttl_from_days(days: Any) -> timedelta | None:
    # 0 or null disables expiry
    if days is None or days == 0:
        return None
    if isinstance(days, bool) or not isinstance(days, (int, float)):
        raise ValueError(f"ttl_days must be a number, got {days!r}")
    return timedelta(days=days)


def config_from_env(base: Config | None = None) -> Config:
    """Overlay environment variables on a config.

    Reads CONVSTORE_TABLE_NAME, CONVSTORE_TTL_DAYS, CONVSTORE_ENDPOINT_URL
    and AWS_REGION (or AWS_DEFAULT_REGION).
    """
    config = base or Config()
    store = config.store
    aws = config.aws

    table_name = os.getenv("CONVSTORE_TABLE_NAME")
    if table_name:
        store.table_name = table_name

    ttl_days = os.getenv("CONVSTORE_TTL_DAYS")
    if ttl_days:
        try:
            store.default_ttl = _ttl_from_days(float(ttl_days))
        except ValueError:
            logger.warning("Ignoring invalid CONVSTORE_TTL_DAYS=%r", ttl_days)

    region = os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION")
    if region:
        aws.region_name = region

    endpoint = os.getenv("CONVSTORE_ENDPOINT_URL")
    if endpoint:
        aws.endpoint_url = endpoint

    return config


def save_config(config: Config, config_path: Path | None = None) -> None:
    """Save Config to a JSON file, writing only non-default values."""
    path = config_path or DEFAULT_CONFIG_PATH

    path.parent.mkdir(parents=True, exist_ok=True)

    defaults_store = StoreConfig()
    defaults_aws = AwsConfig()

    store_data: dict[str, Any] = {
        k: getattr(config.store, k)
        for k in _STORE_FIELDS
        if getattr(config.store, k) != getattr(defaults_store, k)
    }
    if config.store.default_ttl != defaults_store.default_ttl:
        ttl = config.store.default_ttl
        store_data["ttl_days"] = ttl.total_seconds() / 86400 if ttl is not None else 0

    aws_data: dict[str, Any] = {
        k: getattr(config.aws, k)
        for k in _AWS_FIELDS
        if getattr(config.aws, k) != getattr(defaults_aws, k)
    }

    data: dict[str, Any] = {}
    if store_data:
        data["store"] = store_data
    if aws_data:
        data["aws"] = aws_data

    try:
        with open(path, "w") as f:
            json.dump(data, f, indent=2)
    except OSError as e:
        logger.error("Failed to save config to %s: %s", path, e)
        raise
