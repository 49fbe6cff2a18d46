"""Tests for store and AWS configuration loading."""

import json
from datetime import timedelta
from pathlib import Path

import pytest

from convstore.config import (
    AwsConfig,
    Config,
    StoreConfig,
    config_from_env,
    load_config,
    save_config,
)


class TestStoreConfig:
    """Tests for StoreConfig dataclass."""

    def test_default_values(self) -> None:
        """Should have sensible defaults."""
        config = StoreConfig()

        assert config.table_name == "conversations"
        assert config.partition_key_name == "PK"
        assert config.sort_key_name == "SK"
        assert config.default_ttl == timedelta(days=7)
        assert config.default_message_limit == 50

    def test_keys(self) -> None:
        """Should build partition and zero-padded message keys."""
        config = StoreConfig()

        assert config.partition_key("abc") == "Conversation#abc"
        assert config.message_sort_key(7) == "message#0000000007"

    def test_message_sort_key_range(self) -> None:
        """Should reject sequence numbers outside the padded width."""
        config = StoreConfig(sequence_width=2)

        assert config.message_sort_key(99) == "message#99"
        with pytest.raises(ValueError):
            config.message_sort_key(100)
        with pytest.raises(ValueError):
            config.message_sort_key(0)

    def test_invalid_values(self) -> None:
        """Should reject invalid settings."""
        with pytest.raises(ValueError, match="table_name"):
            StoreConfig(table_name="")
        with pytest.raises(ValueError, match="must differ"):
            StoreConfig(partition_key_name="K", sort_key_name="K")
        with pytest.raises(ValueError, match="default_ttl"):
            StoreConfig(default_ttl=timedelta(0))
        with pytest.raises(ValueError, match="default_message_limit"):
            StoreConfig(default_message_limit=0)
        with pytest.raises(ValueError, match="message prefix"):
            StoreConfig(metadata_sort_key="message#meta")

    def test_invalid_aws_values(self) -> None:
        """Should reject invalid retry settings."""
        with pytest.raises(ValueError, match="max_attempts"):
            AwsConfig(max_attempts=0)
        with pytest.raises(ValueError, match="retry_mode"):
            AwsConfig(retry_mode="eager")


class TestLoadConfig:
    """Tests for load_config function."""

    def test_loads_from_file(self, tmp_path: Path) -> None:
        """Should load config from JSON file."""
        config_path = tmp_path / "config.json"
        config_path.write_text(
            json.dumps(
                {
                    "store": {"table_name": "chats", "ttl_days": 30, "default_message_limit": 20},
                    "aws": {"region_name": "eu-west-1", "endpoint_url": "http://localhost:8000"},
                }
            )
        )

        config = load_config(config_path)

        assert config.store.table_name == "chats"
        assert config.store.default_ttl == timedelta(days=30)
        assert config.store.default_message_limit == 20
        assert config.aws.region_name == "eu-west-1"
        assert config.aws.endpoint_url == "http://localhost:8000"

    def test_zero_ttl_disables_expiry(self, tmp_path: Path) -> None:
        """Should treat ttl_days 0 as no expiry."""
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"store": {"ttl_days": 0}}))

        assert load_config(config_path).store.default_ttl is None

    def test_missing_file_returns_defaults(self, tmp_path: Path) -> None:
        """Should return defaults if file doesn't exist."""
        config = load_config(tmp_path / "nonexistent.json")

        assert config.store == StoreConfig()
        assert config.aws == AwsConfig()

    def test_invalid_json_returns_defaults(self, tmp_path: Path) -> None:
        """Should return defaults if JSON is invalid."""
        config_path = tmp_path / "config.json"
        config_path.write_text("not valid json {")

        assert load_config(config_path).store.table_name == "conversations"

    def test_invalid_values_return_defaults(self, tmp_path: Path) -> None:
        """Should return defaults if values fail validation."""
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"store": {"delete_batch_size": 0}}))

        assert load_config(config_path).store.delete_batch_size == 25

    def test_non_object_returns_defaults(self, tmp_path: Path) -> None:
        """Should return defaults if the top level is not an object."""
        config_path = tmp_path / "config.json"
        config_path.write_text("[1, 2]")

        assert load_config(config_path) == Config()

    def test_unknown_keys_ignored(self, tmp_path: Path) -> None:
        """Should ignore keys it does not know."""
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"store": {"colour": "blue"}, "other": 1}))

        assert load_config(config_path) == Config()


class TestConfigFromEnv:
    """Tests for environment overrides."""

    def test_env_overrides(self, monkeypatch) -> None:
        """Should apply environment variables over the base config."""
        monkeypatch.setenv("CONVSTORE_TABLE_NAME", "env-table")
        monkeypatch.setenv("CONVSTORE_TTL_DAYS", "2")
        monkeypatch.setenv("AWS_REGION", "us-west-2")
        monkeypatch.setenv("CONVSTORE_ENDPOINT_URL", "http://dynamo:8000")

        config = config_from_env(Config())

        assert config.store.table_name == "env-table"
        assert config.store.default_ttl == timedelta(days=2)
        assert config.aws.region_name == "us-west-2"
        assert config.aws.endpoint_url == "http://dynamo:8000"

    def test_default_region_fallback(self, monkeypatch) -> None:
        """Should fall back to AWS_DEFAULT_REGION."""
        monkeypatch.delenv("AWS_REGION", raising=False)
        monkeypatch.setenv("AWS_DEFAULT_REGION", "ap-south-1")

        assert config_from_env().aws.region_name == "ap-south-1"

    def test_invalid_ttl_ignored(self, monkeypatch) -> None:
        """Should keep the base TTL when the variable is not a number."""
        monkeypatch.setenv("CONVSTORE_TTL_DAYS", "soon")

        assert config_from_env(Config()).store.default_ttl == timedelta(days=7)


class TestSaveConfig:
    """Tests for save_config function."""

    def test_writes_only_changed_values(self, tmp_path: Path) -> None:
        """Should omit values equal to the defaults."""
        config_path = tmp_path / "sub" / "config.json"
        config = Config(
            store=StoreConfig(table_name="chats", default_ttl=None),
            aws=AwsConfig(region_name="eu-west-1"),
        )

        save_config(config, config_path)

        data = json.loads(config_path.read_text())
        assert data == {
            "store": {"table_name": "chats", "ttl_days": 0},
            "aws": {"region_name": "eu-west-1"},
        }

    def test_saved_config_loads_back(self, tmp_path: Path) -> None:
        """Should load what it saved."""
        config_path = tmp_path / "config.json"
        config = Config(store=StoreConfig(default_ttl=timedelta(days=3), sequence_width=12))

        save_config(config, config_path)

        assert load_config(config_path) == config
