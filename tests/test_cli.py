"""Tests for the convstore CLI."""

import asyncio
from unittest.mock import patch

import pytest

from convstore.cli import _parse_data, create_parser, run_cli
from convstore.config import StoreConfig
from convstore.conversation import ConversationMetadata, ConversationStore
from convstore.dynamo.memory import InMemoryStore


@pytest.fixture
def store() -> ConversationStore:
    return ConversationStore(InMemoryStore(), StoreConfig(default_message_limit=2))


def run(store: ConversationStore, *argv: str) -> int:
    with patch("convstore.cli._build_store", return_value=store):
        return run_cli(list(argv))


def create(store: ConversationStore, **metadata) -> str:
    meta = ConversationMetadata(**metadata) if metadata else None
    return asyncio.run(store.create_conversation(meta)).unwrap().id


class TestParser:
    """Tests for argument parsing."""

    def test_no_command_prints_help(self, capsys):
        """No subcommand returns a usage error."""
        assert run_cli([]) == 2
        assert "usage" in capsys.readouterr().out.lower()

    def test_unknown_command(self, capsys):
        """Unknown subcommands are rejected by argparse."""
        assert run_cli(["explode"]) == 2

    def test_global_options(self):
        """Global options come before the subcommand."""
        args = create_parser().parse_args(["--config", "c.json", "--log-dir", "logs", "show", "abc"])
        assert args.config == "c.json"
        assert args.log_dir == "logs"
        assert args.id == "abc"

    def test_parse_data(self):
        """Custom data pairs split on the first '='."""
        assert _parse_data(["a=1", "b=x=y"]) == {"a": "1", "b": "x=y"}
        assert _parse_data(None) == {}
        assert _parse_data(["novalue"]) is None
        assert _parse_data(["=v"]) is None


class TestCreateAndShow:
    """Tests for 'convstore create' and 'convstore show'."""

    def test_create_prints_id(self, store, capsys):
        """Create prints the new conversation id."""
        assert run(store, "create", "--title", "Trip", "--tag", "a", "--data", "user=u1") == 0

        conversation_id = capsys.readouterr().out.strip()
        conversation = asyncio.run(store.get_conversation(conversation_id)).unwrap()
        assert conversation.metadata.title == "Trip"
        assert conversation.metadata.tags == ["a"]
        assert conversation.metadata.custom_data == {"user": "u1"}

    def test_create_rejects_bad_data(self, store, capsys):
        """Malformed --data is a usage error."""
        assert run(store, "create", "--data", "oops") == 2
        assert "key=value" in capsys.readouterr().out

    def test_show(self, store, capsys):
        """Show prints metadata and counts."""
        conversation_id = create(store, title="Trip", model_id="m-1")

        assert run(store, "show", conversation_id) == 0

        out = capsys.readouterr().out
        assert f"Conversation: {conversation_id}" in out
        assert "Title: Trip" in out
        assert "Model: m-1" in out
        assert "Messages: 0" in out

    def test_show_missing(self, store, capsys):
        """Show reports a missing conversation."""
        assert run(store, "show", "ghost") == 1
        assert "convstore.conversation.NotFound" in capsys.readouterr().out


class TestAppendAndMessages:
    """Tests for 'convstore append' and 'convstore messages'."""

    def test_append(self, store, capsys):
        """Append prints the sequence number."""
        conversation_id = create(store)

        assert run(store, "append", conversation_id, "hello") == 0
        assert run(store, "append", conversation_id, "hi", "--role", "assistant") == 0

        out = capsys.readouterr().out
        assert "Appended message #1" in out
        assert "Appended message #2" in out

    def test_append_with_tokens(self, store, capsys):
        """Token counts are recorded and totalled."""
        conversation_id = create(store)

        run(store, "append", conversation_id, "q", "--input-tokens", "4", "--output-tokens", "6")
        run(store, "show", conversation_id)

        assert "Tokens: 4 in, 6 out, 10 total" in capsys.readouterr().out

    def test_append_missing_conversation(self, store, capsys):
        """Append to an unknown conversation fails."""
        assert run(store, "append", "ghost", "hello") == 1

    def test_messages_pages(self, store, capsys):
        """Messages prints one page and the next token."""
        conversation_id = create(store)
        for text in ("one", "two", "three"):
            run(store, "append", conversation_id, text)
        capsys.readouterr()

        assert run(store, "messages", conversation_id) == 0
        out = capsys.readouterr().out
        rows = [line for line in out.splitlines() if line.startswith("#")]
        assert [row.split()[-1] for row in rows] == ["one", "two"]
        token = out.split("--token ")[1].strip()

        assert run(store, "messages", conversation_id, "--token", token) == 0
        out = capsys.readouterr().out
        assert "three" in out
        assert "Next page" not in out

    def test_messages_empty(self, store, capsys):
        """An empty conversation says so."""
        conversation_id = create(store)

        run(store, "messages", conversation_id)

        assert "No messages." in capsys.readouterr().out

    def test_messages_invalid_limit(self, store, capsys):
        """A limit below 1 is a usage error."""
        assert run(store, "messages", "any", "--limit", "0") == 2


class TestUpdateAndDelete:
    """Tests for 'convstore update' and 'convstore delete'."""

    def test_update(self, store, capsys):
        """Update prints the new metadata."""
        conversation_id = create(store, title="Old")

        assert run(store, "update", conversation_id, "--title", "New") == 0
        assert "Title: New" in capsys.readouterr().out

    def test_delete(self, store, capsys):
        """Delete removes the conversation and its messages."""
        conversation_id = create(store)
        run(store, "append", conversation_id, "hello")

        assert run(store, "delete", conversation_id) == 0
        assert f"Deleted conversation {conversation_id} (2 item(s))" in capsys.readouterr().out
        assert run(store, "show", conversation_id) == 1

    def test_delete_missing(self, store, capsys):
        """Deleting an unknown conversation fails."""
        assert run(store, "delete", "ghost") == 1
