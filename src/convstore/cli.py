"""Command-line interface for the conversation store.

Provides subcommands to create, inspect, append to, update and delete
conversations.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from .config import config_from_env, load_config
from .conversation import (
    ConversationMetadata,
    ConversationStore,
    Role,
    TextBlock,
    TokenUsage,
    ToolResultBlock,
    ToolUseBlock,
)
from .dynamo.boto import BotoDynamoStore
from .errors import StoreError
from .logging import configure_logger


def _build_store(args: argparse.Namespace) -> ConversationStore:
    """Create a ConversationStore from config files and environment."""
    config_path = Path(args.config).expanduser() if args.config else None
    config = config_from_env(load_config(config_path))
    event_logger = configure_logger(args.log_dir) if args.log_dir else None
    client = BotoDynamoStore(aws_config=config.aws)
    return ConversationStore(client, config.store, event_logger=event_logger)


def _print_error(error: StoreError) -> int:
    print(f"Error [{error.code}]: {error.description}")
    return 1


def _parse_data(pairs: list[str] | None) -> dict[str, str] | None:
    """Parse k=v pairs. Returns None if any pair is malformed."""
    data: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            return None
        data[key] = value
    return data


def _metadata_from_args(args: argparse.Namespace) -> ConversationMetadata | None:
    data = _parse_data(args.data)
    if data is None:
        return None
    return ConversationMetadata(
        title=args.title,
        model_id=args.model_id,
        tags=list(args.tag or []),
        custom_data=data,
    )


def _describe_block(block) -> str:
    if isinstance(block, TextBlock):
        return block.text
    if isinstance(block, ToolUseBlock):
        return f"[tool use {block.name} ({block.tool_use_id})]"
    if isinstance(block, ToolResultBlock):
        return f"[tool result {block.tool_use_id}]"
    return f"[{type(block).__name__.removesuffix('Block').lower()} {block.format}]"


def _print_conversation(conversation) -> None:
    print(f"\nConversation: {conversation.id}")
    print("-" * 40)
    print(f"Created: {conversation.created_at.isoformat()}")
    print(f"Updated: {conversation.updated_at.isoformat()}")
    print(f"Messages: {conversation.message_count}")
    if conversation.expires_at:
        print(f"Expires: {conversation.expires_at.isoformat()}")
    meta = conversation.metadata
    if meta:
        if meta.title:
            print(f"Title: {meta.title}")
        if meta.model_id:
            print(f"Model: {meta.model_id}")
        if meta.tags:
            print(f"Tags: {', '.join(meta.tags)}")
        for key, value in sorted(meta.custom_data.items()):
            print(f"  {key} = {value}")
    usage = conversation.total_token_usage
    if usage:
        print(
            f"Tokens: {usage.input_tokens} in, {usage.output_tokens} out, {usage.total_tokens} total"
        )


def cmd_create(args: argparse.Namespace) -> int:
    """Create a conversation."""
    metadata = _metadata_from_args(args)
    if metadata is None:
        print("Error: --data values must look like key=value")
        return 2

    store = _build_store(args)
    result = asyncio.run(store.create_conversation(None if metadata.is_empty else metadata))
    if result.is_error:
        return _print_error(result.error)

    print(result.value.id)
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    """Show a conversation's metadata."""
    store = _build_store(args)
    result = asyncio.run(store.get_conversation(args.id))
    if result.is_error:
        return _print_error(result.error)

    _print_conversation(result.value)
    return 0


def cmd_append(args: argparse.Namespace) -> int:
    """Append a text message."""
    usage = None
    if args.input_tokens is not None or args.output_tokens is not None:
        input_tokens = args.input_tokens or 0
        output_tokens = args.output_tokens or 0
        usage = TokenUsage(input_tokens, output_tokens, input_tokens + output_tokens)

    role = Role.USER if args.role == "user" else Role.ASSISTANT
    store = _build_store(args)
    result = asyncio.run(store.add_message(args.id, role, [TextBlock(args.text)], usage))
    if result.is_error:
        return _print_error(result.error)

    print(f"Appended message #{result.value.sequence_number} ({result.value.id})")
    return 0


def cmd_messages(args: argparse.Namespace) -> int:
    """List one page of messages."""
    if args.limit is not None and args.limit < 1:
        print("Error: --limit must be at least 1")
        return 2

    store = _build_store(args)
    result = asyncio.run(store.get_conversation_with_messages(args.id, args.limit, args.token))
    if result.is_error:
        return _print_error(result.error)

    page = result.value
    if not page.messages:
        print("No messages.")
    for message in page.messages:
        text = " ".join(_describe_block(b) for b in message.content)
        print(f"#{message.sequence_number:<5} {message.role.value:<10} {text}")

    if page.has_more_messages:
        print(f"\nNext page: --token {page.next_pagination_token}")
    return 0


def cmd_update(args: argparse.Namespace) -> int:
    """Update a conversation's metadata."""
    metadata = _metadata_from_args(args)
    if metadata is None:
        print("Error: --data values must look like key=value")
        return 2

    store = _build_store(args)
    result = asyncio.run(store.update_conversation(args.id, metadata))
    if result.is_error:
        return _print_error(result.error)

    _print_conversation(result.value)
    return 0


def cmd_delete(args: argparse.Namespace) -> int:
    """Delete a conversation and all its messages."""
    store = _build_store(args)
    result = asyncio.run(store.delete_conversation(args.id))
    if result.is_error:
        error = result.error
        _print_error(error)
        if "deleted" in error.details:
            print(
                f"{error.details['deleted']} item(s) deleted, {error.details['remaining']} remaining. "
                "Run delete again to finish."
            )
        return 1

    summary = result.value
    print(f"Deleted conversation {summary.conversation_id} ({summary.items_deleted} item(s))")
    return 0


def _add_metadata_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--title", help="Conversation title")
    parser.add_argument("--model-id", help="Model identifier")
    parser.add_argument("--tag", action="append", help="Tag (repeatable)")
    parser.add_argument("--data", action="append", metavar="KEY=VALUE", help="Custom data (repeatable)")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="convstore",
        description="Manage conversations stored in DynamoDB",
    )
    parser.add_argument("--config", help="Path to config JSON (default ~/.convstore/config.json)")
    parser.add_argument("--log-dir", help="Directory for JSONL operation logs")

    subparsers = parser.add_subparsers(dest="command", help="Sub-command help")

    create_parser = subparsers.add_parser("create", help="Create a conversation")
    _add_metadata_options(create_parser)

    show_parser = subparsers.add_parser("show", help="Show a conversation")
    show_parser.add_argument("id", help="Conversation id")

    append_parser = subparsers.add_parser("append", help="Append a text message")
    append_parser.add_argument("id", help="Conversation id")
    append_parser.add_argument("text", help="Message text")
    append_parser.add_argument("--role", choices=["user", "assistant"], default="user")
    append_parser.add_argument("--input-tokens", type=int)
    append_parser.add_argument("--output-tokens", type=int)

    messages_parser = subparsers.add_parser("messages", help="List messages")
    messages_parser.add_argument("id", help="Conversation id")
    messages_parser.add_argument("--limit", type=int, help="Page size")
    messages_parser.add_argument("--token", help="Pagination token from a previous page")

    update_parser = subparsers.add_parser("update", help="Update conversation metadata")
    update_parser.add_argument("id", help="Conversation id")
    _add_metadata_options(update_parser)

    delete_parser = subparsers.add_parser("delete", help="Delete a conversation")
    delete_parser.add_argument("id", help="Conversation id")

    return parser


def run_cli(argv: list[str] | None = None) -> int:
    """Run the CLI with given arguments.

    Args:
        argv: Command-line arguments. Uses sys.argv[1:] if None.

    Returns:
        Exit code (0 for success, 1 for a store error, 2 for usage errors).
    """
    parser = create_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 2

    if args.command is None:
        parser.print_help()
        return 2

    commands = {
        "create": cmd_create,
        "show": cmd_show,
        "append": cmd_append,
        "messages": cmd_messages,
        "update": cmd_update,
        "delete": cmd_delete,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 2

    return handler(args)


if __name__ == "__main__":
    sys.exit(run_cli())
