"""Command line interface of the search indexer.

Usage:
    cr-search --content content.json show-mapping
    cr-search --content content.json index-node --identifier <id> [--workspace live]
    cr-search --content content.json build [--limit 100] [--update] [--workspace live] [--postfix 1700000000]
    cr-search --content content.json cleanup
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from cr_search.config import get_settings
from cr_search.content.graph import InMemoryContentGraph
from cr_search.core.exceptions import AppException
from cr_search.core.logging import get_logger, setup_logging
from cr_search.dependencies import IndexingStack, build_indexing_stack
from cr_search.services.index_commands import EXIT_FAILURE

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cr-search",
        description="Index a content repository into Qdrant",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Rebuild all indices and switch the aliases over
  cr-search --content content.json build

  # Reindex a single node of the live workspace
  cr-search --content content.json index-node --identifier 4a1c --workspace live

  # Remove indices no alias points at anymore
  cr-search --content content.json cleanup
        """,
    )
    parser.add_argument(
        "--content",
        type=Path,
        default=None,
        help="JSON content dump to index (default: CONTENT_GRAPH_PATH)",
    )
    parser.add_argument("--log-level", default=None, help="Override the configured log level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("show-mapping", help="Print the mapping derived from the node types")

    index_node = subparsers.add_parser("index-node", help="Index a single node")
    index_node.add_argument("--identifier", required=True, help="Aggregate identifier of the node")
    index_node.add_argument("--workspace", default=None, help="Workspace to index the node in (default: all)")

    build = subparsers.add_parser("build", help="Build new indices and switch the aliases")
    build.add_argument("--limit", type=int, default=None, help="Index at most this many nodes per workspace")
    build.add_argument("--update", action="store_true", help="Update the live indices instead of building new ones")
    build.add_argument("--workspace", default=None, help="Only index this workspace")
    build.add_argument("--postfix", default=None, help="Index name postfix (default: current timestamp)")

    subparsers.add_parser("cleanup", help="Remove indices no alias references")
    return parser


async def run_command(args: argparse.Namespace, stack: IndexingStack) -> int:
    """Dispatch the parsed command to the index commands."""
    commands = stack.commands
    if args.command == "show-mapping":
        print(json.dumps(commands.show_mapping(), indent=2))
        return 0
    if args.command == "index-node":
        return await commands.index_node(args.identifier, args.workspace)
    if args.command == "build":
        return await commands.build(
            limit=args.limit,
            update=args.update,
            workspace=args.workspace,
            postfix=args.postfix,
        )
    if args.command == "cleanup":
        return await commands.cleanup()
    raise ValueError(f"Unknown command '{args.command}'")


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    content_path = args.content or settings.content_graph_path
    if content_path is None:
        logger.error("No content dump given, pass --content or set CONTENT_GRAPH_PATH")
        return EXIT_FAILURE

    try:
        content_graph = InMemoryContentGraph.from_file(content_path)
    except (OSError, KeyError, ValidationError) as exc:
        logger.error("Could not load content dump %s: %s", content_path, exc)
        return EXIT_FAILURE

    stack = build_indexing_stack(content_graph, settings)
    try:
        return await run_command(args, stack)
    finally:
        await stack.aclose()


def main(argv: list[str] | None = None) -> None:
    """Entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        exit_code = asyncio.run(_run(args))
    except AppException as e:
        logger.error("Command failed: %s", e.message)
        sys.exit(EXIT_FAILURE)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
