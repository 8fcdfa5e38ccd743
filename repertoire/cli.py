"""Command-line interface for the repertoire trainer.

Prints JSON to stdout; errors go to stderr with exit code 1.

Usage:
    python -m repertoire.cli init alice
    python -m repertoire.cli add-line alice white e4 c5 Nf3
    python -m repertoire.cli tree alice white --show
    python -m repertoire.cli review alice <entry_id> effort
    python -m repertoire.cli queue alice --mode practice
"""

from __future__ import annotations

import argparse
import json
import sys

from rich.console import Console

from repertoire.config import Settings, configure_logging
from repertoire.errors import RepertoireError
from repertoire.manager import RepertoireManager
from repertoire.srs import Response
from repertoire.tui import render_position, render_stats, render_tree


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _cli_tree(manager: RepertoireManager, args: argparse.Namespace) -> None:
    tree = manager.get_tree(args.user_id, args.color)
    if args.show:
        if tree is None:
            Console().print(f"[dim]{args.color} repertoire is empty[/dim]")
        else:
            Console().print(render_tree(tree, args.color))
        return
    _print_json(tree.to_dict() if tree is not None else None)


def _cli_stats(manager: RepertoireManager, args: argparse.Namespace) -> None:
    stats = manager.get_stats(args.user_id)
    if args.show:
        Console().print(render_stats(stats))
        return
    _print_json(stats)


def _cli_queue(manager: RepertoireManager, args: argparse.Namespace) -> None:
    queue = manager.training_queue(
        args.user_id,
        color=args.color,
        mode=args.mode,
        from_entry_id=args.from_entry,
    )
    queue = queue[: args.limit]
    if args.show:
        console = Console()
        for entry in queue:
            console.print(render_position(entry))
            console.print(f"  entry {entry.id}")
        return
    _print_json([e.to_dict() for e in queue])


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Opening repertoire trainer with spaced repetition"
    )
    parser.add_argument("--db", type=str, default=None, help="SQLite database path")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # init subcommand
    init_parser = subparsers.add_parser("init", help="Create White and Black repertoires")
    init_parser.add_argument("user_id", type=str)

    # add-line subcommand
    add_parser = subparsers.add_parser("add-line", help="Save a line of SAN moves")
    add_parser.add_argument("user_id", type=str)
    add_parser.add_argument("color", choices=["white", "black"])
    add_parser.add_argument("moves", nargs="+", help="SAN moves, e.g. e4 c5 Nf3")
    add_parser.add_argument("--fen", type=str, default=None, help="Starting FEN")

    # tree subcommand
    tree_parser = subparsers.add_parser("tree", help="Show a repertoire tree")
    tree_parser.add_argument("user_id", type=str)
    tree_parser.add_argument("color", choices=["white", "black"])
    tree_parser.add_argument("--show", action="store_true", help="Render with Rich")

    # delete subcommand
    delete_parser = subparsers.add_parser("delete", help="Delete an entry and its lines")
    delete_parser.add_argument("user_id", type=str)
    delete_parser.add_argument("entry_id", type=str)

    # review subcommand
    review_parser = subparsers.add_parser("review", help="Review an entry")
    review_parser.add_argument("user_id", type=str)
    review_parser.add_argument("entry_id", type=str)
    review_parser.add_argument("response", choices=[r.value for r in Response])

    # stats subcommand
    stats_parser = subparsers.add_parser("stats", help="Show training statistics")
    stats_parser.add_argument("user_id", type=str)
    stats_parser.add_argument("--show", action="store_true", help="Render with Rich")

    # queue subcommand
    queue_parser = subparsers.add_parser("queue", help="List entries to drill")
    queue_parser.add_argument("user_id", type=str)
    queue_parser.add_argument("--color", choices=["white", "black"], default=None)
    queue_parser.add_argument("--mode", choices=["review", "practice"], default="review")
    queue_parser.add_argument("--from", dest="from_entry", default=None,
                              help="Only this entry and the lines below it")
    queue_parser.add_argument("--limit", type=int, default=20)
    queue_parser.add_argument("--show", action="store_true", help="Render boards with Rich")

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    settings = Settings.load()
    configure_logging(settings.log_level)
    manager = RepertoireManager(args.db or settings.db_path)

    try:
        if args.command == "init":
            _print_json(manager.ensure_repertoires(args.user_id))
        elif args.command == "add-line":
            created = manager.insert_line(args.user_id, args.color, args.moves, args.fen)
            _print_json({"entries_created": created, "plies": len(args.moves)})
        elif args.command == "tree":
            _cli_tree(manager, args)
        elif args.command == "delete":
            _print_json({"deleted_count": manager.delete_entry(args.entry_id, args.user_id)})
        elif args.command == "review":
            result = manager.review(args.entry_id, args.user_id, args.response)
            _print_json(result.to_dict())
        elif args.command == "stats":
            _cli_stats(manager, args)
        elif args.command == "queue":
            _cli_queue(manager, args)
    except (RepertoireError, ValueError) as exc:
        print(f"{type(exc).__name__}: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
