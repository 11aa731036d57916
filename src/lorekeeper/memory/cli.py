#!/usr/bin/env python3
"""
Memory CLI - Command-line interface for the memory engine.

Usage:
    lorekeeper-memory --session s1 record combat --payload '{"combatants": ["Aria", "Goblin"]}'
    lorekeeper-memory --session s1 assemble --location Darkwood --participant Aria --budget 400
    lorekeeper-memory --session s1 search "goblin ambush" --limit 5
    lorekeeper-memory --session s1 stats
    lorekeeper-memory --session s1 compact
    lorekeeper-memory --session s1 archives
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from lorekeeper.memory.engine import MemoryEngine, open_engine
from lorekeeper.memory.schema import QueryContext
from lorekeeper.memory.scoring import format_time_ago

EMBEDDING_CHOICES = ["none", "auto", "openai", "huggingface", "ollama", "local"]


def _open(args: argparse.Namespace) -> MemoryEngine:
    return open_engine(
        args.session,
        base_dir=args.base_dir,
        config_path=args.config,
        embeddings=args.embeddings,
    )


def cmd_record(args: argparse.Namespace) -> int:
    """Record an event."""
    try:
        payload = json.loads(args.payload)
    except json.JSONDecodeError as e:
        print(f"Invalid --payload JSON: {e}", file=sys.stderr)
        return 1

    with _open(args) as engine:
        if args.location:
            engine.current_location = args.location
        event_id = engine.record(args.type, payload, significance_hint=args.significance)
        event = engine.get_event(event_id)

    if args.json:
        print(json.dumps(event.to_dict(), ensure_ascii=False))
    else:
        print(f"✓ Event recorded: {event.id} [{event.event_type.value}] "
              f"significance {event.significance:.2f}")

    return 0


def cmd_assemble(args: argparse.Namespace) -> int:
    """Assemble the memory context for a situation."""
    context = QueryContext(
        location=args.location or "",
        participants=set(args.participant or []),
        recent_actions=args.action or [],
    )
    with _open(args) as engine:
        try:
            result = engine.assemble_context(context, token_budget=args.budget)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    if args.json:
        print(
            json.dumps(
                {
                    "text": result.text,
                    "events": [event.id for event in result.events],
                    "token_estimate": result.token_estimate,
                    "token_budget": result.token_budget,
                },
                ensure_ascii=False,
            )
        )
    else:
        print(result.text)

    return 0


def cmd_search(args: argparse.Namespace) -> int:
    """Search memories."""
    with _open(args) as engine:
        results = engine.search(args.query, limit=args.limit)
        now = engine.clock()

    if args.json:
        print(json.dumps([e.to_dict() for e in results], ensure_ascii=False))
    else:
        if not results:
            print("No memories found.")
            return 0

        for event in results:
            print(f"\n[{event.event_type.value}] {event.payload.summary()[:100]}")
            print(f"  ID: {event.id} | {format_time_ago(event.age(now))}")

    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    """Show memory statistics."""
    with _open(args) as engine:
        stats = engine.get_stats()

    if args.json:
        print(json.dumps(stats, ensure_ascii=False))
    else:
        print(f"Session: {stats['session_id']}")
        print(f"Total events: {stats['total_events']}")
        print(f"Hot events: {stats['hot_events']}")
        print(f"Vectors: {stats['vectors']}")
        print(f"Archives: {stats['archives']}")
        print(f"Embeddings enabled: {stats['embeddings_enabled']}")
        print("\nBy tier:")
        for tier, count in stats.get("by_tier", {}).items():
            print(f"  {tier}: {count}")
        print("\nBy type:")
        for event_type, count in stats.get("by_type", {}).items():
            print(f"  {event_type}: {count}")

    return 0


def cmd_compact(args: argparse.Namespace) -> int:
    """Run compaction."""
    with _open(args) as engine:
        stats = engine.compact()

    if args.json:
        print(json.dumps(stats, ensure_ascii=False))
    else:
        print(f"Archived: {stats['archived_count']}")
        print(f"Retained past archive age: {stats['retained_count']}")
        print(f"Hot: {stats['hot_count']} | History: {stats['history_count']}")

    return 0


def cmd_archives(args: argparse.Namespace) -> int:
    """List archive summaries."""
    with _open(args) as engine:
        archives = engine.archive_summaries()

    if args.json:
        print(json.dumps([a.to_dict() for a in archives], ensure_ascii=False))
    else:
        if not archives:
            print("No archives.")
            return 0

        for archive in archives:
            print(f"\n{archive.id} ({archive.event_count} events)")
            for event_type, summary in archive.summaries.items():
                print(f"  {event_type}: {summary.get('count', 0)}")

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lorekeeper-memory",
        description="Tiered memory for conversational sessions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--session", default="default", help="Session id")
    parser.add_argument(
        "--base-dir",
        help="Memory directory (default: $LOREKEEPER_MEMORY_DIR or ~/.config/lorekeeper/memory)",
    )
    parser.add_argument(
        "--embeddings",
        default="none",
        choices=EMBEDDING_CHOICES,
        help="Embedding provider",
    )
    parser.add_argument("--config", help="Config file (JSON or YAML)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # record command
    record_parser = subparsers.add_parser("record", help="Record an event")
    record_parser.add_argument("type", help="Event type (unknown types are stored as generic)")
    record_parser.add_argument("--payload", "-p", default="{}", help="Payload as JSON object")
    record_parser.add_argument(
        "--significance",
        "-s",
        type=float,
        help="Significance override (0-1)",
    )
    record_parser.add_argument("--location", help="Current location for the event")
    record_parser.set_defaults(func=cmd_record)

    # assemble command
    assemble_parser = subparsers.add_parser("assemble", help="Assemble memory context")
    assemble_parser.add_argument("--location", "-l", help="Current location")
    assemble_parser.add_argument(
        "--participant",
        "-p",
        action="append",
        help="Present character (repeatable)",
    )
    assemble_parser.add_argument(
        "--action",
        "-a",
        action="append",
        help="Recent action (repeatable)",
    )
    assemble_parser.add_argument("--budget", "-b", type=int, help="Token budget")
    assemble_parser.set_defaults(func=cmd_assemble)

    # search command
    search_parser = subparsers.add_parser("search", help="Search memories")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument(
        "--limit",
        "-l",
        type=int,
        default=10,
        help="Max results",
    )
    search_parser.set_defaults(func=cmd_search)

    # stats command
    stats_parser = subparsers.add_parser("stats", help="Show statistics")
    stats_parser.set_defaults(func=cmd_stats)

    # compact command
    compact_parser = subparsers.add_parser("compact", help="Fold aged events into archives")
    compact_parser.set_defaults(func=cmd_compact)

    # archives command
    archives_parser = subparsers.add_parser("archives", help="List archive summaries")
    archives_parser.set_defaults(func=cmd_archives)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
