"""Command-line entry point: review a message, purge the cache, show stats.

Usage:
    mailreview review message.json [--session TAB_ID] [--force]
    mailreview purge
    mailreview stats

message.json holds compose details: {"subject": ..., "to": ..., "plainTextBody": ...}
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from mailreview.llm.gemini import RemoteServiceFailure
from mailreview.observability.logging import get_logger
from mailreview.review import MissingCredentialError, ReviewService
from mailreview.storage import StorageFailure
from mailreview.storage.models import ContentRecord
from mailreview.storage.sqlite_store import SQLiteKeyValueStore
from mailreview.utils.error_sanitizer import sanitize_error_message

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mailreview", description="Pre-send email review")
    parser.add_argument("--db", type=Path, default=None, help="Key-value database path")
    sub = parser.add_subparsers(dest="command", required=True)

    review = sub.add_parser("review", help="Review a composed message")
    review.add_argument("file", type=Path, help="JSON file with compose details")
    review.add_argument("--session", default=None, help="Compose session / tab id")
    review.add_argument("--force", action="store_true", help="Ignore cached reviews")

    sub.add_parser("purge", help="Delete all cached reviews and checkpoints")
    sub.add_parser("stats", help="Show cache statistics")
    return parser


async def _run(args: argparse.Namespace) -> int:
    store = SQLiteKeyValueStore(args.db)
    service = await ReviewService.create(store)
    try:
        if args.command == "review":
            details = json.loads(args.file.read_text(encoding="utf-8"))
            if not isinstance(details, dict):
                raise ValueError(f"{args.file} must contain a JSON object")
            record = ContentRecord.from_compose_details(details)
            outcome = await service.review(record, session_id=args.session, force_refresh=args.force)
            if outcome.from_cache:
                print("(cached review)")
            print(outcome.analysis)
        elif args.command == "purge":
            await service.purge()
            print("Cache cleared.")
        elif args.command == "stats":
            print(json.dumps(await service.cache.stats(), indent=2))
        return 0
    finally:
        service.close()
        store.close()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(_run(args))
    except MissingCredentialError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except RemoteServiceFailure as e:
        print(f"Error: {sanitize_error_message(str(e), 502)}", file=sys.stderr)
        return 1
    except (StorageFailure, OSError, ValueError) as e:
        logger.error("Command failed: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
