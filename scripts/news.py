#!/usr/bin/env python3
"""CLI tool to collect and query the news feeds."""

import sys
import asyncio
import argparse
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from geeknews.query.service import NewsService


def print_header(title):
    print(f"\n{'='*60}")
    print(f" {title}")
    print('='*60)


def print_items(items):
    if not items:
        print("\n  No news available right now. Try again shortly.")
        return
    for item in items:
        date = item.published_at.strftime("%Y-%m-%d") if item.published_at else "-"
        print(f"\n  {item.title.strip()}")
        print(f"    {item.source} | {date}")
        print(f"    {item.link}")


def print_status(service):
    status = service.get_cache_status()
    print_header("CACHE STATUS")
    print(f"\nCached items:  {status.total_cached}")
    print(f"Cache age:     {status.cache_age_seconds}s")
    print(f"Loading:       {status.is_loading} ({status.loading_elapsed_seconds}s)")
    print("\nItems by Feed:")
    for name, count in status.per_feed_counts.items():
        print(f"  {name:20} {count}")


async def cmd_top(args):
    """Show the newest items."""
    service = NewsService()
    try:
        items = await service.page(offset=args.offset, count=args.limit)
        print_header(f"LATEST TECH NEWS ({args.offset + 1}-{args.offset + len(items)})")
        print_items(items)
        print_status(service)
    finally:
        await service.close()


async def cmd_search(args):
    """Search items by keyword."""
    service = NewsService()
    try:
        items = await service.search(args.keyword, limit=args.limit)
        print_header(f"SEARCH: '{args.keyword}' ({len(items)} found)")
        print_items(items)
    finally:
        await service.close()


def main():
    parser = argparse.ArgumentParser(
        description="Collect and query engineering blog feeds"
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # top
    p = subparsers.add_parser("top", help="Show the newest items")
    p.add_argument("--limit", type=int, default=5, help="Max results")
    p.add_argument("--offset", type=int, default=0, help="Skip this many items")

    # search
    p = subparsers.add_parser("search", help="Search items by keyword")
    p.add_argument("keyword", help="Keyword to match in title, summary or source")
    p.add_argument("--limit", type=int, default=None, help="Max results")

    args = parser.parse_args()

    if args.command == "top":
        asyncio.run(cmd_top(args))
    elif args.command == "search":
        asyncio.run(cmd_search(args))
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
