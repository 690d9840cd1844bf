"""Main entry point for the feed resolution system."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .config.loader import Config, load_config
from .agent.resolver import FeedResolver
from .models.feed_source import DedupeAction, DedupeOptions, FeedSource


def _print(model) -> None:
    if isinstance(model, list):
        print(json.dumps([m.model_dump(mode="json") for m in model], indent=2))
    else:
        print(model.model_dump_json(indent=2))


def _progress(status: str, pct: int) -> None:
    print(f"[{pct:3d}%] {status}", file=sys.stderr)


def _read_feeds(path: str) -> list[FeedSource]:
    """One URL per line, or a JSON list of feed objects / URL strings."""
    text = Path(path).read_text(encoding="utf-8")
    if text.lstrip().startswith("["):
        items = json.loads(text)
        return [FeedSource(url=i) if isinstance(i, str) else FeedSource(**i) for i in items]
    return [FeedSource(url=line.strip()) for line in text.splitlines() if line.strip()]


async def _run(args: argparse.Namespace, config: Config) -> int:
    async with FeedResolver(config) as resolver:
        if args.command == "validate":
            results = await resolver.agent.validate_feeds(args.urls)
            _print(results)
            return 0 if all(r.is_valid for r in results) else 2

        if args.command == "resolve":
            result = await resolver.validate_feed_with_discovery(
                args.url, on_progress=None if args.quiet else _progress
            )
            _print(result)
            return 0 if result.is_valid or result.requires_user_selection else 2

        if args.command == "discover":
            result = await resolver.discover_from_website(args.site)
            _print(result)
            return 0 if result.discovered_feeds else 2

        if args.command == "dedupe":
            feeds = _read_feeds(args.feeds)
            if args.groups_only:
                _print(await resolver.find_duplicate_groups(feeds))
                return 0
            options = DedupeOptions(action=DedupeAction(args.action))
            _print(await resolver.remove_duplicates(feeds, options))
            return 0

    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Feed Resolution System - validate, discover and deduplicate content feeds"
    )
    parser.add_argument(
        "-c",
        "--config",
        default=None,
        help="Path to config file (YAML or JSON); built-in defaults when omitted",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("validate", help="Validate feed URLs (direct fetch, then relays)")
    p.add_argument("urls", nargs="+")

    p = sub.add_parser("resolve", help="Resolve an address to a feed, discovering on the site if needed")
    p.add_argument("url")
    p.add_argument("-q", "--quiet", action="store_true", help="Do not print progress")

    p = sub.add_parser("discover", help="List candidate feeds on a website")
    p.add_argument("site")

    p = sub.add_parser("dedupe", help="Find and remove duplicate feeds in a list")
    p.add_argument("feeds", help="File with one URL per line, or a JSON list of feeds")
    p.add_argument(
        "--action",
        choices=[a.value for a in DedupeAction if a is not DedupeAction.USER_SELECT],
        default=DedupeAction.KEEP_FIRST.value,
    )
    p.add_argument("--groups-only", action="store_true", help="Print duplicate groups without removing")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    config = Config()
    if args.config:
        config_path = Path(args.config)
        if not config_path.exists():
            print(f"Config not found: {config_path}", file=sys.stderr)
            return 1
        config = load_config(config_path)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    return asyncio.run(_run(args, config))


if __name__ == "__main__":
    sys.exit(main())
