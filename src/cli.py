"""
Command-line interface for mailclean.
"""

from __future__ import annotations
import sys
import argparse
import asyncio
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

# Add src to path for imports
PROJ_ROOT = Path(__file__).resolve().parent
if str(PROJ_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJ_ROOT))

from mailclean.config import Config, _credential_provider, _load_env
from mailclean.logging import logger, setup_logging
from mailclean.models import DeleteStatus, GroupSummary, MessageTable
from mailclean.workflow import DIMENSIONS, CleanupSession


def _configure(require_token: bool = True) -> Config:
    cfg = _load_env(require_token=require_token)
    setup_logging(
        log_level=cfg["LOG_LEVEL"],
        log_file=cfg["LOG_FILE"],
        serialize=cfg["LOG_JSON"],
    )
    return cfg


def _run(action: Callable[[CleanupSession], Awaitable[int]]) -> None:
    """Run one async command inside a session; any failure exits with status 1."""

    async def runner() -> int:
        session = CleanupSession(cfg)
        try:
            return await action(session)
        finally:
            await session.close()

    try:
        cfg = _configure()
        code = asyncio.run(runner())
    except Exception as e:
        logger.exception(f"Command failed: {e}")
        sys.exit(1)
    if code:
        sys.exit(code)


# ---- presentation ----
def _print_summaries(session: CleanupSession, dimension: str, summaries: List[GroupSummary]) -> None:
    if not summaries:
        print(f"No {dimension} groups found.")
        return
    for summary in summaries:
        print(f"{summary.identifier}\t{session.format_option(dimension, summary)}")


def _print_table(table: MessageTable) -> None:
    print(table.title)
    print("\t".join(c.capitalize() for c in table.columns))
    for row in table.rows:
        print("\t".join(row.get(c, "") for c in table.columns))


def _confirm(prompt: str) -> bool:
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


# ---- commands ----
def cmd_labels(args):
    """Count every label."""
    async def action(session: CleanupSession) -> int:
        _print_summaries(session, "label", await session.discover("label"))
        return 0
    _run(action)


def cmd_senders(args):
    """Group messages matching a search term by sender."""
    async def action(session: CleanupSession) -> int:
        _print_summaries(session, "sender", await session.discover("sender", search_term=args.term))
        return 0
    _run(action)


def cmd_subscriptions(args):
    """Group one year's subscription mail by sender."""
    async def action(session: CleanupSession) -> int:
        summaries = await session.discover("subscription", year=args.year)
        _print_summaries(session, "subscription", summaries)
        return 0
    _run(action)


def cmd_cached(args):
    """List cached groups without calling Gmail."""
    async def action(session: CleanupSession) -> int:
        _print_summaries(session, args.dimension, session.cached(args.dimension))
        return 0
    _run(action)


def cmd_show(args):
    """Show subject/date/time of a cached group's messages."""
    async def action(session: CleanupSession) -> int:
        table = await session.show(args.dimension, args.identifier, limit=args.limit)
        if table is None:
            print(f"No messages cached for {args.dimension} '{args.identifier}'. List the groups first.")
            return 0
        _print_table(table)
        return 0
    _run(action)


def cmd_delete(args):
    """Permanently delete the cached messages of one group."""
    async def action(session: CleanupSession) -> int:
        summary = session.cached_summary(args.dimension, args.identifier)
        if summary is not None and summary.count and not args.yes:
            if not _confirm(f"Permanently delete {summary.count} message(s) of {args.dimension} '{args.identifier}'?"):
                print("Aborted.")
                return 0

        outcome = await session.delete(args.dimension, args.identifier)
        if outcome.status is DeleteStatus.NOTHING_TO_DELETE:
            print(f"Nothing to delete for {args.dimension} '{args.identifier}'.")
            return 0
        if outcome.status is DeleteStatus.DELETED:
            print(f"Deleted {outcome.result.succeeded_count} message(s).")
            return 0
        print(
            f"Deleted {outcome.result.succeeded_count} message(s); "
            f"{len(outcome.result.failed_remainder)} could not be deleted: {outcome.result.error}"
        )
        return 1
    _run(action)


def cmd_clear_cache(args):
    """Drop every cached group."""
    async def action(session: CleanupSession) -> int:
        session.clear_caches()
        print("Cache cleared.")
        return 0
    _run(action)


def cmd_login(args):
    """Authorize Gmail access in the browser and save the token."""
    try:
        cfg = _configure(require_token=False)
        _credential_provider(cfg).login()
    except Exception as e:
        logger.exception(f"Authorization failed: {e}")
        sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="mailclean - count and bulk-delete Gmail messages by label, sender or subscription",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s login                        Authorize Gmail access
  %(prog)s labels                       Count messages per label
  %(prog)s senders invoice              Group 'invoice' mail by sender
  %(prog)s subscriptions 2023           Subscription senders of 2023
  %(prog)s show sender a@example.com    Show a cached group's messages
  %(prog)s delete label CATEGORY_SOCIAL Delete a cached group
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    labels_parser = subparsers.add_parser("labels", help="Count messages per label")
    labels_parser.set_defaults(func=cmd_labels)

    senders_parser = subparsers.add_parser("senders", help="Group search hits by sender")
    senders_parser.add_argument("term", help="Gmail search term")
    senders_parser.set_defaults(func=cmd_senders)

    subs_parser = subparsers.add_parser("subscriptions", help="Group a year's subscription mail by sender")
    subs_parser.add_argument("year", type=int, help="Calendar year, e.g. 2023")
    subs_parser.set_defaults(func=cmd_subscriptions)

    cached_parser = subparsers.add_parser("cached", help="List cached groups")
    cached_parser.add_argument("dimension", choices=DIMENSIONS)
    cached_parser.set_defaults(func=cmd_cached)

    show_parser = subparsers.add_parser("show", help="Show a cached group's messages")
    show_parser.add_argument("dimension", choices=DIMENSIONS)
    show_parser.add_argument("identifier")
    show_parser.add_argument("--limit", type=int, default=50, help="Maximum rows (default: 50)")
    show_parser.set_defaults(func=cmd_show)

    delete_parser = subparsers.add_parser("delete", help="Permanently delete a cached group's messages")
    delete_parser.add_argument("dimension", choices=DIMENSIONS)
    delete_parser.add_argument("identifier")
    delete_parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    delete_parser.set_defaults(func=cmd_delete)

    clear_parser = subparsers.add_parser("clear-cache", help="Drop every cached group")
    clear_parser.set_defaults(func=cmd_clear_cache)

    login_parser = subparsers.add_parser("login", help="Authorize Gmail access")
    login_parser.set_defaults(func=cmd_login)

    return parser


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
