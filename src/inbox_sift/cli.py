"""Command-line entry point for inbox-sift."""

from __future__ import annotations

import argparse
import shutil
import sys
from collections.abc import Sequence
from pathlib import Path

from inbox_sift.core import AppSettings, configure_logging, load_app_settings, validate_settings
from inbox_sift.core.interfaces import AnalysisError, ProviderError, StorageError
from inbox_sift.core.models import ActionItem
from inbox_sift.intelligence import (
    BatchAnalyzer,
    ReasoningBackend,
    ReminderDrafter,
    build_llm_client,
)
from inbox_sift.storage import SqliteAnalysisStore
from inbox_sift.tracker import RemindctlClient
from inbox_sift.transport import ImapMailProvider
from inbox_sift.triage import (
    ItemRow,
    TriagePipeline,
    compute_viewport,
    filter_by_group,
    viewport_height,
)

_TRIAGE_COMMANDS = ("list", "backlog", "done", "star", "remind")
_TRACKER_MARKS = {"none": " ", "pending": "R", "completed": "x"}


def build_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    parser = argparse.ArgumentParser(description="Inbox triage with cached analysis")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to a .env file containing configuration overrides.",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="info",
        choices=["info", *_TRIAGE_COMMANDS, "cache-stats", "cache-clear"],
        help="Operation to execute.",
    )
    parser.add_argument(
        "target",
        nargs="?",
        default=None,
        help="Action item id or email id for done, star and remind.",
    )
    parser.add_argument(
        "--select",
        type=int,
        default=0,
        help="Index of the selected item in list and backlog views (default: 0).",
    )
    parser.add_argument(
        "--height",
        type=int,
        default=None,
        help="Item rows to show; defaults to the terminal height.",
    )
    parser.add_argument(
        "--group",
        default=None,
        help="Only show items from this account group.",
    )
    parser.add_argument(
        "--no-draft",
        dest="draft",
        action="store_false",
        help="Use the item summary as the reminder title instead of drafting one.",
    )
    return parser


def execute(args: argparse.Namespace, settings: AppSettings) -> int:
    """Execute the requested CLI command and return the exit code."""
    command = args.command
    if command == "info":
        _print_info(settings)
        return 0
    if command in ("cache-stats", "cache-clear"):
        try:
            _run_cache_command(command, settings)
        except StorageError as exc:
            print(f"Cache error: {exc}", file=sys.stderr)
            return 1
        return 0

    problems = validate_settings(settings)
    if problems:
        for problem in problems:
            print(f"Configuration error: {problem}", file=sys.stderr)
        return 1
    if command in ("done", "star", "remind") and not args.target:
        print(f"The {command} command needs an item id.", file=sys.stderr)
        return 2
    return _run_triage(args, settings)


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = load_app_settings(env_file=args.env_file)
    configure_logging(settings.logging)
    raise SystemExit(execute(args, settings))


def _print_info(settings: AppSettings) -> None:
    print("inbox-sift is ready. Configure accounts and LLM settings to get started.")
    if settings.accounts:
        for account in settings.accounts:
            print(f"Account: {account.name} <{account.email}> [{account.group}]")
    else:
        print("Account: (none configured)")
    print(f"Database path: {settings.storage.db_path}")
    preferred = "CLI tool" if settings.llm.prefer_cli else "HTTP API"
    print(f"Reasoning backend: {preferred} first")
    if settings.tracker.enabled:
        lists = ", ".join(entry.list for entry in settings.tracker.lists) or "(none)"
        print(f"Tracker lists: {lists}")
    else:
        print("Tracker: disabled")


def _run_cache_command(command: str, settings: AppSettings) -> None:
    with SqliteAnalysisStore(settings.storage) as store:
        if command == "cache-clear":
            removed = store.clear()
            print(f"Cleared {removed} cached analysis result(s).")
            return
        stats = store.stats()
    print(f"Cached analyses: {stats.total_entries}")
    print(f"Actionable: {stats.actionable_count}")
    oldest = (
        stats.oldest_analyzed_at.isoformat(timespec="minutes")
        if stats.oldest_analyzed_at is not None
        else "-"
    )
    print(f"Oldest analysis: {oldest}")


def _run_triage(args: argparse.Namespace, settings: AppSettings) -> int:
    backend = ReasoningBackend(build_llm_client(settings.llm))
    tracker = RemindctlClient(settings.tracker) if settings.tracker.enabled else None
    providers = [ImapMailProvider(account) for account in settings.accounts]
    try:
        with SqliteAnalysisStore(settings.storage) as store:
            analyzer = BatchAnalyzer(
                store,
                backend,
                batch_size=settings.analysis.batch_size,
                progress_callback=_print_progress,
            )
            with TriagePipeline(settings, providers, store, analyzer, tracker) as pipeline:
                result = pipeline.run()
                if args.command in ("list", "backlog"):
                    items = result.active if args.command == "list" else result.backlog
                    _print_items(
                        filter_by_group(items, args.group),
                        selected=args.select,
                        height=args.height,
                        title="Backlog" if args.command == "backlog" else "Action items",
                    )
                    return 0
                item = _find_item([*result.active, *result.backlog], args.target)
                if item is None:
                    print(f"No action item matches '{args.target}'.", file=sys.stderr)
                    return 1
                drafter = ReminderDrafter(backend) if args.draft else None
                return _apply_action(pipeline, args.command, item, drafter)
    except (AnalysisError, ProviderError) as exc:
        print(f"Triage failed: {exc}", file=sys.stderr)
        return 1


def _apply_action(
    pipeline: TriagePipeline,
    command: str,
    item: ActionItem,
    drafter: ReminderDrafter | None,
) -> int:
    if command == "done":
        if pipeline.mark_done(item):
            print(f"Done: {item.summary}")
            return 0
        print(f"Could not mark '{item.summary}' as done.", file=sys.stderr)
        return 1
    if command == "star":
        if pipeline.star(item):
            print(f"Starred: {item.summary}")
            return 0
        print(f"Could not star '{item.summary}'.", file=sys.stderr)
        return 1

    outcome = pipeline.remind(item, drafter)
    if outcome.success:
        print(f"Reminder added to {outcome.list_name}: {item.summary}")
        return 0
    if outcome.already_exists:
        print("A reminder for this item already exists.")
        return 0
    print(f"Could not create reminder: {outcome.error}", file=sys.stderr)
    return 1


def _find_item(items: Sequence[ActionItem], target: str) -> ActionItem | None:
    for item in items:
        if target in (item.id, item.email_id):
            return item
    return None


def _print_progress(cached: int, pending: int) -> None:
    if pending:
        print(f"Analyzing... {cached} done, {pending} to go", file=sys.stderr)


def _print_items(
    items: Sequence[ActionItem], *, selected: int, height: int | None, title: str
) -> None:
    if not items:
        print(f"{title}: nothing to do.")
        return

    rows_available = viewport_height(shutil.get_terminal_size().lines)
    viewport = compute_viewport(items, selected, height or rows_available)
    print(f"{title} ({len(items)}):")
    if viewport.items_above:
        print(f"  ^ {viewport.items_above} more above")
    for row in viewport.rows:
        if not isinstance(row, ItemRow):
            print(f"{row.title} ({row.count})")
            continue
        item = row.item
        marker = ">" if row.index == viewport.selected_index else " "
        tracker = _TRACKER_MARKS[item.tracker_state]
        deadline = item.deadline or "-"
        print(
            f"{marker} {tracker} {item.id:<24}  {item.account:<12}  "
            f"{deadline:<10}  {item.summary}"
        )
    if viewport.items_below:
        print(f"  v {viewport.items_below} more below")


if __name__ == "__main__":
    main()
