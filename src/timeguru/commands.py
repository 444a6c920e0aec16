#!/usr/bin/env python3
"""
Command handlers behind the timeguru CLI.

Each ``run_*`` function prints its own output and returns a process exit
code; failures are reported on stderr as ``timeguru: <command> failed: ...``.
"""

from __future__ import annotations

import logging
import sqlite3
import sys
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from .cache import TimeGuruStore
from .config import Config, ConfigError, get_config_path, load_config, resolve_api_token, save_config
from .export import ExportMetadata, write_export
from .models import NO_DESCRIPTION, TimeEntry, normalize_to_utc
from .processor import filter_by_project, filter_by_tag, group_by_description
from .toggl import TogglClient, TogglError

LOGGER = logging.getLogger(__name__)

COMMAND_ERRORS = (TogglError, ConfigError, sqlite3.Error, OSError, ValueError)
SYNC_WINDOW_DAYS = 90
DESCRIPTION_WIDTH = 60
TIME_ENTRIES_RESOURCE = "time_entries"

ClientFactory = Callable[[str], TogglClient]


def _fail(command: str, exc: BaseException) -> int:
    LOGGER.error("%s failed: %s", command, exc)
    print(f"timeguru: {command} failed: {exc}", file=sys.stderr)
    return 1


def parse_cli_date(value: str) -> datetime:
    """
    Parse a command-line date.

    Parameters
    ----------
    value : str
        ``YYYY-MM-DD`` (midnight UTC) or an RFC 3339 / ISO 8601 datetime.

    Returns
    -------
    datetime
        Timezone-aware datetime in UTC.

    Raises
    ------
    ValueError
        If the value matches neither format.

    Examples
    --------
    >>> parse_cli_date("2025-01-20").isoformat()
    '2025-01-20T00:00:00+00:00'
    >>> parse_cli_date("2025-01-20T12:30:00+02:00").isoformat()
    '2025-01-20T10:30:00+00:00'
    """
    text = value.strip()
    try:
        parsed_date = date.fromisoformat(text)
    except ValueError:
        parsed_date = None
    if parsed_date is not None and len(text) == 10:
        return datetime.combine(parsed_date, time(0, 0), tzinfo=timezone.utc)
    candidate = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise ValueError(
            f"Invalid date format: {value}. Use YYYY-MM-DD or RFC3339 format."
        ) from exc
    return normalize_to_utc(parsed)


def resolve_range(
    start: Optional[str],
    end: Optional[str],
    default_span: timedelta,
    now: Optional[datetime] = None,
) -> Tuple[datetime, datetime]:
    """
    Resolve optional CLI dates into a concrete range.

    Examples
    --------
    >>> now = datetime(2025, 1, 20, tzinfo=timezone.utc)
    >>> start, end = resolve_range(None, None, timedelta(days=7), now=now)
    >>> (start.date().isoformat(), end.date().isoformat())
    ('2025-01-13', '2025-01-20')
    """
    range_end = parse_cli_date(end) if end else (now or datetime.now(timezone.utc))
    range_start = parse_cli_date(start) if start else range_end - default_span
    return range_start, range_end


def truncate(text: str, max_len: int) -> str:
    """
    Shorten ``text`` to ``max_len`` characters, ending with ``...``.

    Examples
    --------
    >>> truncate("short", 10)
    'short'
    >>> truncate("a" * 12, 10)
    'aaaaaaa...'
    """
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def _describe(entry_description: Optional[str]) -> str:
    return entry_description if entry_description is not None else NO_DESCRIPTION


def run_config(
    *,
    set_token: Optional[str] = None,
    set_date_range: Optional[int] = None,
    set_round_minutes: Optional[int] = None,
    show: bool = False,
    config_path: Optional[Path] = None,
) -> int:
    """
    Update or print configuration.
    """
    try:
        config = load_config(config_path)
        changed = False
        if set_token is not None:
            config.api_token = set_token.strip()
            changed = True
            print("API token saved successfully")
        if set_date_range is not None:
            if set_date_range <= 0:
                raise ValueError("Date range must be a positive number of days.")
            config.default_date_range_days = set_date_range
            changed = True
            print(f"Default date range set to {set_date_range} days")
        if set_round_minutes is not None:
            if set_round_minutes < 0:
                raise ValueError("Rounding minutes cannot be negative.")
            config.round_duration_minutes = set_round_minutes
            changed = True
            print(f"Rounding duration set to {set_round_minutes} minutes")
        if changed:
            save_config(config, path=config_path)
        if show or not changed:
            for line in format_config_lines(config):
                print(line)
    except COMMAND_ERRORS as exc:
        return _fail("config", exc)
    return 0


def format_config_lines(config: Config) -> List[str]:
    """
    Describe configuration without revealing the token.

    Examples
    --------
    >>> format_config_lines(Config(api_token="secret"))[-1]
    '  API token configured: yes'
    """
    round_minutes = config.round_duration_minutes
    lines = [
        "Current Configuration:",
        f"  Default date range: {config.default_date_range_days} days",
        f"  Report format: {config.preferred_report_format}",
        "  Round duration: {}".format(
            f"{round_minutes} minutes" if round_minutes else "off"
        ),
    ]
    if config.current_user_email:
        lines.append(f"  User: {config.current_user_email}")
    lines.append(f"  API token configured: {'yes' if config.api_token else 'no'}")
    return lines


def print_entries(entries: Sequence[TimeEntry]) -> None:
    print(f"\nTime Entries ({len(entries)}):")
    print(f"{'Date':<20} {'Description':<60} {'Duration':>10}")
    print("-" * 92)
    for entry in entries:
        description = truncate(_describe(entry.description), DESCRIPTION_WIDTH)
        print(
            f"{entry.start.strftime('%Y-%m-%d %H:%M'):<20} "
            f"{description:<60} {entry.hours:>9.2f}h"
        )


def print_groups(entries: Sequence[TimeEntry], round_minutes: Optional[int]) -> None:
    groups = group_by_description(entries)
    print(f"\nGrouped Time Entries ({len(groups)} groups):")
    print(f"{'Description':<60} {'Duration':>10} {'Entries':>10}")
    print("-" * 82)
    for group in groups:
        hours = group.rounded_hours(round_minutes) if round_minutes else group.total_hours()
        description = truncate(_describe(group.description), DESCRIPTION_WIDTH)
        print(f"{description:<60} {hours:>9.2f}h {len(group.entries):>10}")


def run_list(
    *,
    start: Optional[str] = None,
    end: Optional[str] = None,
    project_id: Optional[int] = None,
    tag: Optional[str] = None,
    group: bool = False,
    offline: bool = False,
    api_token: Optional[str] = None,
    config_path: Optional[Path] = None,
    store: Optional[TimeGuruStore] = None,
    client_factory: ClientFactory = TogglClient,
) -> int:
    """
    List entries from the remote service, or from the cache when offline.

    Parameters
    ----------
    start, end : Optional[str]
        Range bounds as CLI dates.
    project_id : Optional[int]
        Keep entries assigned to this project.
    tag : Optional[str]
        Keep entries carrying this tag.
    group : bool
        Print groups instead of entries.
    offline : bool
        Read the cache instead of the remote service.
    api_token : Optional[str]
        Token from the command line.
    config_path : Optional[Path]
        Configuration file override.
    store : Optional[TimeGuruStore]
        Cache (defaults to the standard database).
    client_factory : ClientFactory
        Builds the remote client from a token.

    Returns
    -------
    int
        Exit code.
    """
    try:
        config = load_config(config_path)
        store = store or TimeGuruStore()
        range_start, range_end = resolve_range(start, end, config.default_date_range())
        if offline:
            entries = store.get_time_entries(range_start, range_end, config.current_user_id)
        else:
            client = client_factory(resolve_api_token(config, api_token))
            entries = client.get_time_entries(range_start, range_end)
            store.save_time_entries(entries)
            store.update_sync_metadata(
                TIME_ENTRIES_RESOURCE, entries[-1].id if entries else None
            )
        if project_id is not None:
            entries = filter_by_project(entries, project_id)
        if tag:
            entries = filter_by_tag(entries, tag)
        if group:
            print_groups(entries, config.round_duration_minutes)
        else:
            print_entries(entries)
    except COMMAND_ERRORS as exc:
        return _fail("list", exc)
    return 0


def run_sync(
    *,
    start: Optional[str] = None,
    end: Optional[str] = None,
    api_token: Optional[str] = None,
    config_path: Optional[Path] = None,
    store: Optional[TimeGuruStore] = None,
    client_factory: ClientFactory = TogglClient,
) -> int:
    """
    Download entries and projects into the cache.
    """
    try:
        config = load_config(config_path)
        client = client_factory(resolve_api_token(config, api_token))
        store = store or TimeGuruStore()

        user_id = client.get_current_user_id()
        user_email = client.get_current_user_email()
        if config.current_user_id is None:
            print(f"Configured for user: {user_email}")
        elif config.current_user_id != user_id:
            print(f"Switching to new user account: {user_email}")
            print("Previous data will not be visible.")
            print("Use 'timeguru clean --data' to remove old data if needed.")
        if config.current_user_id != user_id or config.current_user_email != user_email:
            config.current_user_id = user_id
            config.current_user_email = user_email
            save_config(config, path=config_path)

        range_start, range_end = resolve_range(start, end, timedelta(days=SYNC_WINDOW_DAYS))
        print(
            "Syncing time entries from {} to {}...".format(
                range_start.strftime("%Y-%m-%d"), range_end.strftime("%Y-%m-%d")
            )
        )
        entries = client.get_time_entries(range_start, range_end)
        count = store.save_time_entries(entries)
        store.update_sync_metadata(TIME_ENTRIES_RESOURCE, entries[-1].id if entries else None)
        LOGGER.info("Synced %d time entries", count)
        print(f"Successfully synced {count} time entries")

        print("Syncing projects and workspaces...")
        total_projects = 0
        for workspace in client.get_workspaces():
            total_projects += store.save_projects(client.get_projects(workspace.id))
        store.update_sync_metadata("projects")
        LOGGER.info("Synced %d projects", total_projects)
        print(f"Successfully synced {total_projects} projects")
    except COMMAND_ERRORS as exc:
        return _fail("sync", exc)
    return 0


def run_tui(
    *,
    start: Optional[str] = None,
    end: Optional[str] = None,
    api_token: Optional[str] = None,
    config_path: Optional[Path] = None,
    store: Optional[TimeGuruStore] = None,
    client_factory: ClientFactory = TogglClient,
    runner: Optional[Callable[..., None]] = None,
) -> int:
    """
    Open the interactive view over cached entries.

    Parameters
    ----------
    runner : Optional[Callable[..., None]]
        Runs the session (defaults to the full-screen interface).
    """
    from .logs import console_logging_enabled, set_console_logging
    from .session import Session

    try:
        config = load_config(config_path)
        store = store or TimeGuruStore()
        range_start, range_end = resolve_range(start, end, config.default_date_range())
        try:
            entries = store.get_time_entries(range_start, range_end, config.current_user_id)
        except (sqlite3.Error, ValueError) as exc:
            raise ValueError(
                f"Failed to load time entries. Try running 'sync' first. ({exc})"
            ) from exc
        if not entries:
            print("No time entries found. Run 'timeguru sync' first to download your data.")
            return 0
        projects = store.get_projects(include_inactive=True)
        client = None
        try:
            client = client_factory(resolve_api_token(config, api_token))
        except (ConfigError, ValueError) as exc:
            LOGGER.info("Running without a remote client: %s", exc)
        session = Session(
            entries,
            range_start,
            range_end,
            round_minutes=config.round_duration_minutes,
            projects=projects,
            client=client,
            store=store,
            user_email=config.current_user_email,
        )
        if runner is None:
            from .tui import run_session

            runner = run_session
        console = console_logging_enabled()
        set_console_logging(False)
        try:
            runner(session)
        finally:
            set_console_logging(console)
    except COMMAND_ERRORS as exc:
        return _fail("tui", exc)
    return 0


def _remove_with_empty_parent(path: Path) -> None:
    path.unlink()
    parent = path.parent
    if parent.is_dir() and not any(parent.iterdir()):
        parent.rmdir()


def run_clean(
    *,
    all_items: bool = False,
    data: bool = False,
    config: bool = False,
    yes: bool = False,
    config_path: Optional[Path] = None,
    database_path: Optional[Path] = None,
    confirm: Optional[Callable[[str], bool]] = None,
) -> int:
    """
    Delete the cache database and/or the configuration file.

    Parameters
    ----------
    confirm : Optional[Callable[[str], bool]]
        Confirmation prompt (defaults to ``typer.confirm``).
    """
    delete_data = all_items or data
    delete_config = all_items or config
    if not delete_data and not delete_config:
        print("Please specify what to delete:")
        print("  --all      Delete both database and config")
        print("  --data     Delete only the database")
        print("  --config   Delete only the configuration")
        return 0

    db_path = database_path or TimeGuruStore().path
    cfg_path = config_path or get_config_path()
    print("\nThe following will be deleted:")
    if delete_data:
        print(f"  Database: {db_path}")
    if delete_config:
        print(f"  Config:   {cfg_path}")

    if not yes:
        if confirm is None:
            import typer

            def confirm(message: str) -> bool:
                return typer.confirm(message, default=False)

        if not confirm("Are you sure you want to continue?"):
            print("Aborted.")
            return 0

    deleted: List[str] = []
    errors: List[str] = []
    targets = []
    if delete_data:
        targets.append(("Database", db_path))
    if delete_config:
        targets.append(("Config", cfg_path))
    for label, path in targets:
        if not path.exists():
            print(f"{label} not found at {path}")
            continue
        try:
            _remove_with_empty_parent(path)
        except OSError as exc:
            errors.append(f"Failed to delete {label.lower()}: {exc}")
        else:
            deleted.append(f"{label}: {path}")

    if deleted:
        print("\nSuccessfully deleted:")
        for item in deleted:
            print(f"  {item}")
    if errors:
        print("\nErrors:")
        for error in errors:
            print(f"  {error}")
        return _fail("clean", RuntimeError("Failed to delete some items"))
    print("\nCleanup complete!")
    return 0


def run_export(
    *,
    output: Path,
    start: Optional[str] = None,
    end: Optional[str] = None,
    include_metadata: bool = False,
    group: bool = False,
    group_by_day: bool = False,
    config_path: Optional[Path] = None,
    store: Optional[TimeGuruStore] = None,
) -> int:
    """
    Export cached entries to CSV.
    """
    try:
        config = load_config(config_path)
        store = store or TimeGuruStore()
        range_start, range_end = resolve_range(start, end, config.default_date_range())
        entries = store.get_time_entries(range_start, range_end, config.current_user_id)
        if not entries:
            print("No time entries found for the specified date range.")
            return 0
        metadata = None
        if include_metadata:
            metadata = ExportMetadata(
                range_start=range_start,
                range_end=range_end,
                entry_count=len(entries),
                user_email=config.current_user_email,
            )
        projects = store.get_projects(include_inactive=True)
        with output.open("w", newline="", encoding="utf-8") as handle:
            rows = write_export(
                handle,
                entries,
                projects,
                group=group,
                group_by_day=group_by_day,
                round_minutes=config.round_duration_minutes,
                metadata=metadata,
            )
        LOGGER.info("Exported %d rows to %s", rows, output)
        print(f"Successfully exported to: {output}")
    except COMMAND_ERRORS as exc:
        return _fail("export", exc)
    return 0


def _first_workspace_id(client: TogglClient) -> int:
    workspaces = client.get_workspaces()
    if not workspaces:
        raise TogglError("No workspace found for your account")
    return workspaces[0].id


def _print_entry_summary(entry: TimeEntry) -> None:
    print(f"  Description: {_describe(entry.description)}")
    print(f"  Started at: {entry.start.strftime('%Y-%m-%d %H:%M:%S')}")


def run_track_start(
    *,
    message: Optional[str] = None,
    api_token: Optional[str] = None,
    config_path: Optional[Path] = None,
    client_factory: ClientFactory = TogglClient,
) -> int:
    try:
        config = load_config(config_path)
        client = client_factory(resolve_api_token(config, api_token))
        workspace_id = _first_workspace_id(client)
        print("Starting time tracking...")
        entry = client.start_time_entry(workspace_id, message)
        print("Time tracking started successfully!")
        _print_entry_summary(entry)
        print(f"  Entry ID: {entry.id}")
    except COMMAND_ERRORS as exc:
        return _fail("track start", exc)
    return 0


def run_track_stop(
    *,
    api_token: Optional[str] = None,
    config_path: Optional[Path] = None,
    client_factory: ClientFactory = TogglClient,
) -> int:
    try:
        config = load_config(config_path)
        client = client_factory(resolve_api_token(config, api_token))
        workspace_id = _first_workspace_id(client)
        print("Stopping time tracking...")
        current = client.get_current_time_entry()
        if current is None:
            print("No time entry is currently running.")
            return 0
        entry = client.stop_time_entry(current.workspace_id or workspace_id, current.id)
        print("Time tracking stopped successfully!")
        _print_entry_summary(entry)
        if entry.stop is not None:
            print(f"  Stopped at: {entry.stop.strftime('%Y-%m-%d %H:%M:%S')}")
        print(f"  Duration: {entry.hours:.2f}h")
    except COMMAND_ERRORS as exc:
        return _fail("track stop", exc)
    return 0
