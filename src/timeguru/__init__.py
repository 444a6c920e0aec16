#!/usr/bin/env python3
"""
timeguru: a Toggl Track companion with a local cache, reports and an
interactive terminal view.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

__version__ = "0.3.0"

QUICK_START_LINES = (
    "timeguru - Toggl Track companion",
    "",
    "Quick start:",
    "  1. timeguru config --set-token YOUR_TOKEN",
    "  2. timeguru sync",
    "  3. timeguru tui",
    "",
    "Other commands:",
    "  timeguru list [--group] [--offline]",
    "  timeguru export --output report.csv [--group | --group-by-day]",
    "  timeguru track start -m 'Description' / timeguru track stop",
    "  timeguru clean --data",
    "",
    "Run 'timeguru --help' for all options.",
)

DATE_HELP = "Date (YYYY-MM-DD or RFC3339)."


@dataclass(frozen=True)
class CliOptions:
    """
    Global options shared by every command.

    Attributes
    ----------
    api_token : Optional[str]
        Token passed with ``--api-token``.
    config_path : Optional[Path]
        Configuration file passed with ``--config``.
    verbose : bool
        Debug logging requested.
    """

    api_token: Optional[str] = None
    config_path: Optional[Path] = None
    verbose: bool = False


def get_quick_start_lines() -> List[str]:
    """
    Return the guide printed by a bare ``timeguru`` invocation.

    Examples
    --------
    >>> get_quick_start_lines()[0]
    'timeguru - Toggl Track companion'
    """
    return list(QUICK_START_LINES)


def build_app():
    """
    Build the Typer app lazily to keep fast-path imports light.

    Returns
    -------
    typer.Typer
        Configured Typer application for the timeguru CLI.
    """
    import typer

    from . import commands

    app = typer.Typer(help="Toggl Track companion: sync, report and reassign time entries.")

    @app.callback(invoke_without_command=True)
    def main_callback(
        ctx: typer.Context,
        api_token: Optional[str] = typer.Option(
            None,
            "--api-token",
            "-a",
            help="Toggl API token (overrides the environment and config).",
        ),
        config: Optional[Path] = typer.Option(
            None,
            "--config",
            "-c",
            help="Path to the configuration file.",
        ),
        verbose: bool = typer.Option(
            False,
            "--verbose",
            "-v",
            help="Write debug output to the log file.",
        ),
    ):
        from .logs import configure_logging

        configure_logging(verbose)
        ctx.obj = CliOptions(api_token=api_token, config_path=config, verbose=verbose)
        if ctx.invoked_subcommand is None:
            for line in get_quick_start_lines():
                print(line)

    @app.command("config")
    def config_cmd(
        ctx: typer.Context,
        set_token: Optional[str] = typer.Option(
            None, "--set-token", help="Store the Toggl API token."
        ),
        set_date_range: Optional[int] = typer.Option(
            None, "--set-date-range", help="Default date range in days."
        ),
        set_round_minutes: Optional[int] = typer.Option(
            None, "--set-round-minutes", help="Rounding granularity in minutes (0 disables)."
        ),
        show: bool = typer.Option(False, "--show", help="Print the current configuration."),
    ):
        options: CliOptions = ctx.obj
        exit_code = commands.run_config(
            set_token=set_token,
            set_date_range=set_date_range,
            set_round_minutes=set_round_minutes,
            show=show,
            config_path=options.config_path,
        )
        raise typer.Exit(code=exit_code)

    @app.command("list")
    def list_cmd(
        ctx: typer.Context,
        start: Optional[str] = typer.Option(None, "--start", help=f"Start {DATE_HELP}"),
        end: Optional[str] = typer.Option(None, "--end", help=f"End {DATE_HELP}"),
        project: Optional[int] = typer.Option(None, "--project", help="Project id filter."),
        tag: Optional[str] = typer.Option(None, "--tag", help="Tag filter."),
        group: bool = typer.Option(False, "--group", "-g", help="Group by description."),
        offline: bool = typer.Option(False, "--offline", help="Read from the local cache."),
    ):
        options: CliOptions = ctx.obj
        exit_code = commands.run_list(
            start=start,
            end=end,
            project_id=project,
            tag=tag,
            group=group,
            offline=offline,
            api_token=options.api_token,
            config_path=options.config_path,
        )
        raise typer.Exit(code=exit_code)

    @app.command("sync")
    def sync_cmd(
        ctx: typer.Context,
        start: Optional[str] = typer.Option(None, "--start", help=f"Start {DATE_HELP}"),
        end: Optional[str] = typer.Option(None, "--end", help=f"End {DATE_HELP}"),
    ):
        options: CliOptions = ctx.obj
        exit_code = commands.run_sync(
            start=start,
            end=end,
            api_token=options.api_token,
            config_path=options.config_path,
        )
        raise typer.Exit(code=exit_code)

    @app.command("tui")
    def tui_cmd(
        ctx: typer.Context,
        start: Optional[str] = typer.Option(None, "--start", help=f"Start {DATE_HELP}"),
        end: Optional[str] = typer.Option(None, "--end", help=f"End {DATE_HELP}"),
    ):
        options: CliOptions = ctx.obj
        exit_code = commands.run_tui(
            start=start,
            end=end,
            api_token=options.api_token,
            config_path=options.config_path,
        )
        raise typer.Exit(code=exit_code)

    @app.command("clean")
    def clean_cmd(
        ctx: typer.Context,
        all_items: bool = typer.Option(False, "--all", help="Delete database and config."),
        data: bool = typer.Option(False, "--data", help="Delete the database."),
        config: bool = typer.Option(False, "--config", help="Delete the configuration."),
        yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
    ):
        options: CliOptions = ctx.obj
        exit_code = commands.run_clean(
            all_items=all_items,
            data=data,
            config=config,
            yes=yes,
            config_path=options.config_path,
        )
        raise typer.Exit(code=exit_code)

    @app.command("export")
    def export_cmd(
        ctx: typer.Context,
        output: Path = typer.Option(..., "--output", "-o", help="CSV file to write."),
        start: Optional[str] = typer.Option(None, "--start", help=f"Start {DATE_HELP}"),
        end: Optional[str] = typer.Option(None, "--end", help=f"End {DATE_HELP}"),
        include_metadata: bool = typer.Option(
            False, "--include-metadata", help="Write a metadata block first."
        ),
        group: bool = typer.Option(False, "--group", help="Group by description."),
        group_by_day: bool = typer.Option(
            False, "--group-by-day", help="Group by description and day."
        ),
    ):
        options: CliOptions = ctx.obj
        exit_code = commands.run_export(
            output=output,
            start=start,
            end=end,
            include_metadata=include_metadata,
            group=group,
            group_by_day=group_by_day,
            config_path=options.config_path,
        )
        raise typer.Exit(code=exit_code)

    track_app = typer.Typer(help="Start or stop a running time entry.")

    @track_app.command("start")
    def track_start_cmd(
        ctx: typer.Context,
        message: Optional[str] = typer.Option(
            None, "--message", "-m", help="Description for the new entry."
        ),
    ):
        options: CliOptions = ctx.obj
        exit_code = commands.run_track_start(
            message=message,
            api_token=options.api_token,
            config_path=options.config_path,
        )
        raise typer.Exit(code=exit_code)

    @track_app.command("stop")
    def track_stop_cmd(ctx: typer.Context):
        options: CliOptions = ctx.obj
        exit_code = commands.run_track_stop(
            api_token=options.api_token,
            config_path=options.config_path,
        )
        raise typer.Exit(code=exit_code)

    app.add_typer(track_app, name="track")
    return app


def main():
    """
    Entry point for the timeguru command.
    """
    app = build_app()
    app()


if __name__ == "__main__":
    main()
