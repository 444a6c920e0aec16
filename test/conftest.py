"""
Shared pytest fixtures for timeguru tests.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, Future
from datetime import datetime, timezone
from typing import Optional

import pytest

import timeguru.logs as logs
from timeguru.models import Project, TimeEntry


@pytest.fixture(autouse=True)
def isolate_user_files(tmp_path, monkeypatch):
    """
    Ensure tests do not read/write the real configuration, database or log.

    Parameters
    ----------
    tmp_path : pathlib.Path
        Temporary path provided by pytest.
    monkeypatch : pytest.MonkeyPatch
        Monkeypatch fixture for environment updates.
    """
    monkeypatch.setenv("TIMEGURU_CONFIG_PATH", str(tmp_path / "config" / "config.toml"))
    monkeypatch.setenv("TIMEGURU_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("TOGGL_API_TOKEN", raising=False)
    monkeypatch.setattr(logs, "get_log_dir", lambda: tmp_path / "logs")
    yield
    logger = logging.getLogger(logs.LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


def make_entry(
    entry_id: int,
    description: Optional[str] = "Task",
    duration: int = 3600,
    project_id: Optional[int] = None,
    start: Optional[datetime] = None,
    *,
    billable: bool = False,
    tags=None,
    workspace_id: int = 1,
    user_id: int = 9,
) -> TimeEntry:
    """
    Build a finished time entry for tests.
    """
    start = start or datetime(2025, 1, 20, 9, 0, tzinfo=timezone.utc)
    return TimeEntry(
        id=entry_id,
        workspace_id=workspace_id,
        project_id=project_id,
        task_id=None,
        billable=billable,
        start=start,
        stop=None,
        duration=duration,
        description=description,
        tags=tuple(tags) if tags is not None else None,
        tag_ids=None,
        at=start,
        user_id=user_id,
    )


def make_project(
    project_id: int,
    name: str,
    *,
    client_id: Optional[int] = None,
    active: bool = True,
    color: str = "#06aaf5",
) -> Project:
    return Project(
        id=project_id,
        workspace_id=1,
        client_id=client_id,
        name=name,
        active=active,
        color=color,
    )


class ImmediateExecutor(Executor):
    """
    Executor that runs submitted work inline.
    """

    def __init__(self) -> None:
        self.submitted = 0

    def submit(self, fn, /, *args, **kwargs):
        self.submitted += 1
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future


class DeferredExecutor(Executor):
    """
    Executor that holds submitted work until ``run_all`` is called.
    """

    def __init__(self) -> None:
        self.pending = []

    def submit(self, fn, /, *args, **kwargs):
        future: Future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run_all(self) -> None:
        pending, self.pending = self.pending, []
        for future, fn, args, kwargs in pending:
            future.set_result(fn(*args, **kwargs))
