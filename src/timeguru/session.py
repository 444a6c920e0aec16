#!/usr/bin/env python3
"""
Interactive session state machine.

A :class:`Session` owns a :class:`SessionState` and is the only code that
mutates it. Key presses arrive as prompt_toolkit-style key names
(``"j"``, ``"down"``, ``"escape"``, ``"c-c"``...) and are routed through a
single table keyed by the active :class:`Overlay`, so an open overlay
receives every key.

Project reassignment runs on a single background worker. The worker only
talks to the remote client and the cache; it reports back through a queue
that :meth:`Session.poll` drains on the UI thread before each render.
"""

from __future__ import annotations

import logging
import queue
import sqlite3
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .models import GroupedTimeEntry, Project, TimeEntry
from .navigation import ListSelection
from .processor import (
    TimeEntryFilter,
    group_by_description,
    group_by_description_and_day,
    sort_by_date,
)

LOGGER = logging.getLogger(__name__)

QUIT_KEYS = ("q", "escape", "c-c")
SEARCH_PREFIX = "/"


class ClipboardUnavailable(RuntimeError):
    """
    No clipboard mechanism exists on this system.
    """


class Overlay(Enum):
    NONE = "none"
    FILTER_PANEL = "filter_panel"
    PROJECT_SELECTOR = "project_selector"


class GroupingMode(Enum):
    OFF = "off"
    BY_DESCRIPTION = "by_description"
    BY_DESCRIPTION_AND_DAY = "by_description_and_day"


@dataclass
class SessionState:
    """
    Everything the interactive view displays.

    Attributes
    ----------
    all_entries : List[TimeEntry]
        Canonical entry collection for the session.
    entries : List[TimeEntry]
        Entries after the active filter (and chronological sort, when on).
    groups : List[GroupedTimeEntry]
        Groups derived from ``entries``.
    range_start, range_end : datetime
        Date range the entries were loaded for.
    round_minutes : Optional[int]
        Rounding granularity; None or 0 disables rounding.
    projects : Dict[int, Project]
        Known projects by id, archived ones included.
    grouped : bool
        Display ``groups`` instead of ``entries``.
    group_by_day : bool
        Build groups per description, project and day.
    sort_by_date : bool
        Sort ``entries`` by ascending start.
    show_rounded : bool
        Display rounded hours when a granularity is configured.
    active_filter : TimeEntryFilter
        Current filter criteria.
    selection : ListSelection
        Cursor over the displayed collection.
    overlay : Overlay
        Overlay that currently receives key input.
    project_candidates : List[Project]
        Project selector candidates sorted by name.
    project_selection : ListSelection
        Cursor over ``project_candidates``.
    project_search : str
        Search text including its leading ``/``; empty when no search is active.
    status_message : Optional[str]
        Latest user-facing message.
    busy : bool
        True while a reassignment batch is in flight.
    should_quit : bool
        Set by the quit keys.
    user_email : Optional[str]
        Signed-in user, when known.
    """

    all_entries: List[TimeEntry]
    entries: List[TimeEntry]
    groups: List[GroupedTimeEntry]
    range_start: datetime
    range_end: datetime
    round_minutes: Optional[int] = None
    projects: Dict[int, Project] = field(default_factory=dict)
    grouped: bool = False
    group_by_day: bool = False
    sort_by_date: bool = False
    show_rounded: bool = True
    active_filter: TimeEntryFilter = field(default_factory=TimeEntryFilter)
    selection: ListSelection = field(default_factory=ListSelection)
    overlay: Overlay = Overlay.NONE
    project_candidates: List[Project] = field(default_factory=list)
    project_selection: ListSelection = field(default_factory=ListSelection)
    project_search: str = ""
    status_message: Optional[str] = None
    busy: bool = False
    should_quit: bool = False
    user_email: Optional[str] = None

    @property
    def grouping_mode(self) -> GroupingMode:
        if not self.grouped:
            return GroupingMode.OFF
        if self.group_by_day:
            return GroupingMode.BY_DESCRIPTION_AND_DAY
        return GroupingMode.BY_DESCRIPTION

    @property
    def displayed_length(self) -> int:
        return len(self.groups) if self.grouped else len(self.entries)

    @property
    def search_active(self) -> bool:
        return bool(self.project_search)

    @property
    def search_text(self) -> str:
        return self.project_search.lstrip(SEARCH_PREFIX)

    def selected_project(self) -> Optional[Project]:
        index = self.project_selection.selected
        if index is None or index >= len(self.project_candidates):
            return None
        return self.project_candidates[index]

    def selected_entries(self) -> Optional[Tuple[TimeEntry, ...]]:
        """
        Return the entries behind the highlighted row.

        A group row yields every member entry; a raw row yields one entry.
        """
        index = self.selection.selected
        if index is None:
            return None
        if self.grouped:
            if index >= len(self.groups):
                return None
            return self.groups[index].entries
        if index >= len(self.entries):
            return None
        return (self.entries[index],)

    def selected_description(self) -> Optional[str]:
        index = self.selection.selected
        if index is None:
            return None
        rows = self.groups if self.grouped else self.entries
        if index >= len(rows):
            return None
        return rows[index].description or None


@dataclass(frozen=True)
class ReassignmentRequest:
    project_id: int
    project_name: str
    entries: Tuple[TimeEntry, ...]
    batch: bool


@dataclass(frozen=True)
class ReassignmentOutcome:
    """
    Result of one reassignment batch.

    Attributes
    ----------
    request : ReassignmentRequest
        The request that was processed.
    updated_ids : Tuple[int, ...]
        Entries whose project was changed remotely.
    failures : Tuple[Tuple[int, str], ...]
        ``(entry_id, cause)`` for every entry that was not changed.
    """

    request: ReassignmentRequest
    updated_ids: Tuple[int, ...] = ()
    failures: Tuple[Tuple[int, str], ...] = ()

    @property
    def success_count(self) -> int:
        return len(self.updated_ids)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    def summary(self) -> str:
        """
        Build the status line for this outcome.

        Examples
        --------
        >>> request = ReassignmentRequest(1, "Ops", (), batch=True)
        >>> ReassignmentOutcome(request, (1, 3), ((2, "boom"),)).summary()
        'Assigned Ops to 2/3 entries (1 failed)'
        >>> ReassignmentOutcome(request, (1, 2, 3)).summary()
        'Assigned Ops to 3 entries'
        """
        name = self.request.project_name
        if not self.request.batch:
            if self.failures:
                return f"Failed to assign project: {self.failures[0][1]}"
            return f"Assigned project: {name}"
        total = self.success_count + self.failure_count
        if not self.failures:
            return f"Assigned {name} to {self.success_count} entries"
        return (
            f"Assigned {name} to {self.success_count}/{total} entries "
            f"({self.failure_count} failed)"
        )


def run_reassignment(client, request: ReassignmentRequest, store=None) -> ReassignmentOutcome:
    """
    Set the project on every requested entry, one at a time.

    A failure on one entry never stops the remaining entries, so the
    outcome always accounts for every requested entry.

    Parameters
    ----------
    client : TogglClient
        Remote client providing ``try_update_time_entry_project``.
    request : ReassignmentRequest
        Entries and target project.
    store : Optional[TimeGuruStore], optional
        Cache to update after each remote success.

    Returns
    -------
    ReassignmentOutcome
        Updated ids and per-entry failures.
    """
    updated: List[int] = []
    failures: List[Tuple[int, str]] = []
    for entry in request.entries:
        LOGGER.debug(
            "Assigning project %s to entry %s in workspace %s",
            request.project_id,
            entry.id,
            entry.workspace_id,
        )
        try:
            result = client.try_update_time_entry_project(
                entry.workspace_id, entry.id, request.project_id
            )
        except Exception as exc:
            LOGGER.exception("Unexpected failure assigning project to entry %s", entry.id)
            failures.append((entry.id, f"Unexpected error: {exc}"))
            continue
        if not result.ok:
            LOGGER.error("API error assigning project to entry %s: %s", entry.id, result.error)
            failures.append((entry.id, result.error or "Unknown error"))
            continue
        updated.append(entry.id)
        if store is not None:
            try:
                store.update_time_entry_project(entry.id, request.project_id)
            except (sqlite3.Error, OSError) as exc:
                LOGGER.error("Failed to cache project for entry %s: %s", entry.id, exc)
    LOGGER.info(
        "Reassignment complete: %d succeeded, %d failed out of %d",
        len(updated),
        len(failures),
        len(request.entries),
    )
    return ReassignmentOutcome(request, tuple(updated), tuple(failures))


class Session:
    """
    Controller owning the interactive session state.

    Parameters
    ----------
    entries : Sequence[TimeEntry]
        Initial entries.
    range_start, range_end : datetime
        Date range the entries cover.
    round_minutes : Optional[int], optional
        Rounding granularity.
    projects : Iterable[Project], optional
        Known projects, archived ones included.
    client : Optional[TogglClient], optional
        Remote client; without one reassignment reports it is unavailable.
    store : Optional[TimeGuruStore], optional
        Cache updated after successful reassignments.
    executor : Optional[Executor], optional
        Executor running reassignment batches. Defaults to a single
        worker thread created on first use.
    user_email : Optional[str], optional
        Signed-in user shown in the header.
    on_complete : Optional[Callable[[], None]], optional
        Called from the worker after a completion message is queued,
        e.g. to wake the render loop.
    clipboard : Optional[Callable[[str], None]], optional
        Copies text to the system clipboard; raises
        :class:`ClipboardUnavailable` when there is no clipboard.
    """

    def __init__(
        self,
        entries: Sequence[TimeEntry],
        range_start: datetime,
        range_end: datetime,
        *,
        round_minutes: Optional[int] = None,
        projects: Iterable[Project] = (),
        client=None,
        store=None,
        executor: Optional[Executor] = None,
        user_email: Optional[str] = None,
        on_complete: Optional[Callable[[], None]] = None,
        clipboard: Optional[Callable[[str], None]] = None,
    ) -> None:
        entry_list = list(entries)
        project_map = {project.id: project for project in projects}
        self.state = SessionState(
            all_entries=list(entry_list),
            entries=entry_list,
            groups=group_by_description(entry_list),
            range_start=range_start,
            range_end=range_end,
            round_minutes=round_minutes,
            projects=project_map,
            selection=ListSelection.for_length(len(entry_list)),
            user_email=user_email,
        )
        self._reset_project_candidates()
        self._client = client
        self._store = store
        self._executor = executor
        self._owns_executor = executor is None
        self._completions: "queue.Queue[ReassignmentOutcome]" = queue.Queue()
        self._pending: Optional[Future] = None
        self.on_complete = on_complete
        self.clipboard = clipboard
        self._handlers: Dict[Overlay, Callable[[str], None]] = {
            Overlay.NONE: self._handle_normal_key,
            Overlay.FILTER_PANEL: self._handle_filter_key,
            Overlay.PROJECT_SELECTOR: self._handle_project_key,
        }
        self._normal_keys: Dict[str, Callable[[], None]] = {
            "down": self.next_item,
            "j": self.next_item,
            "up": self.previous_item,
            "k": self.previous_item,
            "pagedown": self.page_down,
            "pageup": self.page_up,
            "home": self.first_item,
            "end": self.last_item,
            "g": self.toggle_grouping,
            "d": self.toggle_day_grouping,
            "s": self.toggle_sort_by_date,
            "r": self.toggle_rounding,
            "f": self.open_filter_panel,
            "p": self.open_project_selector,
            "y": self.copy_description,
        }
        for key in QUIT_KEYS:
            self._normal_keys[key] = self.quit
        self._filter_keys: Dict[str, Callable[[], None]] = {
            "f": self.close_overlay,
            "escape": self.close_overlay,
            "b": self.toggle_billable_filter,
            "c": self.clear_filters,
        }
        self._project_nav_keys: Dict[str, Callable[[int], None]] = {
            "down": self.state.project_selection.next,
            "j": self.state.project_selection.next,
            "up": self.state.project_selection.previous,
            "k": self.state.project_selection.previous,
            "pagedown": self.state.project_selection.page_down,
            "pageup": self.state.project_selection.page_up,
            "home": self.state.project_selection.first,
            "end": self.state.project_selection.last,
        }

    # Key routing

    def handle_key(self, key: str) -> None:
        """
        Route one key press to the active overlay's handler.
        """
        self._handlers[self.state.overlay](key)

    def _handle_normal_key(self, key: str) -> None:
        action = self._normal_keys.get(key)
        if action is not None:
            action()

    def _handle_filter_key(self, key: str) -> None:
        action = self._filter_keys.get(key)
        if action is not None:
            action()

    def _handle_project_key(self, key: str) -> None:
        state = self.state
        if key == "escape" or (key == "p" and not state.search_active):
            self.cancel_project_selector()
        elif key == "enter":
            self.assign_project_to_selection()
        elif key == "backspace":
            if state.search_active:
                state.project_search = state.project_search[:-1]
                self._filter_project_candidates()
        elif key == SEARCH_PREFIX and not state.search_active:
            state.project_search = SEARCH_PREFIX
        elif state.search_active and len(key) == 1 and key.isprintable():
            state.project_search += key
            self._filter_project_candidates()
        else:
            action = self._project_nav_keys.get(key)
            if action is not None:
                action(len(state.project_candidates))

    # Normal mode

    def quit(self) -> None:
        self.state.should_quit = True

    def next_item(self) -> None:
        self.state.selection.next(self.state.displayed_length)

    def previous_item(self) -> None:
        self.state.selection.previous(self.state.displayed_length)

    def page_down(self) -> None:
        self.state.selection.page_down(self.state.displayed_length)

    def page_up(self) -> None:
        self.state.selection.page_up(self.state.displayed_length)

    def first_item(self) -> None:
        self.state.selection.first(self.state.displayed_length)

    def last_item(self) -> None:
        self.state.selection.last(self.state.displayed_length)

    def toggle_grouping(self) -> None:
        self.state.grouped = not self.state.grouped
        self.state.selection.reset(self.state.displayed_length)

    def toggle_day_grouping(self) -> None:
        self.state.group_by_day = not self.state.group_by_day
        self._recompute_groups()
        self.state.selection.reset(self.state.displayed_length)

    def toggle_sort_by_date(self) -> None:
        """
        Flip chronological sorting.

        Turning it off restores the filtered entries in load order.
        """
        state = self.state
        state.sort_by_date = not state.sort_by_date
        if state.sort_by_date:
            state.entries = sort_by_date(state.entries)
        else:
            state.entries = state.active_filter.apply(
                state.all_entries, state.projects.values()
            )
        self._recompute_groups()
        state.selection.reset(state.displayed_length)

    def toggle_rounding(self) -> None:
        self.state.show_rounded = not self.state.show_rounded

    def copy_description(self) -> None:
        """
        Copy the highlighted row's description to the clipboard.

        The outcome is reported through the status message.
        """
        state = self.state
        description = state.selected_description()
        if description is None:
            state.status_message = "No description to copy"
            return
        if self.clipboard is None:
            state.status_message = "Clipboard unavailable"
            return
        try:
            self.clipboard(description)
        except ClipboardUnavailable as exc:
            LOGGER.warning("Clipboard unavailable: %s", exc)
            state.status_message = "Clipboard unavailable"
        except (RuntimeError, OSError) as exc:
            LOGGER.error("Failed to copy to clipboard: %s", exc)
            state.status_message = "Failed to copy to clipboard"
        else:
            state.status_message = f"Copied: {description}"

    def open_filter_panel(self) -> None:
        self.state.overlay = Overlay.FILTER_PANEL

    def open_project_selector(self) -> None:
        self.state.overlay = Overlay.PROJECT_SELECTOR
        self.state.project_search = ""
        self._reset_project_candidates()

    def close_overlay(self) -> None:
        self.state.overlay = Overlay.NONE

    # Filter panel

    def toggle_billable_filter(self) -> None:
        """
        Switch between the billable-only filter and no filter.

        Other criteria are dropped either way.
        """
        if self.state.active_filter.billable_only:
            self.state.active_filter = TimeEntryFilter()
        else:
            self.state.active_filter = TimeEntryFilter().with_billable_only()
        self.apply_filters()

    def clear_filters(self) -> None:
        self.state.active_filter = TimeEntryFilter()
        self.apply_filters()

    def set_filter(self, entry_filter: TimeEntryFilter) -> None:
        self.state.active_filter = entry_filter
        self.apply_filters()

    def apply_filters(self) -> None:
        state = self.state
        state.entries = state.active_filter.apply(state.all_entries, state.projects.values())
        if state.sort_by_date:
            state.entries = sort_by_date(state.entries)
        self._recompute_groups()
        state.selection.reset(state.displayed_length)

    def _recompute_groups(self) -> None:
        if self.state.group_by_day:
            self.state.groups = group_by_description_and_day(self.state.entries)
        else:
            self.state.groups = group_by_description(self.state.entries)

    # Project selector

    def _reset_project_candidates(self) -> None:
        self.state.project_candidates = sorted(
            self.state.projects.values(), key=lambda project: project.name
        )
        self.state.project_selection.reset(len(self.state.project_candidates))

    def _filter_project_candidates(self) -> None:
        query = self.state.search_text.lower()
        if not query:
            self._reset_project_candidates()
            return
        self.state.project_candidates = sorted(
            (
                project
                for project in self.state.projects.values()
                if query in project.name.lower()
            ),
            key=lambda project: project.name,
        )
        self.state.project_selection.reset(len(self.state.project_candidates))

    def cancel_project_selector(self) -> None:
        self.state.overlay = Overlay.NONE
        self.state.project_search = ""
        self._reset_project_candidates()

    def assign_project_to_selection(self) -> bool:
        """
        Queue a reassignment of the highlighted row to the highlighted project.

        Returns
        -------
        bool
            True when a batch was submitted; False when a precondition
            failed and a status message explains why.
        """
        state = self.state
        if state.busy:
            state.status_message = "Project assignment already in progress"
            return False
        project = state.selected_project()
        if project is None:
            LOGGER.warning("No project selected")
            state.status_message = "No project selected"
            return False
        entries = state.selected_entries()
        if entries is None:
            LOGGER.warning("No time entry selected")
            state.status_message = "No time entry selected"
            return False
        if self._client is None:
            LOGGER.error("API client not available")
            state.status_message = "API client not available"
            return False
        request = ReassignmentRequest(
            project_id=project.id,
            project_name=project.name,
            entries=tuple(entries),
            batch=state.grouped,
        )
        LOGGER.info(
            "Submitting reassignment of %d entries to project %s",
            len(request.entries),
            project.id,
        )
        state.busy = True
        state.status_message = f"Assigning {project.name}..."
        self.cancel_project_selector()
        self._pending = self._get_executor().submit(self._run_batch, request)
        return True

    # Worker handoff

    def _get_executor(self) -> Executor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="timeguru-reassign"
            )
        return self._executor

    def _run_batch(self, request: ReassignmentRequest) -> ReassignmentOutcome:
        try:
            outcome = run_reassignment(self._client, request, self._store)
        except Exception as exc:
            LOGGER.exception("Reassignment batch failed")
            outcome = ReassignmentOutcome(
                request,
                failures=tuple((entry.id, str(exc)) for entry in request.entries),
            )
        self._completions.put(outcome)
        if self.on_complete is not None:
            self.on_complete()
        return outcome

    def poll(self) -> bool:
        """
        Apply any finished reassignment batches.

        Returns
        -------
        bool
            True when at least one outcome was applied.
        """
        applied = False
        while True:
            try:
                outcome = self._completions.get_nowait()
            except queue.Empty:
                break
            self._apply_outcome(outcome)
            applied = True
        return applied

    def _apply_outcome(self, outcome: ReassignmentOutcome) -> None:
        state = self.state
        updated = set(outcome.updated_ids)
        project_id = outcome.request.project_id
        if updated:

            def reassign(entries: List[TimeEntry]) -> List[TimeEntry]:
                return [
                    replace(entry, project_id=project_id) if entry.id in updated else entry
                    for entry in entries
                ]

            state.entries = reassign(state.entries)
            state.all_entries = reassign(state.all_entries)
        self._recompute_groups()
        state.selection.clamp(state.displayed_length)
        state.status_message = outcome.summary()
        state.busy = False
        self._pending = None

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the in-flight batch finishes, then apply it.
        """
        pending = self._pending
        if pending is not None:
            pending.result(timeout=timeout)
        return self.poll()

    def close(self) -> None:
        """
        Let an in-flight batch finish and release the worker thread.
        """
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self.poll()
