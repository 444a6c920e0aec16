"""
Tests for the interactive session state machine.
"""

from __future__ import annotations

import doctest
import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

import timeguru.session as session_module
from conftest import DeferredExecutor, ImmediateExecutor, make_entry, make_project
from timeguru.processor import TimeEntryFilter
from timeguru.render import build_frame
from timeguru.session import GroupingMode, Overlay, Session
from timeguru.toggl import MutationResult

RANGE_START = datetime(2025, 1, 14, tzinfo=timezone.utc)
RANGE_END = datetime(2025, 1, 21, tzinfo=timezone.utc)
DAY = datetime(2025, 1, 20, 9, 0, tzinfo=timezone.utc)


class FakeClient:
    """
    Remote client double recording project updates.
    """

    def __init__(self, fail_ids=(), raise_ids=()):
        self.fail_ids = set(fail_ids)
        self.raise_ids = set(raise_ids)
        self.calls = []

    def try_update_time_entry_project(self, workspace_id, entry_id, project_id):
        self.calls.append((workspace_id, entry_id, project_id))
        if entry_id in self.raise_ids:
            raise RuntimeError("connection pool exploded")
        if entry_id in self.fail_ids:
            return MutationResult(error="Unexpected response status: 500")
        return MutationResult()


class FakeStore:
    def __init__(self, error=None):
        self.error = error
        self.updates = []

    def update_time_entry_project(self, entry_id, project_id):
        if self.error is not None:
            raise self.error
        self.updates.append((entry_id, project_id))
        return True


def _projects():
    return [
        make_project(6, "Web"),
        make_project(5, "Ops"),
        make_project(7, "Archive", active=False),
    ]


def _entries():
    return [
        make_entry(3, "Write report", 1800, None, DAY + timedelta(hours=2)),
        make_entry(2, "Write report", 1200, None, DAY + timedelta(hours=1)),
        make_entry(1, "Write report", 600, None, DAY),
        make_entry(4, "Standup", 900, 5, DAY - timedelta(days=1), billable=True),
    ]


def _session(entries=None, **kwargs):
    kwargs.setdefault("projects", _projects())
    kwargs.setdefault("executor", ImmediateExecutor())
    return Session(
        _entries() if entries is None else entries,
        RANGE_START,
        RANGE_END,
        round_minutes=15,
        **kwargs,
    )


def _press(session, *keys):
    for key in keys:
        session.handle_key(key)


def _select_project(session, name):
    names = [project.name for project in session.state.project_candidates]
    session.state.project_selection.selected = names.index(name)


@pytest.mark.unit
def test_initial_state():
    """
    Ensure a new session shows raw entries with the first one selected.

    Returns
    -------
    None
        This test asserts the initial state.
    """
    session = _session()
    state = session.state

    assert state.overlay is Overlay.NONE
    assert state.grouping_mode is GroupingMode.OFF
    assert state.selection.selected == 0
    assert state.show_rounded
    assert [group.description for group in state.groups] == ["Write report", "Standup"]
    assert [project.name for project in state.project_candidates] == ["Archive", "Ops", "Web"]


@pytest.mark.parametrize("key", ["q", "escape", "c-c"])
@pytest.mark.unit
def test_quit_keys(key):
    """
    Ensure each quit key ends the session.

    Returns
    -------
    None
        This test asserts quit handling.
    """
    session = _session()

    session.handle_key(key)

    assert session.state.should_quit


@pytest.mark.unit
def test_navigation_follows_displayed_collection():
    """
    Ensure navigation bounds switch with grouping.

    Returns
    -------
    None
        This test asserts selection over raw and grouped lists.
    """
    session = _session()

    _press(session, "end")
    assert session.state.selection.selected == 3
    _press(session, "j")
    assert session.state.selection.selected == 0

    _press(session, "k", "g")
    assert session.state.grouping_mode is GroupingMode.BY_DESCRIPTION
    assert session.state.selection.selected == 0
    _press(session, "k")
    assert session.state.selection.selected == 1
    _press(session, "pagedown", "home")
    assert session.state.selection.selected == 0


@pytest.mark.unit
def test_day_grouping_recomputes_groups():
    """
    Ensure the day toggle rebuilds groups with dates.

    Returns
    -------
    None
        This test asserts day grouping in the session.
    """
    session = _session()

    _press(session, "g", "d")

    assert session.state.grouping_mode is GroupingMode.BY_DESCRIPTION_AND_DAY
    assert all(group.date is not None for group in session.state.groups)
    _press(session, "d")
    assert all(group.date is None for group in session.state.groups)


@pytest.mark.unit
def test_sort_toggle_restores_load_order():
    """
    Ensure chronological sort can be turned on and back off.

    Returns
    -------
    None
        This test asserts the sort toggle.
    """
    session = _session()

    _press(session, "s")
    assert [entry.id for entry in session.state.entries] == [4, 1, 2, 3]

    _press(session, "s")
    assert [entry.id for entry in session.state.entries] == [3, 2, 1, 4]


@pytest.mark.unit
def test_rounding_toggle():
    """
    Ensure the rounding flag flips.

    Returns
    -------
    None
        This test asserts the rounding toggle.
    """
    session = _session()

    _press(session, "r")

    assert not session.state.show_rounded


@pytest.mark.unit
def test_filter_panel_is_modal():
    """
    Ensure normal-mode keys do nothing while the filter panel is open.

    Returns
    -------
    None
        This test asserts overlay key capture.
    """
    session = _session()

    _press(session, "f", "q", "g", "j", "p")

    assert session.state.overlay is Overlay.FILTER_PANEL
    assert not session.state.should_quit
    assert not session.state.grouped
    assert session.state.selection.selected == 0

    _press(session, "escape")
    assert session.state.overlay is Overlay.NONE


@pytest.mark.unit
def test_billable_toggle_replaces_filter():
    """
    Ensure the billable toggle drops other criteria and clear resets.

    Returns
    -------
    None
        This test asserts filter panel actions.
    """
    session = _session()
    session.set_filter(TimeEntryFilter().with_project(5))
    assert [entry.id for entry in session.state.entries] == [4]

    _press(session, "f", "b")
    assert session.state.active_filter == TimeEntryFilter(billable_only=True)
    assert [entry.id for entry in session.state.entries] == [4]

    _press(session, "b")
    assert session.state.active_filter == TimeEntryFilter()
    assert len(session.state.entries) == 4

    _press(session, "b", "c")
    assert not session.state.active_filter.is_active
    assert session.state.selection.selected == 0
    _press(session, "f")
    assert session.state.overlay is Overlay.NONE


@pytest.mark.unit
def test_filter_to_empty_clears_selection():
    """
    Ensure an empty filtered view has no selection.

    Returns
    -------
    None
        This test asserts selection on empty views.
    """
    session = _session()

    session.set_filter(TimeEntryFilter().with_tag("missing"))

    assert session.state.entries == []
    assert session.state.selection.selected is None


@pytest.mark.unit
def test_project_selector_is_modal_and_cancels():
    """
    Ensure the selector captures keys and cancel resets its search.

    Returns
    -------
    None
        This test asserts project selector routing.
    """
    session = _session()

    _press(session, "p", "q", "g", "j")
    assert session.state.overlay is Overlay.PROJECT_SELECTOR
    assert not session.state.should_quit
    assert not session.state.grouped
    assert session.state.project_selection.selected == 1

    _press(session, "/", "w")
    assert [project.name for project in session.state.project_candidates] == ["Web"]

    _press(session, "escape")
    assert session.state.overlay is Overlay.NONE
    assert session.state.project_search == ""
    assert len(session.state.project_candidates) == 3


@pytest.mark.unit
def test_project_search_treats_letters_as_input():
    """
    Ensure j, k and p extend an active search instead of acting.

    Returns
    -------
    None
        This test asserts search key handling.
    """
    session = _session()

    _press(session, "p", "/", "a", "r")
    assert session.state.project_search == "/ar"
    assert [project.name for project in session.state.project_candidates] == ["Archive"]

    _press(session, "p", "k")
    assert session.state.overlay is Overlay.PROJECT_SELECTOR
    assert session.state.project_search == "/arpk"
    assert session.state.project_candidates == []
    assert session.state.project_selection.selected is None

    _press(session, "backspace", "backspace", "backspace", "backspace")
    assert session.state.project_search == "/"
    assert len(session.state.project_candidates) == 3
    assert session.state.project_selection.selected == 0

    _press(session, "backspace", "p")
    assert session.state.overlay is Overlay.NONE


@pytest.mark.unit
def test_project_search_is_case_insensitive_substring():
    """
    Ensure search matches anywhere in the name ignoring case.

    Returns
    -------
    None
        This test asserts candidate filtering.
    """
    session = _session(projects=_projects() + [make_project(8, "Deep Work")])

    _press(session, "p", "/", "W", "O")

    assert [project.name for project in session.state.project_candidates] == ["Deep Work"]
    assert session.state.project_selection.selected == 0


@pytest.mark.unit
def test_batch_reassignment_partial_failure():
    """
    Ensure one failing member does not stop the rest of the group.

    Returns
    -------
    None
        This test asserts batch failure isolation.
    """
    client = FakeClient(fail_ids={2})
    session = _session(client=client)
    _press(session, "g", "p")
    _select_project(session, "Web")

    _press(session, "enter")
    assert session.poll()

    state = session.state
    assert [call[1] for call in client.calls] == [3, 2, 1]
    assert state.status_message == "Assigned Web to 2/3 entries (1 failed)"
    projects_by_id = {entry.id: entry.project_id for entry in state.all_entries}
    assert projects_by_id == {1: 6, 2: None, 3: 6, 4: 5}
    assert {entry.id: entry.project_id for entry in state.entries} == projects_by_id
    assert state.overlay is Overlay.NONE
    assert state.project_search == ""
    assert not state.busy
    assert sum(len(group.entries) for group in state.groups) == 4
    assert {(group.project_id, len(group.entries)) for group in state.groups} == {
        (6, 2),
        (None, 1),
        (5, 1),
    }

    _press(session, "j")
    assert session.state.selection.selected is not None


@pytest.mark.unit
def test_batch_reassignment_all_success():
    """
    Ensure a clean batch reports the entry count.

    Returns
    -------
    None
        This test asserts the success summary.
    """
    session = _session(client=FakeClient())
    _press(session, "g", "p")
    _select_project(session, "Ops")

    _press(session, "enter")
    session.poll()

    assert session.state.status_message == "Assigned Ops to 3 entries"


@pytest.mark.unit
def test_unexpected_exception_counts_as_failure():
    """
    Ensure a raising client call becomes a per-entry failure.

    Returns
    -------
    None
        This test asserts worker-boundary error handling.
    """
    client = FakeClient(raise_ids={3})
    session = _session(client=client)
    _press(session, "g", "p")
    _select_project(session, "Web")

    _press(session, "enter")
    session.poll()

    assert len(client.calls) == 3
    assert session.state.status_message == "Assigned Web to 2/3 entries (1 failed)"

    request = session_module.ReassignmentRequest(6, "Web", tuple(_entries()[:1]), batch=False)
    outcome = session_module.run_reassignment(client, request)
    assert outcome.failures == ((3, "Unexpected error: connection pool exploded"),)
    assert outcome.summary() == (
        "Failed to assign project: Unexpected error: connection pool exploded"
    )


@pytest.mark.unit
def test_single_entry_success_and_failure():
    """
    Ensure raw-row reassignment reports single-entry messages.

    Returns
    -------
    None
        This test asserts single entry reassignment.
    """
    client = FakeClient(fail_ids={2})
    session = _session(client=client)

    _press(session, "p")
    _select_project(session, "Web")
    _press(session, "enter")
    session.poll()
    assert session.state.status_message == "Assigned project: Web"
    assert session.state.entries[0].project_id == 6

    _press(session, "j", "p")
    _select_project(session, "Web")
    _press(session, "enter")
    session.poll()
    assert session.state.status_message == (
        "Failed to assign project: Unexpected response status: 500"
    )
    assert session.state.entries[1].project_id is None
    assert session.state.overlay is Overlay.NONE


@pytest.mark.unit
def test_reassignment_without_client():
    """
    Ensure a missing client is reported without attempting anything.

    Returns
    -------
    None
        This test asserts the unavailable-client message.
    """
    executor = ImmediateExecutor()
    session = _session(executor=executor)

    _press(session, "p", "enter")

    assert session.state.status_message == "API client not available"
    assert session.state.overlay is Overlay.PROJECT_SELECTOR
    assert executor.submitted == 0


@pytest.mark.unit
def test_reassignment_requires_project_and_entry():
    """
    Ensure missing selections are reported.

    Returns
    -------
    None
        This test asserts precondition messages.
    """
    session = _session(client=FakeClient())
    _press(session, "p", "/", "z", "z", "enter")
    assert session.state.status_message == "No project selected"

    empty = _session(entries=[], client=FakeClient())
    _press(empty, "p", "enter")
    assert empty.state.status_message == "No time entry selected"


@pytest.mark.unit
def test_second_batch_rejected_while_busy():
    """
    Ensure only one reassignment batch can be outstanding.

    Returns
    -------
    None
        This test asserts the busy flag.
    """
    executor = DeferredExecutor()
    client = FakeClient()
    session = _session(client=client, executor=executor)

    _press(session, "g", "p", "enter")
    assert session.state.busy
    assert "Working..." in build_frame(session.state).footer.lines()[1]

    _press(session, "p", "enter")
    assert session.state.status_message == "Project assignment already in progress"
    assert len(executor.pending) == 1
    assert not session.poll()

    executor.run_all()
    assert session.poll()
    assert not session.state.busy
    assert session.state.status_message == "Assigned Archive to 3 entries"


@pytest.mark.unit
def test_successful_reassignment_writes_cache():
    """
    Ensure successes are written back and cache errors stay contained.

    Returns
    -------
    None
        This test asserts cache write-back.
    """
    store = FakeStore()
    session = _session(client=FakeClient(fail_ids={2}), store=store)
    _press(session, "g", "p")
    _select_project(session, "Web")
    _press(session, "enter")
    session.poll()
    assert store.updates == [(3, 6), (1, 6)]

    broken = _session(
        client=FakeClient(), store=FakeStore(error=sqlite3.OperationalError("locked"))
    )
    _press(broken, "g", "p")
    _select_project(broken, "Web")
    _press(broken, "enter")
    broken.poll()
    assert broken.state.status_message == "Assigned Web to 3 entries"


@pytest.mark.unit
def test_thread_executor_round_trip():
    """
    Ensure the default worker thread completes and posts its outcome.

    Returns
    -------
    None
        This test asserts the threaded handoff.
    """
    notified = []
    session = Session(
        _entries(),
        RANGE_START,
        RANGE_END,
        projects=_projects(),
        client=FakeClient(),
        on_complete=lambda: notified.append(True),
    )
    try:
        _press(session, "g", "p")
        _select_project(session, "Ops")
        _press(session, "enter")
        assert session.wait_idle(timeout=5)
    finally:
        session.close()

    assert notified == [True]
    assert session.state.status_message == "Assigned Ops to 3 entries"
    assert not session.state.busy


@pytest.mark.unit
def test_copy_description_of_entry_and_group():
    """
    Ensure ``y`` copies the highlighted entry or group description.

    Returns
    -------
    None
        This test asserts clipboard copies and their status messages.
    """
    copied = []
    session = _session(clipboard=copied.append)

    session.handle_key("y")
    assert session.state.status_message == "Copied: Write report"

    _press(session, "g", "j", "y")
    assert session.state.status_message == "Copied: Standup"
    assert copied == ["Write report", "Standup"]


@pytest.mark.unit
def test_copy_description_reports_problems():
    """
    Ensure missing descriptions and clipboard errors become status messages.

    Returns
    -------
    None
        This test asserts clipboard failure messages.
    """
    session = _session(entries=[make_entry(1, None, start=DAY)], clipboard=lambda text: None)
    session.handle_key("y")
    assert session.state.status_message == "No description to copy"

    session = _session()
    session.handle_key("y")
    assert session.state.status_message == "Clipboard unavailable"

    def missing(text):
        raise session_module.ClipboardUnavailable("no copy mechanism")

    session = _session(clipboard=missing)
    session.handle_key("y")
    assert session.state.status_message == "Clipboard unavailable"

    def broken(text):
        raise OSError("xclip exited with status 1")

    session = _session(clipboard=broken)
    session.handle_key("y")
    assert session.state.status_message == "Failed to copy to clipboard"


@pytest.mark.unit
def test_copy_inside_overlay_is_ignored():
    """
    Ensure ``y`` is search input, not a copy, while the project selector is open.

    Returns
    -------
    None
        This test asserts overlay modality for the copy key.
    """
    copied = []
    session = _session(clipboard=copied.append)

    _press(session, "p", "/", "y")

    assert copied == []
    assert session.state.project_search == "/y"


@pytest.mark.unit
def test_session_doctest_examples():
    """
    Run doctest examples embedded in session docstrings.

    Returns
    -------
    None
        This test asserts that doctest examples succeed.
    """
    results = doctest.testmod(session_module)
    assert results.failed == 0
