#!/usr/bin/env python3
"""
Pure projection of session state into a displayable frame.

Nothing here touches the terminal; :mod:`timeguru.tui` paints the frames.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from .models import NO_DESCRIPTION, GroupedTimeEntry, Project, TimeEntry, round_up_seconds
from .session import Overlay, SessionState

DATE_FORMAT = "%Y-%m-%d"
DATETIME_FORMAT = "%Y-%m-%d %H:%M"
HEX_COLOR = re.compile(r"^#?[0-9a-fA-F]{6}$")

FILTER_CONTROLS = "b: Toggle Billable Only  |  c: Clear All Filters  |  f/Esc: Close Panel"
PROJECT_CONTROLS = "Up/Down: Navigate  |  /: Search  |  Enter: Select  |  p/Esc: Cancel"
NAVIGATION_HELP = "Navigation: Up/Down j/k | PgUp/PgDn | Home/End"


def normalize_color(value: Optional[str]) -> Optional[str]:
    """
    Return a ``#rrggbb`` color, or None when the value is not a hex color.

    Examples
    --------
    >>> normalize_color("06aaf5")
    '#06aaf5'
    >>> normalize_color("blue") is None
    True
    """
    if not value or not HEX_COLOR.match(value):
        return None
    return "#" + value.lstrip("#").lower()


@dataclass(frozen=True)
class Row:
    """
    One line of the main list.

    Attributes
    ----------
    label : str
        Start time for entries, or the day for day groups (may be empty).
    hours : float
        Displayed hours, rounded when rounding is on.
    project_name : Optional[str]
        Resolved project name.
    project_color : Optional[str]
        Project color as ``#rrggbb``.
    description : str
        Description or the placeholder.
    entry_count : Optional[int]
        Member count for group rows.
    selected : bool
        True for the highlighted row.
    """

    label: str
    hours: float
    project_name: Optional[str]
    project_color: Optional[str]
    description: str
    entry_count: Optional[int] = None
    selected: bool = False

    @property
    def text(self) -> str:
        parts = []
        if self.label:
            parts.append(self.label)
        parts.append(f"{self.hours:.2f}h")
        body = self.description
        if self.project_name is not None:
            body = f"[{self.project_name}] {body}"
        parts.append(body)
        text = " - ".join(parts)
        if self.entry_count is not None:
            text += f" ({self.entry_count} entries)"
        return text


@dataclass(frozen=True)
class ListView:
    title: str
    rows: Tuple[Row, ...]
    selected: Optional[int]


@dataclass(frozen=True)
class FilterPanelView:
    billable_status: str
    controls: str = FILTER_CONTROLS
    title: str = "Filters"


@dataclass(frozen=True)
class ProjectRow:
    name: str
    color: Optional[str]
    status: str
    selected: bool = False


@dataclass(frozen=True)
class ProjectPanelView:
    rows: Tuple[ProjectRow, ...]
    search_query: str
    selected: Optional[int]
    controls: str = PROJECT_CONTROLS
    title: str = "Select Project to Assign"


@dataclass(frozen=True)
class Footer:
    """
    Summary lines under the list.

    Attributes
    ----------
    toggles : str
        Toggle states, e.g. ``g:Group(ON) d:Day(OFF) s:Sort(OFF) r:Round(ON)``.
    position : str
        ``Entry i/n`` (``i`` is 0 with no selection).
    filtered : bool
        True when any filter criterion is set.
    date_range : str
        ``start to end``.
    busy : bool
        True while a reassignment is in flight.
    status_message : Optional[str]
        Latest status message.
    """

    toggles: str
    position: str
    filtered: bool
    date_range: str
    busy: bool
    status_message: Optional[str]

    def lines(self) -> List[str]:
        status = self.position
        if self.filtered:
            status += " [FILTERED]"
        if self.busy:
            status += " Working..."
        lines = [
            f"{NAVIGATION_HELP} | Toggles: {self.toggles} "
            "f:Filter | p:Project | y:Copy | q/Esc:Quit",
            f"Status: {status} | Date Range: {self.date_range}",
        ]
        if self.status_message:
            lines.append(f"Status: {self.status_message}")
        return lines


OverlayView = Union[FilterPanelView, ProjectPanelView]


@dataclass(frozen=True)
class Frame:
    header: str
    list_view: ListView
    footer: Footer
    overlay: Optional[OverlayView] = None


def _on_off(flag: bool) -> str:
    return "ON" if flag else "OFF"


def _project(state: SessionState, project_id: Optional[int]) -> Optional[Project]:
    if project_id is None:
        return None
    return state.projects.get(project_id)


def _rounding(state: SessionState) -> Optional[int]:
    if state.show_rounded and state.round_minutes:
        return state.round_minutes
    return None


def entry_row(state: SessionState, entry: TimeEntry, selected: bool = False) -> Row:
    minutes = _rounding(state)
    seconds = round_up_seconds(entry.duration, minutes) if minutes else entry.duration
    project = _project(state, entry.project_id)
    return Row(
        label=entry.start.strftime(DATETIME_FORMAT),
        hours=seconds / 3600.0,
        project_name=project.name if project else None,
        project_color=normalize_color(project.color) if project else None,
        description=entry.description if entry.description is not None else NO_DESCRIPTION,
        selected=selected,
    )


def group_row(state: SessionState, group: GroupedTimeEntry, selected: bool = False) -> Row:
    minutes = _rounding(state)
    hours = group.rounded_hours(minutes) if minutes else group.total_hours()
    project = _project(state, group.project_id)
    label = ""
    if state.group_by_day and group.date is not None:
        label = group.date.strftime(DATE_FORMAT)
    return Row(
        label=label,
        hours=hours,
        project_name=project.name if project else None,
        project_color=normalize_color(project.color) if project else None,
        description=group.description if group.description is not None else NO_DESCRIPTION,
        entry_count=len(group.entries),
        selected=selected,
    )


def build_list_view(state: SessionState) -> ListView:
    selected = state.selection.selected
    if state.grouped:
        rows = tuple(
            group_row(state, group, index == selected)
            for index, group in enumerate(state.groups)
        )
        title = "Time Entries (Grouped)"
    else:
        rows = tuple(
            entry_row(state, entry, index == selected)
            for index, entry in enumerate(state.entries)
        )
        title = "Time Entries"
    return ListView(title=title, rows=rows, selected=selected)


def build_overlay(state: SessionState) -> Optional[OverlayView]:
    if state.overlay is Overlay.FILTER_PANEL:
        return FilterPanelView(
            billable_status="ACTIVE" if state.active_filter.billable_only else "OFF"
        )
    if state.overlay is Overlay.PROJECT_SELECTOR:
        selected = state.project_selection.selected
        rows = tuple(
            ProjectRow(
                name=project.name,
                color=normalize_color(project.color),
                status="Active" if project.active else "Archived",
                selected=index == selected,
            )
            for index, project in enumerate(state.project_candidates)
        )
        return ProjectPanelView(rows=rows, search_query=state.project_search, selected=selected)
    return None


def build_frame(state: SessionState) -> Frame:
    """
    Describe everything the terminal should show for ``state``.

    Parameters
    ----------
    state : SessionState
        Current session state.

    Returns
    -------
    Frame
        Immutable frame; equal states produce equal frames.
    """
    date_range = "{} to {}".format(
        state.range_start.strftime(DATE_FORMAT), state.range_end.strftime(DATE_FORMAT)
    )
    header = f"TimeGuru - {date_range}"
    if state.user_email:
        header += f" ({state.user_email})"
    selected = state.selection.selected
    footer = Footer(
        toggles=(
            f"g:Group({_on_off(state.grouped)}) d:Day({_on_off(state.group_by_day)}) "
            f"s:Sort({_on_off(state.sort_by_date)}) r:Round({_on_off(state.show_rounded)})"
        ),
        position=f"Entry {selected + 1 if selected is not None else 0}/{state.displayed_length}",
        filtered=state.active_filter.is_active,
        date_range=date_range,
        busy=state.busy,
        status_message=state.status_message,
    )
    return Frame(
        header=header,
        list_view=build_list_view(state),
        footer=footer,
        overlay=build_overlay(state),
    )
