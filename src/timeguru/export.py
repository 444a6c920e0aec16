#!/usr/bin/env python3
"""
CSV export of cached time entries.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, TextIO

from .models import NO_DESCRIPTION, GroupedTimeEntry, Project, TimeEntry
from .processor import group_by_description, group_by_description_and_day

METADATA_COLUMNS = 6
RAW_HEADER = ("Date", "Time", "Description", "Project", "Duration (hours)", "Billable")
GROUPED_HEADER = ("Description", "Project", "Duration (hours)", "Entry Count", "Billable")
DAY_GROUPED_HEADER = ("Date",) + GROUPED_HEADER


@dataclass(frozen=True)
class ExportMetadata:
    """
    Header block written above the CSV table.

    Attributes
    ----------
    range_start : datetime
        Export range start.
    range_end : datetime
        Export range end.
    entry_count : int
        Number of exported entries.
    user_email : Optional[str]
        Signed-in user, when known.
    """

    range_start: datetime
    range_end: datetime
    entry_count: int
    user_email: Optional[str] = None


def metadata_rows(metadata: ExportMetadata) -> List[List[str]]:
    """
    Build the padded metadata rows, ending with a blank row.

    Examples
    --------
    >>> from datetime import timezone
    >>> rows = metadata_rows(ExportMetadata(
    ...     datetime(2025, 1, 1, tzinfo=timezone.utc),
    ...     datetime(2025, 1, 7, tzinfo=timezone.utc),
    ...     3,
    ... ))
    >>> [row[0] for row in rows]
    ['# TimeGuru Export', '# Date Range: 2025-01-01 to 2025-01-07', '# Total Entries: 3', '']
    >>> {len(row) for row in rows}
    {6}
    """
    labels = [
        "# TimeGuru Export",
        "# Date Range: {} to {}".format(
            metadata.range_start.strftime("%Y-%m-%d"),
            metadata.range_end.strftime("%Y-%m-%d"),
        ),
        f"# Total Entries: {metadata.entry_count}",
    ]
    if metadata.user_email:
        labels.append(f"# User: {metadata.user_email}")
    labels.append("")
    return [[label] + [""] * (METADATA_COLUMNS - 1) for label in labels]


def project_names(projects: Iterable[Project]) -> Dict[int, str]:
    return {project.id: project.name for project in projects}


def _group_hours(group: GroupedTimeEntry, round_minutes: Optional[int]) -> float:
    if round_minutes:
        return group.rounded_hours(round_minutes)
    return group.total_hours()


def raw_rows(entries: Sequence[TimeEntry], names: Dict[int, str]) -> List[List[str]]:
    rows: List[List[str]] = [list(RAW_HEADER)]
    for entry in entries:
        rows.append(
            [
                entry.start.strftime("%Y-%m-%d"),
                entry.start.strftime("%H:%M"),
                entry.description if entry.description is not None else NO_DESCRIPTION,
                names.get(entry.project_id, "") if entry.project_id is not None else "",
                f"{entry.hours:.2f}",
                "Yes" if entry.billable else "No",
            ]
        )
    return rows


def grouped_rows(
    entries: Sequence[TimeEntry],
    names: Dict[int, str],
    *,
    by_day: bool,
    round_minutes: Optional[int],
) -> List[List[str]]:
    """
    Build grouped rows with a header.

    Parameters
    ----------
    entries : Sequence[TimeEntry]
        Entries to group.
    names : Dict[int, str]
        Project names by id.
    by_day : bool
        Group by description and day, adding a leading Date column.
    round_minutes : Optional[int]
        Ceiling-round group totals to this granularity.

    Returns
    -------
    List[List[str]]
        Header followed by one row per group.
    """
    if by_day:
        groups = group_by_description_and_day(entries)
        rows: List[List[str]] = [list(DAY_GROUPED_HEADER)]
    else:
        groups = group_by_description(entries)
        rows = [list(GROUPED_HEADER)]
    for group in groups:
        row = [
            group.description if group.description is not None else NO_DESCRIPTION,
            names.get(group.project_id, "") if group.project_id is not None else "",
            f"{_group_hours(group, round_minutes):.2f}",
            str(len(group.entries)),
            group.billable_label(),
        ]
        if by_day:
            row.insert(0, group.date.strftime("%Y-%m-%d") if group.date else "")
        rows.append(row)
    return rows


def write_export(
    stream: TextIO,
    entries: Sequence[TimeEntry],
    projects: Iterable[Project] = (),
    *,
    group: bool = False,
    group_by_day: bool = False,
    round_minutes: Optional[int] = None,
    metadata: Optional[ExportMetadata] = None,
) -> int:
    """
    Write entries as CSV.

    Day grouping takes precedence over plain grouping.

    Parameters
    ----------
    stream : TextIO
        Destination opened with ``newline=""``.
    entries : Sequence[TimeEntry]
        Entries to export.
    projects : Iterable[Project], optional
        Projects used to resolve names.
    group : bool, optional
        Group by description and project.
    group_by_day : bool, optional
        Group by description, project and day.
    round_minutes : Optional[int], optional
        Rounding granularity for grouped totals.
    metadata : Optional[ExportMetadata], optional
        Header block to write first.

    Returns
    -------
    int
        Number of table rows written, excluding headers and metadata.
    """
    writer = csv.writer(stream)
    if metadata is not None:
        writer.writerows(metadata_rows(metadata))
    names = project_names(projects)
    if group or group_by_day:
        rows = grouped_rows(entries, names, by_day=group_by_day, round_minutes=round_minutes)
    else:
        rows = raw_rows(entries, names)
    writer.writerows(rows)
    return len(rows) - 1
