#!/usr/bin/env python3
"""
Grouping and filtering of time entries.

Every function here is pure: inputs are never mutated and the returned
collections are fresh lists.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .models import GroupedTimeEntry, Project, TimeEntry, normalize_to_utc

GroupKey = Tuple[Optional[str], Optional[int]]
DayGroupKey = Tuple[Optional[str], Optional[int], datetime]


def utc_day(value: datetime) -> datetime:
    """
    Truncate a timestamp to midnight of its UTC calendar day.

    Parameters
    ----------
    value : datetime
        Timestamp to truncate.

    Returns
    -------
    datetime
        UTC midnight.

    Examples
    --------
    >>> from datetime import timedelta
    >>> local = datetime(2025, 1, 21, 1, 30, tzinfo=timezone(timedelta(hours=3)))
    >>> utc_day(local).isoformat()
    '2025-01-20T00:00:00+00:00'
    """
    utc_value = normalize_to_utc(value)
    return utc_value.replace(hour=0, minute=0, second=0, microsecond=0)


def _build_group(
    description: Optional[str],
    project_id: Optional[int],
    entries: List[TimeEntry],
    date: Optional[datetime] = None,
) -> GroupedTimeEntry:
    return GroupedTimeEntry(
        description=description,
        project_id=project_id,
        entries=tuple(entries),
        total_duration=sum(entry.duration for entry in entries),
        date=date,
    )


def group_by_description(entries: Iterable[TimeEntry]) -> List[GroupedTimeEntry]:
    """
    Group entries by (description, project) ordered by descending total.

    Groups with equal totals have no guaranteed relative order.

    Parameters
    ----------
    entries : Iterable[TimeEntry]
        Entries to group.

    Returns
    -------
    List[GroupedTimeEntry]
        Groups sorted by descending ``total_duration``.
    """
    buckets: Dict[GroupKey, List[TimeEntry]] = {}
    for entry in entries:
        key = (entry.description, entry.project_id)
        buckets.setdefault(key, []).append(entry)
    grouped = [
        _build_group(description, project_id, members)
        for (description, project_id), members in buckets.items()
    ]
    grouped.sort(key=lambda group: group.total_duration, reverse=True)
    return grouped


def group_by_description_and_day(entries: Iterable[TimeEntry]) -> List[GroupedTimeEntry]:
    """
    Group entries by (description, project, UTC day) in first-seen order.

    Unlike :func:`group_by_description`, the output is not sorted by
    duration: groups appear in the order their key is first encountered.

    Parameters
    ----------
    entries : Iterable[TimeEntry]
        Entries to group.

    Returns
    -------
    List[GroupedTimeEntry]
        Groups with ``date`` set to the UTC midnight of the shared day.
    """
    buckets: Dict[DayGroupKey, List[TimeEntry]] = {}
    for entry in entries:
        key = (entry.description, entry.project_id, utc_day(entry.start))
        buckets.setdefault(key, []).append(entry)
    return [
        _build_group(description, project_id, members, date=date)
        for (description, project_id, date), members in buckets.items()
    ]


def filter_by_project(entries: Iterable[TimeEntry], project_id: int) -> List[TimeEntry]:
    return [entry for entry in entries if entry.project_id == project_id]


def tag_matches(tags: Optional[Sequence[str]], tag: str) -> bool:
    """
    Return True when any tag equals ``tag`` ignoring ASCII case.

    Examples
    --------
    >>> tag_matches(("Urgent", "bug"), "urgent")
    True
    >>> tag_matches(None, "urgent")
    False
    >>> tag_matches(("ürgent",), "ÜRGENT")
    False
    """
    if not tags:
        return False
    wanted = _ascii_lower(tag)
    return any(_ascii_lower(candidate) == wanted for candidate in tags)


def _ascii_lower(value: str) -> str:
    return "".join(
        chr(ord(char) + 32) if "A" <= char <= "Z" else char for char in value
    )


def filter_by_tag(entries: Iterable[TimeEntry], tag: str) -> List[TimeEntry]:
    return [entry for entry in entries if tag_matches(entry.tags, tag)]


def client_project_ids(client_id: int, projects: Iterable[Project]) -> Set[int]:
    return {project.id for project in projects if project.client_id == client_id}


def filter_by_client(
    entries: Iterable[TimeEntry],
    client_id: int,
    projects: Iterable[Project],
) -> List[TimeEntry]:
    """
    Keep entries whose project belongs to the given client.

    Parameters
    ----------
    entries : Iterable[TimeEntry]
        Entries to filter.
    client_id : int
        Client identifier.
    projects : Iterable[Project]
        Known projects used to resolve client membership.

    Returns
    -------
    List[TimeEntry]
        Matching entries; entries without a project never match.
    """
    project_ids = client_project_ids(client_id, projects)
    return [
        entry
        for entry in entries
        if entry.project_id is not None and entry.project_id in project_ids
    ]


@dataclass(frozen=True)
class TimeEntryFilter:
    """
    Conjunctive filter criteria applied to a base entry collection.

    Attributes
    ----------
    project_id : Optional[int]
        Keep entries assigned to this project.
    tag : Optional[str]
        Keep entries carrying this tag (ASCII case-insensitive).
    client_id : Optional[int]
        Keep entries whose project belongs to this client.
    billable_only : bool
        Keep billable entries only.
    """

    project_id: Optional[int] = None
    tag: Optional[str] = None
    client_id: Optional[int] = None
    billable_only: bool = False

    def with_project(self, project_id: int) -> "TimeEntryFilter":
        return replace(self, project_id=project_id)

    def with_tag(self, tag: str) -> "TimeEntryFilter":
        return replace(self, tag=tag)

    def with_client(self, client_id: int) -> "TimeEntryFilter":
        return replace(self, client_id=client_id)

    def with_billable_only(self) -> "TimeEntryFilter":
        return replace(self, billable_only=True)

    @property
    def is_active(self) -> bool:
        """
        Return True when any criterion is set.

        Examples
        --------
        >>> TimeEntryFilter().is_active
        False
        >>> TimeEntryFilter().with_tag("bug").is_active
        True
        """
        return (
            self.project_id is not None
            or self.tag is not None
            or self.client_id is not None
            or self.billable_only
        )

    def apply(
        self,
        entries: Iterable[TimeEntry],
        projects: Iterable[Project] = (),
    ) -> List[TimeEntry]:
        """
        Apply project, tag, client and billable criteria in that order.

        Parameters
        ----------
        entries : Iterable[TimeEntry]
            Base collection.
        projects : Iterable[Project], optional
            Projects used to resolve the client criterion.

        Returns
        -------
        List[TimeEntry]
            Entries matching every set criterion, in input order.
        """
        filtered = list(entries)
        if self.project_id is not None:
            filtered = filter_by_project(filtered, self.project_id)
        if self.tag is not None:
            filtered = filter_by_tag(filtered, self.tag)
        if self.client_id is not None:
            filtered = filter_by_client(filtered, self.client_id, projects)
        if self.billable_only:
            filtered = [entry for entry in filtered if entry.billable]
        return filtered


def calculate_total_duration(entries: Iterable[TimeEntry]) -> int:
    return sum(entry.duration for entry in entries)


def calculate_billable_duration(entries: Iterable[TimeEntry]) -> int:
    return sum(entry.duration for entry in entries if entry.billable)


def calculate_non_billable_duration(entries: Iterable[TimeEntry]) -> int:
    return sum(entry.duration for entry in entries if not entry.billable)


def sort_by_date(entries: Iterable[TimeEntry]) -> List[TimeEntry]:
    """
    Return entries sorted by ascending start (stable for equal starts).
    """
    return sorted(entries, key=lambda entry: normalize_to_utc(entry.start))
