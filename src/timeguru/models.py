#!/usr/bin/env python3
"""
Time entry, project and grouping models shared by every timeguru component.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

NO_DESCRIPTION = "(No description)"


def normalize_to_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to UTC with tzinfo.

    Parameters
    ----------
    value : datetime
        Datetime to normalize.

    Returns
    -------
    datetime
        UTC-normalized datetime.

    Examples
    --------
    >>> normalize_to_utc(datetime(2025, 1, 20, 10, 0)).isoformat()
    '2025-01-20T10:00:00+00:00'
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """
    Format timestamps for storage and the remote API.

    Parameters
    ----------
    value : datetime
        Datetime to format.

    Returns
    -------
    str
        Fixed-width ISO timestamp in UTC.

    Examples
    --------
    >>> format_timestamp(datetime(2025, 1, 20, 10, 30, 5, 999, tzinfo=timezone.utc))
    '2025-01-20T10:30:05Z'
    """
    return normalize_to_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse ISO 8601 timestamps from the API or the cache.

    Parameters
    ----------
    value : Optional[str]
        Timestamp text.

    Returns
    -------
    Optional[datetime]
        Timezone-aware datetime, or None when missing or unparsable.

    Examples
    --------
    >>> parse_timestamp("2025-01-20T10:00:00Z").isoformat()
    '2025-01-20T10:00:00+00:00'
    >>> parse_timestamp("2025-01-20T12:00:00+02:00").hour
    12
    >>> parse_timestamp("nonsense") is None
    True
    """
    if not value:
        return None
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def round_up_seconds(seconds: int, round_minutes: int) -> int:
    """
    Round a duration up to the next multiple of a minute granularity.

    Parameters
    ----------
    seconds : int
        Duration in seconds.
    round_minutes : int
        Rounding granularity in minutes.

    Returns
    -------
    int
        Rounded duration in seconds.

    Examples
    --------
    >>> round_up_seconds(1332, 15)
    1800
    >>> round_up_seconds(900, 15)
    900
    >>> round_up_seconds(0, 15)
    0
    >>> round_up_seconds(301, 5)
    600
    """
    if round_minutes <= 0:
        return seconds
    seconds_per_round = round_minutes * 60
    return math.ceil(seconds / seconds_per_round) * seconds_per_round


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _optional_tuple(value: Any, cast) -> Optional[Tuple[Any, ...]]:
    if value is None:
        return None
    if not isinstance(value, (list, tuple)):
        return None
    return tuple(cast(item) for item in value)


@dataclass(frozen=True)
class TimeEntry:
    """
    A single tracked time interval.

    Attributes
    ----------
    id : int
        Entry identifier, unique within the cache.
    workspace_id : int
        Owning workspace.
    project_id : Optional[int]
        Assigned project, if any.
    task_id : Optional[int]
        Assigned task, if any.
    billable : bool
        Billable flag.
    start : datetime
        Start timestamp (timezone-aware).
    stop : Optional[datetime]
        Stop timestamp; None while running.
    duration : int
        Duration in seconds; negative while running.
    description : Optional[str]
        Free-text description; None is distinct from an empty string.
    tags : Optional[Tuple[str, ...]]
        Tag names.
    tag_ids : Optional[Tuple[int, ...]]
        Tag identifiers.
    at : datetime
        Last-modified timestamp.
    user_id : int
        Owning user.
    """

    id: int
    workspace_id: int
    project_id: Optional[int]
    task_id: Optional[int]
    billable: bool
    start: datetime
    stop: Optional[datetime]
    duration: int
    description: Optional[str]
    tags: Optional[Tuple[str, ...]]
    tag_ids: Optional[Tuple[int, ...]]
    at: datetime
    user_id: int

    @property
    def is_running(self) -> bool:
        return self.duration < 0

    @property
    def hours(self) -> float:
        return self.duration / 3600.0

    @staticmethod
    def from_json(payload: Dict[str, Any]) -> "TimeEntry":
        """
        Build a TimeEntry from a Toggl API payload.

        Parameters
        ----------
        payload : Dict[str, Any]
            Decoded JSON object.

        Returns
        -------
        TimeEntry
            Parsed entry.

        Raises
        ------
        ValueError
            If the identifier or start timestamp is missing.

        Examples
        --------
        >>> entry = TimeEntry.from_json({
        ...     "id": 7, "wid": 1, "pid": 3, "start": "2025-01-20T10:00:00Z",
        ...     "duration": 60, "description": "Coding", "tags": ["a"], "uid": 9,
        ... })
        >>> (entry.workspace_id, entry.project_id, entry.user_id, entry.tags)
        (1, 3, 9, ('a',))
        """
        entry_id = _optional_int(payload.get("id"))
        start = parse_timestamp(payload.get("start"))
        if entry_id is None or start is None:
            raise ValueError("Time entry payload requires id and start.")
        workspace_id = payload.get("workspace_id")
        if workspace_id is None:
            workspace_id = payload.get("wid")
        project_id = payload.get("project_id")
        if project_id is None:
            project_id = payload.get("pid")
        user_id = payload.get("user_id")
        if user_id is None:
            user_id = payload.get("uid")
        return TimeEntry(
            id=entry_id,
            workspace_id=_optional_int(workspace_id) or 0,
            project_id=_optional_int(project_id),
            task_id=_optional_int(payload.get("task_id")),
            billable=bool(payload.get("billable", False)),
            start=start,
            stop=parse_timestamp(payload.get("stop")),
            duration=_optional_int(payload.get("duration")) or 0,
            description=payload.get("description"),
            tags=_optional_tuple(payload.get("tags"), str),
            tag_ids=_optional_tuple(payload.get("tag_ids"), int),
            at=parse_timestamp(payload.get("at")) or start,
            user_id=_optional_int(user_id) or 0,
        )


@dataclass(frozen=True)
class Project:
    """
    A named bucket that time entries can be assigned to.

    Attributes
    ----------
    id : int
        Project identifier.
    workspace_id : int
        Owning workspace.
    client_id : Optional[int]
        Owning client, if any.
    name : str
        Display name.
    active : bool
        False for archived projects.
    color : str
        Hex color string (``#rrggbb``).
    billable : Optional[bool]
        Billable default for new entries.
    is_private : bool
        Private project flag.
    at : Optional[datetime]
        Last-modified timestamp.
    created_at : Optional[datetime]
        Creation timestamp.
    """

    id: int
    workspace_id: int
    client_id: Optional[int]
    name: str
    active: bool = True
    color: str = "#000000"
    billable: Optional[bool] = None
    is_private: bool = False
    at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @staticmethod
    def from_json(payload: Dict[str, Any]) -> "Project":
        """
        Build a Project from a Toggl API payload.

        Examples
        --------
        >>> project = Project.from_json({"id": 3, "wid": 1, "cid": 5, "name": "Ops"})
        >>> (project.workspace_id, project.client_id, project.active)
        (1, 5, True)
        """
        workspace_id = payload.get("workspace_id")
        if workspace_id is None:
            workspace_id = payload.get("wid")
        client_id = payload.get("client_id")
        if client_id is None:
            client_id = payload.get("cid")
        billable = payload.get("billable")
        return Project(
            id=int(payload["id"]),
            workspace_id=_optional_int(workspace_id) or 0,
            client_id=_optional_int(client_id),
            name=str(payload.get("name") or ""),
            active=bool(payload.get("active", True)),
            color=str(payload.get("color") or "#000000"),
            billable=None if billable is None else bool(billable),
            is_private=bool(payload.get("is_private", False)),
            at=parse_timestamp(payload.get("at")),
            created_at=parse_timestamp(payload.get("created_at")),
        )


@dataclass(frozen=True)
class Workspace:
    id: int
    name: str
    premium: bool = False
    admin: bool = False
    default_currency: str = "USD"

    @staticmethod
    def from_json(payload: Dict[str, Any]) -> "Workspace":
        return Workspace(
            id=int(payload["id"]),
            name=str(payload.get("name") or ""),
            premium=bool(payload.get("premium", False)),
            admin=bool(payload.get("admin", False)),
            default_currency=str(payload.get("default_currency") or "USD"),
        )


@dataclass(frozen=True)
class GroupedTimeEntry:
    """
    Entries that share a description and project (and optionally a day).

    Attributes
    ----------
    description : Optional[str]
        Shared description.
    project_id : Optional[int]
        Shared project identifier.
    entries : Tuple[TimeEntry, ...]
        Member entries in input order.
    total_duration : int
        Sum of member durations in seconds.
    date : Optional[datetime]
        UTC midnight of the shared day for day groupings.
    """

    description: Optional[str]
    project_id: Optional[int]
    entries: Tuple[TimeEntry, ...] = field(default_factory=tuple)
    total_duration: int = 0
    date: Optional[datetime] = None

    def total_hours(self) -> float:
        """
        Return the unrounded total in hours.

        Examples
        --------
        >>> round(GroupedTimeEntry(None, None, total_duration=1332).total_hours(), 2)
        0.37
        """
        return self.total_duration / 3600.0

    def rounded_duration(self, round_minutes: int) -> int:
        """
        Return the total rounded up to the minute granularity.

        Examples
        --------
        >>> GroupedTimeEntry(None, None, total_duration=4176).rounded_duration(15)
        4500
        """
        return round_up_seconds(self.total_duration, round_minutes)

    def rounded_hours(self, round_minutes: int) -> float:
        """
        Return the rounded total in hours.

        Examples
        --------
        >>> GroupedTimeEntry(None, None, total_duration=1332).rounded_hours(15)
        0.5
        """
        return self.rounded_duration(round_minutes) / 3600.0

    def billable_label(self) -> str:
        """
        Summarize member billability as Yes, No or Mixed.
        """
        if all(entry.billable for entry in self.entries):
            return "Yes"
        if not any(entry.billable for entry in self.entries):
            return "No"
        return "Mixed"
