#!/usr/bin/env python3
"""
Client for the Toggl Track v9 REST API.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import requests
from requests.auth import HTTPBasicAuth

from .models import Project, TimeEntry, Workspace, format_timestamp

LOGGER = logging.getLogger(__name__)

BASE_URL = "https://api.track.toggl.com/api/v9"
REQUEST_TIMEOUT = 30
MAX_ATTEMPTS = 3
BACKOFF_SECONDS = 1.0
MAX_RETRY_AFTER_SECONDS = 60.0
CREATED_WITH = "timeguru"
AUTH_FAILED_MESSAGE = "Authentication failed. Please check your API token."


class TogglError(RuntimeError):
    """
    Remote tracking-service failure.

    Attributes
    ----------
    status : Optional[int]
        HTTP status code, when a response was received.
    """

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class AuthenticationError(TogglError):
    pass


class NotFoundError(TogglError):
    pass


class TransientError(TogglError):
    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        retry_after: Optional[str] = None,
    ) -> None:
        super().__init__(message, status=status)
        self.retry_after = retry_after


@dataclass(frozen=True)
class MutationResult:
    """
    Outcome of a remote mutation that never raises.

    Attributes
    ----------
    entry : Optional[TimeEntry]
        Updated entry on success.
    error : Optional[str]
        Failure description on error.
    """

    entry: Optional[TimeEntry] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def is_retryable_status(status: int) -> bool:
    """
    Return True for rate limiting and server errors.

    Examples
    --------
    >>> [is_retryable_status(code) for code in (200, 404, 429, 503)]
    [False, False, True, True]
    """
    return status == 429 or 500 <= status < 600


def backoff_delay(attempt: int, retry_after: Optional[str] = None) -> float:
    """
    Return the delay before retrying ``attempt`` (0-based).

    A ``Retry-After`` value wins over the exponential delay but is capped
    at ``MAX_RETRY_AFTER_SECONDS``.

    Examples
    --------
    >>> [backoff_delay(n) for n in range(3)]
    [1.0, 2.0, 4.0]
    >>> backoff_delay(0, retry_after="5")
    5.0
    >>> backoff_delay(0, retry_after="3600")
    60.0
    """
    if retry_after:
        try:
            return min(MAX_RETRY_AFTER_SECONDS, max(0.0, float(retry_after)))
        except ValueError:
            pass
    return BACKOFF_SECONDS * (2**attempt)


class TogglClient:
    """
    Thin wrapper around the Toggl Track endpoints timeguru uses.

    Read operations retry transient failures with exponential backoff;
    mutations are attempted once.
    """

    def __init__(
        self,
        api_token: str,
        *,
        base_url: str = BASE_URL,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not api_token:
            raise ValueError("API token is required.")
        self.base_url = base_url.rstrip("/")
        self._sleep = sleep
        self._session = session or requests.Session()
        self._session.auth = HTTPBasicAuth(api_token, "api_token")
        self._session.headers.update(
            {"Content-Type": "application/json", "Accept": "application/json"}
        )

    def _request(
        self,
        method: str,
        path: str,
        *,
        retry: bool = False,
        not_found_message: Optional[str] = None,
        **kwargs: Any,
    ) -> Any:
        url = f"{self.base_url}{path}"
        attempts = MAX_ATTEMPTS if retry else 1
        last_error: Optional[TransientError] = None
        for attempt in range(attempts):
            if attempt:
                retry_after = last_error.retry_after if last_error else None
                delay = backoff_delay(attempt - 1, retry_after)
                LOGGER.warning(
                    "Retrying %s %s in %.1fs (attempt %d/%d): %s",
                    method,
                    url,
                    delay,
                    attempt + 1,
                    attempts,
                    last_error,
                )
                self._sleep(delay)
            LOGGER.debug("Toggl request %s %s", method, url)
            try:
                response = self._session.request(
                    method, url, timeout=REQUEST_TIMEOUT, **kwargs
                )
            except (requests.ConnectionError, requests.Timeout) as exc:
                last_error = TransientError(f"Network error: {exc}")
                continue
            status = response.status_code
            if status in (401, 403):
                raise AuthenticationError(AUTH_FAILED_MESSAGE, status=status)
            if status == 404:
                raise NotFoundError(
                    not_found_message or f"Resource not found: {path}", status=status
                )
            if is_retryable_status(status):
                last_error = TransientError(
                    f"Toggl API returned {status}: {response.text.strip()}",
                    status=status,
                    retry_after=response.headers.get("Retry-After"),
                )
                continue
            if status >= 400:
                LOGGER.error("Toggl API call failed: %s %s", status, response.text)
                raise TogglError(
                    f"Unexpected response status: {status} {response.text.strip()}".strip(),
                    status=status,
                )
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError as exc:
                raise TogglError(f"Failed to parse response from {path}: {exc}") from exc
        raise last_error or TransientError(f"Request to {path} failed.")

    def get_current_user(self) -> Dict[str, Any]:
        data = self._request("GET", "/me", retry=True)
        if not isinstance(data, dict):
            raise TogglError("Unexpected user payload.")
        return data

    def get_current_user_id(self) -> int:
        user = self.get_current_user()
        try:
            return int(user["id"])
        except (KeyError, TypeError, ValueError) as exc:
            raise TogglError("User ID not found in response.") from exc

    def get_current_user_email(self) -> str:
        user = self.get_current_user()
        email = user.get("email")
        if not email:
            raise TogglError("Email not found in response.")
        return str(email)

    def get_time_entries(self, start: datetime, end: datetime) -> List[TimeEntry]:
        """
        Fetch entries whose start lies in ``[start, end]``.

        Parameters
        ----------
        start : datetime
            Range start.
        end : datetime
            Range end.

        Returns
        -------
        List[TimeEntry]
            Entries ordered by descending start.
        """
        params = {"start_date": format_timestamp(start), "end_date": format_timestamp(end)}
        data = self._request("GET", "/me/time_entries", retry=True, params=params) or []
        entries = [TimeEntry.from_json(item) for item in data if isinstance(item, dict)]
        entries.sort(key=lambda entry: entry.start, reverse=True)
        return entries

    def get_workspaces(self) -> List[Workspace]:
        data = self._request("GET", "/workspaces", retry=True) or []
        return [Workspace.from_json(item) for item in data if isinstance(item, dict)]

    def get_projects(self, workspace_id: int) -> List[Project]:
        data = self._request(
            "GET", f"/workspaces/{workspace_id}/projects", retry=True
        ) or []
        return [Project.from_json(item) for item in data if isinstance(item, dict)]

    def get_current_time_entry(self) -> Optional[TimeEntry]:
        data = self._request("GET", "/me/time_entries/current", retry=True)
        if not data:
            return None
        return TimeEntry.from_json(data)

    def start_time_entry(
        self,
        workspace_id: int,
        description: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> TimeEntry:
        payload: Dict[str, Any] = {
            "created_with": CREATED_WITH,
            "workspace_id": workspace_id,
            "start": format_timestamp(now or datetime.now(timezone.utc)),
            "duration": -1,
        }
        if description:
            payload["description"] = description
        data = self._request(
            "POST", f"/workspaces/{workspace_id}/time_entries", json=payload
        )
        return TimeEntry.from_json(data)

    def stop_time_entry(self, workspace_id: int, entry_id: int) -> TimeEntry:
        data = self._request(
            "PATCH",
            f"/workspaces/{workspace_id}/time_entries/{entry_id}/stop",
            not_found_message="Time entry not found or already stopped",
        )
        return TimeEntry.from_json(data)

    def update_time_entry_project(
        self,
        workspace_id: int,
        entry_id: int,
        project_id: Optional[int],
    ) -> TimeEntry:
        data = self._request(
            "PUT",
            f"/workspaces/{workspace_id}/time_entries/{entry_id}",
            json={"project_id": project_id},
        )
        return TimeEntry.from_json(data)

    def update_time_entry_description(
        self,
        workspace_id: int,
        entry_id: int,
        description: str,
    ) -> TimeEntry:
        data = self._request(
            "PUT",
            f"/workspaces/{workspace_id}/time_entries/{entry_id}",
            json={"description": description},
        )
        return TimeEntry.from_json(data)

    def try_update_time_entry_project(
        self,
        workspace_id: int,
        entry_id: int,
        project_id: Optional[int],
    ) -> MutationResult:
        """
        Set an entry's project, reporting failures as a result value.

        Parameters
        ----------
        workspace_id : int
            Workspace owning the entry.
        entry_id : int
            Entry to update.
        project_id : Optional[int]
            New project, or None to clear it.

        Returns
        -------
        MutationResult
            Updated entry, or the failure description.
        """
        try:
            entry = self.update_time_entry_project(workspace_id, entry_id, project_id)
        except TogglError as exc:
            return MutationResult(error=str(exc))
        except (requests.RequestException, ValueError) as exc:
            return MutationResult(error=f"Request failed: {exc}")
        return MutationResult(entry=entry)
