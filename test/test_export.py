"""
Tests for CSV export.
"""

from __future__ import annotations

import csv
import doctest
import io
from datetime import datetime, timedelta, timezone

import pytest

import timeguru.export as export
from conftest import make_entry, make_project
from timeguru.export import ExportMetadata, write_export

DAY = datetime(2025, 1, 20, 9, 0, tzinfo=timezone.utc)


def _entries():
    return [
        make_entry(1, "Design", 1332, 1, DAY, billable=True),
        make_entry(2, "Design", 1800, 1, DAY + timedelta(hours=1), billable=False),
        make_entry(3, None, 600, None, DAY + timedelta(days=1)),
    ]


def _export(**kwargs):
    stream = io.StringIO(newline="")
    count = write_export(stream, _entries(), [make_project(1, "Web")], **kwargs)
    stream.seek(0)
    return count, list(csv.reader(stream))


@pytest.mark.unit
def test_raw_export():
    """
    Ensure raw export writes one row per entry.

    Returns
    -------
    None
        This test asserts raw CSV rows.
    """
    count, rows = _export()

    assert count == 3
    assert rows[0] == list(export.RAW_HEADER)
    assert rows[1] == ["2025-01-20", "09:00", "Design", "Web", "0.37", "Yes"]
    assert rows[3] == ["2025-01-21", "09:00", "(No description)", "", "0.17", "No"]


@pytest.mark.unit
def test_grouped_export_rounds_and_labels_billable():
    """
    Ensure grouped export rounds totals and reports mixed billability.

    Returns
    -------
    None
        This test asserts grouped CSV rows.
    """
    count, rows = _export(group=True, round_minutes=15)

    assert count == 2
    assert rows[0] == list(export.GROUPED_HEADER)
    assert rows[1] == ["Design", "Web", "1.00", "2", "Mixed"]
    assert rows[2] == ["(No description)", "", "0.25", "1", "No"]


@pytest.mark.unit
def test_day_grouped_export_adds_date_column():
    """
    Ensure day grouping wins over plain grouping and leads with the date.

    Returns
    -------
    None
        This test asserts day-grouped CSV rows.
    """
    count, rows = _export(group=True, group_by_day=True)

    assert count == 2
    assert rows[0] == list(export.DAY_GROUPED_HEADER)
    assert rows[1] == ["2025-01-20", "Design", "Web", "0.87", "2", "Mixed"]
    assert rows[2][0] == "2025-01-21"


@pytest.mark.unit
def test_metadata_block_precedes_table():
    """
    Ensure the metadata block is written first and ends with a blank row.

    Returns
    -------
    None
        This test asserts export metadata.
    """
    metadata = ExportMetadata(
        range_start=datetime(2025, 1, 14, tzinfo=timezone.utc),
        range_end=datetime(2025, 1, 21, tzinfo=timezone.utc),
        entry_count=3,
        user_email="me@example.com",
    )

    count, rows = _export(metadata=metadata)

    assert count == 3
    assert [row[0] for row in rows[:5]] == [
        "# TimeGuru Export",
        "# Date Range: 2025-01-14 to 2025-01-21",
        "# Total Entries: 3",
        "# User: me@example.com",
        "",
    ]
    assert rows[5] == list(export.RAW_HEADER)


@pytest.mark.unit
def test_unknown_project_exports_blank_name():
    """
    Ensure entries pointing at an uncached project get an empty name.

    Returns
    -------
    None
        This test asserts project name resolution.
    """
    rows = export.raw_rows([make_entry(1, project_id=99)], {})

    assert rows[1][3] == ""


@pytest.mark.unit
def test_export_doctest_examples():
    """
    Run doctest examples embedded in export docstrings.

    Returns
    -------
    None
        This test asserts that doctest examples succeed.
    """
    results = doctest.testmod(export)
    assert results.failed == 0
