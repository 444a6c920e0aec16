#!/usr/bin/env python3
"""
Cursor state over whichever list the interactive session displays.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

DEFAULT_PAGE_SIZE = 10


@dataclass
class ListSelection:
    """
    Selected index over a list of ``length`` items.

    ``selected`` is None only when the list is empty (or nothing has been
    selected yet); otherwise it is a valid index.

    Examples
    --------
    >>> selection = ListSelection.for_length(3)
    >>> selection.previous(3)
    >>> selection.selected
    2
    >>> selection.next(3)
    >>> selection.selected
    0
    """

    selected: Optional[int] = None
    page_size: int = DEFAULT_PAGE_SIZE

    @classmethod
    def for_length(cls, length: int, page_size: int = DEFAULT_PAGE_SIZE) -> "ListSelection":
        return cls(selected=0 if length > 0 else None, page_size=page_size)

    def reset(self, length: int) -> None:
        """
        Select the first item, or nothing when the list is empty.
        """
        self.selected = 0 if length > 0 else None

    def clamp(self, length: int) -> None:
        """
        Keep the current index but pull it back inside ``length``.

        Examples
        --------
        >>> selection = ListSelection(selected=8)
        >>> selection.clamp(5)
        >>> selection.selected
        4
        >>> selection.clamp(0)
        >>> selection.selected is None
        True
        """
        if length <= 0:
            self.selected = None
        elif self.selected is None:
            self.selected = 0
        else:
            self.selected = min(self.selected, length - 1)

    def next(self, length: int) -> None:
        if length <= 0:
            return
        if self.selected is None or self.selected >= length - 1:
            self.selected = 0
        else:
            self.selected += 1

    def previous(self, length: int) -> None:
        if length <= 0:
            return
        if self.selected is None:
            self.selected = 0
        elif self.selected == 0:
            self.selected = length - 1
        else:
            self.selected -= 1

    def page_down(self, length: int) -> None:
        """
        Move one page forward, stopping at the last item.

        Examples
        --------
        >>> selection = ListSelection(selected=5)
        >>> selection.page_down(12)
        >>> selection.selected
        11
        """
        if length <= 0:
            return
        if self.selected is None:
            self.selected = 0
        else:
            self.selected = min(self.selected + self.page_size, length - 1)

    def page_up(self, length: int) -> None:
        if length <= 0:
            return
        if self.selected is None:
            self.selected = 0
        else:
            self.selected = max(self.selected - self.page_size, 0)

    def first(self, length: int) -> None:
        if length > 0:
            self.selected = 0

    def last(self, length: int) -> None:
        if length > 0:
            self.selected = length - 1
