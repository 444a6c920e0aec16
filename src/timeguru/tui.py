#!/usr/bin/env python3
"""
Full-screen terminal interface driving a :class:`~timeguru.session.Session`.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import pyperclip
from prompt_toolkit import Application
from prompt_toolkit.clipboard.pyperclip import PyperclipClipboard
from prompt_toolkit.data_structures import Point
from prompt_toolkit.filters import Condition
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.keys import Keys
from prompt_toolkit.layout import HSplit, Layout, Window
from prompt_toolkit.layout.containers import ConditionalContainer
from prompt_toolkit.layout.controls import FormattedTextControl
from prompt_toolkit.layout.dimension import Dimension
from prompt_toolkit.styles import Style
from prompt_toolkit.widgets import Frame as BorderFrame

from .render import (
    FilterPanelView,
    Footer,
    Frame,
    ListView,
    OverlayView,
    ProjectPanelView,
    Row,
    build_frame,
)
from .session import ClipboardUnavailable, Session

Fragments = List[Tuple[str, str]]

KEY_ALIASES: Dict[str, str] = {
    "c-m": "enter",
    "c-j": "enter",
    "c-h": "backspace",
}
ESCAPE_TIMEOUT = 0.05
HIGHLIGHT_SYMBOL = ">> "

STYLE = Style.from_dict(
    {
        "header": "fg:ansicyan bold",
        "label": "fg:ansiyellow",
        "hours": "fg:ansigreen bold",
        "count": "fg:ansibrightblack",
        "selected": "bg:#444444 bold",
        "heading": "fg:ansiyellow bold",
        "key": "fg:ansicyan",
        "active": "fg:ansigreen bold",
        "inactive": "fg:ansibrightblack",
        "status": "fg:ansiyellow bold",
    }
)


def key_name(key: Any) -> str:
    """
    Translate a prompt_toolkit key into the name a Session expects.

    Examples
    --------
    >>> key_name("j")
    'j'
    >>> key_name(Keys.ControlM)
    'enter'
    >>> key_name(Keys.PageDown)
    'pagedown'
    """
    name = key.value if isinstance(key, Enum) else str(key)
    return KEY_ALIASES.get(name, name)


def _project_style(color: Optional[str]) -> str:
    return f"fg:{color} bold" if color else "bold"


def row_fragments(row: Row) -> Fragments:
    base = "class:selected " if row.selected else ""
    fragments: Fragments = [(base, HIGHLIGHT_SYMBOL if row.selected else "   ")]
    if row.label:
        fragments.append((base + "class:label", row.label))
        fragments.append((base, " - "))
    fragments.append((base + "class:hours", f"{row.hours:.2f}h"))
    fragments.append((base, " - "))
    if row.project_name is not None:
        fragments.append((base + _project_style(row.project_color), f"[{row.project_name}] "))
    fragments.append((base, row.description))
    if row.entry_count is not None:
        fragments.append((base + "class:count", f" ({row.entry_count} entries)"))
    fragments.append(("", "\n"))
    return fragments


def list_fragments(view: ListView) -> Fragments:
    fragments: Fragments = []
    for row in view.rows:
        fragments.extend(row_fragments(row))
    return fragments


def filter_panel_fragments(view: FilterPanelView) -> Fragments:
    status_style = "class:active" if view.billable_status == "ACTIVE" else "class:inactive"
    return [
        ("class:heading", "Active Filters:\n"),
        ("class:key", "  Billable Only: "),
        (status_style, view.billable_status),
        ("", "\n\n"),
        ("class:heading", "Filter Controls:\n"),
        ("", f"  {view.controls}\n"),
    ]


def project_panel_fragments(view: ProjectPanelView) -> Fragments:
    fragments: Fragments = []
    for row in view.rows:
        base = "class:selected " if row.selected else ""
        fragments.append((base, HIGHLIGHT_SYMBOL if row.selected else "   "))
        fragments.append((base + _project_style(row.color), f"[{row.name}]"))
        fragments.append((base, " "))
        status_style = "class:active" if row.status == "Active" else "class:inactive"
        fragments.append((base + status_style, row.status))
        fragments.append(("", "\n"))
    return fragments


def project_help_fragments(view: ProjectPanelView) -> Fragments:
    fragments: Fragments = [("class:heading", "Controls: "), ("", view.controls)]
    if view.search_query:
        fragments.append(("", "  |  "))
        fragments.append(("class:key", "Search: "))
        fragments.append(("class:active", view.search_query))
    return fragments


def footer_fragments(footer: Footer) -> Fragments:
    lines = footer.lines()
    fragments: Fragments = [("", lines[0] + "\n"), ("class:key", lines[1] + "\n")]
    for line in lines[2:]:
        fragments.append(("class:status", line + "\n"))
    return fragments


def _overlay_body(overlay: Optional[OverlayView]) -> Fragments:
    if isinstance(overlay, FilterPanelView):
        return filter_panel_fragments(overlay)
    if isinstance(overlay, ProjectPanelView):
        return project_panel_fragments(overlay)
    return []


def system_clipboard() -> Callable[[str], None]:
    """
    Return a copy function backed by the platform clipboard.

    A missing clipboard mechanism surfaces as :class:`ClipboardUnavailable`.
    """
    clipboard = PyperclipClipboard()

    def copy(text: str) -> None:
        try:
            clipboard.set_text(text)
        except pyperclip.PyperclipWindowsException:
            raise
        except pyperclip.PyperclipException as exc:
            raise ClipboardUnavailable(str(exc)) from exc

    return copy


def build_application(session: Session, **kwargs: Any) -> Application:
    """
    Build the full-screen application for ``session``.

    Finished reassignments are applied in ``before_render``; the worker
    wakes the render loop through ``Application.invalidate``.

    Parameters
    ----------
    session : Session
        Session to display and drive. A session without a clipboard gets
        :func:`system_clipboard`.
    **kwargs : Any
        Extra ``Application`` arguments such as ``input`` and ``output``.

    Returns
    -------
    Application
        Ready-to-run prompt_toolkit application.
    """
    current: Dict[str, Frame] = {"frame": build_frame(session.state)}

    def frame() -> Frame:
        return current["frame"]

    def refresh(_app: Any = None) -> None:
        session.poll()
        current["frame"] = build_frame(session.state)

    def list_cursor() -> Point:
        return Point(x=0, y=frame().list_view.selected or 0)

    def overlay_cursor() -> Point:
        overlay = frame().overlay
        selected = overlay.selected if isinstance(overlay, ProjectPanelView) else None
        return Point(x=0, y=selected or 0)

    def overlay_title() -> str:
        overlay = frame().overlay
        return overlay.title if overlay is not None else ""

    header = Window(
        FormattedTextControl(lambda: [("class:header", frame().header)]),
        height=1,
    )
    entry_list = BorderFrame(
        Window(
            FormattedTextControl(
                lambda: list_fragments(frame().list_view),
                get_cursor_position=list_cursor,
            ),
            wrap_lines=False,
            always_hide_cursor=True,
        ),
        title=lambda: frame().list_view.title,
    )
    overlay_panel = ConditionalContainer(
        BorderFrame(
            HSplit(
                [
                    Window(
                        FormattedTextControl(
                            lambda: _overlay_body(frame().overlay),
                            get_cursor_position=overlay_cursor,
                        ),
                        height=Dimension(min=3, preferred=10, max=10),
                        wrap_lines=False,
                        always_hide_cursor=True,
                    ),
                    ConditionalContainer(
                        Window(
                            FormattedTextControl(
                                lambda: project_help_fragments(frame().overlay)
                            ),
                            height=1,
                        ),
                        filter=Condition(
                            lambda: isinstance(frame().overlay, ProjectPanelView)
                        ),
                    ),
                ]
            ),
            title=overlay_title,
        ),
        filter=Condition(lambda: frame().overlay is not None),
    )
    footer = BorderFrame(
        Window(
            FormattedTextControl(lambda: footer_fragments(frame().footer)),
            height=Dimension(min=2, max=3),
            wrap_lines=True,
        ),
        title="Help",
    )

    bindings = KeyBindings()

    @bindings.add(Keys.Any)
    def handle_any(event):
        session.handle_key(key_name(event.key_sequence[0].key))
        if session.state.should_quit:
            event.app.exit()

    app: Application = Application(
        layout=Layout(HSplit([header, entry_list, overlay_panel, footer])),
        key_bindings=bindings,
        full_screen=True,
        style=STYLE,
        before_render=refresh,
        **kwargs,
    )
    app.ttimeoutlen = ESCAPE_TIMEOUT
    session.on_complete = app.invalidate
    if session.clipboard is None:
        session.clipboard = system_clipboard()
    return app


def run_session(session: Session) -> None:
    """
    Run the interface until a quit key is pressed.

    An in-flight reassignment is allowed to finish before returning.
    """
    app = build_application(session)
    try:
        app.run()
    finally:
        session.close()
