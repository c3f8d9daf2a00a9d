# mc_rcon/rcon_ui.py
from __future__ import annotations

import asyncio
import contextlib
from typing import Optional

from prompt_toolkit.application import Application
from prompt_toolkit.document import Document
from prompt_toolkit.filters import has_focus
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.layout import HSplit, Layout
from prompt_toolkit.styles import Style
from prompt_toolkit.widgets import Label, TextArea

from .console import ConsoleSession
from .util import RconSettings

LOG_TRIM_LIMIT = 2_000_000  # keep last ~2MB in the in-memory text area
HISTORY_LIMIT = 100


class BoundedHistory(InMemoryHistory):
    """In-memory input history that keeps only the newest ``limit`` entries."""

    def __init__(self, limit: int = HISTORY_LIMIT) -> None:
        super().__init__()
        self.limit = limit

    def append_string(self, string: str) -> None:
        super().append_string(string)
        del self._loaded_strings[self.limit:]   # newest first
        del self._storage[:-self.limit]         # oldest first


async def run_rcon_ui(settings: RconSettings) -> None:
    """Fullscreen RCON console: response pane, status line and an input bar."""
    # Response pane: output only, filled in by _append.
    log = TextArea(
        style="class:log",
        focusable=False,
        scrollbar=True,
        wrap_lines=False,
        read_only=False,
    )
    input_field = TextArea(height=1, prompt="> ", multiline=False, history=BoundedHistory())

    session = ConsoleSession(
        settings,
        emit=lambda text: _append(app, log, text),
        clear=lambda: _clear(app, log),
    )

    def status_text() -> str:
        return f"RCON {settings.address}  [{session.state}]    (/help, Ctrl-C to exit)"

    status = Label(text=status_text, style="class:status")

    kb = KeyBindings()

    @kb.add("enter", filter=has_focus(input_field))
    async def _(event) -> None:
        line = input_field.text
        input_field.buffer.append_to_history()
        input_field.buffer.document = Document(text="")
        if not await session.handle_line(line):
            event.app.exit()

    @kb.add("escape", filter=has_focus(input_field))
    def _(event) -> None:
        input_field.buffer.document = Document(text="")

    @kb.add("c-l")
    def _(event) -> None:
        _clear(event.app, log)

    @kb.add("c-d")
    async def _(event) -> None:
        await session.handle_line("/disconnect")

    @kb.add("c-c")
    def _(event) -> None:
        event.app.exit()

    root = HSplit([status, log, input_field])
    app = Application(
        layout=Layout(root, focused_element=input_field),
        key_bindings=kb,
        full_screen=True,
        style=Style.from_dict(
            {
                "log": "bg:#0e162b #d1d5db",
                "status": "reverse",
            }
        ),
    )

    async def startup() -> None:
        if settings.enabled is False:
            _append(
                app,
                log,
                "[hint] RCON appears disabled (enable-rcon=false). "
                "Stop the server, set enable-rcon=true in server.properties, and start again.\n",
            )
        await session.connect()

    startup_task = asyncio.create_task(startup())
    try:
        await app.run_async()
    finally:
        startup_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await startup_task
        session.disconnect()


def _append(app: Optional[Application], area: TextArea, text: str) -> None:
    """
    Append text to the TextArea safely and keep the buffer size bounded.
    """
    buf = area.buffer
    buf.insert_text(text, move_cursor=True)
    if len(buf.text) > LOG_TRIM_LIMIT:
        new_text = buf.text[-LOG_TRIM_LIMIT:]
        buf.document = Document(new_text, cursor_position=len(new_text))
    if app is not None:
        app.invalidate()


def _clear(app: Optional[Application], area: TextArea) -> None:
    area.buffer.document = Document("")
    if app is not None:
        app.invalidate()
