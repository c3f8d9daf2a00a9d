"""Tests for the prompt_toolkit console helpers."""

from __future__ import annotations

import pytest
from prompt_toolkit.widgets import TextArea

from mc_rcon import rcon_ui
from mc_rcon.rcon_ui import BoundedHistory, _append, _clear


def test_history_keeps_newest_entries():
    history = BoundedHistory(limit=3)
    for cmd in ["list", "say a", "say b", "time query daytime"]:
        history.append_string(cmd)
    assert history.get_strings() == ["say a", "say b", "time query daytime"]


# Buffer edits look up the current app, which needs a running event loop.
@pytest.mark.asyncio
async def test_append_trims_to_limit(monkeypatch):
    monkeypatch.setattr(rcon_ui, "LOG_TRIM_LIMIT", 10)
    area = TextArea()
    _append(None, area, "0123456789")
    _append(None, area, "abc")
    assert area.text == "3456789abc"


@pytest.mark.asyncio
async def test_clear():
    area = TextArea()
    _append(None, area, "$ list\n")
    _clear(None, area)
    assert area.text == ""
