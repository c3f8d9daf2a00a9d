"""Fixtures for RCON client tests."""

from __future__ import annotations

import contextlib
import socket

import pytest

from fake_rcon import FakeRconServer


@pytest.fixture
def fake_server():
    """Factory for FakeRconServer; use as ``async with fake_server(...) as server``."""
    return FakeRconServer


@pytest.fixture
def unused_port():
    """A localhost port with nothing listening on it."""
    with contextlib.closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]
