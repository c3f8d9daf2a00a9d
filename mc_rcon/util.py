# mc_rcon/util.py
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Union

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 25575
DEFAULT_PASSWORD = "changeme123"
DEFAULT_TIMEOUT = 10.0

_FORMAT_CODE = re.compile("§[0-9a-fk-orx]", re.IGNORECASE)


def read_properties(path: Path) -> dict:
    props = {}
    if path.exists():
        for line in path.read_text(encoding="utf-8", errors="ignore").splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" in line:
                k, v = line.split("=", 1)
                props[k.strip()] = v.strip()
    return props


@dataclass(frozen=True)
class RconSettings:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    password: str = DEFAULT_PASSWORD
    timeout: float = DEFAULT_TIMEOUT
    enabled: Optional[bool] = None   # enable-rcon from server.properties, None if unknown

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


def _first(*values):
    return next((v for v in values if v not in (None, "")), None)


def load_settings(
    host: Optional[str] = None,
    port: Optional[int] = None,
    password: Optional[str] = None,
    properties: Union[str, Path, None] = None,
    timeout: Optional[float] = None,
) -> RconSettings:
    """Resolve connection settings: arguments, then RCON_* env vars, then server.properties."""
    props = read_properties(Path(properties).expanduser()) if properties else {}
    enabled = None
    if "enable-rcon" in props:
        enabled = props["enable-rcon"].lower() == "true"

    raw_port = _first(port, os.environ.get("RCON_PORT"), props.get("rcon.port"), DEFAULT_PORT)
    raw_timeout = _first(timeout, os.environ.get("RCON_TIMEOUT"), DEFAULT_TIMEOUT)
    try:
        port_num = int(raw_port)
        timeout_secs = float(raw_timeout)
    except ValueError as e:
        raise ValueError(f"invalid RCON setting: {e}") from e
    if not 0 < port_num < 65536:
        raise ValueError(f"invalid RCON port: {port_num}")

    return RconSettings(
        host=_first(host, os.environ.get("RCON_HOST"), DEFAULT_HOST),
        port=port_num,
        password=_first(password, os.environ.get("RCON_PASSWORD"), props.get("rcon.password"), DEFAULT_PASSWORD),
        timeout=timeout_secs,
        enabled=enabled,
    )


def strip_formatting(text: str) -> str:
    """Drop Minecraft section-sign colour/format codes (e.g. '§a')."""
    return _FORMAT_CODE.sub("", text)


def backoff_delays(initial: float = 2.0, cap: float = 32.0, attempts: int = 5) -> Iterator[float]:
    """Delays before each reconnect attempt: initial, doubled each time, capped."""
    delay = initial
    for _ in range(attempts):
        yield delay
        delay = min(delay * 2, cap)
