# mc_rcon/console.py
"""Line-oriented RCON console shared by the prompt_toolkit UI and the plain shell."""
from __future__ import annotations

import asyncio
import functools
import itertools
import logging
from typing import Callable, Optional

from .errors import AuthenticationError, RconError
from .rcon import RconClient
from .util import RconSettings, backoff_delays, strip_formatting

logger = logging.getLogger(__name__)

CONNECTED = "connected"
RECONNECTING = "reconnecting"
DISCONNECTED = "disconnected"

MAX_RECONNECT_ATTEMPTS = 5

HELP_TEXT = """\
Built-in commands:
  /help        Show this help message
  /clear       Clear the output pane
  /reconnect   Reconnect to the server
  /disconnect  Disconnect from the server
  /quit        Leave the console
Anything else is sent to the server as an RCON command.
"""


class ConsoleSession:
    """Runs console input against an RconClient and reconnects when the link drops.

    ``emit`` receives every line of output; the UI decides how to show it.
    """

    def __init__(
        self,
        settings: RconSettings,
        emit: Callable[[str], None],
        *,
        clear: Optional[Callable[[], None]] = None,
        max_attempts: int = MAX_RECONNECT_ATTEMPTS,
        initial_delay: float = 2.0,
        client_factory: Optional[Callable[[], RconClient]] = None,
    ):
        self.settings = settings
        self.emit = emit
        self.clear = clear or (lambda: None)
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.client_factory = client_factory or self._new_client
        self.client: Optional[RconClient] = None
        self.state = DISCONNECTED
        self._reconnect_task: Optional[asyncio.Task] = None

    def _new_client(self) -> RconClient:
        s = self.settings
        return RconClient(s.host, s.port, s.password, timeout=s.timeout)

    # --- connection ----------------------------------------------------------

    async def connect(self) -> bool:
        client = self.client_factory()
        client.on_error = self._on_error
        client.on_close = functools.partial(self._on_close, client)
        try:
            await client.connect()
        except AuthenticationError as e:
            self.emit(f"[rcon] {e}. Check rcon.password.\n")
            return False
        except RconError as e:
            self.emit(
                f"[rcon] cannot connect: {e}\n"
                f"[hint] Check rcon.port ({self.settings.port}), firewall, "
                "and that the server was started with enable-rcon=true.\n"
            )
            return False
        self.client = client
        self.state = CONNECTED
        self.emit(f"[rcon] connected to {self.settings.address}. Try: list, say hello, time query daytime\n")
        return True

    def disconnect(self) -> None:
        self.state = DISCONNECTED
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        client, self.client = self.client, None
        if client is not None:
            client.disconnect()

    def _on_error(self, exc: BaseException) -> None:
        self.emit(f"[rcon error] {exc}\n")

    def _on_close(self, client: RconClient) -> None:
        if client is not self.client:
            return
        self.client = None
        if self.state == CONNECTED:
            self.emit("[rcon] connection lost\n")
            self.start_reconnect()

    def start_reconnect(self) -> asyncio.Task:
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.create_task(self.reconnect())
        return self._reconnect_task

    async def reconnect(self) -> bool:
        self.state = RECONNECTING
        delays = itertools.chain([0.0], backoff_delays(self.initial_delay, attempts=self.max_attempts - 1))
        for attempt, delay in enumerate(delays, 1):
            if delay:
                self.emit(f"Retrying in {delay:g} seconds...\n")
                await asyncio.sleep(delay)
            suffix = f" (attempt {attempt}/{self.max_attempts})" if attempt > 1 else ""
            self.emit(f"[rcon] reconnecting to {self.settings.address}{suffix}...\n")
            if await self.connect():
                return True
        self.state = DISCONNECTED
        logger.info("Giving up on %s after %d attempts", self.settings.address, self.max_attempts)
        self.emit(
            f"[rcon] reconnection failed after {self.max_attempts} attempts. "
            "Type /reconnect to try again.\n"
        )
        return False

    # --- input ---------------------------------------------------------------

    async def handle_line(self, line: str) -> bool:
        """Process one input line. Returns False when the user asked to leave."""
        cmd = line.strip()
        if not cmd:
            return True
        if cmd in ("/quit", "/exit"):
            return False
        if cmd == "/help":
            self.emit(HELP_TEXT)
        elif cmd == "/clear":
            self.clear()
        elif cmd == "/disconnect":
            self.disconnect()
            self.emit("Connection closed. Type /reconnect to reconnect.\n")
        elif cmd == "/reconnect":
            if self.state == CONNECTED:
                self.emit("Already connected.\n")
            elif self.state == RECONNECTING:
                self.emit("Already reconnecting...\n")
            else:
                await asyncio.wait([self.start_reconnect()])
        else:
            await self.execute(cmd)
        return True

    async def execute(self, cmd: str) -> None:
        if self.state == RECONNECTING:
            self.emit("Reconnecting... please wait.\n")
            return
        if self.client is None:
            self.emit("[disconnected] Type /reconnect to reconnect.\n")
            return
        try:
            out = await self.client.send(cmd)
        except RconError as e:
            self.emit(f"[rcon error] {e}\n")
            return
        out = strip_formatting(out).rstrip("\n")
        self.emit(f"$ {cmd}\n{out}\n" if out else f"$ {cmd}\n")
