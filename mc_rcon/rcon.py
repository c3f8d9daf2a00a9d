# mc_rcon/rcon.py
from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import socket
from dataclasses import dataclass, field
from typing import Callable, Optional

from .errors import (
    AuthenticationError,
    ConnectionClosedError,
    NotReadyError,
    ProtocolError,
    RconConnectionError,
    RconTimeoutError,
)
from .protocol import (
    AUTH_FAILED_ID,
    ClientPacketType,
    Packet,
    PacketDecoder,
    ServerPacketType,
    encode_packet,
)

logger = logging.getLogger(__name__)

MAX_REQUEST_ID = 2**31 - 1
READ_CHUNK = 65536

ErrorCallback = Callable[[BaseException], None]
CloseCallback = Callable[[], None]


@dataclass
class _Pending:
    """One outstanding request. Sentinels carry the id of the request they close."""
    command: str
    future: Optional[asyncio.Future] = None
    fragments: list[bytes] = field(default_factory=list)
    main_id: Optional[int] = None


@dataclass
class _Session:
    """State for one TCP connection. Reconnecting builds a new one."""
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    decoder: PacketDecoder = field(default_factory=PacketDecoder)
    pending: dict[int, _Pending] = field(default_factory=dict)
    next_id: int = 1
    authenticated: bool = False
    auth_id: Optional[int] = None
    auth_future: Optional[asyncio.Future] = None
    read_task: Optional[asyncio.Task] = None
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    closed: bool = False

    def allocate_id(self) -> int:
        while True:
            req_id = self.next_id
            self.next_id = 1 if req_id >= MAX_REQUEST_ID else req_id + 1
            if req_id not in self.pending and req_id != self.auth_id:
                return req_id


def _set_keepalive(writer: asyncio.StreamWriter, interval: float) -> None:
    sock = writer.get_extra_info("socket")
    if sock is None:
        return
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
    if not interval:
        return
    secs = max(1, int(interval))
    if hasattr(socket, "TCP_KEEPIDLE"):
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, secs)
    elif hasattr(socket, "TCP_KEEPALIVE"):  # macOS
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPALIVE, secs)
    if hasattr(socket, "TCP_KEEPINTVL"):
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, secs)


class RconClient:
    """Async RCON client over one persistent, authenticated connection.

    Every ``send()`` writes the real command followed by an empty sentinel
    command. The server answers in order, so the sentinel's response marks
    the end of however many fragments the real command produced.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: Optional[int] = None,
        password: Optional[str] = None,
        *,
        timeout: float = 10.0,
        auth_timeout: float = 5.0,
        connect_timeout: float = 5.0,
        keepalive: float = 60.0,
        on_error: Optional[ErrorCallback] = None,
        on_close: Optional[CloseCallback] = None,
    ):
        self.host = host
        self.port = port or int(os.environ.get("RCON_PORT", "25575"))
        self.password = password if password is not None else os.environ.get("RCON_PASSWORD", "changeme123")
        self.timeout = timeout
        self.auth_timeout = auth_timeout
        self.connect_timeout = connect_timeout
        self.keepalive = keepalive
        self.on_error = on_error
        self.on_close = on_close
        self._session: Optional[_Session] = None

    async def __aenter__(self) -> RconClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.disconnect()
        await self.wait_closed()

    def is_connected(self) -> bool:
        s = self._session
        return s is not None and not s.closed and s.authenticated

    # --- connection lifecycle ------------------------------------------------

    async def connect(self) -> None:
        if self._session is not None:
            self.disconnect()

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError as e:
            raise RconTimeoutError(f"connect to {self.host}:{self.port}", self.connect_timeout) from e
        except OSError as e:
            raise RconConnectionError(str(e) or type(e).__name__, self.host, self.port) from e

        _set_keepalive(writer, self.keepalive)
        session = _Session(reader, writer)
        self._session = session
        logger.info("Connected to %s:%d", self.host, self.port,
                    extra={"host": self.host, "port": self.port})
        session.read_task = asyncio.create_task(self._read_loop(session))

        try:
            await self._authenticate(session)
        except BaseException:
            self._teardown(session)
            raise

    async def _authenticate(self, session: _Session) -> None:
        session.auth_id = session.allocate_id()
        session.auth_future = asyncio.get_running_loop().create_future()
        try:
            await self._write(session, encode_packet(session.auth_id, ClientPacketType.AUTH, self.password))
            await asyncio.wait_for(session.auth_future, timeout=self.auth_timeout)
        except asyncio.TimeoutError as e:
            raise RconTimeoutError("authentication", self.auth_timeout) from e
        finally:
            session.auth_future = None
        session.authenticated = True
        logger.info("Authenticated to %s:%d", self.host, self.port,
                    extra={"host": self.host, "port": self.port})

    def disconnect(self) -> None:
        """Close the connection and fail anything still waiting. Safe to repeat."""
        if self._session is not None:
            self._teardown(self._session)

    async def wait_closed(self) -> None:
        session = self._session
        if session is None:
            return
        if session.read_task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await session.read_task
        with contextlib.suppress(OSError):
            await session.writer.wait_closed()

    def _teardown(self, session: _Session, fault: Optional[BaseException] = None) -> None:
        if session.closed:
            return
        session.closed = True
        session.authenticated = False

        if isinstance(fault, ProtocolError):
            reason = f"protocol error: {fault.reason}"
        elif fault is not None:
            reason = f"connection closed: {fault}"
        else:
            reason = "connection closed"
        waiting = [p.future for p in session.pending.values() if p.future is not None]
        if session.auth_future is not None:
            waiting.append(session.auth_future)
        for fut in waiting:
            if not fut.done():
                exc = ConnectionClosedError(reason, self.host, self.port)
                exc.__cause__ = fault
                fut.set_exception(exc)
        session.pending.clear()

        task = session.read_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        session.writer.close()
        if session.writer.transport.get_write_buffer_size():
            # Peer isn't reading; don't hold the socket open to flush.
            session.writer.transport.abort()

        if fault is not None:
            logger.error("Connection to %s:%d failed: %s", self.host, self.port, fault,
                         extra={"host": self.host, "port": self.port, "error": str(fault)})
            self._notify(self.on_error, fault)
        logger.info("Connection to %s:%d closed", self.host, self.port,
                    extra={"host": self.host, "port": self.port})
        self._notify(self.on_close)

    def _notify(self, callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("RCON notification callback %r failed", callback)

    # --- I/O -----------------------------------------------------------------

    async def _write(self, session: _Session, *packets: bytes) -> None:
        # Queue every packet before yielding so nothing can land in between.
        for data in packets:
            session.writer.write(data)
        try:
            async with session.write_lock:
                await session.writer.drain()
        except OSError as e:
            self._teardown(session, e)
            raise ConnectionClosedError(f"write failed: {e}", self.host, self.port) from e

    async def _read_loop(self, session: _Session) -> None:
        fault: Optional[BaseException] = None
        try:
            while True:
                data = await session.reader.read(READ_CHUNK)
                if not data:
                    break
                for packet in session.decoder.feed(data):
                    self._dispatch(session, packet)
        except (OSError, ProtocolError) as e:
            fault = e
        self._teardown(session, fault)

    # --- correlation ---------------------------------------------------------

    async def send(self, command: str) -> str:
        """Run ``command`` and return the whole response text (may be empty)."""
        session = self._session
        if session is None or session.closed or not session.authenticated:
            raise NotReadyError("RCON not connected or not authenticated")

        main_id = session.allocate_id()
        main = _Pending(command, future=asyncio.get_running_loop().create_future())
        session.pending[main_id] = main
        sentinel_id = session.allocate_id()
        sentinel = _Pending("", main_id=main_id)
        session.pending[sentinel_id] = sentinel
        logger.debug("Sending request %d (sentinel %d): %s", main_id, sentinel_id, command,
                     extra={"request_id": main_id, "sentinel_id": sentinel_id})

        packets = (
            encode_packet(main_id, ClientPacketType.COMMAND, command),
            encode_packet(sentinel_id, ClientPacketType.COMMAND, ""),
        )
        try:
            # One deadline covers the drain and the wait for the sentinel.
            return await asyncio.wait_for(self._roundtrip(session, packets, main.future), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.warning("Request %d timed out after %gs", main_id, self.timeout,
                           extra={"request_id": main_id, "command": command})
            raise RconTimeoutError(f"command {command!r}", self.timeout) from e
        finally:
            for req_id, entry in ((main_id, main), (sentinel_id, sentinel)):
                if session.pending.get(req_id) is entry:
                    del session.pending[req_id]

    async def _roundtrip(self, session: _Session, packets: tuple[bytes, ...], future: asyncio.Future) -> str:
        await self._write(session, *packets)
        return await future

    def _dispatch(self, session: _Session, packet: Packet) -> None:
        logger.debug("Received packet id=%d type=%d (%d bytes)", packet.id, packet.type, len(packet.payload),
                     extra={"request_id": packet.id, "bytes": len(packet.payload)})
        if packet.id == AUTH_FAILED_ID:
            fut = session.auth_future
            if fut is not None and not fut.done():
                fut.set_exception(AuthenticationError("RCON auth failed"))
            else:
                logger.warning("Ignoring auth failure packet outside the handshake")
            return

        kind = packet.server_type()
        if not session.authenticated:
            fut = session.auth_future
            if kind is ServerPacketType.AUTH_RESPONSE and fut is not None and not fut.done():
                if packet.id != session.auth_id:
                    logger.debug("Auth response carried id %d, expected %d", packet.id, session.auth_id)
                fut.set_result(None)
            return

        entry = session.pending.get(packet.id)
        if entry is None:
            logger.debug("Dropping packet for unknown request id %d", packet.id,
                          extra={"request_id": packet.id})
            return
        if kind is not ServerPacketType.RESPONSE:
            logger.warning("Unexpected packet type %d for request %d", packet.type, packet.id,
                           extra={"request_id": packet.id})
            return

        if entry.main_id is None:
            entry.fragments.append(packet.payload)
            return

        # Sentinel answered: every fragment of its main request is already here.
        del session.pending[packet.id]
        main = session.pending.pop(entry.main_id, None)
        if main is not None and main.future is not None and not main.future.done():
            main.future.set_result(b"".join(main.fragments).decode("utf-8", "replace"))
