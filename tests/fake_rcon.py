"""In-process fake RCON server used by the client tests."""

from __future__ import annotations

import asyncio
import struct
from dataclasses import dataclass, field

FRAGMENT_SIZE = 4096


def packet(req_id: int, kind: int, body: bytes | str = b"") -> bytes:
    """Build one wire packet the way a real server would."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    data = struct.pack("<ii", req_id, kind) + body + b"\x00\x00"
    return struct.pack("<i", len(data)) + data


def fragments(req_id: int, text: str) -> list[bytes]:
    """Split a response into FRAGMENT_SIZE-byte RESPONSE packets sharing one id."""
    raw = text.encode("utf-8")
    chunks = [raw[i:i + FRAGMENT_SIZE] for i in range(0, len(raw), FRAGMENT_SIZE)] or [b""]
    return [packet(req_id, 0, c) for c in chunks]


@dataclass
class Hang:
    """Answer the command with ``partial`` but never answer the sentinel behind it."""

    partial: str = ""


@dataclass
class Crash:
    """Send ``partial`` for the command, then drop the connection."""

    partial: str = ""


@dataclass
class Raw:
    """Write ``data`` verbatim, then answer the command with ``then``."""

    data: bytes
    then: str = ""


@dataclass
class FakeRconServer:
    """Minimal RCON server. Commands are echoed unless ``responses`` overrides them.

    Attributes:
        auth: "ok", "reject" (reply with id -1) or "silent" (never reply)
        empty_before_auth: send an empty RESPONSE ahead of the auth reply
        auth_reply_id: id to put on the auth reply instead of the request id
        chunk_size: write replies in slices of this many bytes
        batch: collect this many command packets, then answer them with the
            command fragments interleaved packet by packet, sentinels last
        stall_after_auth: stop reading once authenticated, so the client's
            writes back up until the server exits
    """

    password: str = "secret"
    responses: dict = field(default_factory=dict)
    auth: str = "ok"
    empty_before_auth: bool = False
    auth_reply_id: int | None = None
    chunk_size: int | None = None
    batch: int = 1
    stall_after_auth: bool = False
    received: list = field(default_factory=list)
    connections: int = 0
    port: int = 0

    async def __aenter__(self) -> FakeRconServer:
        self._writers: list[asyncio.StreamWriter] = []
        self._released = asyncio.Event()
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def __aexit__(self, *exc_info) -> None:
        self._released.set()
        self.drop_all()
        self._server.close()
        await self._server.wait_closed()

    def drop_all(self) -> None:
        for w in self._writers:
            w.close()

    async def _write(self, writer: asyncio.StreamWriter, data: bytes) -> None:
        step = self.chunk_size or len(data) or 1
        for i in range(0, len(data), step):
            writer.write(data[i:i + step])
            await writer.drain()
            if self.chunk_size:
                await asyncio.sleep(0)

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.append(writer)
        authed = False
        skip_next = False
        queued: list[tuple[int, str]] = []
        try:
            while True:
                (size,) = struct.unpack("<i", await reader.readexactly(4))
                data = await reader.readexactly(size)
                req_id, kind = struct.unpack("<ii", data[:8])
                body = data[8:-2].decode("utf-8")
                self.received.append((req_id, kind, body))

                if not authed:
                    authed = await self._authenticate(writer, req_id, body)
                    if authed and self.stall_after_auth:
                        await self._released.wait()
                        return
                    continue
                if skip_next:
                    skip_next = False
                    continue

                if self.batch > 1:
                    queued.append((req_id, body))
                    if len(queued) == self.batch:
                        await self._write(writer, self._interleaved(queued))
                        queued = []
                    continue

                action = self.responses.get(body, body)
                if isinstance(action, Hang):
                    if action.partial:
                        await self._write(writer, b"".join(fragments(req_id, action.partial)))
                    skip_next = True
                elif isinstance(action, Crash):
                    await self._write(writer, b"".join(fragments(req_id, action.partial)))
                    return
                elif isinstance(action, Raw):
                    await self._write(writer, action.data + b"".join(fragments(req_id, action.then)))
                else:
                    await self._write(writer, b"".join(fragments(req_id, action)))
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()

    async def _authenticate(self, writer: asyncio.StreamWriter, req_id: int, body: str) -> bool:
        if self.auth == "silent":
            return False
        if self.auth == "reject" or body != self.password:
            await self._write(writer, packet(-1, 2))
            return False
        out = packet(req_id, 0) if self.empty_before_auth else b""
        reply_id = req_id if self.auth_reply_id is None else self.auth_reply_id
        await self._write(writer, out + packet(reply_id, 2))
        return True

    def _interleaved(self, queued: list[tuple[int, str]]) -> bytes:
        mains = [fragments(req_id, self.responses.get(body, body)) for req_id, body in queued if body]
        sentinels = [fragments(req_id, "") for req_id, body in queued if not body]
        out: list[bytes] = []
        while any(mains):
            for frags in mains:
                if frags:
                    out.append(frags.pop(0))
        for frags in sentinels:
            out.extend(frags)
        return b"".join(out)

