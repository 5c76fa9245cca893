# MIT License © 2025 Motohiro Suzuki
"""
transport/serf_rpc.py

Async client for the Serf agent RPC protocol (msgpack over TCP).

Wire:
    request : header {"Command": str, "Seq": int} [+ body]
    response: header {"Seq": int, "Error": str}   [+ body, stream records only]

Commands used here:
    handshake {"Version": 1}
    auth      {"AuthKey": str}
    event     {"Name": str, "Payload": bytes, "Coalesce": bool}
    stream    {"Type": "query"}   -> ack header, then header+body per record
    respond   {"ID": int, "Payload": bytes}
    stop      {"Stream": seq}

The first header carrying a stream's Seq is the ack; every later header with
that Seq is followed by exactly one body object (the record).
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, AsyncIterator, Dict, Optional, Tuple

import msgpack

from ether_keygen.protocol.errors import RPCError
from ether_keygen.transport.bus import EventPublisher, QueryReplier

logger = logging.getLogger(__name__)

RPC_VERSION = 1
MAX_BUFFER_SIZE = 16 * 1024 * 1024
READ_CHUNK = 64 * 1024


def parse_addr(addr: str) -> Tuple[str, int]:
    """'host:port' or '[v6]:port' -> (host, port)."""
    host, sep, port = addr.strip().rpartition(":")
    if not sep or not host:
        raise ValueError(f"address must be host:port, got {addr!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        p = int(port)
    except ValueError:
        raise ValueError(f"bad port in address {addr!r}") from None
    if not 0 < p < 65536:
        raise ValueError(f"port out of range in address {addr!r}")
    return host, p


class SerfRPCClient(EventPublisher, QueryReplier):
    """Serf RPC connection.

    Usage:
        rpc = SerfRPCClient("127.0.0.1:7373", auth_key="", timeout=5.0)
        await rpc.connect()
        await rpc.user_event("ether:wipe-keys", b"", coalesce=True)
        async for q in rpc.stream_queries():
            await rpc.respond(q["ID"], b"...")
        await rpc.close()
    """

    def __init__(self, addr: str = "127.0.0.1:7373", *, auth_key: str = "", timeout: float = 0.0) -> None:
        self.addr = addr
        self._host, self._port = parse_addr(addr)
        self._auth_key = auth_key or ""
        self._timeout: Optional[float] = float(timeout) if timeout and timeout > 0 else None

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._closed = True
        self._lost = False
        self._write_lock = asyncio.Lock()
        self._seq = itertools.count()

        # Seq -> (command, future) awaiting a header-only response
        self._pending: Dict[int, Tuple[str, asyncio.Future]] = {}
        # Seq -> record queue of an open stream
        self._streams: Dict[int, asyncio.Queue] = {}
        # set when the next decoded object is a stream record body
        self._body_for: Optional[int] = None
        self._reader_task: Optional[asyncio.Task] = None

    # -------------------------
    # Connection lifecycle
    # -------------------------
    async def connect(self) -> None:
        """Open TCP connection, start background reader, handshake (+auth)."""
        try:
            reader, writer = await asyncio.open_connection(self._host, self._port)
        except OSError as e:
            raise RPCError("connect", f"cannot reach {self.addr}: {e}") from e
        self.attach(reader, writer)

        try:
            await self._call("handshake", {"Version": RPC_VERSION})
            if self._auth_key:
                await self._call("auth", {"AuthKey": self._auth_key})
        except RPCError:
            await self.close()
            raise
        logger.info("serf rpc connected addr=%s", self.addr)

    def attach(self, reader: asyncio.StreamReader, writer: Any) -> None:
        """Wire an already-open stream pair (connect() uses this)."""
        self._reader = reader
        self._writer = writer
        self._closed = False
        self._lost = False
        self._reader_task = asyncio.create_task(self._read_loop())

    @property
    def connected(self) -> bool:
        return not self._closed and not self._lost and self._writer is not None

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._reader_task and not self._reader_task.done():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        if self._writer is not None:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except OSError:
                pass
        self._fail_all(RPCError("close", "connection closed"), end_streams=True)
        logger.info("serf rpc closed addr=%s", self.addr)

    # -------------------------
    # Commands
    # -------------------------
    async def user_event(self, name: str, payload: bytes, coalesce: bool = False) -> None:
        await self._call("event", {"Name": name, "Payload": bytes(payload or b""), "Coalesce": bool(coalesce)})

    async def publish(self, name: str, payload: bytes, coalesce: bool = False) -> None:
        await self.user_event(name, payload, coalesce)

    async def respond(self, query_id: int, payload: bytes) -> None:
        await self._call("respond", {"ID": int(query_id), "Payload": bytes(payload)})

    async def stream_queries(self) -> AsyncIterator[Dict[str, Any]]:
        """Yield query records ({"ID", "LTime", "Name", "Payload", ...}) until the connection ends."""
        seq = next(self._seq)
        queue: asyncio.Queue = asyncio.Queue()
        self._streams[seq] = queue
        try:
            await self._call("stream", {"Type": "query"}, seq=seq)
            while True:
                item = await queue.get()
                if item is None:
                    return
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self._streams.pop(seq, None)
            if self.connected:
                try:
                    await self._call("stop", {"Stream": seq})
                except RPCError as e:
                    logger.debug("stop stream seq=%d failed: %s", seq, e)

    # -------------------------
    # Wire
    # -------------------------
    async def _call(self, command: str, body: Optional[Dict[str, Any]] = None, *, seq: Optional[int] = None) -> None:
        if not self.connected:
            raise RPCError(command, "not connected")

        if seq is None:
            seq = next(self._seq)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[seq] = (command, future)

        frame = msgpack.packb({"Command": command, "Seq": seq}, use_bin_type=True)
        if body is not None:
            frame += msgpack.packb(body, use_bin_type=True)

        try:
            async with self._write_lock:
                self._writer.write(frame)
                await self._writer.drain()
            await asyncio.wait_for(future, timeout=self._timeout)
        except asyncio.TimeoutError:
            self._pending.pop(seq, None)
            raise RPCError(command, f"timed out after {self._timeout}s") from None
        except OSError as e:
            self._pending.pop(seq, None)
            raise RPCError(command, f"write failed: {e}") from e
        except BaseException:
            self._pending.pop(seq, None)
            raise

    async def _read_loop(self) -> None:
        unpacker = msgpack.Unpacker(raw=False, max_buffer_size=MAX_BUFFER_SIZE)
        reason = "connection lost"
        try:
            while not self._closed and self._reader is not None:
                data = await self._reader.read(READ_CHUNK)
                if not data:
                    break
                unpacker.feed(data)
                for obj in unpacker:
                    self._dispatch(obj)
        except asyncio.CancelledError:
            return
        except (OSError, ValueError, msgpack.UnpackException) as e:
            reason = f"read failed: {e}"
            logger.error("serf rpc %s", reason)

        if not self._closed:
            logger.warning("serf rpc %s addr=%s", reason, self.addr)
            self._lost = True
            self._fail_all(RPCError("connection", reason), end_streams=False)

    def _dispatch(self, obj: Any) -> None:
        if self._body_for is not None:
            seq, self._body_for = self._body_for, None
            queue = self._streams.get(seq)
            if queue is not None:
                queue.put_nowait(obj)
            return

        if not isinstance(obj, dict) or "Seq" not in obj:
            logger.warning("serf rpc: unexpected object on the wire, dropped")
            return

        seq = obj["Seq"]
        err = obj.get("Error") or ""

        entry = self._pending.pop(seq, None)
        if entry is not None:
            command, fut = entry
            if not fut.done():
                if err:
                    fut.set_exception(RPCError(command, err))
                else:
                    fut.set_result(None)
            return

        queue = self._streams.get(seq)
        if queue is not None:
            if err:
                queue.put_nowait(RPCError("stream", err))
            else:
                self._body_for = seq
            return

        logger.debug("serf rpc: response for unknown seq=%s ignored", seq)

    def _fail_all(self, exc: RPCError, *, end_streams: bool) -> None:
        for command, fut in self._pending.values():
            if not fut.done():
                fut.set_exception(RPCError(command, exc.message))
        self._pending.clear()
        for queue in self._streams.values():
            queue.put_nowait(None if end_streams else exc)
