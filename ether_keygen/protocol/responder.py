# MIT License © 2025 Motohiro Suzuki
"""
protocol/responder.py

QueryResponder: answers <prefix>retrieve-keys with a msgpack snapshot,
delivered point-to-point to the asking member.

Per query:
  - snapshot copied under the window lock (nothing else happens under it)
  - audit "<prefix>retrieve-keys: <n> keys"
  - encode + reply after the lock is released

serve() runs one task per query, at most `max_inflight` at a time.
Encode failure is fatal (serve() raises ResponderError); a failed reply only
loses that one answer and is logged.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, Optional, Set

from ether_keygen.audit.sink import AuditSink
from ether_keygen.protocol.errors import (
    Failure,
    FailureCode,
    FailurePhase,
    PublishError,
    ResponderError,
    SnapshotCodecError,
)
from ether_keygen.protocol.events import EventNames
from ether_keygen.protocol.snapshot import encode_snapshot
from ether_keygen.protocol.window import KeyWindow
from ether_keygen.transport.bus import QueryReplier

logger = logging.getLogger(__name__)


def _query_id(query: Dict[str, Any]) -> int:
    qid = query.get("ID")
    if isinstance(qid, bool) or not isinstance(qid, int):
        raise ValueError(f"query without integer ID: {qid!r}")
    return qid


class QueryResponder:
    def __init__(
        self,
        window: KeyWindow,
        replier: QueryReplier,
        audit: AuditSink,
        *,
        names: EventNames = EventNames(),
        max_inflight: int = 64,
    ) -> None:
        if max_inflight < 1:
            raise ValueError("max_inflight must be >= 1")
        self.window = window
        self.replier = replier
        self.audit = audit
        self.names = names
        self.max_inflight = int(max_inflight)
        self.answered = 0

        self._sem: Optional[asyncio.Semaphore] = None
        self._inflight: Set[asyncio.Task] = set()
        self._failure: Optional[ResponderError] = None
        self._serve_task: Optional[asyncio.Task] = None

    def wants(self, query: Dict[str, Any]) -> bool:
        return query.get("Name") == self.names.retrieve_keys

    async def handle(self, query: Dict[str, Any]) -> bool:
        """Answer one query record. Returns False when the query is not ours or the reply failed."""
        if not self.wants(query):
            logger.debug("ignoring query %r", query.get("Name"))
            return False

        qid = _query_id(query)
        snap = self.window.snapshot()
        self._record(f"{self.names.retrieve_keys}: {len(snap)} keys")

        try:
            payload = encode_snapshot(snap)
        except SnapshotCodecError as e:
            failure = Failure(
                phase=FailurePhase.QUERY,
                code=FailureCode.ERR_ENCODE,
                fatal=True,
                event=self.names.retrieve_keys,
                key_name=None if snap.default is None else snap.default.hex(),
                detail=str(e),
            )
            logger.error("query responder stopped: %s", failure.describe())
            raise ResponderError(failure) from e

        try:
            await self.replier.respond(qid, payload)
        except (PublishError, OSError, asyncio.TimeoutError) as e:
            dropped = Failure(
                phase=FailurePhase.QUERY,
                code=FailureCode.ERR_REPLY,
                fatal=False,
                event=self.names.retrieve_keys,
                detail=f"id={qid} {type(e).__name__}: {e}",
            )
            logger.warning("reply dropped: %s", dropped.describe())
            return False

        self.answered += 1
        return True

    async def serve(self, queries: AsyncIterator[Dict[str, Any]]) -> None:
        """Consume query records until the stream ends; raise ResponderError on a fatal failure."""
        self._sem = asyncio.Semaphore(self.max_inflight)
        self._serve_task = asyncio.current_task()
        try:
            async for query in queries:
                if self._failure is not None:
                    raise self._failure
                if not self.wants(query):
                    continue
                await self._sem.acquire()
                task = asyncio.create_task(self._guarded(query))
                self._inflight.add(task)
                task.add_done_callback(self._reap)
            if self._inflight:
                await asyncio.gather(*self._inflight, return_exceptions=True)
        except asyncio.CancelledError:
            if self._failure is not None:
                raise self._failure from None
            raise
        finally:
            for t in list(self._inflight):
                t.cancel()
        if self._failure is not None:
            raise self._failure

    async def _guarded(self, query: Dict[str, Any]) -> None:
        try:
            await self.handle(query)
        except ValueError as e:
            logger.warning("malformed query dropped: %s", e)

    def _reap(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if self._sem is not None:
            self._sem.release()
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        if self._failure is None:
            self._failure = exc if isinstance(exc, ResponderError) else ResponderError(
                Failure(
                    phase=FailurePhase.QUERY,
                    code=FailureCode.ERR_INTERNAL,
                    fatal=True,
                    event=self.names.retrieve_keys,
                    detail=f"{type(exc).__name__}: {exc}",
                )
            )
        if self._serve_task is not None and not self._serve_task.done():
            self._serve_task.cancel()

    def _record(self, line: str) -> None:
        try:
            self.audit.record(line)
        except Exception:
            logger.exception("audit record failed: %s", line)
