# MIT License © 2025 Motohiro Suzuki
"""
audit/sink.py

Append-only transition trail.

LogAuditSink writes "YYYY/MM/DD HH:MM:SS <line>" to stderr and, when a path is
configured, appends the same line to that file.

- record() only enqueues; a QueueListener thread does the stream/file writes,
  so a slow disk or pipe never stalls the event loop
- open failure of the file  -> AuditError at construction (fatal startup error)
- write failure afterwards  -> reported through logging's handleError, never raised
- close() drains the queue before closing the handlers
- lines carry key NAMES in hex; key material must never be passed in
"""

from __future__ import annotations

import logging
import queue
import sys
from logging.handlers import QueueHandler, QueueListener
from typing import List, Optional, TextIO

from ether_keygen.protocol.errors import AuditError

_AUDIT_FORMAT = "%(asctime)s %(message)s"
_AUDIT_DATEFMT = "%Y/%m/%d %H:%M:%S"


class AuditSink:
    def record(self, line: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        return None


class LogAuditSink(AuditSink):
    def __init__(self, path: str = "", *, stream: Optional[TextIO] = None) -> None:
        # private logger: the audit trail must not leak into (or depend on) the root config
        self._log = logging.Logger("ether_keygen.audit", level=logging.INFO)
        self._log.propagate = False
        self._handlers: List[logging.Handler] = []
        self._listener: Optional[QueueListener] = None
        self.path = path or ""

        fmt = logging.Formatter(_AUDIT_FORMAT, _AUDIT_DATEFMT)

        console = logging.StreamHandler(stream if stream is not None else sys.stderr)
        console.setFormatter(fmt)
        self._handlers.append(console)

        if self.path.strip():
            try:
                fh = logging.FileHandler(self.path, mode="a", encoding="utf-8")
            except OSError as e:
                self.close()
                raise AuditError(f"cannot open audit log {self.path}: {e}") from e
            fh.setFormatter(fmt)
            self._handlers.append(fh)

        q: queue.SimpleQueue = queue.SimpleQueue()
        self._queue_handler = QueueHandler(q)
        self._log.addHandler(self._queue_handler)
        self._listener = QueueListener(q, *self._handlers)
        self._listener.start()

    def record(self, line: str) -> None:
        self._log.info(line)

    def close(self) -> None:
        if self._listener is not None:
            self._log.removeHandler(self._queue_handler)
            self._listener.stop()
            self._listener = None
        for h in self._handlers:
            h.close()
        self._handlers.clear()
