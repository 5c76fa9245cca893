# MIT License © 2025 Motohiro Suzuki
"""
transport/bus.py

Cluster bus seams used by the rotator and the query responder:

- EventPublisher.publish(name, payload, coalesce)  broadcast a user event
- QueryReplier.respond(query_id, payload)           point-to-point query reply

RetryingPublisher wraps any EventPublisher with bounded exponential backoff;
after the last attempt the failure is escalated as PublishError.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from ether_keygen.policy.retry import RetryPolicy
from ether_keygen.protocol.errors import PublishError

logger = logging.getLogger(__name__)


class EventPublisher:
    async def publish(self, name: str, payload: bytes, coalesce: bool = False) -> None:
        raise NotImplementedError


class QueryReplier:
    async def respond(self, query_id: int, payload: bytes) -> None:
        raise NotImplementedError


class RetryingPublisher(EventPublisher):
    def __init__(
        self,
        inner: EventPublisher,
        policy: RetryPolicy,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._inner = inner
        self._policy = policy
        self._sleep = sleep

    async def publish(self, name: str, payload: bytes, coalesce: bool = False) -> None:
        attempt = 1
        while True:
            try:
                await self._inner.publish(name, payload, coalesce)
                return
            except (PublishError, OSError, asyncio.TimeoutError) as e:
                if not self._policy.should_retry(attempt):
                    if isinstance(e, PublishError) and attempt == 1:
                        raise
                    raise PublishError(f"publish {name} failed after {attempt} attempt(s): {e}") from e
                attempt += 1
                delay = self._policy.delay_for(attempt)
                logger.warning(
                    "publish %s failed (%s: %s); retry %d/%d in %.2fs",
                    name, type(e).__name__, e, attempt, self._policy.attempts, delay,
                )
                await self._sleep(delay)
