# MIT License © 2025 Motohiro Suzuki
"""
runners/run_keygen.py

Daemon entry point (console script: ether-keygen).

startup (fatal -> exit 2): config, audit log open, Serf RPC connect + handshake/auth
runtime (fatal -> exit 1): rotator or responder failure, query stream ending
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Optional, Sequence

from ether_keygen.audit.sink import AuditSink, LogAuditSink
from ether_keygen.keysources.random_source import RandomKeySource
from ether_keygen.policy.retry import RetryPolicy
from ether_keygen.protocol.config import KeygenConfig, parse_config, summary
from ether_keygen.protocol.errors import AuditError, ConfigError, KeygenError, RPCError
from ether_keygen.protocol.events import EventNames
from ether_keygen.protocol.responder import QueryResponder
from ether_keygen.protocol.rotator import Rotator
from ether_keygen.protocol.window import KeyWindow
from ether_keygen.transport.bus import RetryingPublisher
from ether_keygen.transport.serf_rpc import SerfRPCClient

logger = logging.getLogger("ether_keygen")

EXIT_OK = 0
EXIT_RUNTIME = 1
EXIT_STARTUP = 2


def build_components(cfg: KeygenConfig, rpc: SerfRPCClient, audit: AuditSink) -> tuple[KeyWindow, Rotator, QueryResponder]:
    names = EventNames(cfg.prefix)
    window = KeyWindow(cfg.ahead, cfg.behind)
    publisher = RetryingPublisher(
        rpc,
        RetryPolicy(
            attempts=cfg.publish_attempts,
            base_delay=cfg.retry_base_delay,
            max_delay=cfg.retry_max_delay,
        ),
    )
    rotator = Rotator(
        window,
        RandomKeySource.from_bits(cfg.bits, name_len=cfg.name_len),
        publisher,
        audit,
        names=names,
        tick_interval=cfg.tick,
        settle_interval=cfg.settle,
        wipe_settle_interval=cfg.wipe_settle,
    )
    responder = QueryResponder(window, rpc, audit, names=names, max_inflight=cfg.max_queries)
    return window, rotator, responder


async def run_daemon(rotator: Rotator, responder: QueryResponder, rpc: SerfRPCClient) -> int:
    """Run rotator + responder until either stops; the first to stop ends the daemon."""
    serve_task = asyncio.create_task(responder.serve(rpc.stream_queries()), name="query-responder")
    rotate_task = asyncio.create_task(rotator.run(), name="rotator")

    done, pending = await asyncio.wait({serve_task, rotate_task}, return_when=asyncio.FIRST_COMPLETED)
    for t in pending:
        t.cancel()
    await asyncio.gather(*pending, return_exceptions=True)

    for t in done:
        exc = t.exception()
        if exc is not None:
            logger.error("daemon stopped (%s): %s: %s", t.get_name(), type(exc).__name__, exc)
            return EXIT_RUNTIME

    logger.error("daemon stopped: query stream ended")
    return EXIT_RUNTIME


async def main(cfg: KeygenConfig) -> int:
    try:
        audit = LogAuditSink(cfg.log)
    except AuditError as e:
        logger.error("startup failed: %s", e)
        return EXIT_STARTUP

    rpc = SerfRPCClient(cfg.addr, auth_key=cfg.auth, timeout=cfg.timeout)
    try:
        await rpc.connect()
    except RPCError as e:
        logger.error("startup failed: %s", e)
        audit.close()
        return EXIT_STARTUP

    window, rotator, responder = build_components(cfg, rpc, audit)
    logger.info(summary(cfg))

    try:
        return await run_daemon(rotator, responder, rpc)
    finally:
        window.clear()
        await rpc.close()
        audit.close()


def cli(argv: Optional[Sequence[str]] = None) -> int:
    try:
        cfg = parse_config(argv)
    except ConfigError as e:
        print(f"ether-keygen: {e}", file=sys.stderr)
        return EXIT_STARTUP

    logging.basicConfig(
        level=cfg.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return asyncio.run(main(cfg))
    except KeyboardInterrupt:
        logger.info("interrupted")
        return EXIT_OK
    except KeygenError as e:
        logger.error("daemon stopped: %s", e)
        return EXIT_RUNTIME


if __name__ == "__main__":
    raise SystemExit(cli())
