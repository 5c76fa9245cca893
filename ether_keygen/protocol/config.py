# MIT License © 2025 Motohiro Suzuki
"""
protocol/config.py

KeygenConfig: every knob of the daemon.

Sources (later wins):
  1) built-in defaults
  2) YAML file (--config), keys = field names
  3) command-line flags

Durations accept Go-style strings ("15m", "1h30m", "500ms", "30s") or bare seconds.
"""

from __future__ import annotations

import argparse
import logging
import re
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import yaml

from ether_keygen.protocol.errors import ConfigError
from ether_keygen.protocol.events import DEFAULT_PREFIX
from ether_keygen.protocol.key import DEFAULT_NAME_LEN
from ether_keygen.transport.serf_rpc import parse_addr

DEFAULT_TICK = 15 * 60.0

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: Any) -> float:
    """Go duration string or number -> seconds."""
    if isinstance(value, bool):
        raise ConfigError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    s = str(value).strip()
    if not s:
        raise ConfigError("empty duration")
    try:
        return float(s)
    except ValueError:
        pass

    sign = 1.0
    if s[0] in "+-":
        sign = -1.0 if s[0] == "-" else 1.0
        s = s[1:]

    total = 0.0
    pos = 0
    for m in _DURATION_PART.finditer(s):
        if m.start() != pos:
            break
        total += float(m.group(1)) * _UNITS[m.group(2)]
        pos = m.end()
    if pos != len(s) or pos == 0:
        raise ConfigError(f"invalid duration: {value!r}")
    return sign * total


def format_duration(seconds: float) -> str:
    s = float(seconds)
    if s == 0:
        return "0s"
    out = []
    h, rem = divmod(s, 3600)
    m, sec = divmod(rem, 60)
    if h:
        out.append(f"{int(h)}h")
    if m:
        out.append(f"{int(m)}m")
    if sec:
        out.append(f"{sec:g}s")
    return "".join(out)


@dataclass(frozen=True)
class KeygenConfig:
    # bus
    addr: str = "127.0.0.1:7373"
    auth: str = ""
    timeout: float = 0.0

    # rotation
    tick: float = DEFAULT_TICK
    ahead: int = 2
    behind: int = 26 * 4  # 26h of 15m ticks
    bits: int = 128
    name_len: int = DEFAULT_NAME_LEN
    prefix: str = DEFAULT_PREFIX
    settle: float = 15.0
    wipe_settle: float = 30.0

    # hardening
    publish_attempts: int = 3
    retry_base_delay: float = 0.5
    retry_max_delay: float = 10.0
    max_queries: int = 64

    # audit / logging
    log: str = "/var/log/ether-keygen.log"
    log_level: str = "INFO"

    @property
    def capacity(self) -> int:
        return self.ahead + 1 + self.behind

    @property
    def material_len(self) -> int:
        return self.bits // 8

    def validate(self) -> "KeygenConfig":
        if self.ahead < 0:
            raise ConfigError(f"ahead must be >= 0, got {self.ahead}")
        if self.behind < 0:
            raise ConfigError(f"behind must be >= 0, got {self.behind}")
        if self.tick <= 0:
            raise ConfigError(f"tick must be > 0, got {self.tick}")
        if self.bits <= 0 or self.bits % 8 != 0:
            raise ConfigError(f"bits must be a positive multiple of 8, got {self.bits}")
        if self.name_len <= 0:
            raise ConfigError(f"name_len must be > 0, got {self.name_len}")
        if self.timeout < 0 or self.settle < 0 or self.wipe_settle < 0:
            raise ConfigError("timeout/settle/wipe_settle must be >= 0")
        if self.publish_attempts < 1:
            raise ConfigError(f"publish_attempts must be >= 1, got {self.publish_attempts}")
        if self.retry_base_delay < 0 or self.retry_max_delay < 0:
            raise ConfigError("retry delays must be >= 0")
        if self.max_queries < 1:
            raise ConfigError(f"max_queries must be >= 1, got {self.max_queries}")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ConfigError(f"unknown log level: {self.log_level!r}")
        try:
            parse_addr(self.addr)
        except ValueError as e:
            raise ConfigError(str(e)) from e
        return self


_DURATION_FIELDS = {"timeout", "tick", "settle", "wipe_settle", "retry_base_delay", "retry_max_delay"}
_INT_FIELDS = {"ahead", "behind", "bits", "name_len", "publish_attempts", "max_queries"}


def _coerce(name: str, value: Any) -> Any:
    try:
        if name in _DURATION_FIELDS:
            return parse_duration(value)
        if name in _INT_FIELDS:
            if isinstance(value, bool):
                raise ValueError("bool is not an integer")
            return int(value)
        return "" if value is None else str(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid value for {name}: {value!r} ({e})") from e


def from_mapping(data: Dict[str, Any], base: Optional[KeygenConfig] = None) -> KeygenConfig:
    normalized = {str(k).replace("-", "_"): v for k, v in data.items()}
    known = {f.name for f in fields(KeygenConfig)}
    unknown = sorted(set(normalized) - known)
    if unknown:
        raise ConfigError(f"unknown config keys: {', '.join(unknown)}")
    updates = {k: _coerce(k, v) for k, v in normalized.items()}
    return replace(base or KeygenConfig(), **updates)


def load_yaml(path: str | Path, base: Optional[KeygenConfig] = None) -> KeygenConfig:
    p = Path(path)
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"cannot read config {p}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"bad YAML in {p}: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"config {p} must be a mapping")
    return from_mapping(data, base)


def build_parser() -> argparse.ArgumentParser:
    d = KeygenConfig()
    p = argparse.ArgumentParser(
        prog="ether-keygen",
        description="Rotate cluster-wide symmetric keys over a Serf event bus",
    )
    # every flag defaults to None so only explicitly passed flags override the file
    p.add_argument("--config", default=None, help="YAML config file")
    p.add_argument("--addr", default=None, help=f"the address to connect to (default {d.addr})")
    p.add_argument("--auth", default=None, help="the RPC auth key")
    p.add_argument("--timeout", default=None, help="the RPC timeout (default 0: none)")
    p.add_argument("--prefix", default=None, help=f"the serf event prefix (default {d.prefix!r})")
    p.add_argument("--tick", default=None, help=f"the time each key should be used (default {format_duration(d.tick)})")
    p.add_argument("--ahead", default=None, type=int, help=f"the number of keys to create ahead of time (default {d.ahead})")
    p.add_argument("--behind", default=None, type=int, help=f"the number of keys to keep behind (default {d.behind})")
    p.add_argument("--bits", default=None, type=int, help=f"key material size in bits (default {d.bits})")
    p.add_argument("--log", default=None, help=f"the transaction log file, empty for stderr only (default {d.log})")
    p.add_argument("--settle", default=None, help=f"wait between bootstrap installs and the first default (default {format_duration(d.settle)})")
    p.add_argument("--wipe-settle", dest="wipe_settle", default=None, help=f"wait after wipe-keys (default {format_duration(d.wipe_settle)})")
    p.add_argument("--publish-attempts", dest="publish_attempts", default=None, type=int, help=f"tries per broadcast before giving up (default {d.publish_attempts})")
    p.add_argument("--max-queries", dest="max_queries", default=None, type=int, help=f"max in-flight retrieve-keys replies (default {d.max_queries})")
    p.add_argument("--log-level", dest="log_level", default=None, help=f"daemon log level (default {d.log_level})")
    return p


def parse_config(argv: Optional[Sequence[str]] = None) -> KeygenConfig:
    args = build_parser().parse_args(argv)
    cfg = KeygenConfig()
    if args.config:
        cfg = load_yaml(args.config, cfg)

    overrides = {k: v for k, v in vars(args).items() if k != "config" and v is not None}
    return from_mapping(overrides, cfg).validate()


def summary(cfg: KeygenConfig) -> str:
    return (
        f"storing {cfg.ahead} keys ahead ({format_duration(cfg.ahead * cfg.tick)}), "
        f"{cfg.behind} behind ({format_duration(cfg.behind * cfg.tick)}); "
        f"using each key for {format_duration(cfg.tick)}"
    )
