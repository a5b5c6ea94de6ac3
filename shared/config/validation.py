"""配置 Schema 预校验。

pydantic 会拒绝未知字段，但报错信息不够友好；这里在进入 schema 前
先对已知配置块做一次 key 检查，并给出拼写建议（did you mean ...）。
"""

from __future__ import annotations

import difflib
from typing import Any, Iterable

_TOP_KEYS = {
    "symbols",
    "mode",
    "initial_cash",
    "cycle_interval_secs",
    "risk",
    "market_hours",
    "execution",
    "ledger",
    "data",
}

_BLOCK_KEYS: dict[str, set[str]] = {
    "risk": {"risk_per_trade", "stop_loss_pct", "loss_limit"},
    "market_hours": {"market_open", "market_close", "timezone", "weekdays_only"},
    "execution": {"max_workers", "broker_timeout_secs", "bar_limit", "order_type"},
    "ledger": {"enabled", "path"},
    "data": {"source", "data_dir", "seed"},
}


def _suggest_key(key: str, allowed: Iterable[str]) -> str | None:
    matches = difflib.get_close_matches(key, list(allowed), n=1, cutoff=0.75)
    return matches[0] if matches else None


def _ensure_allowed_keys(block: dict[str, Any], *, allowed: set[str], ctx: str) -> None:
    unknown = [k for k in block.keys() if k not in allowed]
    if not unknown:
        return
    parts = []
    for k in sorted(unknown):
        suggestion = _suggest_key(k, allowed)
        if suggestion:
            parts.append(f"{k} (did you mean '{suggestion}'?)")
        else:
            parts.append(k)
    raise ValueError(f"{ctx} contains unknown keys: {', '.join(parts)}")


def _expect_dict(val: Any, *, ctx: str) -> dict[str, Any]:
    if not isinstance(val, dict):
        raise ValueError(f"{ctx} must be a dict")
    return val


def validate_raw_config(cfg: dict[str, Any]) -> None:
    """校验 raw config dict（来自 YAML + env 展开后）。"""
    if not isinstance(cfg, dict):
        raise ValueError("Config root must be a dict")

    _ensure_allowed_keys(cfg, allowed=_TOP_KEYS, ctx="config")
    if "symbols" not in cfg:
        raise ValueError("Missing required config key: config.symbols")
    symbols = cfg["symbols"]
    if isinstance(symbols, str):
        raise ValueError("config.symbols must be a list, e.g. [AAPL, MSFT]")

    for name, allowed in _BLOCK_KEYS.items():
        block = cfg.get(name)
        if block is None:
            continue
        block = _expect_dict(block, ctx=f"config.{name}")
        _ensure_allowed_keys(block, allowed=allowed, ctx=f"config.{name}")
