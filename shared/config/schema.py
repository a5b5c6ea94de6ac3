"""配置架构定义（Pydantic Schema）。

目标：
- 让配置成为“强类型 + 可演进”的边界协议；
- 启动阶段尽早失败，避免 typo/类型错误在实盘中“隐蔽爆炸”；
- 业务代码只读结构化字段，不再出现 `cfg.get(...)`。
"""

from __future__ import annotations

from datetime import time
from typing import Any, List, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _coerce_clock(value: Any) -> Any:
    # YAML 1.1 会把未加引号的 16:00 解析成六十进制整数 960（分钟）
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        hours, minutes = divmod(value, 60)
        return time(hour=hours, minute=minutes)
    if isinstance(value, str) and value.count(":") == 1:
        hh, mm = value.split(":")
        return time(hour=int(hh), minute=int(mm))
    return value


class RiskConfig(BaseModel):
    """风控配置。"""

    risk_per_trade: float = Field(default=0.02, gt=0, le=1)
    stop_loss_pct: float = Field(default=0.02, gt=0, lt=1)
    loss_limit: float = Field(default=0.05, gt=0, le=1)
    model_config = ConfigDict(extra="forbid")


class MarketHoursConfig(BaseModel):
    """交易时段（按 timezone 解释的本地时间，左闭右开）。"""

    market_open: time = time(9, 30)
    market_close: time = time(16, 0)
    timezone: str = "America/New_York"
    weekdays_only: bool = True
    model_config = ConfigDict(extra="forbid")

    @field_validator("market_open", "market_close", mode="before")
    @classmethod
    def _parse_clock(cls, value: Any) -> Any:
        return _coerce_clock(value)

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {value}") from exc
        return value

    @model_validator(mode="after")
    def _check_window(self) -> "MarketHoursConfig":
        if self.market_open >= self.market_close:
            raise ValueError("market_open must be earlier than market_close")
        return self


class ExecutionConfig(BaseModel):
    """执行层配置：并发度、broker 超时、拉取 bar 数量。"""

    max_workers: int = Field(default=4, ge=1, le=64)
    broker_timeout_secs: float = Field(default=5.0, gt=0, le=60)
    bar_limit: int = Field(default=100, ge=50)
    order_type: Literal["market"] = "market"
    model_config = ConfigDict(extra="forbid")


class LedgerConfig(BaseModel):
    """本地账本（SQLite ledger）配置。"""

    enabled: bool = True
    path: str = "dataset/state/ledger.sqlite3"
    model_config = ConfigDict(extra="forbid")


class DataConfig(BaseModel):
    """行情源配置。"""

    source: Literal["csv", "synthetic"] = "synthetic"
    data_dir: str = "dataset/bars"
    seed: int = 7
    model_config = ConfigDict(extra="forbid")


class EngineConfig(BaseModel):
    """应用总配置。"""

    symbols: List[str]
    mode: Literal["dry-run", "paper"] = "paper"
    initial_cash: float = Field(default=100_000.0, gt=0)
    cycle_interval_secs: float = Field(default=300.0, gt=0)

    risk: RiskConfig = Field(default_factory=RiskConfig)
    market_hours: MarketHoursConfig = Field(default_factory=MarketHoursConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    data: DataConfig = Field(default_factory=DataConfig)

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    @field_validator("symbols")
    @classmethod
    def _normalize_symbols(cls, value: List[str]) -> List[str]:
        seen: list[str] = []
        for raw in value:
            sym = str(raw).strip().upper()
            if not sym:
                raise ValueError("symbols must not contain empty entries")
            if sym not in seen:
                seen.append(sym)
        if not seen:
            raise ValueError("symbols must not be empty")
        return seen

    @field_validator("mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower().replace("_", "-")
        return value
