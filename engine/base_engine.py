"""引擎基类。

周期调度（外部定时器 / 本地 runner 循环）与单周期决策逻辑分离：
子类实现 `run()` 并统一返回 `EngineResult`；`request_shutdown()` 可以从信号处理函数里调用。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class EngineResult:
    """runner 结束时的汇总。"""

    summary: dict[str, Any]
    artifacts: dict[str, Any] | None = None


class BaseEngine(ABC):
    @abstractmethod
    def run(self, max_cycles: int | None = None, interval: float | None = None) -> EngineResult:
        raise NotImplementedError

    @abstractmethod
    def request_shutdown(self) -> None:
        """让 `run()` 在当前周期结束后退出。"""
        raise NotImplementedError

    def close(self) -> None:
        """释放线程池、账本连接等资源。"""
