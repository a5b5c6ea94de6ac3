"""外部调用的超时 + 单次重试。

热路径上的 broker/行情调用都经过这里：每次尝试都有超时上限，
临时错误（超时、5xx 等）最多重试一次，非临时错误立即抛出。
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable, TypeVar

from shared.errors import BrokerError, BrokerTimeout
from shared.utils.logging import setup_logger

T = TypeVar("T")


class BoundedCaller:
    """在独立线程池里执行外部调用，调用方最多等待 `timeout` 秒。

    超时的调用线程无法被强行终止，但调用方不会被它阻塞；
    线程池大小限制了这类“悬挂”调用能占用的资源。
    """

    def __init__(self, *, timeout: float, retries: int = 1, max_workers: int = 8, logger: logging.Logger | None = None):
        self.timeout = float(timeout)
        self.retries = int(retries)
        self.logger = logger or setup_logger("bounded-call")
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ext-call")

    def shutdown(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)

    def call(self, label: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """执行 fn，失败时按规则重试。

        Raises
        ------
        BrokerTimeout
            最后一次尝试超时。
        BrokerError
            非临时错误，或重试后仍失败的临时错误。
        """
        attempts = self.retries + 1
        last_exc: BrokerError | None = None
        for attempt in range(1, attempts + 1):
            future = self._pool.submit(fn, *args, **kwargs)
            try:
                return future.result(timeout=self.timeout)
            except FutureTimeout:
                future.cancel()
                last_exc = BrokerTimeout(f"{label} timed out after {self.timeout:.1f}s")
            except BrokerError as exc:
                if not exc.transient:
                    raise
                last_exc = exc
            if attempt < attempts:
                self.logger.warning("%s failed (attempt %d/%d): %s, retrying", label, attempt, attempts, last_exc)
        assert last_exc is not None
        raise last_exc
