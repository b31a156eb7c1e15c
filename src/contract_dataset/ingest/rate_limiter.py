"""
レート制限

外部APIへのリクエスト間隔を最小間隔以上に保つ。
"""

import logging
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    最小リクエスト間隔を保証するレートリミッタ

    前回の acquire() が戻ってから min_interval 秒経過するまでブロックする。
    初回は即座に戻る。時計と sleep は差し替え可能（テスト用）。
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_acquired: float | None = None
        self._lock = threading.Lock()

    @classmethod
    def per_second(
        cls,
        requests_per_second: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "RateLimiter":
        """1秒あたりのリクエスト上限から生成（5/s → 250ms）"""
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be > 0")
        return cls(1.0 / requests_per_second, clock=clock, sleep=sleep)

    def acquire(self) -> None:
        """次のリクエストが許可されるまで待機"""
        with self._lock:
            if self._last_acquired is not None:
                elapsed = self._clock() - self._last_acquired
                if elapsed < self.min_interval:
                    wait = self.min_interval - elapsed
                    logger.debug(f"レート制限待機: {wait:.3f}秒")
                    self._sleep(wait)
            self._last_acquired = self._clock()
