# throttle.py
"""
Limitador de peticiones por ventana deslizante.

Guarda los timestamps de las peticiones recientes; si la ventana está
llena, espera a que salga el más antiguo (más un jitter aleatorio para
que varios clientes no reintenten sincronizados).
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Optional, Tuple

logger = logging.getLogger(__name__)


class Throttle:
    def __init__(
        self,
        max_per_window: int = 50,
        window_sec: float = 60.0,
        jitter_sec: Tuple[float, float] = (0.05, 0.2),
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_per_window < 1:
            raise ValueError("max_per_window debe ser >= 1")
        self.max_per_window = max_per_window
        self.window_sec = window_sec
        self._jitter_sec = jitter_sec
        self._clock = clock
        self._sleep = sleep
        self._stamps: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _evict(self, now: float, window_sec: float) -> None:
        while self._stamps and now - self._stamps[0] >= window_sec:
            self._stamps.popleft()

    async def acquire(
        self,
        max_per_window: Optional[int] = None,
        window_sec: Optional[float] = None,
    ) -> None:
        """Bloquea hasta que una petición más no exceda el límite de la ventana."""
        limit = self.max_per_window if max_per_window is None else max_per_window
        window = self.window_sec if window_sec is None else window_sec
        if limit < 1:
            raise ValueError("max_per_window debe ser >= 1")

        async with self._lock:
            while True:
                now = self._clock()
                self._evict(now, window)
                if len(self._stamps) < limit:
                    self._stamps.append(now)
                    return

                wait = window - (now - self._stamps[0])
                wait = max(0.0, wait) + random.uniform(*self._jitter_sec)
                logger.debug("[Throttle] ventana llena (%d), esperando %.2fs", limit, wait)
                await self._sleep(wait)

    def in_window(self) -> int:
        self._evict(self._clock(), self.window_sec)
        return len(self._stamps)
