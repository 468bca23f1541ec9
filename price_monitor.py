# price_monitor.py
"""
Bucle de monitoreo de posiciones abiertas.

- Cada `poll_interval_sec` lee las posiciones OPEN del store.
- Las evalúa UNA POR UNA (nunca en paralelo): el throttle y el store
  ven un único escritor.
- Un error en una posición se loguea/notifica y se sigue con la siguiente.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from position_store import PositionStore
from strategy import StrategyEvaluator

logger = logging.getLogger(__name__)


async def run_tick(
    evaluator: StrategyEvaluator,
    store: PositionStore,
    notify: Optional[Callable[[str], Awaitable[None]]] = None,
) -> int:
    """Un tick completo. Devuelve cuántas posiciones abiertas se procesaron."""
    positions = await store.list_open()

    for pos in positions:
        try:
            fired = await evaluator.evaluate(pos)
            if fired is not None:
                logger.info("[Monitor] pos %s: %s ejecutado", pos.id, fired.value)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("[Monitor] error en posición %s: %r", pos.id, exc)
            if notify is not None:
                try:
                    await notify(f"Error en posición {pos.id}: {exc}")
                except Exception as notify_exc:
                    logger.debug("[Monitor] notificación fallida: %r", notify_exc)

    return len(positions)


async def monitor_loop(
    evaluator: StrategyEvaluator,
    store: PositionStore,
    poll_interval_sec: float = 15.0,
    notify: Optional[Callable[[str], Awaitable[None]]] = None,
    status: Optional[Dict[str, Any]] = None,
) -> None:
    logger.info("[Monitor] Iniciado bucle de posiciones (cada %.1fs)...", poll_interval_sec)
    loop = asyncio.get_running_loop()

    while True:
        started = loop.time()
        try:
            processed = await run_tick(evaluator, store, notify=notify)
            if status is not None:
                status["total_ticks"] = status.get("total_ticks", 0) + 1
                status["open_positions"] = processed
                status["last_tick"] = datetime.now()
        except asyncio.CancelledError:
            logger.info("[Monitor] Cancelado, saliendo del bucle.")
            raise
        except Exception as exc:
            # p.ej. el store no responde; el próximo tick lo vuelve a intentar
            logger.exception("[Monitor] Error en bucle: %r", exc)

        elapsed = loop.time() - started
        await asyncio.sleep(max(0.0, poll_interval_sec - elapsed))
