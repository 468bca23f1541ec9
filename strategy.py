# strategy.py
"""
Motor de salida por posición.

Una llamada a evaluate() por posición y tick:
  guard/cooldown -> reconciliación on-chain -> precio de marca -> pico
  -> gain -> cascada TP1 / TP2 / Trailing / Stop-Loss (máximo uno) -> persistir.

Las banderas sólo cambian después de que la venta se confirma on-chain,
así un ciclo interrumpido o no hizo nada o ya quedó persistido.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from solana.exceptions import SolanaRpcException
from solana.rpc.core import RPCException
from solders.keypair import Keypair

from balance_oracle import BalanceOracle
from config import BotConfig
from errors import BuildFailed, BuildFailureKind, NoRoute, QuoteError, SwapError
from jupiter_executor import WSOL_MINT, JupiterExecutor
from models import Position, PositionState, TradeSide
from position_store import PositionStore
from quote_service import QuoteService

logger = logging.getLogger(__name__)

Notify = Callable[[str], Awaitable[None]]

FEE_BUFFER = 0.985
SAMPLE_FRACTION = 0.1
MIN_COOLDOWN_SEC = 5.0

# slippage extra del segundo intento, según el trigger
TRIGGER_BOOST_BPS: Dict[TradeSide, int] = {
    TradeSide.SELL_TP1: 300,
    TradeSide.SELL_TP2: 400,
    TradeSide.SELL_TRAIL: 600,
    TradeSide.SELL_SL: 700,
}

TRIGGER_LABELS: Dict[TradeSide, str] = {
    TradeSide.SELL_TP1: "TP1",
    TradeSide.SELL_TP2: "TP2",
    TradeSide.SELL_TRAIL: "Trailing",
    TradeSide.SELL_SL: "Stop-Loss",
}

ATTEMPT1_CU_PRICE = 150_000
ATTEMPT2_CU_PRICE = 350_000


def apply_fee_buffer(amount: int) -> int:
    """98.5% del monto, al menos 1 y nunca más de lo pedido."""
    buffered = math.floor(amount * FEE_BUFFER)
    return max(1, min(amount, buffered))


@dataclass
class StrategyParams:
    slippage_out_bps: int = 700
    tp1_pct: float = 0.5
    tp2_pct: float = 1.0
    tp2_sell_pct: float = 0.5
    trailing_pct: float = 0.25
    stop_loss_pct: float = 0.25
    poll_interval_sec: float = 15.0
    secondary_mint: Optional[str] = None
    secondary_boost_bps: int = 200

    @classmethod
    def from_config(cls, config: BotConfig) -> "StrategyParams":
        return cls(
            slippage_out_bps=config.slippage_out_bps,
            tp1_pct=config.tp1_pct,
            tp2_pct=config.tp2_pct,
            tp2_sell_pct=config.tp2_sell_pct,
            trailing_pct=config.trailing_pct,
            stop_loss_pct=config.stop_loss_pct,
            poll_interval_sec=config.poll_interval_sec,
            secondary_mint=config.secondary_mint,
        )

    @property
    def cooldown_sec(self) -> float:
        return max(MIN_COOLDOWN_SEC, self.poll_interval_sec / 3.0)


@dataclass
class SellResult:
    signature: str
    tokens: int          # tokens realmente vendidos (con buffer)
    out_amount: int
    output_mint: str


class StrategyEvaluator:
    def __init__(
        self,
        store: PositionStore,
        quotes: QuoteService,
        executor: JupiterExecutor,
        balances: BalanceOracle,
        wallet: Keypair,
        params: StrategyParams,
        notify: Optional[Notify] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.quotes = quotes
        self.executor = executor
        self.balances = balances
        self.wallet = wallet
        self.params = params
        self._notify_sink = notify
        self._clock = clock
        # position_id -> último instante evaluado (reloj monotónico)
        self._last_evaluated: Dict[int, float] = {}

    async def notify(self, message: str) -> None:
        # el canal de notificaciones nunca debe afectar al trading
        if self._notify_sink is None:
            return
        try:
            await self._notify_sink(message)
        except Exception as exc:
            logger.debug("[Strategy] notificación fallida: %r", exc)

    # -------------------------------------------------------------------------
    # Ciclo de evaluación
    # -------------------------------------------------------------------------

    def _in_cooldown(self, position: Position) -> bool:
        now = self._clock()
        last = self._last_evaluated.get(position.id)
        if last is not None and now - last < self.params.cooldown_sec:
            return True
        self._last_evaluated[position.id] = now
        return False

    async def _reconcile(self, position: Position) -> None:
        observed = await self.balances.balance_of(self.wallet.pubkey(), position.token_mint)
        if observed == position.remaining_tokens:
            return

        if observed <= 0:
            logger.info(
                "[Strategy] pos %s: balance on-chain 0 (antes %s), cerrando",
                position.id,
                position.remaining_tokens,
            )
            position.advance(PositionState.CLOSED)
        elif observed < position.remaining_tokens:
            logger.info(
                "[Strategy] pos %s: sincronizando remaining %s -> %s (on-chain)",
                position.id,
                position.remaining_tokens,
                observed,
            )
            position.remaining_tokens = observed
        else:
            # tokens extra recibidos fuera de banda: no son de esta posición
            logger.debug(
                "[Strategy] pos %s: balance on-chain %s > remaining %s, ignorado",
                position.id,
                observed,
                position.remaining_tokens,
            )
            return

        await self.store.update(
            position.id,
            remaining_tokens=position.remaining_tokens,
            closed=position.closed,
        )

    async def _mark_price(self, position: Position) -> float:
        sample = int(position.remaining_tokens * SAMPLE_FRACTION)
        if sample < 1:
            sample = position.remaining_tokens
        quote = await self.quotes.get_quote(
            position.token_mint,
            WSOL_MINT,
            sample,
            self.params.slippage_out_bps,
        )
        return quote.out_amount / sample

    async def evaluate(self, position: Position) -> Optional[TradeSide]:
        """
        Evalúa una posición. Devuelve el trigger que vendió en este ciclo
        (o None si no se vendió nada).
        """
        if position.closed or self._in_cooldown(position):
            return None

        await self._reconcile(position)
        if position.closed:
            await self.notify(f"Posición {position.id} cerrada: balance on-chain en 0")
            return None

        try:
            per_token_now = await self._mark_price(position)
        except QuoteError as exc:
            logger.warning("[Strategy] pos %s: sin precio de marca (%s), se reintenta", position.id, exc)
            return None

        params = self.params
        entry = position.entry_per_token_lamports
        peak = max(position.peak_per_token_lamports, per_token_now)
        position.peak_per_token_lamports = peak
        gain = per_token_now / entry - 1
        remaining = position.remaining_tokens

        logger.debug(
            "[Strategy] pos %s: mark=%.4f entry=%.4f peak=%.4f gain=%.2f%% remaining=%s",
            position.id,
            per_token_now,
            entry,
            peak,
            gain * 100.0,
            remaining,
        )

        fired: Optional[TradeSide] = None

        # ----------------- TP1: recuperar la inversión -----------------
        # TP1 y TP2 siempre dejan al menos 1 token en la posición
        if not position.withdrawn_initial and gain >= params.tp1_pct and remaining > 1:
            tokens = min(remaining, math.ceil(position.entry_lamports_in / per_token_now))
            tokens = min(tokens, remaining - 1)
            fired = TradeSide.SELL_TP1
            if not await self._fire(position, fired, tokens, PositionState.INITIAL_WITHDRAWN):
                return None

        # ----------------- TP2: tomar parte de la ganancia -----------------
        elif (
            position.withdrawn_initial
            and not position.took_tp2
            and gain >= params.tp2_pct
            and remaining > 1
            and math.floor(remaining * params.tp2_sell_pct) > 0
        ):
            tokens = math.floor(remaining * params.tp2_sell_pct)
            tokens = min(tokens, remaining - 1)
            fired = TradeSide.SELL_TP2
            if not await self._fire(position, fired, tokens, PositionState.TP2_TAKEN):
                return None

        # ----------------- TRAILING STOP -----------------
        elif remaining > 0 and per_token_now <= peak * (1 - params.trailing_pct) and gain > 0:
            fired = TradeSide.SELL_TRAIL
            if not await self._fire(position, fired, max(1, remaining - 1), PositionState.CLOSED):
                return None

        # ----------------- STOP LOSS -----------------
        elif remaining > 0 and per_token_now <= entry * (1 - params.stop_loss_pct):
            fired = TradeSide.SELL_SL
            if not await self._fire(position, fired, max(1, remaining - 1), PositionState.CLOSED):
                return None

        await self._persist(position)
        return fired

    async def _fire(
        self,
        position: Position,
        side: TradeSide,
        tokens: int,
        target: PositionState,
    ) -> bool:
        """Vende y aplica la transición. False si la venta falló (nada cambia)."""
        label = TRIGGER_LABELS[side]
        logger.info("[Strategy] pos %s: %s activado, vendiendo %s tokens", position.id, label, tokens)
        try:
            result = await self.sell_with_retry(position.token_mint, tokens, side)
        except SwapError as exc:
            logger.error("[Strategy] pos %s: %s abandonado este ciclo: %s", position.id, label, exc)
            # el pico sí se guarda; las banderas del trigger no
            await self._persist(position)
            return False

        await self.store.add_trade(
            position.id,
            side,
            result.tokens,
            result.out_amount,
            result.signature,
            output_mint=None if result.output_mint == WSOL_MINT else result.output_mint,
        )
        if target is not PositionState.CLOSED:
            position.remaining_tokens = max(0, position.remaining_tokens - result.tokens)
        position.advance(target)

        await self.notify(
            f"{label}: pos {position.id} vendió {result.tokens} tokens, tx {result.signature}"
        )
        return True

    async def _persist(self, position: Position) -> None:
        await self.store.update(
            position.id,
            remaining_tokens=position.remaining_tokens,
            peak_per_token_lamports=position.peak_per_token_lamports,
            withdrawn_initial=position.withdrawn_initial,
            took_tp2=position.took_tp2,
            closed=position.closed,
        )

    # -------------------------------------------------------------------------
    # Venta con reintento + fallback
    # -------------------------------------------------------------------------

    async def _quote_and_swap(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
        prefer_direct: bool,
        compute_unit_price: int,
    ) -> SellResult:
        quote = await self.quotes.get_quote(
            input_mint,
            output_mint,
            amount,
            slippage_bps,
            prefer_direct=prefer_direct,
        )
        try:
            signature = await self.executor.execute(
                quote,
                self.wallet,
                compute_unit_price_micro_lamports=compute_unit_price,
            )
        except (RPCException, SolanaRpcException) as exc:
            # errores de RPC sin clasificar cuentan como intento fallido
            raise BuildFailed(BuildFailureKind.OTHER, repr(exc)) from exc
        return SellResult(
            signature=signature,
            tokens=amount,
            out_amount=quote.out_amount,
            output_mint=output_mint,
        )

    async def sell_with_retry(self, mint: str, amount: int, side: TradeSide) -> SellResult:
        """
        1) slippage base, ruta por defecto
        2) slippage base + boost del trigger, ruta directa
        3) sólo si (2) no encontró ruta: vender contra el activo secundario
        Si todo falla se propaga el último SwapError.
        """
        label = TRIGGER_LABELS.get(side, side.value)
        safe_amount = apply_fee_buffer(amount)
        base = self.params.slippage_out_bps

        try:
            logger.info("[Sell] %s intento 1: %s tokens, slippage=%sbps", label, safe_amount, base)
            return await self._quote_and_swap(
                mint, WSOL_MINT, safe_amount, base, False, ATTEMPT1_CU_PRICE
            )
        except SwapError as exc:
            logger.warning("[Sell] %s intento 1 falló: %s", label, exc)
            await self.notify(
                f"{label}: intento 1 falló ({exc}). Probando con más slippage y ruta directa..."
            )

        boosted = base + TRIGGER_BOOST_BPS.get(side, 300)
        try:
            logger.info("[Sell] %s intento 2: slippage=%sbps, ruta directa", label, boosted)
            return await self._quote_and_swap(
                mint, WSOL_MINT, safe_amount, boosted, True, ATTEMPT2_CU_PRICE
            )
        except NoRoute as exc:
            no_route = exc
        except SwapError as exc:
            logger.error("[Sell] %s intento 2 falló: %s", label, exc)
            await self.notify(f"{label}: intento 2 falló ({exc}). Venta cancelada.")
            raise

        secondary = self.params.secondary_mint
        if not secondary:
            logger.error("[Sell] %s sin ruta y sin activo secundario: %s", label, no_route)
            await self.notify(f"{label}: sin ruta a SOL ({no_route}). Venta cancelada.")
            raise no_route

        slippage = base + self.params.secondary_boost_bps
        await self.notify(f"{label}: sin ruta a SOL, intentando vender contra {secondary[:6]}...")
        try:
            logger.info("[Sell] %s fallback -> %s, slippage=%sbps", label, secondary, slippage)
            return await self._quote_and_swap(
                mint, secondary, safe_amount, slippage, True, ATTEMPT2_CU_PRICE
            )
        except SwapError as exc:
            logger.error("[Sell] %s fallback falló: %s", label, exc)
            await self.notify(f"{label}: fallback por {secondary[:6]} falló ({exc}). Venta cancelada.")
            raise
