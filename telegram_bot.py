# telegram_bot.py
import asyncio
import logging
from typing import Optional

from telegram import Bot, Update
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
)

from config import BotConfig
from position_store import PositionStore
from strategy import StrategyParams


logger = logging.getLogger(__name__)


def _fmt_pct(x: float) -> str:
    return f"{x * 100:.1f}%"


class TelegramNotifier:
    """
    Sink de notificaciones (fire-and-forget).

    Se usa como `await notifier("texto")`; nunca lanza excepciones hacia
    el motor de trading.
    """

    def __init__(self, bot: Optional[Bot], chat_id: Optional[int], attempts: int = 3) -> None:
        self.bot = bot
        self.chat_id = chat_id
        self.attempts = attempts

    async def __call__(self, message: str) -> None:
        if self.bot is None or self.chat_id is None:
            logger.info("[Notify] %s", message)
            return

        for attempt in range(self.attempts):
            try:
                await self.bot.send_message(chat_id=self.chat_id, text=message)
                return
            except TelegramError as exc:
                if attempt == self.attempts - 1:
                    logger.debug("Error Telegram: %r", exc)
                    return
                await asyncio.sleep(1)


class TelegramController:
    def __init__(self, config: BotConfig, store: PositionStore, params: StrategyParams) -> None:
        self.config = config
        self.store = store
        self.params = params

    # --------- handlers ---------

    async def start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not self._is_authorized(update):
            return

        txt = (
            "🛡️ *Exit Engine*\n\n"
            "Comandos:\n"
            "• /positions – posiciones abiertas\n"
            "• /status – parámetros de salida\n"
        )
        await update.message.reply_text(txt, parse_mode="Markdown")

    async def positions(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        if not self._is_authorized(update):
            return

        opens = await self.store.list_open()
        if not opens:
            await update.message.reply_text("No hay posiciones abiertas.")
            return

        lines = ["🏹 *Posiciones abiertas:*", ""]
        for p in opens:
            lines.append(
                f"• #{p.id} `{p.token_mint}`\n"
                f"  Estado: `{p.state.value}`\n"
                f"  Restantes: `{p.remaining_tokens}` tokens\n"
                f"  Entrada: `{p.entry_per_token_lamports / 1e9:.9f} SOL/token`\n"
                f"  Pico: `{p.peak_per_token_lamports / 1e9:.9f} SOL/token`\n"
            )

        await update.message.reply_text("\n".join(lines), parse_mode="Markdown")

    async def status(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not self._is_authorized(update):
            return

        p = self.params
        txt = (
            "📊 *Parámetros*\n\n"
            f"TP1: `{_fmt_pct(p.tp1_pct)}` | TP2: `{_fmt_pct(p.tp2_pct)}` "
            f"(vende `{_fmt_pct(p.tp2_sell_pct)}`)\n"
            f"Trailing: `{_fmt_pct(p.trailing_pct)}` | SL: `{_fmt_pct(p.stop_loss_pct)}`\n"
            f"Slippage salida: `{p.slippage_out_bps} bps`\n"
            f"Poll: `{p.poll_interval_sec:.0f}s`\n"
            f"Activo secundario: `{p.secondary_mint or '-'}`\n"
        )
        await update.message.reply_text(txt, parse_mode="Markdown")

    # --------- auth ---------

    def _is_authorized(self, update: Update) -> bool:
        if update.effective_chat and update.effective_chat.id == self.config.telegram_chat_id:
            return True

        # ignorar mensajes de otros chats
        logger.warning(
            "Mensaje de chat no autorizado: %s",
            update.effective_chat.id if update.effective_chat else None,
        )
        return False


def build_application(
    config: BotConfig, store: PositionStore, params: StrategyParams
) -> Application:
    app = Application.builder().token(config.telegram_bot_token).build()

    ctrl = TelegramController(config, store, params)

    app.add_handler(CommandHandler("start", ctrl.start))
    app.add_handler(CommandHandler("positions", ctrl.positions))
    app.add_handler(CommandHandler("status", ctrl.status))

    return app
