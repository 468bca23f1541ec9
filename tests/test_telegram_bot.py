"""
Tests for the Telegram notifier and read-only command handlers.
"""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from telegram.error import TelegramError

from config import load_config
from models import Position
from strategy import StrategyParams
from telegram_bot import TelegramController, TelegramNotifier

CHAT_ID = 12345


def make_update(chat_id=CHAT_ID):
    message = MagicMock()
    message.reply_text = AsyncMock()
    return SimpleNamespace(effective_chat=SimpleNamespace(id=chat_id), message=message)


@pytest.fixture
def controller(monkeypatch):
    monkeypatch.setenv("TELEGRAM_CHAT_ID", str(CHAT_ID))
    store = MagicMock()
    store.list_open = AsyncMock(return_value=[])
    return TelegramController(load_config(), store, StrategyParams())


class TestNotifier:

    @pytest.mark.asyncio
    async def test_sends_to_chat(self):
        bot = MagicMock()
        bot.send_message = AsyncMock()

        await TelegramNotifier(bot, CHAT_ID)("hola")

        bot.send_message.assert_awaited_once_with(chat_id=CHAT_ID, text="hola")

    @pytest.mark.asyncio
    async def test_retries_then_gives_up_silently(self):
        bot = MagicMock()
        bot.send_message = AsyncMock(side_effect=TelegramError("flood"))

        with patch("telegram_bot.asyncio.sleep", AsyncMock()) as sleep:
            await TelegramNotifier(bot, CHAT_ID, attempts=3)("hola")

        assert bot.send_message.await_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_without_bot_only_logs(self):
        await TelegramNotifier(None, None)("sin bot")


class TestController:

    @pytest.mark.asyncio
    async def test_ignores_unauthorized_chat(self, controller):
        update = make_update(chat_id=999)
        await controller.positions(update, None)
        update.message.reply_text.assert_not_awaited()
        controller.store.list_open.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_positions_empty(self, controller):
        update = make_update()
        await controller.positions(update, None)
        update.message.reply_text.assert_awaited_once_with("No hay posiciones abiertas.")

    @pytest.mark.asyncio
    async def test_positions_lists_state(self, controller):
        controller.store.list_open.return_value = [
            Position(
                id=4,
                token_mint="MINT",
                entry_lamports_in=1000,
                tokens_received=100,
                remaining_tokens=60,
                entry_per_token_lamports=10.0,
                peak_per_token_lamports=15.0,
                withdrawn_initial=True,
            )
        ]
        update = make_update()

        await controller.positions(update, None)

        text = update.message.reply_text.await_args.args[0]
        assert "#4" in text
        assert "INITIAL_WITHDRAWN" in text
        assert "60" in text

    @pytest.mark.asyncio
    async def test_status_shows_parameters(self, controller):
        update = make_update()
        await controller.status(update, None)

        text = update.message.reply_text.await_args.args[0]
        assert "50.0%" in text
        assert "700 bps" in text
