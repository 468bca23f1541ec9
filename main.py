# main.py
import asyncio
import logging

import httpx
from dotenv import load_dotenv
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed

from balance_oracle import BalanceOracle
from config import BotConfig, load_config
from health_server import bot_status, start_health_server
from jupiter_executor import JupiterExecutor
from position_store import JsonPositionStore, PositionStore, PostgresPositionStore
from price_monitor import monitor_loop
from quote_service import QuoteService
from strategy import StrategyEvaluator, StrategyParams
from telegram_bot import TelegramNotifier, build_application
from throttle import Throttle
from wallet import load_keypair


async def _open_store(config: BotConfig) -> PositionStore:
    if config.database_url:
        return await PostgresPositionStore.connect(config.database_url)
    return JsonPositionStore(config.db_path)


async def run(config: BotConfig) -> None:
    logger = logging.getLogger("main")

    wallet = load_keypair(config.wallet_private_key)
    logger.info("🔑 Wallet: %s", wallet.pubkey())

    params = StrategyParams.from_config(config)
    store = await _open_store(config)

    http = httpx.AsyncClient(headers={"User-Agent": "exit-engine/1.0"})
    rpc = AsyncClient(config.rpc_url, commitment=Confirmed)

    throttle = Throttle(max_per_window=config.quote_max_per_minute, window_sec=60.0)
    quotes = QuoteService(http, throttle, base_url=config.jupiter_api_url)
    executor = JupiterExecutor(
        http,
        rpc,
        base_url=config.jupiter_api_url,
        confirm_timeout_sec=config.confirm_timeout_sec,
    )
    balances = BalanceOracle(rpc)

    # -------------------------------------------------------------------------
    # Telegram (opcional): notificaciones + /positions /status
    # -------------------------------------------------------------------------
    app = None
    if config.telegram_bot_token and config.telegram_chat_id is not None:
        app = build_application(config, store, params)
        notifier = TelegramNotifier(app.bot, config.telegram_chat_id)
    else:
        logger.warning("TELEGRAM_BOT_TOKEN/TELEGRAM_CHAT_ID no configurados, notificaciones sólo en log")
        notifier = TelegramNotifier(None, None)

    evaluator = StrategyEvaluator(
        store=store,
        quotes=quotes,
        executor=executor,
        balances=balances,
        wallet=wallet,
        params=params,
        notify=notifier,
    )

    tasks = []
    try:
        if app is not None:
            await app.initialize()
            await app.start()
            await app.updater.start_polling(drop_pending_updates=True)

        if config.health_enabled:
            tasks.append(asyncio.create_task(start_health_server(config.health_port)))

        bot_status["running"] = True
        await notifier(f"Monitor de salidas iniciado. Wallet: {wallet.pubkey()}")
        logger.info("✅ Monitor de posiciones activo (poll=%.0fs)", config.poll_interval_sec)

        await monitor_loop(
            evaluator,
            store,
            poll_interval_sec=config.poll_interval_sec,
            notify=notifier,
            status=bot_status,
        )
    finally:
        bot_status["running"] = False
        for task in tasks:
            task.cancel()
        if app is not None:
            await app.updater.stop()
            await app.stop()
            await app.shutdown()
        await http.aclose()
        await rpc.close()
        await store.close()


def main() -> None:
    # Localmente lee .env; en Railway usas variables de entorno directas
    load_dotenv()

    config = load_config()

    # Logging global
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger = logging.getLogger("main")

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("⏹️  Bot detenido por el usuario (Ctrl+C).")


if __name__ == "__main__":
    main()
