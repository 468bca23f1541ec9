# config.py
import os
from dataclasses import dataclass

# USDC en Solana mainnet, activo secundario para vender cuando no hay ruta a SOL
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


def _get_env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value


def _get_env_float(name: str, default: float) -> float:
    v = _get_env(name)
    if v is None:
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _get_env_int(name: str, default: int) -> int:
    v = _get_env(name)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _get_env_bool(name: str, default: bool = False) -> bool:
    v = _get_env(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


@dataclass
class BotConfig:
    rpc_url: str
    wallet_private_key: str | None

    telegram_bot_token: str | None
    telegram_chat_id: int | None

    jupiter_api_url: str
    slippage_out_bps: int
    quote_max_per_minute: int
    confirm_timeout_sec: float

    poll_interval_sec: float
    tp1_pct: float
    tp2_pct: float
    tp2_sell_pct: float
    trailing_pct: float
    stop_loss_pct: float
    secondary_mint: str | None

    database_url: str | None
    db_path: str

    health_enabled: bool
    health_port: int

    log_level: str


def load_config() -> BotConfig:
    telegram_chat_id_str = _get_env("TELEGRAM_CHAT_ID")
    try:
        telegram_chat_id = int(telegram_chat_id_str) if telegram_chat_id_str else None
    except ValueError:
        telegram_chat_id = None

    # SECONDARY_MINT=none desactiva el fallback por activo secundario
    secondary_mint = _get_env("SECONDARY_MINT", USDC_MINT)
    if secondary_mint and secondary_mint.lower() in ("none", "off", "0"):
        secondary_mint = None

    return BotConfig(
        rpc_url=_get_env("RPC_URL", "https://api.mainnet-beta.solana.com"),
        wallet_private_key=_get_env("WALLET_PRIVATE_KEY"),

        telegram_bot_token=_get_env("TELEGRAM_BOT_TOKEN"),
        telegram_chat_id=telegram_chat_id,

        jupiter_api_url=_get_env("JUPITER_API_URL", "https://quote-api.jup.ag/v6"),
        slippage_out_bps=_get_env_int("SLIPPAGE_OUT_BPS", 700),
        quote_max_per_minute=_get_env_int("QUOTE_MAX_PER_MINUTE", 50),
        confirm_timeout_sec=_get_env_float("CONFIRM_TIMEOUT_SEC", 90.0),

        poll_interval_sec=_get_env_float("POLL_INTERVAL_SEC", 15.0),
        tp1_pct=_get_env_float("TP1_PCT", 0.5),
        tp2_pct=_get_env_float("TP2_PCT", 1.0),
        tp2_sell_pct=_get_env_float("TP2_SELL_PCT", 0.5),
        trailing_pct=_get_env_float("TRAILING_PCT", 0.25),
        stop_loss_pct=_get_env_float("STOP_LOSS_PCT", 0.25),
        secondary_mint=secondary_mint,

        database_url=_get_env("DATABASE_URL"),
        db_path=_get_env("DB_PATH", "db.json") or "db.json",

        health_enabled=_get_env_bool("HEALTH_ENABLED", True),
        health_port=_get_env_int("HEALTH_PORT", _get_env_int("PORT", 8080)),

        log_level=_get_env("LOG_LEVEL", "INFO") or "INFO",
    )
