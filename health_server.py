#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
🏥 HEALTH CHECK SERVER
======================
Servidor HTTP ligero para healthchecks del monitor de posiciones
"""

import logging
from datetime import datetime
from typing import Any, Dict

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════
# ESTADO GLOBAL DEL MONITOR (lo actualiza price_monitor.monitor_loop)
# ═══════════════════════════════════════════════════════════════

bot_status: Dict[str, Any] = {
    "running": False,
    "started_at": None,
    "last_tick": None,
    "total_ticks": 0,
    "open_positions": 0,
}

# ═══════════════════════════════════════════════════════════════
# FASTAPI APP
# ═══════════════════════════════════════════════════════════════

app = FastAPI(
    title="Solana Exit Engine",
    version="1.0",
    docs_url=None,
    redoc_url=None
)


def _uptime_seconds() -> int:
    if not bot_status["started_at"]:
        return 0
    return int((datetime.now() - bot_status["started_at"]).total_seconds())


def _iso(value) -> Any:
    return value.isoformat() if value else None


@app.get("/health")
async def health_check():
    """Siempre 200: un tick lento no debe provocar reinicios"""
    return JSONResponse(
        status_code=200,
        content={
            "status": "healthy",
            "bot_running": bot_status["running"],
            "uptime_seconds": _uptime_seconds(),
            "last_tick": _iso(bot_status["last_tick"]),
            "timestamp": datetime.now().isoformat()
        }
    )


@app.get("/status")
async def get_status():
    return JSONResponse({
        "running": bot_status["running"],
        "started_at": _iso(bot_status["started_at"]),
        "uptime_seconds": _uptime_seconds(),
        "total_ticks": bot_status["total_ticks"],
        "open_positions": bot_status["open_positions"],
        "last_tick": _iso(bot_status["last_tick"]),
    })


@app.get("/ping")
async def ping():
    return {"ping": "pong", "timestamp": datetime.now().isoformat()}

# ═══════════════════════════════════════════════════════════════
# SERVIDOR
# ═══════════════════════════════════════════════════════════════

async def start_health_server(port: int = 8080):
    """
    Iniciar servidor HTTP para healthchecks
    """
    bot_status["running"] = True
    bot_status["started_at"] = datetime.now()

    config = uvicorn.Config(
        app,
        host="0.0.0.0",
        port=port,
        log_level="warning",
        access_log=False,
        timeout_keep_alive=60
    )
    server = uvicorn.Server(config)

    logger.info(f"✅ Health server iniciado en puerto {port}")
    await server.serve()
