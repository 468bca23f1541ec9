# position_store.py
"""
Persistencia de posiciones y trades.

- JsonPositionStore: archivo JSON, reescritura atómica (tmp + os.replace).
- PostgresPositionStore: asyncpg, cada mutación en su propia transacción.

Ambos cumplen el mismo contrato CRUD; los trades son append-only.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import asyncpg
from asyncpg.pool import Pool

from errors import StoreError
from models import Position, Trade, TradeSide

logger = logging.getLogger(__name__)

# Campos que update() acepta; id y los datos de entrada son inmutables
MUTABLE_FIELDS = frozenset(
    {
        "remaining_tokens",
        "peak_per_token_lamports",
        "withdrawn_initial",
        "took_tp2",
        "closed",
    }
)


def _check_update_fields(fields: Dict[str, Any]) -> None:
    unknown = set(fields) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Campos no actualizables: {sorted(unknown)}")


class PositionStore(ABC):
    @abstractmethod
    async def create(self, fields: Dict[str, Any]) -> int: ...

    @abstractmethod
    async def get(self, position_id: int) -> Optional[Position]: ...

    @abstractmethod
    async def update(self, position_id: int, **fields: Any) -> None: ...

    @abstractmethod
    async def list_open(self) -> List[Position]: ...

    @abstractmethod
    async def add_trade(
        self,
        position_id: int,
        side: TradeSide,
        tokens: int,
        base_asset_out: int,
        signature: Optional[str],
        output_mint: Optional[str] = None,
    ) -> int: ...

    @abstractmethod
    async def list_trades(self, position_id: int) -> List[Trade]: ...

    @abstractmethod
    async def open_position(
        self,
        token_mint: str,
        entry_lamports_in: int,
        tokens_received: int,
        signature: Optional[str],
    ) -> int:
        """Crea la posición y su trade BUY como una sola unidad."""

    async def close(self) -> None:
        return None


def _new_position_fields(
    token_mint: str, entry_lamports_in: int, tokens_received: int
) -> Dict[str, Any]:
    if tokens_received <= 0:
        raise ValueError("tokens_received debe ser > 0")
    per_token = entry_lamports_in / tokens_received
    return {
        "token_mint": token_mint,
        "entry_lamports_in": int(entry_lamports_in),
        "tokens_received": int(tokens_received),
        "remaining_tokens": int(tokens_received),
        "entry_per_token_lamports": per_token,
        "peak_per_token_lamports": per_token,
        "entry_ts": time.time(),
    }


# -----------------------------------------------------------------------------
# JSON
# -----------------------------------------------------------------------------

class JsonPositionStore(PositionStore):
    def __init__(self, path: str = "db.json") -> None:
        self.path = path
        self._lock = asyncio.Lock()

    def _read(self) -> Dict[str, List[Dict[str, Any]]]:
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            data = {}
        except json.JSONDecodeError as exc:
            # no pisamos un archivo corrupto con uno vacío
            raise StoreError(f"{self.path} corrupto: {exc}") from exc
        data.setdefault("positions", [])
        data.setdefault("trades", [])
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        tmp = f"{self.path}.tmp"
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, self.path)

    @staticmethod
    def _next_id(items: List[Dict[str, Any]]) -> int:
        return max((int(it.get("id") or 0) for it in items), default=0) + 1

    @staticmethod
    def _append_position(data: Dict[str, Any], fields: Dict[str, Any]) -> int:
        pos_id = JsonPositionStore._next_id(data["positions"])
        record = dict(fields)
        record.update(id=pos_id, withdrawn_initial=False, took_tp2=False, closed=False)
        # valida el registro antes de escribirlo
        Position.from_dict(record)
        data["positions"].append(record)
        return pos_id

    @staticmethod
    def _append_trade(data: Dict[str, Any], trade: Dict[str, Any]) -> int:
        trade_id = JsonPositionStore._next_id(data["trades"])
        data["trades"].append(Trade.from_dict({**trade, "id": trade_id}).to_dict())
        return trade_id

    async def create(self, fields: Dict[str, Any]) -> int:
        async with self._lock:
            data = self._read()
            pos_id = self._append_position(data, fields)
            self._write(data)
            return pos_id

    async def get(self, position_id: int) -> Optional[Position]:
        async with self._lock:
            data = self._read()
        for rec in data["positions"]:
            if int(rec["id"]) == int(position_id):
                return Position.from_dict(rec)
        return None

    async def update(self, position_id: int, **fields: Any) -> None:
        _check_update_fields(fields)
        async with self._lock:
            data = self._read()
            for rec in data["positions"]:
                if int(rec["id"]) == int(position_id):
                    rec.update(fields)
                    self._write(data)
                    return
        raise StoreError(f"Position not found: {position_id}")

    async def list_open(self) -> List[Position]:
        async with self._lock:
            data = self._read()
        return [Position.from_dict(rec) for rec in data["positions"] if not rec.get("closed")]

    async def add_trade(
        self,
        position_id: int,
        side: TradeSide,
        tokens: int,
        base_asset_out: int,
        signature: Optional[str],
        output_mint: Optional[str] = None,
    ) -> int:
        async with self._lock:
            data = self._read()
            if not any(int(rec["id"]) == int(position_id) for rec in data["positions"]):
                raise StoreError(f"Position not found: {position_id}")
            trade_id = self._append_trade(
                data,
                {
                    "position_id": position_id,
                    "side": TradeSide(side).value,
                    "tokens": tokens,
                    "base_asset_out": base_asset_out,
                    "signature": signature,
                    "ts": time.time(),
                    "output_mint": output_mint,
                },
            )
            self._write(data)
            return trade_id

    async def list_trades(self, position_id: int) -> List[Trade]:
        async with self._lock:
            data = self._read()
        return [
            Trade.from_dict(rec)
            for rec in data["trades"]
            if int(rec["position_id"]) == int(position_id)
        ]

    async def open_position(
        self,
        token_mint: str,
        entry_lamports_in: int,
        tokens_received: int,
        signature: Optional[str],
    ) -> int:
        fields = _new_position_fields(token_mint, entry_lamports_in, tokens_received)
        async with self._lock:
            data = self._read()
            pos_id = self._append_position(data, fields)
            self._append_trade(
                data,
                {
                    "position_id": pos_id,
                    "side": TradeSide.BUY.value,
                    "tokens": tokens_received,
                    "base_asset_out": entry_lamports_in,
                    "signature": signature,
                    "ts": time.time(),
                },
            )
            self._write(data)
            return pos_id


# -----------------------------------------------------------------------------
# PostgreSQL
# -----------------------------------------------------------------------------

SCHEMA_SQL = (
    """
    CREATE TABLE IF NOT EXISTS positions (
        id SERIAL PRIMARY KEY,
        token_mint VARCHAR(44) NOT NULL,
        entry_lamports_in BIGINT NOT NULL,
        tokens_received BIGINT NOT NULL,
        remaining_tokens BIGINT NOT NULL CHECK (remaining_tokens >= 0),
        entry_per_token_lamports DOUBLE PRECISION NOT NULL,
        peak_per_token_lamports DOUBLE PRECISION NOT NULL,
        entry_ts DOUBLE PRECISION NOT NULL,
        withdrawn_initial BOOLEAN NOT NULL DEFAULT false,
        took_tp2 BOOLEAN NOT NULL DEFAULT false,
        closed BOOLEAN NOT NULL DEFAULT false
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS trades (
        id SERIAL PRIMARY KEY,
        position_id INTEGER NOT NULL REFERENCES positions(id),
        side VARCHAR(16) NOT NULL,
        tokens BIGINT NOT NULL,
        base_asset_out BIGINT NOT NULL,
        signature VARCHAR(88),
        ts DOUBLE PRECISION NOT NULL,
        output_mint VARCHAR(44)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_positions_open ON positions(closed)",
    "CREATE INDEX IF NOT EXISTS idx_trades_position ON trades(position_id)",
)

_INSERT_POSITION = """
    INSERT INTO positions (
        token_mint, entry_lamports_in, tokens_received, remaining_tokens,
        entry_per_token_lamports, peak_per_token_lamports, entry_ts
    ) VALUES ($1, $2, $3, $4, $5, $6, $7)
    RETURNING id
"""

_INSERT_TRADE = """
    INSERT INTO trades (
        position_id, side, tokens, base_asset_out, signature, ts, output_mint
    ) VALUES ($1, $2, $3, $4, $5, $6, $7)
    RETURNING id
"""


class PostgresPositionStore(PositionStore):
    def __init__(self, pool: Pool) -> None:
        self._pool = pool

    @classmethod
    async def connect(cls, dsn: str) -> "PostgresPositionStore":
        pool = await asyncpg.create_pool(dsn, min_size=1, max_size=5, command_timeout=60)
        store = cls(pool)
        await store.init_schema()
        logger.info("✅ PostgreSQL inicializado")
        return store

    async def init_schema(self) -> None:
        async with self._pool.acquire() as conn:
            for stmt in SCHEMA_SQL:
                await conn.execute(stmt)

    @staticmethod
    async def _insert_position(conn, fields: Dict[str, Any]) -> int:
        return await conn.fetchval(
            _INSERT_POSITION,
            fields["token_mint"],
            int(fields["entry_lamports_in"]),
            int(fields["tokens_received"]),
            int(fields["remaining_tokens"]),
            float(fields["entry_per_token_lamports"]),
            float(fields["peak_per_token_lamports"]),
            float(fields.get("entry_ts") or time.time()),
        )

    async def create(self, fields: Dict[str, Any]) -> int:
        async with self._pool.acquire() as conn:
            return await self._insert_position(conn, fields)

    async def get(self, position_id: int) -> Optional[Position]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM positions WHERE id = $1", position_id)
        return Position.from_dict(dict(row)) if row else None

    async def update(self, position_id: int, **fields: Any) -> None:
        _check_update_fields(fields)
        if not fields:
            return
        columns = sorted(fields)
        assignments = ", ".join(f"{col} = ${i}" for i, col in enumerate(columns, start=2))
        query = f"UPDATE positions SET {assignments} WHERE id = $1"
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                status = await conn.execute(query, position_id, *(fields[c] for c in columns))
        # asyncpg devuelve "UPDATE <n>"
        if status.split()[-1] == "0":
            raise StoreError(f"Position not found: {position_id}")

    async def list_open(self) -> List[Position]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM positions WHERE NOT closed ORDER BY id")
        return [Position.from_dict(dict(r)) for r in rows]

    async def add_trade(
        self,
        position_id: int,
        side: TradeSide,
        tokens: int,
        base_asset_out: int,
        signature: Optional[str],
        output_mint: Optional[str] = None,
    ) -> int:
        async with self._pool.acquire() as conn:
            try:
                return await conn.fetchval(
                    _INSERT_TRADE,
                    position_id,
                    TradeSide(side).value,
                    int(tokens),
                    int(base_asset_out),
                    signature,
                    time.time(),
                    output_mint,
                )
            except asyncpg.ForeignKeyViolationError as exc:
                raise StoreError(f"Position not found: {position_id}") from exc

    async def list_trades(self, position_id: int) -> List[Trade]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM trades WHERE position_id = $1 ORDER BY id", position_id
            )
        return [Trade.from_dict(dict(r)) for r in rows]

    async def open_position(
        self,
        token_mint: str,
        entry_lamports_in: int,
        tokens_received: int,
        signature: Optional[str],
    ) -> int:
        fields = _new_position_fields(token_mint, entry_lamports_in, tokens_received)
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                pos_id = await self._insert_position(conn, fields)
                await conn.fetchval(
                    _INSERT_TRADE,
                    pos_id,
                    TradeSide.BUY.value,
                    int(tokens_received),
                    int(entry_lamports_in),
                    signature,
                    time.time(),
                    None,
                )
        return pos_id

    async def close(self) -> None:
        await self._pool.close()
