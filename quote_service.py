# quote_service.py
"""
Cliente de quotes de Jupiter (v6 /quote).

- Cada intento pasa primero por el Throttle compartido.
- 429 -> backoff exponencial (500ms, x2) hasta 4 reintentos, luego RateLimited.
- Errores de "no hay ruta" -> NoRoute (no se reintenta aquí).
- Cualquier otro fallo -> RequestFailed con status y body.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict

import httpx

from errors import NoRoute, RateLimited, RequestFailed
from throttle import Throttle

logger = logging.getLogger(__name__)

DEFAULT_JUPITER_API_URL = "https://quote-api.jup.ag/v6"

NO_ROUTE_ERROR_CODES = frozenset(
    {
        "COULD_NOT_FIND_ANY_ROUTE",
        "NO_ROUTES_FOUND",
        "TOKEN_NOT_TRADABLE",
    }
)


@dataclass
class Quote:
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    slippage_bps: int
    # respuesta completa: /swap y /swap-instructions la necesitan tal cual
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


def _is_no_route(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    code = payload.get("errorCode") or payload.get("error_code")
    if code in NO_ROUTE_ERROR_CODES:
        return True
    error = str(payload.get("error") or "").lower()
    return "could not find any route" in error or "no routes found" in error


class QuoteService:
    def __init__(
        self,
        client: httpx.AsyncClient,
        throttle: Throttle,
        base_url: str = DEFAULT_JUPITER_API_URL,
        max_retries: int = 4,
        initial_backoff_sec: float = 0.5,
        timeout_sec: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._throttle = throttle
        self._quote_url = base_url.rstrip("/") + "/quote"
        self._max_retries = max_retries
        self._initial_backoff_sec = initial_backoff_sec
        self._timeout_sec = timeout_sec
        self._sleep = sleep

    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
        prefer_direct: bool = False,
    ) -> Quote:
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(int(amount)),
            "slippageBps": str(int(slippage_bps)),
            "onlyDirectRoutes": "true" if prefer_direct else "false",
        }
        if prefer_direct:
            params["preferDirectRoutes"] = "true"

        attempt = 0
        delay = self._initial_backoff_sec

        while True:
            await self._throttle.acquire()
            try:
                resp = await self._client.get(
                    self._quote_url,
                    params=params,
                    headers={"Accept": "application/json"},
                    timeout=self._timeout_sec,
                )
            except httpx.HTTPError as exc:
                raise RequestFailed(None, repr(exc)) from exc

            if resp.status_code == 200:
                try:
                    data = resp.json()
                except ValueError as exc:
                    raise RequestFailed(resp.status_code, "JSON inválido") from exc
                if not isinstance(data, dict) or not data.get("outAmount"):
                    raise RequestFailed(resp.status_code, "Empty quote")
                return Quote(
                    input_mint=input_mint,
                    output_mint=output_mint,
                    in_amount=int(data.get("inAmount") or amount),
                    out_amount=int(data["outAmount"]),
                    slippage_bps=int(slippage_bps),
                    raw=data,
                )

            body = resp.text

            if resp.status_code == 429:
                if attempt < self._max_retries:
                    logger.warning(
                        "[Quote] 429 para %s -> %s, reintento %d en %.1fs",
                        input_mint,
                        output_mint,
                        attempt + 1,
                        delay,
                    )
                    await self._sleep(delay)
                    attempt += 1
                    delay *= 2
                    continue
                raise RateLimited(attempt + 1)

            try:
                payload = resp.json()
            except ValueError:
                payload = None
            if _is_no_route(payload):
                raise NoRoute(body)

            raise RequestFailed(resp.status_code, body)
