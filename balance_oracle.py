# balance_oracle.py
import logging

from solana.rpc.async_api import AsyncClient
from solana.rpc.models import TokenAccountOpts
from solders.pubkey import Pubkey

logger = logging.getLogger(__name__)


class BalanceOracle:
    """
    Balance real on-chain de un token SPL para un owner.

    Devuelve 0 ante cualquier fallo: en esta frontera "sin cuenta" y
    "error de RPC" no se distinguen.
    """

    def __init__(self, rpc: AsyncClient) -> None:
        self._rpc = rpc

    async def balance_of(self, owner: Pubkey, mint: str) -> int:
        try:
            resp = await self._rpc.get_token_accounts_by_owner_json_parsed(
                owner,
                TokenAccountOpts(mint=Pubkey.from_string(mint)),
            )
            accounts = resp.value or []
            # normalmente un único ATA, pero sumamos por si hay más cuentas
            total = 0
            for keyed in accounts:
                info = keyed.account.data.parsed["info"]
                total += int(info["tokenAmount"]["amount"])
            return total
        except Exception as exc:
            logger.warning("[Balance] no se pudo leer balance de %s: %r", mint, exc)
            return 0
