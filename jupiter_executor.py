# jupiter_executor.py
"""
Executor de swaps vía Jupiter v6 + RPC de Solana.

Dos caminos:
  1. /swap              -> TX ya construida (base64), la firmamos y enviamos.
  2. /swap-instructions -> instrucciones sueltas + lookup tables; armamos
                           un MessageV0 con blockhash fresco, firmamos y enviamos.

execute() intenta siempre el camino 1; si falla con un BuildFailed de los
tipos de FALLBACK_KINDS reintenta UNA vez por el camino 2. El resto de
errores se propagan tal cual.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Finalized
from solana.rpc.core import RPCException
from solana.rpc.models import TxOpts
from solders.address_lookup_table_account import (
    AddressLookupTable,
    AddressLookupTableAccount,
)
from solders.errors import BincodeError, SignerError
from solders.solders import CompileError
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction
from solders.transaction_status import TransactionConfirmationStatus

from errors import (
    FALLBACK_KINDS,
    BuildFailed,
    BuildFailureKind,
    ConfirmationFailed,
    ConfirmationTimeout,
    classify_build_failure,
)
from quote_service import DEFAULT_JUPITER_API_URL, Quote

logger = logging.getLogger(__name__)

# WSOL mint en Solana mainnet
WSOL_MINT = "So11111111111111111111111111111111111111112"

_DONE_STATUSES = (
    TransactionConfirmationStatus.Confirmed,
    TransactionConfirmationStatus.Finalized,
)

# payload de Jupiter malformado (base64, pubkeys, bincode de la TX o la ALT)
_DECODE_ERRORS = (ValueError, BincodeError, SignerError)


def decode_instruction(ix: Dict[str, Any]) -> Instruction:
    """Instrucción en formato JSON de Jupiter -> solders.Instruction."""
    accounts = [
        AccountMeta(
            pubkey=Pubkey.from_string(acc["pubkey"]),
            is_signer=bool(acc["isSigner"]),
            is_writable=bool(acc["isWritable"]),
        )
        for acc in ix.get("accounts", [])
    ]
    return Instruction(
        program_id=Pubkey.from_string(ix["programId"]),
        data=base64.b64decode(ix.get("data") or ""),
        accounts=accounts,
    )


class JupiterExecutor:
    def __init__(
        self,
        http: httpx.AsyncClient,
        rpc: AsyncClient,
        base_url: str = DEFAULT_JUPITER_API_URL,
        confirm_timeout_sec: float = 90.0,
        confirm_interval_sec: float = 2.0,
        compute_unit_price_micro_lamports: int = 150_000,
        fallback_compute_unit_price_micro_lamports: int = 300_000,
        http_timeout_sec: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._http = http
        self._rpc = rpc
        base = base_url.rstrip("/")
        self._swap_url = base + "/swap"
        self._swap_instructions_url = base + "/swap-instructions"
        self.confirm_timeout_sec = confirm_timeout_sec
        self.confirm_interval_sec = confirm_interval_sec
        self.compute_unit_price = compute_unit_price_micro_lamports
        self.fallback_compute_unit_price = fallback_compute_unit_price_micro_lamports
        self._http_timeout_sec = http_timeout_sec
        self._clock = clock
        self._sleep = sleep

    # -------------------------------------------------------------------------
    # API pública
    # -------------------------------------------------------------------------

    async def execute(
        self,
        quote: Quote,
        signer: Keypair,
        compute_unit_price_micro_lamports: Optional[int] = None,
    ) -> str:
        try:
            return await self.execute_built(
                quote,
                signer,
                compute_unit_price_micro_lamports or self.compute_unit_price,
            )
        except BuildFailed as exc:
            if exc.kind not in FALLBACK_KINDS:
                raise
            logger.warning(
                "[Executor] /swap inutilizable (%s), reintentando por instrucciones",
                exc.kind.value,
            )

        return await self.execute_instructions(
            quote, signer, self.fallback_compute_unit_price
        )

    async def execute_built(
        self,
        quote: Quote,
        signer: Keypair,
        compute_unit_price_micro_lamports: int,
    ) -> str:
        payload = {
            "quoteResponse": quote.raw,
            "userPublicKey": str(signer.pubkey()),
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "computeUnitPriceMicroLamports": compute_unit_price_micro_lamports,
        }
        data = await self._post_build(self._swap_url, payload)

        swap_tx = data.get("swapTransaction")
        if not swap_tx:
            raise BuildFailed(BuildFailureKind.OTHER, "respuesta sin swapTransaction")

        try:
            unsigned = VersionedTransaction.from_bytes(base64.b64decode(swap_tx))
            tx = VersionedTransaction(unsigned.message, [signer])
        except _DECODE_ERRORS as exc:
            raise BuildFailed(BuildFailureKind.OTHER, f"TX no deserializable: {exc!r}") from exc

        signature = await self._send(tx)
        await self.wait_for_confirmation(signature)
        return signature

    async def execute_instructions(
        self,
        quote: Quote,
        signer: Keypair,
        compute_unit_price_micro_lamports: int,
    ) -> str:
        payload = {
            "quoteResponse": quote.raw,
            "userPublicKey": str(signer.pubkey()),
            "wrapAndUnwrapSol": True,
            "computeUnitPriceMicroLamports": compute_unit_price_micro_lamports,
        }
        data = await self._post_build(self._swap_instructions_url, payload)

        if not data.get("swapInstruction"):
            raise BuildFailed(BuildFailureKind.OTHER, "respuesta sin swapInstruction")

        try:
            instructions: List[Instruction] = []
            instructions += [decode_instruction(ix) for ix in data.get("computeBudgetInstructions") or []]
            instructions += [decode_instruction(ix) for ix in data.get("setupInstructions") or []]
            instructions.append(decode_instruction(data["swapInstruction"]))
            if data.get("cleanupInstruction"):
                instructions.append(decode_instruction(data["cleanupInstruction"]))
        except (KeyError, TypeError, AttributeError) + _DECODE_ERRORS as exc:
            raise BuildFailed(BuildFailureKind.OTHER, f"instrucciones inválidas: {exc!r}") from exc

        lookups = await self._load_lookup_tables(data.get("addressLookupTableAddresses") or [])

        try:
            blockhash_resp = await self._rpc.get_latest_blockhash(commitment=Finalized)
        except (RPCException, SolanaRpcException) as exc:
            raise BuildFailed(BuildFailureKind.OTHER, f"sin blockhash: {exc}") from exc

        try:
            message = MessageV0.try_compile(
                payer=signer.pubkey(),
                instructions=instructions,
                address_lookup_table_accounts=lookups,
                recent_blockhash=blockhash_resp.value.blockhash,
            )
            tx = VersionedTransaction(message, [signer])
        except (CompileError, SignerError, ValueError) as exc:
            raise BuildFailed(BuildFailureKind.OTHER, f"no se pudo compilar la TX: {exc!r}") from exc

        signature = await self._send(tx)
        await self.wait_for_confirmation(signature)
        return signature

    async def wait_for_confirmation(self, signature: str) -> None:
        try:
            sig = Signature.from_string(signature)
        except ValueError as exc:
            raise BuildFailed(BuildFailureKind.OTHER, f"signature inválida {signature!r}") from exc
        started = self._clock()

        while self._clock() - started < self.confirm_timeout_sec:
            try:
                resp = await self._rpc.get_signature_statuses([sig])
                status = resp.value[0] if resp.value else None
            except (RPCException, SolanaRpcException) as exc:
                logger.debug("[Executor] error consultando estado de %s: %r", signature, exc)
                status = None

            if status is not None:
                if status.err is not None:
                    raise ConfirmationFailed(signature, status.err)
                if status.confirmation_status in _DONE_STATUSES:
                    logger.info("[Executor] ✅ TX confirmada: %s", signature)
                    return

            await self._sleep(self.confirm_interval_sec)

        raise ConfirmationTimeout(signature, self.confirm_timeout_sec)

    # -------------------------------------------------------------------------
    # Helpers internos
    # -------------------------------------------------------------------------

    async def _post_build(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = await self._http.post(
                url,
                json=payload,
                headers={"Accept": "application/json"},
                timeout=self._http_timeout_sec,
            )
        except httpx.HTTPError as exc:
            raise BuildFailed(BuildFailureKind.OTHER, repr(exc)) from exc

        if resp.status_code != 200:
            body = resp.text
            kind = classify_build_failure(resp.status_code, body)
            raise BuildFailed(kind, f"{resp.status_code} {body}")

        try:
            return resp.json()
        except ValueError as exc:
            raise BuildFailed(BuildFailureKind.OTHER, "JSON inválido") from exc

    async def _load_lookup_tables(self, addresses: List[str]) -> List[AddressLookupTableAccount]:
        lookups: List[AddressLookupTableAccount] = []
        for addr in addresses:
            try:
                key = Pubkey.from_string(addr)
                resp = await self._rpc.get_account_info(key)
                if resp.value is None:
                    logger.debug("[Executor] lookup table %s no encontrada", addr)
                    continue
                table = AddressLookupTable.deserialize(bytes(resp.value.data))
            except (RPCException, SolanaRpcException) + _DECODE_ERRORS as exc:
                raise BuildFailed(
                    BuildFailureKind.OTHER, f"lookup table {addr} ilegible: {exc!r}"
                ) from exc
            lookups.append(AddressLookupTableAccount(key=key, addresses=list(table.addresses)))
        return lookups

    async def _send(self, tx: VersionedTransaction) -> str:
        # preflight activo: los errores de programa (0x1788) llegan aquí
        opts = TxOpts(skip_preflight=False, max_retries=5)
        try:
            resp = await self._rpc.send_raw_transaction(bytes(tx), opts=opts)
        except (RPCException, SolanaRpcException) as exc:
            text = str(exc)
            raise BuildFailed(classify_build_failure(None, text), text) from exc
        signature = str(resp.value)
        logger.info("[Executor] TX enviada, signature=%s", signature)
        return signature
