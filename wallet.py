# wallet.py
import json

import base58
from solders.keypair import Keypair


def load_keypair(secret: str | None) -> Keypair:
    """
    Carga la wallet desde WALLET_PRIVATE_KEY.

    Acepta base58 (estilo Phantom) o un array JSON de 64 bytes
    (formato de `solana-keygen`).
    """
    if not secret or not secret.strip():
        raise RuntimeError("WALLET_PRIVATE_KEY no configurado")

    raw = secret.strip()
    if raw.startswith("["):
        try:
            return Keypair.from_bytes(bytes(json.loads(raw)))
        except (ValueError, TypeError) as exc:
            raise RuntimeError(f"WALLET_PRIVATE_KEY JSON inválido: {exc}") from exc

    try:
        return Keypair.from_bytes(base58.b58decode(raw))
    except ValueError as exc:
        raise RuntimeError(f"WALLET_PRIVATE_KEY base58 inválido: {exc}") from exc
