# errors.py
"""
Taxonomía de errores del motor de salida.

- Los errores de quote/swap heredan de SwapError para que la estrategia
  pueda abortar un trigger sin tumbar el ciclo completo.
- StoreError se propaga al llamador del motor (id inexistente).
"""

from enum import Enum
from typing import Any, Optional


class SwapError(Exception):
    """Base de todos los fallos de quote / construcción / confirmación."""


# ----------------- QUOTES -----------------

class QuoteError(SwapError):
    pass


class RateLimited(QuoteError):
    def __init__(self, attempts: int) -> None:
        super().__init__(f"Quote rate-limited tras {attempts} intentos")
        self.attempts = attempts


class NoRoute(QuoteError):
    def __init__(self, detail: str = "") -> None:
        super().__init__(f"Sin ruta disponible: {detail}")
        self.detail = detail


class RequestFailed(QuoteError):
    def __init__(self, status: Optional[int], body: str) -> None:
        super().__init__(f"Quote failed: {status} {body}")
        self.status = status
        self.body = body


# ----------------- EJECUCIÓN -----------------

class BuildFailureKind(str, Enum):
    TOKEN_LEDGER_REQUIRED = "TOKEN_LEDGER_REQUIRED"
    PROGRAM_ERROR = "PROGRAM_ERROR"      # custom program error 0x1788
    SERVER_ERROR = "SERVER_ERROR"        # 5xx del endpoint /swap
    OTHER = "OTHER"


# Fallos que indican que la TX ya construida no sirve y conviene
# reconstruirla desde instrucciones.
FALLBACK_KINDS = frozenset(
    {
        BuildFailureKind.TOKEN_LEDGER_REQUIRED,
        BuildFailureKind.PROGRAM_ERROR,
        BuildFailureKind.SERVER_ERROR,
    }
)


def classify_build_failure(status: Optional[int], text: str) -> BuildFailureKind:
    """
    Traduce la respuesta cruda (status HTTP / mensaje RPC) a un tipo cerrado.
    Es el único punto donde se mira el texto del error.
    """
    lowered = (text or "").lower()
    if "token ledger" in lowered:
        return BuildFailureKind.TOKEN_LEDGER_REQUIRED
    if "0x1788" in lowered or "custom program error: 6024" in lowered:
        return BuildFailureKind.PROGRAM_ERROR
    if status is not None and status >= 500:
        return BuildFailureKind.SERVER_ERROR
    return BuildFailureKind.OTHER


class BuildFailed(SwapError):
    def __init__(self, kind: BuildFailureKind, detail: str = "") -> None:
        super().__init__(f"Swap build failed ({kind.value}): {detail}")
        self.kind = kind
        self.detail = detail


class ConfirmationTimeout(SwapError):
    def __init__(self, signature: str, timeout_sec: float) -> None:
        super().__init__(f"Timeout esperando confirmación ({timeout_sec:.0f}s): {signature}")
        self.signature = signature


class ConfirmationFailed(SwapError):
    def __init__(self, signature: str, err: Any) -> None:
        super().__init__(f"Transaction failed: {signature} ({err})")
        self.signature = signature
        self.err = err


# ----------------- STORE / ESTADO -----------------

class StoreError(Exception):
    pass


class InvalidTransition(ValueError):
    pass
