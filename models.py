# models.py
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional
import time

from errors import InvalidTransition


class TradeSide(str, Enum):
    BUY = "BUY"
    SELL_MANUAL = "SELL_MANUAL"
    SELL_TP1 = "SELL_TP1"
    SELL_TP2 = "SELL_TP2"
    SELL_TRAIL = "SELL_TRAIL"
    SELL_SL = "SELL_SL"


class PositionState(str, Enum):
    OPEN = "OPEN"
    INITIAL_WITHDRAWN = "INITIAL_WITHDRAWN"   # TP1 ya recuperó la inversión
    TP2_TAKEN = "TP2_TAKEN"
    CLOSED = "CLOSED"


ALLOWED_TRANSITIONS: Dict[PositionState, frozenset] = {
    PositionState.OPEN: frozenset({PositionState.INITIAL_WITHDRAWN, PositionState.CLOSED}),
    PositionState.INITIAL_WITHDRAWN: frozenset({PositionState.TP2_TAKEN, PositionState.CLOSED}),
    PositionState.TP2_TAKEN: frozenset({PositionState.CLOSED}),
    PositionState.CLOSED: frozenset(),
}


@dataclass
class Position:
    id: int
    token_mint: str
    entry_lamports_in: int           # lamports gastados en la compra
    tokens_received: int             # unidades mínimas del token
    remaining_tokens: int
    entry_per_token_lamports: float  # coste por unidad de token, inmutable
    peak_per_token_lamports: float   # máximo precio observado
    entry_ts: float = field(default_factory=lambda: time.time())

    # flags de un solo sentido (0 -> 1); sólo se tocan vía advance()
    withdrawn_initial: bool = False
    took_tp2: bool = False
    closed: bool = False

    def __post_init__(self) -> None:
        self.withdrawn_initial = bool(self.withdrawn_initial)
        self.took_tp2 = bool(self.took_tp2)
        self.closed = bool(self.closed)
        if self.took_tp2 and not self.withdrawn_initial:
            raise InvalidTransition(
                f"Posición {self.id}: TP2 tomado sin haber retirado la inicial"
            )
        if self.remaining_tokens < 0:
            raise ValueError(f"Posición {self.id}: remaining_tokens negativo")

    @property
    def state(self) -> PositionState:
        if self.closed:
            return PositionState.CLOSED
        if self.took_tp2:
            return PositionState.TP2_TAKEN
        if self.withdrawn_initial:
            return PositionState.INITIAL_WITHDRAWN
        return PositionState.OPEN

    def advance(self, target: PositionState) -> None:
        current = self.state
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransition(
                f"Posición {self.id}: transición {current.value} -> {target.value} no permitida"
            )

        if target is PositionState.INITIAL_WITHDRAWN:
            self.withdrawn_initial = True
        elif target is PositionState.TP2_TAKEN:
            self.took_tp2 = True
        elif target is PositionState.CLOSED:
            self.closed = True
            self.remaining_tokens = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Position":
        return cls(
            id=int(data["id"]),
            token_mint=data["token_mint"],
            entry_lamports_in=int(data["entry_lamports_in"]),
            tokens_received=int(data["tokens_received"]),
            remaining_tokens=int(data["remaining_tokens"]),
            entry_per_token_lamports=float(data["entry_per_token_lamports"]),
            peak_per_token_lamports=float(data["peak_per_token_lamports"]),
            entry_ts=float(data.get("entry_ts") or 0.0),
            withdrawn_initial=bool(data.get("withdrawn_initial")),
            took_tp2=bool(data.get("took_tp2")),
            closed=bool(data.get("closed")),
        )


@dataclass(frozen=True)
class Trade:
    id: int
    position_id: int
    side: TradeSide
    tokens: int
    base_asset_out: int
    signature: Optional[str] = None
    ts: float = field(default_factory=lambda: time.time())
    # mint recibido cuando la venta salió por el activo secundario
    output_mint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["side"] = self.side.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Trade":
        return cls(
            id=int(data["id"]),
            position_id=int(data["position_id"]),
            side=TradeSide(data["side"]),
            tokens=int(data["tokens"]),
            base_asset_out=int(data["base_asset_out"]),
            signature=data.get("signature"),
            ts=float(data.get("ts") or 0.0),
            output_mint=data.get("output_mint"),
        )
