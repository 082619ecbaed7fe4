# models.py
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, field_validator


# One OHLC bar as served by the market data source, oldest first in any sequence
@dataclass(frozen=True)
class PriceBar:
    high: float
    low: float
    close: float


class RSICategory(str, Enum):
    OVERSOLD = "Oversold"
    NEUTRAL = "Neutral"
    OVERBOUGHT = "Overbought"


@dataclass(frozen=True)
class RSIDirection:
    """Movement of RSI between two consecutive scans of one symbol.

    previous is None when there was no earlier value (direction "Unknown").
    """

    previous: Optional[RSICategory] = None
    current: Optional[RSICategory] = None

    @property
    def is_unknown(self) -> bool:
        return self.previous is None

    @property
    def is_transition(self) -> bool:
        return self.previous is not None and self.previous != self.current

    def __str__(self) -> str:
        if self.previous is None:
            return "Unknown"
        if self.previous == self.current:
            return "No Change"
        return f"{self.previous.value} to {self.current.value}"


UNKNOWN_DIRECTION = RSIDirection()


@dataclass(frozen=True)
class RSIResult:
    value: float  # [0, 100], 2 decimals
    direction: RSIDirection


# Snapshot entries (wire format of both endpoints)
class IndicatorEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    rsi: float
    atr: float
    direction: str
    interval: str


class IndicatorErrorEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    error: str


SnapshotEntry = Union[IndicatorEntry, IndicatorErrorEntry]
IndicatorSnapshot = Tuple[SnapshotEntry, ...]


def snapshot_to_json(snapshot: IndicatorSnapshot) -> List[dict]:
    return [entry.model_dump() for entry in snapshot]


# Inbound control message on the streaming endpoint
class TimeframeMessage(BaseModel):
    timeframe: str

    @field_validator("timeframe")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("timeframe must not be empty")
        return value


class PreviousRSIStore:
    """Process-wide last RSI value per symbol.

    Keys are spread over a fixed set of locks so writers for different symbols
    rarely share one. Entries are never removed.
    """

    def __init__(self, shards: int = 16):
        if shards <= 0:
            raise ValueError("shards must be > 0")
        self._values: Dict[str, float] = {}
        self._locks = [threading.Lock() for _ in range(shards)]

    def _lock_for(self, symbol: str) -> threading.Lock:
        return self._locks[hash(symbol) % len(self._locks)]

    def get(self, symbol: str) -> Optional[float]:
        with self._lock_for(symbol):
            return self._values.get(symbol)

    def set(self, symbol: str, value: float) -> None:
        with self._lock_for(symbol):
            self._values[symbol] = value

    def update(self, symbol: str, compute: Callable[[Optional[float]], RSIResult]) -> RSIResult:
        """Read the previous value, compute, and store the new value in one step.

        Nothing is stored if ``compute`` raises. Last writer wins per symbol.
        """
        with self._lock_for(symbol):
            result = compute(self._values.get(symbol))
            self._values[symbol] = result.value
            return result

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._values
