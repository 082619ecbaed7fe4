import asyncio
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from errors import SourceUnavailableError  # noqa: E402
from models import PriceBar  # noqa: E402


def make_bars(closes: Iterable[float], spread: float = 1.0) -> List[PriceBar]:
    return [PriceBar(high=c + spread, low=c - spread, close=c) for c in closes]


def wavy_closes(n: int = 40, start: float = 100.0) -> List[float]:
    # Alternating moves so both average gain and average loss stay non-zero
    closes = [start]
    for i in range(1, n):
        step = 1.5 if i % 3 else -2.0
        closes.append(closes[-1] + step)
    return closes


class FakeSource:
    """Scripted market data source: per-symbol bars, failures and delays."""

    def __init__(
        self,
        symbols: Iterable[str] = ("AAAUSDT", "BBBUSDT", "CCCUSDT"),
        bars: Optional[Dict[str, List[PriceBar]]] = None,
    ):
        self.symbols = list(symbols)
        self.bars = bars or {}
        self.failures: Dict[str, Exception] = {}
        self.delays: Dict[str, float] = {}
        self.list_error: Optional[Exception] = None
        self.calls: List[tuple] = []
        self.closed = False

    async def list_symbols(self) -> List[str]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.symbols)

    async def fetch_bars(self, symbol: str, interval: str, limit: int) -> List[PriceBar]:
        self.calls.append((symbol, interval))
        delay = self.delays.get(symbol)
        if delay:
            await asyncio.sleep(delay)
        if symbol in self.failures:
            raise self.failures[symbol]
        return self.bars.get(symbol) or make_bars(wavy_closes())[-limit:]

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_source():
    return FakeSource()


@pytest.fixture
def failing_universe_source():
    source = FakeSource()
    source.list_error = SourceUnavailableError("exchange down")
    return source
