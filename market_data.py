# market_data.py
"""Market data sources feeding the scanner.

A source supplies the tradable universe and a bounded recent bar history for a
symbol at an interval. Interval strings are passed through untouched.

- BinanceFuturesSource: USD-M futures REST API over httpx.
- SimulatedSource: seeded random-walk bars for offline runs.
"""

import asyncio
import logging
import random
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

import httpx

from config import Settings
from errors import SourceUnavailableError, SymbolUnknownError
from models import PriceBar

logger = logging.getLogger(__name__)

EXCHANGE_INFO_PATH = "/fapi/v1/exchangeInfo"
KLINES_PATH = "/fapi/v1/klines"


class MarketDataSource(Protocol):
    async def list_symbols(self) -> List[str]:
        """Tradable symbols in provider order. Raises SourceUnavailableError."""
        ...

    async def fetch_bars(self, symbol: str, interval: str, limit: int) -> List[PriceBar]:
        """Recent bars oldest first. Raises SourceUnavailableError or SymbolUnknownError."""
        ...

    async def aclose(self) -> None:
        ...


class BinanceFuturesSource:
    """Binance USD-M futures public endpoints.

    The httpx client is owned by the source unless one is passed in.
    """

    def __init__(
        self,
        base_url: str = "https://fapi.binance.com",
        quote_asset: str = "USDT",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.quote_asset = quote_asset
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def _get(self, path: str, params: Optional[dict] = None):
        try:
            response = await self._client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError:
            raise
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Request to %s failed: %s", path, exc)
            raise SourceUnavailableError(f"Request to {path} failed: {exc}") from exc

    async def list_symbols(self) -> List[str]:
        try:
            payload = await self._get(EXCHANGE_INFO_PATH)
        except httpx.HTTPStatusError as exc:
            logger.warning("exchangeInfo returned %s", exc.response.status_code)
            raise SourceUnavailableError("Could not fetch futures symbols") from exc

        try:
            return [
                item["symbol"]
                for item in payload["symbols"]
                if item.get("quoteAsset") == self.quote_asset and item.get("status") == "TRADING"
            ]
        except (KeyError, TypeError) as exc:
            raise SourceUnavailableError("Malformed exchangeInfo payload") from exc

    async def fetch_bars(self, symbol: str, interval: str, limit: int) -> List[PriceBar]:
        params = {"symbol": symbol, "interval": interval, "limit": limit}
        try:
            payload = await self._get(KLINES_PATH, params=params)
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status == 400:
                raise SymbolUnknownError(symbol, _error_message(exc.response)) from exc
            logger.warning("klines for %s returned %s", symbol, status)
            raise SourceUnavailableError(f"Could not fetch data for {symbol}") from exc

        # Kline rows: [open_time, open, high, low, close, volume, ...]
        try:
            return [
                PriceBar(high=float(row[2]), low=float(row[3]), close=float(row[4]))
                for row in payload
            ]
        except (IndexError, TypeError, ValueError) as exc:
            raise SourceUnavailableError(f"Malformed kline payload for {symbol}") from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _error_message(response: httpx.Response) -> Optional[str]:
    try:
        return response.json().get("msg")
    except (ValueError, AttributeError):
        return None


class SimulatedSource:
    """Random-walk bars, one new bar per fetch of a (symbol, interval) pair.

    Each pair has its own seeded generator so runs are reproducible.
    """

    def __init__(
        self,
        symbols: Iterable[str] = ("BTCUSDT", "ETHUSDT"),
        base_price: float = 100.0,
        jitter: float = 0.8,
        latency_ms: int = 0,
        max_history: int = 1000,
    ):
        self.symbols = list(symbols)
        self.base_price = float(base_price)
        self.jitter = jitter
        self.latency_ms = latency_ms
        self.max_history = max_history
        self._rngs: Dict[Tuple[str, str], random.Random] = {}
        self._history: Dict[Tuple[str, str], List[PriceBar]] = {}

    async def list_symbols(self) -> List[str]:
        return list(self.symbols)

    def _next_bar(self, rng: random.Random, last_close: float) -> PriceBar:
        drift = rng.uniform(-0.02, 0.02)
        shock = rng.gauss(0.0, self.jitter)
        close = max(0.01, last_close * (1.0 + drift * 1e-2) + shock)
        high = max(close, last_close) + abs(rng.gauss(0.0, self.jitter / 2))
        low = max(0.01, min(close, last_close) - abs(rng.gauss(0.0, self.jitter / 2)))
        return PriceBar(high=round(high, 6), low=round(low, 6), close=round(close, 6))

    async def fetch_bars(self, symbol: str, interval: str, limit: int) -> List[PriceBar]:
        if symbol not in self.symbols:
            raise SymbolUnknownError(symbol)
        if self.latency_ms:
            await asyncio.sleep(self.latency_ms / 1000.0)

        key = (symbol, interval)
        rng = self._rngs.setdefault(key, random.Random(f"{symbol}:{interval}"))
        history = self._history.setdefault(key, [])
        last_close = history[-1].close if history else self.base_price
        # Backfill on first use, then advance one bar per call
        needed = max(limit - len(history), 1)
        for _ in range(needed):
            bar = self._next_bar(rng, last_close)
            history.append(bar)
            last_close = bar.close
        del history[: max(len(history) - self.max_history, 0)]
        return history[-limit:]

    async def aclose(self) -> None:
        pass


def create_source(settings: Settings) -> MarketDataSource:
    if settings.market_data_source == "simulated":
        return SimulatedSource(symbols=settings.simulated_symbols)
    return BinanceFuturesSource(
        base_url=settings.binance_base_url,
        quote_asset=settings.quote_asset,
        timeout=settings.request_timeout_seconds,
    )
