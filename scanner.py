# scanner.py
import asyncio
import logging
from typing import Optional

from errors import SourceUnavailableError
from indicators import ATR_PERIOD, RSI_PERIOD, calculate_atr, calculate_rsi
from market_data import MarketDataSource
from models import (
    IndicatorEntry,
    IndicatorErrorEntry,
    IndicatorSnapshot,
    PreviousRSIStore,
    SnapshotEntry,
)

logger = logging.getLogger(__name__)


class UniverseScanner:
    """Compute RSI and ATR for every tradable symbol at one interval.

    Per-symbol failures become error entries; only a failure to list the
    universe escapes ``scan``. Entries come back in universe order.
    """

    def __init__(
        self,
        source: MarketDataSource,
        store: Optional[PreviousRSIStore] = None,
        bar_limit: int = 100,
        concurrency: int = 25,
    ):
        if bar_limit < max(RSI_PERIOD, ATR_PERIOD) + 1:
            raise ValueError("bar_limit is shorter than the indicator windows")
        self.source = source
        self.store = store if store is not None else PreviousRSIStore()
        self.bar_limit = bar_limit
        self.concurrency = concurrency

    async def scan(self, interval: str) -> IndicatorSnapshot:
        try:
            symbols = await self.source.list_symbols()
        except SourceUnavailableError:
            logger.warning("Universe listing failed for interval %s", interval)
            raise
        except Exception as exc:
            logger.warning("Universe listing failed for interval %s: %s", interval, exc)
            raise SourceUnavailableError("Could not fetch tradable symbols") from exc

        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(symbol: str) -> SnapshotEntry:
            async with semaphore:
                return await self.scan_symbol(symbol, interval)

        # gather keeps input order regardless of completion order
        entries = await asyncio.gather(*(bounded(symbol) for symbol in symbols))
        failed = sum(1 for entry in entries if isinstance(entry, IndicatorErrorEntry))
        logger.debug("Scanned %d symbols at %s (%d failed)", len(entries), interval, failed)
        return tuple(entries)

    async def scan_symbol(self, symbol: str, interval: str) -> SnapshotEntry:
        try:
            bars = await self.source.fetch_bars(symbol, interval, self.bar_limit)
            closes = [bar.close for bar in bars]
            rsi = self.store.update(symbol, lambda previous: calculate_rsi(closes, previous))
            atr = calculate_atr(bars)
        except Exception as exc:
            logger.debug("Indicator pipeline failed for %s at %s: %s", symbol, interval, exc)
            return IndicatorErrorEntry(symbol=symbol, error=str(exc))

        return IndicatorEntry(
            symbol=symbol,
            rsi=rsi.value,
            atr=atr,
            direction=str(rsi.direction),
            interval=interval,
        )
