"""UniverseScanner: per-symbol isolation, ordering and previous-RSI tracking."""

import asyncio

import pytest

from errors import SourceUnavailableError, SymbolUnknownError
from indicators import calculate_rsi
from models import IndicatorEntry, IndicatorErrorEntry, PreviousRSIStore
from scanner import UniverseScanner

from conftest import FakeSource, make_bars, wavy_closes

REGRESSION_CLOSES = [
    44, 44.25, 44.5, 43.75, 44.65, 45.12, 45.22, 45.64, 46.21, 46.25, 45.71,
    46.45, 45.78, 45.35, 44.03, 44.18, 44.22, 44.57, 43.42, 42.66, 43.13,
]


@pytest.mark.asyncio
async def test_scan_returns_entry_per_symbol_in_universe_order(fake_source):
    # Earlier symbols finish last
    fake_source.delays = {"AAAUSDT": 0.05, "BBBUSDT": 0.02}
    snapshot = await UniverseScanner(fake_source).scan("1h")

    assert [entry.symbol for entry in snapshot] == ["AAAUSDT", "BBBUSDT", "CCCUSDT"]
    for entry in snapshot:
        assert isinstance(entry, IndicatorEntry)
        assert entry.interval == "1h"
        assert entry.direction == "Unknown"
        assert 0.0 <= entry.rsi <= 100.0
        assert entry.atr >= 0.0


@pytest.mark.asyncio
async def test_one_failing_symbol_becomes_error_entry_in_place():
    symbols = [f"S{i}USDT" for i in range(6)]
    healthy = await UniverseScanner(FakeSource(symbols)).scan("30m")

    source = FakeSource(symbols)
    source.failures["S3USDT"] = SourceUnavailableError("Could not fetch data for S3USDT")
    snapshot = await UniverseScanner(source).scan("30m")

    assert len(snapshot) == 6
    assert snapshot[3] == IndicatorErrorEntry(symbol="S3USDT", error="Could not fetch data for S3USDT")
    for i in (0, 1, 2, 4, 5):
        assert snapshot[i] == healthy[i]


@pytest.mark.asyncio
async def test_short_history_and_unknown_symbol_are_per_entry_errors():
    source = FakeSource(["SHORTUSDT", "GONEUSDT", "OKUSDT"])
    source.bars["SHORTUSDT"] = make_bars([1.0, 2.0, 3.0])
    source.failures["GONEUSDT"] = SymbolUnknownError("GONEUSDT", "Invalid symbol.")
    scanner = UniverseScanner(source)

    short, gone, ok = await scanner.scan("5m")

    assert isinstance(short, IndicatorErrorEntry)
    assert "Not enough data" in short.error
    assert isinstance(gone, IndicatorErrorEntry)
    assert gone.error == "Unknown symbol GONEUSDT: Invalid symbol."
    assert isinstance(ok, IndicatorEntry)
    # Failed symbols leave no previous RSI behind
    assert "SHORTUSDT" not in scanner.store
    assert "OKUSDT" in scanner.store


@pytest.mark.asyncio
async def test_universe_failure_fails_whole_scan(failing_universe_source):
    with pytest.raises(SourceUnavailableError):
        await UniverseScanner(failing_universe_source).scan("30m")


@pytest.mark.asyncio
async def test_unexpected_universe_error_is_wrapped():
    source = FakeSource()
    source.list_error = ConnectionError("reset by peer")
    with pytest.raises(SourceUnavailableError):
        await UniverseScanner(source).scan("30m")


@pytest.mark.asyncio
async def test_second_scan_reports_direction_from_previous_value():
    source = FakeSource(["AAAUSDT"])
    store = PreviousRSIStore()
    scanner = UniverseScanner(source, store=store)

    (first,) = await scanner.scan("30m")
    (second,) = await scanner.scan("30m")

    assert first.direction == "Unknown"
    assert second.direction == "No Change"
    assert store.get("AAAUSDT") == second.rsi

    # A move across a threshold shows up as a transition
    store.set("AAAUSDT", 85.0)
    (third,) = await scanner.scan("30m")
    assert third.direction.startswith("Overbought to ")


@pytest.mark.asyncio
async def test_store_is_shared_across_intervals():
    source = FakeSource(["AAAUSDT"])
    scanner = UniverseScanner(source)
    await scanner.scan("1m")
    (entry,) = await scanner.scan("1h")
    assert entry.direction != "Unknown"


@pytest.mark.asyncio
async def test_concurrency_bound_limits_in_flight_fetches():
    in_flight = 0
    peak = 0

    class CountingSource(FakeSource):
        async def fetch_bars(self, symbol, interval, limit):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return make_bars(wavy_closes())

    source = CountingSource([f"S{i}USDT" for i in range(10)])
    snapshot = await UniverseScanner(source, concurrency=3).scan("30m")
    assert len(snapshot) == 10
    assert peak <= 3


@pytest.mark.asyncio
async def test_cancelling_scan_stops_pending_fetches():
    source = FakeSource([f"S{i}USDT" for i in range(4)])
    source.delays = {f"S{i}USDT": 5.0 for i in range(4)}
    scanner = UniverseScanner(source)

    task = asyncio.create_task(scanner.scan("30m"))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(scanner.store) == 0


def test_bar_limit_must_cover_windows(fake_source):
    with pytest.raises(ValueError):
        UniverseScanner(fake_source, bar_limit=10)


@pytest.mark.asyncio
async def test_overlapping_scans_share_store_last_writer_wins():
    store = PreviousRSIStore()
    fast = FakeSource(["AAAUSDT"])
    fast.delays = {"AAAUSDT": 0.01}
    slow = FakeSource(["AAAUSDT"], bars={"AAAUSDT": make_bars(REGRESSION_CLOSES)})
    slow.delays = {"AAAUSDT": 0.05}

    (first,), (second,) = await asyncio.gather(
        UniverseScanner(fast, store=store).scan("30m"),
        UniverseScanner(slow, store=store).scan("30m"),
    )

    assert first.rsi != second.rsi
    assert first.direction == "Unknown"
    # The later writer saw the earlier scan's value and replaced it
    assert second.direction == "No Change"
    assert store.get("AAAUSDT") == second.rsi == 44.6


@pytest.mark.asyncio
async def test_many_overlapping_scans_leave_a_value_from_one_of_them():
    store = PreviousRSIStore()
    scanners = []
    for i in range(8):
        closes = [c + (i % 3) * 0.7 * (j % 2) for j, c in enumerate(REGRESSION_CLOSES)]
        source = FakeSource(["AAAUSDT", "BBBUSDT"], bars={"AAAUSDT": make_bars(closes), "BBBUSDT": make_bars(closes)})
        source.delays = {"AAAUSDT": 0.001 * (8 - i)}
        scanners.append(UniverseScanner(source, store=store))

    snapshots = await asyncio.gather(*(scanner.scan("30m") for scanner in scanners))

    for index, symbol in enumerate(["AAAUSDT", "BBBUSDT"]):
        values = {snapshot[index].rsi for snapshot in snapshots}
        assert store.get(symbol) in values
    assert sum(1 for snapshot in snapshots if snapshot[0].direction == "Unknown") == 1


def test_writers_for_different_symbols_do_not_block_each_other():
    store = PreviousRSIStore()
    held = "AAAUSDT"
    other = next(
        f"S{i}USDT" for i in range(1000) if store._lock_for(f"S{i}USDT") is not store._lock_for(held)
    )

    with store._lock_for(held):
        result = store.update(other, lambda previous: calculate_rsi(REGRESSION_CLOSES, previous))

    assert store.get(other) == result.value == 44.6
    assert held not in store
