"""RSI and ATR over a bounded bar history.

Both indicators use Wilder's smoothing:
  1) Seed the average from the first ``period`` values with a simple mean.
  2) For each later value: avg = (prev_avg*(period-1) + value) / period

Results are rounded to 2 decimal places. A history shorter than ``period + 1``
points raises InsufficientDataError instead of returning a neutral value.

RSI keeps one quirk on purpose: when the average loss is zero the relative
strength is taken as 0, not infinity. An all-gain (or flat) window therefore
reports RSI 0.0 rather than 100.0.
"""

from typing import Optional, Sequence

from errors import InsufficientDataError
from models import (
    PriceBar,
    RSICategory,
    RSIDirection,
    RSIResult,
    UNKNOWN_DIRECTION,
)

RSI_PERIOD = 14
ATR_PERIOD = 14

OVERSOLD_THRESHOLD = 30.0
OVERBOUGHT_THRESHOLD = 70.0


def categorize_rsi(rsi: float) -> RSICategory:
    """Oversold at or below 30, Overbought at or above 70, Neutral between."""
    if rsi >= OVERBOUGHT_THRESHOLD:
        return RSICategory.OVERBOUGHT
    if rsi <= OVERSOLD_THRESHOLD:
        return RSICategory.OVERSOLD
    return RSICategory.NEUTRAL


def rsi_direction(current: float, previous: Optional[float]) -> RSIDirection:
    if previous is None:
        return UNKNOWN_DIRECTION
    return RSIDirection(previous=categorize_rsi(previous), current=categorize_rsi(current))


def calculate_rsi(
    closes: Sequence[float],
    previous: Optional[float] = None,
    period: int = RSI_PERIOD,
) -> RSIResult:
    """Compute Wilder's RSI of ``closes`` and classify its move from ``previous``.

    - Seed: average gain and average loss (as positive magnitude) over the
      first ``period`` deltas.
    - Each later delta feeds one side; the other side decays by (period-1)/period.
    - RS = avg_gain / avg_loss, or 0 when avg_loss is 0.
    - Direction is computed from the rounded value, the one callers store.
    """
    if period <= 0:
        raise ValueError("period must be > 0")
    if len(closes) < period + 1:
        raise InsufficientDataError("RSI", period + 1, len(closes))

    closes = [float(x) for x in closes]
    deltas = [closes[i] - closes[i - 1] for i in range(1, len(closes))]

    avg_gain = sum(max(d, 0.0) for d in deltas[:period]) / period
    avg_loss = sum(max(-d, 0.0) for d in deltas[:period]) / period

    for d in deltas[period:]:
        avg_gain = (avg_gain * (period - 1) + max(d, 0.0)) / period
        avg_loss = (avg_loss * (period - 1) + max(-d, 0.0)) / period

    rs = avg_gain / avg_loss if avg_loss != 0.0 else 0.0
    value = round(100.0 - 100.0 / (1.0 + rs), 2)

    return RSIResult(value=value, direction=rsi_direction(value, previous))


def true_range(bar: PriceBar, previous_close: float) -> float:
    return max(
        bar.high - bar.low,
        abs(bar.high - previous_close),
        abs(bar.low - previous_close),
    )


def calculate_atr(bars: Sequence[PriceBar], period: int = ATR_PERIOD) -> float:
    """Average True Range with Wilder smoothing, rounded to 2 decimals.

    With exactly ``period + 1`` bars the result is the plain mean of the
    ``period`` true ranges.
    """
    if period <= 0:
        raise ValueError("period must be > 0")
    if len(bars) < period + 1:
        raise InsufficientDataError("ATR", period + 1, len(bars))

    ranges = [true_range(bars[i], bars[i - 1].close) for i in range(1, len(bars))]

    atr = sum(ranges[:period]) / period
    for tr in ranges[period:]:
        atr = (atr * (period - 1) + tr) / period

    return round(atr, 2)
