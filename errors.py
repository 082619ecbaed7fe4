# errors.py
"""Error taxonomy for the indicator service.

- InsufficientDataError: history shorter than an indicator window. Local to one symbol.
- SourceUnavailableError: the market data provider is unreachable or erroring.
- SymbolUnknownError: the provider rejected a symbol.
"""

from typing import Optional


class IndicatorServiceError(Exception):
    """Base class for every error raised by the service."""


class InsufficientDataError(IndicatorServiceError, ValueError):
    def __init__(self, indicator: str, required: int, actual: int):
        self.indicator = indicator
        self.required = required
        self.actual = actual
        super().__init__(
            f"Not enough data to calculate {indicator}: need {required} points, got {actual}"
        )


class SourceUnavailableError(IndicatorServiceError):
    pass


class SymbolUnknownError(IndicatorServiceError):
    def __init__(self, symbol: str, detail: Optional[str] = None):
        self.symbol = symbol
        message = f"Unknown symbol {symbol}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
