"""
Price Validation

Rejects outlier prices before they reach the strategy engine by comparing
each new price against a rolling window of recent prices and against the
latest price seen from a different source.

Validation is asymmetric: a drop below the rolling average may deviate 1.5x
as far as a rise above it, since sharp drops are common for new tokens.
"""

from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional

from core.common.logger import logger
from core.config.models import PriceValidationConfig
from core.domain.models.value_objects import Amount, HUNDRED, ONE, ZERO
from core.domain.position import now_ms

DOWNSIDE_TOLERANCE_FACTOR = Amount.of("1.5")


@dataclass(frozen=True)
class PricePoint:
    price: Amount
    timestamp: int
    source: str


@dataclass(frozen=True)
class PriceValidationResult:
    is_valid: bool
    confidence: float
    reason: str
    suggested_price: Optional[Amount] = None


class PriceValidator:
    """Rolling-window price sanity check, one window per token."""

    def __init__(self, window_size: int = 12, max_deviation="0.05", min_data_points: int = 6):
        self.window_size = window_size
        self.max_deviation = Amount.of(max_deviation)
        self.min_data_points = min_data_points
        self._histories: Dict[str, Deque[PricePoint]] = {}
        self._log = logger.bind(component="price_validation")

    @classmethod
    def from_config(cls, config: PriceValidationConfig) -> "PriceValidator":
        return cls(
            window_size=config.window_size,
            max_deviation=config.max_deviation,
            min_data_points=config.min_data_points,
        )

    def add_price_point(self, token_id: str, price, source: str, timestamp: int = None) -> None:
        """Append a price to the token's window, dropping the oldest beyond window_size."""
        history = self._histories.setdefault(token_id, deque(maxlen=self.window_size))
        history.append(PricePoint(price=Amount.of(price), timestamp=timestamp or now_ms(), source=source))

    def validate_price(self, token_id: str, price, source: str) -> PriceValidationResult:
        """
        Validate a new price against the token's history.

        Args:
            token_id: Token mint address
            price: Price to validate
            source: Name of the feed the price came from

        Returns:
            PriceValidationResult; invalid results carry the rolling average
            as suggested_price
        """
        price = Amount.of(price)
        history = self._histories.get(token_id)

        if not history or len(history) < self.min_data_points:
            return PriceValidationResult(is_valid=True, confidence=0.5, reason="Insufficient historical data")

        rolling_average = self._rolling_average(history)

        other = self._latest_from_other_source(history, source)
        if other is not None and other.price.is_positive():
            divergence = price.subtract(other.price).abs().divide(other.price)
            if divergence > self.max_deviation:
                return PriceValidationResult(
                    is_valid=False,
                    confidence=self._confidence(divergence),
                    reason=f"Price sources diverge by {divergence.multiply(HUNDRED).to_string(2)}%",
                    suggested_price=rolling_average,
                )

        if rolling_average.is_zero():
            return PriceValidationResult(is_valid=True, confidence=0.5, reason="Rolling average is zero")

        deviation = price.subtract(rolling_average).divide(rolling_average)
        abs_deviation = deviation.abs()
        max_allowed = (
            self.max_deviation if deviation.is_positive()
            else self.max_deviation.multiply(DOWNSIDE_TOLERANCE_FACTOR)
        )

        if abs_deviation > max_allowed:
            self._log.debug(f"Rejected price {price} for {token_id}: average {rolling_average}")
            return PriceValidationResult(
                is_valid=False,
                confidence=self._confidence(abs_deviation),
                reason=(
                    f"Price deviation ({abs_deviation.multiply(HUNDRED).to_string(2)}%) exceeds "
                    f"maximum allowed ({max_allowed.multiply(HUNDRED).to_string(2)}%)"
                ),
                suggested_price=rolling_average,
            )

        return PriceValidationResult(
            is_valid=True,
            confidence=self._confidence(abs_deviation),
            reason="Price within acceptable range",
        )

    @staticmethod
    def _confidence(deviation: Amount) -> float:
        return float(Amount.max(ZERO, ONE.subtract(deviation)).value)

    @staticmethod
    def _rolling_average(history) -> Amount:
        total = ZERO
        for point in history:
            total = total.add(point.price)
        return total.divide(len(history))

    @staticmethod
    def _latest_from_other_source(history, source: str) -> Optional[PricePoint]:
        for point in reversed(history):
            if point.source != source:
                return point
        return None

    def clear_history(self, token_id: str) -> None:
        self._histories.pop(token_id, None)

    def get_history(self, token_id: str) -> List[PricePoint]:
        return list(self._histories.get(token_id, ()))
