"""
Value objects for the paper trading domain.

Value objects are immutable objects that represent concepts without identity.
They are defined by their attributes rather than a unique identifier.

All balance, price and fee arithmetic goes through `Amount`. Native floats
never touch money: floats handed in are converted through their shortest
string representation before any arithmetic happens.
"""

from decimal import Context, Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from pydantic import BaseModel, ConfigDict, field_validator

# 34 significant digits keeps thousands of chained buy/sell operations exact
# well below the 1e-9 lamport resolution.
DECIMAL_CONTEXT = Context(prec=34, rounding=ROUND_HALF_UP)


class DivisionByZeroError(ArithmeticError):
    """Raised when an Amount is divided by zero."""


AmountLike = Union["Amount", Decimal, int, float, str]


def _to_decimal(value) -> Decimal:
    if isinstance(value, Amount):
        return value.value
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("Booleans are not amounts")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(repr(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"Invalid decimal string: {value!r}")
    raise TypeError(f"Cannot convert {type(value).__name__} to Amount")


class Amount(BaseModel):
    """
    Immutable arbitrary-precision decimal amount.

    Used for native-asset balances (SOL), token quantities, prices and
    market metrics. Every arithmetic operation returns a new Amount.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    value: Decimal

    @field_validator("value", mode="before")
    @classmethod
    def coerce_value(cls, v):
        """Accept Amount, Decimal, int, float or numeric string input"""
        v = _to_decimal(v)
        if not v.is_finite():
            raise ValueError("Amount must be a finite number")
        return v

    @classmethod
    def of(cls, value: AmountLike) -> "Amount":
        """Build an Amount from any supported numeric input."""
        if isinstance(value, Amount):
            return value
        return cls(value=value)

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def add(self, other: AmountLike) -> "Amount":
        return Amount(value=DECIMAL_CONTEXT.add(self.value, _to_decimal(other)))

    def subtract(self, other: AmountLike) -> "Amount":
        return Amount(value=DECIMAL_CONTEXT.subtract(self.value, _to_decimal(other)))

    def multiply(self, other: AmountLike) -> "Amount":
        return Amount(value=DECIMAL_CONTEXT.multiply(self.value, _to_decimal(other)))

    def divide(self, other: AmountLike) -> "Amount":
        """Divide by another amount; raises DivisionByZeroError on a zero divisor."""
        divisor = _to_decimal(other)
        if divisor.is_zero():
            raise DivisionByZeroError(f"Division by zero: {self.to_string()} / 0")
        return Amount(value=DECIMAL_CONTEXT.divide(self.value, divisor))

    def abs(self) -> "Amount":
        return Amount(value=abs(self.value))

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def equals(self, other: AmountLike) -> bool:
        return self.value == _to_decimal(other)

    def greater_than(self, other: AmountLike) -> bool:
        return self.value > _to_decimal(other)

    def less_than(self, other: AmountLike) -> bool:
        return self.value < _to_decimal(other)

    def __lt__(self, other) -> bool:
        return self.value < _to_decimal(other)

    def __le__(self, other) -> bool:
        return self.value <= _to_decimal(other)

    def __gt__(self, other) -> bool:
        return self.value > _to_decimal(other)

    def __ge__(self, other) -> bool:
        return self.value >= _to_decimal(other)

    def is_zero(self) -> bool:
        return self.value.is_zero()

    def is_negative(self) -> bool:
        return self.value < 0

    def is_positive(self) -> bool:
        return self.value > 0

    @classmethod
    def max(cls, *values: AmountLike) -> "Amount":
        if not values:
            raise ValueError("Cannot find maximum of empty sequence")
        return cls.of(max((cls.of(v) for v in values), key=lambda a: a.value))

    @classmethod
    def min(cls, *values: AmountLike) -> "Amount":
        if not values:
            raise ValueError("Cannot find minimum of empty sequence")
        return cls.of(min((cls.of(v) for v in values), key=lambda a: a.value))

    # ------------------------------------------------------------------
    # Units
    # ------------------------------------------------------------------

    def to_base_units(self) -> "Amount":
        """Convert a SOL amount into lamports."""
        return self.multiply(LAMPORTS_PER_SOL)

    @classmethod
    def from_base_units(cls, lamports: AmountLike) -> "Amount":
        """Convert lamports into a SOL amount."""
        return cls.of(lamports).divide(LAMPORTS_PER_SOL)

    # ------------------------------------------------------------------
    # Formatting
    # ------------------------------------------------------------------

    def to_string(self, precision: int = None) -> str:
        """
        Render as fixed-point text.

        With `precision`, rounds half-up to that many decimal places.
        Without it, renders the exact value with trailing zeros trimmed,
        so the text parses back to an equal Amount.
        """
        if precision is not None:
            quantum = Decimal(1).scaleb(-precision)
            rounded = self.value.quantize(quantum, rounding=ROUND_HALF_UP, context=DECIMAL_CONTEXT)
            if rounded.is_zero():
                rounded = abs(rounded)
            return format(rounded, "f")

        if self.value.is_zero():
            return "0"
        text = format(self.value, "f")
        if "." in text:
            text = text.rstrip("0").rstrip(".")
        return text

    def __str__(self) -> str:
        return self.to_string()

    def __repr__(self) -> str:
        return f"Amount('{self.to_string()}')"


ZERO = Amount(value=0)
ONE = Amount(value=1)
HUNDRED = Amount(value=100)
LAMPORTS_PER_SOL = Amount(value=1_000_000_000)

BALANCE_TOLERANCE = Amount(value="0.000000001")


def balances_match(recorded: AmountLike, actual: AmountLike, tolerance: AmountLike = BALANCE_TOLERANCE) -> bool:
    """Check a recorded balance against an independently computed one."""
    diff = Amount.of(recorded).subtract(actual).abs()
    return diff <= tolerance


def balance_discrepancy(recorded: AmountLike, actual: AmountLike) -> Amount:
    """Signed difference between a recorded and an actual balance."""
    return Amount.of(recorded).subtract(actual)
