"""Fixed-point money values and currency conversion."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from pydantic import BaseModel, ConfigDict, field_validator

from .exceptions import CurrencyConversionError

CENT = Decimal("0.01")


class RateProvider(Protocol):
    """Source of exchange rates between two ISO currency codes."""

    def get_rate(self, source: str, target: str) -> Decimal:
        """Return how many units of `target` one unit of `source` buys."""
        ...


class Money(BaseModel):
    """An exact decimal amount in a single currency."""

    model_config = ConfigDict(frozen=True)

    amount: Decimal
    currency: str

    @field_validator("currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        code = value.strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError(f"Invalid ISO currency code: {value!r}")
        return code

    @classmethod
    def of(cls, amount: str | int | Decimal, currency: str) -> "Money":
        """Build a Money value from a string, int or Decimal amount."""
        return cls(amount=Decimal(str(amount)), currency=currency)

    @classmethod
    def zero(cls, currency: str) -> "Money":
        return cls(amount=Decimal("0"), currency=currency)

    def __str__(self) -> str:
        return f"{self.quantize().amount:,.2f} {self.currency}"

    def quantize(self) -> "Money":
        """Round to the minor unit (cents) using ROUND_HALF_UP."""
        return Money(
            amount=self.amount.quantize(CENT, rounding=ROUND_HALF_UP),
            currency=self.currency,
        )

    def to_minor_units(self) -> int:
        """Convert to integer minor units (cents)."""
        return int((self.amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    def convert(self, target: str, rates: RateProvider | None = None) -> "Money":
        """Convert into `target` currency using `rates`."""
        target = target.strip().upper()
        if target == self.currency:
            return self
        if rates is None:
            raise CurrencyConversionError(self.currency, target)
        rate = rates.get_rate(self.currency, target)
        return Money(amount=self.amount * rate, currency=target)

    def add(self, other: "Money", rates: RateProvider | None = None) -> "Money":
        """Add `other`, converting it into this value's currency if needed."""
        other = other.convert(self.currency, rates)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def subtract(self, other: "Money", rates: RateProvider | None = None) -> "Money":
        other = other.convert(self.currency, rates)
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def multiply(self, factor: int | Decimal) -> "Money":
        return Money(amount=self.amount * Decimal(factor), currency=self.currency)

    def compare(self, other: "Money", rates: RateProvider | None = None) -> int:
        """
        Compare with another value, converting across currencies if needed.

        Returns:
            -1, 0 or 1 like a classic cmp()
        """
        other = other.convert(self.currency, rates)
        if self.amount < other.amount:
            return -1
        if self.amount > other.amount:
            return 1
        return 0

    def __add__(self, other: "Money") -> "Money":
        if not isinstance(other, Money):
            return NotImplemented
        return self.add(other)

    def __sub__(self, other: "Money") -> "Money":
        if not isinstance(other, Money):
            return NotImplemented
        return self.subtract(other)

    def __lt__(self, other: "Money") -> bool:
        return self.compare(other) < 0

    def __le__(self, other: "Money") -> bool:
        return self.compare(other) <= 0

    def __gt__(self, other: "Money") -> bool:
        return self.compare(other) > 0

    def __ge__(self, other: "Money") -> bool:
        return self.compare(other) >= 0


class StaticRateProvider:
    """
    Rate provider backed by a fixed table relative to one base currency.

    `rates` maps a currency code to how many units of it one unit of the
    base currency buys. Cross rates go through the base currency.
    """

    def __init__(self, base_currency: str, rates: dict[str, Decimal]):
        self.base_currency = base_currency.upper()
        self.rates = {code.upper(): Decimal(rate) for code, rate in rates.items()}
        self.rates[self.base_currency] = Decimal("1")

    def get_rate(self, source: str, target: str) -> Decimal:
        source, target = source.upper(), target.upper()
        if source == target:
            return Decimal("1")
        if source not in self.rates or target not in self.rates:
            raise CurrencyConversionError(source, target)
        if self.rates[source] == 0:
            raise CurrencyConversionError(
                source, target, f"Rate for {source} is zero, cannot convert"
            )
        return self.rates[target] / self.rates[source]
