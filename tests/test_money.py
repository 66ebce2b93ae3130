"""Tests for money values and currency conversion."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from subtrackr.exceptions import CurrencyConversionError
from subtrackr.money import Money, StaticRateProvider


@pytest.fixture
def rates():
    """1 USD buys 0.5 EUR and 150 JPY."""
    return StaticRateProvider("USD", {"EUR": Decimal("0.5"), "JPY": Decimal("150")})


class TestMoney:
    """Arithmetic and formatting."""

    def test_exact_decimal_arithmetic(self):
        """Amounts add without floating-point error."""
        total = Money.of("0.10", "USD") + Money.of("0.20", "USD")

        assert total.amount == Decimal("0.30")

    def test_currency_is_normalized(self):
        """Currency codes are upper-cased."""
        assert Money.of("1", "eur").currency == "EUR"

    @pytest.mark.parametrize("code", ["", "US", "USDX", "U$D"])
    def test_invalid_currency_rejected(self, code):
        """Only three-letter codes are accepted."""
        with pytest.raises(ValidationError):
            Money.of("1", code)

    def test_quantize_rounds_half_up(self):
        """Half a cent rounds away from zero."""
        assert Money.of("0.125", "USD").quantize().amount == Decimal("0.13")
        assert Money.of("0.124", "USD").quantize().amount == Decimal("0.12")

    def test_minor_units(self):
        """Conversion to cents."""
        assert Money.of("12.99", "USD").to_minor_units() == 1299

    def test_str(self):
        """Formatted with thousands separator and two decimals."""
        assert str(Money.of("1234.5", "USD")) == "1,234.50 USD"

    def test_multiply(self):
        """Multiplying keeps the currency."""
        assert Money.of("9.99", "USD").multiply(3) == Money.of("29.97", "USD")

    def test_mixed_currency_requires_rates(self):
        """Adding across currencies without rates raises."""
        with pytest.raises(CurrencyConversionError):
            Money.of("1", "USD") + Money.of("1", "EUR")

    def test_add_with_conversion(self, rates):
        """The other value is converted into this value's currency."""
        total = Money.of("10", "USD").add(Money.of("5", "EUR"), rates)

        assert total.currency == "USD"
        assert total.amount == Decimal("20")

    def test_compare(self, rates):
        """compare() converts before comparing."""
        assert Money.of("10", "USD").compare(Money.of("5", "EUR"), rates) == 0
        assert Money.of("10", "USD").compare(Money.of("6", "EUR"), rates) == -1
        assert Money.of("2", "USD") > Money.of("1", "USD")


class TestStaticRateProvider:
    """Rate table lookups."""

    def test_cross_rate(self, rates):
        """Cross rates go through the base currency."""
        assert rates.get_rate("EUR", "JPY") == Decimal("300")

    def test_same_currency(self, rates):
        """Converting to the same currency is the identity."""
        assert rates.get_rate("GBP", "GBP") == Decimal("1")

    def test_missing_rate(self, rates):
        """Unknown currencies raise CurrencyConversionError."""
        with pytest.raises(CurrencyConversionError):
            Money.of("1", "GBP").convert("USD", rates)

    def test_zero_rate(self):
        """A zero rate cannot be used as a divisor."""
        provider = StaticRateProvider("USD", {"XAU": Decimal("0")})
        with pytest.raises(CurrencyConversionError):
            provider.get_rate("XAU", "USD")
