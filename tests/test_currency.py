"""
Tests for the Money type
"""

import pytest
from decimal import Decimal

from coop_banking.currency import Money, Currency
from coop_banking.errors import ValidationError


class TestMoney:

    def test_rounds_to_currency_precision(self):
        """Test amounts round half-up to currency precision"""
        assert Money(Decimal("10.005"), Currency.PHP).amount == Decimal("10.01")
        assert Money(Decimal("10.5"), Currency.JPY).amount == Decimal("11")

    def test_converts_non_decimal_amounts(self):
        """Test string amounts are converted to Decimal"""
        assert Money("12.30", Currency.PHP) == Money(Decimal("12.30"), Currency.PHP)

    def test_arithmetic(self):
        """Test money arithmetic operations"""
        a = Money(Decimal("100.00"), Currency.PHP)
        b = Money(Decimal("30.25"), Currency.PHP)
        assert a + b == Money(Decimal("130.25"), Currency.PHP)
        assert a - b == Money(Decimal("69.75"), Currency.PHP)
        assert a * Decimal("0.02") == Money(Decimal("2.00"), Currency.PHP)
        assert a / 3 == Money(Decimal("33.33"), Currency.PHP)
        assert -b == Money(Decimal("-30.25"), Currency.PHP)
        assert abs(-b) == b

    def test_mixed_currency_rejected(self):
        """Test operations across currencies are rejected"""
        with pytest.raises(ValueError, match="Cannot add"):
            Money(Decimal("1"), Currency.PHP) + Money(Decimal("1"), Currency.USD)
        with pytest.raises(ValueError, match="Cannot compare"):
            Money(Decimal("1"), Currency.PHP) < Money(Decimal("1"), Currency.USD)

    def test_predicates_and_formatting(self):
        """Test sign predicates and string formatting"""
        assert Money.zero(Currency.PHP).is_zero()
        assert Money(Decimal("1"), Currency.PHP).is_positive()
        assert Money(Decimal("-1"), Currency.PHP).is_negative()
        assert Money(Decimal("1234.5"), Currency.PHP).to_string() == "PHP 1,234.50"

    def test_currency_from_code(self):
        """Test looking up a currency by code"""
        assert Currency.from_code("php") == Currency.PHP
        with pytest.raises(ValueError, match="Unsupported currency"):
            Currency.from_code("XXX")

    def test_non_finite_amounts_rejected(self):
        """Test NaN and infinite amounts raise ValidationError"""
        with pytest.raises(ValidationError, match="finite"):
            Money(Decimal("NaN"), Currency.PHP)
        with pytest.raises(ValidationError, match="finite"):
            Money("Infinity", Currency.PHP)

    def test_out_of_range_amount_rejected(self):
        """Test an amount too large to quantize raises ValidationError"""
        with pytest.raises(ValidationError, match="out of range"):
            Money(Decimal("1E+30"), Currency.PHP)
