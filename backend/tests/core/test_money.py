import pytest

from app.services.errors import CurrencyMismatch
from app.services.money import Money, sum_money


def test_arithmetic_stays_in_minor_units():
    total = Money(3000, "kes") + Money(1500, "KES")
    assert total == Money(4500, "KES")
    assert total - Money(2000, "KES") == Money(2500, "KES")
    assert Money(1, "KES") < Money(2, "KES")
    assert Money(2, "KES") <= Money(2, "KES")


def test_mixed_currencies_are_rejected():
    with pytest.raises(CurrencyMismatch):
        Money(100, "KES") + Money(100, "USD")
    with pytest.raises(CurrencyMismatch):
        sum_money([Money(100, "KES"), Money(100, "USD")], "KES")


def test_amount_must_be_integer():
    with pytest.raises(TypeError):
        Money(10.5, "KES")
    with pytest.raises(TypeError):
        Money(True, "KES")


def test_format_and_sum():
    assert Money(123456, "KES").format() == "KES 1,234.56"
    assert Money(-5, "USD").format() == "-USD 0.05"
    assert sum_money([], "KES") == Money.zero("KES")
    assert not Money.zero("KES").is_positive
