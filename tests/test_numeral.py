from decimal import Decimal

import pytest

from deal_scraper.numeral import parse_amount, parse_count, quantize_amount


def test_parse_amount_handles_uk_format():
    assert parse_amount("1,250") == Decimal("1250")
    assert parse_amount("£1,250.50") == Decimal("1250.50")
    assert parse_amount("175") == Decimal("175")


def test_parse_amount_drops_non_breaking_spaces():
    assert parse_amount("1\u00a0000") == Decimal("1000")


@pytest.mark.parametrize("raw", ["", "   ", "£", "abc", "-5", "NaN", "Infinity"])
def test_parse_amount_rejects_bad_values(raw):
    with pytest.raises(ValueError):
        parse_amount(raw)


def test_parse_count_accepts_digits_only():
    assert parse_count("2") == 2
    assert parse_count("1,000") == 1000
    with pytest.raises(ValueError):
        parse_count("two")


def test_quantize_amount_rounds_to_pennies():
    assert quantize_amount(Decimal("150")) == Decimal("150.00")
    assert quantize_amount(Decimal("99.999")) == Decimal("100.00")
