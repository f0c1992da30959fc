import logging
from datetime import date, datetime
from decimal import Decimal

import pytest

from config import PipelineSettings
from preprocess import DataPreprocessor, format_eu, format_us, period_for_month
from schema import StatementPeriod


@pytest.fixture
def pre():
    return DataPreprocessor()


# ---- Amounts -----------------------------------------------------------------


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("(100.00)", Decimal("-100.00")),
        ("$ 123.45", Decimal("123.45")),
        ("1,234.56", Decimal("1234.56")),
        ("1.234,56", Decimal("1234.56")),
        ("12,5", Decimal("12.5")),
        ("1,234", Decimal("1234")),
        ("100.00-", Decimal("-100.00")),
        ("–50.00", Decimal("-50.00")),
        ("S12.34", Decimal("512.34")),
        ("1O.5O", Decimal("10.50")),
        ("€ 9,99", Decimal("9.99")),
        ("1.2.3", Decimal("1.23")),
    ],
)
def test_parse_amount(pre, raw, expected):
    assert pre.parse_amount(raw) == expected


@pytest.mark.parametrize("raw", ["", "   ", None, "abc"])
def test_parse_amount_unrecoverable_is_zero(pre, raw):
    assert pre.parse_amount(raw) == 0


def test_parse_amount_out_of_range_is_zero(pre, caplog):
    with caplog.at_level(logging.ERROR):
        assert pre.parse_amount("150,000.00") == 0
    assert "outside the reasonable range" in caplog.text


def test_parse_amount_range_is_configurable():
    pre = DataPreprocessor(PipelineSettings(min_amount=Decimal("-10"), max_amount=Decimal("10")))
    assert pre.parse_amount("11.00") == 0
    assert pre.parse_amount("9.99") == Decimal("9.99")


def test_negative_zero_is_preserved(pre):
    parsed = pre.parse_amount("-0")
    assert parsed == 0
    assert parsed.is_signed()
    assert not pre.parse_amount("0").is_signed()


@pytest.mark.parametrize(
    "value",
    [Decimal("0.00"), Decimal("-0.00"), Decimal("0.50"), Decimal("1234.56"), Decimal("-1234.56"), Decimal("99999.99")],
)
def test_currency_round_trip(pre, value):
    us = pre.parse_amount(format_us(value))
    eu = pre.parse_amount(format_eu(value))
    assert us == value
    assert eu == value
    assert us.is_signed() == value.is_signed()
    assert eu.is_signed() == value.is_signed()


def test_formatters():
    assert format_us(Decimal("1234567.8")) == "1,234,567.80"
    assert format_eu(Decimal("1234567.8")) == "1.234.567,80"


# ---- Dates -------------------------------------------------------------------


@pytest.mark.parametrize(
    "raw",
    ["01/15/2023", "1/15/23", "Jan 15, 2023", "15 January 2023", "2023-01-15", "Jan. 15 2023", "01.15.2023", "01 15 2023"],
)
def test_parse_date_formats(pre, raw):
    assert pre.parse_date(raw) == date(2023, 1, 15)


@pytest.mark.parametrize("raw", ["02/30/2023", "13/45", "not a date", "", None])
def test_parse_date_rejects_invalid(pre, raw):
    assert pre.parse_date(raw) is None


def test_parse_date_bare_month_day_uses_default_year(pre):
    assert pre.parse_date("03/15", default_year=2022) == date(2022, 3, 15)
    assert pre.parse_date("Sept 5, 2023") == date(2023, 9, 5)


def test_has_explicit_year(pre):
    assert not pre.has_explicit_year("03/15")
    assert pre.has_explicit_year("03/15/24")


def test_same_year_period_forces_year(pre):
    period = StatementPeriod(start_date=date(2024, 1, 1), end_date=date(2024, 1, 31))
    assert pre.validate_and_correct_date(date(2025, 1, 15), datetime(2025, 2, 1), period) == date(2024, 1, 15)


def test_two_year_period_splits_on_end_month(pre):
    period = StatementPeriod(start_date=date(2023, 12, 15), end_date=date(2024, 1, 14))
    now = date(2024, 1, 20)
    assert pre.validate_and_correct_date(date(2024, 12, 28), now, period) == date(2023, 12, 28)
    assert pre.validate_and_correct_date(date(2024, 1, 5), now, period) == date(2024, 1, 5)


def test_future_date_without_period_moves_back_a_year(pre):
    assert pre.validate_and_correct_date(date(2024, 11, 2), date(2024, 3, 20)) == date(2023, 11, 2)
    assert pre.validate_and_correct_date(date(2024, 3, 20), date(2024, 3, 20)) == date(2024, 3, 20)


def test_explicit_year_is_kept_but_warned(pre, caplog):
    period = StatementPeriod(start_date=date(2024, 1, 1), end_date=date(2024, 1, 31))
    with caplog.at_level(logging.WARNING):
        corrected = pre.validate_and_correct_date(date(2022, 1, 15), date(2024, 2, 1), period, year_is_explicit=True)
    assert corrected == date(2022, 1, 15)
    assert "outside the statement period" in caplog.text


def test_leap_day_moved_to_non_leap_year(pre):
    period = StatementPeriod(start_date=date(2023, 2, 1), end_date=date(2023, 2, 28))
    assert pre.validate_and_correct_date(date(2024, 2, 29), date(2024, 3, 1), period) == date(2023, 2, 28)


@pytest.mark.parametrize(
    "filename, expected",
    [
        ("20240215_statement.pdf", date(2024, 2, 15)),
        ("2024-02-15 chase.pdf", date(2024, 2, 15)),
        ("/tmp/uploads/20231130.pdf", date(2023, 11, 30)),
        ("statement.pdf", None),
        ("20241345.pdf", None),
    ],
)
def test_parse_date_from_filename(pre, filename, expected):
    assert pre.parse_date_from_filename(filename) == expected


def test_period_for_month():
    assert period_for_month(date(2024, 2, 15)) == StatementPeriod(
        start_date=date(2024, 2, 1), end_date=date(2024, 2, 29)
    )


# ---- Descriptions ------------------------------------------------------------


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("POS DEBIT WHOLE FOODS #1234 03/15", "WHOLE FOODS #1234 03/15"),
        ("SVC CHG FOR ACCOUNT", "Service Charge FOR Account"),
        ("AMAZON MKTPLACE PMTS Amount: $45.67", "AMAZON MKTPLACE PMTS"),
        ("CHECKCARD 0315 STARBUCKS STORE 123", "Checkcard 0315 STARBUCKS STORE 123"),
        ("Card No. XXXX1234 GROCERY OUTLET", "GROCERY OUTLET"),
        ("Transaction Date: 03/15 COFFEE SHOP", "COFFEE SHOP"),
        ("Web ID: 12345 CITY UTILITY", "CITY UTILITY"),
        ("Dinner..", "Dinner"),
        ("XFER TO SAVINGS", "Transfer TO SAVINGS"),
        ("ACME PMT 12.50", "ACME Payment"),
        ("P.O.S. TARGET", "POS TARGET"),
        ("TRADER JOE'S * 552", "TRADER JOES 552"),
        ("- . -", ""),
        ("", ""),
    ],
)
def test_clean_description(pre, raw, expected):
    assert pre.clean_description(raw) == expected
