from datetime import date

import pytest

from period_detector import StatementPeriodDetector
from schema import StatementPeriod


@pytest.fixture
def detector():
    return StatementPeriodDetector(today=date(2024, 3, 20))


def _period(start, end):
    return StatementPeriod(start_date=start, end_date=end)


def test_statement_period_phrase(detector):
    text = "ACME BANK\nStatement Period: 01/01/2023 to 01/31/2023\nPage 1"
    assert detector.detect(text) == _period(date(2023, 1, 1), date(2023, 1, 31))


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Billing Period: Jan 1, 2024 - Jan 31, 2024", _period(date(2024, 1, 1), date(2024, 1, 31))),
        ("Billing Cycle 12/15/2023 through 01/14/2024", _period(date(2023, 12, 15), date(2024, 1, 14))),
        ("Opening Date 12/15/23 Closing Date 01/14/24", _period(date(2023, 12, 15), date(2024, 1, 14))),
        ("Your activity from 02/01/2024 to 02/29/2024", _period(date(2024, 2, 1), date(2024, 2, 29))),
        ("activity between 3 March 2024 and 2 April 2024", _period(date(2024, 3, 3), date(2024, 4, 2))),
        ("Statement Dates: 2024-05-01 - 2024-05-31", _period(date(2024, 5, 1), date(2024, 5, 31))),
    ],
)
def test_phrase_patterns(detector, text, expected):
    assert detector.detect(text) == expected


def test_reversed_match_is_not_swapped_but_fallback_applies(detector, caplog):
    text = "Statement Period: 01/31/2023 to 01/01/2023"
    period = detector.detect(text)
    assert "Discarding reversed statement period" in caplog.text
    # The fallback scan still sees both dates and orders them
    assert period == _period(date(2023, 1, 1), date(2023, 1, 31))


def test_fallback_uses_earliest_and_latest_dates(detector):
    text = "01/03 COFFEE 4.50\n01/17 GROCERIES 80.00\n01/09 GAS 30.00"
    assert detector.detect(text) == _period(date(2024, 1, 3), date(2024, 1, 17))


def test_single_date_yields_nothing(detector):
    assert detector.detect("Printed on 01/05/2024 and again 01/05/2024") is None


def test_no_dates_yields_nothing(detector):
    assert detector.detect("Thank you for banking with us") is None
    assert detector.detect("") is None
