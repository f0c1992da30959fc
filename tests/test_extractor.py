from datetime import date
from decimal import Decimal

import pytest

from extractor import TransactionExtractor


@pytest.fixture
def extractor():
    return TransactionExtractor()


def test_rows_with_and_without_running_balance(extractor):
    text = (
        "DATE DESCRIPTION AMOUNT BALANCE\n"
        "01/05 STARBUCKS STORE 1234 5.75 994.25\n"
        "01/06 AMAZON MKTP US*2K3 $23.10\n"
        "01/07 REFUND ACME (12.00)\n"
        "01/08/2024 ATM WITHDRAWAL 100.00-\n"
    )
    lines, context_year = extractor.extract_lines(text)

    assert [(l.date_string, l.description, l.amount_string) for l in lines] == [
        ("01/05", "STARBUCKS STORE 1234", "5.75"),
        ("01/06", "AMAZON MKTP US*2K3", "$23.10"),
        ("01/07", "REFUND ACME", "(12.00)"),
        ("01/08/2024", "ATM WITHDRAWAL", "100.00-"),
    ]
    assert [l.has_explicit_year for l in lines] == [False, False, False, True]
    assert context_year is None


def test_noise_lines_are_skipped(extractor):
    text = "Page 1 of 3\n\n   \nTotal fees this period 0.00 maybe\n12/31 42.00\nrandom OCR garbage ~~ 1l.0O\n"
    lines, _ = extractor.extract_lines(text)
    assert lines == []


def test_month_header_sets_context_year(extractor):
    text = "March 2024\n03/02 UBER TRIP 9.00\nJan, 2025\n01/04 LYFT RIDE 11.00\n"
    lines, context_year = extractor.extract_lines(text)

    assert [l.context_year for l in lines] == [2024, 2025]
    assert context_year == 2025
    assert all("2024" not in l.description for l in lines)


def test_context_year_is_carried_in(extractor):
    lines, context_year = extractor.extract_lines("02/02 NETFLIX 15.99\n", context_year=2023)
    assert lines[0].context_year == 2023
    assert context_year == 2023


def test_non_month_words_are_not_headers(extractor):
    _, context_year = extractor.extract_lines("Balance 2024\nTotal 1999\n")
    assert context_year is None


def test_bill_summary(extractor):
    text = (
        "Account Ending 4321\n"
        "New Balance $2,345.67\n"
        "Payment Due Date 04/15/2024\n"
        "AutoPay Amount $35.00\n"
    )
    summary = extractor.extract_bill_summary(text)

    assert summary.balance == Decimal("2345.67")
    assert summary.due_date == date(2024, 4, 15)
    assert summary.account_number == "4321"
    assert summary.payment_amount == Decimal("35.00")


def test_bill_summary_absent(extractor):
    summary = extractor.extract_bill_summary("01/05 STARBUCKS 5.75")
    assert summary.balance is None
    assert summary.due_date is None
    assert summary.account_number is None


def test_bill_summary_merge_keeps_first_page_facts(extractor):
    first = extractor.extract_bill_summary("New Balance $100.00")
    second = extractor.extract_bill_summary("New Balance $999.00\nending in 77")
    merged = first.merge(second)
    assert merged.balance == Decimal("100.00")
    assert merged.account_number == "77"
