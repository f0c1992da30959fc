import re
import logging
from typing import List, Optional, Tuple

from preprocess import DataPreprocessor, MONTHS
from schema import BillSummary, RawTransactionLine

logger = logging.getLogger(__name__)

# "March 2024", "Jan, 2025", "SEPT. 2023" on a line by themselves
MONTH_HEADER = re.compile(r'^\s*(?P<month>[A-Za-z]{3,9})\.?,?\s+(?P<year>\d{4})\s*$')

# <date> <description> <amount>[ <running balance>]
TRANSACTION_ROW = re.compile(
    r'^\s*(?P<date>\d{1,2}[/-]\d{1,2}(?:[/-]\d{2,4})?)'
    r'\s+(?P<description>.+?)'
    r'\s+(?P<amount>\(?-?\$?\s?[0-9][0-9,.]*[.,]\d{2}\)?-?)'
    r'(?:\s+(?P<balance>-?\$?[0-9][0-9,.]*[.,]\d{2}))?\s*$'
)

NEW_BALANCE = re.compile(r'New\s*Balance\s*\$?\s*([0-9,.]+)', re.I)
DUE_DATE = re.compile(r'(?:Payment\s*Due\s*Date|Due\s*Date)\s*(\d{2}/\d{2}/\d{4})', re.I)
ACCOUNT_ENDING = re.compile(r'(?:Account\s*Ending|ending\s*in)\s*([\d-]+)', re.I)
PAYMENT_AMOUNT = re.compile(r'(?:AutoPay\s*Amount|Payment\s*Amount)\s*\$?\s*([0-9,.]+)', re.I)


class TransactionExtractor:
    """Extracts raw transaction rows and bill facts from page OCR text."""

    def __init__(self, preprocessor: Optional[DataPreprocessor] = None):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.preprocessor = preprocessor or DataPreprocessor()

    def extract_lines(self, text: str, context_year: Optional[int] = None) -> Tuple[List[RawTransactionLine], Optional[int]]:
        """
        Extract (date, description, amount) triples from one page.

        Month headers such as "March 2024" set the year used for later rows
        printed without one. The returned year lets the caller carry that
        context onto the next page.

        Args:
            text: OCR text of the page
            context_year: Year carried over from previous pages

        Returns:
            Tuple of (raw transaction lines, context year after this page)
        """
        lines: List[RawTransactionLine] = []

        for line_num, line in enumerate((text or '').splitlines()):
            if not line.strip():
                continue

            header_year = self._month_header_year(line)
            if header_year is not None:
                if header_year != context_year:
                    self.logger.debug(f"Month header on line {line_num}: year context now {header_year}")
                context_year = header_year
                continue

            match = TRANSACTION_ROW.match(line)
            if not match:
                continue

            date_string = match.group('date')
            description = match.group('description').strip()
            if not re.search(r'[A-Za-z]', description):
                self.logger.debug(f"Skipping line {line_num} without description text: {line!r}")
                continue

            lines.append(RawTransactionLine(
                date_string=date_string,
                description=description,
                amount_string=match.group('amount').strip(),
                has_explicit_year=self.preprocessor.has_explicit_year(date_string),
                context_year=context_year,
            ))

        self.logger.info(f"Extracted {len(lines)} transaction lines from page text")
        return lines, context_year

    @staticmethod
    def _month_header_year(line: str) -> Optional[int]:
        match = MONTH_HEADER.match(line)
        if not match or match.group('month').lower() not in MONTHS:
            return None
        return int(match.group('year'))

    def extract_bill_summary(self, text: str) -> BillSummary:
        """Read credit card bill facts (new balance, due date, account, payment amount)."""
        summary = BillSummary()
        if not text:
            return summary

        match = NEW_BALANCE.search(text)
        if match:
            summary.balance = self.preprocessor.parse_amount(match.group(1))

        match = DUE_DATE.search(text)
        if match:
            summary.due_date = self.preprocessor.parse_date(match.group(1))

        match = ACCOUNT_ENDING.search(text)
        if match:
            summary.account_number = match.group(1)

        match = PAYMENT_AMOUNT.search(text)
        if match:
            summary.payment_amount = self.preprocessor.parse_amount(match.group(1))

        if summary.balance is not None:
            self.logger.info(
                f"Bill summary: balance={summary.balance}, due={summary.due_date}, "
                f"account={summary.account_number}"
            )
        return summary
