"""
Detection of the date range a statement covers.
"""
import re
import logging
from datetime import date
from typing import List, Optional

from preprocess import DataPreprocessor
from schema import StatementPeriod

logger = logging.getLogger(__name__)

DATE = (
    r'(\d{1,2}[-/. ]\d{1,2}[-/. ]\d{2,4}'
    r'|\d{4}[-/. ]\d{1,2}[-/. ]\d{1,2}'
    r'|[A-Za-z]{3,9}\.?\s+\d{1,2},?\s+\d{2,4}'
    r'|\d{1,2}\s+[A-Za-z]{3,9}\.?\s+\d{2,4})'
)
RANGE_SEP = r'\s*(?:to|-|through|–)\s*'

PERIOD_PATTERNS = [
    re.compile(
        rf'(?:Statement Period|Billing Period|Account Period|Billing Cycle|Activity from)\s*[:\-]?\s*{DATE}{RANGE_SEP}{DATE}',
        re.I,
    ),
    re.compile(rf'Statement Date\s*[:\-]?\s*{DATE}{RANGE_SEP}{DATE}', re.I),
    re.compile(
        rf'(?:Opening Date|Statement open)\s*[:\-]?\s*{DATE}\s*(?:Closing Date|Statement close)\s*[:\-]?\s*{DATE}',
        re.I,
    ),
    re.compile(rf'from\s*{DATE}\s*(?:to|through|–)\s*{DATE}', re.I),
    re.compile(rf'activity between\s*{DATE}\s*(?:and|&)\s*{DATE}', re.I),
    re.compile(rf'Statement Dates\s*[:\-]?\s*{DATE}{RANGE_SEP}{DATE}', re.I),
]

LOOSE_DATE = re.compile(
    r'\b(?:\d{1,4}[-/. ]\d{1,2}(?:[-/. ]\d{1,4})?'
    r'|[A-Za-z]{3,9}\.?\s\d{1,2},?\s\d{2,4}'
    r'|\d{1,2}\s[A-Za-z]{3,9}\.?\s\d{2,4})\b'
)


class StatementPeriodDetector:
    """Finds the statement period in the OCR text of a page."""

    def __init__(self, preprocessor: Optional[DataPreprocessor] = None, today: Optional[date] = None):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.preprocessor = preprocessor or DataPreprocessor()
        self.today = today

    def detect(self, text: str) -> Optional[StatementPeriod]:
        """
        Detect the statement period.

        Phrase-anchored patterns are tried first, in order. A reversed match is
        discarded, never swapped. If no pattern yields a valid range, the
        earliest and latest dates anywhere in the text are used.

        Args:
            text: Full OCR text of one page

        Returns:
            The detected period, or None
        """
        if not text:
            return None

        period = self._detect_from_patterns(text)
        if period:
            return period

        return self._detect_from_all_dates(text)

    def _parse(self, date_str: str) -> Optional[date]:
        year = self.today.year if self.today else None
        return self.preprocessor.parse_date(date_str.strip().rstrip(','), default_year=year)

    def _detect_from_patterns(self, text: str) -> Optional[StatementPeriod]:
        for pattern in PERIOD_PATTERNS:
            match = pattern.search(text)
            if not match:
                continue

            start = self._parse(match.group(1))
            end = self._parse(match.group(2))
            if not start or not end:
                self.logger.debug(f"Unparseable dates for period pattern: {match.group(0)!r}")
                continue

            if start > end:
                self.logger.warning(
                    f"Discarding reversed statement period {start.isoformat()} - {end.isoformat()} "
                    f"from {match.group(0)!r}"
                )
                continue

            period = StatementPeriod(start_date=start, end_date=end)
            self.logger.info(f"Detected statement period: {period}")
            return period

        return None

    def _detect_from_all_dates(self, text: str) -> Optional[StatementPeriod]:
        unique_dates: List[date] = sorted({
            parsed
            for candidate in LOOSE_DATE.findall(text)
            for parsed in [self._parse(candidate)]
            if parsed is not None
        })

        if len(unique_dates) < 2:
            return None

        start, end = unique_dates[0], unique_dates[-1]
        if not start < end:
            return None

        period = StatementPeriod(start_date=start, end_date=end)
        self.logger.info(f"Inferred statement period from {len(unique_dates)} dates on the page: {period}")
        return period
