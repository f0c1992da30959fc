"""
Normalization of OCR-extracted statement fields: amounts, dates and descriptions.
"""
import re
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

from dateutil.relativedelta import relativedelta

from config import PipelineSettings
from schema import StatementPeriod

logger = logging.getLogger(__name__)

MONTHS = {
    'jan': 1, 'january': 1,
    'feb': 2, 'february': 2,
    'mar': 3, 'march': 3,
    'apr': 4, 'april': 4,
    'may': 5,
    'jun': 6, 'june': 6,
    'jul': 7, 'july': 7,
    'aug': 8, 'august': 8,
    'sep': 9, 'sept': 9, 'september': 9,
    'oct': 10, 'october': 10,
    'nov': 11, 'november': 11,
    'dec': 12, 'december': 12,
}

# Characters OCR engines commonly emit in place of digits
OCR_DIGIT_FIXES: List[Tuple[re.Pattern, str]] = [
    (re.compile(r'[Ss]'), '5'),
    (re.compile(r'B'), '8'),
    (re.compile(r'[Il]'), '1'),
    (re.compile(r'[Zz]'), '2'),
    (re.compile(r'[Gg]'), '6'),
    (re.compile(r'[Qq]'), '9'),
    (re.compile(r'[kKoO]'), '0'),
    (re.compile(r'[–—]'), '-'),
]

CURRENCY_AND_SPACE = re.compile(r'[$€£¥\s]')
NUMERIC_PREFIX = re.compile(r'-?(?:\d+(?:\.\d*)?|\.\d+)')

SEP = r'[-/. ]'
ISO_DATE = re.compile(rf'^(\d{{4}}){SEP}(\d{{1,2}}){SEP}(\d{{1,2}})$')
US_DATE = re.compile(rf'^(\d{{1,2}}){SEP}(\d{{1,2}}){SEP}(\d{{4}})$')
US_SHORT_DATE = re.compile(rf'^(\d{{1,2}}){SEP}(\d{{1,2}}){SEP}(\d{{2}})$')
MONTH_DAY_YEAR = re.compile(r'^([a-zA-Z]{3,})\.?\s+(\d{1,2})\s*,?\s*(\d{4})$')
DAY_MONTH_YEAR = re.compile(r'^(\d{1,2})\s+([a-zA-Z]{3,})\.?\s+(\d{4})$')
MONTH_DAY = re.compile(rf'^(\d{{1,2}}){SEP}(\d{{1,2}})$')

FILENAME_COMPACT_DATE = re.compile(r'^(\d{4})(\d{2})(\d{2})')
FILENAME_ISO_DATE = re.compile(r'^(\d{4})-(\d{2})-(\d{2})')

BOILERPLATE_PATTERNS = [
    re.compile(r'\b(?:Transaction Date|Posting Date|Effective Date)[:\s]*\d{1,2}[-/. ]\d{1,2}(?:[-/. ]\d{2,4})?', re.I),
    re.compile(r'\b(?:Card No\.|Account Number|Member Number|Account ending in)[:\s]*[X\d\s*-]+', re.I),
    re.compile(r'\b(?:Reference Number|Transaction ID|Ref #|Trace Number|Auth Code|Authorization #|Approval Code)[\s:]*[\w-]+', re.I),
    re.compile(r'\bInvoice Number\s+[\w-]+\s*', re.I),
    re.compile(r'\b(?:Web ID|PPD ID)[\s:]*\S+', re.I),
    re.compile(r'\b(?:Purchase from merchant|Payment to merchant)\b', re.I),
    re.compile(r'\bOnline payment\b', re.I),
    re.compile(r'\bInternet payment\b', re.I),
    re.compile(r'\bWeb payment(?:\s+to)?\b', re.I),
    re.compile(r'\b(?:payment|online payment|web payment)\s+to\b', re.I),
    re.compile(r'^(?:CHECKCARD PURCHASE|POS DEBIT|ACH DEBIT|DEBIT CARD PURCHASE|ONLINE TRANSFER TO)\s+', re.I),
]

EMBEDDED_AMOUNT_PATTERNS = [
    re.compile(r'\bAmount:\s*\$?[0-9,]+(?:\.\d{2})?\b', re.I),
    re.compile(r'\$[0-9,]+(?:\.\d{2})?(?=\s|$)'),
    re.compile(r'\b[0-9]+\.[0-9]{2}\b'),
]

PHRASE_EXPANSIONS = [
    (re.compile(r'\bSVC CHG FOR ACCOUNT\b', re.I), 'Service Charge FOR Account'),
    (re.compile(r'\bSVC CHG\b', re.I), 'Service Charge'),
    (re.compile(r'\bP\.O\.S\.', re.I), 'POS'),
    (re.compile(r'\bP O S\b', re.I), 'POS'),
]

ABBREVIATIONS = {
    'PMT': 'Payment',
    'DEPT': 'Department',
    'SVC': 'Service',
    'TRN': 'Transaction',
    'REF': 'Reference',
    'ACCT': 'Account',
    'PUR': 'Purchase',
    'XFER': 'Transfer',
    'PYMT': 'Payment',
    'WD': 'Withdrawal',
    'DEP': 'Deposit',
    'BAL': 'Balance',
    'STMT': 'Statement',
    'RECD': 'Received',
}

# Substrings shielded from the character filter
PRESERVED_PATTERNS = [
    (re.compile(r'#\d+'), '__STORE_NUM_'),
    (re.compile(r'\b\d{1,2}/\d{1,2}\b'), '__DATE_'),
]

DISALLOWED_CHARS = re.compile(r'[^a-zA-Z0-9\s\-&/.#_]')
PUNCTUATION_ONLY = re.compile(r'^[-&/.#\s]*$')


def format_us(amount: Decimal) -> str:
    """Render an amount as 1,234.56."""
    return f"{Decimal(amount):,.2f}"


def format_eu(amount: Decimal) -> str:
    """Render an amount as 1.234,56."""
    return format_us(amount).replace(',', '_').replace('.', ',').replace('_', '.')


def period_for_month(day: date) -> StatementPeriod:
    """Calendar month containing ``day``."""
    start = day.replace(day=1)
    end = start + relativedelta(months=1, days=-1)
    return StatementPeriod(start_date=start, end_date=end)


class DataPreprocessor:
    """Normalizes raw OCR strings into amounts, dates and clean descriptions."""

    def __init__(self, settings: Optional[PipelineSettings] = None):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.settings = settings or PipelineSettings()
        self.date_formats: List[Tuple[re.Pattern, Callable]] = [
            (ISO_DATE, lambda m, y: (int(m[1]), int(m[2]), int(m[3]))),
            (US_DATE, lambda m, y: (int(m[3]), int(m[1]), int(m[2]))),
            (US_SHORT_DATE, lambda m, y: (2000 + int(m[3]), int(m[1]), int(m[2]))),
            (MONTH_DAY_YEAR, lambda m, y: (int(m[3]), MONTHS.get(m[1].lower()), int(m[2]))),
            (DAY_MONTH_YEAR, lambda m, y: (int(m[3]), MONTHS.get(m[2].lower()), int(m[1]))),
            (MONTH_DAY, lambda m, y: (y, int(m[1]), int(m[2]))),
        ]

    # ------------------------------------------------------------------
    # Amounts
    # ------------------------------------------------------------------

    def parse_amount(self, amount_str: Union[str, None]) -> Decimal:
        """
        Parse a currency string read by OCR into a signed Decimal.

        Handles parenthesized negatives, OCR digit confusions, currency symbols,
        trailing minus signs and US/European separators. Never raises.

        Args:
            amount_str: Raw amount text

        Returns:
            Parsed amount, or Decimal(0) when the text can't be recovered or
            falls outside the configured range
        """
        if amount_str is None or not str(amount_str).strip():
            self.logger.warning(f'Input amount string is empty or invalid: "{amount_str}"')
            return Decimal(0)

        original = amount_str
        text = str(amount_str).strip()

        is_negative = False
        if text.startswith('(') and text.endswith(')'):
            is_negative = True
            text = text[1:-1]

        for pattern, digit in OCR_DIGIT_FIXES:
            text = pattern.sub(digit, text)

        text = CURRENCY_AND_SPACE.sub('', text)

        if text.endswith('-'):
            is_negative = True
            text = '-' + text[:-1]
        if text.startswith('-'):
            is_negative = True
            text = '-' + text.lstrip('-')

        number_str = self._normalize_separators(text)
        number_str = re.sub(r'[^-0-9.]', '', number_str)

        parts = number_str.split('.')
        if len(parts) > 2:
            number_str = parts[0] + '.' + ''.join(parts[1:])

        match = NUMERIC_PREFIX.match(number_str)
        if not match:
            self.logger.error(f'Parsed amount is NaN for amount string: "{original}" (cleaned: "{number_str}")')
            return Decimal(0)

        try:
            amount = Decimal(match.group())
        except InvalidOperation:
            self.logger.error(f'Parsed amount is NaN for amount string: "{original}" (cleaned: "{number_str}")')
            return Decimal(0)

        if is_negative:
            amount = amount.copy_abs().copy_negate()

        if amount > self.settings.max_amount or amount < self.settings.min_amount:
            self.logger.error(
                f'Amount {amount} from string "{original}" is outside the reasonable range '
                f'[{self.settings.min_amount}, {self.settings.max_amount}]. Setting to 0.'
            )
            return Decimal(0)

        return amount

    def _normalize_separators(self, text: str) -> str:
        """Resolve thousands vs decimal separators to a dot-decimal string."""
        has_dot = '.' in text
        has_comma = ',' in text

        if has_dot and has_comma:
            last_dot = text.rfind('.')
            last_comma = text.rfind(',')
            digits_after_comma = len(text) - last_comma - 1
            if last_comma > last_dot and 0 < digits_after_comma <= 2:
                # 1.234,56
                return text.replace('.', '').replace(',', '.')
            # 1,234.56 or ambiguous: the dot is the decimal point
            return text.replace(',', '')

        if has_comma:
            last_comma = text.rfind(',')
            digits_after_comma = len(text) - last_comma - 1
            if 0 < digits_after_comma <= 2:
                return text[:last_comma].replace(',', '') + '.' + text[last_comma + 1:]
            return text.replace(',', '')

        return text

    # ------------------------------------------------------------------
    # Dates
    # ------------------------------------------------------------------

    def parse_date(self, date_str: Optional[str], default_year: Optional[int] = None) -> Optional[date]:
        """
        Parse a statement date string.

        Supported, in order: YYYY-MM-DD, MM-DD-YYYY, MM-DD-YY, "Month DD, YYYY",
        "DD Month YYYY" and bare MM-DD. Separators may be ``/``, ``-``, ``.`` or
        a space.

        Args:
            date_str: Raw date text
            default_year: Year for bare MM/DD dates (defaults to the current year)

        Returns:
            The calendar date, or None if no format matched a valid date
        """
        if not date_str or not isinstance(date_str, str):
            self.logger.warning(f"Invalid date string provided: {date_str!r}")
            return None

        cleaned = re.sub(r'\s+', ' ', date_str.strip())
        year_for_partial = default_year if default_year is not None else date.today().year

        for pattern, components in self.date_formats:
            match = pattern.match(cleaned)
            if not match:
                continue
            year, month, day = components(match, year_for_partial)
            parsed = self._build_date(year, month, day)
            if parsed:
                return parsed
            self.logger.warning(
                f"Invalid date components for format {pattern.pattern}: "
                f"year={year}, month={month}, day={day}. Input: \"{date_str}\""
            )

        self.logger.error(f'Error parsing date string "{date_str}": unknown format or invalid date')
        return None

    def has_explicit_year(self, date_str: str) -> bool:
        """False for bare MM/DD strings whose year must come from context."""
        return not MONTH_DAY.match(re.sub(r'\s+', ' ', (date_str or '').strip()))

    @staticmethod
    def _build_date(year: Optional[int], month: Optional[int], day: Optional[int]) -> Optional[date]:
        if year is None or month is None or day is None:
            return None
        try:
            return date(year, month, day)
        except ValueError:
            return None

    @staticmethod
    def _with_year(day: date, year: int) -> date:
        try:
            return day.replace(year=year)
        except ValueError:
            # Feb 29 moved into a non-leap year
            return day.replace(year=year, day=28)

    def validate_and_correct_date(
        self,
        transaction_date: date,
        now: Union[date, datetime],
        statement_period: Optional[StatementPeriod] = None,
        year_is_explicit: bool = False,
    ) -> date:
        """
        Resolve the year of a transaction date against the statement period.

        A same-year period forces its year. A period spanning two years picks
        the end year for months up to the end month and the start year
        otherwise. Without a period, a date in the future moves back one year.
        Dates still outside the period are kept; only a warning is logged.

        Args:
            transaction_date: Date as parsed from OCR
            now: Processing date
            statement_period: Detected or inferred statement period
            year_is_explicit: True when the year was printed on the line or header

        Returns:
            The corrected date
        """
        today = now.date() if isinstance(now, datetime) else now
        corrected = transaction_date

        if statement_period is not None:
            if not year_is_explicit:
                start_year = statement_period.start_date.year
                end_year = statement_period.end_date.year
                if start_year == end_year:
                    inferred_year = start_year
                elif corrected.month <= statement_period.end_date.month:
                    inferred_year = end_year
                else:
                    inferred_year = start_year

                if inferred_year != corrected.year:
                    self.logger.warning(
                        f"Adjusting transaction year from {corrected.year} to {inferred_year} "
                        f"based on statement period ({statement_period}) for input date {transaction_date.isoformat()}."
                    )
                    corrected = self._with_year(corrected, inferred_year)
        elif not year_is_explicit and corrected > today:
            self.logger.warning(
                f"Transaction date {transaction_date.isoformat()} is in the future. "
                f"Assuming previous year {corrected.year - 1}. Current date: {today.isoformat()}."
            )
            corrected = self._with_year(corrected, corrected.year - 1)

        if statement_period is not None and not statement_period.contains(corrected):
            self.logger.warning(
                f"Final corrected date {corrected.isoformat()} is outside the statement period: [{statement_period}]"
            )

        return corrected

    def parse_date_from_filename(self, filename: str) -> Optional[date]:
        """Read a YYYYMMDD or YYYY-MM-DD prefix from a statement file name."""
        name = Path(filename).name
        for pattern in (FILENAME_COMPACT_DATE, FILENAME_ISO_DATE):
            match = pattern.match(name)
            if match:
                parsed = self._build_date(int(match[1]), int(match[2]), int(match[3]))
                if parsed:
                    self.logger.info(f"Parsed date {parsed.isoformat()} from filename {name}")
                    return parsed
        self.logger.info(f"No date pattern matched for filename: {name}")
        return None

    # ------------------------------------------------------------------
    # Descriptions
    # ------------------------------------------------------------------

    def clean_description(self, description: str) -> str:
        """
        Strip statement boilerplate from a merchant description.

        Args:
            description: Raw description text from the transaction line

        Returns:
            Cleaned description, or an empty string if nothing meaningful remains
        """
        cleaned = description or ''

        for pattern in BOILERPLATE_PATTERNS:
            cleaned = pattern.sub('', cleaned)

        cleaned = re.sub(r'\.{2,}$', '', cleaned)
        cleaned = re.sub(r'\s+\.$', '', cleaned)

        for pattern in EMBEDDED_AMOUNT_PATTERNS:
            cleaned = pattern.sub('', cleaned)

        for pattern, replacement in PHRASE_EXPANSIONS:
            cleaned = pattern.sub(replacement, cleaned)

        for abbr, full in ABBREVIATIONS.items():
            cleaned = re.sub(rf'\b{re.escape(abbr)}\b', full, cleaned, flags=re.I)

        cleaned = re.sub(r'\bCHECKCARD\s+PAYMENT\b', 'Checkcard Payment', cleaned, flags=re.I)
        cleaned = re.sub(r'\bCHECKCARD\b', 'Checkcard', cleaned, flags=re.I)

        cleaned = self._filter_characters(cleaned)

        cleaned = re.sub(r'\s+', ' ', cleaned).strip()

        for char in ('-', r'\.', '#', '&', '/'):
            cleaned = re.sub(rf'\s+{char}\s+', ' ', cleaned)
        cleaned = re.sub(r'^[-&/.#]\s+', '', cleaned)
        cleaned = re.sub(r'\s+[-&/.#]$', '', cleaned)
        cleaned = re.sub(r'^[-&/.#]+$', '', cleaned)

        cleaned = re.sub(r'\.{2,}$', '', cleaned)

        if PUNCTUATION_ONLY.match(cleaned):
            return ''

        return cleaned.strip()

    def _filter_characters(self, text: str) -> str:
        """Drop disallowed characters while keeping store numbers and MM/DD dates intact."""
        preserved = []
        for pattern, prefix in PRESERVED_PATTERNS:
            matches: List[str] = []

            def shield(match, matches=matches, prefix=prefix):
                matches.append(match.group())
                return f"{prefix}{len(matches) - 1}__"

            text = pattern.sub(shield, text)
            preserved.append((prefix, matches))

        text = DISALLOWED_CHARS.sub('', text)

        for prefix, matches in preserved:
            for i, original in enumerate(matches):
                text = text.replace(f"{prefix}{i}__", original, 1)

        return text.replace('_', '')
