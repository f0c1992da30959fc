import re
import logging
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Union

from category_rules import CategoryRuleEngine, load_category_rules
from config import PipelineSettings
from llm_client import SmartCategorizationClient, SmartCategorizationError, create_llm_client
from schema import CategoryRule, TransactionType

logger = logging.getLogger(__name__)

SMART_ENABLED_KEY = 'smartCategorization.enabled'
SMART_API_KEY_KEY = 'smartCategorization.apiKey'
SMART_MODEL_KEY = 'smartCategorization.model'


def _word_pattern(keyword: str) -> re.Pattern:
    return re.compile(rf'\b{re.escape(keyword)}\b', re.I)


PEER_TO_PEER = re.compile(r'\b(?:zelle|venmo)\b', re.I)
P2P_INCOMING = re.compile(r'\bfrom\b', re.I)
P2P_OUTGOING = re.compile(r'\b(?:to|payment)\b', re.I)

INVESTMENT_KEYWORDS = [
    'vanguard', 'fidelity', 'schwab', 'investment', 'etf', 'mutual fund',
    'stocks', 'bonds', '401k', 'ira', 'retirement',
]

INCOME_KEYWORDS = [
    'payroll', 'direct deposit', 'salary', 'interest', 'refund', 'deposit from',
    'transfer from', 'dfas-in', 'payment from', 'credit', 'deposit', 'cash deposit',
    'mobile deposit', 'payment received', 'dividend', 'reimbursement', 'cashback reward',
]

EXPENSE_KEYWORDS = [
    'payment to', 'pmt to', 'purchase', 'withdraw', 'debit', 'atm', 'fee', 'bill',
    'transfer to', 'ach pmt', 'amex pmt', 'chase pmt', 'bill pay', 'withdrawal',
    'utility', 'insurance', 'recurring payment', 'subscription', 'service fee',
    'online purchase', 'pos debit', 'atm withdrawal',
]

PURCHASE_WORD = re.compile(r'\bpur\b|\bpurchase\b', re.I)

INCOME_CATEGORY_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r'\b(payroll|salary|direct deposit|dfas|employment|wages|biweekly|monthly pay)\b', re.I), 'Salary'),
    (re.compile(r'\b(interest|dividend|investment|vanguard|fidelity|schwab|401k|ira)\b', re.I), 'Investment Income'),
    (re.compile(r'\b(cash deposit|mobile deposit|deposit from|transfer from)\b', re.I), 'Other Income'),
    (re.compile(r'\b(refund|reimbursement|cashback|rebate)\b', re.I), 'Refunds'),
]

CREDIT_CARD_PAYMENT_PHRASES = [
    'payment to chase card',
    'amex e-payment',
    'bill pay to citi card',
    'credit card pmt',
    'online payment thank you',
]
CARD_REFERENCE = re.compile(r'\b(?:store card|credit card)\b', re.I)
CARD_PAYMENT = re.compile(r'\b(?:ach pmt|payment)\b', re.I)
ACH_PAYMENT = re.compile(r'\bach pmt\b', re.I)
INSURANCE_PREMIUM = re.compile(r'\binsurance premium\b', re.I)

# Ordered: earlier groups win (pet care before groceries so "dog food" isn't groceries)
EXPENSE_CATEGORY_KEYWORDS: List[Tuple[str, List[str]]] = [
    ('Rent', ['rent', 'mortgage', 'newrez-shellpoin', 'housing']),
    ('Pet Care', ['petco', 'petsmart', 'vet', 'veterinarian', 'pet food', 'dog food', 'cat food']),
    ('Groceries', ['grocery', 'trader', 'whole foods', 'safeway', 'food', 'supermarket', 'market',
                   'fresh market', 'aldi', 'lidl', 'publix', 'kroger']),
    ('Utilities', ['utility', 'comcast', 'umc inc', 'electric', 'water', 'gas', 'internet', 'pge',
                   'pg&e', 'con edison', 'spectrum', 'verizon fios', 'trash', 'recycling']),
    ('Transport', ['uber', 'lyft', 'transit', 'parking', 'gas station', 'shell', 'chevron', 'gasoline',
                   'fuel', 'metro', 'subway', 'taxi', 'parking fee', 'toll']),
    ('Entertainment', ['netflix', 'spotify', 'hulu', 'disney', 'movie', 'theatre', 'restaurant', 'bar',
                       'cafe', 'ticketmaster', 'eventbrite', 'amc', 'regal', 'starbucks', 'coffee shop',
                       'dining']),
    ('Healthcare', ['pharmacy', 'cvs', 'walgreens', 'doctor', 'dentist', 'dental', 'hospital',
                    'urgent care', 'health insurance']),
    ('Shopping', ['amazon', 'target', 'walmart', 'best buy', 'macys', 'online shopping', 'retail']),
    ('Education', ['tuition', 'student loan', 'coursera', 'udemy', 'books', 'bookstore', 'campus']),
    ('Home Improvement', ['home depot', 'lowes', "lowe's", 'ace hardware', 'hardware']),
    ('Personal Care', ['salon', 'barber', 'barbershop', 'haircut', 'spa']),
    ('Insurance', ['state farm', 'geico', 'progressive', 'allstate', 'car insurance', 'home insurance']),
    ('Childcare', ['daycare', 'preschool', 'babysitter']),
    ('Gifts & Donations', ['gift', 'donation', 'charity', 'church']),
]

_INVESTMENT_PATTERNS = [_word_pattern(kw) for kw in INVESTMENT_KEYWORDS]
_INCOME_PATTERNS = [_word_pattern(kw) for kw in INCOME_KEYWORDS]
_EXPENSE_PATTERNS = [_word_pattern(kw) for kw in EXPENSE_KEYWORDS]
_CREDIT_CARD_PATTERNS = [_word_pattern(kw) for kw in CREDIT_CARD_PAYMENT_PHRASES]
_EXPENSE_CATEGORY_PATTERNS = [
    (_word_pattern(keyword), category)
    for category, keywords in EXPENSE_CATEGORY_KEYWORDS
    for keyword in keywords
]


class TransactionCategorizer:
    """Classifies transactions as income/expense and assigns a category."""

    def __init__(self, settings: Optional[PipelineSettings] = None, preference_store=None,
                 rule_engine: Optional[CategoryRuleEngine] = None,
                 llm_client: Optional[SmartCategorizationClient] = None):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.settings = settings or PipelineSettings()
        self.preference_store = preference_store
        self.rule_engine = rule_engine or CategoryRuleEngine()
        self.llm_client = llm_client
        self._clients: Dict[Tuple[str, str], SmartCategorizationClient] = {}

    def classify(self, description: str, amount: Union[Decimal, float]) -> TransactionType:
        """
        Decide whether a transaction is income or expense.

        Args:
            description: Cleaned description
            amount: Signed amount as parsed from the statement

        Returns:
            TransactionType.INCOME or TransactionType.EXPENSE
        """
        desc = (description or '').lower()

        if PEER_TO_PEER.search(desc):
            if P2P_INCOMING.search(desc):
                return TransactionType.INCOME
            if P2P_OUTGOING.search(desc):
                return TransactionType.EXPENSE

        # Investments count as savings, not spending
        if any(p.search(desc) for p in _INVESTMENT_PATTERNS):
            return TransactionType.INCOME

        if any(p.search(desc) for p in _INCOME_PATTERNS):
            return TransactionType.INCOME

        if any(p.search(desc) for p in _EXPENSE_PATTERNS):
            return TransactionType.EXPENSE

        if PURCHASE_WORD.search(desc):
            return TransactionType.EXPENSE

        return TransactionType.EXPENSE if amount < 0 else TransactionType.INCOME

    def determine_income_category(self, description: str) -> str:
        for pattern, category in INCOME_CATEGORY_PATTERNS:
            if pattern.search(description or ''):
                return category
        return 'Other Income'

    def determine_expense_category(self, description: str) -> str:
        """
        Map an expense description to a category.

        Credit card payments are checked first, then insurance premiums, then
        the ordered keyword table. All keywords match on word boundaries.
        """
        desc = (description or '').lower()

        if any(p.search(desc) for p in _CREDIT_CARD_PATTERNS):
            return 'Credit Card Payment'

        if CARD_REFERENCE.search(desc) and CARD_PAYMENT.search(desc):
            return 'Credit Card Payment'

        if ACH_PAYMENT.search(desc) and 'rent' not in desc and 'utility' not in desc:
            return 'Credit Card Payment'

        if INSURANCE_PREMIUM.search(desc):
            return 'Insurance'

        for pattern, category in _EXPENSE_CATEGORY_PATTERNS:
            if pattern.search(desc):
                return category

        return 'Other Expenses'

    def categorize_builtin(self, description: str, amount: Union[Decimal, float]) -> str:
        if self.classify(description, amount) == TransactionType.INCOME:
            return self.determine_income_category(description)
        return self.determine_expense_category(description)

    def categorize(self, description: str, amount: Union[Decimal, float], when: Optional[date] = None,
                   rules: Optional[List[CategoryRule]] = None) -> str:
        """
        Assign a category: custom rules, then AI suggestion, then built-in keywords.

        Args:
            description: Cleaned description
            amount: Signed amount
            when: Transaction date, passed to the AI collaborator
            rules: Custom rules; read from the preference store when omitted

        Returns:
            Category name
        """
        if rules is None:
            rules = self.load_rules()

        category = self.rule_engine.apply_rules(description, rules)
        if category:
            return category

        category = self._suggest_with_ai(description, amount, when)
        if category:
            return category

        return self.categorize_builtin(description, amount)

    def load_rules(self) -> List[CategoryRule]:
        if self.preference_store is None:
            return []
        return load_category_rules(self.preference_store)

    def _preference(self, key: str) -> Optional[str]:
        if self.preference_store is None:
            return None
        try:
            return self.preference_store.get_item(key)
        except Exception as e:
            self.logger.warning(f"Could not read preference {key}: {e}")
            return None

    def smart_client(self) -> Optional[SmartCategorizationClient]:
        """Client for AI suggestions, or None when smart categorization is off or has no key."""
        if self.llm_client is not None:
            return self.llm_client

        enabled_pref = self._preference(SMART_ENABLED_KEY)
        enabled = enabled_pref == 'true' if enabled_pref is not None else self.settings.smart_categorization
        if not enabled:
            return None

        api_key = self._preference(SMART_API_KEY_KEY) or self.settings.llm_api_key
        if not api_key:
            return None

        model = self._preference(SMART_MODEL_KEY) or self.settings.llm_model
        key = (api_key, model)
        if key not in self._clients:
            self._clients[key] = create_llm_client(api_key, model, self.settings)
        return self._clients[key]

    def _suggest_with_ai(self, description: str, amount, when: Optional[date]) -> Optional[str]:
        client = self.smart_client()
        if client is None:
            return None

        try:
            suggestion = client.suggest(description, amount, when)
        except SmartCategorizationError as e:
            self.logger.error(f"Error during AI categorization: {e}")
            return None

        if suggestion.confidence >= self.settings.ai_confidence_threshold:
            self.logger.info(
                f'AI categorized "{description}" as "{suggestion.category}" '
                f'with {suggestion.confidence * 100:.0f}% confidence'
            )
            return suggestion.category

        self.logger.info(
            f'AI categorization confidence too low for "{description}" '
            f'({suggestion.confidence * 100:.0f}%), using built-in rules'
        )
        return None
