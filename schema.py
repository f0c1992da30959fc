"""
Pydantic schemas for statement documents, extracted transactions and category rules.
"""
import uuid
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, validator


class DocumentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class MatchType(str, Enum):
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    REGEX = "regex"


class StatementPeriod(BaseModel):
    """Inclusive date range covered by a statement."""
    start_date: date
    end_date: date

    @validator('end_date')
    def validate_order(cls, v, values):
        """Reject reversed periods instead of silently swapping them."""
        start = values.get('start_date')
        if start is not None and start > v:
            raise ValueError(f'Statement period start {start} is after end {v}')
        return v

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def __str__(self) -> str:
        return f"{self.start_date.isoformat()} - {self.end_date.isoformat()}"


class StatementDocument(BaseModel):
    """One ingested statement file and its processing state."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str
    content: bytes = Field(b"", repr=False)
    upload_date: datetime = Field(default_factory=datetime.now)
    processed: bool = False
    status: DocumentStatus = DocumentStatus.PENDING
    error: Optional[str] = None
    transaction_count: Optional[int] = None
    content_hash: str = ""
    document_date: Optional[date] = None
    statement_period: Optional[StatementPeriod] = None


class ExtractedTransaction(BaseModel):
    """Transaction produced by the extraction pipeline, not yet persisted."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    date: date
    amount: Decimal = Field(..., ge=0, description="Absolute value; direction lives in type")
    description: str
    type: TransactionType
    category: str = "Uncategorized"
    is_month_summary: bool = False
    account_number: Optional[str] = None

    @validator('amount', pre=True)
    def coerce_magnitude(cls, v):
        """Amounts are stored as magnitudes."""
        try:
            return abs(Decimal(str(v)))
        except InvalidOperation as e:
            raise ValueError(f"Invalid amount: {v!r}") from e

    class Config:
        json_encoders = {
            Decimal: lambda v: str(v)
        }


class CategoryRule(BaseModel):
    """User-authored rule mapping a description pattern to a category."""
    id: str
    pattern: str = ""
    category: str
    match_type: MatchType = Field(MatchType.CONTAINS, alias="matchType")
    priority: int = 0
    enabled: bool = True

    class Config:
        populate_by_name = True


class RawTransactionLine(BaseModel):
    """A (date, description, amount) triple matched on one OCR line."""
    date_string: str
    description: str
    amount_string: str
    has_explicit_year: bool = False
    context_year: Optional[int] = None


class BillSummary(BaseModel):
    """Credit card bill facts found on a statement page."""
    balance: Optional[Decimal] = None
    due_date: Optional[date] = None
    account_number: Optional[str] = None
    payment_amount: Optional[Decimal] = None

    def merge(self, other: "BillSummary") -> "BillSummary":
        """Keep facts already known, fill the gaps from a later page."""
        return BillSummary(
            balance=self.balance if self.balance is not None else other.balance,
            due_date=self.due_date or other.due_date,
            account_number=self.account_number or other.account_number,
            payment_amount=self.payment_amount if self.payment_amount is not None else other.payment_amount,
        )


class CategorySuggestion(BaseModel):
    category: str
    confidence: float = Field(0.0, ge=0, le=1)
    reasoning: Optional[str] = None


class TransactionList(BaseModel):
    """List of extracted transactions with processing information."""
    transactions: List[ExtractedTransaction]
    total_count: int = Field(..., description="Total number of transactions")
    processing_metadata: Optional[dict] = Field(None, description="Processing information")

    @validator('total_count')
    def validate_count(cls, v, values):
        """Ensure count matches actual transaction list length."""
        if 'transactions' in values:
            actual_count = len(values['transactions'])
            if v != actual_count:
                return actual_count
        return v
