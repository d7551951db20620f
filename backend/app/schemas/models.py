from datetime import date as Date
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

NO_DESCRIPTION = "no description"
EXTERNAL_KEY_PATTERN = r"^[A-Za-z0-9_:\-]+$"


class TransactionType(str, Enum):
    EXPENSE = "expense"
    INCOME = "income"


def _iso_day(value: Any) -> str:
    """Accept a date, a datetime or an ISO string and keep only the day."""
    if isinstance(value, Date):
        return value.isoformat()[:10]
    text = str(value).strip()
    try:
        return Date.fromisoformat(text[:10]).isoformat()
    except ValueError:
        raise ValueError(f"invalid date: {value!r}") from None


class TransactionCandidate(BaseModel):
    """A canonical transaction ready to be upserted on its external key."""

    revolut_id: str = Field(
        ...,
        min_length=1,
        max_length=500,
        pattern=EXTERNAL_KEY_PATTERN,
        description="Stable external key used as the upsert conflict key.",
    )
    date: str
    description: str = NO_DESCRIPTION
    amount: float = Field(..., ge=0)
    type: TransactionType
    currency: str = "EUR"
    category_id: str | None = None
    is_manual: bool = False
    is_recurring: bool = False

    @field_validator("date", mode="before")
    @classmethod
    def _truncate_date(cls, value: Any) -> str:
        return _iso_day(value)

    @field_validator("description", mode="before")
    @classmethod
    def _default_description(cls, value: Any) -> str:
        if value is None or not str(value).strip():
            return NO_DESCRIPTION
        return str(value)


class TransactionItem(TransactionCandidate):
    id: str
    created_at: str | None = None


class TransactionCreate(BaseModel):
    """Manual transaction entry. A signed amount is normalized by its sign."""

    description: str = ""
    amount: float
    type: TransactionType = TransactionType.EXPENSE
    date: str
    currency: str | None = None
    category_id: str | None = None
    is_recurring: bool = False

    @field_validator("date", mode="before")
    @classmethod
    def _truncate_date(cls, value: Any) -> str:
        return _iso_day(value)


class TransactionUpdate(BaseModel):
    description: str | None = None
    amount: float | None = Field(default=None, ge=0)
    type: TransactionType | None = None
    date: str | None = None
    category_id: str | None = None
    is_recurring: bool | None = None

    @field_validator("date", mode="before")
    @classmethod
    def _truncate_date(cls, value: Any) -> str | None:
        return None if value is None else _iso_day(value)


class ImportResponse(BaseModel):
    success: bool = True
    imported: int
    skipped: int
    total: int


class ParsedStatementResponse(BaseModel):
    filename: str
    transactions: list[TransactionCandidate]
    raw_row_count: int
    skipped_count: int
    no_valid_rows: bool


class StatementImportResponse(BaseModel):
    filename: str
    raw_row_count: int
    skipped_count: int
    no_valid_rows: bool
    imported: int = 0
    skipped: int = 0
    total: int = 0


class CategorizeRequest(BaseModel):
    category_id: str = Field(..., min_length=1)
    scope: Literal["single", "all"] = "single"
    create_rule: bool = False
    overwrite_existing: bool = Field(
        default=False,
        description="With scope=all, also recategorize look-alikes that already have a category.",
    )


class CategorizeResponse(BaseModel):
    updated: int
    rule_id: str | None = None


class BulkCategoryPreviewRequest(BaseModel):
    start_date: Date
    end_date: Date
    keyword: str | None = None


class BulkCategoryRequest(BulkCategoryPreviewRequest):
    category_id: str = Field(..., min_length=1)


class BulkCategoryResponse(BaseModel):
    matched: int
    updated: int = 0


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    icon: str = "📁"
    color: str = "#6B7280"


class CategoryItem(BaseModel):
    id: str
    name: str
    icon: str = "📁"
    color: str = "#6B7280"
    created_at: str | None = None


class MerchantRuleCreate(BaseModel):
    merchant_pattern: str = Field(..., min_length=1)
    category_id: str = Field(..., min_length=1)
    apply_to_existing: bool = True


class MerchantRuleItem(BaseModel):
    id: str
    merchant_pattern: str
    category_id: str
    created_at: str | None = None


class RuleCreatedResponse(BaseModel):
    rule: MerchantRuleItem
    applied_count: int


class MonthlyBalanceUpdate(BaseModel):
    starting_balance: float | None = None
    ending_balance: float | None = None
    notes: str | None = None


class MonthlyBalanceItem(BaseModel):
    year: int
    month: int = Field(..., ge=1, le=12)
    starting_balance: float | None = None
    ending_balance: float | None = None
    notes: str | None = None
    updated_at: str | None = None
    is_prefilled: bool = False


class ReconciliationResponse(BaseModel):
    year: int
    month: int
    total_income: float
    total_expenses: float
    expected_change: float
    starting_balance: float | None = None
    ending_balance: float | None = None
    accounting_balance: float | None = None
    difference: float | None = None
    status: Literal["balanced", "shortfall", "surplus", "incomplete"]
    message: str


class CategoryBreakdownItem(BaseModel):
    category_id: str | None = None
    name: str
    icon: str
    color: str
    amount: float
    percentage: float


class MonthSummaryResponse(BaseModel):
    year: int
    month: int
    total_income: float
    total_expenses: float
    net: float
    transaction_count: int
    breakdown: list[CategoryBreakdownItem]
