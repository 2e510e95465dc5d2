from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CategorySource(str, Enum):
    RULE = "RULE"
    BANK = "BANK"
    AI = "AI"
    TRANSFER = "TRANSFER"
    MANUAL = "MANUAL"
    UNMATCHED = "UNMATCHED"


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class MatchType(str, Enum):
    EXACT = "exact"
    STARTS_WITH = "starts_with"
    CONTAINS = "contains"
    REGEX = "regex"


class Cadence(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class PatternStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Record(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class Transaction(Record):
    id: str
    account_id: str
    amount: float
    description: str
    date: datetime
    currency: str = "EUR"
    owner_id: str | None = None
    type: TransactionType | None = None
    category_id: str | None = None
    category_source: CategorySource | None = None
    linked_transaction_id: str | None = None
    bank_category: str | None = None
    source_parser: str | None = None
    created_at: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _derive_type(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("type") is None and data.get("amount") is not None:
            try:
                amount = float(data["amount"])
            except (TypeError, ValueError):
                return data
            data = {**data, "type": TransactionType.INCOME if amount > 0 else TransactionType.EXPENSE}
        return data

    @property
    def is_assigned(self) -> bool:
        return self.category_source is not None


class Category(Record):
    id: str
    name: str
    parent_id: str | None = None
    icon: str | None = None
    color: str | None = None
    kind: str | None = None


class CategoryRule(Record):
    id: str
    pattern: str
    category_id: str
    match_type: MatchType = MatchType.CONTAINS
    priority: int = 100
    account_id: str | None = None
    owner_id: str | None = None
    is_active: bool = True
    created_at: datetime | None = None


class TransactionCategoryAssignment(Record):
    transaction_id: str
    category_id: str | None
    source: CategorySource
    confidence: float = Field(ge=0.0, le=1.0)
    linked_transaction_id: str | None = None
    reasoning: str | None = None
    assigned_at: datetime | None = None


class RecurringPattern(Record):
    id: str
    signature: str
    description: str
    expected_amount: float
    amount_tolerance: float
    cadence: Cadence
    occurrence_count: int
    status: PatternStatus = PatternStatus.ACTIVE
    category_id: str | None = None
    account_id: str | None = None
    currency: str = "EUR"
    transaction_ids: list[str] = Field(default_factory=list)
    last_seen_at: datetime | None = None
    updated_at: datetime | None = None


class PipelineStats(Record):
    total: int = 0
    rule_matches: int = 0
    bank_matches: int = 0
    ai_matches: int = 0
    transfer_matches: int = 0
    unmatched: int = 0
    duration_ms: int = 0
    estimated_cost: float = 0.0
    account_id: str | None = None
    started_at: datetime | None = None
    error_message: str | None = None

    @property
    def categorized(self) -> int:
        return self.rule_matches + self.bank_matches + self.ai_matches + self.transfer_matches

    def summary(self) -> str:
        return (
            f"Categorized {self.categorized} of {self.total} transactions "
            f"(rules: {self.rule_matches}, bank: {self.bank_matches}, "
            f"transfers: {self.transfer_matches}, AI: {self.ai_matches}, "
            f"unmatched: {self.unmatched})"
        )


class DetectionResult(Record):
    detected: int = 0
    created: int = 0
    updated: int = 0
    deactivated: int = 0

    def summary(self) -> str:
        return (
            f"Detected {self.detected} recurring patterns "
            f"({self.created} new, {self.updated} updated, {self.deactivated} inactive)"
        )
