from collections.abc import Sequence
from typing import Protocol

from pydantic import BaseModel, Field

from budget_categorizer.models import Category, CategoryRule, Transaction


class AIClassification(BaseModel):
    category_id: str
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str | None = None


class AIBatchResult(BaseModel):
    classifications: dict[str, AIClassification] = Field(default_factory=dict)
    estimated_cost: float = 0.0
    failed_ids: list[str] = Field(default_factory=list)


class AIClassifier(Protocol):
    def classify_batch(
        self,
        transactions: Sequence[Transaction],
        candidate_categories: Sequence[Category],
        rule_hints: Sequence[CategoryRule] = (),
    ) -> AIBatchResult:
        """Suggest a category for each transaction. Must not raise for service failures."""
        ...

    def classify(
        self,
        transaction: Transaction,
        candidate_categories: Sequence[Category],
    ) -> AIClassification | None:
        ...
