from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

from budget_categorizer.models import (
    Category,
    CategoryRule,
    MatchType,
    PatternStatus,
    PipelineStats,
    RecurringPattern,
    Transaction,
    TransactionCategoryAssignment,
)


class TransactionRepository(Protocol):
    def list_for_run(self, account_id: str | None = None, *, overwrite: bool = False) -> list[Transaction]:
        """Transactions a run should process, oldest first.

        Without ``overwrite`` only unassigned transactions are returned; with it
        everything in scope except manual assignments.
        """
        ...

    def list_transfer_candidates(self, start: datetime, end: datetime) -> list[Transaction]:
        """Unassigned or unmatched transactions dated between start and end, inclusive."""
        ...

    def list_linked_transfers(self, transaction_ids: Sequence[str]) -> list[Transaction]:
        """Transfer legs whose counterpart is one of ``transaction_ids``."""
        ...

    def list_since(self, since: datetime) -> list[Transaction]:
        ...

    def get(self, transaction_id: str) -> Transaction | None:
        ...

    def save_assignment(self, assignment: TransactionCategoryAssignment) -> None:
        """Insert or replace the single assignment of a transaction."""
        ...

    def clear_assignment(self, transaction_id: str) -> None:
        """Return a transaction to the unassigned state."""
        ...


class CategoryRepository(Protocol):
    def list(self) -> list[Category]:
        ...

    def get(self, category_id: str) -> Category | None:
        ...

    def ensure(self, name: str, kind: str | None = None) -> Category:
        ...


class CategoryRuleRepository(Protocol):
    def list_active(self) -> list[CategoryRule]:
        ...

    def list_all(self) -> list[CategoryRule]:
        ...

    def create(
        self,
        pattern: str,
        category_id: str,
        *,
        match_type: MatchType = MatchType.CONTAINS,
        priority: int = 100,
        account_id: str | None = None,
        owner_id: str | None = None,
    ) -> CategoryRule:
        ...

    def upsert(
        self,
        pattern: str,
        category_id: str,
        *,
        match_type: MatchType,
        priority: int,
        owner_id: str | None = None,
    ) -> CategoryRule:
        """Create a rule, or retarget the existing one with the same pattern and match type."""
        ...


class CategorizationLogRepository(Protocol):
    def append(self, stats: PipelineStats) -> None:
        ...

    def list_recent(self, limit: int = 20) -> list[PipelineStats]:
        ...


class RecurringPatternRepository(Protocol):
    def list(self, status: PatternStatus | None = None) -> list[RecurringPattern]:
        ...

    def get(self, pattern_id: str) -> RecurringPattern | None:
        ...

    def save(self, pattern: RecurringPattern) -> RecurringPattern:
        """Insert or update by signature."""
        ...

    def set_status(self, pattern_id: str, status: PatternStatus) -> RecurringPattern | None:
        ...
