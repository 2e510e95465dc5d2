from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import Select, delete, func, or_, select

from budget_categorizer.db.session import Database
from budget_categorizer.db.tables import (
    CategorizationLogRow,
    CategoryRow,
    CategoryRuleRow,
    RecurringPatternRow,
    TransactionCategoryRow,
    TransactionRow,
    utcnow,
)
from budget_categorizer.models import (
    Cadence,
    Category,
    CategoryRule,
    CategorySource,
    MatchType,
    PatternStatus,
    PipelineStats,
    RecurringPattern,
    Transaction,
    TransactionCategoryAssignment,
)


def _to_transaction(row: TransactionRow) -> Transaction:
    assignment = row.assignment
    account = row.account
    return Transaction(
        id=row.id,
        account_id=row.account_id,
        owner_id=account.owner_id if account else None,
        amount=row.amount,
        currency=row.currency,
        description=row.description,
        date=row.date,
        type=row.type,
        category_id=assignment.category_id if assignment else None,
        category_source=assignment.source if assignment else None,
        linked_transaction_id=assignment.linked_transaction_id if assignment else None,
        bank_category=row.bank_category,
        source_parser=row.source_parser or (account.bank_key if account else None),
        created_at=row.created_at,
    )


def _to_category(row: CategoryRow) -> Category:
    return Category(
        id=row.id,
        name=row.name,
        parent_id=row.parent_id,
        icon=row.icon,
        color=row.color,
        kind=row.kind,
    )


def _to_rule(row: CategoryRuleRow) -> CategoryRule:
    return CategoryRule(
        id=row.id,
        pattern=row.pattern,
        match_type=MatchType(row.match_type),
        category_id=row.category_id,
        priority=row.priority,
        account_id=row.account_id,
        owner_id=row.owner_id,
        is_active=row.is_active,
        created_at=row.created_at,
    )


def _to_stats(row: CategorizationLogRow) -> PipelineStats:
    return PipelineStats(
        total=row.total,
        rule_matches=row.rule_matches,
        bank_matches=row.bank_matches,
        ai_matches=row.ai_matches,
        transfer_matches=row.transfer_matches,
        unmatched=row.unmatched,
        duration_ms=row.duration_ms,
        estimated_cost=row.estimated_cost,
        account_id=row.account_id,
        started_at=row.started_at,
        error_message=row.error_message,
    )


def _to_pattern(row: RecurringPatternRow) -> RecurringPattern:
    return RecurringPattern(
        id=row.id,
        signature=row.signature,
        description=row.description,
        expected_amount=row.expected_amount,
        amount_tolerance=row.amount_tolerance,
        currency=row.currency,
        cadence=Cadence(row.cadence),
        status=PatternStatus(row.status),
        category_id=row.category_id,
        account_id=row.account_id,
        occurrence_count=row.occurrence_count,
        transaction_ids=list(row.transaction_ids or []),
        last_seen_at=row.last_seen_at,
        updated_at=row.updated_at,
    )


def _ordered(stmt: Select) -> Select:
    return stmt.order_by(TransactionRow.date, TransactionRow.created_at, TransactionRow.id)


class SqlTransactionRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    def list_for_run(self, account_id: str | None = None, *, overwrite: bool = False) -> list[Transaction]:
        stmt = select(TransactionRow).outerjoin(
            TransactionCategoryRow, TransactionCategoryRow.transaction_id == TransactionRow.id
        )
        if overwrite:
            stmt = stmt.where(
                or_(
                    TransactionCategoryRow.id.is_(None),
                    TransactionCategoryRow.source != CategorySource.MANUAL.value,
                )
            )
        else:
            stmt = stmt.where(TransactionCategoryRow.id.is_(None))
        if account_id:
            stmt = stmt.where(TransactionRow.account_id == account_id)
        with self.db.session() as session:
            return [_to_transaction(row) for row in session.scalars(_ordered(stmt))]

    def list_transfer_candidates(self, start: datetime, end: datetime) -> list[Transaction]:
        stmt = (
            select(TransactionRow)
            .outerjoin(TransactionCategoryRow, TransactionCategoryRow.transaction_id == TransactionRow.id)
            .where(
                or_(
                    TransactionCategoryRow.id.is_(None),
                    TransactionCategoryRow.source == CategorySource.UNMATCHED.value,
                )
            )
            .where(TransactionRow.date >= start, TransactionRow.date <= end)
        )
        with self.db.session() as session:
            return [_to_transaction(row) for row in session.scalars(_ordered(stmt))]

    def list_linked_transfers(self, transaction_ids: Sequence[str]) -> list[Transaction]:
        if not transaction_ids:
            return []
        stmt = (
            select(TransactionRow)
            .join(TransactionCategoryRow, TransactionCategoryRow.transaction_id == TransactionRow.id)
            .where(TransactionCategoryRow.source == CategorySource.TRANSFER.value)
            .where(TransactionCategoryRow.linked_transaction_id.in_(list(transaction_ids)))
        )
        with self.db.session() as session:
            return [_to_transaction(row) for row in session.scalars(_ordered(stmt))]

    def list_since(self, since: datetime) -> list[Transaction]:
        stmt = select(TransactionRow).where(TransactionRow.date >= since)
        with self.db.session() as session:
            return [_to_transaction(row) for row in session.scalars(_ordered(stmt))]

    def get(self, transaction_id: str) -> Transaction | None:
        with self.db.session() as session:
            row = session.get(TransactionRow, transaction_id)
            return _to_transaction(row) if row else None

    def save_assignment(self, assignment: TransactionCategoryAssignment) -> None:
        with self.db.session() as session:
            row = session.scalar(
                select(TransactionCategoryRow).where(
                    TransactionCategoryRow.transaction_id == assignment.transaction_id
                )
            )
            if row is None:
                row = TransactionCategoryRow(transaction_id=assignment.transaction_id)
                session.add(row)
            row.category_id = assignment.category_id
            row.source = assignment.source.value
            row.confidence = assignment.confidence
            row.linked_transaction_id = assignment.linked_transaction_id
            row.reasoning = assignment.reasoning
            row.assigned_at = assignment.assigned_at or utcnow()

    def clear_assignment(self, transaction_id: str) -> None:
        with self.db.session() as session:
            session.execute(
                delete(TransactionCategoryRow).where(TransactionCategoryRow.transaction_id == transaction_id)
            )


class SqlCategoryRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    def list(self) -> list[Category]:
        with self.db.session() as session:
            rows = session.scalars(select(CategoryRow).order_by(CategoryRow.name))
            return [_to_category(row) for row in rows]

    def get(self, category_id: str) -> Category | None:
        with self.db.session() as session:
            row = session.get(CategoryRow, category_id)
            return _to_category(row) if row else None

    def ensure(self, name: str, kind: str | None = None) -> Category:
        with self.db.session() as session:
            row = session.scalar(
                select(CategoryRow).where(func.lower(CategoryRow.name) == name.lower())
            )
            if row is None:
                row = CategoryRow(name=name, kind=kind)
                session.add(row)
                session.flush()
            return _to_category(row)


class SqlCategoryRuleRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    def _list(self, active_only: bool) -> list[CategoryRule]:
        stmt = select(CategoryRuleRow).order_by(
            CategoryRuleRow.priority.desc(), CategoryRuleRow.created_at, CategoryRuleRow.id
        )
        if active_only:
            stmt = stmt.where(CategoryRuleRow.is_active.is_(True))
        with self.db.session() as session:
            return [_to_rule(row) for row in session.scalars(stmt)]

    def list_active(self) -> list[CategoryRule]:
        return self._list(active_only=True)

    def list_all(self) -> list[CategoryRule]:
        return self._list(active_only=False)

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
        with self.db.session() as session:
            row = CategoryRuleRow(
                pattern=pattern,
                category_id=category_id,
                match_type=match_type.value,
                priority=priority,
                account_id=account_id,
                owner_id=owner_id,
                is_active=True,
            )
            session.add(row)
            session.flush()
            return _to_rule(row)

    def upsert(
        self,
        pattern: str,
        category_id: str,
        *,
        match_type: MatchType,
        priority: int,
        owner_id: str | None = None,
    ) -> CategoryRule:
        with self.db.session() as session:
            row = session.scalar(
                select(CategoryRuleRow).where(
                    CategoryRuleRow.pattern == pattern,
                    CategoryRuleRow.match_type == match_type.value,
                    CategoryRuleRow.account_id.is_(None),
                    CategoryRuleRow.owner_id.is_(None)
                    if owner_id is None
                    else CategoryRuleRow.owner_id == owner_id,
                )
            )
            if row is None:
                row = CategoryRuleRow(
                    pattern=pattern,
                    match_type=match_type.value,
                    owner_id=owner_id,
                )
                session.add(row)
            row.category_id = category_id
            row.priority = priority
            row.is_active = True
            session.flush()
            return _to_rule(row)


class SqlCategorizationLogRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    def append(self, stats: PipelineStats) -> None:
        with self.db.session() as session:
            session.add(
                CategorizationLogRow(
                    account_id=stats.account_id,
                    total=stats.total,
                    rule_matches=stats.rule_matches,
                    bank_matches=stats.bank_matches,
                    ai_matches=stats.ai_matches,
                    transfer_matches=stats.transfer_matches,
                    unmatched=stats.unmatched,
                    duration_ms=stats.duration_ms,
                    estimated_cost=stats.estimated_cost,
                    error_message=stats.error_message,
                    started_at=stats.started_at,
                )
            )

    def list_recent(self, limit: int = 20) -> list[PipelineStats]:
        stmt = select(CategorizationLogRow).order_by(CategorizationLogRow.id.desc()).limit(limit)
        with self.db.session() as session:
            return [_to_stats(row) for row in session.scalars(stmt)]


class SqlRecurringPatternRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    def list(self, status: PatternStatus | None = None) -> list[RecurringPattern]:
        stmt = select(RecurringPatternRow).order_by(RecurringPatternRow.signature)
        if status is not None:
            stmt = stmt.where(RecurringPatternRow.status == status.value)
        with self.db.session() as session:
            return [_to_pattern(row) for row in session.scalars(stmt)]

    def get(self, pattern_id: str) -> RecurringPattern | None:
        with self.db.session() as session:
            row = session.get(RecurringPatternRow, pattern_id)
            return _to_pattern(row) if row else None

    def save(self, pattern: RecurringPattern) -> RecurringPattern:
        with self.db.session() as session:
            row = session.scalar(
                select(RecurringPatternRow).where(RecurringPatternRow.signature == pattern.signature)
            )
            if row is None:
                row = RecurringPatternRow(id=pattern.id, signature=pattern.signature)
                session.add(row)
            row.description = pattern.description
            row.expected_amount = pattern.expected_amount
            row.amount_tolerance = pattern.amount_tolerance
            row.currency = pattern.currency
            row.cadence = pattern.cadence.value
            row.status = pattern.status.value
            row.category_id = pattern.category_id
            row.account_id = pattern.account_id
            row.occurrence_count = pattern.occurrence_count
            row.transaction_ids = list(pattern.transaction_ids)
            row.last_seen_at = pattern.last_seen_at
            row.updated_at = utcnow()
            session.flush()
            return _to_pattern(row)

    def set_status(self, pattern_id: str, status: PatternStatus) -> RecurringPattern | None:
        with self.db.session() as session:
            row = session.get(RecurringPatternRow, pattern_id)
            if row is None:
                return None
            row.status = status.value
            row.updated_at = utcnow()
            session.flush()
            return _to_pattern(row)
