from collections.abc import Generator
from datetime import datetime

import pytest
from sqlalchemy import select

from budget_categorizer.db.seed import seed_categories
from budget_categorizer.db.session import Database, create_db
from budget_categorizer.db.tables import (
    AccountRow,
    CategoryRow,
    TransactionCategoryRow,
    TransactionRow,
)
from budget_categorizer.repositories.sql import (
    SqlCategorizationLogRepository,
    SqlCategoryRepository,
    SqlCategoryRuleRepository,
    SqlRecurringPatternRepository,
    SqlTransactionRepository,
)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def db() -> Generator[Database, None, None]:
    database = create_db("sqlite://")
    seed_categories(database)
    yield database
    database.dispose()


@pytest.fixture
def transaction_repo(db: Database) -> SqlTransactionRepository:
    return SqlTransactionRepository(db)


@pytest.fixture
def category_repo(db: Database) -> SqlCategoryRepository:
    return SqlCategoryRepository(db)


@pytest.fixture
def rule_repo(db: Database) -> SqlCategoryRuleRepository:
    return SqlCategoryRuleRepository(db)


@pytest.fixture
def log_repo(db: Database) -> SqlCategorizationLogRepository:
    return SqlCategorizationLogRepository(db)


@pytest.fixture
def pattern_repo(db: Database) -> SqlRecurringPatternRepository:
    return SqlRecurringPatternRepository(db)


def add_account(db: Database, name: str, owner_id: str | None = None, bank_key: str | None = None) -> str:
    with db.session() as session:
        row = AccountRow(name=name, owner_id=owner_id, bank_key=bank_key)
        session.add(row)
        session.flush()
        return row.id


def add_transaction(
    db: Database,
    account_id: str,
    amount: float,
    description: str,
    date: datetime,
    *,
    bank_category: str | None = None,
    source_parser: str | None = None,
) -> str:
    with db.session() as session:
        row = TransactionRow(
            account_id=account_id,
            amount=amount,
            description=description,
            date=date,
            bank_category=bank_category,
            source_parser=source_parser,
        )
        session.add(row)
        session.flush()
        return row.id


def category_id(db: Database, name: str) -> str:
    with db.session() as session:
        return session.scalars(select(CategoryRow.id).where(CategoryRow.name == name)).one()


def assignment_of(db: Database, transaction_id: str) -> TransactionCategoryRow | None:
    with db.session() as session:
        return session.scalar(
            select(TransactionCategoryRow).where(TransactionCategoryRow.transaction_id == transaction_id)
        )
