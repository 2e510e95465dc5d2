from sqlalchemy import func, select

from budget_categorizer.core import settings
from budget_categorizer.db.session import Database
from budget_categorizer.db.tables import CategoryRow
from budget_categorizer.logger import get_logger

logger = get_logger(__name__)

# (name, kind, icon, color)
DEFAULT_CATEGORIES: tuple[tuple[str, str, str, str], ...] = (
    ("Salary", "income", "briefcase", "#16a34a"),
    ("Freelance", "income", "laptop", "#22c55e"),
    ("Dividends", "income", "trending-up", "#4ade80"),
    ("Rental Income", "income", "key", "#86efac"),
    ("Refunds", "income", "rotate-ccw", "#bbf7d0"),
    ("Other Income", "income", "plus-circle", "#15803d"),
    ("Housing", "expense", "home", "#dc2626"),
    ("Utilities", "expense", "zap", "#ea580c"),
    ("Groceries", "expense", "shopping-cart", "#f97316"),
    ("Restaurants", "expense", "utensils", "#fb923c"),
    ("Transport", "expense", "car", "#eab308"),
    ("Health", "expense", "heart-pulse", "#ef4444"),
    ("Insurance", "expense", "shield", "#a855f7"),
    ("Subscriptions", "expense", "repeat", "#8b5cf6"),
    ("Shopping", "expense", "shopping-bag", "#ec4899"),
    ("Leisure", "expense", "music", "#f472b6"),
    ("Travel", "expense", "plane", "#06b6d4"),
    ("Education", "expense", "book-open", "#0ea5e9"),
    ("Taxes", "expense", "landmark", "#64748b"),
    ("Bank Fees", "expense", "credit-card", "#475569"),
    ("Savings", "expense", "piggy-bank", "#14b8a6"),
    ("Investments", "expense", "bar-chart", "#0d9488"),
    ("Loan Payments", "expense", "calendar-clock", "#b91c1c"),
    ("Other Expenses", "expense", "more-horizontal", "#94a3b8"),
)


def seed_categories(db: Database, transfer_category_name: str | None = None) -> int:
    """Insert the default categories when the table is empty. Returns the number inserted."""
    transfer_name = transfer_category_name or settings.DEFAULT_TRANSFER_CATEGORY_NAME
    with db.session() as session:
        existing = session.scalar(select(func.count()).select_from(CategoryRow)) or 0
        if existing:
            logger.debug("[DB] %s categories present; skipping seed.", existing)
            return 0

        rows = [
            CategoryRow(name=name, kind=kind, icon=icon, color=color)
            for name, kind, icon, color in DEFAULT_CATEGORIES
        ]
        rows.append(CategoryRow(name=transfer_name, kind="transfer", icon="arrow-left-right", color="#6b7280"))
        session.add_all(rows)

    logger.info("[DB] Seeded %s default categories.", len(rows))
    return len(rows)
