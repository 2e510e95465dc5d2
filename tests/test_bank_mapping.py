from datetime import datetime

from budget_categorizer.classifiers.bank import (
    map_bank_category,
    normalize_bank_category,
    parser_provides_categories,
)
from budget_categorizer.models import Category, Transaction

CATEGORIES = [
    Category(id="c-groceries", name="Groceries", kind="expense"),
    Category(id="c-fees", name="Bank Fees", kind="expense"),
    Category(id="c-salary", name="Salary", kind="income"),
]


def make_tx(bank_category: str | None) -> Transaction:
    return Transaction(
        id="tx",
        account_id="acc",
        amount=-42.0,
        description="CB CARREFOUR",
        date=datetime(2024, 5, 2),
        bank_category=bank_category,
    )


def test_parser_support() -> None:
    assert parser_provides_categories("caisse_epargne")
    assert parser_provides_categories("credit_mutuel")
    assert not parser_provides_categories("boursorama")
    assert not parser_provides_categories(None)


def test_normalize_bank_category() -> None:
    assert normalize_bank_category("  Frais   Bancaires ") == "frais bancaires"
    assert normalize_bank_category("Santé") == "sante"


def test_maps_known_hint_to_category() -> None:
    category = map_bank_category(make_tx("Alimentation"), "caisse_epargne", CATEGORIES)
    assert category is not None
    assert category.id == "c-groceries"

    category = map_bank_category(make_tx("FRAIS BANCAIRES"), "caisse_epargne_entreprise", CATEGORIES)
    assert category is not None
    assert category.id == "c-fees"


def test_unknown_parser_hint_or_category_returns_none() -> None:
    assert map_bank_category(make_tx("Alimentation"), "boursorama", CATEGORIES) is None
    assert map_bank_category(make_tx(None), "caisse_epargne", CATEGORIES) is None
    assert map_bank_category(make_tx("Divers"), "caisse_epargne", CATEGORIES) is None
    # Mapped name exists in the table but not among the known categories.
    assert map_bank_category(make_tx("Loisirs"), "caisse_epargne", CATEGORIES) is None
