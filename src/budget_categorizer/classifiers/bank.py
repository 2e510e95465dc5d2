import unicodedata
from collections.abc import Iterable

from budget_categorizer.models import Category, Transaction

# Caisse d'Epargne CSV exports carry a "Categorie" column. Values map to the
# names of the default categories seeded in budget_categorizer.db.seed.
_CAISSE_EPARGNE_CATEGORIES: dict[str, str] = {
    "salaires": "Salary",
    "revenus": "Other Income",
    "remboursements": "Refunds",
    "loyer": "Housing",
    "logement": "Housing",
    "telecom": "Utilities",
    "telephone": "Utilities",
    "internet": "Utilities",
    "electricite": "Utilities",
    "energie": "Utilities",
    "eau": "Utilities",
    "alimentation": "Groceries",
    "supermarche": "Groceries",
    "courses": "Groceries",
    "transport": "Transport",
    "carburant": "Transport",
    "essence": "Transport",
    "peage": "Transport",
    "parking": "Transport",
    "automobile": "Transport",
    "restauration": "Restaurants",
    "restaurant": "Restaurants",
    "sante": "Health",
    "pharmacie": "Health",
    "medecin": "Health",
    "assurance": "Insurance",
    "mutuelle": "Insurance",
    "shopping": "Shopping",
    "habillement": "Shopping",
    "vetements": "Shopping",
    "electromenager": "Shopping",
    "loisirs": "Leisure",
    "sport": "Leisure",
    "culture": "Leisure",
    "education": "Education",
    "formation": "Education",
    "impots": "Taxes",
    "taxes": "Taxes",
    "frais bancaires": "Bank Fees",
    "frais": "Bank Fees",
    "agios": "Bank Fees",
    "epargne": "Savings",
    "placement": "Investments",
    "abonnement": "Subscriptions",
    "abonnements": "Subscriptions",
    "credit": "Loan Payments",
    "pret": "Loan Payments",
    "emprunt": "Loan Payments",
    "virement interne": "Transfer",
    "virement": "Transfer",
}

# Generic CSV imports pass through whatever the bank wrote in its category
# column, which is usually either French or English.
_GENERIC_CATEGORIES: dict[str, str] = {
    **_CAISSE_EPARGNE_CATEGORIES,
    "salary": "Salary",
    "income": "Other Income",
    "refund": "Refunds",
    "rent": "Housing",
    "housing": "Housing",
    "utilities": "Utilities",
    "groceries": "Groceries",
    "restaurants": "Restaurants",
    "dining": "Restaurants",
    "health": "Health",
    "insurance": "Insurance",
    "leisure": "Leisure",
    "entertainment": "Leisure",
    "travel": "Travel",
    "voyages": "Travel",
    "fees": "Bank Fees",
    "bank fees": "Bank Fees",
    "savings": "Savings",
    "investment": "Investments",
    "subscriptions": "Subscriptions",
    "loan": "Loan Payments",
    "transfer": "Transfer",
}

BANK_CATEGORY_MAPS: dict[str, dict[str, str]] = {
    "caisse_epargne": _CAISSE_EPARGNE_CATEGORIES,
    "caisse_epargne_entreprise": _CAISSE_EPARGNE_CATEGORIES,
    "credit_mutuel": _CAISSE_EPARGNE_CATEGORIES,
    "generic": _GENERIC_CATEGORIES,
}


def normalize_bank_category(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return " ".join(stripped.split()).casefold()


def parser_provides_categories(parser_key: str | None) -> bool:
    return bool(parser_key) and parser_key in BANK_CATEGORY_MAPS


def map_bank_category(
    transaction: Transaction,
    parser_key: str | None,
    categories: Iterable[Category],
) -> Category | None:
    if not transaction.bank_category or not parser_provides_categories(parser_key):
        return None

    mapping = BANK_CATEGORY_MAPS[parser_key]  # type: ignore[index]
    category_name = mapping.get(normalize_bank_category(transaction.bank_category))
    if not category_name:
        return None

    wanted = category_name.casefold()
    for category in categories:
        if category.name.casefold() == wanted:
            return category
    return None
