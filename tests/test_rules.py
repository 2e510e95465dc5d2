from datetime import datetime, timedelta

from budget_categorizer.classifiers.rules import (
    match_category,
    match_rules,
    normalize_description,
    sort_rules,
)
from budget_categorizer.models import CategoryRule, MatchType, Transaction


def make_tx(description: str, account_id: str = "acc-1", owner_id: str | None = None) -> Transaction:
    return Transaction(
        id="tx-1",
        account_id=account_id,
        owner_id=owner_id,
        amount=-15.99,
        description=description,
        date=datetime(2024, 3, 12),
    )


def make_rule(rule_id: str, pattern: str, category_id: str, **kwargs) -> CategoryRule:
    return CategoryRule(id=rule_id, pattern=pattern, category_id=category_id, **kwargs)


def test_normalize_description_strips_accents_and_whitespace() -> None:
    assert normalize_description("  Prélèvement   café\tÉté ") == "PRELEVEMENT CAFE ETE"


def test_contains_rule_matches_netflix() -> None:
    rules = [make_rule("r1", "netflix", "subscriptions")]
    assert match_category(make_tx("CB NETFLIX.COM 12/03"), rules) == "subscriptions"


def test_match_types() -> None:
    tx = make_tx("PRLV SEPA EDF CLIENTS")
    assert match_rules(tx, [make_rule("r", "prlv sepa edf clients", "c", match_type=MatchType.EXACT)])
    assert not match_rules(tx, [make_rule("r", "prlv sepa", "c", match_type=MatchType.EXACT)])
    assert match_rules(tx, [make_rule("r", "PRLV SEPA", "c", match_type=MatchType.STARTS_WITH)])
    assert not match_rules(tx, [make_rule("r", "EDF", "c", match_type=MatchType.STARTS_WITH)])
    assert match_rules(tx, [make_rule("r", r"edf\s+clients$", "c", match_type=MatchType.REGEX)])


def test_invalid_regex_never_matches() -> None:
    tx = make_tx("AMAZON MARKETPLACE")
    rules = [
        make_rule("bad", "amazon(", "broken", match_type=MatchType.REGEX, priority=500),
        make_rule("good", "AMAZON", "shopping"),
    ]
    assert match_category(tx, rules) == "shopping"


def test_highest_priority_wins_regardless_of_input_order() -> None:
    tx = make_tx("CARREFOUR CITY PARIS")
    low = make_rule("low", "CARREFOUR", "groceries", priority=10)
    high = make_rule("high", "CARREFOUR CITY", "restaurants", priority=300)
    assert match_category(tx, [low, high]) == "restaurants"
    assert match_category(tx, [high, low]) == "restaurants"


def test_equal_priority_prefers_oldest_then_id() -> None:
    base = datetime(2024, 1, 1)
    newer = make_rule("a", "SNCF", "newer", created_at=base + timedelta(days=1))
    older = make_rule("b", "SNCF", "older", created_at=base)
    assert match_category(make_tx("SNCF INTERNET"), [newer, older]) == "older"

    first = make_rule("a", "SNCF", "first", created_at=base)
    second = make_rule("b", "SNCF", "second", created_at=base)
    assert [rule.id for rule in sort_rules([second, first])] == ["a", "b"]


def test_inactive_and_out_of_scope_rules_are_skipped() -> None:
    tx = make_tx("UBER TRIP", account_id="acc-1", owner_id="alice")
    rules = [
        make_rule("inactive", "UBER", "x", priority=900, is_active=False),
        make_rule("other-account", "UBER", "y", priority=800, account_id="acc-2"),
        make_rule("other-owner", "UBER", "z", priority=700, owner_id="bob"),
        make_rule("mine", "UBER", "transport", owner_id="alice"),
    ]
    assert match_category(tx, rules) == "transport"


def test_no_match_returns_none() -> None:
    assert match_rules(make_tx("UNKNOWN SHOP"), [make_rule("r", "NETFLIX", "c")]) is None
    assert match_rules(make_tx("UNKNOWN SHOP"), [make_rule("r", "   ", "c")]) is None


def test_regex_rules_also_search_the_raw_description() -> None:
    accented = make_rule("r1", r"café de la gare", "restaurants", match_type=MatchType.REGEX)
    assert match_category(make_tx("CB Café de la Gare 12/03"), [accented]) == "restaurants"

    spaced = make_rule("r2", r"VIR\s{2,}LIVRET", "savings", match_type=MatchType.REGEX)
    assert match_category(make_tx("VIR   LIVRET A"), [spaced]) == "savings"
    assert match_category(make_tx("VIR LIVRET A"), [spaced]) is None
