from datetime import datetime, timedelta

from budget_categorizer.classifiers.transfers import (
    assign_transfer_pairs,
    find_transfer_pair,
    is_transfer_counterpart,
)
from budget_categorizer.models import Transaction

BASE = datetime(2024, 4, 10)


def make_tx(
    tx_id: str,
    account_id: str,
    amount: float,
    days: float = 0,
    owner_id: str | None = None,
    created_offset: int = 0,
) -> Transaction:
    return Transaction(
        id=tx_id,
        account_id=account_id,
        owner_id=owner_id,
        amount=amount,
        description=f"VIR {tx_id}",
        date=BASE + timedelta(days=days),
        created_at=BASE + timedelta(seconds=created_offset),
    )


def test_checking_to_savings_pair_is_symmetric() -> None:
    checking = make_tx("a", "checking", -500.0)
    savings = make_tx("b", "savings", 500.0, days=1)
    pool = [checking, savings]
    assert find_transfer_pair(checking, pool) == savings
    assert find_transfer_pair(savings, pool) == checking


def test_counterpart_requirements() -> None:
    tx = make_tx("a", "checking", -100.0)
    assert not is_transfer_counterpart(tx, make_tx("b", "checking", 100.0))
    assert not is_transfer_counterpart(tx, make_tx("c", "savings", -100.0))
    assert not is_transfer_counterpart(tx, make_tx("d", "savings", 100.02))
    assert is_transfer_counterpart(tx, make_tx("e", "savings", 100.01))
    assert not is_transfer_counterpart(tx, make_tx("f", "savings", 100.0, days=4))
    assert is_transfer_counterpart(tx, make_tx("g", "savings", 100.0, days=-3))
    assert not is_transfer_counterpart(tx, make_tx("h", "savings", 100.0, owner_id="bob"))
    assert not is_transfer_counterpart(tx, tx)


def test_tie_breaks_are_deterministic() -> None:
    tx = make_tx("a", "checking", -200.0)
    far = make_tx("far", "savings", 200.0, days=2)
    near = make_tx("near", "savings", 200.0, days=1)
    assert find_transfer_pair(tx, [far, near]) == near

    off_by_cent = make_tx("cent", "savings", 200.01, days=1)
    assert find_transfer_pair(tx, [off_by_cent, near]) == near

    older = make_tx("z-older", "savings", 200.0, days=1, created_offset=0)
    newer = make_tx("a-newer", "savings", 200.0, days=1, created_offset=60)
    assert find_transfer_pair(tx, [newer, older]) == older


def test_window_is_configurable() -> None:
    tx = make_tx("a", "checking", -50.0)
    late = make_tx("b", "savings", 50.0, days=5)
    assert find_transfer_pair(tx, [late]) is None
    assert find_transfer_pair(tx, [late], window_days=7) == late


def test_assigned_pairs_do_not_depend_on_edge_order() -> None:
    p1 = make_tx("p1", "x", 500.0, days=0)
    n1 = make_tx("n1", "y", -500.0, days=1.5)
    p2 = make_tx("p2", "z", 500.0, days=1.6)
    n2 = make_tx("n2", "w", -500.0, days=1.6)
    edges = [(p1, n1), (p1, n2), (n1, p2), (p2, n2)]

    forward = assign_transfer_pairs(edges)
    backward = assign_transfer_pairs(reversed(edges))

    expected = {"p1": n1, "n1": p1, "p2": n2, "n2": p2}
    assert forward == expected
    assert backward == expected


def test_assigned_pairs_break_ties_by_creation_then_id() -> None:
    out = make_tx("out", "checking", -80.0)
    newer = make_tx("a-newer", "savings", 80.0, created_offset=60)
    older = make_tx("z-older", "savings", 80.0, created_offset=0)

    pairs = assign_transfer_pairs([(out, newer), (out, older)])

    assert pairs["out"] == older
    assert "a-newer" not in pairs
