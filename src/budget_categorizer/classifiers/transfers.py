from collections.abc import Iterable
from datetime import timedelta

from budget_categorizer.models import Transaction

DEFAULT_WINDOW_DAYS = 3
DEFAULT_AMOUNT_EPSILON = 0.01


def is_transfer_counterpart(
    transaction: Transaction,
    candidate: Transaction,
    *,
    window_days: int = DEFAULT_WINDOW_DAYS,
    epsilon: float = DEFAULT_AMOUNT_EPSILON,
) -> bool:
    if candidate.id == transaction.id:
        return False
    if candidate.account_id == transaction.account_id:
        return False
    if candidate.owner_id != transaction.owner_id:
        return False
    # One leg leaves an account, the other arrives.
    if transaction.amount == 0 or candidate.amount == 0:
        return False
    if (transaction.amount > 0) == (candidate.amount > 0):
        return False
    # Rounded so that 100.01 vs 100.00 counts as a one-cent difference.
    if round(abs(abs(transaction.amount) - abs(candidate.amount)), 6) > epsilon:
        return False
    return abs(candidate.date - transaction.date) <= timedelta(days=window_days)


def _tie_break_key(transaction: Transaction, candidate: Transaction) -> tuple[float, float, float, str]:
    date_gap = abs((candidate.date - transaction.date).total_seconds())
    amount_gap = abs(abs(candidate.amount) - abs(transaction.amount))
    created = candidate.created_at.timestamp() if candidate.created_at else float("-inf")
    return (date_gap, amount_gap, created, candidate.id)


def find_transfer_pair(
    transaction: Transaction,
    candidates: Iterable[Transaction],
    *,
    window_days: int = DEFAULT_WINDOW_DAYS,
    epsilon: float = DEFAULT_AMOUNT_EPSILON,
) -> Transaction | None:
    """Return the counterpart leg of a transfer between two of the household's accounts.

    When several candidates qualify the closest by date wins, then the closest
    by amount, then the oldest record.
    """
    qualifying = [
        candidate
        for candidate in candidates
        if is_transfer_counterpart(transaction, candidate, window_days=window_days, epsilon=epsilon)
    ]
    if not qualifying:
        return None
    return min(qualifying, key=lambda candidate: _tie_break_key(transaction, candidate))


def _pair_key(a: Transaction, b: Transaction) -> tuple[float, float, tuple[float, float], tuple[str, str]]:
    date_gap = abs((a.date - b.date).total_seconds())
    amount_gap = abs(abs(a.amount) - abs(b.amount))
    created = sorted(t.created_at.timestamp() if t.created_at else float("-inf") for t in (a, b))
    ids = sorted((a.id, b.id))
    return (date_gap, amount_gap, (created[0], created[1]), (ids[0], ids[1]))


def assign_transfer_pairs(edges: Iterable[tuple[Transaction, Transaction]]) -> dict[str, Transaction]:
    """Pick disjoint pairs from qualifying ``(leg, counterpart)`` edges.

    The closest pair overall is taken first, using the same ordering as
    ``find_transfer_pair``, and its legs drop out of every other edge. The
    result maps each paired id to its counterpart, so it is symmetric and
    does not depend on the order of ``edges``.
    """
    pairs: dict[str, Transaction] = {}
    for a, b in sorted(edges, key=lambda edge: _pair_key(*edge)):
        if a.id in pairs or b.id in pairs or a.id == b.id:
            continue
        pairs[a.id] = b
        pairs[b.id] = a
    return pairs
