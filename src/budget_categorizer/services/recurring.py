import re
import statistics
from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from rapidfuzz import fuzz

from budget_categorizer.classifiers.rules import normalize_description
from budget_categorizer.core.configuration import RecurringConfig
from budget_categorizer.logger import get_logger
from budget_categorizer.models import (
    Cadence,
    CategorySource,
    DetectionResult,
    PatternStatus,
    RecurringPattern,
    Transaction,
)
from budget_categorizer.repositories.base import RecurringPatternRepository, TransactionRepository

logger = get_logger(__name__)

# (cadence, min mean interval, max mean interval, nominal period) in days
CADENCE_BANDS: tuple[tuple[Cadence, float, float, int], ...] = (
    (Cadence.WEEKLY, 5, 9, 7),
    (Cadence.MONTHLY, 25, 35, 30),
    (Cadence.QUARTERLY, 75, 105, 91),
    (Cadence.ANNUAL, 335, 395, 365),
)
CADENCE_DAYS = {cadence: period for cadence, _, _, period in CADENCE_BANDS}

_ISO_DATE = re.compile(r"\b\d{4}-\d{1,2}-\d{1,2}\b")
_SHORT_DATE = re.compile(r"\b\d{1,2}[./-]\d{1,2}(?:[./-]\d{2,4})?\b")
_REFERENCE = re.compile(r"\b(?=[A-Z0-9]*\d)(?=[A-Z0-9]*[A-Z])[A-Z0-9]{6,}\b")
_DIGIT_RUN = re.compile(r"\d{3,}")
_WHITESPACE = re.compile(r"\s+")


def payee_signature(description: str) -> str:
    """Normalized description without dates, references and long numbers."""
    normalized = normalize_description(description)
    signature = _ISO_DATE.sub(" ", normalized)
    signature = _SHORT_DATE.sub(" ", signature)
    signature = _REFERENCE.sub(" ", signature)
    signature = _DIGIT_RUN.sub(" ", signature)
    signature = _WHITESPACE.sub(" ", signature).strip()
    return signature or normalized


def detect_cadence(mean_interval_days: float) -> Cadence | None:
    for cadence, low, high, _ in CADENCE_BANDS:
        if low <= mean_interval_days <= high:
            return cadence
    return None


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def merge_signatures(
    signatures: Iterable[str],
    *,
    threshold: float,
    known: Sequence[str] = (),
) -> dict[str, str]:
    """Map every signature onto a canonical one.

    Known signatures (already stored) are canonical first; the rest are visited
    most frequent first, then alphabetically, so the mapping is stable.
    """
    counts = Counter(signatures)
    canonical: list[str] = list(dict.fromkeys(known))
    mapping: dict[str, str] = {}
    for signature in sorted(counts, key=lambda value: (-counts[value], value)):
        if signature in canonical:
            mapping[signature] = signature
            continue
        target = next(
            (
                existing
                for existing in canonical
                if fuzz.token_sort_ratio(signature, existing) >= threshold
            ),
            None,
        )
        if target is None:
            canonical.append(signature)
            target = signature
        mapping[signature] = target
    return mapping


class RecurringDetector:
    def __init__(
        self,
        transactions: TransactionRepository,
        patterns: RecurringPatternRepository,
        config: RecurringConfig | None = None,
    ) -> None:
        self.transactions = transactions
        self.patterns = patterns
        self.config = config or RecurringConfig()

    def _is_stale(self, cadence: Cadence, last_seen: datetime | None, now: datetime) -> bool:
        if last_seen is None:
            return True
        limit = timedelta(days=CADENCE_DAYS[cadence] * self.config.inactivity_factor)
        return now - _naive_utc(last_seen) > limit

    def analyse_group(self, signature: str, group: Sequence[Transaction]) -> dict | None:
        """Return pattern fields when the group is recurring, otherwise None."""
        if len(group) < self.config.min_occurrences:
            return None

        ordered = sorted(group, key=lambda transaction: (transaction.date, transaction.id))
        amounts = [transaction.amount for transaction in ordered]
        if any(amount == 0 for amount in amounts):
            return None
        if len({amount > 0 for amount in amounts}) != 1:
            return None

        mean_abs = statistics.fmean(abs(amount) for amount in amounts)
        tolerance = self.config.amount_tolerance
        if any(abs(abs(amount) - mean_abs) / mean_abs > tolerance for amount in amounts):
            return None

        intervals = [
            (current.date - previous.date).total_seconds() / 86400
            for previous, current in zip(ordered, ordered[1:])
        ]
        mean_interval = statistics.fmean(intervals)
        if mean_interval <= 0:
            return None
        if statistics.pstdev(intervals) / mean_interval > self.config.interval_deviation:
            return None

        cadence = detect_cadence(mean_interval)
        if cadence is None:
            return None

        categories = Counter(transaction.category_id for transaction in ordered if transaction.category_id)
        accounts = Counter(transaction.account_id for transaction in ordered)
        return {
            "signature": signature,
            "description": ordered[-1].description,
            "expected_amount": round(statistics.fmean(amounts), 2),
            "amount_tolerance": tolerance,
            "currency": ordered[-1].currency,
            "cadence": cadence,
            "category_id": categories.most_common(1)[0][0] if categories else None,
            "account_id": accounts.most_common(1)[0][0],
            "occurrence_count": len(ordered),
            "transaction_ids": [transaction.id for transaction in ordered],
            "last_seen_at": ordered[-1].date,
        }

    def detect(self, now: datetime | None = None) -> DetectionResult:
        now = _naive_utc(now or datetime.now(timezone.utc))
        since = now - timedelta(days=self.config.lookback_days)

        history = [
            transaction
            for transaction in self.transactions.list_since(since)
            if transaction.category_source != CategorySource.TRANSFER
            and _naive_utc(transaction.date) <= now
        ]
        stored = {pattern.signature: pattern for pattern in self.patterns.list()}

        raw_signatures = {transaction.id: payee_signature(transaction.description) for transaction in history}
        mapping = merge_signatures(
            raw_signatures.values(),
            threshold=self.config.signature_similarity,
            known=sorted(stored),
        )
        groups: dict[str, list[Transaction]] = {}
        for transaction in history:
            groups.setdefault(mapping[raw_signatures[transaction.id]], []).append(transaction)

        detected = created = updated = deactivated = 0
        seen: set[str] = set()
        for signature in sorted(groups):
            fields = self.analyse_group(signature, groups[signature])
            if fields is None:
                continue
            detected += 1
            seen.add(signature)

            status = PatternStatus.ACTIVE
            if self._is_stale(fields["cadence"], fields["last_seen_at"], now):
                status = PatternStatus.INACTIVE
            existing = stored.get(signature)
            pattern = RecurringPattern(id=existing.id if existing else str(uuid4()), status=status, **fields)
            self.patterns.save(pattern)
            if existing:
                updated += 1
            else:
                created += 1
            if status == PatternStatus.INACTIVE and (existing is None or existing.status == PatternStatus.ACTIVE):
                deactivated += 1

        for signature, pattern in stored.items():
            if signature in seen or pattern.status == PatternStatus.INACTIVE:
                continue
            if self._is_stale(pattern.cadence, pattern.last_seen_at, now):
                self.patterns.set_status(pattern.id, PatternStatus.INACTIVE)
                deactivated += 1

        result = DetectionResult(detected=detected, created=created, updated=updated, deactivated=deactivated)
        logger.info("[RECURRING] %s from %s transactions.", result.summary(), len(history))
        return result
