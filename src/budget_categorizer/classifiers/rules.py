import re
import unicodedata
from collections.abc import Iterable
from functools import lru_cache

from budget_categorizer.logger import get_logger
from budget_categorizer.models import CategoryRule, MatchType, Transaction

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_description(description: str) -> str:
    """Upper-case, strip accents and collapse whitespace."""
    decomposed = unicodedata.normalize("NFD", description)
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return _WHITESPACE.sub(" ", stripped.upper().strip())


@lru_cache(maxsize=512)
def _compile(pattern: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as exc:
        logger.debug("[RULES] Ignoring invalid regex %r: %s", pattern, exc)
        return None


def _rule_sort_key(rule: CategoryRule) -> tuple[int, float, str]:
    created = rule.created_at.timestamp() if rule.created_at else float("-inf")
    return (-rule.priority, created, rule.id)


def sort_rules(rules: Iterable[CategoryRule]) -> list[CategoryRule]:
    return sorted(rules, key=_rule_sort_key)


def rule_in_scope(rule: CategoryRule, transaction: Transaction) -> bool:
    if rule.account_id is not None and rule.account_id != transaction.account_id:
        return False
    if rule.owner_id is not None and rule.owner_id != transaction.owner_id:
        return False
    return True


def rule_matches(rule: CategoryRule, normalized_description: str, raw_description: str | None = None) -> bool:
    if rule.match_type == MatchType.REGEX:
        compiled = _compile(rule.pattern)
        if compiled is None:
            return False
        # Accented literals and spacing only survive in the raw text.
        texts = (normalized_description, raw_description or "")
        return any(compiled.search(text) for text in texts)

    pattern = normalize_description(rule.pattern)
    if not pattern:
        return False
    if rule.match_type == MatchType.EXACT:
        return normalized_description == pattern
    if rule.match_type == MatchType.STARTS_WITH:
        return normalized_description.startswith(pattern)
    return pattern in normalized_description


def match_rules(transaction: Transaction, rules: Iterable[CategoryRule]) -> CategoryRule | None:
    normalized = normalize_description(transaction.description)
    for rule in sort_rules(rules):
        if not rule.is_active or not rule_in_scope(rule, transaction):
            continue
        if rule_matches(rule, normalized, transaction.description):
            return rule
    return None


def match_category(transaction: Transaction, rules: Iterable[CategoryRule]) -> str | None:
    rule = match_rules(transaction, rules)
    return rule.category_id if rule else None
