import asyncio
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import NamedTuple, TypeVar

from budget_categorizer.classifiers.bank import map_bank_category
from budget_categorizer.classifiers.base import AIBatchResult, AIClassifier
from budget_categorizer.classifiers.rules import match_rules
from budget_categorizer.classifiers.transfers import assign_transfer_pairs, is_transfer_counterpart
from budget_categorizer.core.configuration import PipelineConfig
from budget_categorizer.errors import RunFailure, StageFailure
from budget_categorizer.logger import get_logger
from budget_categorizer.models import (
    Category,
    CategoryRule,
    CategorySource,
    PipelineStats,
    Transaction,
    TransactionCategoryAssignment,
)
from budget_categorizer.repositories.base import (
    CategorizationLogRepository,
    CategoryRepository,
    CategoryRuleRepository,
    TransactionRepository,
)

logger = get_logger(__name__)

T = TypeVar("T")

CANCELLED = "cancelled"
MAX_RULE_HINTS = 50

_COUNTER_BY_SOURCE = {
    CategorySource.RULE: "rule_matches",
    CategorySource.BANK: "bank_matches",
    CategorySource.TRANSFER: "transfer_matches",
    CategorySource.AI: "ai_matches",
    CategorySource.UNMATCHED: "unmatched",
}


class StageResult(NamedTuple):
    assignment: TransactionCategoryAssignment


@dataclass
class _RunState:
    """Mutable bookkeeping for a single run."""

    account_id: str | None
    started_at: datetime
    clock: float = field(default_factory=time.perf_counter)
    counts: dict[str, int] = field(default_factory=lambda: dict.fromkeys(_COUNTER_BY_SOURCE.values(), 0))
    estimated_cost: float = 0.0
    done: set[str] = field(default_factory=set)

    def record(self, source: CategorySource) -> None:
        self.counts[_COUNTER_BY_SOURCE[source]] += 1

    def stats(self, error_message: str | None = None) -> PipelineStats:
        return PipelineStats(
            total=sum(self.counts.values()),
            duration_ms=int((time.perf_counter() - self.clock) * 1000),
            estimated_cost=round(self.estimated_cost, 6),
            account_id=self.account_id,
            started_at=self.started_at,
            error_message=error_message,
            **self.counts,
        )


@dataclass
class _RunContext:
    """Read-only inputs shared by the stages of a run."""

    batch: list[Transaction]
    categories: list[Category]
    rules: list[CategoryRule]
    transfer_category: Category
    candidates: list[Transaction]
    claimed: set[str]
    pairs: dict[str, Transaction] = field(default_factory=dict)
    # Transfer legs outside the batch whose counterpart is being re-evaluated.
    relinked: list[Transaction] = field(default_factory=list)


def _unmatched(transaction: Transaction, reasoning: str | None = None) -> TransactionCategoryAssignment:
    return TransactionCategoryAssignment(
        transaction_id=transaction.id,
        category_id=None,
        source=CategorySource.UNMATCHED,
        confidence=0.0,
        reasoning=reasoning,
    )


class CategorizationPipeline:
    """Runs every pending transaction through rules, bank hints, transfers and AI.

    Each transaction ends in exactly one terminal assignment. Stages run in a
    fixed order and a later stage only sees transactions the earlier ones
    left untouched.
    """

    def __init__(
        self,
        transactions: TransactionRepository,
        categories: CategoryRepository,
        rules: CategoryRuleRepository,
        logs: CategorizationLogRepository,
        classifier: AIClassifier | None = None,
        config: PipelineConfig | None = None,
    ) -> None:
        self.transactions = transactions
        self.categories = categories
        self.rules = rules
        self.logs = logs
        self.classifier = classifier
        self.config = config or PipelineConfig()

    # -- stages ---------------------------------------------------------------

    def _rule_stage(self, transaction: Transaction, context: _RunContext) -> StageResult | None:
        rule = match_rules(transaction, context.rules)
        if rule is None:
            return None
        return StageResult(
            TransactionCategoryAssignment(
                transaction_id=transaction.id,
                category_id=rule.category_id,
                source=CategorySource.RULE,
                confidence=self.config.rule_confidence,
                reasoning=f"Rule {rule.match_type.value} '{rule.pattern}'",
            )
        )

    def _bank_stage(self, transaction: Transaction, context: _RunContext) -> StageResult | None:
        category = map_bank_category(transaction, transaction.source_parser, context.categories)
        if category is None:
            return None
        return StageResult(
            TransactionCategoryAssignment(
                transaction_id=transaction.id,
                category_id=category.id,
                source=CategorySource.BANK,
                confidence=self.config.bank_confidence,
                reasoning=f"Bank category '{transaction.bank_category}'",
            )
        )

    def _transfer_stage(self, transaction: Transaction, context: _RunContext) -> list[Transaction]:
        """Every unclaimed candidate that could be the other leg of ``transaction``."""
        return [
            candidate
            for candidate in context.candidates
            if candidate.id not in context.claimed
            and is_transfer_counterpart(
                transaction,
                candidate,
                window_days=self.config.transfer_window_days,
                epsilon=self.config.transfer_amount_epsilon,
            )
        ]

    def _transfer_assignment(
        self,
        transaction: Transaction,
        counterpart: Transaction,
        context: _RunContext,
    ) -> TransactionCategoryAssignment:
        return TransactionCategoryAssignment(
            transaction_id=transaction.id,
            category_id=context.transfer_category.id,
            source=CategorySource.TRANSFER,
            confidence=self.config.transfer_confidence,
            linked_transaction_id=counterpart.id,
            reasoning=f"Transfer with account {counterpart.account_id}",
        )

    @staticmethod
    def _guard(
        stage: str,
        func: Callable[..., T],
        transaction: Transaction,
        *args: object,
    ) -> T:
        try:
            return func(transaction, *args)
        except Exception as exc:
            raise StageFailure(stage, transaction.id, exc) from exc

    # -- run --------------------------------------------------------------------

    async def _load_context(self, account_id: str | None, overwrite: bool) -> _RunContext:
        batch = await asyncio.to_thread(self.transactions.list_for_run, account_id, overwrite=overwrite)
        transfer_category = await asyncio.to_thread(
            self.categories.ensure, self.config.transfer_category_name, "transfer"
        )
        categories = await asyncio.to_thread(self.categories.list)
        rules = await asyncio.to_thread(self.rules.list_active)

        candidates = list(batch)
        relinked: list[Transaction] = []
        if batch:
            window = timedelta(days=self.config.transfer_window_days)
            start = min(transaction.date for transaction in batch) - window
            end = max(transaction.date for transaction in batch) + window
            seen = {transaction.id for transaction in batch}
            outside = await asyncio.to_thread(self.transactions.list_transfer_candidates, start, end)
            if overwrite:
                relinked = await asyncio.to_thread(self.transactions.list_linked_transfers, sorted(seen))
                relinked = [transaction for transaction in relinked if transaction.id not in seen]
                outside = relinked + outside
            for transaction in outside:
                if transaction.id not in seen:
                    seen.add(transaction.id)
                    candidates.append(transaction)

        return _RunContext(
            batch=batch,
            categories=categories,
            rules=rules,
            transfer_category=transfer_category,
            candidates=candidates,
            claimed=set(),
            relinked=relinked,
        )

    def _evaluate_static_stages(self, context: _RunContext) -> dict[str, StageResult | StageFailure]:
        """Rule and bank stages for the whole batch.

        Also marks candidates a rule or bank hint would categorize so the
        transfer stage never claims them.
        """
        outcomes: dict[str, StageResult | StageFailure] = {}
        batch_ids = {transaction.id for transaction in context.batch}
        for transaction in context.candidates:
            try:
                result = self._guard("rule", self._rule_stage, transaction, context)
                if result is None:
                    result = self._guard("bank", self._bank_stage, transaction, context)
            except StageFailure as exc:
                if transaction.id in batch_ids:
                    outcomes[transaction.id] = exc
                context.claimed.add(transaction.id)
                continue
            if result is not None:
                context.claimed.add(transaction.id)
                if transaction.id in batch_ids:
                    outcomes[transaction.id] = result
        return outcomes

    def _pair_transfers(self, context: _RunContext, outcomes: dict[str, StageResult | StageFailure]) -> None:
        """Transfer stage for the whole batch.

        Pairs are chosen over the batch at once so that a leg taken by a
        closer pair never strands its other qualifying counterpart.
        """
        edges: list[tuple[Transaction, Transaction]] = []
        for transaction in context.batch:
            if transaction.id in outcomes:
                continue
            try:
                counterparts = self._guard("transfer", self._transfer_stage, transaction, context)
            except StageFailure as exc:
                outcomes[transaction.id] = exc
                context.claimed.add(transaction.id)
                continue
            edges.extend((transaction, counterpart) for counterpart in counterparts)
        context.pairs = assign_transfer_pairs(
            (transaction, counterpart)
            for transaction, counterpart in edges
            if transaction.id not in context.claimed and counterpart.id not in context.claimed
        )

    async def _release_relinked(self, state: _RunState, context: _RunContext) -> None:
        """Clear transfer legs whose counterpart was re-categorized without them."""
        for transaction in context.relinked:
            if transaction.id in state.done or transaction.linked_transaction_id not in state.done:
                continue
            logger.info(
                "[PIPELINE] Transfer %s lost its counterpart %s; clearing its assignment.",
                transaction.id,
                transaction.linked_transaction_id,
            )
            await asyncio.to_thread(self.transactions.clear_assignment, transaction.id)

    async def _write(self, state: _RunState, assignment: TransactionCategoryAssignment, counted: bool) -> None:
        await asyncio.to_thread(self.transactions.save_assignment, assignment)
        state.done.add(assignment.transaction_id)
        if counted:
            state.record(assignment.source)

    async def _classify_remaining(
        self,
        pending: Sequence[Transaction],
        context: _RunContext,
    ) -> AIBatchResult | StageFailure:
        candidates = [
            category
            for category in context.categories
            if category.id != context.transfer_category.id and category.kind != "transfer"
        ]
        try:
            return await asyncio.to_thread(
                self.classifier.classify_batch,  # type: ignore[union-attr]
                list(pending),
                candidates,
                context.rules[:MAX_RULE_HINTS],
            )
        except Exception as exc:
            return StageFailure("ai", ",".join(t.id for t in pending[:3]), exc)

    async def _finish(self, state: _RunState, error_message: str | None = None) -> PipelineStats:
        stats = state.stats(error_message)
        await asyncio.to_thread(self.logs.append, stats)
        return stats

    async def run(
        self,
        account_id: str | None = None,
        *,
        overwrite: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> PipelineStats:
        state = _RunState(account_id=account_id, started_at=datetime.now(timezone.utc))
        cancel_event = cancel_event or asyncio.Event()

        try:
            context = await self._load_context(account_id, overwrite)
            logger.info(
                "[PIPELINE] Starting run (account=%s, overwrite=%s): %s transactions.",
                account_id or "all",
                overwrite,
                len(context.batch),
            )
            batch_ids = {transaction.id for transaction in context.batch}
            outcomes = self._evaluate_static_stages(context)
            self._pair_transfers(context, outcomes)
            ai_pending: list[Transaction] = []

            for transaction in context.batch:
                if transaction.id in state.done:
                    continue
                if cancel_event.is_set():
                    return await self._cancelled(state, context)

                outcome = outcomes.get(transaction.id)
                if isinstance(outcome, StageFailure):
                    logger.warning("[PIPELINE] %s", outcome)
                    await self._write(state, _unmatched(transaction, f"{outcome.stage} stage failed"), True)
                    continue
                if outcome is not None:
                    await self._write(state, outcome.assignment, True)
                    continue

                counterpart = context.pairs.get(transaction.id)
                if counterpart is not None:
                    await self._write(state, self._transfer_assignment(transaction, counterpart, context), True)
                    await self._write(
                        state,
                        self._transfer_assignment(counterpart, transaction, context),
                        counterpart.id in batch_ids,
                    )
                    continue

                ai_pending.append(transaction)

            if ai_pending and cancel_event.is_set():
                return await self._cancelled(state, context)
            await self._run_ai_stage(state, ai_pending, context, cancel_event)
            if cancel_event.is_set() and any(t.id not in state.done for t in ai_pending):
                return await self._cancelled(state, context)
            await self._release_relinked(state, context)

        except Exception as exc:
            logger.exception("[PIPELINE] Run aborted after %s transactions.", len(state.done))
            error_message = f"Run aborted: {type(exc).__name__}"
            stats = state.stats(error_message)
            try:
                await asyncio.to_thread(self.logs.append, stats)
            except Exception:
                logger.exception("[PIPELINE] Could not persist stats for the aborted run.")
            raise RunFailure(str(exc), stats=stats) from exc

        stats = await self._finish(state)
        logger.info("[PIPELINE] %s in %sms.", stats.summary(), stats.duration_ms)
        return stats

    async def _run_ai_stage(
        self,
        state: _RunState,
        pending: list[Transaction],
        context: _RunContext,
        cancel_event: asyncio.Event,
    ) -> None:
        if not pending:
            return

        result: AIBatchResult | StageFailure | None = None
        if self.classifier is not None:
            result = await self._classify_remaining(pending, context)
            if isinstance(result, StageFailure):
                logger.warning("[PIPELINE] AI stage failed for %s transactions: %s", len(pending), result.cause)
            else:
                state.estimated_cost += result.estimated_cost
        else:
            logger.debug("[PIPELINE] AI disabled; %s transactions left unmatched.", len(pending))

        known = {category.id for category in context.categories}
        threshold = self.config.ai_confidence_threshold
        for transaction in pending:
            if cancel_event.is_set():
                return
            if isinstance(result, AIBatchResult):
                classification = result.classifications.get(transaction.id)
            else:
                classification = None

            if classification and classification.confidence > threshold and classification.category_id in known:
                assignment = TransactionCategoryAssignment(
                    transaction_id=transaction.id,
                    category_id=classification.category_id,
                    source=CategorySource.AI,
                    confidence=classification.confidence,
                    reasoning=classification.reasoning,
                )
            else:
                reasoning = None
                if classification is not None:
                    reasoning = f"AI confidence {classification.confidence:.2f} not above {threshold:.2f}"
                elif isinstance(result, StageFailure) or (
                    isinstance(result, AIBatchResult) and transaction.id in result.failed_ids
                ):
                    reasoning = "ai stage failed"
                assignment = _unmatched(transaction, reasoning)
            await self._write(state, assignment, True)

    async def _cancelled(self, state: _RunState, context: _RunContext) -> PipelineStats:
        await self._release_relinked(state, context)
        stats = await self._finish(state, CANCELLED)
        logger.warning("[PIPELINE] Run cancelled after %s transactions.", stats.total)
        return stats
