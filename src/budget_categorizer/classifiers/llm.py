import json
from collections.abc import Sequence
from typing import Any

import httpx
from openai import OpenAI
from rapidfuzz import fuzz, process

from budget_categorizer.classifiers.base import AIBatchResult, AIClassification
from budget_categorizer.core.configuration import AIConfig
from budget_categorizer.logger import get_logger
from budget_categorizer.models import Category, CategoryRule, Transaction

logger = get_logger(__name__)

MAX_AI_CONFIDENCE = 0.95
FUZZY_CATEGORY_THRESHOLD = 90.0

BANKING_CONTEXT = """
Common bank statement abbreviations:
- "CB" = card payment
- "VIR" or "VIREMENT" = bank transfer
- "PRLV" or "PRELEVEMENT" = direct debit
- "ECH PRET" = loan installment
- "DGFIP" = tax authority
- "CHQ" = cheque
- "RET DAB" = ATM withdrawal
- Dates inside descriptions use DD.MM or DD/MM
"""


def _format_categories(categories: Sequence[Category]) -> str:
    lines = []
    for category in categories:
        kind = f" [{category.kind}]" if category.kind else ""
        lines.append(f"- {category.id}: {category.name}{kind}")
    return "\n".join(lines)


def build_instructions(categories: Sequence[Category], rule_hints: Sequence[CategoryRule]) -> str:
    names = {category.id: category.name for category in categories}
    hints = [
        f'- "{rule.pattern}" -> {names.get(rule.category_id, rule.category_id)}'
        for rule in rule_hints
    ]
    return f"""You categorize personal bank transactions.

CATEGORIES (id: name [kind]):
{_format_categories(categories)}
{BANKING_CONTEXT}
RULES CONFIRMED BY THE USER:
{chr(10).join(hints) if hints else "(none yet)"}

Income (positive amounts) must use income categories, expenses (negative amounts) expense categories.
Confidence: 0.9 if very clear, 0.7-0.8 if somewhat clear, 0.5-0.6 if guessing.
Respond with a JSON array only, no markdown. Each element: {{"id", "category", "confidence", "reasoning"}}
where "category" is one of the category ids above."""


def build_input(transactions: Sequence[Transaction]) -> str:
    items = [
        {
            "id": transaction.id,
            "description": transaction.description,
            "amount": transaction.amount,
            "currency": transaction.currency,
            "type": transaction.type.value if transaction.type else None,
            "date": transaction.date.strftime("%Y-%m-%d"),
            "bankCategory": transaction.bank_category,
        }
        for transaction in transactions
    ]
    return f"Categorize these {len(items)} transactions:\n{json.dumps(items, indent=2)}"


def parse_items(text: str) -> list[dict[str, Any]]:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
    data = json.loads(cleaned.strip())
    if isinstance(data, dict):
        data = data.get("items") or data.get("transactions") or [data]
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON array, got {type(data).__name__}")
    return [item for item in data if isinstance(item, dict)]


def resolve_category(label: str, categories: Sequence[Category]) -> Category | None:
    label = label.strip()
    if not label:
        return None
    for category in categories:
        if category.id == label:
            return category
    lowered = label.casefold()
    for category in categories:
        if category.name.casefold() == lowered:
            return category

    by_name = {category.name: category for category in categories}
    result = process.extractOne(label, by_name.keys(), scorer=fuzz.token_sort_ratio)
    if result:
        match_name, score, _ = result
        if score >= FUZZY_CATEGORY_THRESHOLD:
            return by_name[match_name]
    return None


class LLMClassifier:
    def __init__(self, config: AIConfig, client: OpenAI | None = None):
        self.config = config
        self.client = client or OpenAI(
            api_key=config.api_key,
            base_url=config.base_url or None,
            timeout=httpx.Timeout(config.timeout_seconds, connect=min(config.timeout_seconds, 10.0)),
            max_retries=0,
        )
        self.model = config.model

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return (
            input_tokens * self.config.input_cost_per_mtok
            + output_tokens * self.config.output_cost_per_mtok
        ) / 1_000_000

    def _request(self, instructions: str, prompt: str) -> tuple[str | None, int, int]:
        response = self.client.responses.create(
            model=self.model,
            instructions=instructions,
            input=prompt,
            temperature=0.0,
        )
        usage = getattr(response, "usage", None)
        input_tokens = int(getattr(usage, "input_tokens", 0) or 0)
        output_tokens = int(getattr(usage, "output_tokens", 0) or 0)
        return self._extract_output_text(response), input_tokens, output_tokens

    def _classify_chunk(
        self,
        chunk: Sequence[Transaction],
        categories: Sequence[Category],
        instructions: str,
    ) -> tuple[dict[str, AIClassification], int, int]:
        text, input_tokens, output_tokens = self._request(instructions, build_input(chunk))
        if text is None:
            raise ValueError("Empty response from AI service")

        wanted_ids = {transaction.id for transaction in chunk}
        classifications: dict[str, AIClassification] = {}
        for item in parse_items(text):
            tx_id = str(item.get("id", ""))
            if tx_id not in wanted_ids:
                continue
            category = resolve_category(str(item.get("category") or ""), categories)
            if category is None:
                logger.debug("[AI] Unknown category %r for transaction %s.", item.get("category"), tx_id)
                continue
            try:
                confidence = float(item.get("confidence", 0.0))
            except (TypeError, ValueError):
                confidence = 0.0
            classifications[tx_id] = AIClassification(
                category_id=category.id,
                confidence=max(0.0, min(confidence, MAX_AI_CONFIDENCE)),
                reasoning=item.get("reasoning"),
            )
        return classifications, input_tokens, output_tokens

    def classify_batch(
        self,
        transactions: Sequence[Transaction],
        candidate_categories: Sequence[Category],
        rule_hints: Sequence[CategoryRule] = (),
    ) -> AIBatchResult:
        if not transactions or not candidate_categories:
            return AIBatchResult()

        instructions = build_instructions(candidate_categories, rule_hints)
        classifications: dict[str, AIClassification] = {}
        failed_ids: list[str] = []
        total_input = 0
        total_output = 0
        batch_size = max(1, self.config.batch_size)

        for start in range(0, len(transactions), batch_size):
            chunk = transactions[start:start + batch_size]
            batch_number = start // batch_size + 1
            for attempt in range(self.config.max_retries + 1):
                try:
                    chunk_results, input_tokens, output_tokens = self._classify_chunk(
                        chunk, candidate_categories, instructions
                    )
                except Exception as exc:
                    if attempt < self.config.max_retries:
                        logger.warning("[AI] Batch %s failed (%s); retrying.", batch_number, exc)
                        continue
                    logger.error(
                        "[AI] Batch %s failed after %s attempts: %s",
                        batch_number,
                        attempt + 1,
                        exc,
                    )
                    failed_ids.extend(transaction.id for transaction in chunk)
                    break
                total_input += input_tokens
                total_output += output_tokens
                classifications.update(chunk_results)
                break

        estimated_cost = self.estimate_cost(total_input, total_output)
        logger.info(
            "[AI] Classified %s/%s transactions, tokens: %sin/%sout, estimated cost: $%.4f",
            len(classifications),
            len(transactions),
            total_input,
            total_output,
            estimated_cost,
        )
        return AIBatchResult(
            classifications=classifications,
            estimated_cost=estimated_cost,
            failed_ids=failed_ids,
        )

    def classify(
        self,
        transaction: Transaction,
        candidate_categories: Sequence[Category],
    ) -> AIClassification | None:
        result = self.classify_batch([transaction], candidate_categories)
        return result.classifications.get(transaction.id)

    @staticmethod
    def _extract_output_text(response: object) -> str | None:
        output_text = getattr(response, "output_text", None)
        if output_text and isinstance(output_text, str):
            return output_text

        output = getattr(response, "output", None)
        if not output:
            return None

        parts: list[str] = []
        for item in output:
            content = getattr(item, "content", None)
            if not content:
                continue
            for block in content:
                block_type = getattr(block, "type", None)
                if block_type in {"output_text", "text"}:
                    text = getattr(block, "text", None)
                    if text:
                        parts.append(text)

        if parts:
            return "".join(parts)
        return None
