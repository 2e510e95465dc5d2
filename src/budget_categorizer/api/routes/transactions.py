import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends, Request

from budget_categorizer.api.dependencies import (
    get_categories,
    get_rules,
    get_transactions,
    read_payload,
    require_auth,
)
from budget_categorizer.api.schemas import ManualCategorizeRequest, ManualCategorizeResponse
from budget_categorizer.classifiers.rules import normalize_description
from budget_categorizer.errors import NotFoundError, ValidationError
from budget_categorizer.logger import get_logger
from budget_categorizer.models import CategorySource, MatchType, TransactionCategoryAssignment
from budget_categorizer.repositories.sql import (
    SqlCategoryRepository,
    SqlCategoryRuleRepository,
    SqlTransactionRepository,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/transactions", dependencies=[Depends(require_auth)])

MANUAL_RULE_PRIORITY = 200


@router.post("/{transaction_id}/categorize", response_model=ManualCategorizeResponse)
async def categorize_transaction(
    transaction_id: str,
    request: Request,
    transactions: Annotated[SqlTransactionRepository, Depends(get_transactions)],
    categories: Annotated[SqlCategoryRepository, Depends(get_categories)],
    rules: Annotated[SqlCategoryRuleRepository, Depends(get_rules)],
) -> ManualCategorizeResponse:
    payload = await read_payload(request, ManualCategorizeRequest)

    transaction = await asyncio.to_thread(transactions.get, transaction_id)
    if transaction is None:
        raise NotFoundError("Transaction not found")
    category = await asyncio.to_thread(categories.get, payload.category_id)
    if category is None:
        raise ValidationError("Unknown category")

    await asyncio.to_thread(
        transactions.save_assignment,
        TransactionCategoryAssignment(
            transaction_id=transaction.id,
            category_id=category.id,
            source=CategorySource.MANUAL,
            confidence=1.0,
        ),
    )
    logger.info("[API] Transaction %s manually categorized as '%s'.", transaction.id, category.name)

    rule = None
    pattern = normalize_description(transaction.description)
    if payload.create_rule and pattern:
        rule = await asyncio.to_thread(
            rules.upsert,
            pattern,
            category.id,
            match_type=MatchType.EXACT,
            priority=MANUAL_RULE_PRIORITY,
            owner_id=transaction.owner_id,
        )
        logger.info("[API] Learned exact rule '%s' -> '%s'.", pattern, category.name)

    return ManualCategorizeResponse(
        success=True,
        transaction_id=transaction.id,
        category_id=category.id,
        rule=rule,
    )
