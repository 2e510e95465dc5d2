import asyncio
import re
from typing import Annotated

from fastapi import APIRouter, Depends, Request

from budget_categorizer.api.dependencies import get_categories, get_rules, read_payload, require_auth
from budget_categorizer.api.schemas import CreateRuleRequest, RuleList
from budget_categorizer.classifiers.rules import sort_rules
from budget_categorizer.errors import ValidationError
from budget_categorizer.logger import get_logger
from budget_categorizer.models import CategoryRule, MatchType
from budget_categorizer.repositories.sql import SqlCategoryRepository, SqlCategoryRuleRepository

logger = get_logger(__name__)

router = APIRouter(prefix="/api/categories/rules", dependencies=[Depends(require_auth)])


@router.get("", response_model=RuleList)
async def list_rules(
    rules: Annotated[SqlCategoryRuleRepository, Depends(get_rules)],
) -> RuleList:
    return RuleList(rules=sort_rules(await asyncio.to_thread(rules.list_all)))


@router.post("", response_model=CategoryRule, status_code=201)
async def create_rule(
    request: Request,
    rules: Annotated[SqlCategoryRuleRepository, Depends(get_rules)],
    categories: Annotated[SqlCategoryRepository, Depends(get_categories)],
) -> CategoryRule:
    payload = await read_payload(request, CreateRuleRequest)
    if not payload.pattern.strip():
        raise ValidationError("Pattern must not be blank")

    if payload.match_type == MatchType.REGEX:
        try:
            re.compile(payload.pattern)
        except re.error as exc:
            raise ValidationError(f"Invalid regular expression: {exc}") from exc

    if await asyncio.to_thread(categories.get, payload.category_id) is None:
        raise ValidationError("Unknown category")

    rule = await asyncio.to_thread(
        rules.create,
        payload.pattern.strip(),
        payload.category_id,
        match_type=payload.match_type,
        priority=payload.priority,
        account_id=payload.account_id,
        owner_id=payload.owner_id,
    )
    logger.info(
        "[API] Created %s rule '%s' (priority %s).",
        rule.match_type.value,
        rule.pattern,
        rule.priority,
    )
    return rule
