import json
import secrets
from typing import Annotated, TypeVar

from fastapi import Header, HTTPException, Request
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from budget_categorizer.errors import AuthorizationError, ValidationError
from budget_categorizer.logger import get_logger
from budget_categorizer.repositories.sql import (
    SqlCategorizationLogRepository,
    SqlCategoryRepository,
    SqlCategoryRuleRepository,
    SqlRecurringPatternRepository,
    SqlTransactionRepository,
)
from budget_categorizer.services.categorization import CategorizationPipeline
from budget_categorizer.services.recurring import RecurringDetector

logger = get_logger(__name__)

PayloadT = TypeVar("PayloadT", bound=BaseModel)


def _state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return value


def require_auth(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    expected = getattr(request.app.state, "api_token", None)
    scheme, _, token = (authorization or "").partition(" ")
    if not expected or scheme.lower() != "bearer" or not secrets.compare_digest(token.strip(), expected):
        logger.warning("[API] Rejected unauthorized request to %s.", request.url.path)
        raise AuthorizationError()


def get_pipeline(request: Request) -> CategorizationPipeline:
    return _state(request, "pipeline")


def get_detector(request: Request) -> RecurringDetector:
    return _state(request, "detector")


def get_transactions(request: Request) -> SqlTransactionRepository:
    return _state(request, "transactions")


def get_categories(request: Request) -> SqlCategoryRepository:
    return _state(request, "categories")


def get_rules(request: Request) -> SqlCategoryRuleRepository:
    return _state(request, "rules")


def get_logs(request: Request) -> SqlCategorizationLogRepository:
    return _state(request, "logs")


def get_patterns(request: Request) -> SqlRecurringPatternRepository:
    return _state(request, "patterns")


async def read_payload(request: Request, model: type[PayloadT], *, allow_empty: bool = False) -> PayloadT:
    body = await request.body()
    if not body.strip():
        if allow_empty:
            return model()
        raise ValidationError("Request body is required")
    try:
        data = json.loads(body)
    except ValueError as exc:
        logger.warning("[API] Received invalid JSON payload on %s.", request.url.path)
        raise ValidationError("Invalid JSON payload") from exc
    if not isinstance(data, dict):
        raise ValidationError("Expected a JSON object")
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        fields = sorted({".".join(str(part) for part in error["loc"]) for error in exc.errors()})
        raise ValidationError(f"Invalid field(s): {', '.join(fields)}") from exc
