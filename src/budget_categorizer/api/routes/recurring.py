import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends

from budget_categorizer.api.dependencies import get_detector, get_patterns, require_auth
from budget_categorizer.api.schemas import DetectRecurringResponse, RecurringPatternList
from budget_categorizer.errors import NotFoundError, RunFailure
from budget_categorizer.logger import get_logger
from budget_categorizer.models import PatternStatus, RecurringPattern
from budget_categorizer.repositories.sql import SqlRecurringPatternRepository
from budget_categorizer.services.recurring import RecurringDetector

logger = get_logger(__name__)

router = APIRouter(prefix="/api/recurring", dependencies=[Depends(require_auth)])


@router.post("/detect", response_model=DetectRecurringResponse)
async def detect_recurring(
    detector: Annotated[RecurringDetector, Depends(get_detector)],
) -> DetectRecurringResponse:
    try:
        result = await asyncio.to_thread(detector.detect)
    except Exception as exc:
        logger.exception("[RECURRING] Detection failed.")
        raise RunFailure(str(exc), public_message="Recurring detection failed") from exc

    return DetectRecurringResponse(
        success=True,
        detected=result.detected,
        created=result.created,
        updated=result.updated,
        deactivated=result.deactivated,
        message=result.summary(),
    )


@router.get("", response_model=RecurringPatternList)
async def list_patterns(
    patterns: Annotated[SqlRecurringPatternRepository, Depends(get_patterns)],
    status: PatternStatus | None = None,
) -> RecurringPatternList:
    return RecurringPatternList(patterns=await asyncio.to_thread(patterns.list, status))


@router.delete("/{pattern_id}", response_model=RecurringPattern)
async def deactivate_pattern(
    pattern_id: str,
    patterns: Annotated[SqlRecurringPatternRepository, Depends(get_patterns)],
) -> RecurringPattern:
    pattern = await asyncio.to_thread(patterns.set_status, pattern_id, PatternStatus.INACTIVE)
    if pattern is None:
        raise NotFoundError("Recurring pattern not found")
    logger.info("[RECURRING] Pattern %s ('%s') deactivated.", pattern.id, pattern.signature)
    return pattern
