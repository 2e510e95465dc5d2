import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from budget_categorizer.api.dependencies import get_logs, get_pipeline, read_payload, require_auth
from budget_categorizer.api.schemas import LogList, RunCategorizationRequest, RunCategorizationResponse
from budget_categorizer.errors import RunInProgressError
from budget_categorizer.logger import get_logger
from budget_categorizer.repositories.sql import SqlCategorizationLogRepository
from budget_categorizer.services.categorization import CategorizationPipeline

logger = get_logger(__name__)

router = APIRouter(prefix="/api/categorization", dependencies=[Depends(require_auth)])

DISCONNECT_POLL_SECONDS = 0.5


async def _watch_disconnect(request: Request, cancel_event: asyncio.Event) -> None:
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.info("[API] Client disconnected; cancelling categorization run.")
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@router.post("/run", response_model=RunCategorizationResponse)
async def run_categorization(
    request: Request,
    pipeline: Annotated[CategorizationPipeline, Depends(get_pipeline)],
) -> RunCategorizationResponse:
    payload = await read_payload(request, RunCategorizationRequest, allow_empty=True)

    lock: asyncio.Lock = request.app.state.run_lock
    if lock.locked():
        raise RunInProgressError()

    async with lock:
        cancel_event = asyncio.Event()
        watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
        try:
            stats = await pipeline.run(
                payload.account_id,
                overwrite=payload.overwrite,
                cancel_event=cancel_event,
            )
        finally:
            watcher.cancel()

    return RunCategorizationResponse(
        success=stats.error_message is None,
        stats=stats,
        message=stats.summary(),
    )


@router.get("/logs", response_model=LogList)
async def list_logs(
    logs: Annotated[SqlCategorizationLogRepository, Depends(get_logs)],
    limit: Annotated[int, Query(ge=1, le=200)] = 20,
) -> LogList:
    return LogList(logs=await asyncio.to_thread(logs.list_recent, limit))
