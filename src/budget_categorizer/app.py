import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from budget_categorizer.api.routes import categorization, recurring, rules, transactions
from budget_categorizer.classifiers.base import AIClassifier
from budget_categorizer.classifiers.llm import LLMClassifier
from budget_categorizer.core import settings
from budget_categorizer.core.configuration import (
    load_ai_config,
    load_pipeline_config,
    load_recurring_config,
)
from budget_categorizer.db.seed import seed_categories
from budget_categorizer.db.session import create_db
from budget_categorizer.errors import CategorizerError, RunFailure
from budget_categorizer.logger import get_logger, setup_logging
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


async def _categorizer_error_handler(request: Request, exc: CategorizerError) -> JSONResponse:
    if isinstance(exc, RunFailure):
        logger.error("[API] %s %s failed: %s", request.method, request.url.path, exc)
    elif exc.status_code >= 500:
        logger.error("[API] %s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.public_message})


def create_app(
    database_url: str | None = None,
    classifier: AIClassifier | None = None,
) -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()

        pipeline_config = load_pipeline_config()
        db = create_db(database_url or settings.DATABASE_URL)
        seed_categories(db, pipeline_config.transfer_category_name)

        ai_classifier = classifier
        if ai_classifier is None:
            ai_config = load_ai_config()
            if ai_config.enabled:
                ai_classifier = LLMClassifier(ai_config)
                logger.info(
                    "LLM classifier enabled: model=%s, base_url=%s",
                    ai_config.model,
                    ai_config.base_url or "default",
                )
            else:
                logger.info("OPENAI_API_KEY not set. AI categorization will be disabled.")

        api_token = settings.get_env_str("API_TOKEN")
        if not api_token:
            logger.warning("API_TOKEN not set. Every API request will be rejected.")

        transaction_repo = SqlTransactionRepository(db)
        category_repo = SqlCategoryRepository(db)
        rule_repo = SqlCategoryRuleRepository(db)
        log_repo = SqlCategorizationLogRepository(db)
        pattern_repo = SqlRecurringPatternRepository(db)

        app.state.db = db
        app.state.api_token = api_token
        app.state.run_lock = asyncio.Lock()
        app.state.transactions = transaction_repo
        app.state.categories = category_repo
        app.state.rules = rule_repo
        app.state.logs = log_repo
        app.state.patterns = pattern_repo
        app.state.pipeline = CategorizationPipeline(
            transaction_repo,
            category_repo,
            rule_repo,
            log_repo,
            classifier=ai_classifier,
            config=pipeline_config,
        )
        app.state.detector = RecurringDetector(transaction_repo, pattern_repo, load_recurring_config())

        logger.info("Services initialized.")
        yield
        logger.info("Service shutting down.")
        db.dispose()

    app = FastAPI(title="Budget Categorizer", lifespan=lifespan)
    app.add_exception_handler(CategorizerError, _categorizer_error_handler)  # type: ignore[arg-type]

    app.include_router(categorization.router)
    app.include_router(recurring.router)
    app.include_router(transactions.router)
    app.include_router(rules.router)

    return app


app = create_app()
