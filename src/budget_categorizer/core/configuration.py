import os
from dataclasses import dataclass
from typing import Literal

from budget_categorizer.core import settings
from budget_categorizer.logger import get_logger

ValueType = Literal["string", "int", "float"]

logger = get_logger(__name__)


@dataclass(frozen=True)
class ConfigField:
    key: str
    description: str
    default: str | int | float
    value_type: ValueType = "string"
    min_value: float | int | None = None
    max_value: float | int | None = None


CONFIG_FIELDS: tuple[ConfigField, ...] = (
    ConfigField(
        key="OPENAI_MODEL",
        description="Model name for the OpenAI-compatible client.",
        default=settings.DEFAULT_OPENAI_MODEL,
    ),
    ConfigField(
        key="AI_CONFIDENCE_THRESHOLD",
        description="Minimum confidence (0-1) for an AI suggestion to be accepted.",
        default=0.6,
        value_type="float",
        min_value=0.0,
        max_value=1.0,
    ),
    ConfigField(
        key="AI_BATCH_SIZE",
        description="Transactions sent to the AI service per request.",
        default=50,
        value_type="int",
        min_value=1,
        max_value=500,
    ),
    ConfigField(
        key="AI_TIMEOUT_SECONDS",
        description="Timeout for a single AI request.",
        default=30.0,
        value_type="float",
        min_value=1.0,
    ),
    ConfigField(
        key="AI_MAX_RETRIES",
        description="Retries for a failed AI batch before giving up on it.",
        default=1,
        value_type="int",
        min_value=0,
        max_value=5,
    ),
    ConfigField(
        key="AI_INPUT_COST_PER_MTOK",
        description="Price per million input tokens, used for cost estimates.",
        default=0.25,
        value_type="float",
        min_value=0.0,
    ),
    ConfigField(
        key="AI_OUTPUT_COST_PER_MTOK",
        description="Price per million output tokens, used for cost estimates.",
        default=1.25,
        value_type="float",
        min_value=0.0,
    ),
    ConfigField(
        key="TRANSFER_WINDOW_DAYS",
        description="Maximum days between the two legs of a transfer.",
        default=3,
        value_type="int",
        min_value=0,
        max_value=31,
    ),
    ConfigField(
        key="TRANSFER_AMOUNT_EPSILON",
        description="Maximum absolute amount difference between transfer legs.",
        default=0.01,
        value_type="float",
        min_value=0.0,
    ),
    ConfigField(
        key="TRANSFER_CATEGORY_NAME",
        description="Name of the internal category assigned to transfers.",
        default=settings.DEFAULT_TRANSFER_CATEGORY_NAME,
    ),
    ConfigField(
        key="RECURRING_LOOKBACK_DAYS",
        description="History window analysed by recurring detection.",
        default=183,
        value_type="int",
        min_value=14,
    ),
    ConfigField(
        key="RECURRING_MIN_OCCURRENCES",
        description="Occurrences needed before a group counts as recurring.",
        default=3,
        value_type="int",
        min_value=2,
    ),
    ConfigField(
        key="RECURRING_AMOUNT_TOLERANCE",
        description="Allowed relative deviation of each amount from the mean.",
        default=0.1,
        value_type="float",
        min_value=0.0,
        max_value=1.0,
    ),
    ConfigField(
        key="RECURRING_INTERVAL_DEVIATION",
        description="Allowed standard deviation of intervals, relative to the mean interval.",
        default=0.2,
        value_type="float",
        min_value=0.0,
        max_value=1.0,
    ),
    ConfigField(
        key="RECURRING_INACTIVITY_FACTOR",
        description="A pattern is inactive once silent for this many cadence periods.",
        default=2.0,
        value_type="float",
        min_value=1.0,
    ),
    ConfigField(
        key="RECURRING_SIGNATURE_SIMILARITY",
        description="Fuzzy score (0-100) above which two payee signatures are merged.",
        default=92.0,
        value_type="float",
        min_value=50.0,
        max_value=100.0,
    ),
)

_FIELDS_BY_KEY = {field.key: field for field in CONFIG_FIELDS}


def _validate_value(field: ConfigField, raw_value: str) -> tuple[str | int | float, str | None]:
    value = raw_value.strip()
    if not value:
        return field.default, None

    if "\n" in value or "\r" in value:
        return field.default, "Value must be a single line."

    if field.value_type == "int":
        try:
            parsed_int = int(value)
        except ValueError:
            return field.default, "Must be a whole number."
        if field.min_value is not None and parsed_int < field.min_value:
            return field.default, f"Must be at least {field.min_value}."
        if field.max_value is not None and parsed_int > field.max_value:
            return field.default, f"Must be at most {field.max_value}."
        return parsed_int, None

    if field.value_type == "float":
        try:
            parsed_float = float(value)
        except ValueError:
            return field.default, "Must be a number."
        if field.min_value is not None and parsed_float < field.min_value:
            return field.default, f"Must be at least {field.min_value}."
        if field.max_value is not None and parsed_float > field.max_value:
            return field.default, f"Must be at most {field.max_value}."
        return parsed_float, None

    return value, None


def resolve_value(key: str) -> str | int | float:
    field = _FIELDS_BY_KEY[key]
    raw_value = os.getenv(key)
    if raw_value is None:
        return field.default
    value, error = _validate_value(field, raw_value)
    if error:
        logger.warning(
            "[CONFIG] Invalid %s='%s' (%s) Using default %s.",
            key,
            raw_value,
            error,
            field.default,
        )
    return value


@dataclass(frozen=True)
class AIConfig:
    api_key: str | None
    model: str
    base_url: str | None
    batch_size: int
    timeout_seconds: float
    max_retries: int
    input_cost_per_mtok: float
    output_cost_per_mtok: float

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


@dataclass(frozen=True)
class PipelineConfig:
    ai_confidence_threshold: float = 0.6
    transfer_window_days: int = 3
    transfer_amount_epsilon: float = 0.01
    transfer_category_name: str = settings.DEFAULT_TRANSFER_CATEGORY_NAME
    transfer_confidence: float = 0.9
    bank_confidence: float = 0.7
    rule_confidence: float = 1.0


@dataclass(frozen=True)
class RecurringConfig:
    lookback_days: int = 183
    min_occurrences: int = 3
    amount_tolerance: float = 0.1
    interval_deviation: float = 0.2
    inactivity_factor: float = 2.0
    signature_similarity: float = 92.0


def load_ai_config() -> AIConfig:
    return AIConfig(
        api_key=settings.get_env_str("OPENAI_API_KEY"),
        model=str(resolve_value("OPENAI_MODEL")),
        base_url=settings.get_env_str("OPENAI_BASE_URL"),
        batch_size=int(resolve_value("AI_BATCH_SIZE")),
        timeout_seconds=float(resolve_value("AI_TIMEOUT_SECONDS")),
        max_retries=int(resolve_value("AI_MAX_RETRIES")),
        input_cost_per_mtok=float(resolve_value("AI_INPUT_COST_PER_MTOK")),
        output_cost_per_mtok=float(resolve_value("AI_OUTPUT_COST_PER_MTOK")),
    )


def load_pipeline_config() -> PipelineConfig:
    return PipelineConfig(
        ai_confidence_threshold=float(resolve_value("AI_CONFIDENCE_THRESHOLD")),
        transfer_window_days=int(resolve_value("TRANSFER_WINDOW_DAYS")),
        transfer_amount_epsilon=float(resolve_value("TRANSFER_AMOUNT_EPSILON")),
        transfer_category_name=str(resolve_value("TRANSFER_CATEGORY_NAME")),
    )


def load_recurring_config() -> RecurringConfig:
    return RecurringConfig(
        lookback_days=int(resolve_value("RECURRING_LOOKBACK_DAYS")),
        min_occurrences=int(resolve_value("RECURRING_MIN_OCCURRENCES")),
        amount_tolerance=float(resolve_value("RECURRING_AMOUNT_TOLERANCE")),
        interval_deviation=float(resolve_value("RECURRING_INTERVAL_DEVIATION")),
        inactivity_factor=float(resolve_value("RECURRING_INACTIVITY_FACTOR")),
        signature_similarity=float(resolve_value("RECURRING_SIGNATURE_SIMILARITY")),
    )
