from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from budget_categorizer.models import CategoryRule, MatchType, PipelineStats, RecurringPattern


class Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class RunCategorizationRequest(Payload):
    account_id: str | None = None
    overwrite: bool = False


class ManualCategorizeRequest(Payload):
    category_id: str = Field(min_length=1)
    create_rule: bool = True


class CreateRuleRequest(Payload):
    pattern: str = Field(min_length=1, max_length=500)
    category_id: str = Field(min_length=1)
    match_type: MatchType = MatchType.CONTAINS
    priority: int = Field(default=100, ge=0, le=10_000)
    account_id: str | None = None
    owner_id: str | None = None


class RunCategorizationResponse(Payload):
    success: bool
    stats: PipelineStats
    message: str


class DetectRecurringResponse(Payload):
    success: bool
    detected: int
    created: int
    updated: int
    deactivated: int
    message: str


class ManualCategorizeResponse(Payload):
    success: bool
    transaction_id: str
    category_id: str
    rule: CategoryRule | None = None


class RecurringPatternList(Payload):
    patterns: list[RecurringPattern]


class RuleList(Payload):
    rules: list[CategoryRule]


class LogList(Payload):
    logs: list[PipelineStats]
