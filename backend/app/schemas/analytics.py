from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.services.pricing import DEFAULT_MODEL, MODEL_COSTS
from app.services.usage_analytics import UsageSummary, as_utc


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        protected_namespaces=(),
    )


class UsageRecordOut(CamelModel):
    id: UUID
    user_id: UUID
    assistant_id: str | None
    thread_id: str | None
    model_id: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    estimated_cost: float
    request_type: str
    success: bool
    error_message: str | None
    metadata: dict = Field(default_factory=dict, validation_alias="usage_metadata")
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _created_at_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class ModelUsageOut(CamelModel):
    tokens: int
    cost: float


class PeriodSummaryOut(CamelModel):
    period: str
    requests: int
    tokens: int
    cost: float
    models: dict[str, ModelUsageOut]


class UsageSummaryOut(CamelModel):
    total_requests: int
    total_tokens: int
    total_cost: float
    period_summaries: list[PeriodSummaryOut]

    @classmethod
    def from_summary(cls, summary: UsageSummary) -> UsageSummaryOut:
        return cls(
            total_requests=summary.total_requests,
            total_tokens=summary.total_tokens,
            total_cost=float(summary.total_cost),
            period_summaries=[
                PeriodSummaryOut(
                    period=period.period,
                    requests=period.requests,
                    tokens=period.tokens,
                    cost=float(period.cost),
                    models={
                        model_id: ModelUsageOut(tokens=usage.tokens, cost=float(usage.cost))
                        for model_id, usage in period.models.items()
                    },
                )
                for period in summary.period_summaries
            ],
        )


class ModelPriceOut(CamelModel):
    input: float
    output: float


class PricingOut(CamelModel):
    default_model: str
    models: dict[str, ModelPriceOut]

    @classmethod
    def current(cls) -> PricingOut:
        return cls(
            default_model=DEFAULT_MODEL,
            models={
                model_id: ModelPriceOut(input=float(cost.input), output=float(cost.output))
                for model_id, cost in MODEL_COSTS.items()
            },
        )
