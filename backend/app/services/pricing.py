from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

COST_PRECISION = Decimal("0.000001")
TOKENS_PER_PRICE_UNIT = Decimal(1000)
DEFAULT_MODEL = "default"


@dataclass(frozen=True)
class ModelCost:
    # USD per 1K tokens
    input: Decimal
    output: Decimal


MODEL_COSTS: dict[str, ModelCost] = {
    "gpt-4o": ModelCost(input=Decimal("0.005"), output=Decimal("0.015")),
    "gpt-4-turbo": ModelCost(input=Decimal("0.01"), output=Decimal("0.03")),
    "gpt-4": ModelCost(input=Decimal("0.03"), output=Decimal("0.06")),
    "gpt-4-32k": ModelCost(input=Decimal("0.06"), output=Decimal("0.12")),
    "gpt-3.5-turbo": ModelCost(input=Decimal("0.0005"), output=Decimal("0.0015")),
    "gpt-3.5-turbo-16k": ModelCost(input=Decimal("0.001"), output=Decimal("0.002")),
    DEFAULT_MODEL: ModelCost(input=Decimal("0.01"), output=Decimal("0.03")),
}


def get_model_cost(model_id: str) -> ModelCost:
    return MODEL_COSTS.get(model_id, MODEL_COSTS[DEFAULT_MODEL])


def calculate_cost(model_id: str, prompt_tokens: int, completion_tokens: int) -> Decimal:
    """Estimated USD cost of a call, rounded to six decimal places.

    Unknown model ids are priced at the default tier.
    """
    cost = get_model_cost(model_id)
    prompt_cost = Decimal(prompt_tokens) / TOKENS_PER_PRICE_UNIT * cost.input
    completion_cost = Decimal(completion_tokens) / TOKENS_PER_PRICE_UNIT * cost.output
    return (prompt_cost + completion_cost).quantize(COST_PRECISION, rounding=ROUND_HALF_UP)
