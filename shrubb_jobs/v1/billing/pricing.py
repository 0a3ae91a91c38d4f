"""
Cost estimation for billable provider calls.

Estimates gate calls before they are made; the recorded spend uses the same
table applied to the token counts the provider actually reported.
"""

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class ModelPricing:
    """USD prices for one model."""

    input_per_1k: float = 0.0
    output_per_1k: float = 0.0
    per_image: float = 0.0


GPT_4O = "gpt-4o"
GPT_4O_MINI = "gpt-4o-mini"
DALLE_3 = "dall-e-3"

PRICING: dict[str, ModelPricing] = {
    GPT_4O: ModelPricing(input_per_1k=0.005, output_per_1k=0.015),
    GPT_4O_MINI: ModelPricing(input_per_1k=0.00015, output_per_1k=0.0006),
    DALLE_3: ModelPricing(per_image=0.04),
}


def pricing_for(model: str) -> ModelPricing:
    """Look up pricing by exact name, then by the longest matching prefix.

    Dated snapshots such as ``gpt-4o-mini-2024-07-18`` price like their base
    model. Unknown models are free, which keeps the gate permissive rather
    than failing a job on a pricing-table gap.
    """
    if model in PRICING:
        return PRICING[model]

    matches = [name for name in PRICING if model.startswith(name)]
    if not matches:
        return ModelPricing()
    return PRICING[max(matches, key=len)]


def estimate_cost(
    tokens_in: int, tokens_out: int, model: str, image_count: int = 0
) -> float:
    """Estimated USD cost of a call, rounded to avoid floating-point dust."""
    pricing = pricing_for(model)
    cost = (tokens_in / 1000) * pricing.input_per_1k
    cost += (tokens_out / 1000) * pricing.output_per_1k
    cost += image_count * pricing.per_image
    return round(cost, 6)


def cost_to_cents(cost_usd: float) -> int:
    """Whole cents, rounded up so fractional spend is never lost."""
    return math.ceil(round(cost_usd * 100, 6))
