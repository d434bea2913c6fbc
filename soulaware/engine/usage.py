from typing import Optional

from soulaware.models import Usage
from .text import estimate_tokens

# Approximate USD pricing per 1k tokens, for observability only.
MINI_PRICING = (0.0008, 0.0032)
STANDARD_PRICING = (0.005, 0.015)


def pricing_for(model: str):
    return MINI_PRICING if "mini" in (model or "") else STANDARD_PRICING


def usage_or_estimate(reported: Optional[Usage], prompt_text: str, output_text: str) -> Usage:
    """Provider usage when reported, otherwise ceil(chars / 4) per side."""
    if reported is not None:
        return reported
    return Usage(prompt_tokens=estimate_tokens(prompt_text), completion_tokens=estimate_tokens(output_text))


def estimate_cost_usd(model: str, usage: Usage) -> float:
    prompt_per_1k, completion_per_1k = pricing_for(model)
    cost = (usage.prompt_tokens / 1000.0) * prompt_per_1k + (usage.completion_tokens / 1000.0) * completion_per_1k
    return round(cost, 6)


def estimate_cost_from_total(model: str, total_tokens: float) -> float:
    """Cost for a bare token total, assuming a 70/30 prompt/completion split."""
    if not model or total_tokens <= 0:
        return 0.0
    prompt_per_1k, completion_per_1k = pricing_for(model)
    cost = (total_tokens * 0.7 / 1000.0) * prompt_per_1k + (total_tokens * 0.3 / 1000.0) * completion_per_1k
    return round(cost, 6)
