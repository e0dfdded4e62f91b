"""
Pricing table and cost estimation.

Converts token usage into an estimated USD cost with six fractional digits,
the precision the ledger stores.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_UP
from typing import Dict

from .token_counter import TokenUsage

logger = logging.getLogger(__name__)

COST_QUANTUM = Decimal("0.000001")
ONE_MILLION = Decimal("1000000")


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    input_cost_per_1m: Decimal  # USD per 1M input tokens
    output_cost_per_1m: Decimal  # USD per 1M output tokens


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for known models."""
    prices: Dict[str, ModelPricing]

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a specific model.

        Raises:
            ValueError: If model is not in the table
        """
        if model not in self.prices:
            raise ValueError(f"Unsupported model: {model}")
        return self.prices[model]

    def __contains__(self, model: str) -> bool:
        return model in self.prices


# Approximate list prices, no dynamic fetching
PRICING_TABLE = PricingTable({
    "gemini-2.5-flash": ModelPricing(
        input_cost_per_1m=Decimal("0.075"),
        output_cost_per_1m=Decimal("0.30")
    ),
    "gpt-4o": ModelPricing(
        input_cost_per_1m=Decimal("2.50"),
        output_cost_per_1m=Decimal("10.00")
    ),
    "gpt-4o-mini": ModelPricing(
        input_cost_per_1m=Decimal("0.15"),
        output_cost_per_1m=Decimal("0.60")
    ),
    "claude-3-haiku": ModelPricing(
        input_cost_per_1m=Decimal("0.25"),
        output_cost_per_1m=Decimal("1.25")
    ),
    "claude-3-sonnet": ModelPricing(
        input_cost_per_1m=Decimal("3.00"),
        output_cost_per_1m=Decimal("15.00")
    ),
})


def quantize_cost(amount: Decimal) -> Decimal:
    """Round a cost UP to six fractional digits."""
    return amount.quantize(COST_QUANTUM, rounding=ROUND_UP)


def estimate_cost(model: str, usage: TokenUsage) -> Decimal:
    """Estimate the USD cost of a call.

    Unknown models cost zero: a pricing gap must never stop usage from
    being recorded.

    Args:
        model: Model identifier
        usage: Token usage data

    Returns:
        Estimated cost rounded UP to 6 decimal places
    """
    if model not in PRICING_TABLE:
        logger.warning("No pricing for model %s; recording zero cost", model)
        return quantize_cost(Decimal("0"))

    pricing = PRICING_TABLE.get_pricing(model)
    input_cost = (Decimal(usage.input_tokens) / ONE_MILLION) * pricing.input_cost_per_1m
    output_cost = (Decimal(usage.output_tokens) / ONE_MILLION) * pricing.output_cost_per_1m
    return quantize_cost(input_cost + output_cost)
