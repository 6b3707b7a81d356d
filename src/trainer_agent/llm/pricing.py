"""
Model pricing and per-call cost calculation.

Rates are USD per million tokens. Cost is stored in fractional cents so that
cheap calls do not round away to zero.
"""

from dataclasses import dataclass

from .base import TokenUsage


@dataclass(frozen=True)
class ModelPricing:
    input: float
    output: float
    cache_read: float | None = None
    cache_write: float | None = None


MODEL_PRICING: dict[str, ModelPricing] = {
    # Anthropic
    "claude-opus-4": ModelPricing(input=15.00, output=75.00, cache_read=1.50, cache_write=18.75),
    "claude-sonnet-4": ModelPricing(input=3.00, output=15.00, cache_read=0.30, cache_write=3.75),
    "claude-haiku-4": ModelPricing(input=1.00, output=5.00, cache_read=0.10, cache_write=1.25),
    "claude-3-5-haiku": ModelPricing(input=0.80, output=4.00, cache_read=0.08, cache_write=1.00),
    # OpenAI
    "gpt-4o": ModelPricing(input=2.50, output=10.00, cache_read=1.25),
    "gpt-4o-mini": ModelPricing(input=0.15, output=0.60, cache_read=0.075),
    "gpt-4-turbo": ModelPricing(input=10.00, output=30.00),
    "gpt-4": ModelPricing(input=30.00, output=60.00),
    "gpt-3.5-turbo": ModelPricing(input=0.50, output=1.50),
    "o1": ModelPricing(input=15.00, output=60.00, cache_read=7.50),
    "o1-mini": ModelPricing(input=3.00, output=12.00, cache_read=1.50),
}

DEFAULT_PRICING = ModelPricing(input=5.00, output=15.00)


def get_pricing(model: str) -> ModelPricing:
    """Look up rates for a model name.

    Provider prefixes (``anthropic/...``) are ignored and dated or minor
    versions fall back to the longest known prefix, so
    ``claude-sonnet-4-5-20250929`` is priced as ``claude-sonnet-4``.
    """
    name = model.rsplit("/", 1)[-1].lower()
    if name in MODEL_PRICING:
        return MODEL_PRICING[name]

    matches = [key for key in MODEL_PRICING if name.startswith(f"{key}-")]
    if matches:
        return MODEL_PRICING[max(matches, key=len)]
    return DEFAULT_PRICING


def calculate_cost_cents(model: str, usage: TokenUsage) -> float:
    """Cost of one model call in cents.

    Cached reads and writes are billed at their own rate when the model has
    one, otherwise at the plain input rate.
    """
    pricing = get_pricing(model)
    cache_read_rate = pricing.input if pricing.cache_read is None else pricing.cache_read
    cache_write_rate = pricing.input if pricing.cache_write is None else pricing.cache_write

    dollars = (
        usage.input_tokens * pricing.input
        + usage.output_tokens * pricing.output
        + usage.cache_read_tokens * cache_read_rate
        + usage.cache_write_tokens * cache_write_rate
    ) / 1_000_000
    return dollars * 100
