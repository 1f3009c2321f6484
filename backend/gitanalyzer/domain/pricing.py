"""Model pricing registry.

All rates are USD per 1K tokens. Cost recorded in the usage ledger is computed
from these rates at call time, so editing a rate only affects future rows.
"""

from dataclasses import dataclass
from enum import Enum

from gitanalyzer.domain.analysis_types import DepthLevel


class Provider(str, Enum):
    """AI backends the provider client can talk to."""

    GATEWAY = "lovable"
    OPENAI = "openai"


@dataclass(frozen=True)
class ModelPricing:
    id: str
    provider: Provider
    name: str
    input_per_1k: float
    output_per_1k: float
    # Dated model name sent on the wire; defaults to the bare id
    api_name: str | None = None

    @property
    def key(self) -> str:
        return self.id.split("/")[-1]


USD_TO_BRL = 5.5

MODEL_PRICING: list[ModelPricing] = [
    ModelPricing("google/gemini-2.5-flash-lite", Provider.GATEWAY, "Gemini 2.5 Flash Lite", 0.000075, 0.0003),
    ModelPricing("google/gemini-2.5-flash", Provider.GATEWAY, "Gemini 2.5 Flash", 0.00015, 0.0006),
    ModelPricing("google/gemini-2.5-pro", Provider.GATEWAY, "Gemini 2.5 Pro", 0.00125, 0.01),
    ModelPricing("google/gemini-3-pro-preview", Provider.GATEWAY, "Gemini 3 Pro Preview", 0.00125, 0.01),
    ModelPricing("openai/gpt-5-nano", Provider.OPENAI, "GPT-5 Nano", 0.00005, 0.0004, api_name="gpt-5-nano-2025-08-07"),
    ModelPricing("openai/gpt-4.1-nano", Provider.OPENAI, "GPT-4.1 Nano", 0.0001, 0.0004, api_name="gpt-4.1-nano-2025-04-14"),
    ModelPricing("openai/gpt-4o-mini", Provider.OPENAI, "GPT-4o Mini", 0.00015, 0.0006, api_name="gpt-4o-mini"),
    ModelPricing("openai/gpt-5-mini", Provider.OPENAI, "GPT-5 Mini", 0.00025, 0.002, api_name="gpt-5-mini-2025-08-07"),
    ModelPricing("openai/gpt-4.1-mini", Provider.OPENAI, "GPT-4.1 Mini", 0.0004, 0.0016, api_name="gpt-4.1-mini-2025-04-14"),
    ModelPricing("openai/o4-mini", Provider.OPENAI, "O4 Mini", 0.0011, 0.0044, api_name="o4-mini-2025-04-16"),
    ModelPricing("openai/o3", Provider.OPENAI, "O3", 0.002, 0.008, api_name="o3-2025-04-16"),
    ModelPricing("openai/gpt-4.1", Provider.OPENAI, "GPT-4.1", 0.002, 0.008, api_name="gpt-4.1-2025-04-14"),
    ModelPricing("openai/gpt-5", Provider.OPENAI, "GPT-5", 0.00125, 0.01, api_name="gpt-5-2025-08-07"),
    ModelPricing("openai/gpt-4o", Provider.OPENAI, "GPT-4o", 0.0025, 0.01, api_name="gpt-4o"),
]

# Rates used when a provider returns a model id the registry doesn't know
DEFAULT_MODEL: dict[Provider, str] = {
    Provider.GATEWAY: "google/gemini-2.5-flash",
    Provider.OPENAI: "openai/gpt-5-mini",
}

# Name segments marking cheap variants ("gemini-2.5-flash-lite", "gpt-5-nano")
ECONOMIC_MODEL_SEGMENTS = frozenset({"lite", "nano", "mini"})

# Average total tokens of one real analysis, used for reference estimates
# before the ledger has data for a depth
DEPTH_TOKEN_ESTIMATES: dict[DepthLevel, int] = {
    DepthLevel.CRITICAL: 8000,
    DepthLevel.BALANCED: 15000,
    DepthLevel.COMPLETE: 25000,
}


def get_model_pricing(model: str, provider: Provider | str | None = None) -> ModelPricing | None:
    """Find a registry entry by full id ("openai/gpt-5") or bare key ("gpt-5")."""
    key = model.split("/")[-1]
    for entry in MODEL_PRICING:
        if provider is not None and entry.provider != Provider(provider):
            continue
        if entry.id == model or entry.key == key:
            return entry
    return None


def resolve_pricing(model: str, provider: Provider | str) -> ModelPricing:
    """Registry entry for ``model``, falling back to the provider's default model."""
    provider = Provider(provider)
    return get_model_pricing(model, provider) or get_model_pricing(DEFAULT_MODEL[provider], provider)


def api_model_name(model: str) -> str:
    """Name to send to the direct OpenAI API for a model key."""
    entry = resolve_pricing(model, Provider.OPENAI)
    return entry.api_name or entry.key


def calculate_cost(input_tokens: int, output_tokens: int, model: str, provider: Provider | str) -> float:
    """USD cost of one call: input_tokens * input_rate + output_tokens * output_rate."""
    pricing = resolve_pricing(model, provider)
    return (input_tokens / 1000) * pricing.input_per_1k + (output_tokens / 1000) * pricing.output_per_1k


def max_cost_per_1m(model: str | None) -> float:
    """Upper bound on blended USD per 1M tokens for ``model``: its output rate.

    Unknown models are bounded by the most expensive registered output rate.
    """
    pricing = get_model_pricing(model) if model else None
    entries = [pricing] if pricing else MODEL_PRICING
    return max(entry.output_per_1k for entry in entries) * 1000


def estimate_analysis_cost(model: str, estimated_tokens: int = 4000, input_output_ratio: float = 0.5) -> float:
    """Reference cost for ``estimated_tokens`` split between input and output.

    Unknown models estimate to 0 rather than borrowing another model's rates.
    """
    pricing = get_model_pricing(model)
    if pricing is None:
        return 0.0
    input_tokens = estimated_tokens * input_output_ratio
    output_tokens = estimated_tokens * (1 - input_output_ratio)
    return (input_tokens / 1000) * pricing.input_per_1k + (output_tokens / 1000) * pricing.output_per_1k


def estimate_depth_cost(depth: DepthLevel | str, model: str) -> float:
    return estimate_analysis_cost(model, DEPTH_TOKEN_ESTIMATES[DepthLevel(depth)])


def is_economic_model(model: str | None) -> bool:
    """Classify a recorded model id by its lite/nano/mini name segment.

    Matches whole dash-separated segments, so "gemini" does not count as "mini".
    """
    if not model:
        return False
    lowered = model.lower()
    segments = lowered.split("/")[-1].split("-")
    return not ECONOMIC_MODEL_SEGMENTS.isdisjoint(segments)


def model_mode(model: str | None) -> str:
    """"economic" for cheap models, "detailed" otherwise."""
    return "economic" if is_economic_model(model) else "detailed"


def format_cost_usd(cost_usd: float) -> str:
    if cost_usd < 0.01:
        return f"${cost_usd:.4f}"
    return f"${cost_usd:.2f}"


def format_cost_brl(cost_usd: float) -> str:
    cost_brl = cost_usd * USD_TO_BRL
    if cost_brl < 0.01:
        return f"R$ {cost_brl:.4f}"
    return f"R$ {cost_brl:.2f}"
