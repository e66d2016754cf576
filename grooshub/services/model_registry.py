# =============================================================================
# Model Registry — Chat Model Catalogue, Provider Routing & Pricing
# =============================================================================
#
# Maps GroosHub model IDs (what clients send) to the vendor, the vendor's
# API model name, capabilities and per-1K-token prices.
#
# Provider selection is by model-ID prefix:
#   gpt-*, o1*, o3*  → openai
#   claude-*         → anthropic
#   grok-*           → xai (OpenAI-compatible endpoint)
#
# Costs are USD per 1,000 tokens, as published by each vendor.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass

from grooshub.errors import UnknownModelError

# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelInfo:
    """Static description of one chat model."""

    model_id: str
    provider: str             # "openai", "anthropic" or "xai"
    api_model: str            # Model name sent to the vendor API
    display_name: str
    supports_vision: bool
    supports_tools: bool
    max_tokens: int           # Max output tokens
    context_window: int
    input_cost_per_1k: float
    output_cost_per_1k: float
    tier: str = "standard"    # "cheap", "standard" or "premium"


_PREFIX_PROVIDERS: tuple[tuple[str, str], ...] = (
    ("gpt-", "openai"),
    ("o1", "openai"),
    ("o3", "openai"),
    ("claude-", "anthropic"),
    ("grok-", "xai"),
)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

MODEL_REGISTRY: dict[str, ModelInfo] = {
    # --- OpenAI ---
    "gpt-4o": ModelInfo(
        "gpt-4o", "openai", "gpt-4o", "GPT-4o",
        True, True, 16_384, 128_000, 0.0025, 0.01, "premium",
    ),
    "gpt-4o-mini": ModelInfo(
        "gpt-4o-mini", "openai", "gpt-4o-mini", "GPT-4o Mini",
        True, True, 16_384, 128_000, 0.00015, 0.0006, "cheap",
    ),
    "gpt-4-turbo": ModelInfo(
        "gpt-4-turbo", "openai", "gpt-4-turbo", "GPT-4 Turbo",
        True, True, 4_096, 128_000, 0.01, 0.03, "premium",
    ),
    "gpt-3.5-turbo": ModelInfo(
        "gpt-3.5-turbo", "openai", "gpt-3.5-turbo", "GPT-3.5 Turbo",
        False, True, 4_096, 16_385, 0.0005, 0.0015, "cheap",
    ),

    # --- Anthropic ---
    "claude-sonnet-4.5": ModelInfo(
        "claude-sonnet-4.5", "anthropic", "claude-sonnet-4-5-20250929",
        "Claude Sonnet 4.5",
        True, True, 8_192, 200_000, 0.003, 0.015, "premium",
    ),
    "claude-sonnet-3.7": ModelInfo(
        "claude-sonnet-3.7", "anthropic", "claude-3-7-sonnet-20250219",
        "Claude Sonnet 3.7",
        True, True, 8_192, 200_000, 0.003, 0.015, "standard",
    ),
    "claude-haiku-3.5": ModelInfo(
        "claude-haiku-3.5", "anthropic", "claude-3-5-haiku-20241022",
        "Claude Haiku 3.5",
        False, True, 8_192, 200_000, 0.001, 0.005, "cheap",
    ),
    "claude-opus-3.5": ModelInfo(
        "claude-opus-3.5", "anthropic", "claude-3-opus-20240229",
        "Claude Opus",
        True, True, 4_096, 200_000, 0.015, 0.075, "premium",
    ),

    # --- xAI ---
    "grok-2-latest": ModelInfo(
        "grok-2-latest", "xai", "grok-2-latest", "Grok 2",
        False, True, 8_192, 131_072, 0.002, 0.01, "standard",
    ),
    "grok-2-vision": ModelInfo(
        "grok-2-vision", "xai", "grok-2-vision-1212", "Grok 2 Vision",
        True, False, 8_192, 32_768, 0.002, 0.01, "standard",
    ),
    "grok-beta": ModelInfo(
        "grok-beta", "xai", "grok-beta", "Grok Beta",
        False, True, 8_192, 131_072, 0.005, 0.015, "standard",
    ),
}

DEFAULT_MODEL = "claude-sonnet-4.5"

CHEAP_MODELS = [m.model_id for m in MODEL_REGISTRY.values() if m.tier == "cheap"]
PREMIUM_MODELS = [m.model_id for m in MODEL_REGISTRY.values() if m.tier == "premium"]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def provider_for_model(model_id: str) -> str:
    """
    Resolve the vendor for a model ID by prefix.

    Raises:
        UnknownModelError: No known prefix matches.
    """
    for prefix, provider in _PREFIX_PROVIDERS:
        if model_id.startswith(prefix):
            return provider
    raise UnknownModelError(model_id)


def get_model(model_id: str) -> ModelInfo:
    """
    Look up a registered model.

    Raises:
        UnknownModelError: The ID is not in the registry.
    """
    info = MODEL_REGISTRY.get(model_id)
    if info is None:
        raise UnknownModelError(model_id)
    return info


def get_models_by_provider(provider: str) -> list[ModelInfo]:
    return [m for m in MODEL_REGISTRY.values() if m.provider == provider]


def model_supports_feature(model_id: str, feature: str) -> bool:
    """Check a capability flag ("vision" or "tools"); False for unknown models."""
    info = MODEL_REGISTRY.get(model_id)
    if info is None:
        return False
    if feature == "vision":
        return info.supports_vision
    if feature == "tools":
        return info.supports_tools
    return False


def estimate_cost(
    model_id: str,
    input_tokens: int,
    output_tokens: int,
) -> float | None:
    """
    Estimated cost in USD for a completion.

    Returns None if the model is not in the registry; unknown cost is
    not the same as zero cost.
    """
    info = MODEL_REGISTRY.get(model_id)
    if info is None:
        return None
    return (
        info.input_cost_per_1k * input_tokens / 1000
        + info.output_cost_per_1k * output_tokens / 1000
    )
