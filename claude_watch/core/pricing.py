"""
Pricing calculations and rate management.

Handles cost computations for Claude models and the mapping of loosely
formatted model identifiers onto rate table entries.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from .token_counter import TokenCounts

logger = logging.getLogger(__name__)

PROVIDER_MARKERS = ("claude", "anthropic")
PROVIDER_PREFIXES = ("anthropic/", "anthropic.")
BEDROCK_SUFFIXES = ("-v1:0", "-v2:0")


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model, in USD."""
    model_id: str
    input_cost_per_token: float
    output_cost_per_token: float
    cache_creation_cost_per_token: Optional[float] = None
    cache_read_cost_per_token: Optional[float] = None
    input_cost_per_token_above_200k: Optional[float] = None
    output_cost_per_token_above_200k: Optional[float] = None

    def __post_init__(self):
        """Validate rates are non-negative."""
        if self.input_cost_per_token < 0:
            raise ValueError("input_cost_per_token cannot be negative")
        if self.output_cost_per_token < 0:
            raise ValueError("output_cost_per_token cannot be negative")
        if self.cache_creation_cost_per_token is not None and self.cache_creation_cost_per_token < 0:
            raise ValueError("cache_creation_cost_per_token cannot be negative")
        if self.cache_read_cost_per_token is not None and self.cache_read_cost_per_token < 0:
            raise ValueError("cache_read_cost_per_token cannot be negative")


# Standard mid-tier (Sonnet) rates, used when a model resolves to nothing
DEFAULT_PRICING = ModelPricing(
    model_id="default",
    input_cost_per_token=3e-6,
    output_cost_per_token=15e-6,
    cache_creation_cost_per_token=3.75e-6,
    cache_read_cost_per_token=0.3e-6,
)

# Shipped with the package for when neither network nor cache is available
BUNDLED_PRICING: Dict[str, ModelPricing] = {
    "claude-sonnet-4-20250514": ModelPricing(
        model_id="claude-sonnet-4-20250514",
        input_cost_per_token=3e-6,
        output_cost_per_token=15e-6,
        cache_creation_cost_per_token=3.75e-6,
        cache_read_cost_per_token=0.3e-6,
        input_cost_per_token_above_200k=6e-6,
        output_cost_per_token_above_200k=30e-6,
    ),
    "claude-opus-4-5-20251101": ModelPricing(
        model_id="claude-opus-4-5-20251101",
        input_cost_per_token=5e-6,
        output_cost_per_token=25e-6,
        cache_creation_cost_per_token=6.25e-6,
        cache_read_cost_per_token=0.5e-6,
    ),
    "claude-3-5-sonnet-20241022": ModelPricing(
        model_id="claude-3-5-sonnet-20241022",
        input_cost_per_token=3e-6,
        output_cost_per_token=15e-6,
        cache_creation_cost_per_token=3.75e-6,
        cache_read_cost_per_token=0.3e-6,
    ),
}


def calculate_cost(tokens: TokenCounts, pricing: Optional[ModelPricing]) -> float:
    """Calculate total cost for a set of token counts.

    Cache rates missing from the pricing entry contribute nothing. When no
    pricing entry is given the default rates apply, so an unknown model is
    approximated rather than counted as free.

    Args:
        tokens: Token counts to price
        pricing: Resolved pricing entry, or None for the default rates

    Returns:
        Total cost in USD, unrounded
    """
    if pricing is None:
        pricing = DEFAULT_PRICING

    cost = tokens.input_tokens * pricing.input_cost_per_token
    cost += tokens.output_tokens * pricing.output_cost_per_token
    if pricing.cache_creation_cost_per_token is not None:
        cost += tokens.cache_creation_tokens * pricing.cache_creation_cost_per_token
    if pricing.cache_read_cost_per_token is not None:
        cost += tokens.cache_read_tokens * pricing.cache_read_cost_per_token
    return cost


def _strip_provider_prefix(model_id: str) -> str:
    stripped = model_id
    for prefix in PROVIDER_PREFIXES:
        stripped = stripped.replace(prefix, "")
    return stripped


def model_variations(model_id: str) -> List[str]:
    """Generate the identifier spellings used by other API surfaces.

    Covers the bare name, both provider prefix styles, and the Bedrock
    versioned form when the name does not already carry a version suffix.
    """
    base = _strip_provider_prefix(model_id)
    variations = [base, f"anthropic/{base}", f"anthropic.{base}"]
    if not any(suffix in base for suffix in BEDROCK_SUFFIXES):
        variations.extend(f"anthropic.{base}{suffix}" for suffix in BEDROCK_SUFFIXES)
    return variations


def resolve_model_pricing(
    model_id: str, table: Mapping[str, ModelPricing]
) -> Optional[ModelPricing]:
    """Find the pricing entry for a model identifier.

    Tries, in order: exact match, the ``anthropic/`` prefixed form, the
    identifier with provider prefixes removed, then ``model_variations``.

    Args:
        model_id: Model identifier as it appears in the usage log
        table: Rate table keyed by the remote source's identifiers

    Returns:
        The first matching ModelPricing, or None if nothing matches
    """
    candidates = [model_id, f"anthropic/{model_id}", _strip_provider_prefix(model_id)]
    candidates.extend(model_variations(model_id))
    for candidate in candidates:
        match = table.get(candidate)
        if match is not None:
            return match
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _optional_rate(entry: Dict[str, Any], key: str) -> Optional[float]:
    value = entry.get(key)
    return float(value) if _is_number(value) else None


def parse_pricing_document(document: Any) -> Dict[str, ModelPricing]:
    """Build a rate table from a LiteLLM-style pricing document.

    Keeps only Claude/Anthropic entries that carry numeric input and output
    rates. Entries that fail validation are skipped.

    Args:
        document: Decoded JSON, an object keyed by model identifier

    Returns:
        Rate table keyed by the identifiers used in the document

    Raises:
        ValueError: If the document is not a JSON object
    """
    if not isinstance(document, dict):
        raise ValueError("Pricing document must be a JSON object")

    table: Dict[str, ModelPricing] = {}
    for model_id, entry in document.items():
        lowered = model_id.lower()
        if not any(marker in lowered for marker in PROVIDER_MARKERS):
            continue
        if not isinstance(entry, dict):
            continue
        input_cost = entry.get("input_cost_per_token")
        output_cost = entry.get("output_cost_per_token")
        if not _is_number(input_cost) or not _is_number(output_cost):
            continue
        try:
            table[model_id] = ModelPricing(
                model_id=model_id,
                input_cost_per_token=float(input_cost),
                output_cost_per_token=float(output_cost),
                cache_creation_cost_per_token=_optional_rate(entry, "cache_creation_input_token_cost"),
                cache_read_cost_per_token=_optional_rate(entry, "cache_read_input_token_cost"),
                input_cost_per_token_above_200k=_optional_rate(entry, "input_cost_per_token_above_200k_tokens"),
                output_cost_per_token_above_200k=_optional_rate(entry, "output_cost_per_token_above_200k_tokens"),
            )
        except ValueError as e:
            logger.debug("Skipping pricing entry %s: %s", model_id, e)
    return table
