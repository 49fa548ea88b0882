"""
Token counting and usage tracking.

Holds the four token categories reported by the usage log.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class TokenCounts:
    """Token usage data for cost calculation.

    Contains exact token counts per category. Instances combine with ``+``,
    which makes per-file and per-group partial sums safe to merge in any order.
    """
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0

    def __post_init__(self):
        """Validate token counts are non-negative."""
        for name in ("input_tokens", "output_tokens", "cache_creation_tokens", "cache_read_tokens"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")

    def __add__(self, other: "TokenCounts") -> "TokenCounts":
        if not isinstance(other, TokenCounts):
            return NotImplemented
        return TokenCounts(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_creation_tokens=self.cache_creation_tokens + other.cache_creation_tokens,
            cache_read_tokens=self.cache_read_tokens + other.cache_read_tokens,
        )

    @property
    def total_tokens(self) -> int:
        """Total tokens used across all categories."""
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_creation_tokens
            + self.cache_read_tokens
        )
