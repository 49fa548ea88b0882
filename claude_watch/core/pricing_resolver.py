"""
Remote pricing table with local caching.

Owns the only standing mutable state in the package: the model rate table,
refreshed from the LiteLLM pricing document at most once per refresh interval.
"""

import asyncio
import json
import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Dict, Mapping, Optional

import httpx

from .pricing import BUNDLED_PRICING, ModelPricing, parse_pricing_document, resolve_model_pricing

logger = logging.getLogger(__name__)

LITELLM_PRICING_URL = (
    "https://raw.githubusercontent.com/BerriAI/litellm/main/model_prices_and_context_window.json"
)
PRICING_REFRESH_INTERVAL = timedelta(hours=24)
DEFAULT_FETCH_TIMEOUT = 30.0

# Fetch timestamp given to bundled rates so the next call retries the network
STALE = datetime.min.replace(tzinfo=timezone.utc)


class PricingUnavailableError(RuntimeError):
    """Raised when a model is resolved before any pricing was established."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PricingResolver:
    """Model rate table backed by a remote document and an on-disk cache.

    Refreshes are serialised by a lock. The table is never mutated in place:
    every refresh builds a new dict and rebinds it, so concurrent readers see
    either the old or the new table.
    """

    def __init__(
        self,
        cache_path: Path,
        url: str = LITELLM_PRICING_URL,
        refresh_interval: timedelta = PRICING_REFRESH_INTERVAL,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the resolver.

        Args:
            cache_path: File holding the most recently fetched document
            url: Location of the remote pricing document
            refresh_interval: Maximum age of the table before a refetch
            timeout: Network timeout in seconds, used when no client is given
            client: Optional HTTP client; the resolver closes only its own
            clock: Returns the current aware datetime
        """
        self.cache_path = Path(cache_path)
        self.url = url
        self.refresh_interval = refresh_interval
        self._clock = clock
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self._lock = asyncio.Lock()
        self._pricing: Dict[str, ModelPricing] = {}
        self._last_fetch: Optional[datetime] = None

    async def __aenter__(self) -> "PricingResolver":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @property
    def last_fetch(self) -> Optional[datetime]:
        return self._last_fetch

    def _is_fresh(self) -> bool:
        if self._last_fetch is None:
            return False
        return self._clock() - self._last_fetch < self.refresh_interval

    async def get_rates(self) -> Mapping[str, ModelPricing]:
        """Return the rate table, refreshing it when stale.

        Order of sources: in-memory table while fresh, then the on-disk cache,
        then the network, and finally the bundled rates. Failures are logged
        and never raised.

        Returns:
            Read-only view of the current rate table
        """
        if self._pricing and self._is_fresh():
            return self.snapshot()

        async with self._lock:
            # Another caller may have refreshed while we waited
            if self._pricing and self._is_fresh():
                return self.snapshot()

            if not self._pricing:
                self._load_from_cache()

            if not self._is_fresh():
                try:
                    await self._fetch_remote()
                except (httpx.HTTPError, ValueError) as e:
                    if self._pricing:
                        logger.warning("Failed to fetch pricing, using cached rates: %s", e)
                    else:
                        logger.warning("Failed to fetch pricing, using bundled rates: %s", e)
                        self._load_bundled_fallback()

        return self.snapshot()

    async def refresh(self) -> Mapping[str, ModelPricing]:
        """Fetch the remote document now, regardless of table age.

        Falls back exactly like ``get_rates`` when the fetch fails.
        """
        async with self._lock:
            self._last_fetch = None
        return await self.get_rates()

    def snapshot(self) -> Mapping[str, ModelPricing]:
        """Read-only view of the current table, without any I/O."""
        return MappingProxyType(self._pricing)

    def resolve(self, model_id: str) -> Optional[ModelPricing]:
        """Resolve a model identifier against the current table.

        Args:
            model_id: Model identifier as it appears in the usage log

        Returns:
            Matching ModelPricing, or None when no variation matches

        Raises:
            PricingUnavailableError: If no pricing has been established yet
        """
        table = self._pricing
        if not table:
            raise PricingUnavailableError(
                "No pricing data available; call get_rates() before resolving models"
            )
        return resolve_model_pricing(model_id, table)

    async def _fetch_remote(self) -> None:
        response = await self._client.get(self.url)
        response.raise_for_status()
        raw = response.content
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid pricing JSON from {self.url}: {e}") from e

        pricing = parse_pricing_document(document)
        if not pricing:
            raise ValueError(f"No Claude pricing entries in document from {self.url}")
        self._pricing = pricing
        self._last_fetch = self._clock()
        self._save_to_cache(raw)
        logger.info("Fetched pricing for %d models from %s", len(pricing), self.url)

    def _load_from_cache(self) -> None:
        if not self.cache_path.is_file():
            return
        try:
            document = json.loads(self.cache_path.read_bytes())
            pricing = parse_pricing_document(document)
            mtime = os.path.getmtime(self.cache_path)
        except (OSError, ValueError) as e:
            logger.warning("Failed to load pricing cache %s: %s", self.cache_path, e)
            return
        if not pricing:
            logger.warning("Pricing cache %s has no Claude entries, ignoring it", self.cache_path)
            return

        self._pricing = pricing
        self._last_fetch = datetime.fromtimestamp(mtime, tz=timezone.utc)
        logger.debug("Loaded pricing for %d models from cache", len(pricing))

    def _save_to_cache(self, raw: bytes) -> None:
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.cache_path.with_name(self.cache_path.name + ".tmp")
            tmp_path.write_bytes(raw)
            os.replace(tmp_path, self.cache_path)
        except OSError as e:
            logger.warning("Failed to save pricing cache %s: %s", self.cache_path, e)

    def _load_bundled_fallback(self) -> None:
        self._pricing = dict(BUNDLED_PRICING)
        self._last_fetch = STALE
