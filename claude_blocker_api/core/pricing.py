"""Per-model token pricing with a remote catalog and an on-disk cache."""

import asyncio
import logging
import re
import time
from pathlib import Path
from typing import Any

import httpx

from ..config import settings
from ..models import ModelPricing, TokenBreakdown
from ..storage import read_json_file, write_json_atomic

logger = logging.getLogger(__name__)

# Prices in dollars per token
FALLBACK_PRICING: dict[str, ModelPricing] = {
    "claude-opus-4-5": ModelPricing(
        input_price=15e-6, output_price=75e-6, cache_write_price=18.75e-6, cache_read_price=1.5e-6
    ),
    "claude-sonnet-4": ModelPricing(
        input_price=3e-6, output_price=15e-6, cache_write_price=3.75e-6, cache_read_price=0.3e-6
    ),
    "claude-haiku-4-5": ModelPricing(
        input_price=0.8e-6, output_price=4e-6, cache_write_price=1e-6, cache_read_price=0.08e-6
    ),
    "claude-sonnet-3-5": ModelPricing(
        input_price=3e-6, output_price=15e-6, cache_write_price=3.75e-6, cache_read_price=0.3e-6
    ),
    "claude-haiku-3-5": ModelPricing(
        input_price=0.8e-6, output_price=4e-6, cache_write_price=1e-6, cache_read_price=0.08e-6
    ),
    "claude-opus-3": ModelPricing(
        input_price=15e-6, output_price=75e-6, cache_write_price=18.75e-6, cache_read_price=1.5e-6
    ),
    "claude-haiku-3": ModelPricing(
        input_price=0.25e-6,
        output_price=1.25e-6,
        cache_write_price=0.3e-6,
        cache_read_price=0.03e-6,
    ),
}

# Sonnet-tier rates for unknown models
DEFAULT_PRICING = ModelPricing(
    input_price=3e-6, output_price=15e-6, cache_write_price=3.75e-6, cache_read_price=0.3e-6
)

CACHE_READ_RATIO = 0.1
CACHE_WRITE_RATIO = 1.25

# "claude-opus-4-5-20251101", "claude-sonnet-4-20250514"
_FAMILY_FIRST = re.compile(r"(opus|sonnet|haiku)[-_.]?(\d{1,2})(?!\d)(?:[-_.](\d)(?!\d))?")
# "claude-3-5-sonnet-20241022", "anthropic.claude-3.5-sonnet"
_VERSION_FIRST = re.compile(r"(?<!\d)(\d{1,2})(?:[-_.](\d)(?!\d))?[-_.](opus|sonnet|haiku)")


def normalize_model_key(model_name: str) -> str | None:
    """Map a model identifier to its canonical family key, if known."""
    name = model_name.lower()

    match = _FAMILY_FIRST.search(name)
    if match:
        family, major, minor = match.group(1), int(match.group(2)), match.group(3)
    else:
        match = _VERSION_FIRST.search(name)
        if not match:
            return None
        major, minor, family = int(match.group(1)), match.group(2), match.group(3)

    if major >= 4:
        return {
            "opus": "claude-opus-4-5",
            "sonnet": "claude-sonnet-4",
            "haiku": "claude-haiku-4-5",
        }[family]
    if major == 3:
        if family == "sonnet":
            return "claude-sonnet-3-5"
        if family == "haiku" and minor == "5":
            return "claude-haiku-3-5"
        return f"claude-{family}-3"
    return None


def parse_litellm_pricing(data: dict[str, Any]) -> dict[str, ModelPricing]:
    """Extract Claude model prices from a LiteLLM catalog.

    Entries are stored under their exact name, and under the normalized
    family key when no earlier entry already claimed it.
    """
    result: dict[str, ModelPricing] = {}

    for model_name, model_data in data.items():
        if "claude" not in model_name or not isinstance(model_data, dict):
            continue

        input_cost = model_data.get("input_cost_per_token")
        output_cost = model_data.get("output_cost_per_token")
        if not isinstance(input_cost, int | float) or not isinstance(output_cost, int | float):
            continue

        cache_read = model_data.get("cache_read_input_token_cost")
        cache_write = model_data.get("cache_creation_input_token_cost")
        pricing = ModelPricing(
            input_price=float(input_cost),
            output_price=float(output_cost),
            cache_write_price=float(cache_write)
            if isinstance(cache_write, int | float)
            else input_cost * CACHE_WRITE_RATIO,
            cache_read_price=float(cache_read)
            if isinstance(cache_read, int | float)
            else input_cost * CACHE_READ_RATIO,
        )

        family_key = normalize_model_key(model_name)
        if family_key and family_key not in result:
            result[family_key] = pricing

        result[model_name] = pricing

    return result


class PriceResolver:
    """Resolves per-token prices for a model.

    Always answers: static fallback prices are in place from construction,
    a fresh disk cache overlays them at startup, and a background fetch of
    the remote catalog overlays them again when it succeeds.
    """

    def __init__(
        self,
        cache_file: Path,
        url: str = settings.pricing_url,
        cache_ttl_hours: float = 24.0,
        fetch_timeout_seconds: float = 10.0,
    ):
        self.cache_file = cache_file
        self.url = url
        self.cache_ttl_seconds = cache_ttl_hours * 3600
        self.fetch_timeout_seconds = fetch_timeout_seconds
        self._pricing: dict[str, ModelPricing] = dict(FALLBACK_PRICING)
        self._loaded = False
        self._refresh_task: asyncio.Task | None = None

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def initialize(self, refresh: bool = True) -> None:
        """Load the disk cache and start a background refresh.

        Must be called from a running event loop when refresh is True.
        """
        has_cache = self.load_cached_pricing()
        if refresh:
            self._refresh_task = asyncio.create_task(self.fetch_remote_pricing())
        elif has_cache:
            self._loaded = True
        else:
            self._loaded = True
            logger.info("[PriceResolver] Remote refresh disabled, using fallback pricing")

    def load_cached_pricing(self) -> bool:
        """Merge the on-disk cache over the fallback table if it is fresh."""
        cached = read_json_file(self.cache_file)
        if not isinstance(cached, dict):
            return False

        timestamp = cached.get("timestamp")
        pricing = cached.get("pricing")
        if not isinstance(timestamp, int | float) or not isinstance(pricing, dict):
            return False
        if time.time() - timestamp >= self.cache_ttl_seconds:
            logger.info("[PriceResolver] Pricing cache expired")
            return False

        try:
            parsed = {name: ModelPricing.model_validate(p) for name, p in pricing.items()}
        except ValueError as e:
            logger.error(f"[PriceResolver] Error loading cached pricing: {e}")
            return False

        self._pricing = {**FALLBACK_PRICING, **parsed}
        self._loaded = True
        logger.info(f"[PriceResolver] Loaded {len(parsed)} models from cache")
        return True

    def save_pricing_cache(self, pricing: dict[str, ModelPricing]) -> None:
        try:
            write_json_atomic(
                self.cache_file,
                {
                    "timestamp": time.time(),
                    "pricing": {
                        name: p.model_dump(mode="json", by_alias=True)
                        for name, p in pricing.items()
                    },
                },
            )
            logger.info(f"[PriceResolver] Saved {len(pricing)} models to cache")
        except OSError as e:
            logger.error(f"[PriceResolver] Error saving pricing cache: {e}")

    async def fetch_remote_pricing(self) -> None:
        """Fetch the remote catalog and merge it over the fallback table.

        Never raises; on failure the current table is kept.
        """
        try:
            logger.info("[PriceResolver] Fetching pricing from LiteLLM...")
            async with httpx.AsyncClient(timeout=self.fetch_timeout_seconds) as client:
                response = await client.get(self.url)
                response.raise_for_status()
                data = response.json()

            if not isinstance(data, dict):
                raise ValueError("Pricing catalog is not a JSON object")

            parsed = parse_litellm_pricing(data)
            self._pricing = {**FALLBACK_PRICING, **parsed}
            logger.info(f"[PriceResolver] Loaded {len(parsed)} Claude models from LiteLLM")

            await asyncio.to_thread(self.save_pricing_cache, parsed)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[PriceResolver] Failed to fetch LiteLLM pricing: {e}")
        finally:
            self._loaded = True

    def resolve(self, model: str | None = None) -> ModelPricing:
        """Exact model name, then normalized family key, then the default rates."""
        if not model:
            return DEFAULT_PRICING

        if model in self._pricing:
            return self._pricing[model]

        family_key = normalize_model_key(model)
        if family_key and family_key in self._pricing:
            return self._pricing[family_key]

        return DEFAULT_PRICING

    def calculate_cost(self, breakdown: TokenBreakdown, model: str | None = None) -> float:
        pricing = self.resolve(model)
        return (
            breakdown.input_tokens * pricing.input_price
            + breakdown.output_tokens * pricing.output_price
            + breakdown.cache_creation_tokens * pricing.cache_write_price
            + breakdown.cache_read_tokens * pricing.cache_read_price
        )

    def get_all_pricing(self) -> dict[str, ModelPricing]:
        return dict(self._pricing)

    async def wait_until_loaded(self) -> None:
        if self._refresh_task is not None:
            await asyncio.shield(self._refresh_task)

    async def shutdown(self) -> None:
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
        self._refresh_task = None


# Global resolver instance
_resolver: PriceResolver | None = None


def get_price_resolver() -> PriceResolver:
    """Get the price resolver (dependency injection).

    Created lazily from settings; initialization is left to the app lifespan.
    """
    global _resolver
    if _resolver is None:
        _resolver = PriceResolver(
            cache_file=settings.pricing_cache_file,
            url=settings.pricing_url,
            cache_ttl_hours=settings.pricing_cache_ttl_hours,
            fetch_timeout_seconds=settings.pricing_fetch_timeout_seconds,
        )
    return _resolver
