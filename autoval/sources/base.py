"""
Source adapter interface - one marketplace behind one capability.
"""
import asyncio
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from ..models.criteria import SearchCriteria
from ..models.listing import RawSourceResult


logger = logging.getLogger(__name__)


class SourceAdapter(ABC):
    """
    Wraps one external marketplace.

    Subclasses implement the blocking `fetch_records`, which returns records
    keyed by canonical raw names (id, title, brand, model, price, year,
    mileage, fuel, gearbox, seller_type, zip_code, city, lat, lon, url,
    image_url, first_seen) with values still unparsed. `fetch` runs it off
    the event loop under the orchestrator's deadline and turns every
    failure into a tagged result.
    """

    source_id: str = ""

    @abstractmethod
    def fetch_records(self, criteria: SearchCriteria, budget_seconds: float) -> list[dict[str, Any]]:
        """Fetch raw records. May raise; must not outlive the budget by much."""

    async def fetch(self, criteria: SearchCriteria, deadline: float) -> RawSourceResult:
        """
        Fetch raw listings for the criteria.

        Args:
            criteria: Validated search criteria
            deadline: Absolute time.monotonic() value after which the result is useless

        Returns:
            RawSourceResult tagged ok, timeout or error. Never raises for
            upstream failures.
        """
        started = time.monotonic()
        budget = deadline - started
        if budget <= 0:
            return RawSourceResult.failure(self.source_id, "timeout", "deadline already passed")

        try:
            records = await asyncio.wait_for(
                asyncio.to_thread(self.fetch_records, criteria, budget),
                timeout=budget,
            )
        except asyncio.TimeoutError:
            latency = _elapsed_ms(started)
            logger.warning(f"{self.source_id}: timed out after {latency}ms")
            return RawSourceResult.failure(self.source_id, "timeout", "deadline exceeded", latency)
        except Exception as e:
            latency = _elapsed_ms(started)
            logger.warning(f"{self.source_id}: fetch failed: {e}")
            return RawSourceResult.failure(self.source_id, "error", str(e), latency)

        return RawSourceResult(
            source_id=self.source_id,
            status="ok",
            records=records,
            latency_ms=_elapsed_ms(started),
            fetched_at=datetime.now(),
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def extract_script_json(html: str, pattern: str) -> Optional[Any]:
    """
    Pull the JSON blob a page embeds for client-side hydration.

    Args:
        html: Page source
        pattern: Regex with one group capturing the JSON text

    Returns:
        Decoded JSON, or None when absent or malformed
    """
    match = re.search(pattern, html, re.DOTALL)
    if not match:
        return None
    try:
        return json.loads(match.group(1))
    except json.JSONDecodeError as e:
        logger.warning(f"Embedded JSON could not be decoded: {e}")
        return None


def dig(data: Any, *path: Any, default: Any = None) -> Any:
    """Walk nested dicts/lists, returning default on the first missing step."""
    current = data
    for step in path:
        if isinstance(current, dict):
            current = current.get(step)
        elif isinstance(current, list) and isinstance(step, int) and -len(current) <= step < len(current):
            current = current[step]
        else:
            return default
        if current is None:
            return default
    return current
