"""
Marketplace source adapters.
"""
import logging
from typing import Optional

from ..config import SourcesConfig, get_config
from .base import SourceAdapter
from .fetcher import ZenRowsFetcher
from .lacentrale import LacentraleAdapter
from .leboncoin import LeboncoinAdapter


logger = logging.getLogger(__name__)

ADAPTERS: dict[str, type[SourceAdapter]] = {
    LeboncoinAdapter.source_id: LeboncoinAdapter,
    LacentraleAdapter.source_id: LacentraleAdapter,
}


def build_adapters(
    config: Optional[SourcesConfig] = None,
    fetcher: Optional[ZenRowsFetcher] = None,
) -> list[SourceAdapter]:
    """Instantiate the enabled adapters in priority order."""
    config = config or get_config().sources
    fetcher = fetcher or ZenRowsFetcher()

    adapters = []
    for source_id in sorted(config.enabled, key=config.rank_of):
        adapter_cls = ADAPTERS.get(source_id)
        if adapter_cls is None:
            logger.warning(f"Unknown source '{source_id}' in configuration, skipped")
            continue
        adapters.append(adapter_cls(fetcher=fetcher, max_results=config.max_results_per_source))
    return adapters


__all__ = [
    "SourceAdapter",
    "ZenRowsFetcher",
    "LeboncoinAdapter",
    "LacentraleAdapter",
    "ADAPTERS",
    "build_adapters",
]
