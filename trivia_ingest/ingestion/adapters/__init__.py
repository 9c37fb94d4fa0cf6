"""
Adapter Registry Module
=======================

Central registry for source-specific adapters.
Provides factory functions for creating adapters by name.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from trivia_ingest.ingestion.adapters.base import AdapterError, BaseAdapter, NormalizedVenue
from trivia_ingest.ingestion.adapters.inquizition import InquizitionAdapter
from trivia_ingest.ingestion.adapters.quizmeisters import QuizmeistersAdapter
from trivia_ingest.ingestion.adapters.sample_adapter import SampleAdapter

if TYPE_CHECKING:
    from trivia_ingest.ingestion.crawler import Crawler
    from trivia_ingest.ingestion.registry import SourceConfig


# Registry mapping adapter names to their classes
ADAPTER_REGISTRY: dict[str, type[BaseAdapter]] = {
    "quizmeisters": QuizmeistersAdapter,
    "inquizition": InquizitionAdapter,
    "sample": SampleAdapter,
}


def get_adapter(source: SourceConfig, crawler: Crawler) -> BaseAdapter | None:
    """
    Get an adapter instance for a source.

    Args:
        source: Source configuration (its ``adapter`` names the class)
        crawler: HTTP crawler the adapter fetches through

    Returns:
        Adapter instance, or None if the adapter type is unknown
    """
    adapter_class = ADAPTER_REGISTRY.get(source.adapter)
    if adapter_class is None:
        return None
    return adapter_class(source, crawler)


def list_adapters() -> list[str]:
    """List all registered adapter names."""
    return list(ADAPTER_REGISTRY.keys())


def get_adapter_info(adapter_type: str) -> dict[str, str] | None:
    """
    Get information about an adapter type.

    Returns:
        Dict with adapter info, or None if not found
    """
    adapter_class = ADAPTER_REGISTRY.get(adapter_type)
    if adapter_class is None:
        return None

    return {
        "name": adapter_class.ADAPTER_NAME,
        "version": adapter_class.ADAPTER_VERSION,
        "class": adapter_class.__name__,
        "detail_page": "yes" if adapter_class.needs_detail_page else "no",
    }


__all__ = [
    # Registry functions
    "get_adapter",
    "list_adapters",
    "get_adapter_info",
    "ADAPTER_REGISTRY",
    # Base classes
    "AdapterError",
    "BaseAdapter",
    "NormalizedVenue",
    # Concrete adapters
    "InquizitionAdapter",
    "QuizmeistersAdapter",
    "SampleAdapter",
]
