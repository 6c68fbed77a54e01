"""Collector engine — multi-source library data collection and retry scheduling."""

from rispipeline.engines.collector.activity import LibraryActivity, calculate_metrics
from rispipeline.engines.collector.baseline import BaselineCollector
from rispipeline.engines.collector.collection_scheduler import CollectionScheduler
from rispipeline.engines.collector.ecosystem_client import EcosystemClient
from rispipeline.engines.collector.github_client import GitHubClient, RateLimitError
from rispipeline.engines.collector.http import UpstreamError
from rispipeline.engines.collector.models import CollectResult, RetryStats
from rispipeline.engines.collector.sources import (
    SOURCE_FETCHERS,
    SourceContext,
    fetch_sources,
    npm_package_name,
)

__all__ = [
    "BaselineCollector",
    "CollectResult",
    "CollectionScheduler",
    "EcosystemClient",
    "GitHubClient",
    "LibraryActivity",
    "RateLimitError",
    "RetryStats",
    "SOURCE_FETCHERS",
    "SourceContext",
    "UpstreamError",
    "calculate_metrics",
    "fetch_sources",
    "npm_package_name",
]
