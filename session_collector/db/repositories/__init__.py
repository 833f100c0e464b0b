"""Repository package for store access."""

from .summaries import SqliteSummaryRepository
from .usage_events import SqliteUsageEventRepository
from .watermarks import SqliteWatermarkRepository
from .rest import (
    RestSummaryRepository,
    RestUsageEventRepository,
    RestWatermarkRepository,
)

__all__ = [
    "SqliteSummaryRepository",
    "SqliteUsageEventRepository",
    "SqliteWatermarkRepository",
    "RestSummaryRepository",
    "RestUsageEventRepository",
    "RestWatermarkRepository",
]
