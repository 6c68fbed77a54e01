"""SQLAlchemy ORM models — one file per table."""

from rispipeline.models.collection_lock import CollectionLock
from rispipeline.models.collection_state import CollectionState
from rispipeline.models.installation import Installation
from rispipeline.models.library_approval import LibraryApproval
from rispipeline.models.library_metrics import LibraryMetrics
from rispipeline.models.processed_delivery import ProcessedDelivery
from rispipeline.models.quarterly_allocation import QuarterlyAllocation
from rispipeline.models.webhook_event import WebhookEvent

__all__ = [
    "CollectionLock",
    "CollectionState",
    "Installation",
    "LibraryApproval",
    "LibraryMetrics",
    "ProcessedDelivery",
    "QuarterlyAllocation",
    "WebhookEvent",
]
