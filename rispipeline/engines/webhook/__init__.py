"""Webhook engine — signature checks, intake, and queue processing."""

from rispipeline.engines.webhook.events import apply_event, extract_repository
from rispipeline.engines.webhook.intake import WebhookIntake
from rispipeline.engines.webhook.processor import WebhookQueueProcessor
from rispipeline.engines.webhook.signature import compute_signature, verify_signature

__all__ = [
    "WebhookIntake",
    "WebhookQueueProcessor",
    "apply_event",
    "compute_signature",
    "extract_repository",
    "verify_signature",
]
