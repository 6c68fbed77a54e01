"""Webhook intake and queue processing schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import ConfigDict

from rispipeline.api.schemas.common import CamelModel


class WebhookAck(CamelModel):
    model_config = ConfigDict(extra="allow")

    success: bool
    event_type: str | None = None
    delivery_id: str | None = None
    received: bool = True
    action: str | None = None
    error: str | None = None


class ProcessWebhooksResult(CamelModel):
    processed: int
    failed: int
    remaining_queue_length: int
    duration_ms: int


class QueueLength(CamelModel):
    queue_length: int


class FailedWebhookOut(CamelModel):
    delivery_id: str
    event_type: str
    owner: str
    repo: str
    attempts: int
    error: str | None = None
    received_at: datetime
    updated_at: datetime


class RequeueResult(CamelModel):
    requeued: int
