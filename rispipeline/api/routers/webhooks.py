"""Webhook router — GitHub delivery intake."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from rispipeline.api.deps import get_session, get_webhook_intake
from rispipeline.api.schemas.webhook import WebhookAck
from rispipeline.engines.webhook.intake import WebhookIntake

router = APIRouter()


@router.post("/github", response_model=WebhookAck, response_model_exclude_none=True)
async def receive_github_webhook(
    request: Request,
    x_hub_signature_256: str | None = Header(default=None),
    x_github_event: str | None = Header(default=None),
    x_github_delivery: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
    intake: WebhookIntake = Depends(get_webhook_intake),
) -> WebhookAck:
    """Verify and enqueue one delivery.

    Bad or missing signatures get a 401; anything that fails after the
    signature checks out is still acknowledged with 200 and ``success: false``.
    """
    body = await request.body()
    result = await intake.handle(
        session, body, x_hub_signature_256, x_github_event, x_github_delivery
    )
    return WebhookAck.model_validate(result)
