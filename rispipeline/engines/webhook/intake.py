"""WebhookIntake — verify, route installations to review, and enqueue GitHub deliveries."""

from __future__ import annotations

import json
import os
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from rispipeline.core.config import ENV_WEBHOOK_SECRET
from rispipeline.engines.webhook.events import CONTENT_EVENTS, extract_repository
from rispipeline.engines.webhook.signature import verify_signature
from rispipeline.services import AuthenticationError, ConfigurationError
from rispipeline.services.installation_service import InstallationService
from rispipeline.services.library_approval_service import LibraryApprovalService
from rispipeline.services.webhook_queue_service import WebhookQueueService

log = structlog.get_logger("rispipeline.webhook")

_INSTALL_ACTIONS = {"created": "repositories", "added": "repositories_added"}
_UNINSTALL_ACTIONS = {"deleted": "repositories", "removed": "repositories_removed"}


def _split_full_name(repository: dict[str, Any]) -> tuple[str, str] | None:
    full_name = repository.get("full_name") or ""
    if "/" not in full_name:
        return None
    owner, repo = full_name.split("/", 1)
    return owner, repo


class WebhookIntake:
    """Front door for ``POST /webhooks/github``.

    Verification failures raise; everything after verification is caught,
    logged and reported in the response body so GitHub does not retry.
    """

    def __init__(
        self,
        queue_service: WebhookQueueService,
        installation_service: InstallationService,
        approval_service: LibraryApprovalService,
    ) -> None:
        self._queue = queue_service
        self._installations = installation_service
        self._approvals = approval_service

    async def handle(
        self,
        session: AsyncSession,
        body: bytes,
        signature: str | None,
        event_type: str | None,
        delivery_id: str | None,
    ) -> dict[str, Any]:
        secret = os.environ.get(ENV_WEBHOOK_SECRET, "")
        if not secret:
            log.error("webhook.secret_missing", env=ENV_WEBHOOK_SECRET)
            raise ConfigurationError("webhook secret not configured")
        if not verify_signature(body, signature, secret):
            log.warning("webhook.invalid_signature", delivery_id=delivery_id, event=event_type)
            raise AuthenticationError("invalid signature")

        response: dict[str, Any] = {
            "success": True,
            "eventType": event_type,
            "deliveryId": delivery_id,
            "received": True,
        }
        try:
            async with session.begin_nested():
                response.update(await self._dispatch(session, body, event_type, delivery_id))
        except Exception as exc:
            log.exception("webhook.intake_failed", delivery_id=delivery_id, event=event_type)
            response["success"] = False
            response["error"] = str(exc) or type(exc).__name__
        return response

    async def _dispatch(
        self,
        session: AsyncSession,
        body: bytes,
        event_type: str | None,
        delivery_id: str | None,
    ) -> dict[str, Any]:
        if event_type == "ping" or event_type is None:
            return {"action": "acknowledged"}

        payload = json.loads(body or b"{}")

        if event_type in ("installation", "installation_repositories"):
            return await self._handle_installation(session, payload)

        if event_type not in CONTENT_EVENTS:
            log.info("webhook.ignored_event", event=event_type, delivery_id=delivery_id)
            return {"action": "ignored"}

        if not delivery_id:
            raise ValueError("missing X-GitHub-Delivery header")
        repository = extract_repository(payload)
        if repository is None:
            raise ValueError("payload has no repository")
        owner, repo = repository

        if not await self._approvals.is_approved(session, owner, repo):
            log.info(
                "webhook.not_approved",
                event=event_type,
                delivery_id=delivery_id,
                library=f"{owner}/{repo}",
            )
            return {"action": "not_approved"}

        queued = await self._queue.enqueue(
            session,
            delivery_id=delivery_id,
            event_type=event_type,
            owner=owner,
            repo=repo,
            payload=payload,
        )
        log.info(
            "webhook.received",
            event=event_type,
            delivery_id=delivery_id,
            library=f"{owner}/{repo}",
            queued=queued,
        )
        return {"action": "queued" if queued else "duplicate"}

    async def _handle_installation(self, session: AsyncSession, payload: dict[str, Any]) -> dict:
        action = payload.get("action")
        installation_id = (payload.get("installation") or {}).get("id")

        if action in _INSTALL_ACTIONS:
            if installation_id is None:
                raise ValueError("installation payload has no installation id")
            tracked = pending = 0
            for repository in payload.get(_INSTALL_ACTIONS[action]) or []:
                names = _split_full_name(repository)
                if names is None:
                    continue
                await self._installations.track(session, *names, int(installation_id))
                status = await self._approvals.on_installed(
                    session, *names, int(installation_id), repository
                )
                tracked += 1
                if status != "approved":
                    pending += 1
            return {
                "action": f"installation_{action}",
                "repositories": tracked,
                "awaitingApproval": pending,
            }

        if action in _UNINSTALL_ACTIONS:
            removed = 0
            for repository in payload.get(_UNINSTALL_ACTIONS[action]) or []:
                names = _split_full_name(repository)
                if names is not None and await self._installations.remove(session, *names):
                    removed += 1
            return {"action": f"installation_{action}", "repositories": removed}

        return {"action": "ignored"}
