"""Dependency injection — session, auth, and service singletons."""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from rispipeline.dao.allocation_dao import AllocationDAO
from rispipeline.dao.collection_lock_dao import CollectionLockDAO
from rispipeline.dao.collection_state_dao import CollectionStateDAO
from rispipeline.dao.installation_dao import InstallationDAO
from rispipeline.dao.library_approval_dao import LibraryApprovalDAO
from rispipeline.dao.library_metrics_dao import LibraryMetricsDAO
from rispipeline.dao.processed_delivery_dao import ProcessedDeliveryDAO
from rispipeline.dao.webhook_event_dao import WebhookEventDAO
from rispipeline.engines.collector.baseline import BaselineCollector
from rispipeline.engines.collector.collection_scheduler import CollectionScheduler
from rispipeline.engines.webhook.intake import WebhookIntake
from rispipeline.engines.webhook.processor import WebhookQueueProcessor
from rispipeline.services import AuthenticationError
from rispipeline.services.allocation_service import AllocationService
from rispipeline.services.auth_service import AuthService
from rispipeline.services.collection_lock_service import CollectionLockService
from rispipeline.services.collection_state_service import CollectionStateService
from rispipeline.services.eligibility_service import EligibilityService
from rispipeline.services.installation_service import InstallationService
from rispipeline.services.library_approval_service import LibraryApprovalService
from rispipeline.services.library_metrics_service import LibraryMetricsService
from rispipeline.services.score_service import ScoreService
from rispipeline.services.webhook_queue_service import WebhookQueueService

# ---------------------------------------------------------------------------
# DAO singletons
# ---------------------------------------------------------------------------
_webhook_event_dao = WebhookEventDAO()
_processed_delivery_dao = ProcessedDeliveryDAO()
_installation_dao = InstallationDAO()
_library_approval_dao = LibraryApprovalDAO()
_collection_state_dao = CollectionStateDAO()
_collection_lock_dao = CollectionLockDAO()
_library_metrics_dao = LibraryMetricsDAO()
_allocation_dao = AllocationDAO()

# ---------------------------------------------------------------------------
# Service singletons
# ---------------------------------------------------------------------------
_auth_service = AuthService()
_queue_service = WebhookQueueService(_webhook_event_dao, _processed_delivery_dao)
_installation_service = InstallationService(_installation_dao)
_state_service = CollectionStateService(_collection_state_dao)
_approval_service = LibraryApprovalService(_library_approval_dao, _state_service)
_lock_service = CollectionLockService(_collection_lock_dao)
_metrics_service = LibraryMetricsService(_library_metrics_dao)
_eligibility_service = EligibilityService(_library_metrics_dao)
_score_service = ScoreService(_metrics_service, _allocation_dao, _approval_service)
_allocation_service = AllocationService(_score_service, _allocation_dao)

# ---------------------------------------------------------------------------
# Engine singletons
# ---------------------------------------------------------------------------
_collector = BaselineCollector(_state_service, _metrics_service)
_collection_scheduler = CollectionScheduler(
    _collector, _state_service, _lock_service, _installation_service, _approval_service
)
_webhook_intake = WebhookIntake(_queue_service, _installation_service, _approval_service)
_webhook_processor = WebhookQueueProcessor(_queue_service, _state_service, _metrics_service)

# ---------------------------------------------------------------------------
# Engine / session factory (initialised by app lifespan)
# ---------------------------------------------------------------------------
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_session_factory(database_url: str | None = None) -> async_sessionmaker[AsyncSession]:
    """Create the async engine and session factory. Called once at startup."""
    global _engine, _session_factory  # noqa: PLW0603
    url = database_url or os.environ.get(
        "RIS_DATABASE_URL", "postgresql+asyncpg://localhost/rispipeline"
    )
    _engine = create_async_engine(
        url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_recycle=1800,
    )
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _session_factory


async def dispose_engine() -> None:
    """Dispose the async engine, closing all pooled connections."""
    global _engine  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("call init_session_factory() first")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Factory for handlers that run several short transactions themselves."""
    if _session_factory is None:
        raise RuntimeError("call init_session_factory() before handling requests")
    return _session_factory


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a per-request session with automatic commit/rollback."""
    if _session_factory is None:
        raise RuntimeError("call init_session_factory() before handling requests")
    async with _session_factory() as session:
        async with session.begin():
            yield session


# ---------------------------------------------------------------------------
# Auth dependencies
# ---------------------------------------------------------------------------

_bearer = HTTPBearer(auto_error=False)


def get_auth_service() -> AuthService:
    return _auth_service


async def get_admin_email(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    auth: AuthService = Depends(get_auth_service),
) -> str:
    """Validate the Bearer token and return the admin's email."""
    if credentials is None:
        raise AuthenticationError("missing authorization header")
    return auth.require_admin(credentials.credentials)


async def require_cron_secret(
    authorization: str | None = Header(default=None),
    auth: AuthService = Depends(get_auth_service),
) -> None:
    """Accept ``Authorization: Bearer <CRON_SECRET>`` from the external cron."""
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[len("bearer ") :].strip()
    auth.verify_cron_secret(token)


# ---------------------------------------------------------------------------
# Service getters (for Depends())
# ---------------------------------------------------------------------------


def get_queue_service() -> WebhookQueueService:
    return _queue_service


def get_installation_service() -> InstallationService:
    return _installation_service


def get_approval_service() -> LibraryApprovalService:
    return _approval_service


def get_state_service() -> CollectionStateService:
    return _state_service


def get_lock_service() -> CollectionLockService:
    return _lock_service


def get_eligibility_service() -> EligibilityService:
    return _eligibility_service


def get_score_service() -> ScoreService:
    return _score_service


def get_allocation_service() -> AllocationService:
    return _allocation_service


def get_collection_scheduler() -> CollectionScheduler:
    return _collection_scheduler


def get_webhook_intake() -> WebhookIntake:
    return _webhook_intake


def get_webhook_processor() -> WebhookQueueProcessor:
    return _webhook_processor
