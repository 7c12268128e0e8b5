import contextlib
from contextlib import asynccontextmanager
import asyncio
import logging

from app.analytics.db import init_db, log_provider_call, purge_old_records
from app.core.config import settings
from app.core.config.metering import get_metering_config
from app.metering.context import build_context
from app.services.cv_ai_service import CVAIService
from app.services.document_store import SqliteDocumentStore

logger = logging.getLogger(__name__)


def build_service() -> CVAIService:
    context = build_context(
        get_metering_config(),
        settings,
        audit=log_provider_call if settings.audit_enabled else None,
    )
    return CVAIService(context, SqliteDocumentStore(settings.documents_db_path))


@asynccontextmanager
async def lifespan(app):
    owned = getattr(app.state, "cv_ai_service", None) is None
    if owned:
        app.state.cv_ai_service = build_service()

    init_db()
    purge_old_records()

    stop_event = asyncio.Event()

    async def periodic_purge() -> None:
        while not stop_event.is_set():
            try:
                deleted = purge_old_records()
                if any(deleted.values()):
                    logger.info("audit_retention_purge deleted=%s", deleted)
            except Exception as exc:  # pragma: no cover - defensive guard
                logger.warning("audit_retention_purge_failed: %s", exc)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=3600)
            except asyncio.TimeoutError:
                continue

    purge_task = asyncio.create_task(periodic_purge())
    yield
    stop_event.set()
    if not purge_task.done():
        purge_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await purge_task
    if owned:
        await app.state.cv_ai_service.aclose()
        app.state.cv_ai_service = None
