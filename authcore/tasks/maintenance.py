# authcore/tasks/maintenance.py
"""
Periodic session hygiene tasks.

Each run builds its own container: the redis.asyncio client is bound to the
event loop created by ``asyncio.run`` and cannot be reused across runs.
"""

import asyncio
import logging

from authcore.core.config import settings
from authcore.core.di import AuthCoreContainer, build_container
from authcore.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def _container() -> AuthCoreContainer:
    return build_container(settings)


@celery_app.task(name="authcore.tasks.maintenance.cleanup_expired_sessions")
def cleanup_expired_sessions_task() -> int:
    """Run as an async wrapper for the actual logic."""
    return asyncio.run(cleanup_expired_sessions())


async def cleanup_expired_sessions(container: AuthCoreContainer | None = None) -> int:
    """Remove sessions past expiry or idle timeout; returns the count removed."""
    owned = container is None
    container = container or _container()
    logger.info("Maintenance: Running expired session cleanup.")
    try:
        cleaned = await container.sessions.cleanup_expired_sessions()
        logger.info(f"Maintenance: Session cleanup removed {cleaned} session(s).")
        return cleaned
    finally:
        if owned:
            await container.shutdown()


@celery_app.task(name="authcore.tasks.maintenance.collect_session_metrics")
def collect_session_metrics_task() -> dict:
    return asyncio.run(collect_session_metrics())


async def collect_session_metrics(container: AuthCoreContainer | None = None) -> dict:
    """Snapshot of session, brute-force and security metrics for dashboards."""
    owned = container is None
    container = container or _container()
    try:
        session_metrics = await container.sessions.get_session_metrics()
        brute_force = await container.guard.get_brute_force_metrics("24h")
        security = await container.event_log.get_security_metrics("24h")
        logger.info(
            f"Metrics: {session_metrics.total_active_sessions} active session(s), "
            f"{brute_force.locked_accounts} locked account(s), "
            f"{brute_force.blocked_ips} blocked IP(s), {security.total_events} event(s) in 24h."
        )
        return {
            "sessions": session_metrics.model_dump(mode="json"),
            "brute_force": brute_force.model_dump(mode="json"),
            "security": security.model_dump(mode="json"),
        }
    finally:
        if owned:
            await container.shutdown()
