"""
Orchestrator state management for API integration.

Provides singleton access to the JobOrchestrator and WebhookIngestor.
Initialized during FastAPI lifespan. The API process never starts the
worker controller; that runs as its own process.

Usage:
    from ._services_state import get_orchestrator, init_orchestrator

    # In lifespan:
    init_orchestrator(settings)

    # In routers:
    orchestrator = get_orchestrator()
"""

from typing import Optional

from ..infra.config import Settings
from ..orchestrator.service import JobOrchestrator
from ..webhooks.ingestor import WebhookIngestor


# Global service instances
_orchestrator: Optional[JobOrchestrator] = None
_ingestor: Optional[WebhookIngestor] = None


def init_orchestrator(
    settings: Settings,
    orchestrator: Optional[JobOrchestrator] = None,
) -> JobOrchestrator:
    """
    Initialize the orchestrator singleton.

    Args:
        settings: Runtime settings
        orchestrator: Pre-built orchestrator (tests inject one)

    Returns:
        Initialized JobOrchestrator
    """
    global _orchestrator, _ingestor

    if _orchestrator is not None:
        return _orchestrator

    if orchestrator is None:
        settings.ensure_directories()
        orchestrator = JobOrchestrator.create(settings)

    _orchestrator = orchestrator
    _ingestor = WebhookIngestor(orchestrator, secret=settings.github_webhook_secret)
    return _orchestrator


def get_orchestrator() -> JobOrchestrator:
    """
    Get the orchestrator singleton.

    Raises:
        RuntimeError: If orchestrator not initialized
    """
    if _orchestrator is None:
        raise RuntimeError(
            "Orchestrator not initialized. "
            "Ensure init_orchestrator() is called during startup."
        )
    return _orchestrator


def get_ingestor() -> WebhookIngestor:
    """
    Get the webhook ingestor singleton.

    Raises:
        RuntimeError: If orchestrator not initialized
    """
    if _ingestor is None:
        raise RuntimeError(
            "Webhook ingestor not initialized. "
            "Ensure init_orchestrator() is called during startup."
        )
    return _ingestor


def shutdown_orchestrator() -> None:
    """Release the singletons. Called during FastAPI lifespan shutdown."""
    global _orchestrator, _ingestor

    if _orchestrator is not None:
        if _orchestrator.is_running:
            _orchestrator.stop()
        _orchestrator = None
    _ingestor = None
