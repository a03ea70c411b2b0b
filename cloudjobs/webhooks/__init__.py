"""
Webhooks module - GitHub webhook ingestion.
"""

from .ingestor import IngestOutcome, WebhookIngestor, compute_signature, verify_signature

__all__ = [
    "IngestOutcome",
    "WebhookIngestor",
    "compute_signature",
    "verify_signature",
]
