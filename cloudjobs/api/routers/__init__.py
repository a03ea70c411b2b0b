"""API routers."""

from . import health, jobs, queue, webhooks

__all__ = ["health", "jobs", "queue", "webhooks"]
