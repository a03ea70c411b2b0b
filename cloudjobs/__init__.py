"""
cloudjobs - job orchestration for long-running automation tasks.

Jobs arrive through the HTTP API or GitHub webhooks, are persisted in a
SQLite job store, queued with deduplication, and executed by single-job
worker processes spawned on demand by the worker controller.
"""

__version__ = "0.3.0"
