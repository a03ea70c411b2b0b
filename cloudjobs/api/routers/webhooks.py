"""
Webhooks router.

- POST /api/webhooks/github - GitHub deliveries (HMAC-verified, no API key)
"""

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from ...webhooks.ingestor import WebhookIngestor
from .._services_state import get_ingestor

router = APIRouter()


@router.post("/github")
async def github_webhook(
    request: Request,
    ingestor: WebhookIngestor = Depends(get_ingestor),
) -> JSONResponse:
    """
    Receive a GitHub webhook.

    The raw body is verified against `X-Hub-Signature-256` before it is
    parsed.
    """
    raw_body = await request.body()
    outcome = await run_in_threadpool(
        ingestor.ingest,
        raw_body,
        request.headers.get("x-hub-signature-256"),
        request.headers.get("x-github-event"),
    )
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)
