"""
Envelope Sync listener
FastAPI application that receives DocuSign Connect webhooks and records them
in the record store.

Run with:
    uvicorn envelope_sync.main:app --app-dir backend --port 8000
"""

import logging
import os

from fastapi import FastAPI

from envelope_sync.pipeline import build_processor
from envelope_sync.routers import webhook

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Envelope Sync",
    description="DocuSign Connect listener that mirrors envelope events into the record store",
    version="0.1.0",
)

app.include_router(webhook.router, tags=["webhook"])


@app.on_event("startup")
async def build_pipeline() -> None:
    """
    Build the WebhookProcessor once, before the first request.

    Tests (and embedding callers) may set ``app.state.processor`` beforehand;
    an existing processor is left untouched.
    """
    if getattr(app.state, "processor", None) is not None:
        return
    app.state.processor = build_processor()
    host_port = os.getenv("HOST_PORT", "8000")
    logger.info(
        "Envelope Sync listening at:\n"
        "  Webhook: http://localhost:%s/docusign/webhook\n"
        "  Health:  http://localhost:%s/healthz",
        host_port,
        host_port,
    )
