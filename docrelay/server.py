"""
DOCRELAY Server — the webhook entry point

GET  /webhook  → liveness
POST /webhook  → verify signature, dispatch the event batch
Other methods are rejected with 405 by FastAPI's routing.

Events in a batch run concurrently on a thread pool. One event's
failure is logged and never affects the others or the response.
"""

from __future__ import annotations

import concurrent.futures
import json
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import ValidationError

from docrelay.audit_logger import AuditLogger
from docrelay.config_loader import Secrets, load_config
from docrelay.controller import Relay
from docrelay.event_bus import EventBus
from docrelay.line import LineChannel, WebhookEvent, WebhookPayload

SIGNATURE_HEADER = "x-line-signature"


def handle_event(relay: Relay, channel: LineChannel, event: WebhookEvent) -> None:
    """Handle one webhook event. Non-text events are ignored."""
    if not event.is_text_message:
        logger.debug(f"[SERVER] Skipping {event.type} event")
        return

    try:
        reply = relay.handle(event.user_key, event.message.text)
        channel.reply(event.reply_token, reply.text)
        logger.info(f"[SERVER] Replied to {event.user_key} ({reply.kind})")
    except Exception:
        logger.exception(f"[SERVER] Error processing message from {event.user_key}")


def dispatch_batch(
    relay: Relay,
    channel: LineChannel,
    events: list[WebhookEvent],
    max_workers: int = 8,
) -> None:
    if not events:
        return

    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [executor.submit(handle_event, relay, channel, event) for event in events]
        concurrent.futures.wait(futures)


def create_app(relay: Relay, channel: LineChannel, max_workers: int = 8) -> FastAPI:
    app = FastAPI(title="docrelay")

    @app.get("/")
    @app.get("/webhook")
    def liveness() -> dict:
        return {"status": "ok"}

    @app.post("/webhook")
    async def webhook(request: Request):
        body = await request.body()

        if not channel.verify_signature(body, request.headers.get(SIGNATURE_HEADER)):
            logger.warning("[SERVER] Rejected webhook with invalid signature")
            return JSONResponse(status_code=401, content={"error": "Invalid signature"})

        try:
            payload = WebhookPayload.model_validate(json.loads(body))
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
            logger.warning(f"[SERVER] Malformed webhook payload: {e}")
            return JSONResponse(status_code=400, content={"error": "Malformed payload"})

        logger.debug(f"[SERVER] Webhook with {len(payload.events)} event(s)")
        await run_in_threadpool(dispatch_batch, relay, channel, payload.events, max_workers)
        return {"status": "ok"}

    return app


def build_app(config_path: Path | None = None) -> FastAPI:
    """Build the production app from config and environment secrets."""
    config = load_config(config_path)
    secrets = Secrets.from_env()
    secrets.require("line_channel_secret", "line_channel_access_token")

    bus = EventBus()
    if config.audit.log_path:
        AuditLogger(config.audit.log_path, bus)

    relay = Relay.from_config(config, secrets, bus=bus)
    channel = LineChannel(
        secrets.line_channel_secret,
        secrets.line_channel_access_token,
        config.line,
        timeout=config.http.timeout_seconds,
    )
    return create_app(relay, channel, max_workers=config.limits.batch_workers)
