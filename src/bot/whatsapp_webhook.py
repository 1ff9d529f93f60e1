"""
MindArsenal Coach — WhatsApp Webhook.

Twilio posts each inbound WhatsApp message here. The conversation engine
runs synchronously inside the request and its replies are returned as a
single TwiML message, so the reply travels in the HTTP response rather than
as a separate outbound call.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Coroutine

from flask import Flask, Response, jsonify, request
from twilio.request_validator import RequestValidator
from twilio.twiml.messaging_response import MessagingResponse

from src.core import messages
from src.core.conversation import handle_message
from src.data.db import UserStore
from src.data.models import UserSeed

logger = logging.getLogger(__name__)

CHANNEL = "whatsapp"
TEXT_ONLY = "Text reports only."


def identity_key(address: str) -> str:
    return f"{CHANNEL}:{address}"


def _twiml(text: str) -> Response:
    twiml = MessagingResponse()
    twiml.message(text)
    return Response(str(twiml), mimetype="application/xml")


def create_webhook_app(
    store: UserStore,
    auth_token: str | None = None,
    validate_signature: bool | None = None,
    coach_timeout: float | None = None,
) -> Flask:
    """Build the Flask app serving the Twilio webhook.

    Args:
        store: Shared user store (the same one the Telegram side uses).
        auth_token: Twilio auth token for signature checks. Defaults to settings.
        validate_signature: Check X-Twilio-Signature. Defaults to settings.
        coach_timeout: Longest wait for the LLM coach. Defaults to the smaller
            of LLM_TIMEOUT_SECONDS and WHATSAPP_COACH_TIMEOUT_SECONDS, which
            must stay under Twilio's 15 s webhook timeout.
    """
    from src.config import settings

    if auth_token is None:
        auth_token = settings.TWILIO_AUTH_TOKEN
    if validate_signature is None:
        validate_signature = settings.WHATSAPP_VALIDATE_SIGNATURE
    if coach_timeout is None:
        coach_timeout = min(settings.LLM_TIMEOUT_SECONDS, settings.WHATSAPP_COACH_TIMEOUT_SECONDS)

    validator = RequestValidator(auth_token) if validate_signature else None

    app = Flask(__name__)

    def _run(coro: Coroutine[Any, Any, list[str]]) -> list[str]:
        # Each request thread gets its own short-lived event loop.
        return asyncio.run(coro)

    @app.get("/")
    def health():
        return jsonify({"ok": True, "service": "mindarsenal-whatsapp"})

    @app.post("/whatsapp/webhook")
    def whatsapp_webhook():
        if validator is not None:
            signature = request.headers.get("X-Twilio-Signature", "")
            if not validator.validate(request.url, request.form, signature):
                logger.warning("Rejected webhook call with bad Twilio signature")
                return jsonify({"ok": False, "error": "forbidden"}), 403

        sender = (request.form.get("From") or "").replace("whatsapp:", "", 1).strip()
        body = request.form.get("Body") or ""
        if not sender:
            return jsonify({"ok": False, "error": "missing From"}), 400

        if not body.strip():
            return _twiml(TEXT_ONLY)

        seed = UserSeed(
            channel=CHANNEL,
            address=sender,
            first_name=(request.form.get("ProfileName") or "").strip(),
        )
        try:
            replies = _run(handle_message(
                store, identity_key(sender), body, seed, coach_timeout=coach_timeout,
            ))
        except Exception:
            logger.exception("WhatsApp webhook failed for %s", sender)
            replies = [messages.INTERNAL_ERROR]

        return _twiml("\n\n".join(replies))

    return app


def start_webhook_thread(store: UserStore) -> threading.Thread:
    """Serve the webhook from a daemon thread next to Telegram polling."""
    from src.config import settings

    app = create_webhook_app(store)
    thread = threading.Thread(
        target=app.run,
        kwargs={
            "host": settings.WHATSAPP_WEBHOOK_HOST,
            "port": settings.WHATSAPP_WEBHOOK_PORT,
            "threaded": True,
            "use_reloader": False,
        },
        name="whatsapp-webhook",
        daemon=True,
    )
    thread.start()
    logger.info(
        "WhatsApp webhook listening on %s:%d",
        settings.WHATSAPP_WEBHOOK_HOST, settings.WHATSAPP_WEBHOOK_PORT,
    )
    return thread
