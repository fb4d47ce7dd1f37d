"""FastAPI application relaying SMS between the carrier and a polling browser."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import ValidationError
from fastapi.concurrency import run_in_threadpool
from twilio.request_validator import RequestValidator
from twilio.twiml.messaging_response import MessagingResponse

from . import __version__
from .buffer import RelayBuffer
from .config import load_config
from .errors import InvalidPhoneNumber, ProviderError
from .models import Message, SendRequest, SendResponse
from .outbound import CarrierClient, normalize_number

logger = logging.getLogger(__name__)


# -----------------------------
# Utilities
# -----------------------------
def _make_buffer(cfg: Dict[str, Any]) -> RelayBuffer:
    capacity = int(cfg.get("relay", {}).get("capacity", 100))
    return RelayBuffer(capacity)


def _make_validator(cfg: Dict[str, Any]) -> Optional[RequestValidator]:
    carrier = cfg.get("carrier", {})
    if not carrier.get("validate_signature"):
        return None
    token = carrier.get("auth_token")
    if not token:
        logger.warning("validate_signature is on but no auth_token is configured; skipping checks.")
        return None
    return RequestValidator(token)


def _ack(auto_reply: str) -> Response:
    if not auto_reply:
        return PlainTextResponse("Message received", status_code=200)
    twiml = MessagingResponse()
    twiml.message(auto_reply)
    return Response(content=str(twiml), status_code=200, media_type="text/xml")


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    buffer: Optional[RelayBuffer] = None,
    carrier: Optional[CarrierClient] = None,
) -> FastAPI:
    cfg = load_config(config_path)

    cors_origins = cfg.get("server", {}).get("cors_origins", ["*"])

    buffer = buffer if buffer is not None else _make_buffer(cfg)
    carrier = carrier or CarrierClient.from_config(cfg)
    validator = _make_validator(cfg)
    auto_reply = str(cfg.get("inbound", {}).get("auto_reply") or "")

    app = FastAPI(title="SMS Relay", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.buffer = buffer
    app.state.carrier = carrier

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"ok": True, "pending": len(buffer), "capacity": buffer.capacity}

    @app.post("/api/receive-sms")
    async def receive_sms(request: Request) -> Response:
        """Carrier webhook: buffer one inbound SMS until the next poll."""
        form = await request.form()
        params = {k: str(v) for k, v in form.items()}

        if validator is not None:
            signature = request.headers.get("X-Twilio-Signature", "")
            if not validator.validate(str(request.url), params, signature):
                return PlainTextResponse("Invalid signature", status_code=403)

        sender = params.get("From")
        body = params.get("Body")
        if not sender or not body:
            return PlainTextResponse("Missing required fields", status_code=400)

        try:
            msg = Message.inbound(sender, body, params.get("MessageSid"))
            buffer.append(msg)
        except Exception:
            logger.exception("Error processing incoming SMS")
            return PlainTextResponse("Error processing message", status_code=500)

        logger.info("Received SMS %s from %s", msg.id, msg.sender)
        return _ack(auto_reply)

    @app.get("/api/receive-sms")
    def poll_messages(poll: Optional[str] = Query(default=None)) -> JSONResponse:
        """Drain endpoint: hand back and forget everything buffered so far."""
        if poll != "true":
            return JSONResponse({"error": "Invalid request"}, status_code=400)
        return JSONResponse([m.to_dict() for m in buffer.drain_all()])

    @app.post("/api/send-sms")
    async def send_sms(request: Request) -> JSONResponse:
        try:
            req = SendRequest.model_validate(await request.json())
        except (ValueError, ValidationError):
            return JSONResponse({"error": "Invalid request body"}, status_code=400)

        if not req.to or not req.body:
            return JSONResponse(
                {"error": "Missing required fields: to and body"}, status_code=400
            )
        try:
            to = normalize_number(req.to)
        except InvalidPhoneNumber as e:
            return JSONResponse({"error": str(e)}, status_code=400)

        try:
            sent = await run_in_threadpool(carrier.send, to, req.body)
        except ProviderError as e:
            return JSONResponse(
                {"error": f"Carrier error: {e.message}", "code": e.code},
                status_code=e.status or 500,
            )
        except Exception:
            logger.exception("Unexpected failure sending SMS to %s", to)
            return JSONResponse(
                {"error": "Failed to send message. Please check your carrier credentials and try again."},
                status_code=500,
            )

        resp = SendResponse(
            messageId=sent.get("sid"),
            status=sent.get("status"),
            to=sent.get("to"),
            from_=sent.get("from"),
        )
        return JSONResponse(resp.model_dump(by_alias=True))

    return app
