"""
DocuSign Connect listener router.

Receives Connect webhooks, authenticates them, normalizes the payload via the
event_adapter service and runs the WebhookProcessor in-process.

Environment variables
---------------------
LISTENER_BASIC_USER       Expected Basic-auth user. Basic auth is disabled when
                          both user and password are unset.
LISTENER_BASIC_PASS       Expected Basic-auth password.
LISTENER_REQUIRE_HMAC     "true" to require X-DocuSign-Signature-1 (default false).
DOCUSIGN_HMAC_SECRET      Base64 Connect HMAC key.
LISTENER_ACK_FAST         "true" to reply immediately and process in the background.
LISTENER_MAX_BODY_BYTES   Request size limit in bytes (default 50 MiB).

Endpoints:
  GET  /healthz            — liveness probe
  POST /docusign/webhook   — Connect webhook (auth: Basic, optional HMAC)
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import os
import uuid
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse

from envelope_sync.errors import InputError
from envelope_sync.services.event_adapter import normalize_payload
from envelope_sync.services.webhook_processor import WebhookProcessor

logger = logging.getLogger(__name__)

router = APIRouter()

_DEFAULT_MAX_BODY_BYTES = 50 * 1024 * 1024
_SIGNATURE_HEADER = "x-docusign-signature-1"


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


def _max_body_bytes() -> int:
    raw = os.getenv("LISTENER_MAX_BODY_BYTES", "").strip()
    try:
        return int(raw) if raw else _DEFAULT_MAX_BODY_BYTES
    except ValueError:
        logger.warning(f"Ignoring invalid LISTENER_MAX_BODY_BYTES={raw!r}")
        return _DEFAULT_MAX_BODY_BYTES


def _get_processor(request: Request) -> WebhookProcessor:
    """The processor is built once at startup and kept on the app state."""
    return request.app.state.processor


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

def _windows_style(user: str) -> str:
    """alice@corp.local -> corp\\alice; anything without '@' is returned as-is."""
    if "@" not in user:
        return user
    name, _, domain = user.partition("@")
    return f"{domain.split('.')[0]}\\{name}"


def is_basic_auth_valid(authorization: Optional[str], user: str, password: str) -> bool:
    """
    Check a Basic Authorization header.

    Always valid when no user and no password are configured. The user name
    is compared case-insensitively, either as-is or in DOMAIN\\user form;
    the password must match exactly.
    """
    if not user and not password:
        return True
    if not authorization or not authorization.lower().startswith("basic "):
        return False
    try:
        decoded = base64.b64decode(authorization[6:].strip()).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return False

    provided_user, sep, provided_pass = decoded.partition(":")
    if not sep:
        return False

    user_ok = (
        provided_user.lower() == user.lower()
        or _windows_style(provided_user).lower() == _windows_style(user).lower()
    )
    ok = user_ok and hmac.compare_digest(provided_pass.encode("utf-8"), password.encode("utf-8"))
    logger.info(f"Basic auth for user={provided_user!r}: ok={ok}")
    return ok


def verify_connect_hmac(secret_b64: str, body: bytes, signature_b64: Optional[str]) -> bool:
    """
    Verify a Connect HMAC-SHA256 signature (base64 digest of the raw body).

    Uses a constant-time comparison. A missing secret or signature fails.
    """
    if not secret_b64 or not signature_b64:
        return False
    try:
        key = base64.b64decode(secret_b64)
    except binascii.Error:
        logger.error("DOCUSIGN_HMAC_SECRET is not valid base64")
        return False
    computed = base64.b64encode(hmac.new(key, body, hashlib.sha256).digest()).decode("ascii")
    return hmac.compare_digest(computed, signature_b64.strip())


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

def _listener_error(request_id: str, where: str, error: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        {"ok": False, "source": "listener", "where": where, "id": request_id, "error": error},
        status_code=status_code,
    )


@router.get("/healthz")
async def healthz() -> str:
    return "ok"


@router.post("/docusign/webhook")
async def receive_connect_webhook(request: Request, background_tasks: BackgroundTasks):
    """
    DocuSign Connect webhook receiver.

    Returns 401 for failed Basic auth or HMAC, 413 for oversized bodies and
    400 for unparseable or incomplete payloads. Otherwise the processor's
    result is returned with 200, including handled-but-failed outcomes.
    """
    request_id = uuid.uuid4().hex

    try:
        # 1. Basic auth
        if not is_basic_auth_valid(
            request.headers.get("authorization"),
            os.getenv("LISTENER_BASIC_USER", ""),
            os.getenv("LISTENER_BASIC_PASS", ""),
        ):
            return _listener_error(request_id, "auth", "401 basic-auth failed", 401)

        # 2. Body, with size limit
        limit = _max_body_bytes()
        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > limit:
            return _listener_error(request_id, "size", "request body too large", 413)
        raw = await request.body()
        if len(raw) > limit:
            return _listener_error(request_id, "size", "request body too large", 413)

        # 3. Optional HMAC
        if _env_flag("LISTENER_REQUIRE_HMAC") and not verify_connect_hmac(
            os.getenv("DOCUSIGN_HMAC_SECRET", ""),
            raw,
            request.headers.get(_SIGNATURE_HEADER),
        ):
            return _listener_error(request_id, "hmac", "bad/missing HMAC", 401)

        # 4. Parse and normalize
        try:
            text = raw.decode("utf-8")
            payload = json.loads(text)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            return _listener_error(request_id, "json", str(e), 400)

        try:
            event = normalize_payload(payload, raw_body=text)
        except InputError as e:
            return _listener_error(request_id, e.where, str(e), 400)

        processor = _get_processor(request)

        # 5. Process
        if _env_flag("LISTENER_ACK_FAST"):
            background_tasks.add_task(processor.process, event)
            logger.info(f"[{request_id}] Queued {event.event_name!r} for envelope {event.envelope_id}")
            return {"ok": True, "source": "listener", "queued": True, "id": request_id}

        result = processor.process(event)
        logger.info(
            f"[{request_id}] Envelope {event.envelope_id}: ok={result.ok} where={result.where}"
        )
        return {
            "ok": result.ok,
            "source": "listener",
            "queued": False,
            "id": request_id,
            "error": result.error,
            "result": result.to_output(),
        }
    except Exception as e:
        logger.exception(f"[{request_id}] Unhandled error in Connect webhook")
        return _listener_error(request_id, "exception", str(e), 500)
