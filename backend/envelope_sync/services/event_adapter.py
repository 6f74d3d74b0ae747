"""
Inbound event adapter.

Normalizes the payload shapes that reach the pipeline into a single
provider-agnostic InboundEvent model.

Supported shapes:
  - connect    raw DocuSign Connect JSON (event + data.envelopeSummary)
  - normalized the flat line format produced by the listener
               {event, envelopeId, summaryStatus, emailSubject, sender,
                validationToken, documents[{name, PDFBytes}], rawBody}
  - envelope   the listener's hand-off wrapper {body: "<raw Connect JSON>",
               eventName, envelopeId}; the body is unwrapped and parsed as
               connect JSON, falling back to the crumbs when it lacks them.

DocuSign Connect (JSON, SIM) field assumptions
-----------------------------------------------
  event                                   str  — e.g. "envelope-completed"
  data.envelopeId                         str
  data.envelopeSummary.status             str  — e.g. "completed"
  data.envelopeSummary.emailSubject       str
  data.envelopeSummary.sender             obj  — {userName, email}
  data.envelopeSummary.envelopeDocuments  list — each {name, PDFBytes}
  data.envelopeSummary.customFields.textCustomFields
                                          list — each {name, value}; the
                                                 "ValidationToken" field
                                                 carries the token.

If Connect changes its schema, only this file needs updating.
"""

import json
from typing import Callable, Optional

from envelope_sync.errors import InputError
from envelope_sync.models.inbound_event import EventDocument, InboundEvent

_TOKEN_CUSTOM_FIELD = "validationtoken"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _str_or_none(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _as_dict(value) -> dict:
    """Nested objects of the wrong JSON type are treated as absent."""
    return value if isinstance(value, dict) else {}


def _as_list(value) -> list:
    return value if isinstance(value, list) else []


def _documents(items) -> list[EventDocument]:
    documents: list[EventDocument] = []
    for doc in _as_list(items):
        if not isinstance(doc, dict):
            continue
        content = doc.get("PDFBytes") or doc.get("pdfBytes") or ""
        if not content:
            continue
        documents.append(
            EventDocument(
                name=str(doc.get("name") or doc.get("documentId") or ""),
                content_base64=str(content),
            )
        )
    return documents


def _custom_field_token(summary: dict) -> Optional[str]:
    custom = _as_dict(summary.get("customFields"))
    for field in _as_list(custom.get("textCustomFields")):
        if isinstance(field, dict) and str(field.get("name", "")).strip().lower() == _TOKEN_CUSTOM_FIELD:
            return _str_or_none(field.get("value"))
    return None


def _require(event_name: Optional[str], envelope_id: Optional[str]) -> tuple[str, str]:
    if not event_name:
        raise InputError("missing 'event' in payload")
    if not envelope_id:
        raise InputError("missing 'envelopeId' in payload")
    return event_name, envelope_id


# ---------------------------------------------------------------------------
# Connect normalizer
# ---------------------------------------------------------------------------

def normalize_connect(payload: dict, raw_body: str = "") -> InboundEvent:
    """
    Convert a DocuSign Connect JSON payload to InboundEvent.

    Raises InputError when the event name or envelope id is missing.
    """
    data = _as_dict(payload.get("data"))
    summary = _as_dict(data.get("envelopeSummary"))
    sender = _as_dict(summary.get("sender"))

    event_name, envelope_id = _require(
        _str_or_none(payload.get("event")),
        _str_or_none(data.get("envelopeId") or summary.get("envelopeId")),
    )

    return InboundEvent(
        event_name=event_name,
        envelope_id=envelope_id,
        summary_status=_str_or_none(summary.get("status")),
        email_subject=_str_or_none(summary.get("emailSubject")),
        sender_name=_str_or_none(sender.get("userName")),
        sender_email=_str_or_none(sender.get("email")),
        validation_token=_str_or_none(payload.get("validationToken"))
        or _custom_field_token(summary),
        documents=_documents(summary.get("envelopeDocuments")),
        raw_body=raw_body or json.dumps(payload),
    )


# ---------------------------------------------------------------------------
# Normalized-line normalizer
# ---------------------------------------------------------------------------

def normalize_flat(payload: dict, raw_body: str = "") -> InboundEvent:
    """
    Convert the flat listener line format to InboundEvent.

    Raises InputError when the event name or envelope id is missing.
    """
    sender = _as_dict(payload.get("sender"))
    event_name, envelope_id = _require(
        _str_or_none(payload.get("event")),
        _str_or_none(payload.get("envelopeId")),
    )

    return InboundEvent(
        event_name=event_name,
        envelope_id=envelope_id,
        summary_status=_str_or_none(payload.get("summaryStatus")),
        email_subject=_str_or_none(payload.get("emailSubject")),
        sender_name=_str_or_none(sender.get("userName")),
        sender_email=_str_or_none(sender.get("email")),
        validation_token=_str_or_none(payload.get("validationToken")),
        documents=_documents(payload.get("documents")),
        raw_body=str(payload.get("rawBody") or raw_body or json.dumps(payload)),
    )


# ---------------------------------------------------------------------------
# Listener envelope
# ---------------------------------------------------------------------------

def normalize_envelope(payload: dict, raw_body: str = "") -> InboundEvent:
    """
    Unwrap {body, eventName, envelopeId} and normalize the inner Connect JSON.

    When the body is not JSON, or lacks the identifiers, the wrapper's
    eventName/envelopeId crumbs are used and the body is kept verbatim.
    """
    body = payload.get("body")
    body_text = body if isinstance(body, str) else json.dumps(body or {})

    inner: dict = {}
    try:
        parsed = json.loads(body_text) if body_text.strip() else {}
        if isinstance(parsed, dict):
            inner = parsed
    except json.JSONDecodeError:
        inner = {}

    if not inner.get("event"):
        inner["event"] = payload.get("eventName")
    if not isinstance(inner.get("data"), dict):
        inner["data"] = {}
    if not inner["data"].get("envelopeId"):
        inner["data"]["envelopeId"] = payload.get("envelopeId")

    return normalize_connect(inner, raw_body=body_text)


# ---------------------------------------------------------------------------
# Registry and dispatcher
# ---------------------------------------------------------------------------

_NORMALIZERS: dict[str, Callable[[dict, str], InboundEvent]] = {
    "connect": normalize_connect,
    "normalized": normalize_flat,
    "envelope": normalize_envelope,
}


def detect_shape(payload: dict) -> str:
    """Guess which of the supported shapes a payload has."""
    if "body" in payload:
        return "envelope"
    if isinstance(payload.get("data"), dict):
        return "connect"
    return "normalized"


def normalize_payload(payload, raw_body: str = "", shape: str | None = None) -> InboundEvent:
    """
    Route a decoded JSON payload to the matching normalizer.

    Raises InputError for non-object payloads, unknown shapes and events
    missing their name or envelope id.
    """
    if not isinstance(payload, dict):
        raise InputError("payload must be a JSON object")

    resolved = (shape or detect_shape(payload)).lower().strip()
    normalizer = _NORMALIZERS.get(resolved)
    if normalizer is None:
        raise InputError(
            f"Unknown payload shape {resolved!r}. "
            f"Supported shapes: {sorted(_NORMALIZERS)}"
        )
    return normalizer(payload, raw_body)


def parse_event_text(text: str) -> InboundEvent:
    """
    Parse one JSON document (e.g. a stdin line) into an InboundEvent.

    Raises InputError when the text is empty or not valid JSON.
    """
    if not text or not text.strip():
        raise InputError("empty input", where="parse-stdin")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise InputError(f"invalid JSON: {e}", where="parse-stdin")
    return normalize_payload(payload, raw_body=text)
