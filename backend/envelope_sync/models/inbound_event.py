"""
Provider-agnostic inbound envelope event model.

These models represent a normalized signing-service event after the
Connect-specific payload shape has been stripped away. The processor works
exclusively with these models; only the adapter layer knows about the raw
DocuSign JSON.
"""

from typing import Optional
from pydantic import BaseModel


class EventDocument(BaseModel):
    """A single document carried by the event, still base64-encoded."""

    model_config = {"frozen": True}

    name: str
    content_base64: str     # decoding is deferred to the upload step


class InboundEvent(BaseModel):
    """
    Normalized envelope lifecycle event.

    event_name and envelope_id are required; a blank value for either is a
    pre-flight failure before the record store is touched. raw_body keeps the
    original payload text verbatim for the audit log.
    """

    model_config = {"frozen": True}

    event_name: str
    envelope_id: str
    summary_status: Optional[str] = None
    email_subject: Optional[str] = None
    sender_name: Optional[str] = None
    sender_email: Optional[str] = None
    validation_token: Optional[str] = None
    documents: tuple[EventDocument, ...] = ()
    raw_body: str = ""

    def summary(self) -> dict:
        """Compact projection of the event stored on the webhook log record."""
        return {
            "event": self.event_name,
            "envelopeId": self.envelope_id,
            "status": self.summary_status,
            "subject": self.email_subject,
            "sender": self.sender_email or self.sender_name,
            "documents": [d.name for d in self.documents],
        }
