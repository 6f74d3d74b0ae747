#!/usr/bin/env python3
"""
Dev helper: send a test DocuSign Connect webhook to the local listener.

Builds a Connect JSON payload for the chosen event, optionally embeds a real
PDF (or generates a tiny placeholder), and POST-s it to /docusign/webhook with
Basic auth and, when a secret is configured, an X-DocuSign-Signature-1 header.

Usage
-----
# Basic: envelope-completed with a generated PDF, targeting localhost:8000
python scripts/send_test_webhook.py --envelope-id 11111111-2222-3333-4444-555555555555

# Embed a specific file
python scripts/send_test_webhook.py --envelope-id ENV --file signed.pdf

# Other events
python scripts/send_test_webhook.py --envelope-id ENV --event envelope-declined

# Print the payload without sending it
python scripts/send_test_webhook.py --envelope-id ENV --dry-run

Environment / .env
------------------
LISTENER_BASIC_USER    Basic-auth user sent with the request.
LISTENER_BASIC_PASS    Basic-auth password sent with the request.
DOCUSIGN_HMAC_SECRET   Base64 HMAC key; the body is signed when set.
WEBHOOK_TEST_TOKEN     Validation token embedded in the payload.
"""

import argparse
import base64
import hashlib
import hmac
import json
import os
import sys
import textwrap
from pathlib import Path

import httpx
from dotenv import load_dotenv


# ---------------------------------------------------------------------------
# Sample document
# ---------------------------------------------------------------------------

def _make_sample_pdf() -> bytes:
    """Return a minimal single-page PDF as bytes."""
    return (
        b"%PDF-1.4\n"
        b"1 0 obj<</Type/Catalog/Pages 2 0 R>>endobj\n"
        b"2 0 obj<</Type/Pages/Kids[3 0 R]/Count 1>>endobj\n"
        b"3 0 obj<</Type/Page/Parent 2 0 R/MediaBox[0 0 612 792]>>endobj\n"
        b"trailer<</Root 1 0 R>>\n%%EOF\n"
    )


# ---------------------------------------------------------------------------
# Payload builder
# ---------------------------------------------------------------------------

def _build_connect_payload(
    event: str,
    envelope_id: str,
    token: str,
    file_content: bytes,
    filename: str,
) -> dict:
    """
    Build a DocuSign Connect (JSON, SIM) payload.

    The validation token travels as the "ValidationToken" text custom field,
    the way the sending template sets it.
    """
    status = event.split("-", 1)[-1]
    summary = {
        "status": status,
        "emailSubject": "Please sign: Test Agreement",
        "sender": {"userName": "Test Sender", "email": "sender@example.com"},
        "customFields": {
            "textCustomFields": [{"name": "ValidationToken", "value": token}],
        },
        "envelopeDocuments": [],
    }
    if event == "envelope-completed":
        summary["envelopeDocuments"].append(
            {
                "documentId": "1",
                "name": filename,
                "PDFBytes": base64.b64encode(file_content).decode(),
            }
        )
    return {
        "event": event,
        "apiVersion": "v2.1",
        "data": {"envelopeId": envelope_id, "envelopeSummary": summary},
    }


def _sign(secret_b64: str, body: bytes) -> str:
    digest = hmac.new(base64.b64decode(secret_b64), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def _print_response(response) -> None:
    status = response.status_code
    symbol = "OK" if status == 200 else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> int:
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="send_test_webhook.py",
        description="Send a test DocuSign Connect webhook to the Envelope Sync listener.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Examples:
              python scripts/send_test_webhook.py --envelope-id ENV
              python scripts/send_test_webhook.py --envelope-id ENV --file signed.pdf
              python scripts/send_test_webhook.py --envelope-id ENV --event recipient-finish-later
        """),
    )
    parser.add_argument(
        "--url",
        default="http://localhost:8000",
        help="Listener base URL (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--event",
        default="envelope-completed",
        help="Connect event name (default: envelope-completed)",
    )
    parser.add_argument(
        "--envelope-id",
        required=True,
        help="Envelope id of an existing signature request.",
    )
    parser.add_argument(
        "--token",
        default=os.getenv("WEBHOOK_TEST_TOKEN", ""),
        help="Validation token to embed (default: WEBHOOK_TEST_TOKEN env var).",
    )
    parser.add_argument(
        "--file",
        default=None,
        metavar="PATH",
        help="PDF to embed for envelope-completed. A placeholder PDF is used if omitted.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the payload JSON without sending it.",
    )
    args = parser.parse_args()

    if args.file:
        file_path = Path(args.file)
        if not file_path.exists():
            print(f"ERROR: File not found: {file_path}", file=sys.stderr)
            return 1
        file_content = file_path.read_bytes()
        filename = file_path.name
        print(f"Embedding file: {file_path} ({len(file_content):,} bytes)")
    else:
        file_content = _make_sample_pdf()
        filename = "SignedDocument.pdf"

    payload = _build_connect_payload(args.event, args.envelope_id, args.token, file_content, filename)
    body = json.dumps(payload).encode()
    endpoint = f"{args.url.rstrip('/')}/docusign/webhook"

    print(f"\nEndpoint : {endpoint}")
    print(f"Event    : {args.event}")
    print(f"Envelope : {args.envelope_id}")

    if args.dry_run:
        print("\n[DRY RUN] Payload:")
        print(json.dumps(payload, indent=2))
        return 0

    headers = {"Content-Type": "application/json"}
    secret = os.getenv("DOCUSIGN_HMAC_SECRET", "")
    if secret:
        headers["X-DocuSign-Signature-1"] = _sign(secret, body)

    user = os.getenv("LISTENER_BASIC_USER", "")
    password = os.getenv("LISTENER_BASIC_PASS", "")
    auth = (user, password) if user or password else None

    try:
        response = httpx.post(endpoint, content=body, headers=headers, auth=auth, timeout=60)
    except httpx.ConnectError:
        print(
            f"\nERROR: Could not connect to {endpoint}\n"
            "Is the listener running? Start it with:\n"
            "  uvicorn envelope_sync.main:app --app-dir backend --reload",
            file=sys.stderr,
        )
        return 1

    _print_response(response)
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
