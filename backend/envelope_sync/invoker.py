#!/usr/bin/env python3
"""
Process one envelope event from stdin (or a file) and print one JSON result.

The listener hands each event to this command; it can also be run by hand
against a saved Connect payload.

Usage
-----
# Read the event from stdin
envelope-sync-invoke --stdin < event.json

# Read the event from a file
envelope-sync-invoke --file saved/connect-payload.json

Output
------
Exactly one JSON object on stdout:
  {"ok": bool, "source": "crm", "where": str,
   "handled"?: str, "envelopeId"?: str, "error"?: str}

Exit codes
----------
0  handled (completed, finish_later, declined or unhandled)
1  malformed input; the record store was not contacted
2  handled but failed (token, locate, or a store error)

Logs go to stderr so stdout carries only the result.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Callable, Optional, TextIO

from envelope_sync.errors import InputError
from envelope_sync.pipeline import build_processor
from envelope_sync.services.event_adapter import parse_event_text
from envelope_sync.services.webhook_processor import WebhookProcessor

logger = logging.getLogger("envelope_sync.invoker")


def _emit(output: dict, stream: TextIO) -> None:
    stream.write(json.dumps(output) + "\n")
    stream.flush()


def run_once(
    text: str,
    processor_factory: Callable[[], WebhookProcessor],
    stdout: TextIO,
) -> int:
    """
    Parse, process and report a single event. Returns the exit code.

    The processor is only built once the input parsed, so malformed input
    never touches the record store (or its configuration).
    """
    try:
        event = parse_event_text(text)
    except InputError as e:
        _emit({"ok": False, "source": "crm", "where": e.where, "error": str(e)}, stdout)
        return 1

    try:
        processor = processor_factory()
    except ValueError as e:
        logger.error(f"Invoker is not configured: {e}")
        _emit({"ok": False, "source": "crm", "where": "execute", "error": str(e)}, stdout)
        return 2

    result = processor.process(event)
    _emit(result.to_output(), stdout)
    return result.exit_code


def _read_input(args: argparse.Namespace, stdin: TextIO) -> str:
    if args.file:
        return Path(args.file).read_text(encoding="utf-8")
    return stdin.read()


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Record one DocuSign envelope event in the record store.",
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--stdin",
        action="store_true",
        help="Read the event JSON from standard input (default).",
    )
    source.add_argument(
        "--file",
        metavar="PATH",
        help="Read the event JSON from a file.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level for stderr output (default: INFO).",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        text = _read_input(args, sys.stdin)
    except (OSError, UnicodeDecodeError) as e:
        _emit({"ok": False, "source": "crm", "where": "parse-stdin", "error": str(e)}, sys.stdout)
        return 1

    return run_once(text, build_processor, sys.stdout)


if __name__ == "__main__":
    sys.exit(main())
