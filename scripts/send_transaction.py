#!/usr/bin/env python3
"""
send_transaction.py
-------------------
EHR Billing Relay — Manual transaction sender
---------------------------------------------
Posts a financial transaction to a running relay and reports the outcome.
Without --payload it sends the reference scenario (MRN 555, visit 41474,
ICD-10 C43.4, CPT 11100), which the athenahealth preview sandbox accepts
when configs.json points at it.

Every run bills the encounter again; the relay does not deduplicate.

Usage:
    cd ehr-billing-relay
    python scripts/send_transaction.py [--url http://localhost:3000] [--payload file.json]

Exit code is 0 on HTTP 200, 1 otherwise.

Author: Shreelakshmi Gopinatha Rao
Project: EHR Billing Relay
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, List, Optional

import httpx

# ── Logging ───────────────────────────────────────────────────────────────────
log = logging.getLogger("send_transaction")

SAMPLE_PAYLOAD: dict[str, Any] = {
    "Meta": {"DataModel": "Financial", "EventType": "Transaction"},
    "Patient": {"Identifiers": [{"IDType": "MR", "ID": "555"}]},
    "Visit": {"VisitNumber": "41474"},
    "Transactions": [
        {
            "Diagnoses": [{"Codeset": "ICD-10", "Code": "C43.4"}],
            "Procedure": {"Codeset": "CPT", "Code": "11100"},
        }
    ],
}


def send_transaction(
    url: str,
    payload: dict[str, Any],
    *,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Response:
    """POST *payload* to ``{url}/transaction`` and return the response."""
    with httpx.Client(transport=transport) as client:
        return client.post(f"{url.rstrip('/')}/transaction", json=payload)


# ── CLI ───────────────────────────────────────────────────────────────────────

def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Send a financial transaction to a running EHR Billing Relay.",
    )
    parser.add_argument(
        "--url",
        default="http://localhost:3000",
        metavar="URL",
        help="Relay base URL (default: http://localhost:3000)",
    )
    parser.add_argument(
        "--payload",
        metavar="FILE",
        help="JSON file with the transaction body (default: built-in sample)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None, transport: Optional[httpx.BaseTransport] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(message)s",
        datefmt="%H:%M:%S",
    )
    args = _parse_args(argv)

    payload = SAMPLE_PAYLOAD
    if args.payload:
        with open(args.payload, "r", encoding="utf-8") as f:
            payload = json.load(f)

    try:
        response = send_transaction(args.url, payload, transport=transport)
    except httpx.HTTPError as exc:
        log.error("FAIL  could not reach relay at %s: %s", args.url, exc)
        return 1

    if response.status_code == 200:
        log.info("PASS  %d %s", response.status_code, response.text)
        return 0
    log.error("FAIL  %d %s", response.status_code, response.text)
    return 1


if __name__ == "__main__":
    sys.exit(main())
