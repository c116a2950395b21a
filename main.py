"""
main.py
-------
EHR Billing Relay — FastAPI server
----------------------------------
Receives financial transaction notifications and relays their billing
codes to the EHR through the pipeline in relay.py. Responses are plain
text; the status code tells the caller which step stopped the relay.

Endpoints:
    GET  /health       — Service health check
    POST /transaction  — Validate a financial transaction and bill it in the EHR

Run:
    uvicorn main:app --host 0.0.0.0 --port 3000
    # or: python main.py

Author: Shreelakshmi Gopinatha Rao
Project: EHR Billing Relay
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

import httpx
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.responses import PlainTextResponse

import relay_config
from relay import relay_transaction
from schemas import EMPTY_BODY_MESSAGE

logging.basicConfig(
    level=relay_config.LOG_LEVEL,
    format="%(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# ── Config ─────────────────────────────────────────────────────────────────────

VERSION = "1.0.0"
SERVICE_NAME = "EHR Billing Relay"

# ── FastAPI app ────────────────────────────────────────────────────────────────

app = FastAPI(
    title=SERVICE_NAME,
    version=VERSION,
    description="Relays financial transaction billing codes to the EHR.",
)


# ── Dependencies ───────────────────────────────────────────────────────────────

def get_config_path() -> str:
    """EHR configuration file path, resolved per request."""
    return relay_config.get_config_path()


def get_ehr_transport() -> Optional[httpx.AsyncBaseTransport]:
    """Outbound transport for the EHR client; None uses httpx's default."""
    return None


# ── Endpoints ──────────────────────────────────────────────────────────────────

@app.get("/health")
def health_check() -> dict:
    """
    Return service health status.

    Returns:
        dict: service, version, status, timestamp.
    """
    return {
        "service": SERVICE_NAME,
        "version": VERSION,
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.post("/transaction", response_class=PlainTextResponse)
async def post_transaction(
    request: Request,
    config_path: str = Depends(get_config_path),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_ehr_transport),
) -> PlainTextResponse:
    """
    Relay one financial transaction to the EHR.

    Args:
        request:     Raw request; the body must be a JSON object.
        config_path: EHR configuration file (dependency).
        transport:   Optional EHR transport (dependency, overridden in tests).

    Returns:
        PlainTextResponse: "Success" with 200, or the failing step's message
        with 400 / 401 / 404. Unexpected errors give 500 "Error: ...".
    """
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("transaction: body is not JSON.")
        return PlainTextResponse(EMPTY_BODY_MESSAGE, status_code=400)

    try:
        outcome = await relay_transaction(
            body,
            config_path,
            timeout=relay_config.get_http_timeout(),
            transport=transport,
        )
    except Exception as exc:
        logger.exception("transaction: unexpected error during relay.")
        return PlainTextResponse(f"Error: {exc}", status_code=500)

    return PlainTextResponse(outcome.message, status_code=outcome.status_code)


if __name__ == "__main__":
    logger.info("%s listening at http://%s:%d", SERVICE_NAME, relay_config.HOST, relay_config.PORT)
    uvicorn.run(app, host=relay_config.HOST, port=relay_config.PORT)
