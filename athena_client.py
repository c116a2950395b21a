"""
athena_client.py
----------------
EHR Billing Relay — athenahealth REST Client
--------------------------------------------
Async client for the four athenahealth REST endpoints the relay needs.

OAuth2 flow:
  1. POST {baseUrl}{tokenEndpoint} with grant_type=client_credentials and
     HTTP Basic credentials (base64 of "clientId:secret").
  2. Every other request carries the bearer token in the Authorization
     header. The token is NOT cached: one client (and one token) per
     inbound transaction.

Endpoints:
  GET  /v1/{practiceId}/appointments/{appointmentId}
  GET  /v1/{practiceId}/{encounterId}/procedurecodes?searchvalue={cpt}
  POST /v1/{practiceId}/encounter/{encounterId}/services

athenahealth reports most failures in-band (a JSON body carrying an
``error`` field), so ``_request`` returns the parsed body whatever the HTTP
status and leaves interpretation to the caller. Only transport errors and
non-JSON bodies raise.

Usage::

    async with AthenaClient(config) as client:
        token = await client.fetch_token()
        appointments = await client.get_appointments("41474")

Author: Shreelakshmi Gopinatha Rao
Project: EHR Billing Relay
"""

from __future__ import annotations

import base64
import logging
from typing import Any, List, Optional
from urllib.parse import quote

import httpx

from relay_config import RelayConfig

logger = logging.getLogger(__name__)

_TOKEN_SCOPE = "athena/service/Athenanet.MDP.*"


class AthenaAuthError(Exception):
    """Raised when the client-credentials token request fails."""


class AthenaAPIError(Exception):
    """Raised when an EHR call fails in transport or returns a non-JSON body."""

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"athenahealth API error {status_code}: {body}")


def basic_auth_value(client_id: str, secret: str) -> str:
    """Return the base64 ``clientId:secret`` pair used for HTTP Basic auth."""
    raw = f"{client_id}:{secret}".encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def path_segment(value: str) -> str:
    """
    Percent-encode *value* as one URL path segment.

    ``/``, ``?`` and ``#`` are escaped, and a bare ``.`` or ``..`` is spelled
    out as ``%2E`` so the resolved path cannot leave its parent route.
    """
    encoded = quote(str(value), safe="")
    if encoded in (".", ".."):
        return encoded.replace(".", "%2E")
    return encoded


class AthenaClient:
    """
    Async athenahealth REST client bound to one EHR configuration.

    Args:
        config:    The per-request ``RelayConfig`` (base URL, practice, credentials).
        timeout:   Outbound timeout in seconds. ``None`` means unbounded.
        transport: Optional httpx transport; tests pass ``httpx.MockTransport``.
    """

    def __init__(
        self,
        config: RelayConfig,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._access_token: Optional[str] = None
        self._http: Optional[httpx.AsyncClient] = None

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def connect(self) -> None:
        """Open the underlying HTTP connection pool."""
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
            )
            logger.debug("AthenaClient: HTTP transport initialised.")

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None
            logger.debug("AthenaClient: HTTP transport closed.")

    async def __aenter__(self) -> "AthenaClient":
        await self.connect()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()

    # ── URL helpers ──────────────────────────────────────────────────────────

    @property
    def _token_url(self) -> str:
        return f"{self.base_url}{self.config.token_endpoint}"

    @property
    def _practice_base(self) -> str:
        return f"{self.base_url}/v1/{self.config.practice_id}"

    # ── OAuth2 ───────────────────────────────────────────────────────────────

    async def fetch_token(self) -> str:
        """
        Exchange the configured client id / secret for a bearer token.

        Returns:
            The ``access_token`` string. It is also kept on the instance for
            the remaining calls of this request.

        Raises:
            AthenaAuthError: on transport failure, a non-JSON body, or a
                             response without ``access_token``.
        """
        self._require_connection()
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/x-www-form-urlencoded",
            "Authorization": "Basic "
            + basic_auth_value(self.config.client_id, self.config.secret),
        }
        form_data = {"grant_type": "client_credentials", "scope": _TOKEN_SCOPE}

        try:
            resp = await self._http.post(self._token_url, data=form_data, headers=headers)
        except httpx.HTTPError as exc:
            raise AthenaAuthError(f"Token request failed: {exc}") from exc

        try:
            token_data = resp.json()
        except ValueError as exc:
            raise AthenaAuthError(
                f"Token endpoint returned {resp.status_code} with a non-JSON body."
            ) from exc

        token = token_data.get("access_token") if isinstance(token_data, dict) else None
        if not token:
            raise AthenaAuthError(
                f"Token endpoint returned {resp.status_code} without an access_token."
            )

        self._access_token = token
        logger.info("AthenaClient: bearer token obtained (status=%d).", resp.status_code)
        return token

    # ── Internal request helper ──────────────────────────────────────────────

    def _require_connection(self) -> None:
        if self._http is None:
            raise RuntimeError(
                "AthenaClient is not connected. "
                "Use 'async with AthenaClient(config) as client:' or call connect() first."
            )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, str]] = None,
        data: Optional[dict[str, str]] = None,
    ) -> Any:
        """
        Execute an authenticated request and return the parsed JSON body.

        Args:
            method: HTTP method (``"GET"``, ``"POST"``).
            path:   Path relative to ``{baseUrl}/v1/{practiceId}``.
            params: URL query parameters.
            data:   Form body (sent as application/x-www-form-urlencoded).

        Raises:
            RuntimeError:   if the client is not connected.
            AthenaAuthError: if ``fetch_token()`` has not succeeded yet.
            AthenaAPIError: on transport failure or a non-JSON body.
        """
        self._require_connection()
        if not self._access_token:
            raise AthenaAuthError("No bearer token; call fetch_token() first.")

        headers = {
            "Accept": "application/json",
            "Authorization": f"Bearer {self._access_token}",
        }
        if data is not None:
            headers["Content-Type"] = "application/x-www-form-urlencoded"

        url = f"{self._practice_base}{path}"
        try:
            resp = await self._http.request(
                method, url, headers=headers, params=params, data=data
            )
        except httpx.HTTPError as exc:
            raise AthenaAPIError(0, str(exc)) from exc

        if resp.status_code not in range(200, 300):
            logger.warning(
                "AthenaClient: %s %s returned HTTP %d.", method, path, resp.status_code
            )

        try:
            return resp.json()
        except ValueError as exc:
            raise AthenaAPIError(resp.status_code, resp.text[:300]) from exc

    # ── Public API ───────────────────────────────────────────────────────────

    async def get_appointments(self, appointment_id: str) -> List[dict[str, Any]]:
        """
        Look up an appointment  →  ``GET /v1/{practiceId}/appointments/{id}``.

        Returns:
            The list of appointment records. A non-list body (athenahealth
            answers unknown ids with an error object) yields an empty list.
        """
        logger.debug("AthenaClient: GET /appointments/%s", appointment_id)
        body = await self._request("GET", f"/appointments/{path_segment(appointment_id)}")
        if not isinstance(body, list):
            return []
        return [appt for appt in body if isinstance(appt, dict)]

    async def get_procedure_codes(self, encounter_id: str, cpt_code: str) -> dict[str, Any]:
        """
        Search procedure codes valid for an encounter
        →  ``GET /v1/{practiceId}/{encounterId}/procedurecodes?searchvalue={cpt}``.
        """
        logger.debug(
            "AthenaClient: GET /%s/procedurecodes (searchvalue=%s)", encounter_id, cpt_code
        )
        body = await self._request(
            "GET",
            f"/{path_segment(encounter_id)}/procedurecodes",
            params={"searchvalue": cpt_code},
        )
        return body if isinstance(body, dict) else {"procedurecodes": body}

    async def post_encounter_services(
        self,
        encounter_id: str,
        icd10_codes: List[str],
        cpt_code: str,
    ) -> dict[str, Any]:
        """
        Bill a procedure against an encounter
        →  ``POST /v1/{practiceId}/encounter/{encounterId}/services``.

        The form always carries ``billforservice=true``, empty ``modifiers``
        and ``units=1``; the payload format has no modifiers or unit counts.

        Args:
            encounter_id: EHR encounter id resolved from the appointment.
            icd10_codes:  Ordered ICD-10 diagnosis codes, sent comma-separated.
            cpt_code:     The CPT procedure code.

        Returns:
            The parsed response. A non-empty ``error`` value signals failure.
        """
        form_data = {
            "billforservice": "true",
            "icd10codes": ",".join(icd10_codes),
            "modifiers": "",
            "procedurecode": cpt_code,
            "units": "1",
        }
        logger.debug(
            "AthenaClient: POST /encounter/%s/services (procedurecode=%s, icd10codes=%s)",
            encounter_id, cpt_code, form_data["icd10codes"],
        )
        body = await self._request(
            "POST", f"/encounter/{path_segment(encounter_id)}/services", data=form_data
        )
        return body if isinstance(body, dict) else {"result": body}
