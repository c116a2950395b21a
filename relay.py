"""
relay.py
--------
EHR Billing Relay — Transaction relay pipeline
----------------------------------------------
Validates one inbound financial transaction and relays its billing codes
to the EHR, or stops at the first failing step.

Pipeline (each step returns its value or a ``Failure``; the first
``Failure`` short-circuits the rest and becomes the HTTP response):

    1. shape validation          400
    2. configuration load        404
    3. identifier resolution     404   (MRN, appointment id)
    4. authentication            401
    5. appointment lookup        404   (exists, same patient, has encounter)
    6. billing code extraction   404   (first transaction only)
    7. procedure code check      404
    8. billing submission        404 on remote error, 200 "Success"

Nothing is retried and nothing is cached between transactions: each run
reads the configuration file and fetches a new token. Submissions are not
idempotent; relaying the same payload twice bills twice.

Author: Shreelakshmi Gopinatha Rao
Project: EHR Billing Relay
"""

from __future__ import annotations

import logging
from typing import Any, List, NamedTuple, Optional, Tuple, Union

import httpx

from athena_client import AthenaAPIError, AthenaAuthError, AthenaClient
from relay_config import (
    ConfigInvalidError,
    ConfigMissingError,
    RelayConfig,
    load_relay_config,
)
from schemas import (
    PayloadValidationError,
    TransactionRequest,
    VisitTransaction,
    validate_payload,
)

logger = logging.getLogger(__name__)

ICD10_CODESET = "ICD-10"
CPT_CODESET = "CPT"
SUCCESS_MESSAGE = "Success"


class Failure(NamedTuple):
    """Terminal outcome of a failed step: HTTP status and plain-text body."""

    status_code: int
    message: str


class RelayOutcome(NamedTuple):
    """Final result of ``relay_transaction``."""

    status_code: int
    message: str

    @property
    def ok(self) -> bool:
        return self.status_code == 200


class BillingCodes(NamedTuple):
    icd10_codes: List[str]
    cpt_code: str


def _fail(status_code: int, message: str) -> Failure:
    logger.warning("relay: %d %s", status_code, message)
    return Failure(status_code, message)


# ── Steps ──────────────────────────────────────────────────────────────────────

def check_payload(body: Any) -> Union[TransactionRequest, Failure]:
    """Step 1: shape validation."""
    try:
        return validate_payload(body)
    except PayloadValidationError as exc:
        return _fail(400, exc.message)


def load_config(config_path: str) -> Union[RelayConfig, Failure]:
    """Step 2: read the EHR configuration file for this transaction."""
    try:
        return load_relay_config(config_path)
    except ConfigMissingError as exc:
        logger.error("relay: %s", exc)
        return _fail(404, "Missing configuration")
    except ConfigInvalidError as exc:
        logger.error("relay: %s", exc)
        return _fail(404, "Configuration not valid")


def resolve_identifiers(
    request: TransactionRequest, config: RelayConfig
) -> Union[Tuple[str, str], Failure]:
    """Step 3: (MRN, appointment id) from the payload."""
    mrn = request.patient.identifier_for(config.id_type)
    if not mrn:
        return _fail(404, "No MRN found for patient")
    appointment_id = request.visit.visit_number
    if not appointment_id:
        return _fail(404, "No Appointment ID found")
    return mrn, appointment_id


async def authenticate(client: AthenaClient) -> Union[str, Failure]:
    """Step 4: client-credentials token."""
    try:
        return await client.fetch_token()
    except AthenaAuthError as exc:
        logger.error("relay: %s", exc)
        return _fail(401, "EHR Authentication failed")


async def find_encounter(
    client: AthenaClient, appointment_id: str, mrn: str
) -> Union[str, Failure]:
    """
    Step 5: look up the appointment and return its encounter id.

    The appointment must be in the result set, belong to the same patient
    as the payload's MRN, and have an encounter attached.
    """
    try:
        appointments = await client.get_appointments(appointment_id)
    except AthenaAPIError as exc:
        logger.error("relay: appointment lookup failed: %s", exc)
        appointments = []

    if not appointments:
        return _fail(404, "No Appointment found in EHR query")

    match = next(
        (a for a in appointments if str(a.get("appointmentid", "")) == appointment_id),
        None,
    )
    if match is None:
        return _fail(
            404, f"Appointment ID not found in EHR appointment query response: {appointment_id}"
        )

    patient_id = match.get("patientid")
    if patient_id is None or str(patient_id) != mrn:
        return _fail(404, "Patient returned from EHR does not match query patient")

    encounter_id = match.get("encounterid")
    if encounter_id is None or str(encounter_id) == "":
        return _fail(404, "No encounter associated with appointment")
    return str(encounter_id)


def extract_billing_codes(transactions: List[VisitTransaction]) -> Optional[BillingCodes]:
    """
    Collect the ICD-10 diagnosis codes (in order) and the CPT code of the
    first transaction. Later transactions are ignored.

    Returns None when the first transaction carries no diagnosis list. A
    missing or non-CPT procedure gives an empty ``cpt_code``.
    """
    if not transactions:
        return None
    first = transactions[0]
    if not first.diagnoses:
        return None

    icd10_codes = [d.code for d in first.diagnoses if d.codeset == ICD10_CODESET]
    cpt_code = ""
    if first.procedure is not None and first.procedure.codeset == CPT_CODESET:
        cpt_code = first.procedure.code
    return BillingCodes(icd10_codes, cpt_code)


def _total_count(body: dict) -> int:
    raw = body.get("totalcount")
    if raw is not None:
        try:
            return int(raw)
        except (TypeError, ValueError):
            logger.warning("relay: unparseable totalcount %r", raw)
            return 0
    codes = body.get("procedurecodes")
    return len(codes) if isinstance(codes, list) else 0


async def check_procedure_code(
    client: AthenaClient, encounter_id: str, cpt_code: str
) -> Union[str, Failure]:
    """Step 7: the CPT code must match at least one code for the encounter."""
    try:
        body = await client.get_procedure_codes(encounter_id, cpt_code)
    except AthenaAPIError as exc:
        logger.error("relay: procedure code lookup failed: %s", exc)
        body = {}

    if _total_count(body) <= 0:
        return _fail(404, f"Procedure code invalid for Encounter: {cpt_code}")
    return cpt_code


async def submit_billing(
    client: AthenaClient, encounter_id: str, codes: BillingCodes
) -> Union[str, Failure]:
    """Step 8: post the service line; a non-empty ``error`` in the reply is a failure."""
    try:
        body = await client.post_encounter_services(
            encounter_id, codes.icd10_codes, codes.cpt_code
        )
    except AthenaAPIError as exc:
        logger.error("relay: billing submission failed: %s", exc)
        return _fail(404, f"Failed to POST financial data to EHR: {exc}")

    if body.get("error"):
        return _fail(404, f"Failed to POST financial data to EHR: {body['error']}")
    return SUCCESS_MESSAGE


# ── Pipeline ───────────────────────────────────────────────────────────────────

async def relay_transaction(
    body: Any,
    config_path: str,
    *,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> RelayOutcome:
    """
    Run the full relay pipeline for one decoded request body.

    Args:
        body:        Decoded JSON body of ``POST /transaction``.
        config_path: Path of the EHR configuration file.
        timeout:     Outbound timeout in seconds (None = unbounded).
        transport:   Optional httpx transport for the EHR client.

    Returns:
        RelayOutcome: status code and plain-text message. Unexpected
        exceptions propagate to the caller.
    """
    request = check_payload(body)
    if isinstance(request, Failure):
        return RelayOutcome(*request)

    config = load_config(config_path)
    if isinstance(config, Failure):
        return RelayOutcome(*config)

    identifiers = resolve_identifiers(request, config)
    if isinstance(identifiers, Failure):
        return RelayOutcome(*identifiers)
    mrn, appointment_id = identifiers

    async with AthenaClient(config, timeout=timeout, transport=transport) as client:
        token = await authenticate(client)
        if isinstance(token, Failure):
            return RelayOutcome(*token)

        encounter_id = await find_encounter(client, appointment_id, mrn)
        if isinstance(encounter_id, Failure):
            return RelayOutcome(*encounter_id)

        codes = extract_billing_codes(request.transactions)
        if codes is None:
            failure = _fail(404, "No procedure or diagnosis codes found")
            return RelayOutcome(*failure)

        cpt = await check_procedure_code(client, encounter_id, codes.cpt_code)
        if isinstance(cpt, Failure):
            return RelayOutcome(*cpt)

        result = await submit_billing(client, encounter_id, codes)
        if isinstance(result, Failure):
            return RelayOutcome(*result)

    logger.info(
        "relay: billed CPT %s with %d ICD-10 code(s) to encounter %s (appointment %s).",
        codes.cpt_code, len(codes.icd10_codes), encounter_id, appointment_id,
    )
    return RelayOutcome(200, SUCCESS_MESSAGE)
