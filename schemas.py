"""
schemas.py
----------
EHR Billing Relay — Pydantic Data Contracts
-------------------------------------------
Pydantic v2 models for the inbound financial transaction payload, plus
the explicit shape check that runs before any business logic.

Validation policy
-----------------
``validate_payload()`` is the single gate between the raw request body and
the relay pipeline. It raises ``PayloadValidationError`` carrying a *kind*
and the offending *field*:

  1. ``empty_body``  : the body is not a non-empty JSON object.
  2. ``missing``     : ``Patient``, ``Visit`` or ``Transactions`` is absent
                      or empty (checked in that order).
  3. ``invalid_type``: a block is present but has the wrong type, or a
                      nested field fails model validation. The field is
                      reported as a dotted path, e.g.
                      ``Transactions.0.Diagnoses``.

Nested fields are lenient: identifier, visit and code values that arrive
as numbers are coerced to strings, and absent values default to empty
strings so later steps can report exactly what is missing.

Public API
----------
    TransactionRequest       The validated inbound payload.
    PayloadValidationError   Structured shape error (kind + field).
    validate_payload()       Raw body → TransactionRequest.

Author: Shreelakshmi Gopinatha Rao
Project: EHR Billing Relay
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

MISSING_DATA_PREFIX = "Financial transaction missing required data:"
MALFORMED_DATA_PREFIX = "Financial transaction contains malformed data:"
EMPTY_BODY_MESSAGE = "No valid JSON in HTTP request."

_REQUIRED_BLOCKS = (
    ("Patient", dict),
    ("Visit", dict),
    ("Transactions", list),
)


def _coerce_str(v: Any) -> str:
    """None → "", scalars → str. Containers are left for pydantic to reject."""
    if v is None:
        return ""
    # JSON numbers like 41474.0 name the same id as 41474.
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(v)
    return v


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class PayloadValidationError(Exception):
    """
    Raised when the inbound body does not have the required shape.

    Attributes:
        kind:  ``"empty_body"`` | ``"missing"`` | ``"invalid_type"``.
        field: Top-level block name or dotted path; None for ``empty_body``.
    """

    def __init__(self, kind: str, field: Optional[str] = None) -> None:
        self.kind = kind
        self.field = field
        super().__init__(self.message)

    @property
    def message(self) -> str:
        if self.kind == "empty_body":
            return EMPTY_BODY_MESSAGE
        if self.kind == "missing":
            return f"{MISSING_DATA_PREFIX} {self.field}"
        return f"{MALFORMED_DATA_PREFIX} {self.field}"


# ---------------------------------------------------------------------------
# Payload models
# ---------------------------------------------------------------------------

class _PayloadModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class PatientIdentifier(_PayloadModel):
    """One ``{IDType, ID}`` entry of ``Patient.Identifiers``."""

    id_type: str = Field(default="", alias="IDType")
    id:      str = Field(default="", alias="ID")

    @field_validator("id_type", "id", mode="before")
    @classmethod
    def coerce_scalars(cls, v: Any) -> Any:
        return _coerce_str(v)


class Patient(_PayloadModel):
    identifiers: List[PatientIdentifier] = Field(default_factory=list, alias="Identifiers")

    @field_validator("identifiers", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    def identifier_for(self, id_type: str) -> Optional[str]:
        """
        Return the ``ID`` of the first identifier whose ``IDType`` equals
        *id_type*, or None when there is no such identifier (or its ID is empty).
        """
        for identifier in self.identifiers:
            if identifier.id_type == id_type:
                return identifier.id or None
        return None


class Visit(_PayloadModel):
    # VisitNumber doubles as the EHR appointment id.
    visit_number: str = Field(default="", alias="VisitNumber")

    @field_validator("visit_number", mode="before")
    @classmethod
    def coerce_scalars(cls, v: Any) -> Any:
        return _coerce_str(v)


class CodedValue(_PayloadModel):
    """A ``{Codeset, Code}`` pair used by both diagnoses and procedures."""

    codeset: str = Field(default="", alias="Codeset")
    code:    str = Field(default="", alias="Code")

    @field_validator("codeset", "code", mode="before")
    @classmethod
    def coerce_scalars(cls, v: Any) -> Any:
        return _coerce_str(v)


class VisitTransaction(_PayloadModel):
    diagnoses: Optional[List[CodedValue]] = Field(default=None, alias="Diagnoses")
    procedure: Optional[CodedValue]       = Field(default=None, alias="Procedure")


class TransactionRequest(_PayloadModel):
    """The validated ``POST /transaction`` body."""

    patient:      Patient                = Field(alias="Patient")
    visit:        Visit                  = Field(alias="Visit")
    transactions: List[VisitTransaction] = Field(alias="Transactions", min_length=1)


# ---------------------------------------------------------------------------
# Shape gate
# ---------------------------------------------------------------------------

def validate_payload(body: Any) -> TransactionRequest:
    """
    Check the raw request body and build a ``TransactionRequest``.

    Args:
        body: The decoded JSON body (any type).

    Returns:
        TransactionRequest: the validated payload.

    Raises:
        PayloadValidationError: on the first shape problem found.
    """
    if not isinstance(body, dict) or not body:
        raise PayloadValidationError("empty_body")

    for name, expected_type in _REQUIRED_BLOCKS:
        value = body.get(name)
        if value is None or (isinstance(value, (dict, list, str)) and not value):
            raise PayloadValidationError("missing", name)
        if not isinstance(value, expected_type):
            raise PayloadValidationError("invalid_type", name)

    try:
        return TransactionRequest.model_validate(body)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "body"
        logger.debug("validate_payload: %s at %s", first["msg"], field)
        raise PayloadValidationError("invalid_type", field) from exc
