"""
conftest.py
-----------
EHR Billing Relay — Shared test fixtures
----------------------------------------
A scripted in-memory EHR (served through ``httpx.MockTransport``) and a
temporary EHR configuration file, so no test touches the network.

Author: Shreelakshmi Gopinatha Rao
Project: EHR Billing Relay
"""

import copy
import json
import os
import sys
from typing import Any, List
from urllib.parse import parse_qs

import httpx
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


BASE_URL = "https://api.preview.platform.athenahealth.com"
TOKEN_ENDPOINT = "/oauth2/v1/token"
PRACTICE_ID = "195900"

CONFIG = {
    "idType": "MR",
    "clientId": "client-abc",
    "secret": "s3cret",
    "baseUrl": BASE_URL,
    "tokenEndpoint": TOKEN_ENDPOINT,
    "practiceId": PRACTICE_ID,
}

VALID_PAYLOAD = {
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


def form_fields(request: httpx.Request) -> dict:
    """Decode an x-www-form-urlencoded request body, keeping blank values."""
    parsed = parse_qs(request.content.decode(), keep_blank_values=True)
    return {k: v[0] for k, v in parsed.items()}


class FakeEHR:
    """
    Scripted athenahealth stand-in. Tests change the response attributes,
    then inspect ``requests`` to see which endpoints were called.
    """

    def __init__(self) -> None:
        self.token_response: Any = {"access_token": "tok-123", "expires_in": "3600"}
        self.appointments: Any = [
            {"appointmentid": "41474", "patientid": "555", "encounterid": "9001"}
        ]
        self.procedure_codes: Any = {
            "totalcount": "1",
            "procedurecodes": [{"procedurecode": "11100", "description": "BIOPSY SKIN LESION"}],
        }
        self.submission: Any = {}
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == TOKEN_ENDPOINT:
            return httpx.Response(200, json=self.token_response)
        if "/appointments/" in path:
            return httpx.Response(200, json=self.appointments)
        if path.endswith("/procedurecodes"):
            return httpx.Response(200, json=self.procedure_codes)
        if path.endswith("/services"):
            return httpx.Response(200, json=self.submission)
        return httpx.Response(404, json={"error": f"Unknown path {path}"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, suffix: str) -> List[httpx.Request]:
        """Requests whose URL path ends with *suffix*."""
        return [r for r in self.requests if r.url.path.endswith(suffix)]


@pytest.fixture
def fake_ehr() -> FakeEHR:
    return FakeEHR()


@pytest.fixture
def payload() -> dict:
    return copy.deepcopy(VALID_PAYLOAD)


@pytest.fixture
def config_file(tmp_path) -> str:
    path = tmp_path / "configs.json"
    path.write_text(json.dumps(CONFIG))
    return str(path)
