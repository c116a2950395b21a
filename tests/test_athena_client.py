"""
test_athena_client.py
---------------------
EHR Billing Relay — Test Suite for athena_client.py
---------------------------------------------------
Drives AthenaClient against the scripted FakeEHR (httpx.MockTransport),
checking the exact request shapes sent to each athenahealth endpoint.

Run:
    pytest tests/test_athena_client.py -v --tb=short

Author: Shreelakshmi Gopinatha Rao
Project: EHR Billing Relay
"""

import asyncio
import base64

import httpx
import pytest

from athena_client import (
    AthenaAPIError,
    AthenaAuthError,
    AthenaClient,
    basic_auth_value,
    path_segment,
)
from relay_config import RelayConfig
from tests.conftest import BASE_URL, CONFIG, form_fields


def _config() -> RelayConfig:
    return RelayConfig.model_validate(CONFIG)


def _run(fake_ehr, coro_fn):
    """Open a client on the fake EHR, authenticate, and run coro_fn(client)."""
    async def _go():
        async with AthenaClient(_config(), transport=fake_ehr.transport) as client:
            await client.fetch_token()
            return await coro_fn(client)
    return asyncio.run(_go())


# ── Auth ───────────────────────────────────────────────────────────────────────

def test_basic_auth_value_is_base64_pair():
    assert base64.b64decode(basic_auth_value("client-abc", "s3cret")) == b"client-abc:s3cret"


def test_fetch_token_request_shape(fake_ehr):
    token = _run(fake_ehr, lambda client: asyncio.sleep(0, result=client._access_token))
    assert token == "tok-123"

    [req] = fake_ehr.calls("/oauth2/v1/token")
    assert req.method == "POST"
    assert str(req.url) == f"{BASE_URL}/oauth2/v1/token"
    assert req.headers["Authorization"] == "Basic " + basic_auth_value("client-abc", "s3cret")
    assert req.headers["Content-Type"] == "application/x-www-form-urlencoded"
    assert form_fields(req) == {
        "grant_type": "client_credentials",
        "scope": "athena/service/Athenanet.MDP.*",
    }


def test_fetch_token_without_access_token_raises(fake_ehr):
    fake_ehr.token_response = {"error": "invalid_client"}
    with pytest.raises(AthenaAuthError):
        _run(fake_ehr, lambda client: asyncio.sleep(0))


def test_fetch_token_non_json_raises():
    transport = httpx.MockTransport(lambda request: httpx.Response(502, text="Bad Gateway"))

    async def _go():
        async with AthenaClient(_config(), transport=transport) as client:
            await client.fetch_token()

    with pytest.raises(AthenaAuthError):
        asyncio.run(_go())


def test_fetch_token_transport_error_raises():
    def _refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    async def _go():
        async with AthenaClient(_config(), transport=httpx.MockTransport(_refuse)) as client:
            await client.fetch_token()

    with pytest.raises(AthenaAuthError):
        asyncio.run(_go())


def test_request_before_token_raises(fake_ehr):
    async def _go():
        async with AthenaClient(_config(), transport=fake_ehr.transport) as client:
            await client.get_appointments("41474")

    with pytest.raises(AthenaAuthError):
        asyncio.run(_go())
    assert fake_ehr.requests == []


def test_request_without_connect_raises():
    client = AthenaClient(_config())
    with pytest.raises(RuntimeError):
        asyncio.run(client.fetch_token())


# ── Appointments ───────────────────────────────────────────────────────────────

def test_get_appointments_request_shape(fake_ehr):
    appointments = _run(fake_ehr, lambda client: client.get_appointments("41474"))
    assert appointments == [{"appointmentid": "41474", "patientid": "555", "encounterid": "9001"}]

    [req] = fake_ehr.calls("/appointments/41474")
    assert req.method == "GET"
    assert str(req.url) == f"{BASE_URL}/v1/195900/appointments/41474"
    assert req.headers["Authorization"] == "Bearer tok-123"


def test_get_appointments_error_object_yields_empty_list(fake_ehr):
    fake_ehr.appointments = {"error": "The appointment ID is invalid."}
    assert _run(fake_ehr, lambda client: client.get_appointments("41474")) == []


def test_non_json_response_raises_api_error():
    def _handler(request):
        if request.url.path.endswith("/token"):
            return httpx.Response(200, json={"access_token": "tok-123"})
        return httpx.Response(500, text="<html>Internal Server Error</html>")

    async def _go():
        async with AthenaClient(_config(), transport=httpx.MockTransport(_handler)) as client:
            await client.fetch_token()
            await client.get_appointments("41474")

    with pytest.raises(AthenaAPIError) as exc_info:
        asyncio.run(_go())
    assert exc_info.value.status_code == 500


def test_get_appointments_escapes_id_as_one_segment(fake_ehr):
    appointment_id = "41474/../../../v1/195900/patients/555?x="
    _run(fake_ehr, lambda client: client.get_appointments(appointment_id))

    [_, req] = fake_ehr.requests
    assert req.url.raw_path == (
        b"/v1/195900/appointments/41474%2F..%2F..%2F..%2Fv1%2F195900%2Fpatients%2F555%3Fx%3D"
    )
    assert req.url.query == b""


# ── Procedure codes ────────────────────────────────────────────────────────────

def test_get_procedure_codes_request_shape(fake_ehr):
    body = _run(fake_ehr, lambda client: client.get_procedure_codes("9001", "11100"))
    assert body["totalcount"] == "1"

    [req] = fake_ehr.calls("/procedurecodes")
    assert req.method == "GET"
    assert req.url.path == "/v1/195900/9001/procedurecodes"
    assert req.url.params["searchvalue"] == "11100"
    assert req.headers["Authorization"] == "Bearer tok-123"


def test_get_procedure_codes_escapes_encounter_id(fake_ehr):
    _run(fake_ehr, lambda client: client.get_procedure_codes("9001/../../patients", "11100"))

    [_, req] = fake_ehr.requests
    assert req.url.raw_path == (
        b"/v1/195900/9001%2F..%2F..%2Fpatients/procedurecodes?searchvalue=11100"
    )


# ── Encounter services ─────────────────────────────────────────────────────────

def test_post_encounter_services_request_shape(fake_ehr):
    body = _run(
        fake_ehr,
        lambda client: client.post_encounter_services("9001", ["C43.4", "L57.0"], "11100"),
    )
    assert body == {}

    [req] = fake_ehr.calls("/services")
    assert req.method == "POST"
    assert req.url.path == "/v1/195900/encounter/9001/services"
    assert req.headers["Authorization"] == "Bearer tok-123"
    assert req.headers["Content-Type"] == "application/x-www-form-urlencoded"
    assert form_fields(req) == {
        "billforservice": "true",
        "icd10codes": "C43.4,L57.0",
        "modifiers": "",
        "procedurecode": "11100",
        "units": "1",
    }


def test_post_encounter_services_returns_remote_error(fake_ehr):
    fake_ehr.submission = {"error": "Invalid procedure code."}
    body = _run(fake_ehr, lambda client: client.post_encounter_services("9001", ["C43.4"], "11100"))
    assert body["error"] == "Invalid procedure code."


def test_post_encounter_services_escapes_encounter_id(fake_ehr):
    _run(fake_ehr, lambda client: client.post_encounter_services("..", ["C43.4"], "11100"))

    [_, req] = fake_ehr.requests
    assert req.url.raw_path == b"/v1/195900/encounter/%2E%2E/services"


@pytest.mark.parametrize("value, expected", [
    ("41474", "41474"),
    ("a/b", "a%2Fb"),
    ("1?x=2#y", "1%3Fx%3D2%23y"),
    (".", "%2E"),
    ("..", "%2E%2E"),
    ("...", "..."),
])
def test_path_segment(value, expected):
    assert path_segment(value) == expected
