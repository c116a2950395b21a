"""
tests/
------
EHR Billing Relay — Test Package
--------------------------------
Test suites for the transaction relay. No test reaches a real EHR: the
athenahealth endpoints are served by FakeEHR (conftest.py) through
httpx.MockTransport.

Test Modules:
    - test_schemas.py:          Inbound payload shape validation
    - test_relay_config.py:     EHR configuration file and env settings
    - test_athena_client.py:    Request shapes sent to each EHR endpoint
    - test_relay.py:            Pipeline steps and failure terminals
    - test_main.py:             FastAPI routes via TestClient
    - test_send_transaction.py: Manual sender script

Author: Shreelakshmi Gopinatha Rao
Project: EHR Billing Relay
"""
