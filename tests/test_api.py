"""Tests for the HTTP surface using FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient

from flir_ptu.api.app import create_app
from flir_ptu.api.error_mapper import (
    ERROR_COMMAND_FAILED,
    ERROR_INVALID_VALUE,
    ERROR_NOT_CONNECTED,
)
from flir_ptu.api.routes import router
from flir_ptu.config.models import AppConfig
from flir_ptu.ptu.controller import PTUController
from flir_ptu.simulator.mock_ptu import SimulatedPTUTransport


PREFIX = "/api/v1/ptu/0"


@pytest.fixture
def ptu(simulator_config, transport_config, ptu_config):
    controller = PTUController(SimulatedPTUTransport(simulator_config), transport_config, ptu_config)
    yield controller
    controller.disconnect()


@pytest.fixture
def client(ptu):
    app = create_app(AppConfig())
    app.state.ptu = ptu
    app.include_router(router)
    return TestClient(app)


def connect(client):
    body = client.put(f"{PREFIX}/connected", data={"Connected": "true", "ClientTransactionID": 5}).json()
    assert body["ErrorNumber"] == 0, body["ErrorMessage"]
    assert body["ClientTransactionID"] == 5


def test_health(client):
    assert client.get(f"{PREFIX}/health").json()["status"] == "ok"


def test_management_endpoints(client):
    assert client.get("/management/apiversions").json() == {"Value": [1]}
    assert client.get("/management/v1/description").json()["Value"]["ServerName"] == "FLIR PTU Driver"


def test_connect_and_status(client):
    assert client.get(f"{PREFIX}/connected").json()["Value"] is False
    connect(client)
    assert client.get(f"{PREFIX}/connected").json()["Value"] is True

    status = client.get(f"{PREFIX}/status").json()["Value"]
    assert status["connected"] is True
    assert status["pan"]["hold_power"] == "REG"
    assert status["indicators"]["connection"] == "Ok"


def test_server_transaction_ids_increase(client):
    first = client.get(f"{PREFIX}/connected").json()["ServerTransactionID"]
    second = client.get(f"{PREFIX}/connected").json()["ServerTransactionID"]
    assert second > first


def test_position_requires_connection(client):
    body = client.get(f"{PREFIX}/position", params={"ClientTransactionID": 9}).json()
    assert body["ErrorNumber"] == ERROR_NOT_CONNECTED
    assert body["ClientTransactionID"] == 9


def test_position_and_telemetry(client):
    connect(client)
    assert client.get(f"{PREFIX}/position").json()["Value"] == {"pan": 0, "tilt": 0}
    telemetry = client.get(f"{PREFIX}/telemetry").json()["Value"]
    assert telemetry["voltage"] == 12.1


def test_refresh(client):
    connect(client)
    body = client.put(f"{PREFIX}/refresh").json()
    assert body["Value"] == {"ok": True, "failures": {}}


def test_set_hold_power(client):
    connect(client)
    body = client.put(f"{PREFIX}/holdpower", data={"Axis": "tilt", "Mode": "low"}).json()
    assert body["ErrorNumber"] == 0
    assert client.get(f"{PREFIX}/status").json()["Value"]["tilt"]["hold_power"] == "LOW"


def test_invalid_values(client):
    connect(client)
    bad_mode = client.put(f"{PREFIX}/movepower", data={"Axis": "pan", "Mode": "turbo"}).json()
    bad_axis = client.put(f"{PREFIX}/resetaxis", data={"Axis": "roll"}).json()
    high_hold = client.put(f"{PREFIX}/holdpower", data={"Axis": "pan", "Mode": "HIGH"}).json()
    assert bad_mode["ErrorNumber"] == ERROR_INVALID_VALUE
    assert bad_axis["ErrorNumber"] == ERROR_INVALID_VALUE
    assert high_hold["ErrorNumber"] == ERROR_INVALID_VALUE


def test_control_mode_and_reset(client):
    connect(client)
    assert client.put(f"{PREFIX}/controlmode", data={"Mode": "open_loop"}).json()["ErrorNumber"] == 0
    assert client.put(f"{PREFIX}/resetaxis", data={"Axis": "both"}).json()["ErrorNumber"] == 0
    indicators = client.get(f"{PREFIX}/status").json()["Value"]["indicators"]
    assert indicators["reset"] == "Ok"
    assert indicators["control_mode"] == "Ok"


def test_failed_command_reports_error(client, ptu):
    connect(client)
    ptu.transport.config.drop_reply_rate = 1.0
    body = client.put(f"{PREFIX}/resetaxis", data={"Axis": "pan"}).json()
    assert body["ErrorNumber"] == ERROR_COMMAND_FAILED
    assert "timeout" in body["ErrorMessage"]


def test_protocol_log(client):
    connect(client)
    body = client.get(f"{PREFIX}/protocollog", params={"limit": 5}).json()
    assert len(body["messages"]) == 5
    assert body["stats"]["tx_count"] > 0
