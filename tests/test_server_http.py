from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from optimistic_ism.auth import ApiKeyAuth, ENV_API_KEYS_FILE, ENV_API_KEYS_JSON
from optimistic_ism.message import message_id
from optimistic_ism.server import create_app

from conftest import StaticSubmodule

MSG_HEX = b"hello across domains".hex()


@pytest.fixture
def no_api_keys(monkeypatch):
    monkeypatch.delenv(ENV_API_KEYS_JSON, raising=False)
    monkeypatch.delenv(ENV_API_KEYS_FILE, raising=False)


@pytest.fixture
def engine(make_engine):
    return make_engine()


@pytest.fixture
def client(engine, no_api_keys):
    app = create_app(engine, submodules={"S2": StaticSubmodule("S2")})
    return TestClient(app)


def test_module_info(client):
    r = client.get("/v1/module")
    assert r.status_code == 200
    body = r.json()
    assert body["module_type_name"] == "OPTIMISTIC"
    assert body["fraud_window"] == 3600
    assert body["watcher_threshold"] == 2
    assert body["submodule"] == "S"


def test_lifecycle_over_http(client, clock):
    r = client.post("/v1/pre-verify", json={"message_hex": MSG_HEX})
    assert r.status_code == 200, r.text
    mid = r.json()["message_id"]
    assert mid == message_id(bytes.fromhex(MSG_HEX))
    assert r.json()["record"] == {"fraud_window_end": 3600, "used_submodule": "S"}

    r = client.post("/v1/verify", json={"message_hex": MSG_HEX})
    assert r.status_code == 409
    assert r.json()["code"] == "OISM_E_FRAUD_WINDOW_ONGOING"

    clock.set(3601)
    r = client.post("/v1/verify", json={"message_hex": MSG_HEX})
    assert r.status_code == 200
    assert r.json() == {"ok": True}

    r = client.post("/v1/remove", json={"message_hex": MSG_HEX, "metadata_hex": "00"})
    assert r.status_code == 200

    r = client.get(f"/v1/messages/{mid}")
    assert r.json()["record"] is None

    r = client.post("/v1/verify", json={"message_hex": MSG_HEX})
    assert r.status_code == 404
    assert r.json()["code"] == "OISM_E_NOT_PRE_VERIFIED"


def test_flagging_over_http(client):
    r = client.post("/v1/flags", json={"submodule": "S"}, headers={"X-Caller-Id": "A"})
    assert r.status_code == 200
    assert r.json()["flag_count"] == 1

    r = client.post("/v1/flags", json={"submodule": "S"}, headers={"X-Caller-Id": "A"})
    assert r.status_code == 409
    assert r.json()["code"] == "OISM_E_ALREADY_FLAGGED"

    r = client.post("/v1/flags", json={"submodule": "S"}, headers={"X-Caller-Id": "mallory"})
    assert r.status_code == 403
    assert r.json()["code"] == "OISM_E_NOT_WATCHER"

    r = client.post("/v1/flags", json={"submodule": "S"})
    assert r.status_code == 401

    assert client.get("/v1/flags/S").json()["flag_count"] == 1
    assert client.get("/v1/watchers/B").json()["is_watcher"] is True
    assert client.get("/v1/watchers/mallory").json()["is_watcher"] is False


def test_admin_over_http(client, engine):
    r = client.put("/v1/admin/fraud-window", json={"seconds": 5}, headers={"X-Caller-Id": "A"})
    assert r.status_code == 403
    assert r.json()["code"] == "OISM_E_UNAUTHORIZED"

    r = client.put("/v1/admin/fraud-window", json={"seconds": 5}, headers={"X-Caller-Id": "owner"})
    assert r.status_code == 200
    assert engine.fraud_window == 5

    r = client.put("/v1/admin/submodule", json={"module_id": "S2"}, headers={"X-Caller-Id": "owner"})
    assert r.status_code == 200
    assert engine.submodule.module_id == "S2"

    r = client.put("/v1/admin/submodule", json={"module_id": "nope"}, headers={"X-Caller-Id": "owner"})
    assert r.status_code == 404


def test_bad_hex_is_bad_request(client):
    r = client.post("/v1/pre-verify", json={"message_hex": "zz"})
    assert r.status_code == 400
    assert r.json()["code"] == "OISM_E_BAD_REQUEST"


def test_api_keys_required_when_configured(engine, monkeypatch):
    monkeypatch.setenv(ENV_API_KEYS_JSON, json.dumps({"key-a": "A"}))
    client = TestClient(create_app(engine, auth=ApiKeyAuth.load_from_env()))

    r = client.post("/v1/flags", json={"submodule": "S"}, headers={"X-Caller-Id": "A"})
    assert r.status_code == 401

    r = client.post("/v1/flags", json={"submodule": "S"}, headers={"X-Api-Key": "key-a"})
    assert r.status_code == 200
    assert engine.flag_count("S") == 1


def test_metrics_endpoint(client):
    client.post("/v1/pre-verify", json={"message_hex": MSG_HEX})
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "oism_pre_verify_total" in r.text


def test_metrics_owner_only_when_api_keys_configured(engine, monkeypatch):
    monkeypatch.setenv(ENV_API_KEYS_JSON, json.dumps({"key-owner": "owner", "key-a": "A"}))
    client = TestClient(create_app(engine, auth=ApiKeyAuth.load_from_env()))

    assert client.get("/metrics").status_code == 403
    assert client.get("/metrics", headers={"X-Api-Key": "key-a"}).status_code == 403
    r = client.get("/metrics", headers={"X-Api-Key": "key-owner"})
    assert r.status_code == 200
    assert "oism_http_requests_total" in r.text


def test_watcher_key_cannot_reach_admin_routes(engine, monkeypatch):
    monkeypatch.setenv(ENV_API_KEYS_JSON, json.dumps({"key-owner": "owner", "key-a": "A"}))
    client = TestClient(create_app(engine, auth=ApiKeyAuth.load_from_env()))

    r = client.put("/v1/admin/fraud-window", json={"seconds": 5}, headers={"X-Api-Key": "key-a"})
    assert r.status_code == 403
    assert r.json()["code"] == "OISM_E_UNAUTHORIZED"
    assert engine.fraud_window == 3600

    r = client.post("/v1/flags", json={"submodule": "S"}, headers={"X-Api-Key": "key-owner"})
    assert r.status_code == 403
    assert r.json()["code"] == "OISM_E_NOT_WATCHER"
    assert engine.flag_count("S") == 0
