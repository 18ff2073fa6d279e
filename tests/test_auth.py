import json

import pytest

from optimistic_ism.auth import (
    ApiKeyAuth,
    ENV_API_KEYS_FILE,
    ENV_API_KEYS_JSON,
    ROLE_OWNER,
    ROLE_WATCHER,
    caller_roles,
)
from optimistic_ism.errors import ISMError, OISM_E_NOT_WATCHER, OISM_E_UNAUTHORIZED


def test_auth_disabled_allows_claimed_identity(monkeypatch):
    monkeypatch.delenv(ENV_API_KEYS_JSON, raising=False)
    monkeypatch.delenv(ENV_API_KEYS_FILE, raising=False)

    auth = ApiKeyAuth.load_from_env()
    assert auth.enabled() is False

    caller, err = auth.resolve_identity(api_key=None, claimed_caller="watcher-a")
    assert caller == "watcher-a"
    assert err is None


def test_auth_configured_requires_api_key(monkeypatch):
    monkeypatch.setenv(ENV_API_KEYS_JSON, json.dumps({"k1": "watcher-a"}))
    monkeypatch.delenv(ENV_API_KEYS_FILE, raising=False)

    auth = ApiKeyAuth.load_from_env()
    assert auth.enabled() is True

    caller, err = auth.resolve_identity(api_key=None, claimed_caller="watcher-a")
    assert caller is None
    assert err == "API_KEY_REQUIRED"


def test_auth_valid_key_resolves_identity_and_checks_claim(monkeypatch):
    monkeypatch.setenv(ENV_API_KEYS_JSON, json.dumps({"k1": "watcher-a"}))
    monkeypatch.delenv(ENV_API_KEYS_FILE, raising=False)

    auth = ApiKeyAuth.load_from_env()

    caller, err = auth.resolve_identity(api_key="k1")
    assert caller == "watcher-a"
    assert err is None

    caller, err = auth.resolve_identity(api_key="k1", claimed_caller="owner")
    assert caller is None
    assert err == "CALLER_ID_MISMATCH"


def test_auth_invalid_key_rejected(monkeypatch):
    monkeypatch.setenv(ENV_API_KEYS_JSON, json.dumps({"k1": "watcher-a"}))
    monkeypatch.delenv(ENV_API_KEYS_FILE, raising=False)

    caller, err = ApiKeyAuth.load_from_env().resolve_identity(api_key="nope")
    assert caller is None
    assert err == "API_KEY_INVALID"


def test_auth_file_mapping(monkeypatch, tmp_path):
    p = tmp_path / "keys.json"
    p.write_text(json.dumps({"k2": "owner"}), encoding="utf-8")
    monkeypatch.delenv(ENV_API_KEYS_JSON, raising=False)
    monkeypatch.setenv(ENV_API_KEYS_FILE, str(p))

    caller, err = ApiKeyAuth.load_from_env().resolve_identity(api_key="k2")
    assert caller == "owner"
    assert err is None


def test_auth_malformed_config_fails_closed(monkeypatch):
    monkeypatch.setenv(ENV_API_KEYS_JSON, "not json")
    monkeypatch.delenv(ENV_API_KEYS_FILE, raising=False)

    auth = ApiKeyAuth.load_from_env()
    caller, err = auth.resolve_identity(api_key="k1", claimed_caller="watcher-a")
    assert caller is None
    assert err == "API_KEY_CONFIG_INVALID"


def test_roles_resolved_from_engine(monkeypatch, make_engine):
    monkeypatch.setenv(ENV_API_KEYS_JSON, json.dumps({"k-owner": "owner", "k-a": "A", "k-x": "mallory"}))
    monkeypatch.delenv(ENV_API_KEYS_FILE, raising=False)
    engine = make_engine(watchers=["A", "owner"])
    auth = ApiKeyAuth.load_from_env()

    assert caller_roles(engine, "owner") == {ROLE_OWNER, ROLE_WATCHER}
    assert caller_roles(engine, "A") == {ROLE_WATCHER}
    assert caller_roles(engine, "mallory") == frozenset()

    caller = auth.require_role(engine, ROLE_WATCHER, "k-a")
    assert caller.caller_id == "A"
    assert caller.authenticated is True
    assert not caller.has_role(ROLE_OWNER)


def test_require_role_rejects_wrong_role(monkeypatch, make_engine):
    monkeypatch.delenv(ENV_API_KEYS_JSON, raising=False)
    monkeypatch.delenv(ENV_API_KEYS_FILE, raising=False)
    engine = make_engine()
    auth = ApiKeyAuth.load_from_env()

    with pytest.raises(ISMError) as ei:
        auth.require_role(engine, ROLE_WATCHER, None, "mallory")
    assert ei.value.code == OISM_E_NOT_WATCHER
    assert ei.value.http_status == 403

    with pytest.raises(ISMError) as ei:
        auth.require_role(engine, ROLE_OWNER, None, "A")
    assert ei.value.code == OISM_E_UNAUTHORIZED
    assert ei.value.http_status == 403

    with pytest.raises(ISMError) as ei:
        auth.require_role(engine, ROLE_OWNER, None, None)
    assert ei.value.http_status == 401

    assert auth.require_role(engine, ROLE_OWNER, None, "owner").authenticated is False
