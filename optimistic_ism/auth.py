"""Caller identity and roles for the optimistic ISM HTTP surface.

Two roles exist: the owner (admin setters, /metrics) and watchers (fraud
flags). The HTTP layer resolves who is calling and which role they hold
before any engine call, so an unprivileged request never reaches the engine
lock. The engine still enforces the same rules on its own.

Identity comes from X-Api-Key when a key map is configured. Without one,
callers name themselves with X-Caller-Id, which is only suitable for local
deployments.

Env vars:
  - OISM_API_KEYS_JSON: JSON dict mapping api_key -> caller_id
  - OISM_API_KEYS_FILE: path to a JSON file with the same mapping
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Optional, Tuple

from .errors import ism_error, OISM_E_NOT_WATCHER, OISM_E_UNAUTHORIZED

ENV_API_KEYS_JSON = "OISM_API_KEYS_JSON"
ENV_API_KEYS_FILE = "OISM_API_KEYS_FILE"

ROLE_OWNER = "owner"
ROLE_WATCHER = "watcher"


def caller_roles(engine: Any, caller_id: str) -> FrozenSet[str]:
    """Roles `caller_id` currently holds on `engine` (owner and/or watcher)."""
    roles = set()
    if caller_id == engine.owner:
        roles.add(ROLE_OWNER)
    if engine.is_watcher(caller_id):
        roles.add(ROLE_WATCHER)
    return frozenset(roles)


@dataclass(frozen=True)
class Caller:
    caller_id: str
    roles: FrozenSet[str] = field(default_factory=frozenset)
    authenticated: bool = False

    def has_role(self, role: str) -> bool:
        return role in self.roles


@dataclass(frozen=True)
class ApiKeyAuth:
    """Maps API keys to caller ids; an empty, unconfigured map trusts X-Caller-Id."""

    api_key_to_caller: Dict[str, str]
    configured: bool = False
    config_error: Optional[str] = None

    @classmethod
    def load_from_env(cls) -> "ApiKeyAuth":
        # A key map that is present but unreadable fails closed: every
        # authenticated route answers 401 until it is fixed.
        raw_json = os.getenv(ENV_API_KEYS_JSON)
        file_path = os.getenv(ENV_API_KEYS_FILE)
        configured = bool(raw_json or file_path)
        if not configured:
            return cls(api_key_to_caller={})

        try:
            if raw_json:
                data = json.loads(raw_json)
            else:
                with open(file_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("API key config must be a JSON object")
        except (OSError, ValueError):
            return cls(api_key_to_caller={}, configured=True, config_error="API_KEY_CONFIG_INVALID")
        return cls(api_key_to_caller={str(k): str(v) for k, v in data.items()}, configured=True)

    def enabled(self) -> bool:
        return self.configured

    def resolve_identity(
        self,
        api_key: Optional[str],
        claimed_caller: Optional[str] = None,
    ) -> Tuple[Optional[str], Optional[str]]:
        """Return (caller_id, error_code); a non-None error means reject."""
        if self.config_error:
            return None, self.config_error
        if not self.enabled():
            return claimed_caller, None
        if not api_key:
            return None, "API_KEY_REQUIRED"
        caller = self.api_key_to_caller.get(api_key)
        if not caller:
            return None, "API_KEY_INVALID"
        if claimed_caller and claimed_caller != caller:
            return None, "CALLER_ID_MISMATCH"
        return caller, None

    def authenticate(self, engine: Any, api_key: Optional[str], claimed_caller: Optional[str] = None) -> Caller:
        caller_id, err = self.resolve_identity(api_key, claimed_caller)
        if err or not caller_id:
            raise ism_error(OISM_E_UNAUTHORIZED, err or "CALLER_ID_REQUIRED", http_status=401)
        return Caller(caller_id, caller_roles(engine, caller_id), authenticated=self.enabled())

    def require_role(
        self,
        engine: Any,
        role: str,
        api_key: Optional[str],
        claimed_caller: Optional[str] = None,
    ) -> Caller:
        """Authenticate and insist on `role`; 401 for no identity, 403 for the wrong role."""
        caller = self.authenticate(engine, api_key, claimed_caller)
        if caller.has_role(role):
            return caller
        if role == ROLE_WATCHER:
            raise ism_error(OISM_E_NOT_WATCHER, "caller is not a watcher", http_status=403, caller=caller.caller_id)
        raise ism_error(OISM_E_UNAUTHORIZED, "caller is not the owner", http_status=403, caller=caller.caller_id)

    def metrics_authorizer(self, engine: Any) -> Callable[[Any], bool]:
        """Authorizer for /metrics: open without a key map, owner-only with one."""

        def _authorize(request: Any) -> bool:
            if not self.enabled():
                return True
            caller_id, err = self.resolve_identity(request.headers.get("X-Api-Key"))
            return err is None and caller_id == engine.owner

        return _authorize
