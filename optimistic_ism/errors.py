"""Stable error taxonomy for the optimistic ISM.

This module defines machine-readable error codes and a single exception type
used across the engine, the verifiers, and the HTTP surface.

Design goals:
- Stable `code` string suitable for programmatic handling.
- `http_status` for transport layers.
- Structured `details` for debugging without parsing messages.

Protocol errors are terminal: `retryable` is False for every code except
storage failures.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


# Lifecycle
OISM_E_VERIFICATION_FAILED = "OISM_E_VERIFICATION_FAILED"
OISM_E_FRAUD_WINDOW_ONGOING = "OISM_E_FRAUD_WINDOW_ONGOING"
OISM_E_NOT_PRE_VERIFIED = "OISM_E_NOT_PRE_VERIFIED"
OISM_E_SUBMODULE_FLAGGED = "OISM_E_SUBMODULE_FLAGGED"

# Watchers / quorum
OISM_E_NOT_WATCHER = "OISM_E_NOT_WATCHER"
OISM_E_ALREADY_FLAGGED = "OISM_E_ALREADY_FLAGGED"
OISM_E_QUORUM_NOT_MET = "OISM_E_QUORUM_NOT_MET"

# Administration / wiring
OISM_E_UNAUTHORIZED = "OISM_E_UNAUTHORIZED"
OISM_E_SHARED_TRUST_ROOT = "OISM_E_SHARED_TRUST_ROOT"

# Input
OISM_E_BAD_REQUEST = "OISM_E_BAD_REQUEST"
OISM_E_MESSAGE_MALFORMED = "OISM_E_MESSAGE_MALFORMED"
OISM_E_METADATA_MALFORMED = "OISM_E_METADATA_MALFORMED"

# Storage
OISM_E_STORAGE = "OISM_E_STORAGE"


@dataclass
class ISMError(Exception):
    """Base ISM exception with stable error code."""

    code: str
    message: str
    retryable: bool = False
    http_status: int = 400
    details: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": bool(self.retryable),
            "http_status": int(self.http_status),
        }
        if self.details:
            d["details"] = self.details
        return d

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


def ism_error(
    code: str,
    message: str,
    *,
    retryable: bool = False,
    http_status: int = 400,
    **details: Any,
) -> ISMError:
    return ISMError(code=code, message=message, retryable=retryable, http_status=http_status, details=details)
