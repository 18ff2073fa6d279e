"""Optimistic ISM package.

Optimistic verification for cross-domain messages:

- Provisional acceptance through a pluggable verification submodule
- A fraud window before a message becomes final
- Watcher quorum vetoes, against a single message (removal) or against the
  submodule that approved it (flagging)

Convenience imports
------------------
The package avoids heavy import-time side effects. These are available as
top-level imports and are loaded lazily:

    from optimistic_ism import OptimisticISM, create_app
    from optimistic_ism import ISMError, ModuleType, Message
"""

from __future__ import annotations

import re
from importlib import import_module
from pathlib import Path
from typing import Any


def _read_version_from_pyproject() -> str | None:
    """Best-effort version discovery for dev/test environments."""

    try:
        pyproject = Path(__file__).resolve().parents[1] / "pyproject.toml"
        txt = pyproject.read_text(encoding="utf-8")
    except OSError:
        return None
    m = re.search(r"^version\s*=\s*\"([^\"]+)\"\s*$", txt, flags=re.MULTILINE)
    return m.group(1) if m else None


__version__ = _read_version_from_pyproject() or "0.3.0"

__all__ = [
    "__version__",
    "OptimisticISM",
    "create_app",
    "ISMError",
    "ModuleType",
    "Message",
    "message_id",
]

# Lazy export map: name -> (module, attribute)
_LAZY_EXPORTS: dict[str, tuple[str, str]] = {
    "OptimisticISM": ("optimistic_ism.engine", "OptimisticISM"),
    "create_app": ("optimistic_ism.server", "create_app"),
    "ISMError": ("optimistic_ism.errors", "ISMError"),
    "ModuleType": ("optimistic_ism.registry", "ModuleType"),
    "Message": ("optimistic_ism.message", "Message"),
    "message_id": ("optimistic_ism.message", "message_id"),
}


def __getattr__(name: str) -> Any:
    if name in _LAZY_EXPORTS:
        module_name, attr = _LAZY_EXPORTS[name]
        module = import_module(module_name)
        value = getattr(module, attr)
        globals()[name] = value
        return value
    raise AttributeError(f"module 'optimistic_ism' has no attribute {name!r}")


def __dir__() -> list[str]:
    return sorted(set(list(globals().keys()) + list(_LAZY_EXPORTS.keys())))
