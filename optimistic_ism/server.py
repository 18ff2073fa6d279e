"""
Optimistic ISM HTTP surface (FastAPI).

Message and metadata bytes travel as hex strings. Caller identity for
watcher and owner operations comes from X-Api-Key when API keys are
configured, otherwise from the unauthenticated X-Caller-Id header.

Every ISMError maps to its `http_status` with the body from `as_dict()`.
"""

from __future__ import annotations

from typing import Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .auth import ApiKeyAuth, ROLE_OWNER, ROLE_WATCHER
from .config import OptimisticIsmConfig, build_engine
from .engine import OptimisticISM
from .errors import ISMError, ism_error, OISM_E_BAD_REQUEST
from .metrics import instrument_fastapi
from .registry import Submodule


# ---------------------------
# Request/Response Models
# ---------------------------

class MessageRequest(BaseModel):
    """Raw message plus the metadata the verifier expects."""
    message_hex: str
    metadata_hex: str = ""


class FlagRequest(BaseModel):
    submodule: str = Field(min_length=1)


class FraudWindowRequest(BaseModel):
    seconds: int


class SubmoduleRequest(BaseModel):
    module_id: str = Field(min_length=1)


def _decode_hex(value: str, field_name: str) -> bytes:
    v = value.strip()
    if v.startswith("0x"):
        v = v[2:]
    try:
        return bytes.fromhex(v)
    except ValueError as e:
        raise ism_error(OISM_E_BAD_REQUEST, f"{field_name} is not valid hex") from e


def _payload(req: MessageRequest):
    return _decode_hex(req.metadata_hex, "metadata_hex"), _decode_hex(req.message_hex, "message_hex")


def create_app(
    engine: Optional[OptimisticISM] = None,
    submodules: Optional[Dict[str, Submodule]] = None,
    auth: Optional[ApiKeyAuth] = None,
) -> FastAPI:
    """Create FastAPI application exposing the engine.

    submodules: catalog of submodules the owner may activate by module_id.
    The engine's current submodule is always part of the catalog.
    """
    from . import __version__ as oism_version

    if engine is None:
        engine = build_engine(OptimisticIsmConfig.from_env())
    catalog: Dict[str, Submodule] = dict(submodules or {})
    catalog.setdefault(engine.submodule.module_id, engine.submodule)
    api_auth = auth or ApiKeyAuth.load_from_env()

    app = FastAPI(
        title="Optimistic ISM",
        description="Optimistic message verification with watcher fraud vetoes",
        version=oism_version,
    )
    app.state.engine = engine
    app.state.submodules = catalog

    @app.exception_handler(ISMError)
    async def _ism_error_handler(request: Request, exc: ISMError):
        return JSONResponse(status_code=int(exc.http_status or 400), content=exc.as_dict())

    def _caller(request: Request, role: str) -> str:
        return api_auth.require_role(
            engine,
            role,
            request.headers.get("X-Api-Key"),
            request.headers.get("X-Caller-Id"),
        ).caller_id

    instrument_fastapi(app, authorize=api_auth.metrics_authorizer(engine))

    @app.get("/v1/module")
    def module_info():
        return {
            "module_type": int(engine.module_type),
            "module_type_name": engine.module_type.name,
            "fraud_window": engine.fraud_window,
            "watcher_threshold": engine.watcher_threshold,
            "submodule": engine.submodule.module_id,
            "owner": engine.owner,
        }

    @app.post("/v1/pre-verify")
    def pre_verify(req: MessageRequest):
        metadata, message = _payload(req)
        ok = engine.pre_verify(metadata, message)
        mid = engine.message_id(message)
        record = engine.pre_verification(mid)
        return {"ok": ok, "message_id": mid, "record": record.as_dict() if record else None}

    @app.post("/v1/verify")
    def verify(req: MessageRequest):
        metadata, message = _payload(req)
        return {"ok": engine.verify(metadata, message)}

    @app.post("/v1/remove")
    def remove(req: MessageRequest):
        metadata, message = _payload(req)
        engine.remove_message(metadata, message)
        return {"ok": True, "message_id": engine.message_id(message)}

    @app.post("/v1/flags")
    def mark_fraudulent(req: FlagRequest, request: Request):
        caller = _caller(request, ROLE_WATCHER)
        engine.mark_fraudulent(caller, req.submodule)
        return {"ok": True, "submodule": req.submodule, "flag_count": engine.flag_count(req.submodule)}

    @app.get("/v1/flags/{submodule}")
    def flag_count(submodule: str):
        return {"submodule": submodule, "flag_count": engine.flag_count(submodule)}

    @app.get("/v1/watchers/{watcher_id}")
    def is_watcher(watcher_id: str):
        return {"watcher_id": watcher_id, "is_watcher": engine.is_watcher(watcher_id)}

    @app.get("/v1/messages/{mid}")
    def pre_verification(mid: str):
        record = engine.pre_verification(mid)
        return {"message_id": mid, "record": record.as_dict() if record else None}

    @app.put("/v1/admin/fraud-window")
    def set_fraud_window(req: FraudWindowRequest, request: Request):
        engine.set_fraud_window(_caller(request, ROLE_OWNER), req.seconds)
        return {"ok": True, "fraud_window": engine.fraud_window}

    @app.put("/v1/admin/submodule")
    def set_submodule(req: SubmoduleRequest, request: Request):
        caller = _caller(request, ROLE_OWNER)
        submodule = catalog.get(req.module_id)
        if submodule is None:
            raise ism_error(OISM_E_BAD_REQUEST, "unknown submodule", http_status=404, module_id=req.module_id)
        engine.set_submodule(caller, submodule)
        return {"ok": True, "submodule": engine.submodule.module_id}

    return app
