"""FastAPI app serving versioned table action handlers."""

from __future__ import annotations

import os
import re
import sys
import time
import logging
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

from app.action_handlers import ActionHandlerService, HandlerValidationError
from app.stores import HandlerVersionExists, MemoryActionHandlerStore
from tabula.code_cipher import CodeCipher


app = FastAPI(title="Tabula action handlers")
logger = logging.getLogger("tabula.api")
logging.basicConfig(level=logging.INFO)

_LOCAL_CORS_ORIGINS = {
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
}
_LOCAL_CORS_REGEX = re.compile(r"^http://(localhost|127\.0\.0\.1):\d+$")
_EXTRA_CORS_ORIGINS = {
    origin.strip().rstrip("/")
    for origin in os.getenv("TABULA_CORS_ORIGINS", "").split(",")
    if origin.strip()
}
_CORS_ORIGINS = _LOCAL_CORS_ORIGINS | _EXTRA_CORS_ORIGINS
REQ_SLOW_MS = float(os.getenv("TABULA_REQ_SLOW_MS", "250"))


def _cors_allowed(origin: str | None) -> bool:
    normalized = origin.rstrip("/") if isinstance(origin, str) else origin
    return bool(normalized) and (normalized in _CORS_ORIGINS or bool(_LOCAL_CORS_REGEX.match(normalized)))


@app.middleware("http")
async def local_cors_fallback_middleware(request: Request, call_next):
    origin = request.headers.get("origin")
    allowed = _cors_allowed(origin)
    if request.method == "OPTIONS" and allowed:
        response = JSONResponse({}, status_code=200)
    else:
        response = await call_next(request)
    if allowed:
        response.headers.setdefault("Access-Control-Allow-Origin", origin)
        response.headers.setdefault("Access-Control-Allow-Headers", "*")
        response.headers.setdefault("Access-Control-Allow-Methods", "*")
        response.headers.setdefault("Vary", "Origin")
    return response


@app.middleware("http")
async def timing_middleware(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    total_ms = (time.perf_counter() - start) * 1000
    logger.info("%s %s %s total_ms=%.1f", request.method, request.url.path, response.status_code, total_ms)
    if total_ms >= REQ_SLOW_MS:
        logger.warning("slow_request method=%s path=%s total_ms=%.1f", request.method, request.url.path, total_ms)
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted(_CORS_ORIGINS),
    allow_origin_regex=r"http://localhost:\d+|http://127\.0\.0\.1:\d+",
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled_error path=%s error=%s", request.url.path, exc)
    return _error_response("INTERNAL_ERROR", "Unexpected server error", detail={"error": str(exc)}, status=500)


USE_DB = os.getenv("USE_DB", "").strip() == "1"
SEED_ON_STARTUP = os.getenv("TABULA_SEED_ON_STARTUP", "1").strip() != "0"

if USE_DB:
    from app.stores_db import DbActionHandlerStore

    handler_store = DbActionHandlerStore()
else:
    handler_store = MemoryActionHandlerStore()

handler_service = ActionHandlerService(handler_store, CodeCipher.from_env())

if SEED_ON_STARTUP:
    try:
        handler_service.seed_defaults()
    except Exception as exc:
        logger.error("seed_on_startup_failed error=%s", exc)


async def _safe_json(request: Request) -> dict:
    try:
        body = await request.json()
    except Exception:
        return {}
    return body if isinstance(body, dict) else {}


def _normalize_body(body: dict) -> dict:
    data = dict(body)
    if "frontendVersion" in data and "frontend_version" not in data:
        data["frontend_version"] = data.pop("frontendVersion")
    return data


def _validation_error(exc: HandlerValidationError) -> JSONResponse:
    return _error_response(exc.code, exc.message, exc.path, status=400)


def _not_found(action_type: str, version: str | None = None) -> JSONResponse:
    label = f"{action_type}@{version}" if version else action_type
    return _error_response("HANDLER_NOT_FOUND", f"Action handler {label} not found", "type", {"type": action_type, "version": version}, status=404)


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


@app.get("/action-handlers")
async def list_handlers(type: str | None = None):
    logger.info("handlers_list type=%s", type)
    return _ok_response({"handlers": handler_service.find_all(type)})


@app.get("/action-handlers/latest")
async def latest_handler(type: str | None = None):
    if not type:
        return _error_response("HANDLER_TYPE_REQUIRED", "type is required", "type")
    handler = handler_service.get_with_decrypted_code(type)
    if handler is None:
        return _not_found(type)
    return _ok_response({"handler": handler})


@app.get("/action-handlers/check-updates")
async def check_updates(type: str | None = None, frontendVersion: str | None = None):
    if not type:
        return _error_response("HANDLER_TYPE_REQUIRED", "type is required", "type")
    needs_update = handler_service.check_for_updates(type, frontendVersion)
    logger.info("check_updates type=%s frontend_version=%s needs_update=%s", type, frontendVersion, needs_update)
    return _ok_response({"needsUpdate": needs_update})


@app.post("/action-handlers/initialize")
async def initialize_handlers():
    created = handler_service.seed_defaults()
    return _ok_response({"message": "Default handlers initialized", "created": created})


@app.post("/action-handlers")
async def create_handler(request: Request):
    body = _normalize_body(await _safe_json(request))
    try:
        handler = handler_service.create(body)
    except HandlerValidationError as exc:
        return _validation_error(exc)
    except HandlerVersionExists as exc:
        return _error_response("HANDLER_VERSION_EXISTS", str(exc), "version", status=409)
    return _ok_response({"handler": handler}, status=201)


@app.get("/action-handlers/{action_type}/{version}")
async def get_handler(action_type: str, version: str):
    handler = handler_service.get_with_decrypted_code(action_type, version)
    if handler is None:
        return _not_found(action_type, version)
    return _ok_response({"handler": handler})


@app.put("/action-handlers/{action_type}/{version}")
async def update_handler(action_type: str, version: str, request: Request):
    body = _normalize_body(await _safe_json(request))
    try:
        handler = handler_service.update(action_type, version, body)
    except HandlerValidationError as exc:
        return _validation_error(exc)
    if handler is None:
        return _not_found(action_type, version)
    return _ok_response({"handler": handler})


@app.post("/action-handlers/{action_type}/versions")
async def create_handler_version(action_type: str, request: Request, changeType: str = "patch"):
    body = _normalize_body(await _safe_json(request))
    try:
        handler = handler_service.create_new_version(action_type, body, changeType)
    except HandlerValidationError as exc:
        return _validation_error(exc)
    except HandlerVersionExists as exc:
        return _error_response("HANDLER_VERSION_EXISTS", str(exc), "version", status=409)
    return _ok_response({"handler": handler}, status=201)


@app.delete("/action-handlers/{action_type}/{version}")
async def delete_handler(action_type: str, version: str):
    if not handler_service.remove(action_type, version):
        return _not_found(action_type, version)
    return _ok_response({"deleted": True, "type": action_type, "version": version})


@app.get("/table/action-handlers")
async def table_action_handlers(encrypted: int = 0):
    return JSONResponse(jsonable_encoder(handler_service.wire_definitions(encrypted=bool(encrypted))))


@app.get("/table/action-handlers/check-updates")
async def table_check_updates(type: str | None = None, frontendVersion: str | None = None):
    return await check_updates(type, frontendVersion)
