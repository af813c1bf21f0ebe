"""Storefront asset upload service."""

from __future__ import annotations

import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from asset_manager import APPEND, REPLACE, AssetSetManager
from asset_store import HttpAssetStore
from assets import SelectedFile
from aws_client import S3AssetStore
from errors import AssetNotFoundError, NothingToUploadError
from upload_config import _read_int_env, load_profiles
from uploader import RemoteStore, Uploader
from utils.validation import ALLOWED_IMAGE_TYPES

load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

MAX_FILES = _read_int_env("MAX_FILES", default=20, min_value=1, max_value=100)
ASSET_SET_RETENTION_MINUTES = _read_int_env("ASSET_SET_RETENTION_MINUTES", default=240, min_value=5, max_value=10080)

EXTENSION_TO_CONTENT_TYPE = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".jfif": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".gif": "image/gif",
}


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    yield
    # Let scheduled remote deletions finish before the loop goes away.
    with asset_sets_lock:
        managers = [record["manager"] for record in asset_sets.values()]
    for manager in managers:
        await manager.drain_cleanup()
    close = getattr(asset_store, "aclose", None)
    if close is not None:
        await close()
    logger.info("Shutdown complete drained_sets=%s", len(managers))


app = FastAPI(title="Storefront Asset Uploads", version="1.0.0", lifespan=lifespan)

origins_env = os.getenv("ALLOWED_ORIGINS", "*").strip()
allow_origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()]
if not allow_origins:
    allow_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

profiles = load_profiles()
asset_store: Optional[RemoteStore] = HttpAssetStore.from_env() or S3AssetStore.from_env()

asset_sets: Dict[str, Dict[str, Any]] = {}
asset_sets_lock = Lock()
request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")

REQUEST_ID_HEADER = "X-Request-ID"
HTTP_ERROR_CODE_MAP = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    413: "FILE_TOO_LARGE",
    415: "UNSUPPORTED_MEDIA_TYPE",
    422: "VALIDATION_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


class CreateAssetSetRequest(BaseModel):
    profile: str = "gallery"
    assets: List[Dict[str, Any]] = Field(default_factory=list)


class PrimaryRequest(BaseModel):
    url: str


class ReorderRequest(BaseModel):
    from_index: int
    to_index: int


def current_request_id() -> str:
    """Return current request ID from context."""
    request_id = (request_id_ctx.get() or "").strip()
    return request_id or "unknown"


def build_error_payload(
    *,
    code: str,
    message: str,
    request_id: str | None = None,
    details: Dict[str, Any] | None = None,
) -> Dict[str, Any]:
    """Build structured error response payload."""
    error: Dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": request_id or current_request_id(),
    }
    if details is not None:
        error["details"] = details
    return {"error": error}


@app.middleware("http")
async def request_context_middleware(request: Request, call_next: Callable[[Request], Any]) -> Any:
    """Attach request IDs and log requests."""
    request_id = (request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex).strip()[:128]
    context_token = request_id_ctx.set(request_id)
    request.state.request_id = request_id

    method = request.method
    path = request.url.path
    started_at = time.perf_counter()
    status_code = 500

    try:
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        status_code = response.status_code
        return response
    finally:
        duration_ms = (time.perf_counter() - started_at) * 1000
        logger.info(
            "request_id=%s method=%s path=%s status=%s duration_ms=%.2f",
            request_id,
            method,
            path,
            status_code,
            duration_ms,
        )
        request_id_ctx.reset(context_token)


@app.get("/")
@app.get("/api")
def root() -> Dict[str, Any]:
    """Health endpoint with non-sensitive service status."""
    store_snapshot = getattr(asset_store, "health_snapshot", None)
    return {
        "message": "Asset upload service is running.",
        "store": store_snapshot() if callable(store_snapshot) else None,
        "profiles": {name: config.limits_snapshot() for name, config in profiles.items()},
        "limits": {"max_files": MAX_FILES},
    }


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return structured payloads for HTTP errors."""
    request_id = getattr(request.state, "request_id", current_request_id())
    error_code = HTTP_ERROR_CODE_MAP.get(exc.status_code, "HTTP_ERROR")

    if isinstance(exc.detail, str):
        message = exc.detail
        details: Dict[str, Any] = {"status_code": exc.status_code}
    elif isinstance(exc.detail, dict):
        details = dict(exc.detail)
        message = str(details.get("message") or details.get("detail") or "Request failed.")
        details.setdefault("status_code", exc.status_code)
    else:
        message = str(exc.detail)
        details = {"status_code": exc.status_code}

    response = JSONResponse(
        status_code=exc.status_code,
        content=build_error_payload(
            code=error_code,
            message=message,
            request_id=request_id,
            details=details,
        ),
    )
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return structured payloads for validation errors."""
    request_id = getattr(request.state, "request_id", current_request_id())
    response = JSONResponse(
        status_code=422,
        content=build_error_payload(
            code="VALIDATION_ERROR",
            message="Request validation failed.",
            request_id=request_id,
            details={"status_code": 422, "errors": exc.errors()},
        ),
    )
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all error handler for consistent API error responses."""
    request_id = getattr(request.state, "request_id", current_request_id())
    logger.exception("Unhandled exception request_id=%s path=%s", request_id, request.url.path)

    response = JSONResponse(
        status_code=500,
        content=build_error_payload(
            code="INTERNAL_ERROR",
            message="Internal server error.",
            request_id=request_id,
        ),
    )
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


def resolve_content_type(upload: UploadFile, filename: str) -> str:
    """Resolve content type from request metadata or filename extension.

    Unknown types are returned as sent so validation can name them.
    """
    content_type = (upload.content_type or "").strip().lower()
    if content_type in ALLOWED_IMAGE_TYPES:
        return content_type

    inferred = EXTENSION_TO_CONTENT_TYPE.get(Path(filename).suffix.lower())
    if inferred:
        return inferred

    return content_type


async def read_selected_files(files: List[UploadFile]) -> List[SelectedFile]:
    """Read multipart uploads into file handles the manager can validate."""
    selected: List[SelectedFile] = []
    for upload in files:
        file_name = upload.filename or "unnamed_image"
        selected.append(
            SelectedFile(
                name=file_name,
                content_type=resolve_content_type(upload, file_name),
                data=await upload.read(),
            )
        )
    return selected


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _cleanup_stale_sets_unlocked() -> None:
    cutoff = time.time() - (ASSET_SET_RETENTION_MINUTES * 60)
    stale_ids = [
        set_id
        for set_id, record in asset_sets.items()
        if not record["busy"] and record["_updated_unix"] < cutoff
    ]
    for set_id in stale_ids:
        asset_sets.pop(set_id, None)


def build_manager(profile: str, seed: List[Dict[str, Any]], notifications: List[Dict[str, str]]) -> AssetSetManager:
    config = profiles[profile]

    def notify(level: str, message: str) -> None:
        notifications.append({"level": level, "message": message})

    uploader = Uploader(
        asset_store,
        max_attempts=config.max_retries,
        request_timeout_seconds=config.request_timeout_seconds,
        backoff_base_seconds=config.backoff_base_seconds,
    )
    return AssetSetManager(config, uploader, initial_assets=seed, notify=notify)


def get_record(set_id: str) -> Dict[str, Any]:
    with asset_sets_lock:
        record = asset_sets.get(set_id)
        if not record:
            raise HTTPException(status_code=404, detail="Asset set not found.")
        record["_updated_unix"] = time.time()
        return record


def render(set_id: str, record: Dict[str, Any], **extra: Any) -> Dict[str, Any]:
    """Snapshot plus the notifications raised since the last response."""
    notifications = list(record["notifications"])
    record["notifications"].clear()
    payload = {
        "asset_set_id": set_id,
        "profile": record["profile"],
        **record["manager"].snapshot(),
        "notifications": notifications,
        "request_id": current_request_id(),
    }
    payload.update(extra)
    return payload


@app.post("/asset-sets")
@app.post("/api/asset-sets")
async def create_asset_set(body: CreateAssetSetRequest) -> Dict[str, Any]:
    """Open an asset set for one form, optionally seeded from a saved record."""
    if body.profile not in profiles:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown profile {body.profile!r}. Expected one of: {', '.join(sorted(profiles))}.",
        )
    if any("url" not in item for item in body.assets):
        raise HTTPException(status_code=400, detail="Every seeded asset needs a url.")

    set_id = uuid.uuid4().hex
    notifications: List[Dict[str, str]] = []
    record = {
        "profile": body.profile,
        "manager": build_manager(body.profile, body.assets, notifications),
        "notifications": notifications,
        "busy": False,
        "created_at": _iso_now(),
        "_updated_unix": time.time(),
    }
    with asset_sets_lock:
        _cleanup_stale_sets_unlocked()
        asset_sets[set_id] = record
    return render(set_id, record)


@app.get("/asset-sets/{set_id}")
@app.get("/api/asset-sets/{set_id}")
async def get_asset_set(set_id: str) -> Dict[str, Any]:
    return render(set_id, get_record(set_id))


@app.delete("/asset-sets/{set_id}")
@app.delete("/api/asset-sets/{set_id}")
async def discard_asset_set(set_id: str) -> Dict[str, Any]:
    """Drop the set when its form closes. Remote images are left alone."""
    with asset_sets_lock:
        record = asset_sets.pop(set_id, None)
    if not record:
        raise HTTPException(status_code=404, detail="Asset set not found.")
    return {"asset_set_id": set_id, "discarded": True, "request_id": current_request_id()}


@app.post("/asset-sets/{set_id}/upload")
@app.post("/api/asset-sets/{set_id}/upload")
async def upload_assets(
    set_id: str,
    files: List[UploadFile] = File(...),
    mode: Optional[str] = None,
) -> Dict[str, Any]:
    """Run one batch through validation, compression and upload."""
    record = get_record(set_id)
    manager: AssetSetManager = record["manager"]

    if manager.uploader.store is None:
        raise HTTPException(status_code=503, detail="No asset store is configured.")
    if mode is not None and mode not in (APPEND, REPLACE):
        raise HTTPException(status_code=400, detail=f"Unknown upload mode {mode!r}.")
    if not files:
        raise HTTPException(status_code=400, detail="No files uploaded.")
    if len(files) > MAX_FILES:
        raise HTTPException(status_code=400, detail=f"Too many files. Maximum allowed is {MAX_FILES}.")

    # Claimed before the first await; session.uploading only flips inside submit_batch.
    with asset_sets_lock:
        if record["busy"] or manager.session.uploading:
            raise HTTPException(status_code=409, detail="An upload is already in progress for this asset set.")
        record["busy"] = True

    try:
        selected = await read_selected_files(files)
        uploaded = await manager.submit_batch(selected, mode)
    except NothingToUploadError as exc:
        record["notifications"].clear()
        raise HTTPException(
            status_code=400,
            detail={"message": "No valid image files were processed.", "errors": exc.errors},
        ) from exc
    finally:
        record["busy"] = False

    return render(
        set_id,
        record,
        uploaded=[asset.to_dict() for asset in uploaded],
        errors=list(manager.session.errors),
    )


@app.delete("/asset-sets/{set_id}/assets")
@app.delete("/api/asset-sets/{set_id}/assets")
async def remove_asset(set_id: str, url: str) -> Dict[str, Any]:
    record = get_record(set_id)
    try:
        removed = await record["manager"].remove(url)
    except AssetNotFoundError as exc:
        record["notifications"].clear()
        raise HTTPException(status_code=404, detail="Image not found.") from exc
    return render(set_id, record, removed=removed.to_dict())


@app.put("/asset-sets/{set_id}/primary")
@app.put("/api/asset-sets/{set_id}/primary")
async def set_primary_asset(set_id: str, body: PrimaryRequest) -> Dict[str, Any]:
    record = get_record(set_id)
    try:
        record["manager"].set_primary(body.url)
    except AssetNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Image not found.") from exc
    return render(set_id, record)


@app.post("/asset-sets/{set_id}/reorder")
@app.post("/api/asset-sets/{set_id}/reorder")
async def reorder_assets(set_id: str, body: ReorderRequest) -> Dict[str, Any]:
    record = get_record(set_id)
    try:
        record["manager"].reorder(body.from_index, body.to_index)
    except IndexError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return render(set_id, record)
