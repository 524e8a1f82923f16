from pathlib import PurePosixPath
from collections import deque
from contextlib import asynccontextmanager
from threading import Lock
from time import monotonic
from uuid import uuid4
import logging

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from scanform.db import MongoKeyedStore, get_db
from scanform.entities import Collections, build_collections
from scanform.errors import NotFound, ScanFormError, StorageError, ValidationError
from scanform.lifecycle import ScanLifecycle, create_scheduler
from scanform.logging_config import setup_logging
from scanform.models import ScanRecord, now_ms
from scanform.routers import chats, users
from scanform.routers.common import (
    clamp_limit,
    dump,
    get_collections,
    get_lifecycle,
    ok,
    page_payload,
)
from scanform.settings import (
    MAX_FILE_SIZE_BYTES,
    MAX_FILENAME_LENGTH,
    RATE_LIMIT_UPLOADS_PER_MINUTE,
    RATE_LIMIT_WINDOW_SECONDS,
    STORE_BACKEND,
)
from scanform.store import MemoryKeyedStore

logger = logging.getLogger("scanform")

MULTIPART_OVERHEAD_BYTES = 64 * 1024

_rate_limit_lock = Lock()
_upload_request_times: dict[str, deque[float]] = {}


def make_store_factory(backend: str | None = None):
    backend = backend or STORE_BACKEND
    if backend == "memory":
        return MemoryKeyedStore
    db = get_db()
    return lambda name: MongoKeyedStore(db, name)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    collections = build_collections(make_store_factory())
    for store in collections.stores:
        ensure_indexes = getattr(store, "ensure_indexes", None)
        if ensure_indexes is None:
            continue
        try:
            await ensure_indexes()
        except Exception:
            # App should stay available even if DB indexes can't be ensured at startup.
            logger.exception("Failed to ensure MongoDB indexes for %s", store.name)

    scheduler = create_scheduler()
    scheduler.start()
    app.state.collections = collections
    app.state.lifecycle = ScanLifecycle(collections.scans, scheduler)
    logger.info("ScanForm started with %s store", STORE_BACKEND)
    try:
        yield
    finally:
        scheduler.shutdown(wait=False)


app = FastAPI(title="ScanForm API", lifespan=lifespan)

app.include_router(users.router)
app.include_router(chats.router)


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@app.exception_handler(ScanFormError)
async def handle_domain_error(request: Request, exc: ScanFormError):
    if isinstance(exc, StorageError):
        logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc.message)
        return _error_response(exc.status_code, "Storage unavailable")
    return _error_response(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def handle_http_error(request: Request, exc: StarletteHTTPException):
    return _error_response(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        message = "Invalid request"
    return _error_response(400, message)


def enforce_upload_rate_limit(client_id: str):
    now = monotonic()
    with _rate_limit_lock:
        # Cleanup: remove entries for clients with no recent activity
        stale = [
            cid for cid, ts in _upload_request_times.items()
            if not ts or now - ts[-1] >= RATE_LIMIT_WINDOW_SECONDS
        ]
        for cid in stale:
            del _upload_request_times[cid]

        timestamps = _upload_request_times.setdefault(client_id, deque())
        while timestamps and now - timestamps[0] >= RATE_LIMIT_WINDOW_SECONDS:
            timestamps.popleft()

        if len(timestamps) >= RATE_LIMIT_UPLOADS_PER_MINUTE:
            logger.warning("Rate limit exceeded for client %s", client_id)
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded: max {RATE_LIMIT_UPLOADS_PER_MINUTE} uploads per minute",
            )

        timestamps.append(now)


def sanitize_filename(raw: str | None) -> str:
    """Reduce an uploaded filename to its basename."""
    if not raw:
        raise ValidationError("Filename is required")

    # Strip path components (defence against path-traversal)
    name = PurePosixPath(raw).name
    # Also handle Windows-style backslash paths
    name = name.split("\\")[-1].strip()

    if not name or name in (".", ".."):
        raise ValidationError("Invalid filename")

    if len(name) > MAX_FILENAME_LENGTH:
        raise ValidationError("Filename too long")

    return name


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/api/scan")
async def create_scan(
    request: Request,
    file: UploadFile | None = File(None),
    title: str | None = Form(None),
    description: str | None = Form(None),
    lifecycle: ScanLifecycle = Depends(get_lifecycle),
):
    client_ip = request.client.host if request.client else "unknown"
    enforce_upload_rate_limit(client_ip)

    if file is None:
        raise ValidationError("File is required")
    filename = sanitize_filename(file.filename)

    # Early rejection based on Content-Length header (before reading body).
    # The header also counts multipart framing and the form fields.
    cl = request.headers.get("content-length")
    if cl and cl.isdigit() and int(cl) > MAX_FILE_SIZE_BYTES + MULTIPART_OVERHEAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large")

    # Read with a limit to avoid unbounded memory usage
    content = await file.read(MAX_FILE_SIZE_BYTES + 1)
    if len(content) > MAX_FILE_SIZE_BYTES:
        raise HTTPException(status_code=413, detail="File too large")

    fields = {
        key: value
        for key, value in (("title", title), ("description", description))
        if value
    }
    record = ScanRecord(
        id=str(uuid4()),
        filename=filename,
        size=len(content),
        mime=file.content_type or None,
        fields=fields,
        status="processing",
        ts=now_ms(),
    )
    created = await lifecycle.submit(record)
    logger.info(
        "Scan created: id=%s file=%s size=%d mime=%s",
        created.id, created.filename, created.size, created.mime,
    )
    return ok({"id": created.id, "status": created.status})


@app.get("/api/scans")
async def list_scans(
    cursor: str | None = None,
    limit: int | None = None,
    collections: Collections = Depends(get_collections),
):
    await collections.scans.ensure_seed()
    page = await collections.scans.list(cursor, clamp_limit(limit))
    # Paging follows insertion order; each page is then shown newest first.
    items = sorted(page.items, key=lambda scan: scan.ts, reverse=True)
    return ok(page_payload(items, page.next_cursor))


@app.get("/api/scans/{scan_id}")
async def get_scan(scan_id: str, collections: Collections = Depends(get_collections)):
    scan = await collections.scans.get(scan_id)
    if scan is None:
        raise NotFound("Scan not found")
    return ok(dump(scan))


@app.post("/api/scans/{scan_id}/retry")
async def retry_scan(
    scan_id: str,
    collections: Collections = Depends(get_collections),
    lifecycle: ScanLifecycle = Depends(get_lifecycle),
):
    if not await collections.scans.exists(scan_id):
        raise NotFound("Scan not found")
    try:
        record = await lifecycle.retry(scan_id)
    except NotFound:
        raise NotFound("Scan not found") from None
    logger.info("Scan %s re-queued", scan_id)
    return ok({"id": record.id, "status": record.status})


@app.delete("/api/scans/{scan_id}")
async def delete_scan(scan_id: str, collections: Collections = Depends(get_collections)):
    deleted = await collections.scans.delete(scan_id)
    if deleted:
        logger.info("Scan %s deleted", scan_id)
    return ok({"id": scan_id, "deleted": deleted})
