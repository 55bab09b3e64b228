from datetime import datetime, timezone
import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from logging_config import setup_logging

setup_logging()

# ─── App created FIRST before any include_router ─────────────────────────────
app = FastAPI(
    title="SendVault API",
    description="Ephemeral, access-controlled sharing of encrypted files",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

from database import Base, engine
from errors import SendVaultError, AccessDenied
from send_routes import router as send_router
import models  # noqa: F401  (registers tables on Base)

app.include_router(send_router)

Base.metadata.create_all(bind=engine)

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


def _error_body(request: Request, status: int, code: str, message: str) -> dict:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "status": status,
        "error": code,
        "code": code,
        "message": message,
        "correlation_id": getattr(request.state, "correlation_id", None),
    }


# ─── Correlation id ───────────────────────────────────────────────────────────
@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    cid = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
    request.state.correlation_id = cid
    response = await call_next(request)
    response.headers[CORRELATION_HEADER] = cid
    return response


# ─── Exception handlers ───────────────────────────────────────────────────────
@app.exception_handler(SendVaultError)
async def sendvault_exception_handler(request: Request, exc: SendVaultError):
    cid = getattr(request.state, "correlation_id", None)
    if isinstance(exc, AccessDenied):
        logger.info(f"Access denied (cid={cid}): code={exc.code}")
    elif exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} (cid={cid}): {exc.message}")
    else:
        logger.info(f"{type(exc).__name__} (cid={cid}): {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc.status_code, exc.code, exc.message),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    cid = getattr(request.state, "correlation_id", None)
    logger.error(f"Unhandled exception (cid={cid}): {type(exc).__name__}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=_error_body(request, 500, "INTERNAL_ERROR", "An unexpected error occurred"),
    )


# ─── Health ───────────────────────────────────────────────────────────────────

@app.get("/health", tags=["System"])
def health():
    return {"status": "ok", "service": "SendVault", "version": "1.0.0"}
