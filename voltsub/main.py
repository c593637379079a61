import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# Uvicorn nereden çalışırsa çalışsın .env proje kökünden yüklensin
_PROJ_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJ_ROOT / ".env")

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlmodel import Session
from starlette.exceptions import HTTPException

from voltsub.api.admin import router as admin_router
from voltsub.api.payments import router as vnpay_router
from voltsub.api.subscriptions import plans_router, router as subscriptions_router
from voltsub.core.config import GatewayConfig, settings
from voltsub.core.database import engine, get_db, init_db
from voltsub.core.errors import PaymentError
from voltsub.core.rate_limit import get_client_ip, limiter
from voltsub.logging import setup_logging
from voltsub.models import ErrorLog
from voltsub.services.audit import record_security_event
from voltsub.services.vnpay import VnpayCodec

setup_logging(level=logging.INFO)
log = logging.getLogger("voltsub")


def _cors_origins_list() -> list[str]:
    if not settings.cors_origins or settings.cors_origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in settings.cors_origins.split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Eksik VNPay ayarı = başlangıç hatası (ConfigurationError)
    app.state.codec = VnpayCodec(GatewayConfig.from_settings())
    init_db()
    log.info("VNPay gateway configured: tmn_code=%s pay_url=%s", app.state.codec.config.tmn_code, app.state.codec.config.pay_url)
    yield


app = FastAPI(
    title="Voltsub API",
    description="Subscription payments and VNPay reconciliation",
    lifespan=lifespan,
)
app.state.limiter = limiter


def _error_response(request: Request, status_code: int, kind: str, message: str) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    body = {"success": False, "error": kind, "message": message, "status_code": status_code}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(PaymentError)
def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("%s on %s: %s", exc.kind, request.url.path, exc.message)
    else:
        log.info("%s on %s: %s", exc.kind, request.url.path, exc.message)
    return _error_response(request, exc.status_code, exc.kind, exc.message)


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    record_security_event("rate_limit", ip=get_client_ip(request), endpoint=request.url.path, detail="Rate limit exceeded")
    return _error_response(request, 429, "RateLimited", "Too many requests. Please wait a minute.")


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errs = exc.errors()
    log.warning(
        "Request validation error: path=%s method=%s detail=%s",
        request.url.path,
        request.method,
        errs,
    )
    first = errs[0] if errs else {}
    loc = ".".join(str(p) for p in (first.get("loc") or []) if p != "body")
    message = f"{loc}: {first.get('msg')}" if loc else (first.get("msg") or "Invalid request.")
    return _error_response(request, 400, "InvalidInput", message)


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    kinds = {401: "Unauthorized", 403: "Forbidden", 404: "NotFound", 503: "ServiceUnavailable"}
    kind = kinds.get(exc.status_code, "ServerError" if exc.status_code >= 500 else "InvalidInput")
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    response = _error_response(request, exc.status_code, kind, detail)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled exception: path=%s %s", request.url.path, exc)
    try:
        with Session(engine) as db:
            db.add(ErrorLog(
                endpoint=request.url.path,
                method=request.method,
                error_message=str(exc)[:2000],
                stack_trace=traceback.format_exc()[:10000],
            ))
            db.commit()
    except Exception as e:
        log.warning("ErrorLog write failed: %s", e)
    return _error_response(request, 500, "ServerError", "Unexpected server error.")


@app.middleware("http")
async def request_id_and_latency(request: Request, call_next):
    request.state.request_id = str(uuid.uuid4())
    start = time.perf_counter()
    response = await call_next(request)
    latency_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request.state.request_id
    log.info(
        "request_id=%s method=%s path=%s status=%s latency_ms=%.2f",
        request.state.request_id,
        request.method,
        request.url.path,
        response.status_code,
        latency_ms,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(vnpay_router)
app.include_router(subscriptions_router)
app.include_router(plans_router)
app.include_router(admin_router)


@app.get("/health")
def health(request: Request, db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        log.warning("Health check database error: %s", e)
        database = "error"
    return {
        "status": "ok",
        "database": database,
        "gateway_configured": getattr(request.app.state, "codec", None) is not None,
    }
