import time
import uuid

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from zazzles.core.config import get_settings
from zazzles.core.exceptions import (
    AppError,
    app_exception_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from zazzles.core.logging import bind_request_id, configure_logging, get_logger, init_sentry
from zazzles.db.credit_store import CreditStore
from zazzles.db.init import init_db
from zazzles.routers import billing, businesses, credits, promo, webhooks
from zazzles.services.payment_gateway import StripeGateway

settings = get_settings()
configure_logging(debug=settings.debug)
log = get_logger(__name__)

app = FastAPI(
    title="Zazzles Credits API",
    version="1.0.0",
    default_response_class=ORJSONResponse,
)
app.state.store = CreditStore()
app.state.gateway = StripeGateway.from_settings(settings)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    bind_request_id(request_id)
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    log.info(
        "request",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(duration_ms, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response


app.add_exception_handler(AppError, app_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Routers
app.include_router(businesses.router, prefix="/v1/businesses", tags=["businesses"])
app.include_router(credits.router, prefix="/v1/credits", tags=["credits"])
app.include_router(billing.router, prefix="/v1/billing", tags=["billing"])
app.include_router(promo.router, prefix="/v1/promo", tags=["promo"])
app.include_router(webhooks.router, prefix="/v1/webhooks", tags=["webhooks"])


@app.on_event("startup")
async def startup():
    if init_sentry(settings, "api"):
        log.info("startup", msg="Sentry enabled")
    if settings.db_init_on_startup:
        await init_db()
        log.info("startup", msg="DB connected")
    if not app.state.gateway.configured:
        log.warning("startup", msg="Stripe not configured; payments disabled")


@app.get("/health")
async def health():
    """Health check for load balancers and monitoring."""
    return {"status": "ok"}
