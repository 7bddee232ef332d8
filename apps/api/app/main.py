import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import Response

from app.config import (
    allowed_origins,
    bootstrap_admin_subjects,
    ensure_secure_runtime_settings,
    settings,
)
from app.db.migration_check import assert_db_is_up_to_date, maybe_create_schema
from app.db.session import engine, session_scope
from app.integrations.payment_provider_client import build_payment_provider_client
from app.observability import configure_logging, log_event, metrics_store, set_request_id
from app.routers.health import router as health_router
from app.routers.jobs import router as jobs_router
from app.routers.metrics import router as metrics_router
from app.routers.orders import router as orders_router
from app.routers.payments import router as payments_router
from app.services.admin_roles_service import bootstrap_privileged_roles


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    ensure_secure_runtime_settings()

    if settings.require_migrations:
        assert_db_is_up_to_date(engine)
    else:
        maybe_create_schema(engine)

    subjects = bootstrap_admin_subjects()
    if subjects:
        with session_scope() as db:
            granted = bootstrap_privileged_roles(db, subjects)
        log_event("admin_roles_bootstrapped", detail=f"granted={granted}")

    app.state.payment_provider_client = build_payment_provider_client()
    log_event("startup_complete", detail=f"app_mode={settings.app_mode}")
    try:
        yield
    finally:
        app.state.payment_provider_client.close()


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description="Storefront orders, payment reconciliation and expiration",
    lifespan=lifespan,
)


def custom_openapi():
    """
    Adds HTTP Bearer (JWT) auth to the OpenAPI schema so Swagger UI shows an
    'Authorize' button and sends the Authorization header.
    """
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )

    components = openapi_schema.setdefault("components", {})
    security_schemes = components.setdefault("securitySchemes", {})
    security_schemes["BearerAuth"] = {
        "type": "http",
        "scheme": "bearer",
        "bearerFormat": "JWT",
    }
    openapi_schema["security"] = [{"BearerAuth": []}]

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next) -> Response:
    request_id = request.headers.get("X-Request-ID") or str(uuid4())
    set_request_id(request_id)

    start = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - start

    response.headers["X-Request-ID"] = request_id
    metrics_store.increment("http_requests_total")
    metrics_store.observe("http_request_duration_seconds", elapsed)
    log_event(
        "http_request",
        order_id=request.path_params.get("order_id"),
        detail=f"{request.method} {request.url.path} {response.status_code}",
    )
    return response


app.include_router(health_router)
app.include_router(orders_router)
app.include_router(payments_router)
app.include_router(jobs_router)
app.include_router(metrics_router)
