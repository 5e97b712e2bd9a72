"""
Main FastAPI application entry point.
Initializes the application with logging, tracing, metrics, middleware,
domain error handling and routes.
"""
import logging
from uuid import uuid4
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from core.config import settings
from core.exceptions import SocialError
from api.schemas import ErrorResponse
from db.database import engine, init_db

# OpenTelemetry imports
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

# Prometheus metrics
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from prometheus_fastapi_instrumentator import Instrumentator

# Configure structured JSON logging
from core.logging_config import configure_logging
configure_logging(service_name=settings.service_name, level=settings.log_level, enable_json=settings.log_json)

logger = logging.getLogger(__name__)


def setup_tracing():
    """
    Configure OpenTelemetry distributed tracing with an OTLP/HTTP exporter.

    Only runs when TRACING_ENABLED is set; otherwise the instrumentation
    below records into the no-op tracer provider.
    """
    resource = Resource.create({
        "service.name": settings.service_name,
        "service.version": "1.0.0"
    })

    tracer_provider = TracerProvider(resource=resource)

    if settings.otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
    else:
        exporter = OTLPSpanExporter()

    tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(tracer_provider)

    logger.info("OpenTelemetry tracing initialized with OTLP exporter")
    return tracer_provider


if settings.tracing_enabled:
    setup_tracing()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info(f"Starting {settings.service_name}...")
    try:
        init_db()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")

    yield

    logger.info(f"Shutting down {settings.service_name}...")


# Create FastAPI application
app = FastAPI(
    title="Social Realtime API",
    description="Direct/group messaging and live notification fan-out",
    version="1.0.0",
    lifespan=lifespan
)

# Instrument FastAPI and SQLAlchemy with OpenTelemetry
FastAPIInstrumentor.instrument_app(app)
SQLAlchemyInstrumentor().instrument(engine=engine)

# HTTP request metrics on /metrics
Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Metrics"])


@app.exception_handler(SocialError)
async def social_error_handler(request: Request, exc: SocialError):
    """Render domain errors as {"detail", "error_code"} with their HTTP status."""
    request_id = getattr(request.state, "request_id", None)
    logger.info(
        f"[{request_id}] {request.method} {request.url.path} -> "
        f"{exc.status_code} {exc.error_code}: {exc.detail}"
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(detail=exc.detail, error_code=exc.error_code).model_dump(),
        headers=headers
    )


# Request ID middleware
class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add unique request_id to each request.
    The request_id is included in logs for request tracing.
    """
    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid4())
        request.state.request_id = request_id

        logger.info(
            f"[{request_id}] {request.method} {request.url.path} - "
            f"Client: {request.client.host if request.client else 'unknown'}"
        )

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        logger.info(f"[{request_id}] Response: {response.status_code}")
        return response


# Add middlewares
app.add_middleware(RequestIDMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", tags=["Health"])
async def root():
    """
    Root endpoint pointing at docs and probes.
    """
    return {
        "message": "Social Realtime API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "ready": "/ready"
    }


@app.get("/metrics/app", tags=["Metrics"])
async def app_metrics():
    """Messaging and socket metrics (Prometheus text format)."""
    from api.metrics import registry
    return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)


# Register endpoint routers
from api.endpoints import (
    auth_router, conversations_router, messages_router, notifications_router, websocket_router
)
from api.health import router as health_router

app.include_router(health_router)
app.include_router(auth_router, prefix="/api/auth", tags=["Authentication"])
app.include_router(conversations_router, prefix="/api/conversations", tags=["Conversations"])
app.include_router(messages_router, prefix="/api/messages", tags=["Messages"])
app.include_router(notifications_router, prefix="/api/notifications", tags=["Notifications"])

# WebSocket endpoint
app.include_router(websocket_router, tags=["WebSocket"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower()
    )
