from contextlib import asynccontextmanager
from functools import lru_cache
import logging
from pathlib import Path
import time

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dealdesk.ai_gateway import AIGatewayClient
from dealdesk.api.routers.clients import build_clients_router
from dealdesk.api.routers.functions import build_functions_router
from dealdesk.api.routers.opportunities import build_opportunities_router
from dealdesk.api.routers.responsibles import build_responsibles_router
from dealdesk.api.routers.storage import build_storage_router
from dealdesk.api.routers.system import build_system_router
from dealdesk.config import settings, validate_runtime_configuration
from dealdesk.db import init_db
from dealdesk.dsp import CompletionClient
from dealdesk.errors import ServiceError
from dealdesk.observability import (
    configure_logging,
    normalize_request_id,
    reset_request_id,
    sanitize_for_logging,
    set_request_id,
)
from dealdesk.parsers import PdfTextExtractor, TextExtractor
from dealdesk.storage import ObjectStorage
from dealdesk.version import APP_VERSION
from dealdesk.webhooks import WebhookClient

logger = logging.getLogger("dealdesk.api")


@lru_cache(maxsize=1)
def _cached_ai_gateway() -> AIGatewayClient:
    return AIGatewayClient(settings=settings)


def get_ai_gateway() -> CompletionClient:
    return _cached_ai_gateway()


def get_storage() -> ObjectStorage:
    return ObjectStorage(settings)


def get_text_extractor() -> TextExtractor:
    return PdfTextExtractor()


@lru_cache(maxsize=1)
def _cached_webhook_client() -> WebhookClient:
    return WebhookClient(settings=settings)


def get_webhook_client() -> WebhookClient:
    return _cached_webhook_client()


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging(settings.log_level)
    validate_runtime_configuration(settings)
    init_db()
    if settings.storage_backend.strip().lower() == "local":
        Path(settings.storage_root).mkdir(parents=True, exist_ok=True)
    logger.info(
        "application_startup",
        extra={
            "event": "application_startup",
            "environment": settings.app_env,
            "storage_backend": settings.storage_backend,
            "dsp_output_format": settings.dsp_output_format,
        },
    )
    yield
    logger.info("application_shutdown", extra={"event": "application_shutdown"})


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


async def _request_context(request: Request, call_next) -> Response:
    request_id = normalize_request_id(request.headers.get(settings.request_id_header))
    request.state.request_id = request_id
    context = {"request_id": request_id, "method": request.method, "path": request.url.path}
    token = set_request_id(request_id)
    started = time.perf_counter()
    logger.info(
        "request_started",
        extra={
            "event": "request_started",
            **context,
            "query": sanitize_for_logging(dict(request.query_params)),
            "client_ip": request.client.host if request.client else None,
        },
    )
    try:
        response = await call_next(request)
    except Exception:
        logger.exception(
            "request_failed",
            extra={"event": "request_failed", **context, "duration_ms": _elapsed_ms(started)},
        )
        raise
    finally:
        reset_request_id(token)

    response.headers[settings.request_id_header] = request_id
    logger.info(
        "request_completed",
        extra={
            "event": "request_completed",
            **context,
            "status_code": response.status_code,
            "duration_ms": _elapsed_ms(started),
        },
    )
    return response


async def _service_error_response(request: Request, exc: ServiceError) -> JSONResponse:
    logger.log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        "service_error",
        extra={
            "event": "service_error",
            "path": request.url.path,
            "status_code": exc.status_code,
            "error_code": exc.error_code,
            "error": exc.message,
        },
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=headers)


async def _validation_error_response(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Body and query validation failures are reported as 400, not FastAPI's default 422."""

    issues = [
        {
            "loc": [str(part) for part in issue.get("loc", ())],
            "msg": str(issue.get("msg", "")),
            "type": str(issue.get("type", "")),
        }
        for issue in exc.errors()
    ]
    logger.warning(
        "request_validation_failed",
        extra={"event": "request_validation_failed", "path": request.url.path, "issue_count": len(issues)},
    )
    return JSONResponse(
        status_code=400,
        content={"error": "validation_error", "detail": "Invalid request data.", "details": issues},
    )


def create_app() -> FastAPI:
    cors_origins = settings.cors_origins_list
    if settings.cors_allow_credentials and "*" in cors_origins:
        raise RuntimeError("Invalid CORS_ORIGINS: wildcard '*' is not allowed when credentials are enabled.")

    app = FastAPI(title=settings.app_name, version=APP_VERSION, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "apikey", "x-client-info", settings.request_id_header],
    )
    app.middleware("http")(_request_context)
    app.add_exception_handler(ServiceError, _service_error_response)
    app.add_exception_handler(RequestValidationError, _validation_error_response)

    # Getters look up the module-level functions at request time.
    app.include_router(build_system_router(get_storage=lambda: get_storage()))
    app.include_router(build_clients_router())
    app.include_router(build_responsibles_router())
    app.include_router(build_opportunities_router(get_storage=lambda: get_storage()))
    app.include_router(
        build_functions_router(
            get_ai_gateway=lambda: get_ai_gateway(),
            get_storage=lambda: get_storage(),
            get_text_extractor=lambda: get_text_extractor(),
            get_webhook_client=lambda: get_webhook_client(),
        )
    )
    app.include_router(build_storage_router(get_storage=lambda: get_storage()))
    return app


app = create_app()
