"""
WEBCORE - FastAPI Application

Builds the HTTP application: the library manager and application context
are started in the lifespan, modules are initialized against the context,
and their routers are mounted under the API base path behind the
authentication chain.
"""
from contextlib import asynccontextmanager
from typing import Dict, Mapping, Optional, Sequence
import time
import uuid

from fastapi import Depends, FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from opentelemetry import trace
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.deps import authenticate
from api.responses import APIResponse, error, from_exception, success
from config import Config, get_config
from core.context import AppContext
from core.errors import ApiErrorCode, WebcoreError
from core.library import LibraryLoader
from core.manager import LibraryManager
from core.module import Module, check_unique, destroy_modules, init_modules
from libraries import default_loaders
from modules import default_modules
from observability import setup_observability, shutdown_observability
from observability.logging import bind_context, clear_context, get_logger
from observability.tracing import create_span, instrument_fastapi

logger = get_logger(__name__)

VERSION = "1.0.0"

_HTTP_ERROR_CODES = {
    401: ApiErrorCode.UNAUTHORIZED,
    403: ApiErrorCode.UNAUTHORIZED,
    404: ApiErrorCode.NOT_FOUND,
    503: ApiErrorCode.UNAVAILABLE,
}


def get_current_trace_id() -> Optional[str]:
    """Get current trace ID as hex string."""
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        if ctx.is_valid:
            return format(ctx.trace_id, "032x")
    return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start libraries and modules; tear them down in reverse on shutdown."""
    config: Config = app.state.config
    modules: Sequence[Module] = app.state.modules

    setup_observability(
        service_name=config.observability.service_name,
        otlp_endpoint=config.observability.otlp_endpoint,
        tracing_enabled=config.observability.tracing_enabled,
        sample_rate=config.observability.sample_rate,
        log_level=config.logging.level,
        json_logs=config.logging.json_format,
        environment=config.env.value,
    )
    logger.info("Starting webcore API", modules=[m.name for m in modules])

    manager = LibraryManager(app.state.loaders, timeout=config.library_timeout or None)
    context = AppContext(config, manager, web=app)

    with create_span("startup.libraries"):
        await context.start()

    try:
        with create_span("startup.modules"):
            await init_modules(modules, context)
    except Exception:
        await context.destroy()
        raise

    app.state.context = context

    try:
        yield
    finally:
        logger.info("Shutting down webcore API")
        app.state.context = None
        try:
            await destroy_modules(modules)
        finally:
            failures = await context.destroy()
            if failures:
                logger.warning("Libraries left loaded after shutdown", count=len(failures))
            shutdown_observability()


def create_app(
    config: Optional[Config] = None,
    loaders: Optional[Mapping[str, LibraryLoader]] = None,
    modules: Optional[Sequence[Module]] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        config: Configuration; the environment-derived singleton when None
        loaders: Library loaders; ``default_loaders()`` when None
        modules: Modules to mount; ``default_modules()`` when None
    """
    config = config or get_config()
    modules = list(default_modules() if modules is None else modules)
    check_unique("Module", modules)

    app = FastAPI(
        title="webcore API",
        description="Modular web application built on a library lifecycle registry",
        version=VERSION,
        lifespan=lifespan,
        debug=config.debug,
    )
    app.state.config = config
    app.state.loaders = dict(default_loaders() if loaders is None else loaders)
    app.state.modules = modules
    app.state.context = None

    if config.api.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.api.cors_origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    _register_exception_handlers(app, config)
    _register_routes(app)

    base_path = config.api.base_path.rstrip("/")
    for module in modules:
        router = module.router()
        if router is None:
            continue
        app.include_router(
            router,
            prefix=f"{base_path}/{module.name}",
            tags=[module.name],
            dependencies=[Depends(authenticate)],
        )

    app.middleware("http")(observability_middleware)

    if config.observability.tracing_enabled and config.observability.instrument_fastapi:
        instrument_fastapi(app)

    return app


def _register_exception_handlers(app: FastAPI, config: Config) -> None:
    @app.exception_handler(WebcoreError)
    async def webcore_error_handler(request: Request, exc: WebcoreError):
        if exc.status_code >= 500:
            logger.error("Request failed", error=str(exc), path=request.url.path)
        return from_exception(exc, include_stack=config.is_development).to_json_response()

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        code = _HTTP_ERROR_CODES.get(exc.status_code)
        if code is None:
            code = ApiErrorCode.INTERNAL if exc.status_code >= 500 else ApiErrorCode.INVALID_REQUEST
        response = error(
            http_code=exc.status_code,
            error_code=int(code),
            error_name=code.name,
            message=str(exc.detail),
        ).to_json_response()
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return error(
            http_code=422,
            error_code=int(ApiErrorCode.INVALID_REQUEST),
            error_name=ApiErrorCode.INVALID_REQUEST.name,
            message="Request validation failed",
            details=jsonable_encoder(exc.errors()),
        ).to_json_response()


def _register_routes(app: FastAPI) -> None:
    @app.get("/health", response_model=APIResponse, response_model_exclude_none=True, response_model_by_alias=True)
    async def health_check(request: Request):
        """Report liveness and the loaded libraries."""
        context: Optional[AppContext] = request.app.state.context
        libraries: Dict[str, str] = {}
        if context is not None:
            libraries = {f"{name}[{key}]": "loaded" for name, key in context.libraries.loaded()}

        return success({
            "status": "healthy" if context is not None else "starting",
            "version": VERSION,
            "libraries": libraries,
            "trace_id": get_current_trace_id(),
        })


async def observability_middleware(request: Request, call_next):
    """Add request tracking with trace context."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    start_time = time.perf_counter()

    bind_context(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    try:
        response: Response = await call_next(request)
        duration = time.perf_counter() - start_time

        trace_id = get_current_trace_id()
        if trace_id:
            response.headers["X-Trace-ID"] = trace_id

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration * 1000:.2f}ms"

        logger.info(
            "Request completed",
            status_code=response.status_code,
            duration_ms=duration * 1000,
        )
        return response
    except Exception as e:
        duration = time.perf_counter() - start_time
        logger.error("Request failed", error=str(e), duration_ms=duration * 1000)
        raise
    finally:
        clear_context()


def run_server(config: Optional[Config] = None) -> None:
    """Run the API server."""
    import uvicorn

    config = config or get_config()
    logger.info("Starting uvicorn server", host=config.api.host, port=config.api.port)
    uvicorn.run(
        "api.main:app",
        host=config.api.host,
        port=config.api.port,
        reload=config.api.reload,
        workers=config.api.workers,
    )


app = create_app()


if __name__ == "__main__":
    run_server()
