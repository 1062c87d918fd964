"""
Gatehouse — FastAPI Application Factory
=========================================

What:  Creates the FastAPI application with the request-governance pipeline
       installed in front of every route.
How:   create_app() builds the origin policy, admission limiter and failure
       normalizer from settings, registers them as middleware / exception
       handlers, and mounts the routers.
Who:   uvicorn (`uvicorn gatehouse.main:app`) and the test suite, which
       builds apps with its own settings and clock.

Request pipeline (outermost first):
    ┌──────────────────────────────────────────────────────────────┐
    │ RequestID → Logging → SecurityHeaders → OriginPolicy →       │
    │ RateLimit → FailureBoundary → [exception handlers] → route   │
    └──────────────────────────────────────────────────────────────┘
    OriginPolicy may answer 403 (or 204 for a preflight).
    RateLimit may answer 429.
    Any handler failure becomes a Canonical Error Record.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable, Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from gatehouse import __version__
from gatehouse.config import Settings, get_settings
from gatehouse.exceptions import InputValidationError
from gatehouse.middleware.cors import OriginPolicyMiddleware
from gatehouse.middleware.failure_boundary import FailureBoundaryMiddleware, handle_failure
from gatehouse.middleware.logging import RequestLoggingMiddleware
from gatehouse.middleware.rate_limit import RateLimitMiddleware
from gatehouse.middleware.request_id import RequestIDLogFilter, RequestIDMiddleware
from gatehouse.middleware.security_headers import SecurityHeadersMiddleware
from gatehouse.routes import diagnostics, health, root
from gatehouse.services.admission import AdmissionLimiter
from gatehouse.services.failure_normalizer import FailureNormalizer
from gatehouse.services.origin_policy import OriginPolicy

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


# ══════════════════════════════════════════════════════════════════════════
# Structured Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(level: str = "INFO") -> None:
    """
    Configure root logging once for the process.

    Every record carries the current request ID through RequestIDLogFilter,
    so lines from the limiter, the normalizer and handlers can be joined on it.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIDLogFilter())

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[handler],
        force=True,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    config: Settings = app.state.settings
    setup_logging(config.log_level)

    policy: OriginPolicy = app.state.origin_policy
    limiter: AdmissionLimiter = app.state.admission_limiter
    logger.info("Gatehouse %s starting (environment=%s)", __version__, config.environment)
    logger.info(
        "Origin policy: %d allowed origin(s), credentials=%s",
        len(policy.origins),
        policy.allow_credentials,
    )
    logger.info("Admission: %d requests per %dms window", limiter.limit, limiter.window_ms)

    yield

    logger.info("Gatehouse shutting down.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Route router-level failures into the failure normalizer.

    Starlette resolves HTTPException and RequestValidationError inside the
    router, so these handlers are how they reach the normalizer. Everything
    else propagates to FailureBoundaryMiddleware.
    """
    app.add_exception_handler(StarletteHTTPException, handle_failure)
    app.add_exception_handler(RequestValidationError, handle_failure)
    app.add_exception_handler(InputValidationError, handle_failure)


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    settings: Optional[Settings] = None,
    clock: Optional[Callable[[], float]] = None,
) -> FastAPI:
    """
    Assemble the application.

    Args:
        settings: Configuration to use; defaults to the process settings.
        clock:    Monotonic clock for the admission limiter (tests inject a fake).
    """
    config = settings or get_settings()

    app = FastAPI(
        title="Pulsefy/Soter API",
        description="Emergency aid and verification API behind the Gatehouse governance layer.",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    policy = OriginPolicy.from_settings(
        config.cors_origins_list,
        allow_credentials=config.cors_allow_credentials,
        allow_dev_defaults=config.allows_dev_origins,
    )
    limiter_kwargs = {"clock": clock} if clock is not None else {}
    limiter = AdmissionLimiter(
        limit=config.rate_limit_requests,
        window_ms=config.rate_limit_window_ms,
        **limiter_kwargs,
    )

    app.state.settings = config
    app.state.origin_policy = policy
    app.state.admission_limiter = limiter
    app.state.failure_normalizer = FailureNormalizer(expose_stack=config.is_development)

    # Last added runs first
    app.add_middleware(FailureBoundaryMiddleware)
    app.add_middleware(RateLimitMiddleware, limiter=limiter, trusted_hops=config.trusted_proxy_hops)
    app.add_middleware(OriginPolicyMiddleware, policy=policy)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(health.router, include_in_schema=False)
    app.include_router(health.router, prefix=API_PREFIX)
    app.include_router(root.router, prefix=API_PREFIX)
    if config.diagnostics_enabled:
        app.include_router(diagnostics.router, prefix=API_PREFIX)

    return app


app = create_app()
