from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.cache.cache_service import RedisCache
from app.core.logger import setup_logging
from app.middleware.cors import configure_cors
from app.middleware.correlation import CorrelationIdMiddleware
from app.middleware.logging import RequestLoggerMiddleware
from app.middleware.auth import JWTMiddleware
from app.middleware.rate_limit import RateLimitMiddleware
from app.middleware import error_handler
from app.utils.errors import APIError

# Routers
from app.routers import auth as auth_router
from app.routers import health as health_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    await app.state.cache.connect()
    try:
        yield
    finally:
        await app.state.cache.close()


def create_app(cache: Optional[RedisCache] = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    ``cache`` is the Redis client used by the counter rate limiter; one is
    built from ``REDIS_URL`` when not given. Its connection is opened and
    closed by the lifespan.
    """
    setup_logging()
    description = (
        "Courier Auth API.\n\n"
        "Registration, login, token rotation, OTP verification and session management "
        "for the crowdshipping marketplace."
    )

    openapi_tags = [
        {"name": "authentication", "description": "Register, login, refresh, logout, password reset and OTP."},
        {"name": "health", "description": "Health checks and service status endpoints."},
    ]

    app = FastAPI(
        title="Courier Auth API",
        version="0.1.0",
        description=description,
        openapi_tags=openapi_tags,
        lifespan=lifespan,
    )
    app.state.cache = cache or RedisCache()

    # Middleware, innermost first: the rate limiter needs the JWT payload,
    # and the correlation middleware must wrap everything.
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(JWTMiddleware)
    app.add_middleware(RequestLoggerMiddleware)
    configure_cors(app)
    app.add_middleware(CorrelationIdMiddleware)

    # Exception handlers
    app.add_exception_handler(APIError, error_handler.api_error_handler)
    app.add_exception_handler(StarletteHTTPException, error_handler.http_exception_handler)
    app.add_exception_handler(RequestValidationError, error_handler.validation_exception_handler)

    # Include routers
    app.include_router(health_router.router)
    app.include_router(auth_router.router)

    return app


app = create_app()
