"""CORS configuration.

The web client sends the refresh cookie with `credentials: include`, so
origins must be listed explicitly; a wildcard is not allowed with credentials.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.core.config import settings


def get_allowed_origins() -> list[str]:
    if settings.BACKEND_CORS_ORIGINS:
        return [o.strip() for o in settings.BACKEND_CORS_ORIGINS.split(",") if o.strip()]
    return [settings.FRONTEND_URL]


def configure_cors(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID", "X-RateLimit-Bypass"],
        expose_headers=[
            "X-Correlation-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
    )
