"""Liveness and dependency checks."""
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.utils.helpers import format_response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request, db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        logger.warning("Database health check failed: %s", e)
        database = "unavailable"

    redis = "ok" if await request.app.state.cache.ping() else "unavailable"
    return format_response({
        "status": "ok" if database == "ok" else "degraded",
        "database": database,
        "redis": redis,
    })
