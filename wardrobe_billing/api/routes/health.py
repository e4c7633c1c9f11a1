from fastapi import APIRouter, Depends, Response
import redis
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wardrobe_billing.core.config import settings
from wardrobe_billing.db.session import get_db


router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Liveness check - always returns 200 if app is running."""
    return {"status": "ok"}


@router.get("/ready")
def readiness(response: Response, db: Session = Depends(get_db)) -> dict:
    """Readiness check - returns 503 if the database or Redis is unavailable."""
    try:
        db.execute(text("SELECT 1"))
        redis.Redis.from_url(settings.redis_url, decode_responses=True).ping()
        return {"status": "ready"}
    except (redis.RedisError, SQLAlchemyError) as e:
        response.status_code = 503
        return {"status": "not_ready", "error": str(e)}
