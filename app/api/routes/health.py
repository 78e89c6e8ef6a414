from fastapi import APIRouter, Depends, Response
import redis
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.models.reconciliation import PaymentReconciliationEntry


router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Liveness probe - always returns 200 if app is running."""
    return {"status": "ok"}


@router.get("/ready")
def readiness(response: Response, db: Session = Depends(get_db)) -> dict:
    """Readiness probe - 503 if Postgres or Redis (beat broker) is unavailable."""
    checks: dict[str, str] = {}
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        db.rollback()
        checks["database"] = str(e)

    try:
        redis.Redis.from_url(settings.redis_url, socket_connect_timeout=2).ping()
        checks["redis"] = "ok"
    except Exception as e:
        checks["redis"] = str(e)

    if any(v != "ok" for v in checks.values()):
        response.status_code = 503
        return {"status": "not_ready", "checks": checks}

    pending = (
        db.query(PaymentReconciliationEntry)
        .filter(PaymentReconciliationEntry.status.in_(("pending", "processing")))
        .count()
    )
    return {"status": "ready", "checks": checks, "reconciliation_pending": pending}
