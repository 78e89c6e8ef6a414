"""
Non-critical side effects (notifications, analytics, promotion usage, card saving,
gift-card capture). A failure is logged and counted, never propagated, and never
rolls back work that is already committed.
"""
import functools
import logging
from typing import Any, Callable, TypeVar

from sqlalchemy.orm import Session

from app.utils.metrics import best_effort_failures_total

logger = logging.getLogger(__name__)

T = TypeVar("T")


def best_effort(
    effect: str,
    fn: Callable[..., T],
    *args: Any,
    db: Session | None = None,
    default: T | None = None,
    **kwargs: Any,
) -> T | None:
    """Run fn(*args, **kwargs); on any exception log, count, roll back db (if given) and return default."""
    try:
        return fn(*args, **kwargs)
    except Exception as e:
        if db is not None:
            db.rollback()
        best_effort_failures_total.labels(effect=effect).inc()
        logger.exception("best_effort_failed", extra={"effect": effect, "error": str(e)})
        return default


def non_critical(effect: str) -> Callable[[Callable[..., T]], Callable[..., T | None]]:
    """Decorator form of best_effort for methods whose first argument owns a `db` session."""

    def decorator(fn: Callable[..., T]) -> Callable[..., T | None]:
        @functools.wraps(fn)
        def wrapper(self, *args: Any, **kwargs: Any) -> T | None:
            return best_effort(effect, fn, self, *args, db=getattr(self, "db", None), **kwargs)

        return wrapper

    return decorator
