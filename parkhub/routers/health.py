# parkhub/routers/health.py
"""
System health check endpoint.
Returns status of backend + DB + expiry sweep.
"""

from fastapi import APIRouter, Request
from sqlalchemy.exc import SQLAlchemyError
from parkhub.utils.timeutil import utcnow

router = APIRouter()


@router.get("/health", summary="System health check")
def health_check(request: Request):
    """
    Returns:
    - Backend status
    - Database connectivity
    - Expiry sweep state and last run
    - Number of live change-stream subscribers
    """
    state = request.app.state
    result = {
        "status": "ok",
        "timestamp": utcnow().isoformat(),
        "backend": "ok",
        "database": "unknown",
        "sweep": {"running": state.scheduler.running, "last_run": None},
        "stream_subscribers": state.change_feed.subscriber_count,
    }

    # Check database
    try:
        state.database.ping()
        result["database"] = "ok"
    except SQLAlchemyError as e:
        result["database"] = f"error: {str(e)}"
        result["status"] = "degraded"

    report = state.scheduler.last_report
    if report is not None:
        result["sweep"]["last_run"] = report.started_at.isoformat()
        result["sweep"]["last_expired"] = len(report.expired)
        result["sweep"]["last_failed"] = len(report.failed)

    return result
