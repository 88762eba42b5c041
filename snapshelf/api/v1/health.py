"""
==============================================================================
Health Check Endpoints
==============================================================================

System health status endpoints for monitoring and orchestration.

==============================================================================
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import text

from snapshelf.db.database import get_db
from snapshelf.services.lookup_service import BookLookupService, get_lookup_service


router = APIRouter(prefix="/health", tags=["Health"])


class HealthController:
    """Controller for health check operations."""

    def __init__(self, db: Session, lookup: BookLookupService):
        self._db = db
        self._lookup = lookup

    def check_database(self) -> str:
        """Check database connectivity."""
        try:
            self._db.execute(text("SELECT 1"))
            return "healthy"
        except Exception:
            return "unhealthy"

    def check_google_books(self) -> str:
        """Check Google Books reachability."""
        return "healthy" if self._lookup.check_connectivity() else "unreachable"

    def get_health(self) -> dict:
        """Get full health status."""
        db_status = self.check_database()
        books_status = self.check_google_books()

        if db_status != "healthy":
            overall = "unhealthy"
        elif books_status != "healthy":
            overall = "degraded"
        else:
            overall = "healthy"

        return {
            "status": overall,
            "components": {
                "api": "healthy",
                "database": db_status,
                "google_books": books_status,
            },
        }


# Sync handlers run in the threadpool; the Google Books check blocks
@router.get("")
def health_check(
    db: Session = Depends(get_db),
    lookup: BookLookupService = Depends(get_lookup_service),
):
    """
    Health check endpoint.

    Returns API, database and Google Books status.
    """
    return HealthController(db, lookup).get_health()


@router.get("/ready")
def readiness_check(db: Session = Depends(get_db)):
    """Readiness probe: the database answers."""
    return {"ready": HealthController(db, None).check_database() == "healthy"}


@router.get("/live")
async def liveness_check():
    """Liveness probe for container orchestration."""
    return {"alive": True}
