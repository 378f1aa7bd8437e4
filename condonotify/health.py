"""
Health check endpoints
Used by the hosting platform, the external cron and ops.
"""

from fastapi import APIRouter, Depends

from condonotify.config import DispatcherSettings, get_settings
from condonotify.db import test_db_connection

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
def health_check(settings: DispatcherSettings = Depends(get_settings)):
    # dry_run here means nothing reaches residents
    return {"status": "healthy", "outbound_mode": settings.outbound_mode}


@router.get("/db")
def db_health_check():
    try:
        test_db_connection()
        return {"database": "healthy"}
    except Exception as e:
        return {"database": "unhealthy", "error": str(e)}
