from fastapi import APIRouter, Depends

from question_validator.api.deps import get_app_settings, get_database
from question_validator.core.settings import Settings
from question_validator.db.session import Database

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", summary="Basic health check")
async def health_check(
    settings: Settings = Depends(get_app_settings),
    database: Database = Depends(get_database),
) -> dict[str, str]:
    store_ok = await database.ping()
    return {
        "status": "ok",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.app_env,
        "store": "ok" if store_ok else "unavailable",
    }
