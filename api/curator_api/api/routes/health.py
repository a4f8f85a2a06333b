from fastapi import APIRouter, Depends

from curator_api.core.config import Settings, get_settings

router = APIRouter()


@router.get("/healthz")
async def healthz(settings: Settings = Depends(get_settings)) -> dict[str, str]:
    return {"status": "ok", "service": settings.app_name, "environment": settings.environment}
