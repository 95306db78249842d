from fastapi import APIRouter, Depends

from budget_engine.core.config import Settings
from budget_engine.core.deps import get_settings_dep

router = APIRouter(tags=["health"])


@router.get("/health", summary="Liveness check")
async def health(settings: Settings = Depends(get_settings_dep)):
    return {"status": "ok", "version": settings.version}
