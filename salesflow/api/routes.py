from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from salesflow.core.auth import AuthUser, get_current_user
from salesflow.core.config import get_settings
from salesflow.metrics import generate_metrics_payload, metrics_content_type
from salesflow.sales.api import routers as sales_routers

router = APIRouter()
for sales_router in sales_routers:
    router.include_router(sales_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
        "store_backend": settings.store_backend,
    }


@router.get("/me", tags=["auth"])
async def me(user: AuthUser = Depends(get_current_user)) -> dict[str, str | list[str]]:
    return {
        "sub": user.sub,
        "roles": user.roles,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if not user.has_role("system.metrics.read"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: system.metrics.read")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
