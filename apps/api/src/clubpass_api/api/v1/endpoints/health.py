from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from clubpass_api.db.session import get_session


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "disabled", "error"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
        components["database"] = ComponentStatus(status="ready")
    except Exception as error:
        logger.warning("health.database_unreachable", error=str(error))
        components["database"] = ComponentStatus(status="error", detail=str(error))
        status = "error"

    for name in ("rule_cache", "offer_cache"):
        cache = getattr(request.app.state, name, None)
        if cache is None:
            components[name] = ComponentStatus(status="disabled", detail="Cache not initialised yet")
            if status == "ready":
                status = "degraded"
        else:
            components[name] = ComponentStatus(status="ready", detail=f"{len(cache)} entries")

    return ReadinessPayload(status=status, components=components)
