"""POS-facing NFC tap validation endpoint."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from clubpass_api.api.dependencies.engines import get_validation_pipeline
from clubpass_api.api.dependencies.security import require_pos_api_key
from clubpass_api.db.session import get_session
from clubpass_api.services.audit import AuditService
from clubpass_api.services.nfc import NFCValidationPipeline, TapRequest


router = APIRouter(prefix="/nfc", tags=["NFC"])


class TapValidationRequest(BaseModel):
    cardUid: str = Field(..., min_length=1, description="UID read from the member's card")
    vendorId: UUID
    posReaderId: str = Field(..., min_length=1)
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    transactionAmount: float | None = Field(default=None, ge=0)


@router.post(
    "/validate",
    dependencies=[Depends(require_pos_api_key)],
    summary="Validate an NFC tap from a vendor POS",
)
async def validate_tap(
    payload: TapValidationRequest,
    request: Request,
    pipeline: NFCValidationPipeline = Depends(get_validation_pipeline),
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    """Always answers 200; rejections carry a machine-readable ``reason``."""

    decision = await pipeline.validate_tap(
        TapRequest(
            card_uid=payload.cardUid,
            vendor_id=payload.vendorId,
            pos_reader_id=payload.posReaderId,
            latitude=payload.latitude,
            longitude=payload.longitude,
            transaction_amount=payload.transactionAmount,
        )
    )

    await AuditService(session).log_audit(
        user_type="api",
        action="nfc_validation_request",
        resource_type="nfc_tap",
        resource_id=decision.tap_log_id,
        details={
            "vendorId": payload.vendorId,
            "cardUid": payload.cardUid,
            "approved": decision.approved,
        },
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    await session.commit()

    return decision.as_response()
