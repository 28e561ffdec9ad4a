"""Operator endpoints for country rules, fraud review, card lifecycle and audit."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from clubpass_api.api.dependencies.engines import get_country_rule_engine
from clubpass_api.api.dependencies.security import require_pos_api_key
from clubpass_api.db.session import get_session
from clubpass_api.models.audit_log import AuditLog
from clubpass_api.models.country_rule import CountryRule
from clubpass_api.models.fraud_event import FraudEvent, FraudSeverity
from clubpass_api.models.member import MembershipType
from clubpass_api.models.nfc_card import NfcCard
from clubpass_api.services.audit import (
    AuditLogFilters,
    AuditService,
    FraudEventAlreadyResolvedError,
    FraudEventNotFoundError,
)
from clubpass_api.services.nfc import (
    CardLifecycleError,
    CardLifecycleService,
    CardMemberNotFoundError,
    CardNotFoundError,
    CountryRuleEngine,
)


router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_pos_api_key)])


class CountryRulePayload(BaseModel):
    countryName: Optional[str] = None
    allowedMembershipTypes: List[MembershipType] = Field(default_factory=list)
    maxDiscountPercentage: float = Field(..., ge=0, le=100)
    currency: Optional[str] = None
    taxRules: dict[str, Any] = Field(default_factory=dict)
    complianceRestrictions: dict[str, Any] = Field(default_factory=dict)
    blackoutPeriods: dict[str, Any] = Field(default_factory=dict)


class CountryRuleResponse(BaseModel):
    countryCode: str
    countryName: Optional[str]
    allowedMembershipTypes: List[str]
    maxDiscountPercentage: float
    currency: Optional[str]
    taxRules: dict[str, Any]
    complianceRestrictions: dict[str, Any]
    blackoutPeriods: dict[str, Any]


class FraudEventResponse(BaseModel):
    id: UUID
    memberId: Optional[UUID]
    cardUid: Optional[str]
    vendorId: Optional[UUID]
    eventType: str
    severity: FraudSeverity
    fraudScore: int
    description: Optional[str]
    metadata: dict[str, Any]
    actionTaken: Optional[str]
    resolved: bool
    resolvedBy: Optional[str]
    resolutionNotes: Optional[str]
    resolvedAt: Optional[datetime]
    createdAt: datetime


class FraudEventResolveRequest(BaseModel):
    resolvedBy: str = Field(..., min_length=1)
    notes: Optional[str] = None


class CardIssueRequest(BaseModel):
    memberId: UUID
    cardUid: str = Field(..., min_length=1)
    isPrimary: bool = True
    expiryDate: Optional[datetime] = None
    adminUserId: Optional[str] = None


class CardBlockRequest(BaseModel):
    reason: str = "admin_block"
    adminUserId: Optional[str] = None


class CardReportRequest(BaseModel):
    reportType: Literal["lost", "stolen", "damaged"]
    adminUserId: Optional[str] = None


class CardReissueRequest(BaseModel):
    newCardUid: str = Field(..., min_length=1)
    adminUserId: Optional[str] = None


class CardActionRequest(BaseModel):
    adminUserId: Optional[str] = None


class CardResponse(BaseModel):
    id: UUID
    memberId: UUID
    cardUid: str
    cardStatus: str
    isPrimary: bool
    expiryDate: Optional[datetime]
    blockedAt: Optional[datetime]
    previousUid: Optional[str]
    issuedAt: datetime


class AuditLogResponse(BaseModel):
    id: UUID
    userType: str
    userId: Optional[str]
    action: str
    resourceType: Optional[str]
    resourceId: Optional[str]
    details: dict[str, Any]
    ipAddress: Optional[str]
    userAgent: Optional[str]
    createdAt: datetime


@router.put("/country-rules/{country_code}", response_model=CountryRuleResponse)
async def upsert_country_rules(
    country_code: str,
    payload: CountryRulePayload,
    engine: CountryRuleEngine = Depends(get_country_rule_engine),
    session: AsyncSession = Depends(get_session),
) -> CountryRuleResponse:
    """Create or replace a country's rules; the cached copy is dropped once the write commits."""

    rule = await engine.upsert_country_rules(
        country_code=country_code.upper(),
        country_name=payload.countryName,
        allowed_membership_types=[item.value for item in payload.allowedMembershipTypes],
        max_discount_percentage=payload.maxDiscountPercentage,
        currency=payload.currency,
        tax_rules=payload.taxRules,
        compliance_restrictions=payload.complianceRestrictions,
        blackout_periods=payload.blackoutPeriods,
    )
    await AuditService(session).log_audit(
        user_type="admin",
        action="country_rules_updated",
        resource_type="country_rule",
        resource_id=rule.country_code,
        details={"maxDiscountPercentage": payload.maxDiscountPercentage},
    )
    await session.commit()
    # A tap between flush and commit may have re-cached the previous rules.
    engine.clear_cache(rule.country_code)
    return _country_rule_response(rule)


@router.get("/country-rules/{country_code}", response_model=CountryRuleResponse)
async def get_country_rules(
    country_code: str,
    engine: CountryRuleEngine = Depends(get_country_rule_engine),
) -> CountryRuleResponse:
    snapshot = await engine.get_country_rules(country_code.upper())
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Country rules not configured")
    return CountryRuleResponse(
        countryCode=snapshot.country_code,
        countryName=snapshot.country_name,
        allowedMembershipTypes=list(snapshot.allowed_membership_types),
        maxDiscountPercentage=snapshot.max_discount_percentage,
        currency=snapshot.currency,
        taxRules=dict(snapshot.tax_rules),
        complianceRestrictions=dict(snapshot.compliance_restrictions),
        blackoutPeriods=dict(snapshot.blackout_periods),
    )


@router.get("/fraud-events", response_model=List[FraudEventResponse])
async def list_fraud_events(
    member_id: Optional[UUID] = Query(default=None, alias="memberId"),
    card_uid: Optional[str] = Query(default=None, alias="cardUid"),
    severity: Optional[FraudSeverity] = Query(default=None),
    resolved: Optional[bool] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> List[FraudEventResponse]:
    events = await AuditService(session).list_fraud_events(
        member_id=member_id,
        card_uid=card_uid,
        severity=severity,
        resolved=resolved,
        limit=limit,
        offset=offset,
    )
    return [_fraud_event_response(event) for event in events]


@router.post("/fraud-events/{event_id}/resolve", response_model=FraudEventResponse)
async def resolve_fraud_event(
    event_id: UUID,
    payload: FraudEventResolveRequest,
    session: AsyncSession = Depends(get_session),
) -> FraudEventResponse:
    try:
        event = await AuditService(session).resolve_fraud_event(
            event_id,
            resolved_by=payload.resolvedBy,
            resolution_notes=payload.notes,
        )
    except FraudEventNotFoundError as error:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error)) from error
    except FraudEventAlreadyResolvedError as error:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error)) from error
    await session.commit()
    await session.refresh(event)
    return _fraud_event_response(event)


@router.post("/cards", response_model=CardResponse, status_code=status.HTTP_201_CREATED)
async def issue_card(
    payload: CardIssueRequest,
    session: AsyncSession = Depends(get_session),
) -> CardResponse:
    service = CardLifecycleService(session)
    try:
        card = await service.issue_card(
            payload.memberId,
            payload.cardUid,
            is_primary=payload.isPrimary,
            expiry_date=payload.expiryDate,
            admin_user_id=payload.adminUserId,
        )
    except CardLifecycleError as error:
        raise _card_http_error(error) from error
    return await _commit_card(session, card)


@router.post("/cards/{card_uid}/block", response_model=CardResponse)
async def block_card(
    card_uid: str,
    payload: CardBlockRequest | None = None,
    session: AsyncSession = Depends(get_session),
) -> CardResponse:
    payload = payload or CardBlockRequest()
    try:
        card = await CardLifecycleService(session).block_card(
            card_uid,
            reason=payload.reason,
            admin_user_id=payload.adminUserId,
        )
    except CardLifecycleError as error:
        raise _card_http_error(error) from error
    return await _commit_card(session, card)


@router.post("/cards/{card_uid}/report", response_model=CardResponse)
async def report_card(
    card_uid: str,
    payload: CardReportRequest,
    session: AsyncSession = Depends(get_session),
) -> CardResponse:
    try:
        card = await CardLifecycleService(session).report_card(
            card_uid,
            payload.reportType,
            admin_user_id=payload.adminUserId,
        )
    except CardLifecycleError as error:
        raise _card_http_error(error) from error
    return await _commit_card(session, card)


@router.post("/cards/{card_uid}/reissue", response_model=CardResponse, status_code=status.HTTP_201_CREATED)
async def reissue_card(
    card_uid: str,
    payload: CardReissueRequest,
    session: AsyncSession = Depends(get_session),
) -> CardResponse:
    try:
        card = await CardLifecycleService(session).reissue_card(
            card_uid,
            payload.newCardUid,
            admin_user_id=payload.adminUserId,
        )
    except CardLifecycleError as error:
        raise _card_http_error(error) from error
    return await _commit_card(session, card)


@router.post("/cards/{card_uid}/unblock", response_model=CardResponse)
async def unblock_card(
    card_uid: str,
    payload: CardActionRequest | None = None,
    session: AsyncSession = Depends(get_session),
) -> CardResponse:
    payload = payload or CardActionRequest()
    try:
        card = await CardLifecycleService(session).unblock_card(card_uid, admin_user_id=payload.adminUserId)
    except CardLifecycleError as error:
        raise _card_http_error(error) from error
    return await _commit_card(session, card)


@router.get("/members/{member_id}/cards", response_model=List[CardResponse])
async def list_member_cards(
    member_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> List[CardResponse]:
    cards = await CardLifecycleService(session).list_member_cards(member_id)
    return [_card_response(card) for card in cards]


@router.get("/audit-logs", response_model=List[AuditLogResponse])
async def list_audit_logs(
    user_type: Optional[str] = Query(default=None, alias="userType"),
    action: Optional[str] = Query(default=None),
    resource_type: Optional[str] = Query(default=None, alias="resourceType"),
    resource_id: Optional[str] = Query(default=None, alias="resourceId"),
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> List[AuditLogResponse]:
    entries = await AuditService(session).list_audit_logs(
        AuditLogFilters(
            user_type=user_type,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=offset,
        )
    )
    return [_audit_log_response(entry) for entry in entries]


def _card_http_error(error: CardLifecycleError) -> HTTPException:
    if isinstance(error, (CardNotFoundError, CardMemberNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))


async def _commit_card(session: AsyncSession, card: NfcCard) -> CardResponse:
    await session.commit()
    await session.refresh(card)
    return _card_response(card)


def _card_response(card: NfcCard) -> CardResponse:
    return CardResponse(
        id=card.id,
        memberId=card.member_id,
        cardUid=card.card_uid,
        cardStatus=getattr(card.card_status, "value", card.card_status),
        isPrimary=card.is_primary,
        expiryDate=card.expiry_date,
        blockedAt=card.blocked_at,
        previousUid=card.previous_uid,
        issuedAt=card.issued_at,
    )


def _country_rule_response(rule: CountryRule) -> CountryRuleResponse:
    return CountryRuleResponse(
        countryCode=rule.country_code,
        countryName=rule.country_name,
        allowedMembershipTypes=list(rule.allowed_membership_types or []),
        maxDiscountPercentage=float(rule.max_discount_percentage),
        currency=rule.currency,
        taxRules=dict(rule.tax_rules or {}),
        complianceRestrictions=dict(rule.compliance_restrictions or {}),
        blackoutPeriods=dict(rule.blackout_periods or {}),
    )


def _fraud_event_response(event: FraudEvent) -> FraudEventResponse:
    return FraudEventResponse(
        id=event.id,
        memberId=event.member_id,
        cardUid=event.card_uid,
        vendorId=event.vendor_id,
        eventType=event.event_type,
        severity=event.severity,
        fraudScore=event.fraud_score,
        description=event.description,
        metadata=dict(event.metadata_json or {}),
        actionTaken=event.action_taken,
        resolved=event.resolved,
        resolvedBy=event.resolved_by,
        resolutionNotes=event.resolution_notes,
        resolvedAt=event.resolved_at,
        createdAt=event.created_at,
    )


def _audit_log_response(entry: AuditLog) -> AuditLogResponse:
    return AuditLogResponse(
        id=entry.id,
        userType=entry.user_type,
        userId=entry.user_id,
        action=entry.action,
        resourceType=entry.resource_type,
        resourceId=entry.resource_id,
        details=dict(entry.details or {}),
        ipAddress=entry.ip_address,
        userAgent=entry.user_agent,
        createdAt=entry.created_at,
    )
