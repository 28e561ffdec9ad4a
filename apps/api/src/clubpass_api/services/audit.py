"""Audit trail and fraud event persistence."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clubpass_api.models.audit_log import AuditLog
from clubpass_api.models.fraud_event import FraudEvent, FraudSeverity


class FraudEventNotFoundError(RuntimeError):
    """Raised when resolving a fraud event that does not exist."""


class FraudEventAlreadyResolvedError(RuntimeError):
    """Raised when a fraud event has already been closed by an operator."""


@dataclass(slots=True)
class AuditLogFilters:
    user_type: str | None = None
    action: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int = 100
    offset: int = 0


class AuditService:
    """Writes audit rows and fraud events for the NFC pipeline and admin tooling."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def log_audit(
        self,
        *,
        user_type: str,
        action: str,
        user_id: str | None = None,
        resource_type: str | None = None,
        resource_id: str | UUID | None = None,
        details: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditLog | None:
        """Record an audit row. Failures are logged and swallowed.

        The insert runs in a savepoint so a rejected row leaves the caller's
        transaction usable.
        """

        try:
            async with self._session.begin_nested():
                entry = AuditLog(
                    user_type=user_type,
                    user_id=user_id,
                    action=action,
                    resource_type=resource_type,
                    resource_id=str(resource_id) if resource_id is not None else None,
                    details=_jsonable(details or {}),
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
                self._session.add(entry)
                await self._session.flush()
        except Exception as error:
            logger.warning("audit.log_failed", action=action, error=str(error))
            return None
        return entry

    async def create_fraud_event(
        self,
        *,
        member_id: UUID | None,
        card_uid: str | None,
        vendor_id: UUID | None,
        event_type: str,
        severity: FraudSeverity,
        fraud_score: int,
        description: str | None,
        metadata: dict[str, Any] | None,
        action_taken: str | None,
    ) -> FraudEvent:
        """Insert a fraud event and its audit row.

        Insert errors propagate to the caller after the savepoint is rolled
        back; the surrounding transaction stays usable.
        """

        async with self._session.begin_nested():
            event = FraudEvent(
                member_id=member_id,
                card_uid=card_uid,
                vendor_id=vendor_id,
                event_type=event_type,
                severity=severity,
                fraud_score=fraud_score,
                description=description,
                metadata_json=_jsonable(metadata or {}),
                action_taken=action_taken,
            )
            self._session.add(event)
            await self._session.flush()

        await self.log_audit(
            user_type="system",
            action="fraud_event_created",
            resource_type="fraud_event",
            resource_id=event.id,
            details={
                "memberId": member_id,
                "cardUid": card_uid,
                "eventType": event_type,
                "severity": severity.value,
                "fraudScore": fraud_score,
            },
        )
        logger.info(
            "fraud.event_created",
            event_id=str(event.id),
            event_type=event_type,
            severity=severity.value,
            fraud_score=fraud_score,
        )
        return event

    async def list_audit_logs(self, filters: AuditLogFilters | None = None) -> Sequence[AuditLog]:
        filters = filters or AuditLogFilters()
        stmt = select(AuditLog)
        if filters.user_type:
            stmt = stmt.where(AuditLog.user_type == filters.user_type)
        if filters.action:
            stmt = stmt.where(AuditLog.action == filters.action)
        if filters.resource_type:
            stmt = stmt.where(AuditLog.resource_type == filters.resource_type)
        if filters.resource_id:
            stmt = stmt.where(AuditLog.resource_id == filters.resource_id)
        if filters.start_date:
            stmt = stmt.where(AuditLog.created_at >= filters.start_date)
        if filters.end_date:
            stmt = stmt.where(AuditLog.created_at <= filters.end_date)
        stmt = stmt.order_by(AuditLog.created_at.desc()).limit(filters.limit).offset(filters.offset)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def list_fraud_events(
        self,
        *,
        member_id: UUID | None = None,
        card_uid: str | None = None,
        resolved: bool | None = None,
        severity: FraudSeverity | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Sequence[FraudEvent]:
        stmt = select(FraudEvent)
        if member_id is not None:
            stmt = stmt.where(FraudEvent.member_id == member_id)
        if card_uid:
            stmt = stmt.where(FraudEvent.card_uid == card_uid)
        if resolved is not None:
            stmt = stmt.where(FraudEvent.resolved.is_(resolved))
        if severity is not None:
            stmt = stmt.where(FraudEvent.severity == severity)
        stmt = stmt.order_by(FraudEvent.created_at.desc()).limit(limit).offset(offset)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def resolve_fraud_event(
        self,
        event_id: UUID,
        *,
        resolved_by: str,
        resolution_notes: str | None = None,
    ) -> FraudEvent:
        """Close a fraud event. Only the resolution fields are touched."""

        event = await self._session.get(FraudEvent, event_id)
        if event is None:
            raise FraudEventNotFoundError(f"Fraud event {event_id} not found")
        if event.resolved:
            raise FraudEventAlreadyResolvedError(f"Fraud event {event_id} already resolved")

        event.resolved = True
        event.resolved_by = resolved_by
        event.resolution_notes = resolution_notes
        event.resolved_at = datetime.now(timezone.utc)
        await self._session.flush()

        await self.log_audit(
            user_type="admin",
            user_id=resolved_by,
            action="fraud_event_resolved",
            resource_type="fraud_event",
            resource_id=event.id,
            details={"notes": resolution_notes},
        )
        return event


def _jsonable(value: Any) -> Any:
    """Coerce UUIDs, datetimes and enums nested in audit payloads into JSON primitives."""

    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(item) for item in value]
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if hasattr(value, "value") and isinstance(getattr(value, "value"), str):
        return value.value
    return value


__all__ = [
    "AuditLogFilters",
    "AuditService",
    "FraudEventAlreadyResolvedError",
    "FraudEventNotFoundError",
]
