"""In-memory observability helper for NFC tap validation."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class NfcObservabilitySnapshot:
    taps: Dict[str, int]
    rejections: Dict[str, int]
    fraud_events: Dict[str, int]
    fallbacks: Dict[str, int]
    last_approved_at: datetime | None
    last_rejected_at: datetime | None
    last_rejection_reason: str | None

    def as_dict(self) -> Dict[str, object]:
        return {
            "taps": dict(self.taps),
            "rejections": dict(self.rejections),
            "fraud_events": dict(self.fraud_events),
            "fallbacks": dict(self.fallbacks),
            "events": {
                "last_approved_at": self.last_approved_at.isoformat() if self.last_approved_at else None,
                "last_rejected_at": self.last_rejected_at.isoformat() if self.last_rejected_at else None,
                "last_rejection_reason": self.last_rejection_reason,
            },
        }


@dataclass
class NfcObservabilityStore:
    _lock: Lock = field(default_factory=Lock)
    _taps: Counter = field(default_factory=Counter)
    _rejections: Counter = field(default_factory=Counter)
    _fraud_events: Counter = field(default_factory=Counter)
    _fallbacks: Counter = field(default_factory=Counter)
    _last_approved_at: datetime | None = None
    _last_rejected_at: datetime | None = None
    _last_rejection_reason: str | None = None

    def record_approval(self, *, offer_applied: bool) -> None:
        with self._lock:
            self._taps["approved"] += 1
            if offer_applied:
                self._taps["offers_applied"] += 1
            self._last_approved_at = _utcnow()

    def record_rejection(self, reason: str | None) -> None:
        with self._lock:
            key = reason or "unknown"
            self._taps["rejected"] += 1
            self._rejections[key] += 1
            self._last_rejected_at = _utcnow()
            self._last_rejection_reason = key

    def record_fraud_event(self, severity: str) -> None:
        with self._lock:
            self._fraud_events[severity] += 1

    def record_fallback(self, component: str) -> None:
        """Count an engine that swallowed an internal error and returned its safe default."""

        with self._lock:
            self._fallbacks[component] += 1

    def snapshot(self) -> NfcObservabilitySnapshot:
        with self._lock:
            return NfcObservabilitySnapshot(
                taps=dict(self._taps),
                rejections=dict(self._rejections),
                fraud_events=dict(self._fraud_events),
                fallbacks=dict(self._fallbacks),
                last_approved_at=self._last_approved_at,
                last_rejected_at=self._last_rejected_at,
                last_rejection_reason=self._last_rejection_reason,
            )

    def reset(self) -> None:
        with self._lock:
            self._taps.clear()
            self._rejections.clear()
            self._fraud_events.clear()
            self._fallbacks.clear()
            self._last_approved_at = None
            self._last_rejected_at = None
            self._last_rejection_reason = None


_NFC_STORE = NfcObservabilityStore()


def get_nfc_store() -> NfcObservabilityStore:
    return _NFC_STORE


__all__ = ["NfcObservabilitySnapshot", "NfcObservabilityStore", "get_nfc_store"]
