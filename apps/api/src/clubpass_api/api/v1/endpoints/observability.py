"""Observability endpoints for NFC tap validation."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from clubpass_api.api.dependencies.security import require_pos_api_key
from clubpass_api.observability.nfc import get_nfc_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get(
    "/nfc",
    dependencies=[Depends(require_pos_api_key)],
    summary="NFC tap validation observability snapshot",
)
async def get_nfc_snapshot() -> dict[str, object]:
    """Aggregated approval, rejection, fraud and fallback counters for this process."""
    return get_nfc_store().snapshot().as_dict()


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} gauge",
        f"{name}{label_fragment} {value}",
    ]


@router.get(
    "/prometheus",
    dependencies=[Depends(require_pos_api_key)],
    summary="Prometheus-formatted NFC metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    snapshot = get_nfc_store().snapshot()
    lines: list[str] = []
    for outcome, count in sorted(snapshot.taps.items()):
        lines.extend(_format_metric("clubpass_nfc_taps", "NFC taps by outcome", count, {"outcome": outcome}))
    for reason, count in sorted(snapshot.rejections.items()):
        lines.extend(_format_metric("clubpass_nfc_rejections", "Rejected taps by reason", count, {"reason": reason}))
    for severity, count in sorted(snapshot.fraud_events.items()):
        lines.extend(
            _format_metric("clubpass_fraud_events", "Fraud events by severity", count, {"severity": severity})
        )
    for component, count in sorted(snapshot.fallbacks.items()):
        lines.extend(
            _format_metric("clubpass_engine_fallbacks", "Engine fallbacks by component", count, {"component": component})
        )
    return PlainTextResponse("\n".join(lines) + "\n" if lines else "")
