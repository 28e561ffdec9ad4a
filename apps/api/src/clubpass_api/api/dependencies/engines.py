"""Request-scoped wiring of NFC services onto process-wide caches."""

from __future__ import annotations

from datetime import timedelta

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from clubpass_api.core.settings import settings
from clubpass_api.db.session import get_session
from clubpass_api.services.nfc import (
    CountryRuleEngine,
    NFCValidationPipeline,
    TTLCache,
)


def _app_cache(request: Request, name: str, ttl_seconds: int) -> TTLCache:
    cache = getattr(request.app.state, name, None)
    if cache is None:
        cache = TTLCache(timedelta(seconds=ttl_seconds))
        setattr(request.app.state, name, cache)
    return cache


def get_rule_cache(request: Request) -> TTLCache:
    return _app_cache(request, "rule_cache", settings.country_rule_cache_ttl_seconds)


def get_offer_cache(request: Request) -> TTLCache:
    return _app_cache(request, "offer_cache", settings.offer_cache_ttl_seconds)


async def get_validation_pipeline(
    session: AsyncSession = Depends(get_session),
    rule_cache: TTLCache = Depends(get_rule_cache),
    offer_cache: TTLCache = Depends(get_offer_cache),
) -> NFCValidationPipeline:
    return NFCValidationPipeline(session, rule_cache=rule_cache, offer_cache=offer_cache)


async def get_country_rule_engine(
    session: AsyncSession = Depends(get_session),
    rule_cache: TTLCache = Depends(get_rule_cache),
) -> CountryRuleEngine:
    return CountryRuleEngine(session, cache=rule_cache)
