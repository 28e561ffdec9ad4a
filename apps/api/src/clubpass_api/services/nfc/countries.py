"""Country name to two-letter code resolution."""

from __future__ import annotations


# TODO: replace with a full ISO 3166 lookup once vendor onboarding stores codes directly.
COUNTRY_CODES: dict[str, str] = {
    "United Arab Emirates": "AE",
    "UAE": "AE",
    "United States": "US",
    "USA": "US",
    "United Kingdom": "GB",
    "UK": "GB",
    "Saudi Arabia": "SA",
    "KSA": "SA",
    "Qatar": "QA",
    "Kuwait": "KW",
    "Bahrain": "BH",
    "Oman": "OM",
}

_NORMALIZED_CODES = {name.upper(): code for name, code in COUNTRY_CODES.items()}


def resolve_country_code(country_name: str | None) -> str:
    """Map a vendor country name to a code.

    Unknown names fall back to their first two letters upper-cased, so an
    already-coded value such as ``"AE"`` maps to itself.
    """

    if not country_name:
        return ""
    name = country_name.strip()
    if name in COUNTRY_CODES:
        return COUNTRY_CODES[name]
    normalized = name.upper()
    if normalized in _NORMALIZED_CODES:
        return _NORMALIZED_CODES[normalized]
    return normalized[:2]


__all__ = ["COUNTRY_CODES", "resolve_country_code"]
