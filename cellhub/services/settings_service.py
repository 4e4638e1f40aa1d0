"""
Organization settings: application defaults with per-organization overrides.

Defaults live in cellhub.config (MULTIPLICATION_MIN_MEMBERS, ...). An
organization overrides any of them by storing the lower-case key in
Organization.settings, e.g. {"leadership_threshold": 70}.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import current_app, has_app_context

logger = logging.getLogger(__name__)

# settings key -> app config key
SETTING_KEYS = {
    "min_members": "MULTIPLICATION_MIN_MEMBERS",
    "leadership_threshold": "LEADERSHIP_THRESHOLD",
    "stability_placeholder": "STABILITY_PLACEHOLDER",
    "preparing_margin": "READINESS_PREPARING_MARGIN",
    "readiness_window_days": "READINESS_WINDOW_DAYS",
    "slow_growth_pct": "ALERT_SLOW_GROWTH_PCT",
    "low_attendance_pct": "ALERT_LOW_ATTENDANCE_PCT",
    "alert_default_limit": "ALERT_DEFAULT_LIMIT",
}

# Used when no application context is active (pure unit tests)
_FALLBACKS = {
    "min_members": 12,
    "leadership_threshold": 60.0,
    "stability_placeholder": 80.0,
    "preparing_margin": 0.2,
    "readiness_window_days": 90,
    "slow_growth_pct": 5.0,
    "low_attendance_pct": 60.0,
    "alert_default_limit": 50,
}


@dataclass(frozen=True)
class OrgSettings:
    min_members: int = 12
    leadership_threshold: float = 60.0
    stability_placeholder: float = 80.0
    preparing_margin: float = 0.2
    readiness_window_days: int = 90
    slow_growth_pct: float = 5.0
    low_attendance_pct: float = 60.0
    alert_default_limit: int = 50


def get_org_setting(organization, key: str):
    """Return one setting for the organization, falling back to app config."""
    if key not in SETTING_KEYS:
        raise KeyError(f"Unknown organization setting: {key}")
    overrides = (organization.settings or {}) if organization is not None else {}
    if key in overrides and overrides[key] is not None:
        return overrides[key]
    if has_app_context():
        return current_app.config.get(SETTING_KEYS[key], _FALLBACKS[key])
    return _FALLBACKS[key]


def resolve_settings(organization) -> OrgSettings:
    """All settings for an organization as one immutable value."""
    values = {}
    for key in SETTING_KEYS:
        raw = get_org_setting(organization, key)
        field_type = type(_FALLBACKS[key])
        try:
            values[key] = field_type(raw)
        except (TypeError, ValueError):
            logger.warning(
                "Ignoring invalid setting %s=%r", key, raw,
                extra={"organization_id": getattr(organization, "id", None)},
            )
            values[key] = field_type(_FALLBACKS[key])
    return OrgSettings(**values)
