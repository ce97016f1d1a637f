"""
Cellarman configuration.

Usage in settings.py:
    CELLARMAN = {
        "VOLUME_TOLERANCE": "0.5",
        "CIP_INTERVAL_DAYS": 14,
        "DEFAULT_PHASE_DAYS": {"fermentation": 14, "conditioning": 21, "bright": 7},
        "BLENDING": {"require_style_match": True},
    }
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from django.conf import settings


def _default_phase_days() -> dict[str, int]:
    return {'fermentation': 14, 'conditioning': 14, 'bright': 7, 'packaging': 2}


def _default_blending() -> dict[str, Any]:
    return {
        'require_recipe_match': False,
        'require_yeast_match': True,
        'require_phase_match': True,
        'require_style_match': False,
        'max_age_difference_hours': 48,
        'max_blend_sources': 4,
    }


@dataclass
class CellarmanSettings:
    """Cellarman configuration settings."""

    # Max |total - sum(allocations)| still accepted as conserved (litres)
    VOLUME_TOLERANCE: Decimal = Decimal('0.5')

    # Floor for a suggested allocation (litres)
    MIN_ALLOCATION_VOLUME: Decimal = Decimal('1')

    # Days between cleanings when a tank has no interval of its own
    CIP_INTERVAL_DAYS: int = 14

    # Planned duration per lot phase when no window end is given
    DEFAULT_PHASE_DAYS: dict[str, int] = field(default_factory=_default_phase_days)

    # Fallback blending policy when no active BlendingConfig row exists
    BLENDING: dict[str, Any] = field(default_factory=_default_blending)

    def __post_init__(self):
        self.VOLUME_TOLERANCE = Decimal(str(self.VOLUME_TOLERANCE))
        self.MIN_ALLOCATION_VOLUME = Decimal(str(self.MIN_ALLOCATION_VOLUME))
        self.DEFAULT_PHASE_DAYS = {**_default_phase_days(), **self.DEFAULT_PHASE_DAYS}
        self.BLENDING = {**_default_blending(), **self.BLENDING}


def get_cellarman_settings() -> CellarmanSettings:
    """Load settings from Django settings."""
    user_settings: dict[str, Any] = getattr(settings, "CELLARMAN", {})
    return CellarmanSettings(**{
        k: v for k, v in user_settings.items()
        if k in CellarmanSettings.__dataclass_fields__
    })


class _LazySettings:
    """Lazy proxy that re-reads settings on every attribute access."""

    def __getattr__(self, name):
        return getattr(get_cellarman_settings(), name)


cellarman_settings = _LazySettings()
