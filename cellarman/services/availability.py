"""
Tank availability — window overlap checks against existing bookings.

Read-only. Results are recomputed on every call; callers repeat the
check inside the write transaction before committing.
"""

from datetime import datetime
from typing import Iterable

from cellarman.models.assignment import TankAssignment
from cellarman.services.planner import Window


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval overlap: touching endpoints do not overlap."""
    return a_start < b_end and a_end > b_start


class AvailabilityChecker:
    """Per-tank availability for a window."""

    @classmethod
    def conflicts(cls, tank_ids: Iterable[int], window: Window, exclude_lot=None):
        """PLANNED/ACTIVE assignments on tank_ids overlapping the window."""
        qs = TankAssignment.objects.filter(
            tank_id__in=list(tank_ids),
        ).blocking().overlapping(window.start, window.end)
        if exclude_lot is not None:
            qs = qs.exclude(lot=exclude_lot)
        return qs.select_related('tank', 'lot')

    @classmethod
    def check_availability(cls, tank_ids: Iterable[int], window: Window,
                           exclude_lot=None) -> dict[int, bool]:
        """
        Map tank id -> available for the window.

        Args:
            tank_ids: Tanks to check
            window: Requested [start, end)
            exclude_lot: Ignore this lot's own bookings (blend target,
                extending a lot in place)

        Returns:
            {tank_id: True/False} for every requested id
        """
        ids = list(dict.fromkeys(tank_ids))
        busy = set(
            cls.conflicts(ids, window, exclude_lot=exclude_lot).values_list('tank_id', flat=True)
        )
        return {tank_id: tank_id not in busy for tank_id in ids}

    @classmethod
    def is_available(cls, tank_id: int, window: Window, exclude_lot=None) -> bool:
        return cls.check_availability([tank_id], window, exclude_lot=exclude_lot)[tank_id]
