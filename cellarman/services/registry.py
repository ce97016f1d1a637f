"""
Tank registry — read-only views of vessels and open lots, plus CIP completion.
"""

import logging
from collections import defaultdict
from datetime import datetime

from django.db import transaction
from django.db.models import Count, Prefetch
from django.utils import timezone

from cellarman.conf import cellarman_settings
from cellarman.exceptions import NotFoundError
from cellarman.models.assignment import TankAssignment
from cellarman.models.enums import AssignmentStatus, TankStatus
from cellarman.models.lot import Lot
from cellarman.models.tank import Tank
from cellarman.services.availability import AvailabilityChecker
from cellarman.services.planner import TankSnapshot

logger = logging.getLogger('cellarman')


class TankRegistry:
    """Tank and lot query methods."""

    @classmethod
    def get_tank(cls, ref) -> Tank:
        """Tank by pk or code."""
        if isinstance(ref, Tank):
            return ref
        lookup = {'pk': ref} if isinstance(ref, int) or str(ref).isdigit() else {'code': ref}
        try:
            return Tank.objects.get(**lookup)
        except Tank.DoesNotExist:
            raise NotFoundError(tank=str(ref)) from None

    @classmethod
    def list_candidate_tanks(cls, phase, exclude_needs_cip: bool = True,
                             exclude_occupied: bool = True, window=None) -> list[Tank]:
        """
        Tanks that may host a lot in `phase`.

        MAINTENANCE tanks are never candidates. By default tanks that need
        cleaning, are OCCUPIED, or hold an ACTIVE assignment are left out too.
        With a window, tanks booked during it are dropped as well.
        Each tank comes with `active_assignments` prefetched.

        Returns:
            List ordered by capacity, then code
        """
        qs = Tank.objects.operational().prefetch_related(
            Prefetch(
                'assignments',
                queryset=TankAssignment.objects.blocking().select_related('lot'),
                to_attr='active_assignments',
            )
        ).order_by('capacity', 'code')

        if exclude_occupied:
            qs = qs.exclude(status=TankStatus.OCCUPIED).exclude(
                assignments__status=AssignmentStatus.ACTIVE,
            )
        if exclude_needs_cip:
            qs = qs.exclude(status=TankStatus.CLEANING)

        # Capabilities are a JSON list; filter in Python for portability
        candidates = []
        for tank in qs.distinct():
            if not tank.supports(phase):
                continue
            if exclude_needs_cip and tank.needs_cip:
                logger.warning(
                    "cellar.tank.cip_overdue",
                    extra={"tank": tank.code, "next_cip_at": str(tank.next_cip_at)},
                )
                continue
            candidates.append(tank)

        if window is not None and candidates:
            available = AvailabilityChecker.check_availability([t.pk for t in candidates], window)
            candidates = [t for t in candidates if available[t.pk]]
        return candidates

    @classmethod
    def snapshots(cls, tank_ids) -> dict[int, TankSnapshot]:
        """Planner snapshots of the given tanks, by id. Unknown ids are left out."""
        return {t.pk: TankSnapshot.from_tank(t) for t in Tank.objects.filter(pk__in=list(tank_ids))}

    @classmethod
    def list_active_lots(cls, phase=None) -> list[dict]:
        """
        Open lots (PLANNED or ACTIVE) for blend targets.

        Split parents are left out: their child lots hold the beer.

        Returns:
            [{id, code, phase, status, tank_id, tank_name, total_volume, batch_count}]
        """
        lots = Lot.objects.open().filter(children__isnull=True).annotate(
            batch_count=Count('contributions', distinct=True),
        ).order_by('code')
        if phase:
            lots = lots.in_phase(phase)

        result = []
        for lot in lots:
            assignment = lot.current_assignment
            result.append({
                'id': lot.pk,
                'code': lot.code,
                'phase': lot.phase,
                'status': lot.status,
                'tank_id': assignment.tank_id if assignment else None,
                'tank_name': assignment.tank.name if assignment else None,
                'total_volume': lot.total_volume,
                'batch_count': lot.batch_count,
            })
        return result

    @classmethod
    def occupancy(cls, tank_ids, start: datetime, end: datetime) -> dict[int, list[TankAssignment]]:
        """Non-cancelled assignments per tank intersecting [start, end)."""
        assignments = TankAssignment.objects.filter(
            tank_id__in=list(tank_ids),
        ).exclude(
            status=AssignmentStatus.CANCELLED,
        ).overlapping(start, end).select_related('lot').order_by('planned_start')

        grouped = defaultdict(list)
        for assignment in assignments:
            grouped[assignment.tank_id].append(assignment)
        return {tank_id: grouped.get(tank_id, []) for tank_id in tank_ids}

    @classmethod
    def complete_cip(cls, tank, performed_at: datetime | None = None) -> Tank:
        """
        Record a finished clean-in-place.

        Tank goes back to AVAILABLE with next_cip_at pushed out by its
        interval (or CELLARMAN["CIP_INTERVAL_DAYS"]). A tank under
        MAINTENANCE stays there.
        """
        with transaction.atomic():
            tank = Tank.objects.select_for_update().get(pk=cls.get_tank(tank).pk)
            previous = tank.status
            tank.mark_cleaned(
                performed_at or timezone.now(),
                interval_days=cellarman_settings.CIP_INTERVAL_DAYS,
            )
            if previous == TankStatus.MAINTENANCE:
                tank.status = TankStatus.MAINTENANCE
            elif tank.assignments.filter(status=AssignmentStatus.ACTIVE).exists():
                tank.status = TankStatus.OCCUPIED
            tank.save(update_fields=['status', 'last_cip_at', 'next_cip_at', 'updated_at'])

        logger.info(
            "cellar.tank.cip_completed",
            extra={
                "tank": tank.code,
                "previous_status": previous,
                "next_cip_at": str(tank.next_cip_at),
            },
        )
        return tank
