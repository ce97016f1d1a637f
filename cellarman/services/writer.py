"""
Lot/assignment writer — commits a validated Plan.

All work happens in one transaction.atomic() block:
    1. lock target tanks (select_for_update, pk order)
    2. reject duplicates at batch/lot + phase granularity
    3. re-check capacity and window overlap under the lock
    4. create/update lots, contributions and PLANNED assignments

Tanks keep their status: a committed plan reserves, it does not occupy.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from django.db import IntegrityError, transaction
from django.db.models import Q

from cellarman.exceptions import (
    CapacityExceededError,
    CellarError,
    ConcurrentModificationError,
    DuplicatePlanError,
    NotFoundError,
)
from cellarman.models.assignment import TankAssignment
from cellarman.models.enums import BLOCKING_ASSIGNMENT_STATUSES, LotStatus
from cellarman.models.lot import Lot, LotBatch
from cellarman.models.reading import Reading
from cellarman.models.tank import Tank
from cellarman.services.planner import AllocationMode, Plan

logger = logging.getLogger('cellarman')

HUNDRED = Decimal('100')
VOLUME_QUANT = Decimal('0.001')
PERCENT_QUANT = Decimal('0.001')
RATIO_QUANT = Decimal('0.000001')


@dataclass
class CommitResult:
    """Entities written by a commit, returned so callers need not re-query."""

    lot: Lot
    lots: list[Lot] = field(default_factory=list)
    assignments: list[TankAssignment] = field(default_factory=list)

    @property
    def assignment_ids(self) -> list[int]:
        return [a.pk for a in self.assignments]

    def as_dict(self) -> dict[str, Any]:
        return {
            'lot_id': self.lot.pk,
            'lot_code': self.lot.code,
            'lot_ids': [lot.pk for lot in self.lots],
            'assignment_ids': self.assignment_ids,
        }


def _percentage(volume: Decimal, batch_volume: Decimal) -> Decimal:
    if not batch_volume:
        return Decimal('0')
    return (volume / batch_volume * HUNDRED).quantize(PERCENT_QUANT)


class LotWriter:
    """Persists plans as lots and tank assignments."""

    @classmethod
    def commit(cls, plan: Plan, batch=None, source_lot=None, notes: str = '',
               readings=None, user=None) -> CommitResult:
        """
        Commit a plan.

        Args:
            plan: Validated plan from the planner
            batch: Batch whose wort is placed (start of fermentation)
            source_lot: Lot being moved (phase transitions)
            notes: Free text copied to new lots/assignments
            readings: Optional [{gravity, temperature, notes}] to record

        Returns:
            CommitResult with the lot (or split parent), every lot written
            and the assignments created/updated

        Raises:
            DuplicatePlanError: Batch/lot already planned for this phase
            ConcurrentModificationError: Tank claimed by another request
            CapacityExceededError: Capacity changed since planning
        """
        if batch is None and source_lot is None:
            raise NotFoundError(detail='batch or source_lot required')

        try:
            with transaction.atomic():
                tanks = cls._lock_tanks(plan)
                target_lot = None
                if plan.mode == AllocationMode.BLEND:
                    target_lot = cls._lock_target_lot(plan.target_lot_id)

                cls._check_duplicate(plan, batch, source_lot)
                cls._recheck(plan, tanks, target_lot, exclude_lot=target_lot or source_lot)

                if plan.mode == AllocationMode.BLEND:
                    result = cls._commit_blend(plan, target_lot, batch, source_lot, notes)
                elif plan.mode == AllocationMode.SPLIT and len(plan.allocations) > 1:
                    result = cls._commit_split(plan, batch, source_lot, notes)
                else:
                    result = cls._commit_single(plan, batch, source_lot, notes)

                if readings:
                    cls._record_readings(readings, batch, source_lot, result.lot)
        except IntegrityError as exc:
            logger.warning(
                "cellar.plan.conflict",
                extra={"tanks": list(plan.tank_ids), "phase": plan.phase, "error": str(exc)},
            )
            raise ConcurrentModificationError(tank_ids=list(plan.tank_ids)) from exc

        logger.info(
            "cellar.plan.committed",
            extra={
                "mode": plan.mode.value,
                "phase": plan.phase,
                "lot": result.lot.code,
                "assignments": result.assignment_ids,
                "volume": str(plan.total_volume),
                "user": str(user) if user else None,
            },
        )
        return result

    # ══════════════════════════════════════════════════════════════
    # CHECKS
    # ══════════════════════════════════════════════════════════════

    @classmethod
    def _lock_tanks(cls, plan: Plan) -> dict[int, Tank]:
        tanks = {
            t.pk: t
            for t in Tank.objects.select_for_update().filter(pk__in=plan.tank_ids).order_by('pk')
        }
        missing = [tid for tid in plan.tank_ids if tid not in tanks]
        if missing:
            raise NotFoundError(tank_ids=missing)
        return tanks

    @classmethod
    def _lock_target_lot(cls, lot_id) -> Lot:
        try:
            return Lot.objects.select_for_update().get(pk=lot_id)
        except Lot.DoesNotExist:
            raise NotFoundError(lot_id=lot_id) from None

    @classmethod
    def _check_duplicate(cls, plan: Plan, batch, source_lot) -> None:
        existing = TankAssignment.objects.blocking().filter(phase=plan.phase)
        if source_lot is not None:
            existing = existing.filter(Q(lot=source_lot) | Q(lot__parent=source_lot))
        else:
            existing = existing.filter(
                lot__contributions__batch=batch,
                lot__status__in=[LotStatus.PLANNED, LotStatus.ACTIVE],
            )
        duplicate = existing.first()
        if duplicate is not None:
            raise DuplicatePlanError(
                assignment_id=duplicate.pk,
                phase=plan.phase,
                batch_id=batch.pk if batch is not None else None,
                lot_id=source_lot.pk if source_lot is not None else None,
            )

    @classmethod
    def _recheck(cls, plan: Plan, tanks: dict[int, Tank], target_lot, exclude_lot) -> None:
        """Repeat capacity and overlap checks against locked rows."""
        for allocation in plan.allocations:
            tank = tanks[allocation.tank_id]
            requested = allocation.volume
            if target_lot is not None:
                requested += target_lot.total_volume
            if requested > tank.capacity:
                raise CapacityExceededError(
                    tank_id=tank.pk, tank_name=tank.name,
                    capacity=tank.capacity, requested=requested,
                )

        conflicts = TankAssignment.objects.filter(
            tank_id__in=plan.tank_ids,
        ).blocking().overlapping(plan.window.start, plan.window.end)
        if exclude_lot is not None:
            conflicts = conflicts.exclude(lot=exclude_lot)
        conflict = conflicts.first()
        if conflict is not None:
            logger.warning(
                "cellar.plan.stale",
                extra={"tank_id": conflict.tank_id, "assignment_id": conflict.pk},
            )
            raise ConcurrentModificationError(tank_id=conflict.tank_id, assignment_id=conflict.pk)

    # ══════════════════════════════════════════════════════════════
    # WRITES
    # ══════════════════════════════════════════════════════════════

    @classmethod
    def _new_assignment(cls, plan: Plan, tank_id: int, lot: Lot, volume: Decimal,
                        notes: str, **flags) -> TankAssignment:
        return TankAssignment.objects.create(
            tank_id=tank_id,
            lot=lot,
            phase=plan.phase,
            planned_start=plan.window.start,
            planned_end=plan.window.end,
            planned_volume=volume,
            notes=notes,
            **flags,
        )

    @classmethod
    def _contribute(cls, lot: Lot, batch, volume: Decimal) -> LotBatch:
        """Add volume from batch to lot's contributions."""
        contribution, created = LotBatch.objects.get_or_create(
            lot=lot,
            batch=batch,
            defaults={'volume_contribution': volume, 'percentage': _percentage(volume, batch.volume)},
        )
        if not created:
            contribution.volume_contribution += volume
            contribution.percentage = _percentage(contribution.volume_contribution, batch.volume)
            contribution.save(update_fields=['volume_contribution', 'percentage'])
        return contribution

    @classmethod
    def _inherit(cls, lot: Lot, source_lot: Lot, volume: Decimal) -> None:
        """Give lot `volume` with the same batch composition as source_lot."""
        contributions = list(source_lot.contributions.select_related('batch'))
        total = sum((c.volume_contribution for c in contributions), Decimal('0'))
        if not total:
            return
        assigned = Decimal('0')
        for index, contribution in enumerate(contributions):
            if index == len(contributions) - 1:
                share = volume - assigned
            else:
                share = (volume * contribution.volume_contribution / total).quantize(VOLUME_QUANT)
            assigned += share
            cls._contribute(lot, contribution.batch, share)

    @classmethod
    def rescale(cls, lot: Lot, volume: Decimal) -> Lot:
        """
        Set lot volume after a loss, scaling every contribution alike.

        Saves lot phase too, so callers can change both in one go.
        """
        contributions = list(lot.contributions.select_related('batch'))
        total = sum((c.volume_contribution for c in contributions), Decimal('0'))
        if not total:
            contributions = []
        assigned = Decimal('0')
        for index, contribution in enumerate(contributions):
            if index == len(contributions) - 1:
                contribution.volume_contribution = volume - assigned
            else:
                contribution.volume_contribution = (
                    volume * contribution.volume_contribution / total
                ).quantize(VOLUME_QUANT)
            assigned += contribution.volume_contribution
            contribution.percentage = _percentage(contribution.volume_contribution, contribution.batch.volume)
            contribution.save(update_fields=['volume_contribution', 'percentage'])
        lot.total_volume = volume
        lot.save(update_fields=['phase', 'total_volume', 'updated_at'])
        return lot

    @classmethod
    def _commit_single(cls, plan: Plan, batch, source_lot, notes) -> CommitResult:
        allocation = plan.allocations[0]

        if source_lot is not None:
            # Same lot moves on in the new phase
            lot = source_lot
            lot.phase = plan.phase
            cls.rescale(lot, allocation.volume)
        else:
            lot = Lot.objects.create(
                code=Lot.next_code(plan.phase),
                phase=plan.phase,
                status=LotStatus.PLANNED,
                total_volume=allocation.volume,
                notes=notes,
            )
            cls._contribute(lot, batch, allocation.volume)

        assignment = cls._new_assignment(plan, allocation.tank_id, lot, allocation.volume, notes)
        return CommitResult(lot=lot, lots=[lot], assignments=[assignment])

    @classmethod
    def _commit_split(cls, plan: Plan, batch, source_lot, notes) -> CommitResult:
        total = plan.total_volume
        if source_lot is not None:
            parent = source_lot
        else:
            parent = Lot.objects.create(
                code=Lot.next_code(plan.phase),
                phase=plan.phase,
                status=LotStatus.PLANNED,
                total_volume=total,
                notes=notes,
            )
            cls._contribute(parent, batch, total)

        children, assignments = [], []
        for index, allocation in enumerate(plan.allocations):
            child = Lot.objects.create(
                code=f"{parent.code}-{Lot.child_suffix(index)}",
                phase=plan.phase,
                status=LotStatus.PLANNED,
                total_volume=allocation.volume,
                parent=parent,
                split_ratio=(allocation.volume / total).quantize(RATIO_QUANT),
                notes=notes,
            )
            if source_lot is not None:
                cls._inherit(child, source_lot, allocation.volume)
            else:
                cls._contribute(child, batch, allocation.volume)
            children.append(child)
            assignments.append(cls._new_assignment(plan, allocation.tank_id, child, allocation.volume, notes))

        return CommitResult(lot=parent, lots=[parent, *children], assignments=assignments)

    @classmethod
    def _commit_blend(cls, plan: Plan, target_lot: Lot, batch, source_lot, notes) -> CommitResult:
        if not target_lot.is_open:
            raise CellarError('INVALID_TRANSITION', lot_id=target_lot.pk, status=target_lot.status)
        volume = plan.allocations[0].volume

        if source_lot is not None:
            cls._inherit(target_lot, source_lot, volume)
        else:
            cls._contribute(target_lot, batch, volume)

        target_lot.total_volume += volume
        target_lot.is_blend_result = True
        target_lot.save(update_fields=['total_volume', 'is_blend_result', 'updated_at'])

        assignment = (
            TankAssignment.objects.select_for_update()
            .filter(lot=target_lot, tank_id=plan.allocations[0].tank_id, status__in=BLOCKING_ASSIGNMENT_STATUSES)
            .order_by('planned_start')
            .first()
        )
        if assignment is None:
            raise NotFoundError(lot_id=target_lot.pk, detail='target lot has no open assignment')
        assignment.planned_volume += volume
        assignment.is_blend_target = True
        sources = assignment.metadata.get('blend_sources', [])
        sources.append({
            'batch_id': batch.pk if batch is not None else None,
            'lot_id': source_lot.pk if source_lot is not None else None,
            'volume': str(volume),
        })
        assignment.metadata['blend_sources'] = sources
        assignment.save(update_fields=['planned_volume', 'is_blend_target', 'metadata', 'updated_at'])

        return CommitResult(lot=target_lot, lots=[target_lot], assignments=[assignment])

    @classmethod
    def _record_readings(cls, readings, batch, source_lot, lot: Lot) -> list[Reading]:
        batches = [batch] if batch is not None else list(source_lot.batches.all())
        created = []
        for data in readings:
            for reading_batch in batches:
                created.append(Reading.objects.create(
                    batch=reading_batch,
                    lot=lot,
                    gravity=data.get('gravity'),
                    temperature=data.get('temperature'),
                    notes=data.get('notes', ''),
                ))
        return created
