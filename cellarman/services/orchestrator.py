"""
Transfer orchestrator — batch/lot phase state machine.

A phase change that needs a tank runs, in one transaction:
    registry snapshot → availability → planner → close-out of source
    assignments → writer → Transfer records → batch phase update

Validation (planner, state machine, destination readiness) completes
before the first write. Nothing is retried here; ConcurrentModificationError
goes back to the caller.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from django.db import IntegrityError, transaction
from django.utils import timezone

from cellarman.conf import cellarman_settings
from cellarman.exceptions import (
    CellarError,
    ConcurrentModificationError,
    InvalidTransitionError,
    NotFoundError,
    TankUnavailableError,
)
from cellarman.models.assignment import TankAssignment
from cellarman.models.batch import Batch
from cellarman.models.blending import BlendingConfig
from cellarman.models.enums import (
    LOT_TO_BATCH_PHASE,
    AssignmentStatus,
    BatchPhase,
    LotPhase,
    LotStatus,
    TankStatus,
    TransferStatus,
    TransferType,
)
from cellarman.models.lot import Lot
from cellarman.models.reading import Reading
from cellarman.models.tank import Tank
from cellarman.models.transfer import Transfer
from cellarman.services import planner
from cellarman.services.availability import AvailabilityChecker
from cellarman.services.registry import TankRegistry
from cellarman.services.planner import (
    Allocation,
    AllocationMode,
    BatchProfile,
    LotSnapshot,
    Plan,
    PlanRequest,
    Window,
    to_decimal,
)
from cellarman.services.writer import LotWriter

logger = logging.getLogger('cellarman')


BATCH_TRANSITIONS = {
    BatchPhase.PLANNED: {BatchPhase.BREWING},
    BatchPhase.BREWING: {BatchPhase.FERMENTING},
    BatchPhase.FERMENTING: {BatchPhase.CONDITIONING},
    BatchPhase.CONDITIONING: {BatchPhase.READY},
    BatchPhase.READY: {BatchPhase.PACKAGING},
    BatchPhase.PACKAGING: {BatchPhase.COMPLETED},
    BatchPhase.COMPLETED: set(),
    BatchPhase.CANCELLED: set(),
}

# Lot phase moves that go through a tank (same phase = rack to another tank)
LOT_TRANSITIONS = {
    LotPhase.FERMENTATION: {LotPhase.FERMENTATION, LotPhase.CONDITIONING},
    LotPhase.CONDITIONING: {LotPhase.CONDITIONING, LotPhase.BRIGHT},
    LotPhase.BRIGHT: {LotPhase.BRIGHT},
    LotPhase.PACKAGING: set(),
}

TRANSFER_TYPES = {
    (LotPhase.FERMENTATION, LotPhase.CONDITIONING): TransferType.FERMENT_TO_CONDITION,
    (LotPhase.CONDITIONING, LotPhase.BRIGHT): TransferType.CONDITION_TO_BRIGHT,
}

_BATCH_ORDER = [
    BatchPhase.PLANNED,
    BatchPhase.BREWING,
    BatchPhase.FERMENTING,
    BatchPhase.CONDITIONING,
    BatchPhase.READY,
    BatchPhase.PACKAGING,
    BatchPhase.COMPLETED,
]


def can_transition(current, target) -> bool:
    """Is current -> target a legal batch phase move?"""
    current, target = BatchPhase(current), BatchPhase(target)
    if target == BatchPhase.CANCELLED:
        return current not in (BatchPhase.COMPLETED, BatchPhase.CANCELLED)
    return target in BATCH_TRANSITIONS[current]


def apportion(total: Decimal, weights: list[Decimal]) -> list[Decimal]:
    """Split total proportionally to weights; residue on the last share."""
    weight_sum = sum(weights, Decimal('0'))
    if not weights or not weight_sum:
        return [Decimal('0')] * len(weights)
    shares = [(total * w / weight_sum).quantize(Decimal('0.001')) for w in weights[:-1]]
    shares.append(total - sum(shares, Decimal('0')))
    return shares


@dataclass
class TransitionResult:
    """Everything a phase transition wrote."""

    lot: Lot
    lots: list[Lot] = field(default_factory=list)
    assignments: list[TankAssignment] = field(default_factory=list)
    transfers: list[Transfer] = field(default_factory=list)
    closed_assignments: list[TankAssignment] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            'lot_id': self.lot.pk,
            'lot_code': self.lot.code,
            'lot_ids': [lot.pk for lot in self.lots],
            'assignment_ids': [a.pk for a in self.assignments],
            'transfer_ids': [t.pk for t in self.transfers],
            'closed_assignment_ids': [a.pk for a in self.closed_assignments],
        }


class TransferOrchestrator:
    """Phase transitions for batches and lots."""

    # ══════════════════════════════════════════════════════════════
    # PLANNING (no writes)
    # ══════════════════════════════════════════════════════════════

    @classmethod
    def default_window(cls, phase, start: datetime | None = None) -> Window:
        """Window starting at `start` (default now) for the phase's usual length."""
        start = start or timezone.now()
        days = cellarman_settings.DEFAULT_PHASE_DAYS.get(str(phase), 14)
        return Window(start, start + timedelta(days=days))

    @classmethod
    def build_request(cls, total_volume, mode, phase, window: Window, tank=None,
                      allocations=None, target_lot=None) -> PlanRequest:
        """
        PlanRequest from loose caller input (models, ids, dicts or tuples).

        Raises:
            CellarError: INVALID_REQUEST for an unknown mode, a malformed
                allocation or a non-numeric id; INVALID_VOLUME for a
                volume that is not a number
        """
        try:
            mode = AllocationMode(mode)
        except ValueError:
            raise CellarError('INVALID_REQUEST', field='mode', value=str(mode)) from None
        if allocations is not None and not isinstance(allocations, (list, tuple)):
            raise CellarError('INVALID_REQUEST', field='allocations')

        parsed = []
        for item in allocations or ():
            if isinstance(item, Allocation):
                parsed.append(item)
                continue
            try:
                if isinstance(item, dict):
                    tank_ref, volume = item['tank_id'], item['volume']
                else:
                    tank_ref, volume = item
            except (KeyError, TypeError, ValueError):
                raise CellarError('INVALID_REQUEST', field='allocations', value=str(item)) from None
            parsed.append(Allocation(tank_id=_id(tank_ref, 'tank_id'), volume=to_decimal(volume)))

        return PlanRequest(
            total_volume=to_decimal(total_volume),
            mode=mode,
            phase=str(phase),
            window=window,
            tank_id=_id(tank, 'tank_id') if tank is not None else None,
            allocations=tuple(parsed),
            target_lot_id=_id(target_lot, 'target_lot_id') if target_lot is not None else None,
        )

    @classmethod
    def plan(cls, request: PlanRequest, batch=None, exclude_lot=None) -> Plan:
        """
        Validate a request against current tank and assignment state.

        Read-only. Call again with the same inputs and unchanged state
        and the result is equal.

        Args:
            request: Placement request
            batch: Incoming batch (blend rules), or a BatchProfile
            exclude_lot: Lot whose own bookings do not count (the lot being moved)
        """
        tank_ids = set(request.tank_ids)
        lots = {}
        if request.mode == AllocationMode.BLEND and request.target_lot_id is not None:
            target = Lot.objects.filter(pk=request.target_lot_id).first()
            if target is None:
                raise NotFoundError(lot_id=request.target_lot_id)
            snapshot = LotSnapshot.from_lot(target)
            lots[target.pk] = snapshot
            if snapshot.tank_id is not None:
                tank_ids.add(snapshot.tank_id)
            exclude_lot = target

        tanks = TankRegistry.snapshots(tank_ids)
        availability = AvailabilityChecker.check_availability(
            tank_ids, request.window, exclude_lot=exclude_lot,
        )
        if isinstance(batch, Batch):
            batch = BatchProfile.from_batch(batch)

        return planner.plan(
            request,
            tanks,
            availability,
            lots=lots,
            batch=batch,
            policy=BlendingConfig.current(),
            tolerance=cellarman_settings.VOLUME_TOLERANCE,
        )

    # ══════════════════════════════════════════════════════════════
    # BATCH LIFECYCLE
    # ══════════════════════════════════════════════════════════════

    @classmethod
    def start_brewing(cls, batch, brewed_at: datetime | None = None) -> Batch:
        """PLANNED → BREWING."""
        with transaction.atomic():
            batch = cls._lock_batch(batch)
            cls._set_batch_phase(batch, BatchPhase.BREWING)
            batch.brewed_at = batch.brewed_at or brewed_at or timezone.now()
            batch.save(update_fields=['phase', 'brewed_at', 'updated_at'])
        return batch

    @classmethod
    def start_fermentation(cls, batch, mode=AllocationMode.SINGLE, window: Window | None = None,
                           tank=None, allocations=None, target_lot=None,
                           readings=None, notes: str = '', user=None) -> TransitionResult:
        """
        BREWING → FERMENTING: place the batch's wort.

        SINGLE needs `tank`, SPLIT `allocations` [(tank, volume)…],
        BLEND `target_lot`. Assignments are created PLANNED; call
        start_assignment when the wort is actually in the tank.
        """
        window = window or cls.default_window(LotPhase.FERMENTATION)

        with transaction.atomic():
            batch = cls._lock_batch(batch)
            if not can_transition(batch.phase, BatchPhase.FERMENTING):
                raise InvalidTransitionError(current=batch.phase, expected=BatchPhase.BREWING)

            request = cls.build_request(
                batch.volume, mode, LotPhase.FERMENTATION, window,
                tank=tank, allocations=allocations, target_lot=target_lot,
            )
            plan = cls.plan(request, batch=batch)

            result = LotWriter.commit(plan, batch=batch, notes=notes, readings=readings, user=user)

            transfers = []
            if plan.mode == AllocationMode.BLEND:
                transfers.append(Transfer.objects.create(
                    dest_lot=result.lot,
                    dest_tank_id=plan.allocations[0].tank_id,
                    batch=batch,
                    transfer_type=TransferType.BLEND,
                    volume=plan.total_volume,
                    status=TransferStatus.EXECUTED,
                    notes=notes,
                    user=user,
                ))

            batch.phase = BatchPhase.FERMENTING
            batch.save(update_fields=['phase', 'updated_at'])

        logger.info(
            "cellar.fermentation.started",
            extra={"batch": batch.code, "mode": plan.mode.value, "lot": result.lot.code},
        )
        return TransitionResult(
            lot=result.lot, lots=result.lots, assignments=result.assignments, transfers=transfers,
        )

    @classmethod
    def start_assignment(cls, assignment, actual_start: datetime | None = None) -> TankAssignment:
        """
        PLANNED → ACTIVE: the lot is physically in the tank.

        Tank becomes OCCUPIED (previous status kept in metadata so a
        cancellation can restore it) and the lot becomes ACTIVE.
        """
        with transaction.atomic():
            try:
                assignment = TankAssignment.objects.select_for_update().get(pk=_pk(assignment))
            except TankAssignment.DoesNotExist:
                raise NotFoundError(assignment_id=_pk(assignment)) from None
            if assignment.status != AssignmentStatus.PLANNED:
                raise InvalidTransitionError(
                    assignment_id=assignment.pk,
                    current=assignment.status,
                    expected=AssignmentStatus.PLANNED,
                )
            tank = Tank.objects.select_for_update().get(pk=assignment.tank_id)
            cls._check_ready(tank, exclude_lot=assignment.lot)
            cls._start_all([assignment], actual_start or timezone.now())

        logger.info(
            "cellar.assignment.started",
            extra={"assignment_id": assignment.pk, "tank": tank.code, "lot": assignment.lot.code},
        )
        return assignment

    # ══════════════════════════════════════════════════════════════
    # LOT TRANSITIONS
    # ══════════════════════════════════════════════════════════════

    @classmethod
    def transfer_lot(cls, lot, to_phase, mode=AllocationMode.SINGLE, window: Window | None = None,
                     tank=None, allocations=None, target_lot=None,
                     stay_in_same_tank: bool = False, measured_loss=0,
                     readings=None, notes: str = '', user=None) -> TransitionResult:
        """
        Move an ACTIVE lot to its next phase (or to another tank in the same phase).

        The move happens now: source assignments are COMPLETED with
        actual_end = now, destination assignments start ACTIVE, and one
        EXECUTED Transfer is written per destination.

        Args:
            lot: Lot (or pk) to move
            to_phase: Destination LotPhase
            mode: SINGLE / SPLIT / BLEND
            window: Destination window (default: now + phase length)
            stay_in_same_tank: Keep the lot where it is (unitank).
                Records a TANK_TO_TANK transfer with source == destination.
            measured_loss: Litres lost in the move

        Raises:
            InvalidTransitionError: Lot not ACTIVE or phase step not allowed
            Any planner error, DuplicatePlanError, ConcurrentModificationError
        """
        to_phase = LotPhase(to_phase)
        now = timezone.now()
        window = window or cls.default_window(to_phase, start=now)

        with transaction.atomic():
            lot = cls._lock_lot(lot)
            from_phase = LotPhase(lot.phase)
            cls._check_not_split(lot)
            if lot.status != LotStatus.ACTIVE:
                raise InvalidTransitionError(lot_id=lot.pk, current=lot.status, expected=LotStatus.ACTIVE)
            if to_phase not in LOT_TRANSITIONS[from_phase]:
                raise InvalidTransitionError(lot_id=lot.pk, current=from_phase, requested=to_phase)

            loss = to_decimal(measured_loss)
            if loss < 0 or loss >= lot.total_volume:
                raise CellarError('INVALID_VOLUME', measured_loss=loss, total=lot.total_volume)
            volume = lot.total_volume - loss

            sources = list(
                lot.assignments.blocking().select_related('tank').select_for_update()
            )
            batches = list(lot.batches.order_by('brewed_at', 'pk'))

            if stay_in_same_tank:
                result = cls._stay_in_place(lot, sources, from_phase, to_phase, volume, loss,
                                            window, now, notes, user)
            else:
                request = cls.build_request(
                    volume, mode, to_phase, window,
                    tank=tank, allocations=allocations, target_lot=target_lot,
                )
                if request.mode == AllocationMode.BLEND and request.target_lot_id == lot.pk:
                    raise CellarError('INVALID_TRANSITION', lot_id=lot.pk, detail='blend into itself')
                profiles = [BatchProfile.from_batch(b) for b in batches]
                plan = cls.plan(request, batch=profiles or None, exclude_lot=lot)
                if plan.mode == AllocationMode.BLEND:
                    cls._check_blend_target(plan)
                else:
                    for tank_id in plan.tank_ids:
                        cls._check_ready(Tank.objects.get(pk=tank_id), exclude_lot=lot)

                # Tanks the lot goes back into keep the status they had before it
                previous = {
                    a.tank_id: a.metadata.get('previous_tank_status', TankStatus.AVAILABLE)
                    for a in sources if a.status == AssignmentStatus.ACTIVE
                }

                # Validation done; writes from here on
                closed = cls._close_out(sources, now, keep_tank_ids=set(plan.tank_ids))
                commit = LotWriter.commit(plan, source_lot=lot, notes=notes, user=user)
                transfers = cls._record_transfers(
                    lot, plan, commit, sources, from_phase, to_phase, loss, now, notes, user,
                )
                cls._start_all(commit.assignments, now, previous_statuses=previous)

                if plan.mode != AllocationMode.SINGLE or len(plan.allocations) > 1:
                    # Volume now lives in child lots or the blend target
                    lot.status = LotStatus.COMPLETED
                    lot.completed_at = now
                    lot.save(update_fields=['status', 'completed_at', 'updated_at'])

                result = TransitionResult(
                    lot=commit.lot, lots=commit.lots, assignments=commit.assignments,
                    transfers=transfers, closed_assignments=closed,
                )

            cls._advance_batches(batches, to_phase)
            if readings:
                for data in readings:
                    for batch in batches:
                        Reading.objects.create(
                            batch=batch, lot=result.lot,
                            gravity=data.get('gravity'), temperature=data.get('temperature'),
                            notes=data.get('notes', ''),
                        )

        logger.info(
            "cellar.transfer.executed",
            extra={
                "lot": lot.code,
                "from_phase": from_phase,
                "to_phase": to_phase,
                "mode": 'stay' if stay_in_same_tank else AllocationMode(mode).value,
                "volume": str(volume),
                "loss": str(loss),
                "transfers": [t.pk for t in result.transfers],
            },
        )
        return result

    @classmethod
    def transfer_to_conditioning(cls, lot, **kwargs) -> TransitionResult:
        """FERMENTATION → CONDITIONING."""
        return cls.transfer_lot(lot, LotPhase.CONDITIONING, **kwargs)

    @classmethod
    def transfer_to_bright(cls, lot, **kwargs) -> TransitionResult:
        """CONDITIONING → BRIGHT (batch becomes READY)."""
        return cls.transfer_lot(lot, LotPhase.BRIGHT, **kwargs)

    mark_ready = transfer_to_bright

    @classmethod
    def start_packaging(cls, lot) -> Lot:
        """BRIGHT → PACKAGING. The lot stays in its tank."""
        with transaction.atomic():
            lot = cls._lock_lot(lot)
            cls._check_not_split(lot)
            if lot.status != LotStatus.ACTIVE or lot.phase != LotPhase.BRIGHT:
                raise InvalidTransitionError(lot_id=lot.pk, current=lot.phase, expected=LotPhase.BRIGHT)
            lot.phase = LotPhase.PACKAGING
            lot.save(update_fields=['phase', 'updated_at'])
            cls._advance_batches(list(lot.batches.all()), LotPhase.PACKAGING)

        logger.info("cellar.lot.packaging", extra={"lot": lot.code})
        return lot

    @classmethod
    def complete_lot(cls, lot, completed_at: datetime | None = None) -> Lot:
        """
        PACKAGING lot is done: the tank is empty.

        Open assignments are closed (ACTIVE → COMPLETED, PLANNED → CANCELLED),
        their tanks go to CLEANING, and batches with no open lot left
        become COMPLETED. A split parent completes with its last child.
        """
        now = completed_at or timezone.now()
        with transaction.atomic():
            lot = cls._lock_lot(lot)
            cls._check_not_split(lot)
            if lot.status != LotStatus.ACTIVE or lot.phase != LotPhase.PACKAGING:
                raise InvalidTransitionError(lot_id=lot.pk, current=lot.phase, expected=LotPhase.PACKAGING)

            sources = list(lot.assignments.blocking().select_related('tank').select_for_update())
            cls._close_out(sources, now)
            cls._close_lot(lot, LotStatus.COMPLETED, now)

            for batch in lot.batches.select_for_update():
                if cls._open_lots(batch).exists():
                    continue
                if can_transition(batch.phase, BatchPhase.COMPLETED):
                    batch.phase = BatchPhase.COMPLETED
                    batch.save(update_fields=['phase', 'updated_at'])

        logger.info("cellar.lot.completed", extra={"lot": lot.code, "tanks": [a.tank.code for a in sources]})
        return lot

    @classmethod
    def cancel_batch(cls, batch, reason: str = '') -> Batch:
        """
        Cancel a batch and undo its bookings.

        Lots fed only by this batch are cancelled with their assignments,
        and tanks they occupied return to the status they had before.
        For lots shared through a blend, the batch's volume is withdrawn
        and the lot carries on.
        """
        now = timezone.now()
        with transaction.atomic():
            batch = cls._lock_batch(batch)
            if not can_transition(batch.phase, BatchPhase.CANCELLED):
                raise InvalidTransitionError(current=batch.phase, expected='non-terminal')

            lot_ids = list(Lot.objects.for_batch(batch).open().values_list('pk', flat=True))
            for lot in Lot.objects.select_for_update().filter(pk__in=lot_ids).order_by('pk'):
                contribution = lot.contributions.get(batch=batch)
                if lot.contributions.exclude(batch=batch).exists():
                    cls._withdraw(lot, contribution)
                    continue
                for assignment in lot.assignments.blocking().select_related('tank').select_for_update():
                    cls._cancel_assignment(assignment, now)
                cls._close_lot(lot, LotStatus.CANCELLED, now)

            batch.phase = BatchPhase.CANCELLED
            if reason:
                batch.notes = f"{batch.notes}\n{reason}".strip()
            batch.save(update_fields=['phase', 'notes', 'updated_at'])

        logger.info("cellar.batch.cancelled", extra={"batch": batch.code, "reason": reason})
        return batch

    # ══════════════════════════════════════════════════════════════
    # INTERNALS
    # ══════════════════════════════════════════════════════════════

    @classmethod
    def _lock_batch(cls, batch) -> Batch:
        try:
            return Batch.objects.select_for_update().get(pk=_pk(batch))
        except Batch.DoesNotExist:
            raise NotFoundError(batch_id=_pk(batch)) from None

    @classmethod
    def _lock_lot(cls, lot) -> Lot:
        try:
            return Lot.objects.select_for_update().get(pk=_pk(lot))
        except Lot.DoesNotExist:
            raise NotFoundError(lot_id=_pk(lot)) from None

    @classmethod
    def _set_batch_phase(cls, batch: Batch, target) -> None:
        if not can_transition(batch.phase, target):
            raise InvalidTransitionError(batch_id=batch.pk, current=batch.phase, requested=target)
        batch.phase = target

    @classmethod
    def _advance_batches(cls, batches, lot_phase) -> None:
        """Move each batch to the phase matching lot_phase, unless already there or past it."""
        target = LOT_TO_BATCH_PHASE[LotPhase(lot_phase)]
        for batch in batches:
            batch.refresh_from_db(fields=['phase'])
            if batch.phase == BatchPhase.CANCELLED:
                continue
            if _BATCH_ORDER.index(BatchPhase(batch.phase)) >= _BATCH_ORDER.index(target):
                continue
            cls._set_batch_phase(batch, target)
            batch.save(update_fields=['phase', 'updated_at'])

    @classmethod
    def _check_ready(cls, tank: Tank, exclude_lot=None) -> None:
        """Destination can take beer now: clean, in service, not holding another lot."""
        if tank.status == TankStatus.MAINTENANCE:
            raise TankUnavailableError(tank_id=tank.pk, tank_name=tank.name, reason='maintenance')
        if tank.needs_cip:
            raise TankUnavailableError(tank_id=tank.pk, tank_name=tank.name, reason='cleaning')
        active = tank.assignments.filter(status=AssignmentStatus.ACTIVE)
        if exclude_lot is not None:
            active = active.exclude(lot=exclude_lot)
        if active.exists():
            raise TankUnavailableError(tank_id=tank.pk, tank_name=tank.name, reason='occupied')

    @classmethod
    def _check_not_split(cls, lot: Lot) -> None:
        """A split parent holds no beer of its own; its child lots move instead."""
        children = list(lot.children.values_list('pk', flat=True))
        if children:
            raise InvalidTransitionError(lot_id=lot.pk, detail='lot was split', child_lot_ids=children)

    @classmethod
    def _check_blend_target(cls, plan: Plan) -> None:
        """The target lot is in its tank now and the tank can take more beer."""
        assignment = (
            TankAssignment.objects.filter(lot_id=plan.target_lot_id, tank_id=plan.allocations[0].tank_id)
            .blocking()
            .order_by('planned_start')
            .first()
        )
        if assignment is None or assignment.status != AssignmentStatus.ACTIVE:
            raise InvalidTransitionError(
                lot_id=plan.target_lot_id, detail='blend target has not started in its tank',
            )
        cls._check_ready(Tank.objects.get(pk=assignment.tank_id), exclude_lot=assignment.lot_id)

    @classmethod
    def _start_all(cls, assignments, started_at: datetime, previous_statuses=None) -> None:
        """Activate the PLANNED ones; a second ACTIVE booking on a tank is a lost race."""
        previous_statuses = previous_statuses or {}
        try:
            with transaction.atomic():
                for assignment in assignments:
                    if assignment.status != AssignmentStatus.PLANNED:
                        continue
                    tank = Tank.objects.select_for_update().get(pk=assignment.tank_id)
                    cls._activate(assignment, tank, started_at, previous_statuses.get(tank.pk))
        except IntegrityError as exc:
            tank_ids = [a.tank_id for a in assignments]
            logger.warning(
                "cellar.assignment.conflict",
                extra={"tank_ids": tank_ids, "error": str(exc)},
            )
            raise ConcurrentModificationError(tank_ids=tank_ids) from exc

    @classmethod
    def _activate(cls, assignment: TankAssignment, tank: Tank, started_at: datetime,
                  previous_status=None) -> None:
        assignment.metadata['previous_tank_status'] = previous_status or tank.status
        assignment.status = AssignmentStatus.ACTIVE
        assignment.actual_start = started_at
        assignment.save(update_fields=['status', 'actual_start', 'metadata', 'updated_at'])

        tank.status = TankStatus.OCCUPIED
        tank.save(update_fields=['status', 'updated_at'])

        lot = assignment.lot
        for current in (lot, lot.parent):
            if current is not None and current.status == LotStatus.PLANNED:
                current.status = LotStatus.ACTIVE
                current.save(update_fields=['status', 'updated_at'])

    @classmethod
    def _close_out(cls, assignments, now: datetime, keep_tank_ids=frozenset()) -> list[TankAssignment]:
        """
        Finish a lot's open assignments.

        ACTIVE ones are COMPLETED and their tank goes to CLEANING unless
        the lot's volume is going back into it. PLANNED ones never started
        and are CANCELLED.
        """
        closed = []
        for assignment in assignments:
            if assignment.status == AssignmentStatus.ACTIVE:
                assignment.status = AssignmentStatus.COMPLETED
                assignment.actual_end = now
                tank = assignment.tank
                if tank.pk not in keep_tank_ids and tank.status == TankStatus.OCCUPIED:
                    tank.status = TankStatus.CLEANING
                    tank.save(update_fields=['status', 'updated_at'])
            else:
                assignment.status = AssignmentStatus.CANCELLED
            assignment.save(update_fields=['status', 'actual_end', 'updated_at'])
            closed.append(assignment)
        return closed

    @classmethod
    def _record_transfers(cls, lot: Lot, plan: Plan, commit, sources, from_phase, to_phase,
                          loss: Decimal, now: datetime, notes: str, user) -> list[Transfer]:
        source_tank = next((a.tank for a in sources if a.status == AssignmentStatus.COMPLETED), None)
        if source_tank is None and sources:
            source_tank = sources[0].tank

        if plan.mode == AllocationMode.BLEND:
            transfer_type = TransferType.BLEND
            destinations = [(commit.lot, plan.allocations[0])]
        elif len(plan.allocations) > 1:
            transfer_type = TransferType.SPLIT
            children = [child for child in commit.lots if child.parent_id == lot.pk]
            destinations = list(zip(children, plan.allocations))
            for assignment in sources:
                assignment.is_split_source = True
                assignment.save(update_fields=['is_split_source', 'updated_at'])
        else:
            transfer_type = TRANSFER_TYPES.get((from_phase, to_phase), TransferType.TANK_TO_TANK)
            destinations = [(commit.lot, plan.allocations[0])]

        losses = apportion(loss, [allocation.volume for _, allocation in destinations])
        transfers = []
        for (dest_lot, allocation), share in zip(destinations, losses):
            transfers.append(Transfer.objects.create(
                source_lot=lot,
                source_tank=source_tank,
                dest_lot=dest_lot,
                dest_tank_id=allocation.tank_id,
                transfer_type=transfer_type,
                volume=allocation.volume,
                measured_loss=share,
                status=TransferStatus.EXECUTED,
                executed_at=now,
                notes=notes,
                user=user,
                metadata={'from_phase': str(from_phase), 'to_phase': str(to_phase)},
            ))
        return transfers

    @classmethod
    def _stay_in_place(cls, lot: Lot, sources, from_phase, to_phase, volume: Decimal,
                       loss: Decimal, window: Window, now: datetime, notes: str, user) -> TransitionResult:
        """Phase change without moving the beer (unitank)."""
        current = next((a for a in sources if a.status == AssignmentStatus.ACTIVE), None)
        if current is None:
            raise InvalidTransitionError(lot_id=lot.pk, detail='lot has no active tank assignment')
        tank = Tank.objects.select_for_update().get(pk=current.tank_id)
        if not tank.supports(to_phase):
            raise TankUnavailableError(tank_id=tank.pk, tank_name=tank.name, reason='capability')
        if not AvailabilityChecker.is_available(tank.pk, window, exclude_lot=lot):
            raise TankUnavailableError(tank_id=tank.pk, tank_name=tank.name, reason='conflict')

        # Validation done; writes from here on
        closed = cls._close_out(sources, now, keep_tank_ids={tank.pk})
        lot.phase = to_phase
        LotWriter.rescale(lot, volume)

        assignment = TankAssignment.objects.create(
            tank=tank,
            lot=lot,
            phase=to_phase,
            planned_start=window.start,
            planned_end=window.end,
            planned_volume=volume,
            status=AssignmentStatus.ACTIVE,
            actual_start=now,
            notes=notes,
            metadata={'previous_tank_status': current.metadata.get('previous_tank_status', TankStatus.AVAILABLE)},
        )
        transfer = Transfer.objects.create(
            source_lot=lot,
            source_tank=tank,
            dest_lot=lot,
            dest_tank=tank,
            transfer_type=TransferType.TANK_TO_TANK,
            volume=volume,
            measured_loss=loss,
            status=TransferStatus.EXECUTED,
            executed_at=now,
            notes=notes,
            user=user,
            metadata={'from_phase': str(from_phase), 'to_phase': str(to_phase), 'in_place': True},
        )
        return TransitionResult(
            lot=lot, lots=[lot], assignments=[assignment], transfers=[transfer], closed_assignments=closed,
        )

    @classmethod
    def _open_lots(cls, batch):
        """Open lots holding batch, ignoring split parents (their children hold the beer)."""
        return Lot.objects.for_batch(batch).open().filter(children__isnull=True)

    @classmethod
    def _close_lot(cls, lot: Lot, status, now: datetime) -> None:
        lot.status = status
        lot.completed_at = now
        lot.save(update_fields=['status', 'completed_at', 'updated_at'])

        parent = lot.parent
        if parent is not None and parent.is_open and not parent.children.open().exists():
            cls._close_lot(parent, status, now)

    @classmethod
    def _cancel_assignment(cls, assignment: TankAssignment, now: datetime) -> None:
        was_active = assignment.status == AssignmentStatus.ACTIVE
        assignment.status = AssignmentStatus.CANCELLED
        assignment.actual_end = now if was_active else assignment.actual_end
        assignment.save(update_fields=['status', 'actual_end', 'updated_at'])
        if was_active:
            tank = assignment.tank
            tank.status = assignment.metadata.get('previous_tank_status', TankStatus.AVAILABLE)
            tank.save(update_fields=['status', 'updated_at'])

    @classmethod
    def _withdraw(cls, lot: Lot, contribution) -> None:
        """Take one batch's volume back out of a blended lot."""
        volume = contribution.volume_contribution
        batch_id = contribution.batch_id
        contribution.delete()

        lot.total_volume -= volume
        lot.save(update_fields=['total_volume', 'updated_at'])

        for assignment in lot.assignments.blocking().select_for_update():
            assignment.planned_volume = max(assignment.planned_volume - volume, Decimal('0.001'))
            assignment.metadata['blend_sources'] = [
                s for s in assignment.metadata.get('blend_sources', []) if s.get('batch_id') != batch_id
            ]
            assignment.save(update_fields=['planned_volume', 'metadata', 'updated_at'])

        logger.info(
            "cellar.blend.withdrawn",
            extra={"lot": lot.code, "batch_id": batch_id, "volume": str(volume)},
        )


def _pk(ref):
    """Accept a model instance or a primary key."""
    return getattr(ref, 'pk', ref)


def _id(ref, name):
    """Integer primary key from a model instance or loose input."""
    pk = _pk(ref)
    try:
        return int(pk)
    except (TypeError, ValueError):
        raise CellarError('INVALID_REQUEST', field=name, value=str(pk)) from None
