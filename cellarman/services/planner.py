"""
Allocation planner — validates where a volume of beer may go.

Pure functions over frozen snapshots: no queries, no writes. The same
inputs always produce an equal Plan (or the same error), so a plan can
be computed for preview and recomputed inside the write transaction.

Rules, first failure wins:
    0. selection     SelectionRequiredError   (nothing else to check without it)
    1. conservation  VolumeMismatchError      (SPLIT, |total - sum| <= tolerance)
    2. capacity      CapacityExceededError    (BLEND: lot volume + incoming)
    3. availability  TankUnavailableError     (window, maintenance, capability)
    4. blending      BlendIncompatibleError   (BLEND, all enabled rules ANDed)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterable, Mapping

from cellarman.conf import cellarman_settings
from cellarman.exceptions import (
    BlendIncompatibleError,
    CapacityExceededError,
    CellarError,
    NotFoundError,
    SelectionRequiredError,
    TankUnavailableError,
    VolumeMismatchError,
)
from cellarman.models.enums import TankStatus


VOLUME_QUANT = Decimal('0.001')
DEFAULT_TOLERANCE = Decimal('0.5')


def to_decimal(value: Any) -> Decimal:
    """
    Decimal from int/str/float/Decimal without float artefacts.

    Raises:
        CellarError: INVALID_VOLUME for text that is not a finite number
    """
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise CellarError('INVALID_VOLUME', value=str(value)) from None
    if not result.is_finite():
        raise CellarError('INVALID_VOLUME', value=str(value))
    return result


# ══════════════════════════════════════════════════════════════
# DATA TYPES
# ══════════════════════════════════════════════════════════════


class AllocationMode(str, Enum):
    """How a volume is placed."""

    SINGLE = "single"  # One tank takes everything
    SPLIT = "split"    # Several tanks, explicit volumes
    BLEND = "blend"    # Added to an open lot in its tank


@dataclass(frozen=True)
class Window:
    """Half-open time window [start, end)."""

    start: datetime
    end: datetime

    def __post_init__(self):
        if self.end <= self.start:
            raise CellarError('INVALID_WINDOW', start=self.start.isoformat(), end=self.end.isoformat())

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start < self.end and end > self.start


@dataclass(frozen=True)
class Allocation:
    """Volume placed in one tank."""

    tank_id: int
    volume: Decimal

    def as_dict(self) -> dict[str, Any]:
        return {'tank_id': self.tank_id, 'volume': str(self.volume)}


@dataclass(frozen=True)
class TankSnapshot:
    """What the planner needs to know about a tank."""

    id: int
    name: str
    capacity: Decimal
    status: str
    capabilities: frozenset[str] = frozenset()

    @classmethod
    def from_tank(cls, tank) -> TankSnapshot:
        return cls(
            id=tank.pk,
            name=tank.name,
            capacity=tank.capacity,
            status=str(tank.status),
            capabilities=frozenset(str(c) for c in tank.capabilities or ()),
        )


@dataclass(frozen=True)
class BatchProfile:
    """Blend-relevant traits of a batch."""

    recipe: str = ''
    yeast_strain: str = ''
    style: str = ''
    brewed_at: datetime | None = None

    @classmethod
    def from_batch(cls, batch) -> BatchProfile:
        return cls(
            recipe=batch.recipe,
            yeast_strain=batch.yeast_strain,
            style=batch.style,
            brewed_at=batch.brewed_at,
        )


@dataclass(frozen=True)
class LotSnapshot:
    """An open lot as a blend target. tank_id is its current tank."""

    id: int
    phase: str
    total_volume: Decimal
    tank_id: int | None
    is_open: bool = True
    batches: tuple[BatchProfile, ...] = ()

    @classmethod
    def from_lot(cls, lot) -> LotSnapshot:
        assignment = lot.current_assignment
        return cls(
            id=lot.pk,
            phase=str(lot.phase),
            total_volume=lot.total_volume,
            tank_id=assignment.tank_id if assignment else None,
            is_open=lot.is_open,
            batches=tuple(BatchProfile.from_batch(b) for b in lot.batches.order_by('pk')),
        )


@dataclass(frozen=True)
class BlendingPolicy:
    """Enabled blending rules. Zero disables a numeric limit."""

    require_recipe_match: bool = False
    require_yeast_match: bool = True
    require_phase_match: bool = True
    require_style_match: bool = False
    max_age_difference_hours: int = 48
    max_blend_sources: int = 4


@dataclass(frozen=True)
class PlanRequest:
    """
    What the caller asks for.

    SINGLE uses tank_id, SPLIT uses allocations, BLEND uses target_lot_id.
    """

    total_volume: Decimal
    mode: AllocationMode
    phase: str
    window: Window
    tank_id: int | None = None
    allocations: tuple[Allocation, ...] = ()
    target_lot_id: int | None = None

    @property
    def tank_ids(self) -> tuple[int, ...]:
        if self.mode == AllocationMode.SINGLE:
            return (self.tank_id,) if self.tank_id is not None else ()
        if self.mode == AllocationMode.SPLIT:
            return tuple(a.tank_id for a in self.allocations)
        return ()


@dataclass(frozen=True)
class Plan:
    """Validated placement, ready for the writer."""

    mode: AllocationMode
    phase: str
    window: Window
    allocations: tuple[Allocation, ...]
    target_lot_id: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def total_volume(self) -> Decimal:
        return sum((a.volume for a in self.allocations), Decimal('0'))

    @property
    def tank_ids(self) -> tuple[int, ...]:
        return tuple(a.tank_id for a in self.allocations)

    def as_dict(self) -> dict[str, Any]:
        return {
            'mode': self.mode.value,
            'phase': self.phase,
            'window_start': self.window.start.isoformat(),
            'window_end': self.window.end.isoformat(),
            'allocations': [a.as_dict() for a in self.allocations],
            'target_lot_id': self.target_lot_id,
        }


# ══════════════════════════════════════════════════════════════
# HELPERS
# ══════════════════════════════════════════════════════════════


def remaining_volume(total_volume, allocations: Iterable[Allocation]) -> Decimal:
    """Signed remainder: positive = under-allocated, negative = over."""
    allocated = sum((to_decimal(a.volume) for a in allocations), Decimal('0'))
    return to_decimal(total_volume) - allocated


def split_equally(total_volume, tank_ids: Iterable[int]) -> tuple[Allocation, ...]:
    """
    Equal shares of total_volume across tank_ids, in order.

    Capacity is ignored here and checked by plan(). Rounding residue goes
    to the last tank so the shares always sum to total_volume exactly.
    """
    ids = list(tank_ids)
    if not ids:
        return ()
    total = to_decimal(total_volume)
    share = (total / len(ids)).quantize(VOLUME_QUANT, rounding=ROUND_DOWN)
    allocations = [Allocation(tank_id=tid, volume=share) for tid in ids[:-1]]
    allocations.append(Allocation(tank_id=ids[-1], volume=total - share * (len(ids) - 1)))
    return tuple(allocations)


def default_allocation(total_volume, already_allocated, capacity, minimum=None) -> Decimal:
    """Suggested volume for a tank newly added to a split (floor: MIN_ALLOCATION_VOLUME)."""
    if minimum is None:
        minimum = cellarman_settings.MIN_ALLOCATION_VOLUME
    remaining = to_decimal(total_volume) - to_decimal(already_allocated)
    return max(min(remaining, to_decimal(capacity)), to_decimal(minimum))


# ══════════════════════════════════════════════════════════════
# PLANNING
# ══════════════════════════════════════════════════════════════


def _resolve_allocations(request: PlanRequest, lots: Mapping[int, LotSnapshot]) -> tuple[Allocation, ...]:
    """Rule 0: the request names something to allocate into."""
    total = to_decimal(request.total_volume)
    if request.mode == AllocationMode.SINGLE:
        if request.tank_id is None:
            raise SelectionRequiredError(mode=request.mode.value)
        return (Allocation(tank_id=request.tank_id, volume=total),)

    if request.mode == AllocationMode.SPLIT:
        if not request.allocations:
            raise SelectionRequiredError(mode=request.mode.value)
        return tuple(
            Allocation(tank_id=a.tank_id, volume=to_decimal(a.volume))
            for a in request.allocations
        )

    if request.target_lot_id is None:
        raise SelectionRequiredError(mode=request.mode.value)
    lot = lots.get(request.target_lot_id)
    if lot is None or lot.tank_id is None or not lot.is_open:
        raise SelectionRequiredError(mode=request.mode.value, lot_id=request.target_lot_id)
    return (Allocation(tank_id=lot.tank_id, volume=total),)


def _check_shape(request: PlanRequest, allocations: tuple[Allocation, ...]) -> None:
    if to_decimal(request.total_volume) <= 0:
        raise CellarError('INVALID_VOLUME', requested=to_decimal(request.total_volume))
    seen = set()
    for allocation in allocations:
        if allocation.volume <= 0:
            raise CellarError('INVALID_VOLUME', tank_id=allocation.tank_id, requested=allocation.volume)
        if allocation.tank_id in seen:
            raise CellarError('DUPLICATE_TANK', tank_id=allocation.tank_id)
        seen.add(allocation.tank_id)


def _tank(tanks: Mapping[int, TankSnapshot], tank_id: int) -> TankSnapshot:
    tank = tanks.get(tank_id)
    if tank is None:
        raise NotFoundError(tank_id=tank_id)
    return tank


def _incoming_profiles(batch) -> tuple[BatchProfile, ...]:
    """One profile per incoming batch. A moving lot brings all of its batches."""
    if batch is None:
        return (BatchProfile(),)
    if isinstance(batch, BatchProfile):
        return (batch,)
    return tuple(batch) or (BatchProfile(),)


def _mismatch(lot: LotSnapshot, incoming: tuple[BatchProfile, ...], trait: str):
    """(reference, odd one) when the blend would mix values of trait, else None."""
    pool = (*lot.batches, *incoming)
    reference = pool[0]
    for profile in pool[1:]:
        if getattr(profile, trait) != getattr(reference, trait):
            return reference, profile
    return None


def _check_blend(
    incoming: tuple[BatchProfile, ...],
    lot: LotSnapshot,
    phase: str,
    policy: BlendingPolicy,
) -> None:
    if policy.require_recipe_match and _mismatch(lot, incoming, 'recipe'):
        raise BlendIncompatibleError(rule='recipe', lot_id=lot.id)

    if policy.require_yeast_match:
        pair = _mismatch(lot, incoming, 'yeast_strain')
        if pair is not None:
            expected, got = pair
            raise BlendIncompatibleError(
                rule='yeast', lot_id=lot.id, expected=expected.yeast_strain, got=got.yeast_strain,
            )

    if policy.require_style_match and _mismatch(lot, incoming, 'style'):
        raise BlendIncompatibleError(rule='style', lot_id=lot.id)

    if policy.require_phase_match and lot.phase != str(phase):
        raise BlendIncompatibleError(rule='phase', lot_id=lot.id, expected=lot.phase, got=str(phase))

    if policy.max_age_difference_hours:
        limit = policy.max_age_difference_hours * 3600
        for profile in incoming:
            if profile.brewed_at is None:
                continue
            for existing in lot.batches:
                if existing.brewed_at is None:
                    continue
                if abs((profile.brewed_at - existing.brewed_at).total_seconds()) > limit:
                    raise BlendIncompatibleError(
                        rule='age', lot_id=lot.id, max_hours=policy.max_age_difference_hours,
                    )

    sources = len(lot.batches) + len(incoming)
    if policy.max_blend_sources and sources > policy.max_blend_sources:
        raise BlendIncompatibleError(rule='sources', lot_id=lot.id, max_sources=policy.max_blend_sources)


def plan(
    request: PlanRequest,
    tanks: Mapping[int, TankSnapshot],
    availability: Mapping[int, bool],
    lots: Mapping[int, LotSnapshot] | None = None,
    batch: BatchProfile | None = None,
    policy: BlendingPolicy | None = None,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> Plan:
    """
    Validate a placement request.

    Args:
        request: What to place and where
        tanks: Snapshots of every tank the request touches, by id
        availability: Window availability per tank id (missing = unavailable).
            For BLEND, computed with the target lot excluded.
        lots: Target lot snapshots by id (BLEND)
        batch: Incoming batch traits (BLEND rules), or one profile per
            batch when a blended lot is moved
        policy: Blending rules (BLEND)
        tolerance: Accepted |total - sum| for SPLIT

    Returns:
        Plan with ordered allocations

    Raises:
        SelectionRequiredError, VolumeMismatchError, CapacityExceededError,
        TankUnavailableError, BlendIncompatibleError, NotFoundError, CellarError
    """
    lots = lots or {}
    allocations = _resolve_allocations(request, lots)
    _check_shape(request, allocations)

    # 1. Conservation
    if request.mode == AllocationMode.SPLIT:
        remainder = remaining_volume(request.total_volume, allocations)
        if abs(remainder) > to_decimal(tolerance):
            raise VolumeMismatchError(remainder=remainder, total=to_decimal(request.total_volume))

    # 2. Capacity
    target_lot = lots.get(request.target_lot_id) if request.mode == AllocationMode.BLEND else None
    for allocation in allocations:
        tank = _tank(tanks, allocation.tank_id)
        requested = allocation.volume
        if target_lot is not None:
            requested = target_lot.total_volume + allocation.volume
        if requested > tank.capacity:
            raise CapacityExceededError(
                tank_id=tank.id, tank_name=tank.name, capacity=tank.capacity, requested=requested,
            )

    # 3. Availability
    for allocation in allocations:
        tank = tanks[allocation.tank_id]
        reason = None
        if tank.status == TankStatus.MAINTENANCE:
            reason = 'maintenance'
        elif str(request.phase) not in tank.capabilities:
            reason = 'capability'
        elif not availability.get(tank.id, False):
            reason = 'conflict'
        if reason:
            raise TankUnavailableError(tank_id=tank.id, tank_name=tank.name, reason=reason)

    # 4. Blending
    if target_lot is not None:
        _check_blend(_incoming_profiles(batch), target_lot, request.phase, policy or BlendingPolicy())

    return Plan(
        mode=request.mode,
        phase=str(request.phase),
        window=request.window,
        allocations=allocations,
        target_lot_id=target_lot.id if target_lot is not None else None,
    )
