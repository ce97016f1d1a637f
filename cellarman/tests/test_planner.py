"""
Tests for the allocation planner (pure functions, no database).
"""

from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal

import pytest

from cellarman.exceptions import (
    BlendIncompatibleError,
    CapacityExceededError,
    CellarError,
    NotFoundError,
    SelectionRequiredError,
    TankUnavailableError,
    VolumeMismatchError,
)
from cellarman.services.planner import (
    Allocation,
    AllocationMode,
    BatchProfile,
    BlendingPolicy,
    LotSnapshot,
    PlanRequest,
    TankSnapshot,
    Window,
    default_allocation,
    plan,
    remaining_volume,
    split_equally,
    to_decimal,
)


MONDAY = datetime(2026, 3, 2, 8, 0, tzinfo=dt_timezone.utc)
WINDOW = Window(MONDAY, MONDAY + timedelta(days=14))


def tank(id, capacity, capabilities=('fermentation',), status='available', name=None):
    return TankSnapshot(
        id=id,
        name=name or f'T{id}',
        capacity=Decimal(capacity),
        status=status,
        capabilities=frozenset(capabilities),
    )


def request(total, mode=AllocationMode.SINGLE, **kwargs):
    kwargs.setdefault('phase', 'fermentation')
    kwargs.setdefault('window', WINDOW)
    return PlanRequest(total_volume=Decimal(total), mode=mode, **kwargs)


def free(*tanks):
    return {t.id: True for t in tanks}


class TestExampleScenarios:
    """Worked examples for the planner rules."""

    def test_split_exact_allocation_passes(self):
        """500 L split 300 + 200 over tanks of 300 and 250 L passes with no remainder."""
        a, b = tank(1, '300'), tank(2, '250')
        req = request('500', AllocationMode.SPLIT, allocations=(
            Allocation(1, Decimal('300')), Allocation(2, Decimal('200')),
        ))

        result = plan(req, {1: a, 2: b}, free(a, b))

        assert result.total_volume == Decimal('500')
        assert remaining_volume(req.total_volume, result.allocations) == Decimal('0')
        assert result.tank_ids == (1, 2)

    def test_split_under_allocated_reports_signed_remainder(self):
        """300 + 150 of 500 L is under-allocated by +50."""
        a, b = tank(1, '300'), tank(2, '250')
        req = request('500', AllocationMode.SPLIT, allocations=(
            Allocation(1, Decimal('300')), Allocation(2, Decimal('150')),
        ))

        with pytest.raises(VolumeMismatchError) as exc:
            plan(req, {1: a, 2: b}, free(a, b))

        assert exc.value.code == 'VOLUME_MISMATCH'
        assert exc.value.remainder == Decimal('50')

    def test_single_over_capacity(self):
        """500 L into a 400 L tank reports capacity and requested volume."""
        t = tank(1, '400')

        with pytest.raises(CapacityExceededError) as exc:
            plan(request('500', tank_id=1), {1: t}, free(t))

        assert exc.value.data['capacity'] == Decimal('400')
        assert exc.value.data['requested'] == Decimal('500')
        assert exc.value.tank_id == 1

    def test_booked_tank_is_unavailable(self):
        """A tank booked for the window is rejected with reason 'conflict'."""
        t = tank(7, '1000')

        with pytest.raises(TankUnavailableError) as exc:
            plan(request('500', tank_id=7), {7: t}, {7: False})

        assert exc.value.tank_id == 7
        assert exc.value.reason == 'conflict'

    def test_blend_yeast_mismatch(self):
        """Blending WLP001 into a US-05 lot fails the yeast rule."""
        y = tank(3, '1000')
        lot = LotSnapshot(
            id=10, phase='fermentation', total_volume=Decimal('200'), tank_id=3,
            batches=(BatchProfile(yeast_strain='US-05', brewed_at=MONDAY),),
        )
        req = request('300', AllocationMode.BLEND, target_lot_id=10)

        with pytest.raises(BlendIncompatibleError) as exc:
            plan(req, {3: y}, free(y), lots={10: lot},
                 batch=BatchProfile(yeast_strain='WLP001', brewed_at=MONDAY),
                 policy=BlendingPolicy(require_yeast_match=True))

        assert exc.value.rule == 'yeast'

    def test_equal_split_fits_capacity(self):
        """600 L over three 250 L tanks is 200 L each and passes."""
        tanks = {i: tank(i, '250') for i in (1, 2, 3)}
        allocations = split_equally(Decimal('600'), [1, 2, 3])

        assert [a.volume for a in allocations] == [Decimal('200')] * 3

        result = plan(
            request('600', AllocationMode.SPLIT, allocations=allocations),
            tanks, free(*tanks.values()),
        )
        assert result.total_volume == Decimal('600')


class TestConservation:
    """Volume conservation for SPLIT plans."""

    def test_within_tolerance_passes(self):
        a, b = tank(1, '300'), tank(2, '300')
        req = request('500', AllocationMode.SPLIT, allocations=(
            Allocation(1, Decimal('300')), Allocation(2, Decimal('199.6')),
        ))

        result = plan(req, {1: a, 2: b}, free(a, b))

        assert result.total_volume == Decimal('499.6')

    def test_over_allocated_remainder_is_negative(self):
        a, b = tank(1, '300'), tank(2, '300')
        req = request('500', AllocationMode.SPLIT, allocations=(
            Allocation(1, Decimal('300')), Allocation(2, Decimal('201')),
        ))

        with pytest.raises(VolumeMismatchError) as exc:
            plan(req, {1: a, 2: b}, free(a, b))

        assert exc.value.remainder == Decimal('-1')

    def test_custom_tolerance(self):
        """A tighter tolerance rejects what the default accepts."""
        a, b = tank(1, '300'), tank(2, '300')
        req = request('500', AllocationMode.SPLIT, allocations=(
            Allocation(1, Decimal('300')), Allocation(2, Decimal('199.6')),
        ))

        with pytest.raises(VolumeMismatchError):
            plan(req, {1: a, 2: b}, free(a, b), tolerance=Decimal('0.1'))


class TestRuleOrder:
    """First failing rule wins."""

    def test_selection_required_before_anything(self):
        with pytest.raises(SelectionRequiredError):
            plan(request('500'), {}, {})

    def test_split_without_allocations(self):
        with pytest.raises(SelectionRequiredError) as exc:
            plan(request('500', AllocationMode.SPLIT), {}, {})

        assert exc.value.data['mode'] == 'split'

    def test_blend_target_without_tank(self):
        lot = LotSnapshot(id=10, phase='fermentation', total_volume=Decimal('200'), tank_id=None)

        with pytest.raises(SelectionRequiredError):
            plan(request('100', AllocationMode.BLEND, target_lot_id=10), {}, {}, lots={10: lot})

    def test_conservation_before_capacity(self):
        """An over-capacity split that also misses the total reports the mismatch."""
        a, b = tank(1, '100'), tank(2, '100')
        req = request('500', AllocationMode.SPLIT, allocations=(
            Allocation(1, Decimal('300')), Allocation(2, Decimal('100')),
        ))

        with pytest.raises(VolumeMismatchError):
            plan(req, {1: a, 2: b}, free(a, b))

    def test_capacity_before_availability(self):
        t = tank(1, '400')

        with pytest.raises(CapacityExceededError):
            plan(request('500', tank_id=1), {1: t}, {1: False})

    def test_availability_before_blend_rules(self):
        y = tank(3, '1000')
        lot = LotSnapshot(
            id=10, phase='fermentation', total_volume=Decimal('200'), tank_id=3,
            batches=(BatchProfile(yeast_strain='US-05'),),
        )

        with pytest.raises(TankUnavailableError):
            plan(request('100', AllocationMode.BLEND, target_lot_id=10), {3: y}, {3: False},
                 lots={10: lot}, batch=BatchProfile(yeast_strain='WLP001'))

    def test_maintenance_reason(self):
        t = tank(1, '1000', status='maintenance')

        with pytest.raises(TankUnavailableError) as exc:
            plan(request('500', tank_id=1), {1: t}, free(t))

        assert exc.value.reason == 'maintenance'

    def test_capability_reason(self):
        """A brite-only tank cannot host fermentation."""
        t = tank(1, '1000', capabilities=('bright',))

        with pytest.raises(TankUnavailableError) as exc:
            plan(request('500', tank_id=1), {1: t}, free(t))

        assert exc.value.reason == 'capability'

    def test_unknown_tank(self):
        with pytest.raises(NotFoundError):
            plan(request('500', tank_id=99), {}, {})


class TestShape:
    """Malformed requests."""

    def test_duplicate_tank_in_split(self):
        a = tank(1, '1000')
        req = request('500', AllocationMode.SPLIT, allocations=(
            Allocation(1, Decimal('250')), Allocation(1, Decimal('250')),
        ))

        with pytest.raises(CellarError) as exc:
            plan(req, {1: a}, free(a))

        assert exc.value.code == 'DUPLICATE_TANK'

    def test_non_positive_allocation(self):
        a, b = tank(1, '1000'), tank(2, '1000')
        req = request('500', AllocationMode.SPLIT, allocations=(
            Allocation(1, Decimal('500')), Allocation(2, Decimal('0')),
        ))

        with pytest.raises(CellarError) as exc:
            plan(req, {1: a, 2: b}, free(a, b))

        assert exc.value.code == 'INVALID_VOLUME'

    def test_window_end_must_follow_start(self):
        with pytest.raises(CellarError) as exc:
            Window(MONDAY, MONDAY)

        assert exc.value.code == 'INVALID_WINDOW'


class TestBlend:
    """BLEND capacity and compatibility rules."""

    def make_lot(self, volume='200', phase='fermentation', batches=None):
        return LotSnapshot(
            id=10, phase=phase, total_volume=Decimal(volume), tank_id=3,
            batches=batches or (BatchProfile(recipe='ipa', yeast_strain='US-05', style='IPA',
                                             brewed_at=MONDAY),),
        )

    def run(self, lot, incoming, volume='300', capacity='1000', policy=None):
        y = tank(3, capacity)
        return plan(
            request(volume, AllocationMode.BLEND, target_lot_id=lot.id),
            {3: y}, free(y), lots={lot.id: lot}, batch=incoming,
            policy=policy or BlendingPolicy(),
        )

    def test_compatible_blend_targets_lot_tank(self):
        incoming = BatchProfile(recipe='ipa', yeast_strain='US-05', style='IPA', brewed_at=MONDAY)

        result = self.run(self.make_lot(), incoming)

        assert result.mode == AllocationMode.BLEND
        assert result.target_lot_id == 10
        assert result.allocations == (Allocation(3, Decimal('300')),)

    def test_capacity_counts_lot_volume(self):
        """Lot already holds 800 L; 300 more overflows a 1000 L tank."""
        incoming = BatchProfile(yeast_strain='US-05', brewed_at=MONDAY)

        with pytest.raises(CapacityExceededError) as exc:
            self.run(self.make_lot(volume='800'), incoming)

        assert exc.value.data['requested'] == Decimal('1100')

    def test_recipe_rule_checked_first(self):
        """With recipe and yeast both enabled and both failing, recipe is reported."""
        incoming = BatchProfile(recipe='stout', yeast_strain='WLP001', brewed_at=MONDAY)

        with pytest.raises(BlendIncompatibleError) as exc:
            self.run(self.make_lot(), incoming, policy=BlendingPolicy(require_recipe_match=True))

        assert exc.value.rule == 'recipe'

    def test_style_rule(self):
        incoming = BatchProfile(recipe='ipa', yeast_strain='US-05', style='NEIPA', brewed_at=MONDAY)

        with pytest.raises(BlendIncompatibleError) as exc:
            self.run(self.make_lot(), incoming, policy=BlendingPolicy(require_style_match=True))

        assert exc.value.rule == 'style'

    def test_phase_rule(self):
        incoming = BatchProfile(yeast_strain='US-05', brewed_at=MONDAY)

        with pytest.raises(BlendIncompatibleError) as exc:
            self.run(self.make_lot(phase='conditioning'), incoming)

        assert exc.value.rule == 'phase'

    def test_age_rule(self):
        incoming = BatchProfile(yeast_strain='US-05', brewed_at=MONDAY + timedelta(hours=49))

        with pytest.raises(BlendIncompatibleError) as exc:
            self.run(self.make_lot(), incoming)

        assert exc.value.rule == 'age'

    def test_age_rule_disabled_with_zero(self):
        incoming = BatchProfile(yeast_strain='US-05', brewed_at=MONDAY + timedelta(days=10))

        result = self.run(self.make_lot(), incoming, policy=BlendingPolicy(max_age_difference_hours=0))

        assert result.target_lot_id == 10

    def test_every_incoming_batch_checked(self):
        """A moving lot brings all of its batches; the second one's yeast differs."""
        incoming = (
            BatchProfile(recipe='ipa', yeast_strain='US-05', style='IPA', brewed_at=MONDAY),
            BatchProfile(recipe='ipa', yeast_strain='WLP001', style='IPA', brewed_at=MONDAY),
        )

        with pytest.raises(BlendIncompatibleError) as exc:
            self.run(self.make_lot(), incoming)

        assert exc.value.rule == 'yeast'
        assert exc.value.data['expected'] == 'US-05'
        assert exc.value.data['got'] == 'WLP001'

    def test_sources_rule(self):
        batches = tuple(BatchProfile(yeast_strain='US-05', brewed_at=MONDAY) for _ in range(4))
        incoming = BatchProfile(yeast_strain='US-05', brewed_at=MONDAY)

        with pytest.raises(BlendIncompatibleError) as exc:
            self.run(self.make_lot(batches=batches), incoming)

        assert exc.value.rule == 'sources'


class TestPurity:
    """Same inputs give the same plan."""

    def test_replanning_is_idempotent(self):
        a, b = tank(1, '300'), tank(2, '250')
        req = request('500', AllocationMode.SPLIT, allocations=(
            Allocation(1, Decimal('300')), Allocation(2, Decimal('200')),
        ))
        tanks, availability = {1: a, 2: b}, free(a, b)

        first = plan(req, tanks, availability)
        second = plan(req, tanks, availability)

        assert first == second
        assert first.as_dict() == second.as_dict()


class TestHelpers:
    """split_equally, default_allocation, remaining_volume."""

    def test_split_equally_puts_residue_on_last_tank(self):
        allocations = split_equally(Decimal('100'), [1, 2, 3])

        assert [a.volume for a in allocations] == [Decimal('33.333'), Decimal('33.333'), Decimal('33.334')]
        assert sum(a.volume for a in allocations) == Decimal('100')

    def test_split_equally_ignores_capacity(self):
        """Capacity is the planner's job."""
        allocations = split_equally(Decimal('1000'), [1, 2])

        assert [a.volume for a in allocations] == [Decimal('500'), Decimal('500')]

    def test_split_equally_empty(self):
        assert split_equally(Decimal('100'), []) == ()

    def test_default_allocation_takes_remaining(self):
        assert default_allocation(Decimal('500'), Decimal('300'), Decimal('1000')) == Decimal('200')

    def test_default_allocation_capped_by_capacity(self):
        assert default_allocation(Decimal('500'), Decimal('0'), Decimal('250')) == Decimal('250')

    def test_default_allocation_floor(self):
        """Nothing left to allocate still suggests the minimum."""
        assert default_allocation(Decimal('500'), Decimal('500'), Decimal('250')) == Decimal('1')

    def test_remaining_volume_signed(self):
        allocations = [Allocation(1, Decimal('300')), Allocation(2, Decimal('250'))]

        assert remaining_volume(Decimal('500'), allocations) == Decimal('-50')

    def test_default_allocation_floor_from_settings(self, settings):
        settings.CELLARMAN = {'MIN_ALLOCATION_VOLUME': '5'}

        assert default_allocation(Decimal('500'), Decimal('500'), Decimal('250')) == Decimal('5')

    @pytest.mark.parametrize('value', ['abc', None, 'NaN', 'Infinity', ''])
    def test_to_decimal_rejects_non_numbers(self, value):
        with pytest.raises(CellarError) as exc:
            to_decimal(value)

        assert exc.value.code == 'INVALID_VOLUME'

    def test_to_decimal_keeps_float_digits(self):
        assert to_decimal(0.1) == Decimal('0.1')
