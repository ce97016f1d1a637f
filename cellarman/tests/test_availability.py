"""
Tests for tank availability and the tank registry.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from cellarman import cellar
from cellarman.exceptions import NotFoundError
from cellarman.models import (
    AssignmentStatus,
    Lot,
    LotPhase,
    LotStatus,
    Tank,
    TankAssignment,
    TankStatus,
    TankType,
)
from cellarman.services.availability import overlaps
from cellarman.services.planner import Window


pytestmark = pytest.mark.django_db


def book(tank, start, end, status=AssignmentStatus.PLANNED, lot=None, phase=LotPhase.FERMENTATION):
    lot = lot or Lot.objects.create(
        code=Lot.next_code(phase), phase=phase, status=LotStatus.PLANNED, total_volume=Decimal('100'),
    )
    return TankAssignment.objects.create(
        tank=tank, lot=lot, phase=phase, planned_start=start, planned_end=end,
        status=status, planned_volume=Decimal('100'),
    )


class TestOverlap:
    """Half-open window arithmetic."""

    def test_touching_windows_do_not_overlap(self, now):
        assert not overlaps(now, now + timedelta(days=4), now + timedelta(days=4), now + timedelta(days=8))

    def test_intersecting_windows_overlap(self, now):
        assert overlaps(now, now + timedelta(days=4), now + timedelta(days=2), now + timedelta(days=6))

    def test_contained_window_overlaps(self, now):
        assert overlaps(now, now + timedelta(days=10), now + timedelta(days=2), now + timedelta(days=3))


class TestCheckAvailability:
    """Tests for cellar.check_availability()."""

    def test_free_tank(self, fv1, window):
        assert cellar.check_availability([fv1.pk], window) == {fv1.pk: True}

    def test_active_assignment_mon_fri_blocks_wed_sun(self, fv1, now):
        """Booked Mon-Fri, requested Wed-Sun: Wed < Fri so unavailable."""
        monday = now
        book(fv1, monday, monday + timedelta(days=4), status=AssignmentStatus.ACTIVE)

        wednesday_to_sunday = Window(monday + timedelta(days=2), monday + timedelta(days=6))

        assert cellar.check_availability([fv1.pk], wednesday_to_sunday) == {fv1.pk: False}

    def test_back_to_back_booking_is_free(self, fv1, now):
        book(fv1, now, now + timedelta(days=4))

        after = Window(now + timedelta(days=4), now + timedelta(days=8))

        assert cellar.is_available(fv1.pk, after)

    def test_finished_and_cancelled_assignments_do_not_block(self, fv1, window):
        book(fv1, window.start, window.end, status=AssignmentStatus.COMPLETED)
        book(fv1, window.start, window.end, status=AssignmentStatus.CANCELLED)

        assert cellar.is_available(fv1.pk, window)

    def test_exclude_lot_ignores_own_booking(self, fv1, window):
        assignment = book(fv1, window.start, window.end)

        assert not cellar.is_available(fv1.pk, window)
        assert cellar.is_available(fv1.pk, window, exclude_lot=assignment.lot)

    def test_result_per_tank(self, fv1, fv2, window):
        book(fv2, window.start, window.end)

        assert cellar.check_availability([fv1.pk, fv2.pk], window) == {fv1.pk: True, fv2.pk: False}

    def test_conflicts_lists_blocking_assignments(self, fv1, window):
        assignment = book(fv1, window.start, window.end)

        assert list(cellar.conflicts([fv1.pk], window)) == [assignment]


class TestCandidateTanks:
    """Tests for cellar.list_candidate_tanks()."""

    def test_filters_by_capability(self, fv1, unitank, brite):
        assert cellar.list_candidate_tanks(LotPhase.FERMENTATION) == [fv1, unitank]
        assert cellar.list_candidate_tanks(LotPhase.BRIGHT) == [brite]

    def test_ordered_by_capacity_then_code(self, fv1, fv2, fv3):
        codes = [t.code for t in cellar.list_candidate_tanks(LotPhase.FERMENTATION)]

        assert codes == ['fv-02', 'fv-03', 'fv-01']

    def test_maintenance_never_listed(self, fv1):
        fv1.status = TankStatus.MAINTENANCE
        fv1.save()

        assert cellar.list_candidate_tanks(
            LotPhase.FERMENTATION, exclude_needs_cip=False, exclude_occupied=False,
        ) == []

    def test_cleaning_excluded_unless_asked(self, fv1):
        fv1.status = TankStatus.CLEANING
        fv1.save()

        assert cellar.list_candidate_tanks(LotPhase.FERMENTATION) == []
        assert cellar.list_candidate_tanks(LotPhase.FERMENTATION, exclude_needs_cip=False) == [fv1]

    def test_cip_overdue_excluded(self, fv1, caplog):
        fv1.next_cip_at = timezone.now() - timedelta(days=1)
        fv1.save()

        with caplog.at_level('WARNING', logger='cellarman'):
            assert cellar.list_candidate_tanks(LotPhase.FERMENTATION) == []

        assert any(r.getMessage() == 'cellar.tank.cip_overdue' for r in caplog.records)

    def test_occupied_excluded_unless_asked(self, fv1, window):
        book(fv1, window.start, window.end, status=AssignmentStatus.ACTIVE)

        assert cellar.list_candidate_tanks(LotPhase.FERMENTATION) == []
        assert cellar.list_candidate_tanks(LotPhase.FERMENTATION, exclude_occupied=False) == [fv1]

    def test_active_assignments_prefetched(self, fv1, window):
        assignment = book(fv1, window.start, window.end)

        [tank] = cellar.list_candidate_tanks(LotPhase.FERMENTATION)

        assert tank.active_assignments == [assignment]

    def test_window_drops_booked_tanks(self, fv1, fv2, window):
        book(fv2, window.start, window.end)

        assert cellar.list_candidate_tanks(LotPhase.FERMENTATION, window=window) == [fv1]

    def test_committed_plan_removes_tank_from_candidates(self, batch, fv1, fv2, window):
        """Round trip: after committing into fv1 it is no longer offered for that window."""
        cellar.start_fermentation(batch, tank=fv1, window=window)

        assert fv1 not in cellar.list_candidate_tanks(LotPhase.FERMENTATION, window=window)


class TestRegistryQueries:
    """get_tank, list_active_lots, occupancy."""

    def test_get_tank_by_code_or_pk(self, fv1):
        assert cellar.get_tank('fv-01') == fv1
        assert cellar.get_tank(fv1.pk) == fv1

    def test_get_tank_missing(self, db):
        with pytest.raises(NotFoundError) as exc:
            cellar.get_tank('nope')

        assert exc.value.code == 'NOT_FOUND'

    def test_list_active_lots(self, batch, fv1, window):
        result = cellar.start_fermentation(batch, tank=fv1, window=window)

        [row] = cellar.list_active_lots(LotPhase.FERMENTATION)

        assert row['id'] == result.lot.pk
        assert row['tank_id'] == fv1.pk
        assert row['tank_name'] == fv1.name
        assert row['total_volume'] == Decimal('800')
        assert row['batch_count'] == 1
        assert cellar.list_active_lots(LotPhase.BRIGHT) == []

    def test_list_active_lots_leaves_out_split_parent(self, batch, fv2, fv3, window):
        """Only the child lots of a split are blend targets."""
        result = cellar.start_fermentation(
            batch, mode='split', window=window, allocations=[(fv2, '400'), (fv3, '400')],
        )
        parent, child_a, child_b = result.lots

        rows = cellar.list_active_lots(LotPhase.FERMENTATION)

        assert [row['id'] for row in rows] == [child_a.pk, child_b.pk]
        assert parent.pk not in [row['id'] for row in rows]

    def test_occupancy_groups_by_tank(self, fv1, fv2, now):
        first = book(fv1, now, now + timedelta(days=3))
        second = book(fv1, now + timedelta(days=3), now + timedelta(days=6))
        book(fv1, now + timedelta(days=20), now + timedelta(days=25))

        result = cellar.occupancy([fv1.pk, fv2.pk], now, now + timedelta(days=7))

        assert result == {fv1.pk: [first, second], fv2.pk: []}


class TestCompleteCip:
    """Tests for cellar.complete_cip()."""

    def test_cleaning_tank_becomes_available(self, fv1, now):
        fv1.status = TankStatus.CLEANING
        fv1.save()

        tank = cellar.complete_cip('fv-01', performed_at=now)

        assert tank.status == TankStatus.AVAILABLE
        assert tank.last_cip_at == now
        assert tank.next_cip_at == now + timedelta(days=14)

    def test_tank_interval_wins_over_setting(self, now):
        tank = Tank.objects.create(
            code='fv-09', name='FV 09', type=TankType.FERMENTER, capacity=Decimal('500'),
            status=TankStatus.CLEANING, cip_interval_days=7,
        )

        tank = cellar.complete_cip(tank, performed_at=now)

        assert tank.next_cip_at == now + timedelta(days=7)

    def test_maintenance_is_kept(self, fv1):
        fv1.status = TankStatus.MAINTENANCE
        fv1.save()

        assert cellar.complete_cip(fv1).status == TankStatus.MAINTENANCE

    def test_cleaned_tank_is_candidate_again(self, fv1):
        fv1.status = TankStatus.CLEANING
        fv1.save()
        assert cellar.list_candidate_tanks(LotPhase.FERMENTATION) == []

        cellar.complete_cip(fv1)

        assert cellar.list_candidate_tanks(LotPhase.FERMENTATION) == [fv1]
