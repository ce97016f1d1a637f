"""
Tests for model-level rules and constraints.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from cellarman.conf import get_cellarman_settings
from cellarman.models import (
    AssignmentStatus,
    BatchPhase,
    BlendingConfig,
    Lot,
    LotPhase,
    LotStatus,
    Tank,
    TankAssignment,
    TankStatus,
    TankType,
    Transfer,
    TransferStatus,
    TransferType,
)


pytestmark = pytest.mark.django_db


class TestTank:
    """Capabilities and CIP state."""

    def test_capabilities_default_from_type(self, unitank, brite):
        assert unitank.capabilities == ['fermentation', 'conditioning']
        assert brite.capabilities == ['conditioning', 'bright']

    def test_explicit_capabilities_kept(self):
        tank = Tank.objects.create(
            code='fv-10', name='FV 10', type=TankType.FERMENTER, capacity=Decimal('500'),
            capabilities=['fermentation', 'conditioning'],
        )

        assert tank.supports(LotPhase.CONDITIONING)

    def test_unknown_capability_rejected(self):
        tank = Tank(code='fv-11', name='FV 11', capacity=Decimal('500'), capabilities=['ferment'])

        with pytest.raises(ValidationError):
            tank.full_clean()
        with pytest.raises(ValueError):
            tank.save()

    def test_capacity_must_be_positive(self):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                Tank.objects.create(code='fv-12', name='FV 12', capacity=Decimal('0'))

    def test_needs_cip(self, fv1):
        assert not fv1.needs_cip

        fv1.next_cip_at = timezone.now() - timedelta(hours=1)
        assert fv1.needs_cip

        fv1.next_cip_at = None
        fv1.status = TankStatus.CLEANING
        assert fv1.needs_cip


class TestBatch:
    """Volume freeze."""

    def test_volume_editable_while_brewing(self, batch):
        batch.volume = Decimal('780')
        batch.save()

        batch.refresh_from_db()
        assert batch.volume == Decimal('780')

    def test_volume_frozen_after_brewing(self, make_batch):
        batch = make_batch(phase=BatchPhase.FERMENTING)
        batch.volume = Decimal('700')

        with pytest.raises(ValueError):
            batch.save()


class TestLot:
    """Codes and balance."""

    def test_child_suffix(self):
        assert Lot.child_suffix(0) == 'A'
        assert Lot.child_suffix(25) == 'Z'
        assert Lot.child_suffix(26) == 'AA'

    def test_next_code_per_phase(self, db):
        year = timezone.now().year
        Lot.objects.create(code=f'LOT-{year}-F001', phase=LotPhase.FERMENTATION, total_volume=Decimal('1'))

        assert Lot.next_code(LotPhase.FERMENTATION) == f'LOT-{year}-F002'
        assert Lot.next_code(LotPhase.CONDITIONING) == f'LOT-{year}-C001'


class TestTankAssignment:
    """Database constraints on assignments."""

    def make_lot(self):
        return Lot.objects.create(
            code=Lot.next_code(LotPhase.FERMENTATION), phase=LotPhase.FERMENTATION,
            status=LotStatus.ACTIVE, total_volume=Decimal('100'),
        )

    def assign(self, tank, start, end, status=AssignmentStatus.PLANNED):
        return TankAssignment.objects.create(
            tank=tank, lot=self.make_lot(), phase=LotPhase.FERMENTATION,
            planned_start=start, planned_end=end, status=status, planned_volume=Decimal('100'),
        )

    def test_one_active_assignment_per_tank(self, fv1, now):
        self.assign(fv1, now, now + timedelta(days=3), status=AssignmentStatus.ACTIVE)

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                self.assign(fv1, now + timedelta(days=5), now + timedelta(days=8),
                            status=AssignmentStatus.ACTIVE)

    def test_window_must_be_positive(self, fv1, now):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                self.assign(fv1, now, now)

    def test_overlapping_queryset(self, fv1, now):
        first = self.assign(fv1, now, now + timedelta(days=4))
        self.assign(fv1, now + timedelta(days=4), now + timedelta(days=6))

        assert list(TankAssignment.objects.overlapping(now + timedelta(days=1), now + timedelta(days=2))) == [first]


class TestTransfer:
    """Immutability of the transfer ledger."""

    def make_transfer(self, fv1, status=TransferStatus.EXECUTED):
        lot = Lot.objects.create(code='LOT-X', phase=LotPhase.FERMENTATION, total_volume=Decimal('100'))
        return Transfer.objects.create(
            dest_lot=lot, dest_tank=fv1, transfer_type=TransferType.TANK_TO_TANK,
            volume=Decimal('100'), status=status,
        )

    def test_executed_at_set(self, fv1):
        assert self.make_transfer(fv1).executed_at is not None

    def test_executed_is_immutable(self, fv1):
        transfer = self.make_transfer(fv1)
        transfer.volume = Decimal('90')

        with pytest.raises(ValueError):
            transfer.save()

    def test_planned_may_change(self, fv1):
        transfer = self.make_transfer(fv1, status=TransferStatus.PLANNED)
        transfer.status = TransferStatus.EXECUTED
        transfer.save()

        transfer.refresh_from_db()
        assert transfer.status == TransferStatus.EXECUTED

    def test_never_deleted(self, fv1):
        transfer = self.make_transfer(fv1, status=TransferStatus.PLANNED)

        with pytest.raises(ValueError):
            transfer.delete()


class TestBlendingConfig:
    """Policy in force."""

    def test_falls_back_to_settings(self, db):
        policy = BlendingConfig.current()

        assert policy.require_yeast_match
        assert policy.max_blend_sources == 4

    def test_active_row_wins(self, db):
        BlendingConfig.objects.create(name='rigida', require_style_match=True, max_blend_sources=2)
        BlendingConfig.objects.create(name='antiga', is_active=False)

        policy = BlendingConfig.current()

        assert policy.require_style_match
        assert policy.max_blend_sources == 2


class TestSettings:
    """CELLARMAN settings."""

    def test_defaults_merge(self, settings):
        settings.CELLARMAN = {'VOLUME_TOLERANCE': '1', 'BLENDING': {'require_style_match': True}}

        conf = get_cellarman_settings()

        assert conf.VOLUME_TOLERANCE == Decimal('1')
        assert conf.BLENDING['require_style_match']
        assert conf.BLENDING['require_yeast_match']
        assert conf.DEFAULT_PHASE_DAYS['bright'] == 7
