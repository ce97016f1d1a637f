"""
Pytest fixtures for Cellarman tests.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.contrib.auth.models import Permission
from django.utils import timezone

from cellarman.models import Batch, BatchPhase, Tank, TankType
from cellarman.services.planner import Window


User = get_user_model()


@pytest.fixture
def user(db):
    """Create a test user allowed to run cellar commands."""
    user = User.objects.create_user(username='cervejeiro', password='testpass123')
    user.user_permissions.add(Permission.objects.get(codename='change_lot', content_type__app_label='cellarman'))
    return user


@pytest.fixture
def viewer(db):
    """Create a user without command permission."""
    return User.objects.create_user(username='visitante', password='testpass123')


@pytest.fixture
def now():
    return timezone.now().replace(microsecond=0)


@pytest.fixture
def window(now):
    """Fourteen-day fermentation window starting now."""
    return Window(now, now + timedelta(days=14))


@pytest.fixture
def fv1(db):
    return Tank.objects.create(code='fv-01', name='FV 01', type=TankType.FERMENTER, capacity=Decimal('1000'))


@pytest.fixture
def fv2(db):
    return Tank.objects.create(code='fv-02', name='FV 02', type=TankType.FERMENTER, capacity=Decimal('600'))


@pytest.fixture
def fv3(db):
    return Tank.objects.create(code='fv-03', name='FV 03', type=TankType.FERMENTER, capacity=Decimal('600'))


@pytest.fixture
def unitank(db):
    return Tank.objects.create(code='uni-01', name='Unitanque 01', type=TankType.UNITANK, capacity=Decimal('1200'))


@pytest.fixture
def maturador(db):
    return Tank.objects.create(
        code='mat-01', name='Maturador 01', type=TankType.CONDITIONING, capacity=Decimal('1000'),
    )


@pytest.fixture
def brite(db):
    return Tank.objects.create(code='brite-1', name='Brite 1', type=TankType.BRITE, capacity=Decimal('1000'))


@pytest.fixture
def make_batch(db, now):
    """Factory for BREWING batches."""
    counter = {'n': 0}

    def _make(volume='800', yeast_strain='US-05', recipe='ipa', style='American IPA',
              brewed_at=None, phase=BatchPhase.BREWING):
        counter['n'] += 1
        return Batch.objects.create(
            code=f'B-{counter["n"]:03d}',
            recipe=recipe,
            recipe_name=recipe.upper(),
            style=style,
            yeast_strain=yeast_strain,
            volume=Decimal(volume),
            phase=phase,
            brewed_at=brewed_at or now,
        )

    return _make


@pytest.fixture
def batch(make_batch):
    """800 L batch in the brewhouse."""
    return make_batch()


@pytest.fixture
def fermenting_lot(batch, fv1, window):
    """ACTIVE fermentation lot of `batch` sitting in fv1."""
    from cellarman import cellar

    result = cellar.start_fermentation(batch, tank=fv1, window=window)
    cellar.start_assignment(result.assignments[0])
    lot = result.lot
    lot.refresh_from_db()
    return lot
