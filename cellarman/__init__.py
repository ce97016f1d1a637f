"""
Django Cellarman — Agendamento de Tanques e Lotes.

Uso:
    from cellarman import cellar, CellarError

    cellar.list_candidate_tanks('fermentation')
    cellar.start_fermentation(batch, mode='single', tank=fv1)
    cellar.transfer_to_conditioning(lot, stay_in_same_tank=True)
"""


def __getattr__(name):
    """Lazy import to avoid circular imports during app loading."""
    if name == 'cellar':
        from cellarman.service import Cellar
        return Cellar
    elif name == 'CellarError':
        from cellarman.exceptions import CellarError
        return CellarError
    elif name == 'Tank':
        from cellarman.models.tank import Tank
        return Tank
    elif name == 'Batch':
        from cellarman.models.batch import Batch
        return Batch
    elif name == 'Lot':
        from cellarman.models.lot import Lot
        return Lot
    elif name == 'TankAssignment':
        from cellarman.models.assignment import TankAssignment
        return TankAssignment
    elif name == 'Transfer':
        from cellarman.models.transfer import Transfer
        return Transfer
    elif name == 'LotPhase':
        from cellarman.models.enums import LotPhase
        return LotPhase
    elif name == 'AllocationMode':
        from cellarman.services.planner import AllocationMode
        return AllocationMode
    elif name == 'Window':
        from cellarman.services.planner import Window
        return Window
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    'cellar',
    'CellarError',
    'Tank',
    'Batch',
    'Lot',
    'TankAssignment',
    'Transfer',
    'LotPhase',
    'AllocationMode',
    'Window',
]

__version__ = '0.1.0'
