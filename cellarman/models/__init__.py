"""
Cellarman Models.

Core models for cellar scheduling:
- Tank: Vessel with capacity and phase capabilities
- Batch: One brew, the source of volume
- Lot / LotBatch: Tracked volume and which batches it came from
- TankAssignment: Time-windowed booking of a tank by a lot
- Transfer: Immutable ledger of volume movements
- Reading: Gravity/temperature log
- BlendingConfig: Rules for blending batches into lots
"""

from cellarman.models.assignment import TankAssignment
from cellarman.models.batch import Batch
from cellarman.models.blending import BlendingConfig
from cellarman.models.enums import (
    AssignmentStatus,
    BatchPhase,
    LotPhase,
    LotStatus,
    TankStatus,
    TankType,
    TransferStatus,
    TransferType,
)
from cellarman.models.lot import Lot, LotBatch
from cellarman.models.reading import Reading
from cellarman.models.tank import Tank
from cellarman.models.transfer import Transfer

__all__ = [
    'TankType',
    'TankStatus',
    'LotPhase',
    'LotStatus',
    'AssignmentStatus',
    'BatchPhase',
    'TransferType',
    'TransferStatus',
    'Tank',
    'Batch',
    'Lot',
    'LotBatch',
    'TankAssignment',
    'Transfer',
    'Reading',
    'BlendingConfig',
]
