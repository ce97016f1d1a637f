"""
Cellar services — modular organization of cellar operations.

    from cellarman.services import TankRegistry, AvailabilityChecker, LotWriter, TransferOrchestrator
"""

from cellarman.services.availability import AvailabilityChecker
from cellarman.services.orchestrator import TransferOrchestrator
from cellarman.services.registry import TankRegistry
from cellarman.services.writer import LotWriter

__all__ = [
    'TankRegistry',
    'AvailabilityChecker',
    'LotWriter',
    'TransferOrchestrator',
]
