"""
Cellar Service — The single public interface for cellar scheduling.

Usage:
    from cellarman import cellar, CellarError

    cellar.start_brewing(batch)
    result = cellar.start_fermentation(batch, mode='split', allocations=[(fv1, 300), (fv2, 200)])
    cellar.start_assignment(result.assignments[0])
    cellar.transfer_to_conditioning(result.lots[1], tank=brite, measured_loss=5)
"""

from cellarman.services.availability import AvailabilityChecker
from cellarman.services.orchestrator import TransferOrchestrator
from cellarman.services.registry import TankRegistry
from cellarman.services.writer import LotWriter


class Cellar(TankRegistry, AvailabilityChecker, LotWriter, TransferOrchestrator):
    """
    Single interface for all cellar operations.

    Queries (no locking):
        list_candidate_tanks, check_availability, list_active_lots,
        occupancy, plan

    State changes (transaction.atomic with row locks):
        start_brewing, start_fermentation, start_assignment,
        transfer_lot / transfer_to_conditioning / transfer_to_bright,
        start_packaging, complete_lot, cancel_batch, complete_cip, commit
    """


cellar = Cellar
