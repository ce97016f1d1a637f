"""
Enums for Cellarman models.
"""

from django.db import models
from django.utils.translation import gettext_lazy as _


class TankType(models.TextChoices):
    """Kind of vessel. Drives the default capability set only."""
    FERMENTER = 'fermenter', _('Fermentador')
    BRITE = 'brite', _('Tanque Brite')
    UNITANK = 'unitank', _('Unitanque')
    CONDITIONING = 'conditioning', _('Maturador')
    KETTLE = 'kettle', _('Tina de Fervura')
    MASH_TUN = 'mash_tun', _('Tina de Mostura')


class TankStatus(models.TextChoices):
    """Operational state of a vessel."""
    AVAILABLE = 'available', _('Disponível')
    OCCUPIED = 'occupied', _('Ocupado')
    CLEANING = 'cleaning', _('Em Limpeza')       # Needs CIP before reuse
    MAINTENANCE = 'maintenance', _('Manutenção') # Never a candidate


class LotPhase(models.TextChoices):
    """Phase a lot is in. Also the unit of tank capability."""
    FERMENTATION = 'fermentation', _('Fermentação')
    CONDITIONING = 'conditioning', _('Maturação')
    BRIGHT = 'bright', _('Pronta')
    PACKAGING = 'packaging', _('Envase')


class LotStatus(models.TextChoices):
    """Lot lifecycle status."""
    PLANNED = 'planned', _('Planejado')
    ACTIVE = 'active', _('Ativo')
    COMPLETED = 'completed', _('Concluído')
    CANCELLED = 'cancelled', _('Cancelado')


class AssignmentStatus(models.TextChoices):
    """Tank assignment lifecycle. PLANNED and ACTIVE both occupy the tank."""
    PLANNED = 'planned', _('Planejado')
    ACTIVE = 'active', _('Ativo')
    COMPLETED = 'completed', _('Concluído')
    CANCELLED = 'cancelled', _('Cancelado')


class BatchPhase(models.TextChoices):
    """Batch lifecycle, brew day to packaged."""
    PLANNED = 'planned', _('Planejado')
    BREWING = 'brewing', _('Brassagem')
    FERMENTING = 'fermenting', _('Fermentando')
    CONDITIONING = 'conditioning', _('Maturando')
    READY = 'ready', _('Pronto')
    PACKAGING = 'packaging', _('Envasando')
    COMPLETED = 'completed', _('Concluído')
    CANCELLED = 'cancelled', _('Cancelado')


class TransferType(models.TextChoices):
    FERMENT_TO_CONDITION = 'ferment_to_condition', _('Fermentação → Maturação')
    CONDITION_TO_BRIGHT = 'condition_to_bright', _('Maturação → Pronta')
    TANK_TO_TANK = 'tank_to_tank', _('Tanque a Tanque')
    BLEND = 'blend', _('Blend')
    SPLIT = 'split', _('Divisão')


class TransferStatus(models.TextChoices):
    PLANNED = 'planned', _('Planejada')
    EXECUTED = 'executed', _('Executada')
    CANCELLED = 'cancelled', _('Cancelada')


# Statuses that occupy a tank for the assignment's window
BLOCKING_ASSIGNMENT_STATUSES = (AssignmentStatus.PLANNED, AssignmentStatus.ACTIVE)

# Lot phase -> batch phase reached when a lot enters it
LOT_TO_BATCH_PHASE = {
    LotPhase.FERMENTATION: BatchPhase.FERMENTING,
    LotPhase.CONDITIONING: BatchPhase.CONDITIONING,
    LotPhase.BRIGHT: BatchPhase.READY,
    LotPhase.PACKAGING: BatchPhase.PACKAGING,
}

# Phases a tank of each type can host when none are given explicitly
DEFAULT_CAPABILITIES = {
    TankType.FERMENTER: [LotPhase.FERMENTATION],
    TankType.UNITANK: [LotPhase.FERMENTATION, LotPhase.CONDITIONING],
    TankType.CONDITIONING: [LotPhase.CONDITIONING],
    TankType.BRITE: [LotPhase.CONDITIONING, LotPhase.BRIGHT],
    TankType.KETTLE: [],
    TankType.MASH_TUN: [],
}
