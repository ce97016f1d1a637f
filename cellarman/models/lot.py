"""
Lot model — a volume of beer tracked through phases and tanks.

A lot holds volume from one or more batches (LotBatch rows).
Splits produce child lots; blends add batches to an existing lot.
"""

from decimal import Decimal

from django.db import models
from django.db.models import Sum
from django.db.models.functions import Coalesce
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from cellarman.models.enums import AssignmentStatus, LotPhase, LotStatus


PHASE_CODE_LETTER = {
    LotPhase.FERMENTATION: 'F',
    LotPhase.CONDITIONING: 'C',
    LotPhase.BRIGHT: 'B',
    LotPhase.PACKAGING: 'P',
}


class LotQuerySet(models.QuerySet):
    """Custom QuerySet for Lot."""

    def open(self):
        """Lots still holding beer (planned or active)."""
        return self.filter(status__in=[LotStatus.PLANNED, LotStatus.ACTIVE])

    def active(self):
        return self.filter(status=LotStatus.ACTIVE)

    def in_phase(self, phase):
        return self.filter(phase=phase)

    def for_batch(self, batch):
        return self.filter(contributions__batch=batch).distinct()


class Lot(models.Model):
    """
    Lot of beer.

    Codes:
        LOT-2026-F001      fermentation lot
        LOT-2026-F001-A    first child of a split

    Invariant: sum of contributions equals total_volume within
    CELLARMAN["VOLUME_TOLERANCE"] (see is_balanced).
    """

    code = models.CharField(max_length=60, unique=True, verbose_name=_('Código do Lote'))
    phase = models.CharField(
        max_length=20,
        choices=LotPhase.choices,
        default=LotPhase.FERMENTATION,
        db_index=True,
        verbose_name=_('Fase'),
    )
    status = models.CharField(
        max_length=20,
        choices=LotStatus.choices,
        default=LotStatus.PLANNED,
        db_index=True,
        verbose_name=_('Status'),
    )
    total_volume = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        verbose_name=_('Volume Total (L)'),
    )

    parent = models.ForeignKey(
        'self',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='children',
        verbose_name=_('Lote de Origem'),
    )
    split_ratio = models.DecimalField(
        max_digits=7,
        decimal_places=6,
        null=True,
        blank=True,
        verbose_name=_('Fração da Divisão'),
    )
    is_blend_result = models.BooleanField(default=False, verbose_name=_('Resultado de Blend'))

    batches = models.ManyToManyField(
        'cellarman.Batch',
        through='cellarman.LotBatch',
        related_name='lots',
        verbose_name=_('Brassagens'),
    )

    notes = models.TextField(blank=True, default='', verbose_name=_('Observações'))
    metadata = models.JSONField(default=dict, blank=True, verbose_name=_('Metadados'))

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(null=True, blank=True, verbose_name=_('Concluído em'))

    objects = LotQuerySet.as_manager()

    class Meta:
        verbose_name = _('Lote')
        verbose_name_plural = _('Lotes')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'phase']),
        ]

    @classmethod
    def next_code(cls, phase, year: int | None = None) -> str:
        """Next sequential code for a phase, e.g. LOT-2026-F003."""
        year = year or timezone.now().year
        prefix = f"LOT-{year}-{PHASE_CODE_LETTER[LotPhase(phase)]}"
        # Split children (…-A, …-B) share the prefix; count only root codes
        seq = cls.objects.filter(code__regex=rf'^{prefix}[0-9]+$').count()
        return f"{prefix}{seq + 1:03d}"

    @staticmethod
    def child_suffix(index: int) -> str:
        """0 -> A, 1 -> B, ... 25 -> Z, 26 -> AA."""
        letters = ''
        index += 1
        while index:
            index, rem = divmod(index - 1, 26)
            letters = chr(ord('A') + rem) + letters
        return letters

    @property
    def contributed_volume(self) -> Decimal:
        return self.contributions.aggregate(
            t=Coalesce(Sum('volume_contribution'), Decimal('0'))
        )['t']

    @property
    def is_balanced(self) -> bool:
        from cellarman.conf import cellarman_settings
        return abs(self.total_volume - self.contributed_volume) <= cellarman_settings.VOLUME_TOLERANCE

    @property
    def is_open(self) -> bool:
        return self.status in (LotStatus.PLANNED, LotStatus.ACTIVE)

    @property
    def current_assignment(self):
        """The lot's ACTIVE assignment, else its latest PLANNED one."""
        open_assignments = self.assignments.filter(
            status__in=[AssignmentStatus.ACTIVE, AssignmentStatus.PLANNED]
        )
        return (
            open_assignments.filter(status=AssignmentStatus.ACTIVE).first()
            or open_assignments.order_by('-planned_start').first()
        )

    def __str__(self) -> str:
        return f"{self.code} ({self.total_volume} L)"


class LotBatch(models.Model):
    """
    How much of a batch sits in a lot.

    percentage is the share of the batch's volume, not of the lot.
    """

    lot = models.ForeignKey(
        Lot,
        on_delete=models.CASCADE,
        related_name='contributions',
        verbose_name=_('Lote'),
    )
    batch = models.ForeignKey(
        'cellarman.Batch',
        on_delete=models.PROTECT,
        related_name='contributions',
        verbose_name=_('Brassagem'),
    )
    volume_contribution = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        verbose_name=_('Volume Contribuído (L)'),
    )
    percentage = models.DecimalField(
        max_digits=7,
        decimal_places=3,
        default=Decimal('100'),
        verbose_name=_('Percentual da Brassagem'),
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _('Contribuição')
        verbose_name_plural = _('Contribuições')
        constraints = [
            models.UniqueConstraint(fields=['lot', 'batch'], name='cellarman_lotbatch_unique'),
        ]

    def __str__(self) -> str:
        return f"{self.batch} → {self.lot}: {self.volume_contribution} L"
