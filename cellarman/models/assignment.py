"""
TankAssignment model — reservation of a tank by a lot for a window.
"""

from django.db import models
from django.utils.translation import gettext_lazy as _

from cellarman.models.enums import BLOCKING_ASSIGNMENT_STATUSES, AssignmentStatus, LotPhase


class TankAssignmentQuerySet(models.QuerySet):
    """Custom QuerySet for TankAssignment."""

    def blocking(self):
        """Assignments that occupy their tank (PLANNED or ACTIVE)."""
        return self.filter(status__in=BLOCKING_ASSIGNMENT_STATUSES)

    def overlapping(self, start, end):
        """
        Assignments whose planned window intersects [start, end).

        Windows are half-open: one ending exactly when another starts
        does not overlap it.
        """
        return self.filter(planned_start__lt=end, planned_end__gt=start)

    def for_tank(self, tank):
        return self.filter(tank=tank)


class TankAssignment(models.Model):
    """
    A lot's booking of a tank.

    LIFECYCLE:

        PLANNED ──start──► ACTIVE ──complete──► COMPLETED
           │                  │
           └──────cancel──────┴──────────────► CANCELLED

    PLANNED and ACTIVE block the tank for [planned_start, planned_end).
    At most one ACTIVE assignment per tank (DB constraint).
    """

    tank = models.ForeignKey(
        'cellarman.Tank',
        on_delete=models.PROTECT,
        related_name='assignments',
        verbose_name=_('Tanque'),
    )
    lot = models.ForeignKey(
        'cellarman.Lot',
        on_delete=models.PROTECT,
        related_name='assignments',
        verbose_name=_('Lote'),
    )
    phase = models.CharField(
        max_length=20,
        choices=LotPhase.choices,
        verbose_name=_('Fase'),
    )

    planned_start = models.DateTimeField(db_index=True, verbose_name=_('Início Previsto'))
    planned_end = models.DateTimeField(db_index=True, verbose_name=_('Fim Previsto'))
    actual_start = models.DateTimeField(null=True, blank=True, verbose_name=_('Início Real'))
    actual_end = models.DateTimeField(null=True, blank=True, verbose_name=_('Fim Real'))

    status = models.CharField(
        max_length=20,
        choices=AssignmentStatus.choices,
        default=AssignmentStatus.PLANNED,
        db_index=True,
        verbose_name=_('Status'),
    )
    planned_volume = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        verbose_name=_('Volume Previsto (L)'),
    )

    is_blend_target = models.BooleanField(default=False, verbose_name=_('Destino de Blend'))
    is_split_source = models.BooleanField(default=False, verbose_name=_('Origem de Divisão'))

    notes = models.TextField(blank=True, default='', verbose_name=_('Observações'))
    metadata = models.JSONField(default=dict, blank=True, verbose_name=_('Metadados'))

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = TankAssignmentQuerySet.as_manager()

    class Meta:
        verbose_name = _('Alocação de Tanque')
        verbose_name_plural = _('Alocações de Tanque')
        ordering = ['planned_start']
        indexes = [
            models.Index(fields=['tank', 'status', 'planned_start']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(planned_end__gt=models.F('planned_start')),
                name='cellarman_assignment_window_valid',
            ),
            models.CheckConstraint(
                condition=models.Q(planned_volume__gt=0),
                name='cellarman_assignment_volume_positive',
            ),
            models.UniqueConstraint(
                fields=['tank'],
                condition=models.Q(status=AssignmentStatus.ACTIVE),
                name='cellarman_one_active_assignment_per_tank',
            ),
        ]

    @property
    def is_blocking(self) -> bool:
        return self.status in BLOCKING_ASSIGNMENT_STATUSES

    def overlaps(self, start, end) -> bool:
        return self.planned_start < end and self.planned_end > start

    def __str__(self) -> str:
        return f"{self.tank.code} ← {self.lot.code} [{self.planned_start:%Y-%m-%d} → {self.planned_end:%Y-%m-%d}]"
