"""
Batch model — one brew, the source of volume for lots.
"""

from django.db import models
from django.utils.translation import gettext_lazy as _

from cellarman.models.enums import BatchPhase


# Phases in which the brewed volume may still change
_VOLUME_EDITABLE_PHASES = (BatchPhase.PLANNED, BatchPhase.BREWING)


class BatchQuerySet(models.QuerySet):
    """Custom QuerySet for Batch with convenience filters."""

    def open(self):
        """Batches not yet completed or cancelled."""
        return self.exclude(phase__in=[BatchPhase.COMPLETED, BatchPhase.CANCELLED])

    def in_phase(self, phase):
        return self.filter(phase=phase)


class Batch(models.Model):
    """
    Brewed batch.

    Recipe, style and yeast are plain references: recipes live elsewhere,
    only what blending rules compare is kept here. Volume is frozen once
    the batch has left the brewhouse (phase past BREWING).
    """

    code = models.CharField(
        max_length=50,
        unique=True,
        verbose_name=_('Número da Brassagem'),
    )
    recipe = models.CharField(
        max_length=100,
        blank=True,
        default='',
        db_index=True,
        verbose_name=_('Receita'),
        help_text=_('Referência externa da receita'),
    )
    recipe_name = models.CharField(max_length=200, blank=True, default='', verbose_name=_('Nome da Receita'))
    style = models.CharField(max_length=100, blank=True, default='', verbose_name=_('Estilo'))
    yeast_strain = models.CharField(max_length=100, blank=True, default='', verbose_name=_('Levedura'))

    volume = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        verbose_name=_('Volume (L)'),
    )
    phase = models.CharField(
        max_length=20,
        choices=BatchPhase.choices,
        default=BatchPhase.PLANNED,
        db_index=True,
        verbose_name=_('Fase'),
    )
    brewed_at = models.DateTimeField(null=True, blank=True, verbose_name=_('Brassado em'))
    notes = models.TextField(blank=True, default='', verbose_name=_('Observações'))
    metadata = models.JSONField(default=dict, blank=True, verbose_name=_('Metadados'))

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = BatchQuerySet.as_manager()

    class Meta:
        verbose_name = _('Brassagem')
        verbose_name_plural = _('Brassagens')
        ordering = ['-created_at']
        constraints = [
            models.CheckConstraint(
                condition=models.Q(volume__gt=0),
                name='cellarman_batch_volume_positive',
            ),
        ]

    def save(self, *args, **kwargs):
        if self.pk:
            stored = type(self).objects.filter(pk=self.pk).values('phase', 'volume').first()
            if (
                stored
                and stored['phase'] not in _VOLUME_EDITABLE_PHASES
                and stored['volume'] != self.volume
            ):
                raise ValueError(
                    "Volume da brassagem não pode mudar após a brassagem. "
                    "Registre perdas nas transferências."
                )
        super().save(*args, **kwargs)

    @property
    def is_terminal(self) -> bool:
        return self.phase in (BatchPhase.COMPLETED, BatchPhase.CANCELLED)

    def __str__(self) -> str:
        return f"{self.code} {self.recipe_name}".strip()
