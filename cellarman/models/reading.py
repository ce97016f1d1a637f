"""
Reading model — gravity and temperature logged at phase changes.
"""

from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class Reading(models.Model):
    """Gravity/temperature reading for a batch, optionally tied to a lot."""

    batch = models.ForeignKey(
        'cellarman.Batch',
        on_delete=models.CASCADE,
        related_name='readings',
        verbose_name=_('Brassagem'),
    )
    lot = models.ForeignKey(
        'cellarman.Lot',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='readings',
        verbose_name=_('Lote'),
    )
    gravity = models.DecimalField(
        max_digits=6,
        decimal_places=4,
        null=True,
        blank=True,
        verbose_name=_('Densidade'),
    )
    temperature = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        null=True,
        blank=True,
        verbose_name=_('Temperatura (°C)'),
    )
    notes = models.CharField(max_length=255, blank=True, default='', verbose_name=_('Observações'))
    recorded_at = models.DateTimeField(default=timezone.now, db_index=True, verbose_name=_('Registrado em'))

    class Meta:
        verbose_name = _('Leitura')
        verbose_name_plural = _('Leituras')
        ordering = ['recorded_at']

    def __str__(self) -> str:
        return f"{self.batch.code} SG={self.gravity} T={self.temperature}"
