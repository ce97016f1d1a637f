"""
Transfer model — ledger of volume moved between lots and tanks.
"""

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from cellarman.models.enums import TransferStatus, TransferType


class Transfer(models.Model):
    """
    Record of a volume movement.

    Rules:
    - EXECUTED transfers are never updated or deleted
    - Source fields are empty when fresh wort is blended into a lot
    - Staying in the same tank is a TANK_TO_TANK transfer with
      source_tank == dest_tank
    """

    source_lot = models.ForeignKey(
        'cellarman.Lot',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='transfers_out',
        verbose_name=_('Lote de Origem'),
    )
    source_tank = models.ForeignKey(
        'cellarman.Tank',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='transfers_out',
        verbose_name=_('Tanque de Origem'),
    )
    dest_lot = models.ForeignKey(
        'cellarman.Lot',
        on_delete=models.PROTECT,
        related_name='transfers_in',
        verbose_name=_('Lote de Destino'),
    )
    dest_tank = models.ForeignKey(
        'cellarman.Tank',
        on_delete=models.PROTECT,
        related_name='transfers_in',
        verbose_name=_('Tanque de Destino'),
    )
    batch = models.ForeignKey(
        'cellarman.Batch',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='transfers',
        verbose_name=_('Brassagem'),
    )

    transfer_type = models.CharField(
        max_length=30,
        choices=TransferType.choices,
        verbose_name=_('Tipo'),
    )
    volume = models.DecimalField(max_digits=12, decimal_places=3, verbose_name=_('Volume (L)'))
    measured_loss = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        default=Decimal('0'),
        verbose_name=_('Perda Medida (L)'),
    )
    status = models.CharField(
        max_length=20,
        choices=TransferStatus.choices,
        default=TransferStatus.PLANNED,
        db_index=True,
        verbose_name=_('Status'),
    )

    executed_at = models.DateTimeField(null=True, blank=True, db_index=True, verbose_name=_('Executada em'))
    notes = models.TextField(blank=True, default='', verbose_name=_('Observações'))
    metadata = models.JSONField(default=dict, blank=True, verbose_name=_('Metadados'))
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        verbose_name=_('Usuário'),
    )
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        verbose_name = _('Transferência')
        verbose_name_plural = _('Transferências')
        ordering = ['created_at']
        constraints = [
            models.CheckConstraint(
                condition=models.Q(volume__gt=0),
                name='cellarman_transfer_volume_positive',
            ),
            models.CheckConstraint(
                condition=models.Q(measured_loss__gte=0),
                name='cellarman_transfer_loss_non_negative',
            ),
        ]

    def save(self, *args, **kwargs):
        if self.pk:
            stored = type(self).objects.filter(pk=self.pk).values_list('status', flat=True).first()
            if stored == TransferStatus.EXECUTED:
                raise ValueError(
                    "Transferências executadas são imutáveis. "
                    "Para corrigir, registre uma nova transferência."
                )
        if self.status == TransferStatus.EXECUTED and self.executed_at is None:
            self.executed_at = timezone.now()
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        """Prevent deletion — transfers are the audit trail."""
        raise ValueError("Transferências não podem ser excluídas.")

    @property
    def is_in_place(self) -> bool:
        return self.source_tank_id is not None and self.source_tank_id == self.dest_tank_id

    def __str__(self) -> str:
        source = self.source_tank.code if self.source_tank_id else '—'
        return f"{source} → {self.dest_tank.code}: {self.volume} L ({self.get_transfer_type_display()})"
