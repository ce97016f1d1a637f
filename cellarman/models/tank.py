"""
Tank model — a vessel that can host a lot for a window of time.
"""

from datetime import timedelta
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from cellarman.models.enums import DEFAULT_CAPABILITIES, LotPhase, TankStatus, TankType


class TankQuerySet(models.QuerySet):
    """Custom QuerySet for Tank."""

    def operational(self):
        """Tanks not under maintenance."""
        return self.exclude(status=TankStatus.MAINTENANCE)

    def cip_overdue(self, now=None):
        """Tanks whose next cleaning date has passed."""
        return self.filter(next_cip_at__lt=now or timezone.now())


class Tank(models.Model):
    """
    Brewery vessel.

    Capabilities are the explicit set of lot phases this tank may host
    (fermentation, conditioning, bright). They are validated against
    LotPhase and default from the tank type when left empty.

    Status is operational state. Bookings live in TankAssignment: a tank
    can be AVAILABLE today and still be reserved for next week.
    """

    code = models.SlugField(
        unique=True,
        verbose_name=_('Código'),
        help_text=_('Identificador único (ex: fv-01, brite-2)'),
    )
    name = models.CharField(max_length=100, verbose_name=_('Nome'))
    type = models.CharField(
        max_length=20,
        choices=TankType.choices,
        default=TankType.FERMENTER,
        verbose_name=_('Tipo'),
    )
    capacity = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        verbose_name=_('Capacidade (L)'),
    )
    status = models.CharField(
        max_length=20,
        choices=TankStatus.choices,
        default=TankStatus.AVAILABLE,
        db_index=True,
        verbose_name=_('Status'),
    )
    capabilities = models.JSONField(
        default=list,
        blank=True,
        verbose_name=_('Fases suportadas'),
        help_text=_('Lista de fases: fermentation, conditioning, bright'),
    )

    last_cip_at = models.DateTimeField(null=True, blank=True, verbose_name=_('Última limpeza'))
    next_cip_at = models.DateTimeField(null=True, blank=True, verbose_name=_('Próxima limpeza'))
    cip_interval_days = models.PositiveIntegerField(
        null=True,
        blank=True,
        verbose_name=_('Intervalo de limpeza (dias)'),
        help_text=_('Vazio = padrão de CELLARMAN["CIP_INTERVAL_DAYS"]'),
    )

    location = models.CharField(max_length=100, blank=True, default='', verbose_name=_('Local'))
    metadata = models.JSONField(default=dict, blank=True, verbose_name=_('Metadados'))

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = TankQuerySet.as_manager()

    class Meta:
        verbose_name = _('Tanque')
        verbose_name_plural = _('Tanques')
        ordering = ['code']
        constraints = [
            models.CheckConstraint(
                condition=models.Q(capacity__gt=0),
                name='cellarman_tank_capacity_positive',
            ),
        ]

    def clean(self):
        invalid = self.invalid_capabilities()
        if invalid:
            raise ValidationError({'capabilities': _('Fases desconhecidas: %s') % ', '.join(invalid)})
        if self.capacity is not None and self.capacity <= 0:
            raise ValidationError({'capacity': _('Capacidade deve ser positiva')})

    def save(self, *args, **kwargs):
        if not self.capabilities and self._state.adding:
            self.capabilities = [str(p) for p in DEFAULT_CAPABILITIES.get(self.type, [])]
        invalid = self.invalid_capabilities()
        if invalid:
            raise ValueError(f"Fases desconhecidas em capabilities: {invalid}")
        self.capabilities = [str(p) for p in self.capabilities]
        super().save(*args, **kwargs)

    def invalid_capabilities(self) -> list[str]:
        valid = set(LotPhase.values)
        return [str(c) for c in (self.capabilities or []) if c not in valid]

    def supports(self, phase) -> bool:
        """Can this tank host a lot in `phase`?"""
        return str(phase) in (self.capabilities or [])

    @property
    def is_operational(self) -> bool:
        return self.status != TankStatus.MAINTENANCE

    @property
    def needs_cip(self) -> bool:
        """Cleaning pending: status CLEANING or next CIP date passed."""
        if self.status == TankStatus.CLEANING:
            return True
        return self.next_cip_at is not None and self.next_cip_at < timezone.now()

    def mark_cleaned(self, performed_at=None, interval_days: int | None = None):
        """Apply a completed CIP to this instance (caller saves)."""
        performed_at = performed_at or timezone.now()
        days = self.cip_interval_days or interval_days or 14
        self.status = TankStatus.AVAILABLE
        self.last_cip_at = performed_at
        self.next_cip_at = performed_at + timedelta(days=days)

    def fits(self, volume: Decimal) -> bool:
        return volume <= self.capacity

    def __str__(self) -> str:
        return f"{self.name} ({self.code})"
