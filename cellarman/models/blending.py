"""
BlendingConfig model — editable rules for blending batches into lots.
"""

from django.db import models
from django.utils.translation import gettext_lazy as _


class BlendingConfig(models.Model):
    """
    Blending rules. All enabled rules must pass.

    The most recent active row is the policy in force; without one the
    CELLARMAN["BLENDING"] setting applies. Zero disables numeric limits.
    """

    name = models.CharField(max_length=100, default='default', verbose_name=_('Nome'))
    require_recipe_match = models.BooleanField(default=False, verbose_name=_('Mesma receita'))
    require_yeast_match = models.BooleanField(default=True, verbose_name=_('Mesma levedura'))
    require_phase_match = models.BooleanField(default=True, verbose_name=_('Mesma fase'))
    require_style_match = models.BooleanField(default=False, verbose_name=_('Mesmo estilo'))
    max_age_difference_hours = models.PositiveIntegerField(
        default=48,
        verbose_name=_('Diferença máxima de idade (h)'),
    )
    max_blend_sources = models.PositiveIntegerField(
        default=4,
        verbose_name=_('Máximo de brassagens por lote'),
    )
    is_active = models.BooleanField(default=True, db_index=True, verbose_name=_('Ativo'))

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _('Regra de Blend')
        verbose_name_plural = _('Regras de Blend')
        ordering = ['-updated_at']

    @classmethod
    def current(cls):
        """Policy in force as a BlendingPolicy."""
        from cellarman.conf import cellarman_settings
        from cellarman.services.planner import BlendingPolicy

        row = cls.objects.filter(is_active=True).order_by('-updated_at', '-pk').first()
        if row is None:
            return BlendingPolicy(**cellarman_settings.BLENDING)
        return row.as_policy()

    def as_policy(self):
        from cellarman.services.planner import BlendingPolicy

        return BlendingPolicy(
            require_recipe_match=self.require_recipe_match,
            require_yeast_match=self.require_yeast_match,
            require_phase_match=self.require_phase_match,
            require_style_match=self.require_style_match,
            max_age_difference_hours=self.max_age_difference_hours,
            max_blend_sources=self.max_blend_sources,
        )

    def __str__(self) -> str:
        return self.name
