"""
Cellarman Admin.

- Tank: editable, with "CIP concluído" action
- Batch / Lot: editable metadata, contributions inline
- TankAssignment: read-only (changes only via cellar service)
- Transfer: read-only audit trail
- Reading: read-only
- BlendingConfig: editable rules
"""

import logging

from django.contrib import admin
from django.utils.translation import gettext_lazy as _

from cellarman.exceptions import CellarError
from cellarman.models import (
    Batch,
    BlendingConfig,
    Lot,
    LotBatch,
    Reading,
    Tank,
    TankAssignment,
    Transfer,
)

logger = logging.getLogger(__name__)


class ReadOnlyAdminMixin:
    """Rows are written by the cellar service only."""

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


# =========================================================================
# TANK ADMIN
# =========================================================================

@admin.register(Tank)
class TankAdmin(admin.ModelAdmin):
    """Tank admin — editable."""

    list_display = ['code', 'name', 'type', 'capacity', 'status', 'capabilities',
                    'next_cip_at', 'needs_cip_display']
    list_filter = ['type', 'status']
    search_fields = ['code', 'name']
    readonly_fields = ['last_cip_at', 'created_at', 'updated_at']
    actions = ['complete_cip']

    @admin.display(description=_('Limpeza pendente?'), boolean=True)
    def needs_cip_display(self, obj):
        return obj.needs_cip

    @admin.action(description=_('Registrar limpeza (CIP) concluída'))
    def complete_cip(self, request, queryset):
        from cellarman import cellar

        count = 0
        for tank in queryset:
            try:
                cellar.complete_cip(tank)
                count += 1
            except CellarError as exc:
                logger.warning("complete_cip: failed for %s: %s", tank.code, exc)

        self.message_user(request, _('{count} tanque(s) liberado(s).').format(count=count))


# =========================================================================
# BATCH / LOT ADMIN
# =========================================================================

class LotBatchInline(admin.TabularInline):
    model = LotBatch
    extra = 0
    readonly_fields = ['batch', 'lot', 'volume_contribution', 'percentage', 'created_at']
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Batch)
class BatchAdmin(admin.ModelAdmin):
    """Batch admin — phase changes via cellar service only."""

    list_display = ['code', 'recipe_name', 'style', 'yeast_strain', 'volume', 'phase', 'brewed_at']
    list_filter = ['phase', 'style']
    search_fields = ['code', 'recipe', 'recipe_name']
    readonly_fields = ['phase', 'created_at', 'updated_at']
    inlines = [LotBatchInline]


@admin.register(Lot)
class LotAdmin(admin.ModelAdmin):
    """Lot admin — volume and status change via cellar service only."""

    list_display = ['code', 'phase', 'status', 'total_volume', 'parent', 'is_blend_result',
                    'balanced_display']
    list_filter = ['phase', 'status', 'is_blend_result']
    search_fields = ['code']
    readonly_fields = ['code', 'phase', 'status', 'total_volume', 'parent', 'split_ratio',
                       'is_blend_result', 'created_at', 'updated_at', 'completed_at']
    inlines = [LotBatchInline]

    @admin.display(description=_('Volume confere?'), boolean=True)
    def balanced_display(self, obj):
        return obj.is_balanced


# =========================================================================
# ASSIGNMENT / TRANSFER / READING ADMIN (read-only)
# =========================================================================

@admin.register(TankAssignment)
class TankAssignmentAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """Assignment admin — read-only schedule."""

    list_display = ['tank', 'lot', 'phase', 'planned_start', 'planned_end', 'status',
                    'planned_volume', 'is_blend_target', 'is_split_source']
    list_filter = ['status', 'phase', 'tank']
    search_fields = ['lot__code', 'tank__code']
    date_hierarchy = 'planned_start'


@admin.register(Transfer)
class TransferAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """Transfer admin — immutable audit trail."""

    list_display = ['created_at', 'transfer_type', 'source_tank', 'dest_tank', 'source_lot',
                    'dest_lot', 'volume', 'measured_loss', 'status', 'user']
    list_filter = ['transfer_type', 'status']
    search_fields = ['source_lot__code', 'dest_lot__code']
    date_hierarchy = 'created_at'


@admin.register(Reading)
class ReadingAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ['recorded_at', 'batch', 'lot', 'gravity', 'temperature']
    list_filter = ['recorded_at']
    search_fields = ['batch__code']


@admin.register(BlendingConfig)
class BlendingConfigAdmin(admin.ModelAdmin):
    """Blending rules — the latest active row applies."""

    list_display = ['name', 'require_recipe_match', 'require_yeast_match', 'require_phase_match',
                    'require_style_match', 'max_age_difference_hours', 'max_blend_sources', 'is_active']
    list_filter = ['is_active']
    readonly_fields = ['created_at', 'updated_at']
