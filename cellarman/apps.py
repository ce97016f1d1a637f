"""Django app configuration for Cellarman."""

from django.apps import AppConfig
from django.utils.translation import gettext_lazy as _


class CellarmanConfig(AppConfig):
    """Configuration for Cellarman app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "cellarman"
    verbose_name = _("Gestão de Adega")
