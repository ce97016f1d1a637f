"""
Management command to record finished clean-in-place cycles.

Usage:
    python manage.py complete_cip fv-01 brite-2
    python manage.py complete_cip --all-cleaning
    python manage.py complete_cip --all-cleaning --dry-run
"""

from django.core.management.base import BaseCommand, CommandError

from cellarman import cellar
from cellarman.exceptions import CellarError
from cellarman.models import Tank, TankStatus


class Command(BaseCommand):
    """Complete CIP command."""

    help = 'Registra limpeza (CIP) concluída e libera os tanques'

    def add_arguments(self, parser):
        parser.add_argument('tanks', nargs='*', help='Códigos dos tanques')
        parser.add_argument(
            '--all-cleaning',
            action='store_true',
            help='Todos os tanques com status "Em Limpeza"'
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Mostra o que seria liberado sem executar'
        )

    def handle(self, *args, **options):
        codes = options['tanks']
        if options['all_cleaning']:
            tanks = list(Tank.objects.filter(status=TankStatus.CLEANING))
        elif codes:
            tanks = []
            for code in codes:
                try:
                    tanks.append(cellar.get_tank(code))
                except CellarError as exc:
                    raise CommandError(f'Tanque não encontrado: {code}') from exc
        else:
            raise CommandError('Informe códigos de tanque ou --all-cleaning')

        if options['dry_run']:
            self.stdout.write(f'{len(tanks)} tanque(s) seria(m) liberado(s)')
            return

        for tank in tanks:
            cellar.complete_cip(tank)
        self.stdout.write(
            self.style.SUCCESS(f'{len(tanks)} tanque(s) liberado(s)')
        )
