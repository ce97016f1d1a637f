"""
Initial migration for Cellarman models.
"""

from decimal import Decimal
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


TANK_TYPES = [
    ('fermenter', 'Fermentador'),
    ('brite', 'Tanque Brite'),
    ('unitank', 'Unitanque'),
    ('conditioning', 'Maturador'),
    ('kettle', 'Tina de Fervura'),
    ('mash_tun', 'Tina de Mostura'),
]
TANK_STATUSES = [
    ('available', 'Disponível'),
    ('occupied', 'Ocupado'),
    ('cleaning', 'Em Limpeza'),
    ('maintenance', 'Manutenção'),
]
LOT_PHASES = [
    ('fermentation', 'Fermentação'),
    ('conditioning', 'Maturação'),
    ('bright', 'Pronta'),
    ('packaging', 'Envase'),
]
LIFECYCLE_STATUSES = [
    ('planned', 'Planejado'),
    ('active', 'Ativo'),
    ('completed', 'Concluído'),
    ('cancelled', 'Cancelado'),
]
BATCH_PHASES = [
    ('planned', 'Planejado'),
    ('brewing', 'Brassagem'),
    ('fermenting', 'Fermentando'),
    ('conditioning', 'Maturando'),
    ('ready', 'Pronto'),
    ('packaging', 'Envasando'),
    ('completed', 'Concluído'),
    ('cancelled', 'Cancelado'),
]
TRANSFER_TYPES = [
    ('ferment_to_condition', 'Fermentação → Maturação'),
    ('condition_to_bright', 'Maturação → Pronta'),
    ('tank_to_tank', 'Tanque a Tanque'),
    ('blend', 'Blend'),
    ('split', 'Divisão'),
]
TRANSFER_STATUSES = [
    ('planned', 'Planejada'),
    ('executed', 'Executada'),
    ('cancelled', 'Cancelada'),
]


class Migration(migrations.Migration):
    """Create Cellarman models: Tank, Batch, Lot, LotBatch, TankAssignment, Transfer, Reading, BlendingConfig."""

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Tank',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.SlugField(help_text='Identificador único (ex: fv-01, brite-2)', unique=True, verbose_name='Código')),
                ('name', models.CharField(max_length=100, verbose_name='Nome')),
                ('type', models.CharField(choices=TANK_TYPES, default='fermenter', max_length=20, verbose_name='Tipo')),
                ('capacity', models.DecimalField(decimal_places=3, max_digits=12, verbose_name='Capacidade (L)')),
                ('status', models.CharField(choices=TANK_STATUSES, db_index=True, default='available', max_length=20, verbose_name='Status')),
                ('capabilities', models.JSONField(blank=True, default=list, help_text='Lista de fases: fermentation, conditioning, bright', verbose_name='Fases suportadas')),
                ('last_cip_at', models.DateTimeField(blank=True, null=True, verbose_name='Última limpeza')),
                ('next_cip_at', models.DateTimeField(blank=True, null=True, verbose_name='Próxima limpeza')),
                ('cip_interval_days', models.PositiveIntegerField(blank=True, help_text='Vazio = padrão de CELLARMAN["CIP_INTERVAL_DAYS"]', null=True, verbose_name='Intervalo de limpeza (dias)')),
                ('location', models.CharField(blank=True, default='', max_length=100, verbose_name='Local')),
                ('metadata', models.JSONField(blank=True, default=dict, verbose_name='Metadados')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Tanque',
                'verbose_name_plural': 'Tanques',
                'ordering': ['code'],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(capacity__gt=0), name='cellarman_tank_capacity_positive'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Batch',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.CharField(max_length=50, unique=True, verbose_name='Número da Brassagem')),
                ('recipe', models.CharField(blank=True, db_index=True, default='', help_text='Referência externa da receita', max_length=100, verbose_name='Receita')),
                ('recipe_name', models.CharField(blank=True, default='', max_length=200, verbose_name='Nome da Receita')),
                ('style', models.CharField(blank=True, default='', max_length=100, verbose_name='Estilo')),
                ('yeast_strain', models.CharField(blank=True, default='', max_length=100, verbose_name='Levedura')),
                ('volume', models.DecimalField(decimal_places=3, max_digits=12, verbose_name='Volume (L)')),
                ('phase', models.CharField(choices=BATCH_PHASES, db_index=True, default='planned', max_length=20, verbose_name='Fase')),
                ('brewed_at', models.DateTimeField(blank=True, null=True, verbose_name='Brassado em')),
                ('notes', models.TextField(blank=True, default='', verbose_name='Observações')),
                ('metadata', models.JSONField(blank=True, default=dict, verbose_name='Metadados')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Brassagem',
                'verbose_name_plural': 'Brassagens',
                'ordering': ['-created_at'],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(volume__gt=0), name='cellarman_batch_volume_positive'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Lot',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.CharField(max_length=60, unique=True, verbose_name='Código do Lote')),
                ('phase', models.CharField(choices=LOT_PHASES, db_index=True, default='fermentation', max_length=20, verbose_name='Fase')),
                ('status', models.CharField(choices=LIFECYCLE_STATUSES, db_index=True, default='planned', max_length=20, verbose_name='Status')),
                ('total_volume', models.DecimalField(decimal_places=3, max_digits=12, verbose_name='Volume Total (L)')),
                ('split_ratio', models.DecimalField(blank=True, decimal_places=6, max_digits=7, null=True, verbose_name='Fração da Divisão')),
                ('is_blend_result', models.BooleanField(default=False, verbose_name='Resultado de Blend')),
                ('notes', models.TextField(blank=True, default='', verbose_name='Observações')),
                ('metadata', models.JSONField(blank=True, default=dict, verbose_name='Metadados')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True, verbose_name='Concluído em')),
                ('parent', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='children', to='cellarman.lot', verbose_name='Lote de Origem')),
            ],
            options={
                'verbose_name': 'Lote',
                'verbose_name_plural': 'Lotes',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status', 'phase'], name='cellarman_l_status_5f0e2c_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='LotBatch',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('volume_contribution', models.DecimalField(decimal_places=3, max_digits=12, verbose_name='Volume Contribuído (L)')),
                ('percentage', models.DecimalField(decimal_places=3, default=Decimal('100'), max_digits=7, verbose_name='Percentual da Brassagem')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('batch', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='contributions', to='cellarman.batch', verbose_name='Brassagem')),
                ('lot', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='contributions', to='cellarman.lot', verbose_name='Lote')),
            ],
            options={
                'verbose_name': 'Contribuição',
                'verbose_name_plural': 'Contribuições',
                'constraints': [
                    models.UniqueConstraint(fields=('lot', 'batch'), name='cellarman_lotbatch_unique'),
                ],
            },
        ),
        migrations.AddField(
            model_name='lot',
            name='batches',
            field=models.ManyToManyField(related_name='lots', through='cellarman.LotBatch', to='cellarman.batch', verbose_name='Brassagens'),
        ),
        migrations.CreateModel(
            name='TankAssignment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('phase', models.CharField(choices=LOT_PHASES, max_length=20, verbose_name='Fase')),
                ('planned_start', models.DateTimeField(db_index=True, verbose_name='Início Previsto')),
                ('planned_end', models.DateTimeField(db_index=True, verbose_name='Fim Previsto')),
                ('actual_start', models.DateTimeField(blank=True, null=True, verbose_name='Início Real')),
                ('actual_end', models.DateTimeField(blank=True, null=True, verbose_name='Fim Real')),
                ('status', models.CharField(choices=LIFECYCLE_STATUSES, db_index=True, default='planned', max_length=20, verbose_name='Status')),
                ('planned_volume', models.DecimalField(decimal_places=3, max_digits=12, verbose_name='Volume Previsto (L)')),
                ('is_blend_target', models.BooleanField(default=False, verbose_name='Destino de Blend')),
                ('is_split_source', models.BooleanField(default=False, verbose_name='Origem de Divisão')),
                ('notes', models.TextField(blank=True, default='', verbose_name='Observações')),
                ('metadata', models.JSONField(blank=True, default=dict, verbose_name='Metadados')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('lot', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='assignments', to='cellarman.lot', verbose_name='Lote')),
                ('tank', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='assignments', to='cellarman.tank', verbose_name='Tanque')),
            ],
            options={
                'verbose_name': 'Alocação de Tanque',
                'verbose_name_plural': 'Alocações de Tanque',
                'ordering': ['planned_start'],
                'indexes': [
                    models.Index(fields=['tank', 'status', 'planned_start'], name='cellarman_t_tank_id_8a41d3_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(planned_end__gt=models.F('planned_start')), name='cellarman_assignment_window_valid'),
                    models.CheckConstraint(condition=models.Q(planned_volume__gt=0), name='cellarman_assignment_volume_positive'),
                    models.UniqueConstraint(condition=models.Q(status='active'), fields=('tank',), name='cellarman_one_active_assignment_per_tank'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Transfer',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('transfer_type', models.CharField(choices=TRANSFER_TYPES, max_length=30, verbose_name='Tipo')),
                ('volume', models.DecimalField(decimal_places=3, max_digits=12, verbose_name='Volume (L)')),
                ('measured_loss', models.DecimalField(decimal_places=3, default=Decimal('0'), max_digits=12, verbose_name='Perda Medida (L)')),
                ('status', models.CharField(choices=TRANSFER_STATUSES, db_index=True, default='planned', max_length=20, verbose_name='Status')),
                ('executed_at', models.DateTimeField(blank=True, db_index=True, null=True, verbose_name='Executada em')),
                ('notes', models.TextField(blank=True, default='', verbose_name='Observações')),
                ('metadata', models.JSONField(blank=True, default=dict, verbose_name='Metadados')),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('batch', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='transfers', to='cellarman.batch', verbose_name='Brassagem')),
                ('dest_lot', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='transfers_in', to='cellarman.lot', verbose_name='Lote de Destino')),
                ('dest_tank', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='transfers_in', to='cellarman.tank', verbose_name='Tanque de Destino')),
                ('source_lot', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='transfers_out', to='cellarman.lot', verbose_name='Lote de Origem')),
                ('source_tank', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='transfers_out', to='cellarman.tank', verbose_name='Tanque de Origem')),
                ('user', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, to=settings.AUTH_USER_MODEL, verbose_name='Usuário')),
            ],
            options={
                'verbose_name': 'Transferência',
                'verbose_name_plural': 'Transferências',
                'ordering': ['created_at'],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(volume__gt=0), name='cellarman_transfer_volume_positive'),
                    models.CheckConstraint(condition=models.Q(measured_loss__gte=0), name='cellarman_transfer_loss_non_negative'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Reading',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('gravity', models.DecimalField(blank=True, decimal_places=4, max_digits=6, null=True, verbose_name='Densidade')),
                ('temperature', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True, verbose_name='Temperatura (°C)')),
                ('notes', models.CharField(blank=True, default='', max_length=255, verbose_name='Observações')),
                ('recorded_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now, verbose_name='Registrado em')),
                ('batch', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='readings', to='cellarman.batch', verbose_name='Brassagem')),
                ('lot', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='readings', to='cellarman.lot', verbose_name='Lote')),
            ],
            options={
                'verbose_name': 'Leitura',
                'verbose_name_plural': 'Leituras',
                'ordering': ['recorded_at'],
            },
        ),
        migrations.CreateModel(
            name='BlendingConfig',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(default='default', max_length=100, verbose_name='Nome')),
                ('require_recipe_match', models.BooleanField(default=False, verbose_name='Mesma receita')),
                ('require_yeast_match', models.BooleanField(default=True, verbose_name='Mesma levedura')),
                ('require_phase_match', models.BooleanField(default=True, verbose_name='Mesma fase')),
                ('require_style_match', models.BooleanField(default=False, verbose_name='Mesmo estilo')),
                ('max_age_difference_hours', models.PositiveIntegerField(default=48, verbose_name='Diferença máxima de idade (h)')),
                ('max_blend_sources', models.PositiveIntegerField(default=4, verbose_name='Máximo de brassagens por lote')),
                ('is_active', models.BooleanField(db_index=True, default=True, verbose_name='Ativo')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Regra de Blend',
                'verbose_name_plural': 'Regras de Blend',
                'ordering': ['-updated_at'],
            },
        ),
    ]
