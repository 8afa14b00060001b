import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='PerfilUsuario',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('nombre', models.CharField(max_length=200)),
                ('email', models.EmailField(help_text='Se guarda en minúsculas', max_length=254, unique=True)),
                ('rol', models.CharField(choices=[('master', 'Master'), ('logistica', 'Logística'), ('empleado', 'Empleado')], default='empleado', max_length=20)),
                ('estado', models.CharField(choices=[('invitado', 'Invitado'), ('activo', 'Activo')], default='invitado', max_length=20)),
                ('creado', models.DateTimeField(auto_now_add=True)),
                ('invitado_por', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='invitados', to='activos.perfilusuario')),
                ('usuario', models.OneToOneField(blank=True, help_text='Cuenta enlazada al completar el registro', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='perfil', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Perfil de Usuario',
                'verbose_name_plural': 'Perfiles de Usuario',
                'ordering': ['nombre'],
            },
        ),
        migrations.CreateModel(
            name='Activo',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('referencia', models.CharField(blank=True, max_length=100)),
                ('nombre', models.CharField(max_length=200)),
                ('nombre_clave', models.CharField(db_index=True, editable=False, max_length=200)),
                ('serial', models.CharField(blank=True, max_length=100)),
                ('ubicacion', models.CharField(blank=True, help_text='Ubicación en bodega', max_length=200)),
                ('estado', models.CharField(choices=[('en stock', 'En stock'), ('recibido pendiente', 'Recibido pendiente'), ('activo', 'Activo'), ('en disputa', 'En disputa'), ('en devolución', 'En devolución'), ('reemplazo solicitado', 'Reemplazo solicitado'), ('reemplazo_en_logistica', 'Reemplazo en logística'), ('baja', 'Baja')], default='en stock', max_length=30)),
                ('tipo', models.CharField(choices=[('equipo_de_computo', 'Equipo de cómputo'), ('herramienta_electrica', 'Herramienta eléctrica'), ('herramienta_manual', 'Herramienta manual')], default='equipo_de_computo', max_length=30)),
                ('stock', models.PositiveIntegerField(blank=True, null=True)),
                ('empleado_nombre', models.CharField(blank=True, max_length=200)),
                ('fecha_asignacion', models.DateTimeField(blank=True, null=True)),
                ('motivo_rechazo', models.TextField(blank=True)),
                ('motivo_baja', models.TextField(blank=True)),
                ('evidencia_url', models.CharField(blank=True, max_length=500)),
                ('version', models.PositiveIntegerField(default=0)),
                ('creado', models.DateTimeField(auto_now_add=True)),
                ('actualizado', models.DateTimeField(auto_now=True)),
                ('empleado', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='activos', to='activos.perfilusuario')),
            ],
            options={
                'verbose_name': 'Activo',
                'verbose_name_plural': 'Activos',
                'ordering': ['nombre', 'id'],
                'indexes': [
                    models.Index(fields=['estado', 'nombre_clave'], name='activo_estado_nombre_idx'),
                    models.Index(fields=['empleado', 'estado'], name='activo_empleado_estado_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('estado', 'en stock')), fields=('nombre_clave',), name='activo_stock_unico_por_nombre'),
                ],
            },
        ),
        migrations.CreateModel(
            name='HistorialActivo',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('activo_nombre', models.CharField(max_length=200)),
                ('evento', models.CharField(max_length=50)),
                ('descripcion', models.TextField(blank=True)),
                ('actor_nombre', models.CharField(blank=True, max_length=200)),
                ('fecha', models.DateTimeField(default=django.utils.timezone.now)),
                ('activo', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='historial', to='activos.activo')),
                ('actor', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='eventos', to='activos.perfilusuario')),
            ],
            options={
                'verbose_name': 'Historial de Activo',
                'verbose_name_plural': 'Historial de Activos',
                'ordering': ['-fecha', '-id'],
            },
        ),
        migrations.CreateModel(
            name='ProcesoDevolucion',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('empleado_nombre', models.CharField(max_length=200)),
                ('estado', models.CharField(choices=[('iniciado', 'Iniciado'), ('verificado por logística', 'Verificado por logística'), ('completado', 'Completado')], default='iniciado', max_length=30)),
                ('fecha', models.DateTimeField(default=django.utils.timezone.now)),
                ('fecha_completado', models.DateTimeField(blank=True, null=True)),
                ('version', models.PositiveIntegerField(default=0)),
                ('empleado', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='procesos_devolucion', to='activos.perfilusuario')),
            ],
            options={
                'verbose_name': 'Proceso de Devolución',
                'verbose_name_plural': 'Procesos de Devolución',
                'ordering': ['-fecha', '-id'],
            },
        ),
        migrations.CreateModel(
            name='ActivoDevolucion',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('activo_id', models.BigIntegerField()),
                ('nombre', models.CharField(max_length=200)),
                ('serial', models.CharField(blank=True, max_length=100)),
                ('verificado', models.BooleanField(default=False)),
                ('resultado', models.CharField(blank=True, choices=[('', 'Sin verificar'), ('en stock', 'Retornado a stock'), ('baja', 'Dado de baja')], max_length=20)),
                ('fecha_verificacion', models.DateTimeField(blank=True, null=True)),
                ('proceso', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='activos', to='activos.procesodevolucion')),
                ('verificado_por', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='verificaciones', to='activos.perfilusuario')),
            ],
            options={
                'verbose_name': 'Activo en Devolución',
                'verbose_name_plural': 'Activos en Devolución',
                'ordering': ['id'],
                'constraints': [
                    models.UniqueConstraint(fields=('proceso', 'activo_id'), name='devolucion_activo_unico'),
                ],
            },
        ),
        migrations.CreateModel(
            name='SolicitudReemplazo',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('empleado_nombre', models.CharField(max_length=200)),
                ('activo_nombre', models.CharField(max_length=200)),
                ('serial', models.CharField(blank=True, max_length=100)),
                ('motivo', models.CharField(max_length=200)),
                ('justificacion', models.TextField(blank=True)),
                ('imagen_url', models.CharField(blank=True, max_length=500)),
                ('fecha', models.DateTimeField(default=django.utils.timezone.now)),
                ('estado', models.CharField(choices=[('pendiente de aprobacion master', 'Pendiente de aprobación master'), ('aprobado', 'Aprobado'), ('rechazado', 'Rechazado')], default='pendiente de aprobacion master', max_length=40)),
                ('fecha_respuesta', models.DateTimeField(blank=True, null=True)),
                ('version', models.PositiveIntegerField(default=0)),
                ('activo', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='solicitudes_reemplazo', to='activos.activo')),
                ('empleado', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='solicitudes_reemplazo', to='activos.perfilusuario')),
                ('master', models.ForeignKey(blank=True, help_text='Master que debe aprobar', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='reemplazos_por_aprobar', to='activos.perfilusuario')),
            ],
            options={
                'verbose_name': 'Solicitud de Reemplazo',
                'verbose_name_plural': 'Solicitudes de Reemplazo',
                'ordering': ['-fecha', '-id'],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('estado', 'pendiente de aprobacion master')), fields=('activo',), name='reemplazo_pendiente_unico_por_activo'),
                ],
            },
        ),
        migrations.CreateModel(
            name='SolicitudAsignacion',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('empleado_nombre', models.CharField(max_length=200)),
                ('activo_nombre', models.CharField(max_length=200)),
                ('cantidad', models.PositiveIntegerField(validators=[django.core.validators.MinValueValidator(1)])),
                ('fecha', models.DateTimeField(default=django.utils.timezone.now)),
                ('estado', models.CharField(choices=[('pendiente de envío', 'Pendiente de envío'), ('pendiente por stock', 'Pendiente por stock'), ('enviado', 'Enviado'), ('rechazado', 'Rechazado'), ('archivado', 'Archivado')], default='pendiente de envío', max_length=30)),
                ('numero_guia', models.CharField(blank=True, max_length=100)),
                ('transportadora', models.CharField(blank=True, max_length=100)),
                ('fecha_envio', models.DateTimeField(blank=True, null=True)),
                ('master_nombre', models.CharField(blank=True, max_length=200)),
                ('motivo_rechazo', models.TextField(blank=True)),
                ('activo', models.ForeignKey(blank=True, help_text='Fila de stock solicitada', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='solicitudes_asignacion', to='activos.activo')),
                ('empleado', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='solicitudes_asignacion', to='activos.perfilusuario')),
                ('master', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='asignaciones_creadas', to='activos.perfilusuario')),
                ('solicitud_reemplazo_origen', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='asignaciones', to='activos.solicitudreemplazo')),
            ],
            options={
                'verbose_name': 'Solicitud de Asignación',
                'verbose_name_plural': 'Solicitudes de Asignación',
                'ordering': ['-fecha', '-id'],
                'indexes': [
                    models.Index(fields=['estado', 'fecha'], name='asignacion_estado_fecha_idx'),
                ],
            },
        ),
        migrations.AddField(
            model_name='activo',
            name='solicitud_asignacion',
            field=models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='unidades', to='activos.solicitudasignacion'),
        ),
    ]
