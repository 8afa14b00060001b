from django.db import models
from django.db.models import Q
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.contrib.auth.models import User
from django.utils import timezone


def normalizar_nombre(nombre):
    """Clave de fusión de stock: espacios colapsados y minúsculas."""
    return ' '.join((nombre or '').split()).lower()


# ============================================================================
# USUARIOS
# ============================================================================

class PerfilUsuario(models.Model):
    """
    Usuario del sistema con su rol.

    Se crea al ser invitado por un master (estado 'invitado', nombre
    provisional) y pasa a 'activo' cuando la persona completa el registro
    con el mismo correo.
    """

    MASTER = 'master'
    LOGISTICA = 'logistica'
    EMPLEADO = 'empleado'
    ROLES = [
        (MASTER, 'Master'),
        (LOGISTICA, 'Logística'),
        (EMPLEADO, 'Empleado'),
    ]

    INVITADO = 'invitado'
    ACTIVO = 'activo'
    ESTADOS = [
        (INVITADO, 'Invitado'),
        (ACTIVO, 'Activo'),
    ]

    usuario = models.OneToOneField(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='perfil',
        help_text="Cuenta enlazada al completar el registro"
    )
    nombre = models.CharField(max_length=200)
    email = models.EmailField(unique=True, help_text="Se guarda en minúsculas")
    rol = models.CharField(max_length=20, choices=ROLES, default=EMPLEADO)
    estado = models.CharField(max_length=20, choices=ESTADOS, default=INVITADO)
    invitado_por = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='invitados'
    )
    creado = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Perfil de Usuario"
        verbose_name_plural = "Perfiles de Usuario"
        ordering = ['nombre']

    def __str__(self):
        return f"{self.nombre} - {self.get_rol_display()}"

    def save(self, *args, **kwargs):
        self.email = (self.email or '').strip().lower()
        super().save(*args, **kwargs)

    @property
    def es_master(self):
        return self.rol == self.MASTER

    @property
    def es_logistica(self):
        return self.rol == self.LOGISTICA

    @property
    def es_empleado(self):
        return self.rol == self.EMPLEADO

    @property
    def esta_activo(self):
        return self.estado == self.ACTIVO


# ============================================================================
# MODELO PRINCIPAL: ACTIVO
# ============================================================================

class Activo(models.Model):
    """
    Activo fijo: una fila de stock fusionable o una unidad asignada.

    Las filas 'en stock' llevan la cantidad disponible en `stock` y no tienen
    empleado; las unidades asignadas llevan empleado y no usan `stock`.
    """

    EN_STOCK = 'en stock'
    RECIBIDO_PENDIENTE = 'recibido pendiente'
    ACTIVO = 'activo'
    EN_DISPUTA = 'en disputa'
    EN_DEVOLUCION = 'en devolución'
    REEMPLAZO_SOLICITADO = 'reemplazo solicitado'
    REEMPLAZO_EN_LOGISTICA = 'reemplazo_en_logistica'
    BAJA = 'baja'

    ESTADOS = [
        (EN_STOCK, 'En stock'),
        (RECIBIDO_PENDIENTE, 'Recibido pendiente'),
        (ACTIVO, 'Activo'),
        (EN_DISPUTA, 'En disputa'),
        (EN_DEVOLUCION, 'En devolución'),
        (REEMPLAZO_SOLICITADO, 'Reemplazo solicitado'),
        (REEMPLAZO_EN_LOGISTICA, 'Reemplazo en logística'),
        (BAJA, 'Baja'),
    ]

    # Estados en los que el activo está bajo custodia de un empleado
    ESTADOS_ASIGNADOS = (RECIBIDO_PENDIENTE, ACTIVO, EN_DISPUTA, EN_DEVOLUCION)

    EQUIPO_DE_COMPUTO = 'equipo_de_computo'
    HERRAMIENTA_ELECTRICA = 'herramienta_electrica'
    HERRAMIENTA_MANUAL = 'herramienta_manual'
    TIPOS = [
        (EQUIPO_DE_COMPUTO, 'Equipo de cómputo'),
        (HERRAMIENTA_ELECTRICA, 'Herramienta eléctrica'),
        (HERRAMIENTA_MANUAL, 'Herramienta manual'),
    ]

    referencia = models.CharField(max_length=100, blank=True)
    nombre = models.CharField(max_length=200)
    nombre_clave = models.CharField(max_length=200, db_index=True, editable=False)
    serial = models.CharField(max_length=100, blank=True)
    ubicacion = models.CharField(max_length=200, blank=True, help_text="Ubicación en bodega")
    estado = models.CharField(max_length=30, choices=ESTADOS, default=EN_STOCK)
    tipo = models.CharField(max_length=30, choices=TIPOS, default=EQUIPO_DE_COMPUTO)
    stock = models.PositiveIntegerField(null=True, blank=True)

    # Custodia
    empleado = models.ForeignKey(
        PerfilUsuario,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='activos'
    )
    empleado_nombre = models.CharField(max_length=200, blank=True)
    fecha_asignacion = models.DateTimeField(null=True, blank=True)
    solicitud_asignacion = models.ForeignKey(
        'SolicitudAsignacion',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='unidades'
    )

    # Rechazo y baja
    motivo_rechazo = models.TextField(blank=True)
    motivo_baja = models.TextField(blank=True)
    evidencia_url = models.CharField(max_length=500, blank=True)

    version = models.PositiveIntegerField(default=0)
    creado = models.DateTimeField(auto_now_add=True)
    actualizado = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Activo"
        verbose_name_plural = "Activos"
        ordering = ['nombre', 'id']
        indexes = [
            models.Index(fields=['estado', 'nombre_clave'], name='activo_estado_nombre_idx'),
            models.Index(fields=['empleado', 'estado'], name='activo_empleado_estado_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['nombre_clave'],
                condition=Q(estado='en stock'),
                name='activo_stock_unico_por_nombre',
            ),
        ]

    def __str__(self):
        if self.estado == self.EN_STOCK:
            return f"{self.nombre} ({self.stock or 0} en stock)"
        return f"{self.nombre} [{self.serial or 'sin serial'}] - {self.get_estado_display()}"

    def clean(self):
        if self.estado == self.EN_STOCK:
            if self.empleado_id:
                raise ValidationError({'empleado': 'Un activo en stock no puede tener empleado asignado.'})
            if self.stock is None:
                raise ValidationError({'stock': 'Un activo en stock debe indicar la cantidad.'})
        elif self.estado in self.ESTADOS_ASIGNADOS and not self.empleado_id:
            raise ValidationError({'empleado': f'Un activo "{self.estado}" debe tener empleado asignado.'})

    def save(self, *args, **kwargs):
        self.nombre_clave = normalizar_nombre(self.nombre)
        super().save(*args, **kwargs)

    @property
    def esta_asignado(self):
        return self.estado in self.ESTADOS_ASIGNADOS


# ============================================================================
# HISTORIAL DE ACTIVOS
# ============================================================================

class HistorialActivo(models.Model):
    """Evento del ciclo de vida de un activo (asignado, devuelto, baja...)."""

    activo = models.ForeignKey(
        Activo,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='historial'
    )
    # Copia del nombre: la fila del activo puede fusionarse con el stock
    activo_nombre = models.CharField(max_length=200)
    evento = models.CharField(max_length=50)
    descripcion = models.TextField(blank=True)
    actor = models.ForeignKey(
        PerfilUsuario,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='eventos'
    )
    actor_nombre = models.CharField(max_length=200, blank=True)
    fecha = models.DateTimeField(default=timezone.now)

    class Meta:
        verbose_name = "Historial de Activo"
        verbose_name_plural = "Historial de Activos"
        ordering = ['-fecha', '-id']

    def __str__(self):
        return f"{self.activo_nombre} - {self.evento} ({self.fecha.strftime('%Y-%m-%d %H:%M')})"


# ============================================================================
# SOLICITUDES
# ============================================================================

class SolicitudAsignacion(models.Model):
    """Solicitud de un master para entregar activos del stock a un empleado."""

    PENDIENTE_ENVIO = 'pendiente de envío'
    PENDIENTE_STOCK = 'pendiente por stock'
    ENVIADO = 'enviado'
    RECHAZADO = 'rechazado'
    ARCHIVADO = 'archivado'
    ESTADOS = [
        (PENDIENTE_ENVIO, 'Pendiente de envío'),
        (PENDIENTE_STOCK, 'Pendiente por stock'),
        (ENVIADO, 'Enviado'),
        (RECHAZADO, 'Rechazado'),
        (ARCHIVADO, 'Archivado'),
    ]

    empleado = models.ForeignKey(
        PerfilUsuario,
        on_delete=models.CASCADE,
        related_name='solicitudes_asignacion'
    )
    empleado_nombre = models.CharField(max_length=200)
    activo = models.ForeignKey(
        Activo,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='solicitudes_asignacion',
        help_text="Fila de stock solicitada"
    )
    activo_nombre = models.CharField(max_length=200)
    cantidad = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    fecha = models.DateTimeField(default=timezone.now)
    estado = models.CharField(max_length=30, choices=ESTADOS, default=PENDIENTE_ENVIO)

    # Envío
    numero_guia = models.CharField(max_length=100, blank=True)
    transportadora = models.CharField(max_length=100, blank=True)
    fecha_envio = models.DateTimeField(null=True, blank=True)

    master = models.ForeignKey(
        PerfilUsuario,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='asignaciones_creadas'
    )
    master_nombre = models.CharField(max_length=200, blank=True)
    motivo_rechazo = models.TextField(blank=True)
    solicitud_reemplazo_origen = models.ForeignKey(
        'SolicitudReemplazo',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='asignaciones'
    )

    class Meta:
        verbose_name = "Solicitud de Asignación"
        verbose_name_plural = "Solicitudes de Asignación"
        ordering = ['-fecha', '-id']
        indexes = [
            models.Index(fields=['estado', 'fecha'], name='asignacion_estado_fecha_idx'),
        ]

    def __str__(self):
        return f"{self.activo_nombre} x{self.cantidad} para {self.empleado_nombre} ({self.estado})"


class SolicitudReemplazo(models.Model):
    """Solicitud de un empleado para reemplazar un activo (daño, robo, desgaste)."""

    PENDIENTE = 'pendiente de aprobacion master'
    APROBADO = 'aprobado'
    RECHAZADO = 'rechazado'
    ESTADOS = [
        (PENDIENTE, 'Pendiente de aprobación master'),
        (APROBADO, 'Aprobado'),
        (RECHAZADO, 'Rechazado'),
    ]

    empleado = models.ForeignKey(
        PerfilUsuario,
        on_delete=models.CASCADE,
        related_name='solicitudes_reemplazo'
    )
    empleado_nombre = models.CharField(max_length=200)
    master = models.ForeignKey(
        PerfilUsuario,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='reemplazos_por_aprobar',
        help_text="Master que debe aprobar"
    )
    # Al fusionarse la unidad con el stock la solicitud queda sin enlace
    activo = models.ForeignKey(
        Activo,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='solicitudes_reemplazo'
    )
    activo_nombre = models.CharField(max_length=200)
    serial = models.CharField(max_length=100, blank=True)
    motivo = models.CharField(max_length=200)
    justificacion = models.TextField(blank=True)
    imagen_url = models.CharField(max_length=500, blank=True)
    fecha = models.DateTimeField(default=timezone.now)
    estado = models.CharField(max_length=40, choices=ESTADOS, default=PENDIENTE)
    fecha_respuesta = models.DateTimeField(null=True, blank=True)
    version = models.PositiveIntegerField(default=0)

    class Meta:
        verbose_name = "Solicitud de Reemplazo"
        verbose_name_plural = "Solicitudes de Reemplazo"
        ordering = ['-fecha', '-id']
        constraints = [
            models.UniqueConstraint(
                fields=['activo'],
                condition=Q(estado='pendiente de aprobacion master'),
                name='reemplazo_pendiente_unico_por_activo',
            ),
        ]

    def __str__(self):
        return f"Reemplazo de {self.activo_nombre} ({self.empleado_nombre}) - {self.estado}"


# ============================================================================
# DEVOLUCIONES
# ============================================================================

class ProcesoDevolucion(models.Model):
    """Devolución de todos los activos activos de un empleado al salir."""

    INICIADO = 'iniciado'
    VERIFICADO_LOGISTICA = 'verificado por logística'
    COMPLETADO = 'completado'
    ESTADOS = [
        (INICIADO, 'Iniciado'),
        (VERIFICADO_LOGISTICA, 'Verificado por logística'),
        (COMPLETADO, 'Completado'),
    ]

    empleado = models.ForeignKey(
        PerfilUsuario,
        on_delete=models.CASCADE,
        related_name='procesos_devolucion'
    )
    empleado_nombre = models.CharField(max_length=200)
    estado = models.CharField(max_length=30, choices=ESTADOS, default=INICIADO)
    fecha = models.DateTimeField(default=timezone.now)
    fecha_completado = models.DateTimeField(null=True, blank=True)
    version = models.PositiveIntegerField(default=0)

    class Meta:
        verbose_name = "Proceso de Devolución"
        verbose_name_plural = "Procesos de Devolución"
        ordering = ['-fecha', '-id']

    def __str__(self):
        return f"Devolución de {self.empleado_nombre} ({self.estado})"

    @property
    def todos_verificados(self):
        return not self.activos.filter(verificado=False).exists()


class ActivoDevolucion(models.Model):
    """Activo incluido en un proceso de devolución, con su verificación."""

    RESULTADOS = [
        ('', 'Sin verificar'),
        (Activo.EN_STOCK, 'Retornado a stock'),
        (Activo.BAJA, 'Dado de baja'),
    ]

    proceso = models.ForeignKey(
        ProcesoDevolucion,
        on_delete=models.CASCADE,
        related_name='activos'
    )
    # Id sin FK: al verificarse, la unidad se fusiona con la fila de stock
    activo_id = models.BigIntegerField()
    nombre = models.CharField(max_length=200)
    serial = models.CharField(max_length=100, blank=True)
    verificado = models.BooleanField(default=False)
    resultado = models.CharField(max_length=20, choices=RESULTADOS, blank=True)
    fecha_verificacion = models.DateTimeField(null=True, blank=True)
    verificado_por = models.ForeignKey(
        PerfilUsuario,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='verificaciones'
    )

    class Meta:
        verbose_name = "Activo en Devolución"
        verbose_name_plural = "Activos en Devolución"
        ordering = ['id']
        constraints = [
            models.UniqueConstraint(fields=['proceso', 'activo_id'], name='devolucion_activo_unico'),
        ]

    def __str__(self):
        estado = 'verificado' if self.verificado else 'pendiente'
        return f"{self.nombre} [{self.serial or 'sin serial'}] - {estado}"
