"""
Solicitudes de asignación (master -> empleado) y de reemplazo (empleado -> master).

Asignación:
    pendiente de envío | pendiente por stock -> enviado -> archivado
    pendiente por stock -> pendiente de envío   (revalidación con stock suficiente)
    rechazado (el empleado rechaza la entrega) -> archivado

Reemplazo:
    pendiente de aprobacion master -> aprobado | rechazado
"""
import logging
from functools import partial

from django.db import IntegrityError, transaction
from django.utils import timezone

from activos.exceptions import (
    ErrorConflicto, ErrorEstadoInvalido, ErrorNoEncontrado, ErrorPermiso, ErrorValidacion,
)
from activos.models import Activo, PerfilUsuario, SolicitudAsignacion, SolicitudReemplazo
from activos.services import almacenamiento, persistencia
from activos.services.activos import fila_de_stock
from activos.services.politicas import autorizar

logger = logging.getLogger(__name__)


# ============================================================================
# SOLICITUDES DE ASIGNACIÓN
# ============================================================================

def _validar_filas(filas):
    if not filas:
        raise ErrorValidacion('Debe indicar al menos un activo para asignar.')
    limpias = []
    for fila in filas:
        try:
            activo_id, cantidad = fila
            activo_id, cantidad = int(activo_id), int(cantidad)
        except (TypeError, ValueError):
            raise ErrorValidacion(f'Fila inválida: {fila!r}. Se espera (activo_id, cantidad).') from None
        if cantidad <= 0:
            raise ErrorValidacion('La cantidad debe ser mayor que cero.')
        limpias.append((activo_id, cantidad))
    return limpias


def _reservar_unidades(solicitud, fila_stock, actor):
    """
    Descuenta la cantidad de la fila de stock y crea las unidades
    'recibido pendiente' para el empleado de la solicitud.
    """
    fila = persistencia.obtener('activos', fila_stock.pk, bloquear=True)
    if fila.estado != Activo.EN_STOCK:
        raise ErrorEstadoInvalido(f'"{fila.nombre}" ya no está en stock.')

    disponible = fila.stock or 0
    if solicitud.cantidad > disponible:
        logger.warning(
            f'Sobreasignación de "{fila.nombre}": la solicitud {solicitud.pk} pide '
            f'{solicitud.cantidad} y quedan {disponible}'
        )
    persistencia.actualizar(fila, stock=max(disponible - solicitud.cantidad, 0))
    persistencia.registrar_evento(
        fila, 'Salida de stock',
        f'-{solicitud.cantidad} para {solicitud.empleado_nombre} (solicitud {solicitud.pk})',
        actor,
    )

    ahora = timezone.now()
    base_serial = fila.serial or 'SN'
    for numero in range(1, solicitud.cantidad + 1):
        unidad = persistencia.crear(
            'activos',
            nombre=fila.nombre,
            referencia=fila.referencia,
            tipo=fila.tipo,
            ubicacion=fila.ubicacion,
            serial=f'{base_serial}-{solicitud.pk}-{numero}',
            estado=Activo.RECIBIDO_PENDIENTE,
            empleado_id=solicitud.empleado_id,
            empleado_nombre=solicitud.empleado_nombre,
            fecha_asignacion=ahora,
            solicitud_asignacion=solicitud,
        )
        persistencia.registrar_evento(unidad, 'Asignado', f'Asignado a {solicitud.empleado_nombre}', actor)


def _registrar_solicitud(actor, empleado, nombre, fila_stock, cantidad, estado, origen=None):
    solicitud = persistencia.crear(
        'solicitudes_asignacion',
        empleado=empleado,
        empleado_nombre=empleado.nombre,
        activo=fila_stock,
        activo_nombre=nombre,
        cantidad=cantidad,
        estado=estado,
        master=actor if actor.es_master else None,
        master_nombre=actor.nombre if actor.es_master else '',
        solicitud_reemplazo_origen=origen,
    )
    if estado == SolicitudAsignacion.PENDIENTE_ENVIO:
        _reservar_unidades(solicitud, fila_stock, actor)
    return solicitud


def crear_solicitudes_asignacion(actor, empleado_id, filas):
    """
    Crea una solicitud por cada (activo_id, cantidad).

    El estado de cada fila se decide contra una sola lectura del stock al
    inicio del lote: 'pendiente por stock' si la cantidad supera lo disponible.
    Las filas no se reservan entre sí; si dos filas compiten por el mismo
    stock, el descuento nunca baja de cero y se registra como sobreasignación.
    Cada fila se guarda en su propia transacción.
    """
    autorizar(actor, 'crear_solicitudes_asignacion')
    empleado = persistencia.obtener('usuarios', empleado_id)
    if not empleado.es_empleado:
        raise ErrorValidacion(f'{empleado.nombre} no es empleado; solo se asignan activos a empleados.')
    filas = _validar_filas(filas)

    ids = {activo_id for activo_id, _ in filas}
    stock = {
        activo.pk: activo
        for activo in persistencia.consultar('activos', pk__in=ids, estado=Activo.EN_STOCK)
    }
    faltantes = sorted(ids - set(stock))
    if faltantes:
        raise ErrorNoEncontrado(f'Activos no encontrados en stock: {faltantes}.')

    solicitudes = []
    for activo_id, cantidad in filas:
        fila_stock = stock[activo_id]
        if cantidad > (fila_stock.stock or 0):
            estado = SolicitudAsignacion.PENDIENTE_STOCK
        else:
            estado = SolicitudAsignacion.PENDIENTE_ENVIO
        solicitud = persistencia.ejecutar_transaccion(partial(
            _registrar_solicitud, actor, empleado, fila_stock.nombre, fila_stock, cantidad, estado
        ))
        solicitudes.append(solicitud)
        logger.info(
            f'Solicitud de asignación {solicitud.pk}: {fila_stock.nombre} x{cantidad} '
            f'para {empleado.email} ({estado})'
        )
    return solicitudes


def procesar_solicitud_asignacion(actor, solicitud_id, numero_guia=None, transportadora=None):
    """Registra el envío de una solicitud 'pendiente de envío'."""
    autorizar(actor, 'procesar_solicitud_asignacion')

    def operacion():
        solicitud = persistencia.obtener('solicitudes_asignacion', solicitud_id, bloquear=True)
        if solicitud.estado != SolicitudAsignacion.PENDIENTE_ENVIO:
            raise ErrorEstadoInvalido(
                f'La solicitud está "{solicitud.estado}"; solo se envía una solicitud "pendiente de envío".'
            )
        return persistencia.actualizar(
            solicitud,
            estado=SolicitudAsignacion.ENVIADO,
            numero_guia=(numero_guia or '').strip(),
            transportadora=(transportadora or '').strip(),
            fecha_envio=timezone.now(),
        )

    solicitud = persistencia.ejecutar_transaccion(operacion)
    logger.info(f'Solicitud de asignación {solicitud.pk} enviada por {actor.email}')
    return solicitud


def revalidar_solicitud_por_stock(actor, solicitud_id):
    """
    Vuelve a evaluar una solicitud 'pendiente por stock'.

    Si la fila de stock del nombre ya cubre la cantidad, la solicitud pasa a
    'pendiente de envío' y reserva las unidades; si no, queda igual.
    """
    autorizar(actor, 'revalidar_solicitud_asignacion')

    def operacion():
        solicitud = persistencia.obtener('solicitudes_asignacion', solicitud_id, bloquear=True)
        if solicitud.estado != SolicitudAsignacion.PENDIENTE_STOCK:
            raise ErrorEstadoInvalido(f'La solicitud está "{solicitud.estado}", no "pendiente por stock".')

        fila = fila_de_stock(solicitud.activo_nombre, bloquear=True)
        if fila is None or (fila.stock or 0) < solicitud.cantidad:
            return solicitud, False

        persistencia.actualizar(solicitud, estado=SolicitudAsignacion.PENDIENTE_ENVIO, activo=fila)
        _reservar_unidades(solicitud, fila, actor)
        return solicitud, True

    solicitud, cambio = persistencia.ejecutar_transaccion(operacion)
    if cambio:
        logger.info(f'Solicitud de asignación {solicitud.pk} lista para envío tras revalidar stock')
    return solicitud


def archivar_solicitud_asignacion(actor, solicitud_id):
    autorizar(actor, 'archivar_solicitud_asignacion')

    def operacion():
        solicitud = persistencia.obtener('solicitudes_asignacion', solicitud_id, bloquear=True)
        if solicitud.estado not in (SolicitudAsignacion.ENVIADO, SolicitudAsignacion.RECHAZADO):
            raise ErrorEstadoInvalido(
                f'La solicitud está "{solicitud.estado}"; solo se archivan solicitudes enviadas o rechazadas.'
            )
        return persistencia.actualizar(solicitud, estado=SolicitudAsignacion.ARCHIVADO)

    solicitud = persistencia.ejecutar_transaccion(operacion)
    logger.info(f'Solicitud de asignación {solicitud.pk} archivada por {actor.email}')
    return solicitud


def listar_solicitudes_asignacion(estado=None, empleado=None):
    queryset = SolicitudAsignacion.objects.select_related('empleado', 'activo')
    if estado:
        queryset = queryset.filter(estado=estado)
    if empleado is not None:
        queryset = queryset.filter(empleado=empleado)
    return queryset


# ============================================================================
# SOLICITUDES DE REEMPLAZO
# ============================================================================

def _hay_reemplazo_pendiente(activo):
    return persistencia.consultar(
        'solicitudes_reemplazo', activo=activo, estado=SolicitudReemplazo.PENDIENTE
    ).exists()


def _validar_reemplazo(actor, activo):
    if activo.empleado_id != actor.pk:
        raise ErrorPermiso('El activo no está asignado a este usuario.')
    if _hay_reemplazo_pendiente(activo):
        raise ErrorConflicto('Ya existe una solicitud de reemplazo pendiente para este activo.')
    if activo.estado != Activo.ACTIVO:
        raise ErrorEstadoInvalido(
            f'El activo está "{activo.estado}"; solo se pide reemplazo de un activo "activo".'
        )


def crear_solicitud_reemplazo(actor, activo_id, motivo, justificacion='', imagen=None):
    """
    El empleado pide reemplazar un activo que tiene en uso.

    El master que debe aprobar es quien invitó al empleado. La imagen, si se
    envía, se valida y se sube antes de abrir la transacción.
    """
    autorizar(actor, 'crear_solicitud_reemplazo')
    motivo = (motivo or '').strip()
    if not motivo:
        raise ErrorValidacion('Debe indicar el motivo del reemplazo.')

    _validar_reemplazo(actor, persistencia.obtener('activos', activo_id))

    imagen_url = ''
    if imagen is not None:
        almacenamiento.validar_imagen(imagen)
        imagen_url = almacenamiento.subir(imagen, imagen.name, carpeta=almacenamiento.CARPETA_REEMPLAZOS)

    def operacion():
        activo = persistencia.obtener('activos', activo_id, bloquear=True)
        _validar_reemplazo(actor, activo)
        master = None
        if actor.invitado_por_id:
            master = persistencia.consultar(
                'usuarios', pk=actor.invitado_por_id, rol=PerfilUsuario.MASTER
            ).first()
        try:
            with transaction.atomic():
                solicitud = persistencia.crear(
                    'solicitudes_reemplazo',
                    empleado=actor,
                    empleado_nombre=actor.nombre,
                    master=master,
                    activo=activo,
                    activo_nombre=activo.nombre,
                    serial=activo.serial,
                    motivo=motivo,
                    justificacion=(justificacion or '').strip(),
                    imagen_url=imagen_url,
                )
        except IntegrityError:
            raise ErrorConflicto('Ya existe una solicitud de reemplazo pendiente para este activo.') from None
        persistencia.registrar_evento(activo, 'Reemplazo solicitado', motivo, actor)
        return solicitud

    solicitud = persistencia.ejecutar_transaccion(operacion)
    logger.info(f'Solicitud de reemplazo {solicitud.pk} creada por {actor.email} para activo {activo_id}')
    return solicitud


def _asignar_reemplazo(actor, solicitud):
    """
    Crea la solicitud de asignación (cantidad 1) que entrega el activo de
    reemplazo. Sin fila de stock del nombre queda 'pendiente por stock'.
    """
    fila = fila_de_stock(solicitud.activo_nombre)
    if fila is not None and (fila.stock or 0) >= 1:
        estado = SolicitudAsignacion.PENDIENTE_ENVIO
    else:
        estado = SolicitudAsignacion.PENDIENTE_STOCK
    return _registrar_solicitud(
        actor, solicitud.empleado, solicitud.activo_nombre, fila, 1, estado, origen=solicitud
    )


def actualizar_estado_reemplazo(actor, solicitud_id, estado):
    """
    El master aprueba o rechaza una solicitud pendiente.

    Al aprobar, el activo pasa a 'reemplazo_en_logistica' y se crea la
    solicitud de asignación del reemplazo, todo en la misma transacción.
    Al rechazar, el activo no cambia.
    """
    autorizar(actor, 'actualizar_estado_reemplazo')
    if estado not in (SolicitudReemplazo.APROBADO, SolicitudReemplazo.RECHAZADO):
        raise ErrorValidacion(f'Estado inválido: "{estado}". Use "aprobado" o "rechazado".')

    def operacion():
        solicitud = persistencia.obtener('solicitudes_reemplazo', solicitud_id, bloquear=True)
        if solicitud.estado != SolicitudReemplazo.PENDIENTE:
            raise ErrorEstadoInvalido(f'La solicitud ya fue respondida ({solicitud.estado}).')

        if estado == SolicitudReemplazo.APROBADO:
            if solicitud.activo_id is None:
                raise ErrorEstadoInvalido(
                    f'El activo de la solicitud ({solicitud.activo_nombre}) ya volvió al stock.'
                )
            activo = persistencia.obtener('activos', solicitud.activo_id, bloquear=True)
            if activo.estado != Activo.ACTIVO:
                raise ErrorEstadoInvalido(
                    f'El activo está "{activo.estado}"; no se puede enviar a logística.'
                )
            persistencia.actualizar(activo, estado=Activo.REEMPLAZO_EN_LOGISTICA)
            persistencia.registrar_evento(
                activo, 'Reemplazo aprobado', f'Aprobado por {actor.nombre}', actor
            )

        persistencia.actualizar(solicitud, estado=estado, fecha_respuesta=timezone.now())
        if estado == SolicitudReemplazo.APROBADO:
            _asignar_reemplazo(actor, solicitud)
        return solicitud

    solicitud = persistencia.ejecutar_transaccion(operacion)
    logger.info(f'Solicitud de reemplazo {solicitud.pk} {estado} por {actor.email}')
    return solicitud


def listar_solicitudes_reemplazo(estado=None, empleado=None):
    queryset = SolicitudReemplazo.objects.select_related('empleado', 'activo', 'master')
    if estado:
        queryset = queryset.filter(estado=estado)
    if empleado is not None:
        queryset = queryset.filter(empleado=empleado)
    return queryset
