"""
Procesos de devolución (paz y salvo).

Un proceso toma todos los activos 'activo' de un empleado y los pasa a
'en devolución'. Logística verifica cada uno: lo retorna al stock o lo da de
baja con justificación e imagen de evidencia. Tras cada verificación el
proceso pasa a 'verificado por logística' y, cuando no queda ninguno
pendiente, a 'completado'.
"""
import logging

from django.utils import timezone

from activos.exceptions import (
    ErrorEstadoInvalido, ErrorNegocio, ErrorNoEncontrado, ErrorPermiso, ErrorValidacion,
)
from activos.models import Activo, ProcesoDevolucion
from activos.services import almacenamiento, persistencia
from activos.services.activos import retirar_activo, retornar_a_stock
from activos.services.politicas import autorizar

logger = logging.getLogger(__name__)


def iniciar_proceso_devolucion(actor, empleado_id=None):
    """
    Inicia la devolución de los activos en uso de un empleado.

    Un empleado solo puede iniciar la suya; un master puede iniciarla para
    cualquier empleado indicando `empleado_id`.
    """
    autorizar(actor, 'iniciar_devolucion')
    if empleado_id is None or str(empleado_id) == str(actor.pk):
        empleado = actor
    elif actor.es_empleado:
        raise ErrorPermiso('Un empleado solo puede iniciar su propia devolución.')
    else:
        empleado = persistencia.obtener('usuarios', empleado_id)

    def operacion():
        activos = list(
            persistencia.consultar(
                'activos', bloquear=True, empleado=empleado, estado=Activo.ACTIVO
            ).order_by('id')
        )
        if not activos:
            raise ErrorValidacion(f'{empleado.nombre} no tiene activos para devolver.')

        proceso = persistencia.crear(
            'procesos_devolucion',
            empleado=empleado,
            empleado_nombre=empleado.nombre,
        )
        for activo in activos:
            proceso.activos.create(activo_id=activo.pk, nombre=activo.nombre, serial=activo.serial)
            persistencia.actualizar(activo, estado=Activo.EN_DEVOLUCION)
            persistencia.registrar_evento(
                activo, 'Devolución iniciada', f'Proceso de devolución {proceso.pk}', actor
            )
        return proceso

    proceso = persistencia.ejecutar_transaccion(operacion)
    logger.info(
        f'Devolución {proceso.pk} iniciada para {empleado.email} '
        f'({proceso.activos.count()} activos) por {actor.email}'
    )
    return proceso


def _entrada_pendiente(proceso_id, activo_id, bloquear=True):
    proceso = persistencia.obtener('procesos_devolucion', proceso_id, bloquear=bloquear)
    if proceso.estado == ProcesoDevolucion.COMPLETADO:
        raise ErrorEstadoInvalido(f'El proceso de devolución {proceso.pk} ya está completado.')

    entradas = proceso.activos.filter(activo_id=activo_id)
    if bloquear:
        entradas = entradas.select_for_update()
    entrada = entradas.first()
    if entrada is None:
        raise ErrorNoEncontrado(f'El activo {activo_id} no pertenece al proceso {proceso.pk}.')
    if entrada.verificado:
        raise ErrorEstadoInvalido(f'El activo {activo_id} ya fue verificado en este proceso.')
    return proceso, entrada


def _activo_en_devolucion(activo_id, bloquear=True):
    activo = persistencia.obtener('activos', activo_id, bloquear=bloquear)
    if activo.estado != Activo.EN_DEVOLUCION:
        raise ErrorEstadoInvalido(f'El activo está "{activo.estado}", no "en devolución".')
    return activo


def _marcar_verificada(entrada, resultado, actor):
    entrada.verificado = True
    entrada.resultado = resultado
    entrada.fecha_verificacion = timezone.now()
    entrada.verificado_por = actor
    entrada.save(update_fields=['verificado', 'resultado', 'fecha_verificacion', 'verificado_por'])


def _actualizar_avance(proceso):
    if proceso.todos_verificados:
        persistencia.actualizar(
            proceso, estado=ProcesoDevolucion.COMPLETADO, fecha_completado=timezone.now()
        )
    else:
        persistencia.actualizar(proceso, estado=ProcesoDevolucion.VERIFICADO_LOGISTICA)
    return proceso


def verificar_devolucion(actor, proceso_id, activo_id):
    """Logística recibe el activo y lo retorna al stock de su nombre."""
    autorizar(actor, 'verificar_devolucion')

    def operacion():
        proceso, entrada = _entrada_pendiente(proceso_id, activo_id)
        activo = _activo_en_devolucion(activo_id)
        retornar_a_stock(activo, actor, evento='Devuelto a stock')
        _marcar_verificada(entrada, Activo.EN_STOCK, actor)
        return _actualizar_avance(proceso)

    proceso = persistencia.ejecutar_transaccion(operacion)
    logger.info(
        f'Devolución {proceso.pk}: activo {activo_id} retornado a stock por {actor.email} '
        f'(proceso {proceso.estado})'
    )
    return proceso


def dar_de_baja(actor, proceso_id, activo_id, justificacion, evidencia=None, evidencia_url=None):
    """
    Logística da de baja un activo devuelto.

    Exige justificación e imagen de evidencia. La imagen se sube antes de la
    transacción; si la escritura falla, el error lleva `evidencia_url` para
    reintentar sin volver a subirla.
    """
    autorizar(actor, 'dar_de_baja')
    justificacion = (justificacion or '').strip()
    if not justificacion:
        raise ErrorValidacion('La justificación de la baja es obligatoria.')

    if not evidencia_url:
        if evidencia is None:
            raise ErrorValidacion('La imagen de evidencia es obligatoria para dar de baja.')
        almacenamiento.validar_imagen(evidencia)
        _entrada_pendiente(proceso_id, activo_id, bloquear=False)
        _activo_en_devolucion(activo_id, bloquear=False)
        evidencia_url = almacenamiento.subir(evidencia, evidencia.name)

    def operacion():
        proceso, entrada = _entrada_pendiente(proceso_id, activo_id)
        activo = _activo_en_devolucion(activo_id)
        retirar_activo(activo, justificacion, evidencia_url, actor)
        _marcar_verificada(entrada, Activo.BAJA, actor)
        return _actualizar_avance(proceso)

    try:
        proceso = persistencia.ejecutar_transaccion(operacion)
    except ErrorNegocio as e:
        e.evidencia_url = evidencia_url
        raise

    logger.info(
        f'Devolución {proceso.pk}: activo {activo_id} dado de baja por {actor.email} '
        f'(proceso {proceso.estado})'
    )
    return proceso


def completar_proceso_devolucion(actor, proceso_id):
    """Cierra el proceso; sobre un proceso ya completado no hace nada."""
    autorizar(actor, 'completar_devolucion')

    def operacion():
        proceso = persistencia.obtener('procesos_devolucion', proceso_id, bloquear=True)
        if proceso.estado == ProcesoDevolucion.COMPLETADO:
            return proceso, False
        pendientes = proceso.activos.filter(verificado=False).count()
        if pendientes:
            raise ErrorEstadoInvalido(f'Faltan {pendientes} activos por verificar.')
        persistencia.actualizar(
            proceso, estado=ProcesoDevolucion.COMPLETADO, fecha_completado=timezone.now()
        )
        return proceso, True

    proceso, cambio = persistencia.ejecutar_transaccion(operacion)
    if cambio:
        logger.info(f'Devolución {proceso.pk} completada por {actor.email}')
    return proceso


def listar_procesos_devolucion(estado=None, empleado=None):
    queryset = ProcesoDevolucion.objects.prefetch_related('activos')
    if estado:
        queryset = queryset.filter(estado=estado)
    if empleado is not None:
        queryset = queryset.filter(empleado=empleado)
    return queryset
