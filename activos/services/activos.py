"""
Ciclo de vida de los activos.

    en stock -> recibido pendiente -> activo
    recibido pendiente -> en disputa             (el empleado rechaza la entrega)
    activo -> reemplazo_en_logistica -> en stock | baja
    activo -> en devolución -> en stock | baja   (ver devoluciones.py)

Las filas 'en stock' se fusionan por nombre (sin distinguir mayúsculas): al
ingresar o retornar inventario de un nombre existente se incrementa su stock.
"""
import copy
import logging

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import F
from django.db.models.functions import Coalesce
from django.utils import timezone

from activos.exceptions import (
    ColisionEscritura, ErrorConflicto, ErrorEstadoInvalido, ErrorPermiso, ErrorValidacion,
)
from activos.models import Activo, SolicitudAsignacion, normalizar_nombre
from activos.services import persistencia
from activos.services.politicas import autorizar

logger = logging.getLogger(__name__)


CAMPOS_EDITABLES = ('referencia', 'nombre', 'serial', 'ubicacion', 'estado', 'tipo', 'stock')


def _limpiar_nombre(nombre):
    nombre = ' '.join((nombre or '').split())
    if not nombre:
        raise ErrorValidacion('El nombre del activo es obligatorio.')
    return nombre


def _entero_positivo(valor, campo='cantidad'):
    try:
        numero = int(valor)
    except (TypeError, ValueError):
        raise ErrorValidacion(f'La {campo} debe ser un número entero.') from None
    if numero <= 0:
        raise ErrorValidacion(f'La {campo} debe ser mayor que cero.')
    return numero


def _verificar_custodia(actor, activo):
    if activo.empleado_id != actor.pk:
        raise ErrorPermiso('El activo no está asignado a este usuario.')


# ============================================================================
# STOCK
# ============================================================================

def fila_de_stock(nombre, bloquear=False, excluir=None):
    """Fila 'en stock' del nombre dado, o None."""
    queryset = persistencia.consultar(
        'activos', bloquear=bloquear,
        estado=Activo.EN_STOCK, nombre_clave=normalizar_nombre(nombre),
    )
    if excluir is not None:
        queryset = queryset.exclude(pk=excluir.pk)
    return queryset.first()


def fusionar_en_stock(nombre, cantidad, serial='', ubicacion='', tipo=None, referencia=''):
    """
    Suma `cantidad` a la fila 'en stock' del nombre o la crea.

    Debe llamarse dentro de ejecutar_transaccion(): si otra transacción crea
    la misma fila al mismo tiempo se lanza ColisionEscritura y se reintenta.
    Retorna (fila, creada).
    """
    fila = fila_de_stock(nombre, bloquear=True)
    if fila is not None:
        campos = {'stock': Coalesce(F('stock'), 0) + cantidad}
        if ubicacion:
            campos['ubicacion'] = ubicacion
        persistencia.actualizar(fila, **campos)
        return fila, False

    try:
        with transaction.atomic():
            fila = persistencia.crear(
                'activos',
                nombre=nombre,
                referencia=referencia or '',
                serial=serial or '',
                ubicacion=ubicacion or '',
                tipo=tipo or Activo.EQUIPO_DE_COMPUTO,
                estado=Activo.EN_STOCK,
                stock=cantidad,
            )
    except IntegrityError as e:
        raise ColisionEscritura(f'Otra transacción creó el stock de "{nombre}"') from e
    return fila, True


def agregar_stock(actor, nombre, cantidad, serial=None, ubicacion=None,
                  tipo=Activo.EQUIPO_DE_COMPUTO, referencia=None):
    """Ingresa inventario; se fusiona con la fila de stock del mismo nombre."""
    autorizar(actor, 'agregar_stock')
    nombre = _limpiar_nombre(nombre)
    cantidad = _entero_positivo(cantidad)
    if tipo not in dict(Activo.TIPOS):
        raise ErrorValidacion(f'Tipo de activo inválido: "{tipo}".')

    def operacion():
        fila, creada = fusionar_en_stock(
            nombre, cantidad,
            serial=serial, ubicacion=ubicacion, tipo=tipo, referencia=referencia,
        )
        persistencia.registrar_evento(
            fila, 'Ingreso a stock',
            f'+{cantidad} unidades' + (' (nueva fila)' if creada else ''),
            actor,
        )
        return fila

    fila = persistencia.ejecutar_transaccion(operacion)
    logger.info(f'Stock agregado: {nombre} +{cantidad} (total {fila.stock}) por {actor.email}')
    return fila


def retornar_a_stock(activo, actor, evento='Retornado a stock'):
    """
    Devuelve una unidad asignada al stock de su nombre.

    Si ya hay fila de stock se incrementa y la unidad se elimina (su historial
    pasa a la fila de stock); si no la hay, la unidad se convierte en la fila
    de stock con cantidad 1. Debe llamarse dentro de ejecutar_transaccion().
    """
    descripcion = f'Unidad {activo.serial or activo.pk} devuelta por {activo.empleado_nombre or "sin empleado"}'
    fila = fila_de_stock(activo.nombre, bloquear=True, excluir=activo)

    if fila is None:
        persistencia.actualizar(
            activo,
            estado=Activo.EN_STOCK,
            stock=1,
            empleado=None,
            empleado_nombre='',
            fecha_asignacion=None,
            solicitud_asignacion=None,
        )
        persistencia.registrar_evento(activo, evento, descripcion, actor)
        return activo

    persistencia.actualizar(fila, stock=Coalesce(F('stock'), 0) + 1)
    activo.historial.update(activo=fila)
    persistencia.eliminar('activos', activo.pk)
    persistencia.registrar_evento(fila, evento, descripcion, actor)
    return fila


def retirar_activo(activo, motivo, evidencia_url, actor):
    """Marca el activo como baja y lo libera del empleado."""
    empleado_nombre = activo.empleado_nombre
    persistencia.actualizar(
        activo,
        estado=Activo.BAJA,
        motivo_baja=motivo,
        evidencia_url=evidencia_url or '',
        empleado=None,
        empleado_nombre='',
        stock=None,
    )
    persistencia.registrar_evento(
        activo, 'Baja',
        f'{motivo} (estaba con {empleado_nombre or "sin empleado"})',
        actor,
    )
    return activo


# ============================================================================
# RECEPCIÓN
# ============================================================================

def confirmar_recepcion(actor, activo_id):
    """El empleado confirma que recibió el activo."""
    autorizar(actor, 'confirmar_recepcion')

    def operacion():
        activo = persistencia.obtener('activos', activo_id, bloquear=True)
        if activo.estado != Activo.RECIBIDO_PENDIENTE:
            raise ErrorEstadoInvalido(
                f'El activo está "{activo.estado}"; solo se confirma un activo "recibido pendiente".'
            )
        _verificar_custodia(actor, activo)
        persistencia.actualizar(activo, estado=Activo.ACTIVO, fecha_asignacion=timezone.now())
        persistencia.registrar_evento(activo, 'Recepción confirmada', f'Recibido por {actor.nombre}', actor)
        return activo

    activo = persistencia.ejecutar_transaccion(operacion)
    logger.info(f'Recepción confirmada: activo {activo.pk} por {actor.email}')
    return activo


def rechazar_recepcion(actor, activo_id, motivo):
    """
    El empleado rechaza la entrega: el activo queda 'en disputa' y la
    solicitud de asignación que lo originó queda 'rechazado' con el motivo.
    """
    autorizar(actor, 'rechazar_recepcion')
    motivo = (motivo or '').strip()
    if not motivo:
        raise ErrorValidacion('Debe indicar el motivo del rechazo.')

    def operacion():
        activo = persistencia.obtener('activos', activo_id, bloquear=True)
        if activo.estado != Activo.RECIBIDO_PENDIENTE:
            raise ErrorEstadoInvalido(
                f'El activo está "{activo.estado}"; solo se rechaza un activo "recibido pendiente".'
            )
        _verificar_custodia(actor, activo)
        persistencia.actualizar(activo, estado=Activo.EN_DISPUTA, motivo_rechazo=motivo)

        if activo.solicitud_asignacion_id:
            solicitud = persistencia.obtener(
                'solicitudes_asignacion', activo.solicitud_asignacion_id, bloquear=True
            )
            if solicitud.estado not in (SolicitudAsignacion.RECHAZADO, SolicitudAsignacion.ARCHIVADO):
                persistencia.actualizar(
                    solicitud, estado=SolicitudAsignacion.RECHAZADO, motivo_rechazo=motivo
                )

        persistencia.registrar_evento(activo, 'Recepción rechazada', motivo, actor)
        return activo

    activo = persistencia.ejecutar_transaccion(operacion)
    logger.info(f'Recepción rechazada: activo {activo.pk} por {actor.email}')
    return activo


# ============================================================================
# REEMPLAZO
# ============================================================================

def resolver_reemplazo(actor, activo_id, destino, motivo=''):
    """
    Logística recibe el activo reemplazado y decide su destino:
    retorna al stock o se da de baja.
    """
    autorizar(actor, 'resolver_reemplazo')
    if destino not in (Activo.EN_STOCK, Activo.BAJA):
        raise ErrorValidacion(f'Destino inválido: "{destino}". Use "en stock" o "baja".')
    motivo = (motivo or '').strip()

    def operacion():
        activo = persistencia.obtener('activos', activo_id, bloquear=True)
        if activo.estado != Activo.REEMPLAZO_EN_LOGISTICA:
            raise ErrorEstadoInvalido(
                f'El activo está "{activo.estado}"; no hay reemplazo pendiente en logística.'
            )
        if destino == Activo.EN_STOCK:
            return retornar_a_stock(activo, actor, evento='Reemplazo retornado a stock')
        return retirar_activo(activo, motivo or 'Reemplazo dado de baja', '', actor)

    resultado = persistencia.ejecutar_transaccion(operacion)
    logger.info(f'Reemplazo resuelto: activo {activo_id} -> {destino} por {actor.email}')
    return resultado


# ============================================================================
# ADMINISTRACIÓN
# ============================================================================

def actualizar_activo(actor, activo_id, campos):
    """
    Edición administrativa de un activo (solo master).

    No aplica las transiciones del ciclo de vida, pero el resultado debe
    cumplir las reglas del modelo (Activo.clean): una fila 'en stock' sin
    empleado y con cantidad, un estado de custodia con empleado.
    """
    autorizar(actor, 'actualizar_activo')
    desconocidos = set(campos) - set(CAMPOS_EDITABLES)
    if desconocidos:
        raise ErrorValidacion(f'Campos no editables: {", ".join(sorted(desconocidos))}.')

    campos = dict(campos)
    if 'nombre' in campos:
        campos['nombre'] = _limpiar_nombre(campos['nombre'])
        campos['nombre_clave'] = normalizar_nombre(campos['nombre'])
    if 'estado' in campos and campos['estado'] not in dict(Activo.ESTADOS):
        raise ErrorValidacion(f'Estado inválido: "{campos["estado"]}".')
    if 'tipo' in campos and campos['tipo'] not in dict(Activo.TIPOS):
        raise ErrorValidacion(f'Tipo de activo inválido: "{campos["tipo"]}".')
    if campos.get('stock') is not None:
        try:
            campos['stock'] = int(campos['stock'])
        except (TypeError, ValueError):
            raise ErrorValidacion('El stock debe ser un número entero.') from None
        if campos['stock'] < 0:
            raise ErrorValidacion('El stock no puede ser negativo.')

    def operacion():
        activo = persistencia.obtener('activos', activo_id, bloquear=True)
        estado = campos.get('estado', activo.estado)
        nombre = campos.get('nombre', activo.nombre)
        if estado == Activo.EN_STOCK and fila_de_stock(nombre, excluir=activo) is not None:
            raise ErrorConflicto(f'Ya existe una fila de stock para "{nombre}".')

        candidato = copy.copy(activo)
        for campo, valor in campos.items():
            setattr(candidato, campo, valor)
        try:
            candidato.clean()
        except ValidationError as e:
            raise ErrorValidacion(' '.join(e.messages)) from e

        cambios = [
            f'{campo}: {getattr(activo, campo)} -> {valor}'
            for campo, valor in campos.items()
            if campo != 'nombre_clave' and getattr(activo, campo) != valor
        ]
        persistencia.actualizar(activo, **campos)
        persistencia.registrar_evento(activo, 'Edición administrativa', '; '.join(cambios), actor)
        return activo

    activo = persistencia.ejecutar_transaccion(operacion)
    logger.info(f'Activo {activo.pk} editado por {actor.email}: {sorted(campos)}')
    return activo


def eliminar_activo(actor, activo_id):
    """Elimina el activo; su historial se conserva sin enlace."""
    autorizar(actor, 'eliminar_activo')

    def operacion():
        activo = persistencia.obtener('activos', activo_id, bloquear=True)
        persistencia.registrar_evento(activo, 'Eliminado', f'Eliminado por {actor.nombre}', actor)
        return persistencia.eliminar('activos', activo.pk)

    activo = persistencia.ejecutar_transaccion(operacion)
    logger.info(f'Activo {activo_id} ({activo.nombre}) eliminado por {actor.email}')
    return activo


# ============================================================================
# CONSULTAS
# ============================================================================

def listar_stock():
    return Activo.objects.filter(estado=Activo.EN_STOCK, stock__gt=0)


def listar_inventario(estado=None, tipo=None):
    queryset = Activo.objects.select_related('empleado')
    if estado:
        queryset = queryset.filter(estado=estado)
    if tipo:
        queryset = queryset.filter(tipo=tipo)
    return queryset


def mis_activos(actor):
    return Activo.objects.filter(empleado=actor)


def obtener_activo(activo_id):
    return persistencia.obtener('activos', activo_id)


def historial_activo(activo_id):
    return obtener_activo(activo_id).historial.select_related('actor')
