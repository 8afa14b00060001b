"""
Pasarela de persistencia sobre el ORM de Django.

Expone las colecciones del sistema (usuarios, activos, solicitudes y procesos
de devolución) con operaciones CRUD y un ejecutor de transacciones con
reintento optimista acotado.

Las filas con campo `version` se escriben con compare-and-set: si otra
transacción las modificó después de leerlas, la escritura no afecta ninguna
fila y se lanza ColisionEscritura, que ejecutar_transaccion() reintenta contra
el estado recién leído.
"""
import logging

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from activos.exceptions import ColisionEscritura, ErrorConflicto, ErrorNoEncontrado
from activos.models import (
    PerfilUsuario, Activo, HistorialActivo, SolicitudAsignacion,
    SolicitudReemplazo, ProcesoDevolucion,
)

logger = logging.getLogger(__name__)


COLECCIONES = {
    'usuarios': PerfilUsuario,
    'activos': Activo,
    'historial': HistorialActivo,
    'solicitudes_asignacion': SolicitudAsignacion,
    'solicitudes_reemplazo': SolicitudReemplazo,
    'procesos_devolucion': ProcesoDevolucion,
}

MAX_REINTENTOS_POR_DEFECTO = 3


def _modelo(coleccion):
    try:
        return COLECCIONES[coleccion]
    except KeyError:
        raise ValueError(f'Colección desconocida: {coleccion}') from None


def _es_versionado(modelo):
    return any(campo.name == 'version' for campo in modelo._meta.concrete_fields)


def obtener(coleccion, pk, bloquear=False):
    """
    Retorna la fila `pk` de la colección.

    Con bloquear=True la fila queda bloqueada (SELECT ... FOR UPDATE) hasta el
    final de la transacción en curso.
    """
    modelo = _modelo(coleccion)
    queryset = modelo.objects.select_for_update() if bloquear else modelo.objects.all()
    try:
        return queryset.get(pk=pk)
    except (modelo.DoesNotExist, ValueError, TypeError):
        raise ErrorNoEncontrado(f'{modelo._meta.verbose_name} {pk} no existe.') from None


def consultar(coleccion, *condiciones, bloquear=False, **filtros):
    """Queryset filtrado de la colección (Q objects y/o filtros por nombre)."""
    queryset = _modelo(coleccion).objects.filter(*condiciones, **filtros)
    if bloquear:
        queryset = queryset.select_for_update()
    return queryset


def crear(coleccion, **campos):
    return _modelo(coleccion).objects.create(**campos)


def actualizar(instancia, **campos):
    """
    Escribe `campos` en la fila de `instancia` y los refleja en la instancia.

    Acepta expresiones (F, Coalesce...) como valores; esos campos se releen de
    la base de datos después de escribir.
    """
    modelo = type(instancia)
    if any(campo.name == 'actualizado' for campo in modelo._meta.concrete_fields):
        campos.setdefault('actualizado', timezone.now())

    queryset = modelo.objects.filter(pk=instancia.pk)
    valores = dict(campos)
    versionado = _es_versionado(modelo)
    if versionado:
        queryset = queryset.filter(version=instancia.version)
        valores['version'] = F('version') + 1

    try:
        with transaction.atomic():
            filas = queryset.update(**valores)
    except IntegrityError as e:
        # Restricción de unicidad disparada por una escritura concurrente
        raise ColisionEscritura(f'{modelo._meta.verbose_name} {instancia.pk}: {e}') from e

    if not filas:
        if versionado and modelo.objects.filter(pk=instancia.pk).exists():
            raise ColisionEscritura(
                f'{modelo._meta.verbose_name} {instancia.pk} cambió desde la versión {instancia.version}'
            )
        raise ErrorNoEncontrado(f'{modelo._meta.verbose_name} {instancia.pk} no existe.')

    expresiones = []
    for campo, valor in campos.items():
        if hasattr(valor, 'resolve_expression'):
            expresiones.append(campo)
        else:
            setattr(instancia, campo, valor)
    if versionado:
        expresiones.append('version')
    if expresiones:
        instancia.refresh_from_db(fields=expresiones)
    return instancia


def eliminar(coleccion, pk):
    instancia = obtener(coleccion, pk)
    instancia.delete()
    return instancia


def ejecutar_transaccion(operacion, intentos=None):
    """
    Ejecuta `operacion()` dentro de una transacción atómica.

    Si la operación pierde una carrera de escritura (ColisionEscritura) se
    deshace todo lo escrito y se reintenta desde cero, hasta `intentos` veces.
    Agotados los intentos se lanza ErrorConflicto. Cualquier otro error se
    propaga sin reintentar, con la transacción deshecha.
    """
    if intentos is None:
        intentos = getattr(settings, 'FIJOS_MAX_REINTENTOS', MAX_REINTENTOS_POR_DEFECTO)

    ultima_colision = None
    for intento in range(1, intentos + 1):
        try:
            with transaction.atomic():
                return operacion()
        except ColisionEscritura as e:
            ultima_colision = e
            logger.warning(f'Colisión de escritura (intento {intento} de {intentos}): {e}')

    raise ErrorConflicto(
        'La operación no pudo completarse porque los datos fueron modificados '
        'por otro usuario. Intente de nuevo.'
    ) from ultima_colision


def registrar_evento(activo, evento, descripcion='', actor=None):
    """Agrega un evento al historial del activo."""
    return HistorialActivo.objects.create(
        activo=activo,
        activo_nombre=activo.nombre,
        evento=evento,
        descripcion=descripcion,
        actor=actor,
        actor_nombre=actor.nombre if actor else '',
    )
