"""
Roles autorizados por operación.

La tabla se consulta en cada service antes de cualquier escritura; las vistas
y el admin no repiten estas reglas.
"""
from activos.exceptions import ErrorPermiso
from activos.models import PerfilUsuario

MASTER = PerfilUsuario.MASTER
LOGISTICA = PerfilUsuario.LOGISTICA
EMPLEADO = PerfilUsuario.EMPLEADO


POLITICAS = {
    # Usuarios
    'invitar_usuario': {MASTER},

    # Activos
    'agregar_stock': {MASTER, LOGISTICA},
    'confirmar_recepcion': {EMPLEADO},
    'rechazar_recepcion': {EMPLEADO},
    'actualizar_activo': {MASTER},
    'eliminar_activo': {MASTER},
    'resolver_reemplazo': {LOGISTICA},

    # Solicitudes de asignación
    'crear_solicitudes_asignacion': {MASTER},
    'procesar_solicitud_asignacion': {MASTER, LOGISTICA},
    'revalidar_solicitud_asignacion': {MASTER, LOGISTICA},
    'archivar_solicitud_asignacion': {MASTER},

    # Solicitudes de reemplazo
    'crear_solicitud_reemplazo': {EMPLEADO},
    'actualizar_estado_reemplazo': {MASTER},

    # Devoluciones
    'iniciar_devolucion': {EMPLEADO, MASTER},
    'verificar_devolucion': {LOGISTICA},
    'dar_de_baja': {LOGISTICA},
    'completar_devolucion': {LOGISTICA},
}


def puede(actor, operacion):
    """True si el actor (perfil activo) puede ejecutar la operación."""
    roles = POLITICAS.get(operacion)
    if roles is None:
        raise ValueError(f'Operación sin política definida: {operacion}')
    return actor is not None and actor.esta_activo and actor.rol in roles


def autorizar(actor, operacion):
    """Lanza ErrorPermiso si el actor no puede ejecutar la operación."""
    if puede(actor, operacion):
        return
    if actor is None or not actor.esta_activo:
        raise ErrorPermiso('Usuario no registrado o con registro incompleto.')
    raise ErrorPermiso(f'El rol {actor.get_rol_display()} no puede ejecutar "{operacion}".')
