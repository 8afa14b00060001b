"""
Identidad y roles: invitaciones, registro y resolución de rol por correo.
"""
import logging

from django.core.exceptions import ValidationError
from django.core.validators import validate_email
from django.db import IntegrityError, transaction

from activos.exceptions import ErrorConflicto, ErrorNoEncontrado, ErrorValidacion
from activos.models import PerfilUsuario
from activos.services.politicas import autorizar

logger = logging.getLogger(__name__)

NOMBRE_PROVISIONAL = 'Pendiente de registro'


def _normalizar_email(email):
    return (email or '').strip().lower()


def resolver_rol(email):
    """Perfil (rol y estado) asociado al correo, o None si no está invitado."""
    email = _normalizar_email(email)
    if not email:
        return None
    return PerfilUsuario.objects.filter(email=email).first()


def invitar_usuario(actor, email, rol):
    """Crea la invitación de un usuario con su rol. Solo masters."""
    autorizar(actor, 'invitar_usuario')

    email = _normalizar_email(email)
    try:
        validate_email(email)
    except ValidationError:
        raise ErrorValidacion(f'Correo inválido: "{email}".') from None
    if rol not in dict(PerfilUsuario.ROLES):
        raise ErrorValidacion(f'Rol inválido: "{rol}".')

    if PerfilUsuario.objects.filter(email=email).exists():
        raise ErrorConflicto(f'El correo {email} ya fue invitado.')

    try:
        with transaction.atomic():
            perfil = PerfilUsuario.objects.create(
                nombre=NOMBRE_PROVISIONAL,
                email=email,
                rol=rol,
                estado=PerfilUsuario.INVITADO,
                invitado_por=actor,
            )
    except IntegrityError:
        raise ErrorConflicto(f'El correo {email} ya fue invitado.') from None

    logger.info(f'Invitación creada: {email} ({rol}) por {actor.email}')
    return perfil


def completar_registro(usuario, nombre=None):
    """
    Enlaza la cuenta `usuario` con la invitación de su correo y la activa.

    Es idempotente para la misma cuenta. Falla si el correo no fue invitado
    o si la invitación ya está enlazada con otra cuenta.
    """
    email = _normalizar_email(usuario.email)
    with transaction.atomic():
        perfil = PerfilUsuario.objects.select_for_update().filter(email=email).first()
        if perfil is None:
            raise ErrorNoEncontrado(
                'No estás autorizado para registrarte. Contacta a un administrador.'
            )
        if perfil.usuario_id and perfil.usuario_id != usuario.pk:
            raise ErrorConflicto(f'La invitación de {email} ya fue utilizada.')

        perfil.usuario = usuario
        perfil.nombre = nombre or usuario.get_full_name() or perfil.nombre
        perfil.estado = PerfilUsuario.ACTIVO
        perfil.save()

    logger.info(f'Registro completado: {email} ({perfil.rol})')
    return perfil


def listar_usuarios(rol=None):
    queryset = PerfilUsuario.objects.all()
    if rol:
        queryset = queryset.filter(rol=rol)
    return queryset
