"""
Errores de negocio del sistema de activos fijos.

Los services los lanzan de forma síncrona y nunca los silencian; la capa que
llama (vistas, comandos) decide cómo mostrarlos al usuario.
"""
from django.core.exceptions import PermissionDenied


class ErrorNegocio(Exception):
    """Base de todos los errores de negocio."""

    codigo = 'error'
    status_http = 400

    def __init__(self, mensaje=''):
        super().__init__(mensaje)
        self.mensaje = mensaje

    def __str__(self):
        return self.mensaje


class ErrorValidacion(ErrorNegocio):
    """Entrada incompleta o mal formada (motivo vacío, cantidad <= 0...)."""

    codigo = 'validacion'
    status_http = 400


class ErrorEstadoInvalido(ErrorNegocio):
    """La operación no es válida en el estado actual de la entidad."""

    codigo = 'estado_invalido'
    status_http = 409


class ErrorConflicto(ErrorNegocio):
    """Violación de unicidad o colisión de escritura tras agotar reintentos."""

    codigo = 'conflicto'
    status_http = 409


class ErrorNoEncontrado(ErrorNegocio):
    codigo = 'no_encontrado'
    status_http = 404


class ErrorPermiso(ErrorNegocio, PermissionDenied):
    """El rol del actor no puede ejecutar la operación."""

    codigo = 'permiso_denegado'
    status_http = 403


class ColisionEscritura(Exception):
    """
    Otra transacción modificó la fila entre la lectura y la escritura.

    Es interna a la capa de persistencia: ejecutar_transaccion() la captura y
    reintenta; si se agotan los intentos se convierte en ErrorConflicto.
    """
