"""
Mixins reutilizables para las vistas de la API.

Resuelven el perfil del usuario autenticado, leen el cuerpo de la petición y
convierten los errores de negocio en respuestas JSON.
"""
import json

from django.contrib.auth.mixins import LoginRequiredMixin
from django.http import JsonResponse

from .exceptions import ErrorNegocio, ErrorPermiso, ErrorValidacion
from .services.identidad import resolver_rol


def respuesta_error(error, **extra):
    return JsonResponse(
        {'error': error.codigo, 'mensaje': error.mensaje, **extra},
        status=error.status_http
    )


class PerfilRequeridoMixin(LoginRequiredMixin):
    """Mixin que resuelve el perfil (rol) del usuario por su correo."""

    def dispatch(self, request, *args, **kwargs):
        self.perfil = None
        if request.user.is_authenticated:
            self.perfil = resolver_rol(request.user.email)
        return super().dispatch(request, *args, **kwargs)

    def handle_no_permission(self):
        return JsonResponse(
            {'error': 'no_autenticado', 'mensaje': 'Debe iniciar sesión.'},
            status=401
        )


class ApiMixin(PerfilRequeridoMixin):
    """
    Base de las vistas JSON.

    `roles` limita quién puede consultar la vista; las operaciones que
    modifican datos validan el rol en los services.
    """

    roles = None

    def dispatch(self, request, *args, **kwargs):
        try:
            return super().dispatch(request, *args, **kwargs)
        except ErrorNegocio as e:
            return respuesta_error(e)

    def verificar_rol(self):
        if self.perfil is None or not self.perfil.esta_activo:
            raise ErrorPermiso('Usuario no registrado o con registro incompleto.')
        if self.roles and self.perfil.rol not in self.roles:
            raise ErrorPermiso(f'El rol {self.perfil.get_rol_display()} no tiene acceso a esta consulta.')

    def get_datos(self):
        """Cuerpo JSON o datos de formulario (multipart para archivos)."""
        if self.request.content_type == 'application/json':
            try:
                datos = json.loads(self.request.body or b'{}')
            except ValueError:
                raise ErrorValidacion('El cuerpo de la petición no es JSON válido.') from None
            if not isinstance(datos, dict):
                raise ErrorValidacion('El cuerpo de la petición debe ser un objeto JSON.')
            return datos
        return self.request.POST

    def formulario_valido(self, form_class):
        form = form_class(self.get_datos(), self.request.FILES)
        if not form.is_valid():
            errores = '; '.join(
                f'{campo}: {" ".join(mensajes)}' for campo, mensajes in form.errors.items()
            )
            raise ErrorValidacion(errores)
        return form

    def validar_formulario(self, form_class):
        return self.formulario_valido(form_class).cleaned_data
