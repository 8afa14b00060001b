"""
Formularios de entrada de la API.

Convierten tipos y validan formato; las reglas de negocio (estados, roles,
campos obligatorios con mensaje propio) quedan en los services.
"""
from django import forms

from .models import Activo, PerfilUsuario, SolicitudReemplazo


class AgregarStockForm(forms.Form):
    """Ingreso de inventario."""

    nombre = forms.CharField(max_length=200, required=False, label='Nombre')
    cantidad = forms.IntegerField(label='Cantidad')
    serial = forms.CharField(max_length=100, required=False, label='Serial')
    ubicacion = forms.CharField(max_length=200, required=False, label='Ubicación')
    tipo = forms.ChoiceField(choices=Activo.TIPOS, required=False, label='Tipo')
    referencia = forms.CharField(max_length=100, required=False, label='Referencia')

    def clean_tipo(self):
        return self.cleaned_data.get('tipo') or Activo.EQUIPO_DE_COMPUTO


class ActualizarActivoForm(forms.Form):
    """Edición administrativa; solo se aplican los campos enviados."""

    referencia = forms.CharField(max_length=100, required=False)
    nombre = forms.CharField(max_length=200, required=False)
    serial = forms.CharField(max_length=100, required=False)
    ubicacion = forms.CharField(max_length=200, required=False)
    estado = forms.ChoiceField(choices=Activo.ESTADOS, required=False)
    tipo = forms.ChoiceField(choices=Activo.TIPOS, required=False)
    stock = forms.IntegerField(min_value=0, required=False)

    def campos_enviados(self):
        return {
            campo: self.cleaned_data[campo]
            for campo in self.fields
            if campo in self.data
        }


class MotivoForm(forms.Form):
    """Motivo del rechazo de una entrega."""

    motivo = forms.CharField(required=False, label='Motivo del rechazo')


class ResolverReemplazoForm(forms.Form):
    destino = forms.ChoiceField(
        choices=[(Activo.EN_STOCK, 'Retornar a stock'), (Activo.BAJA, 'Dar de baja')],
        label='Destino'
    )
    motivo = forms.CharField(required=False, label='Motivo')


class EnvioForm(forms.Form):
    """Datos de envío de una solicitud de asignación."""

    numero_guia = forms.CharField(max_length=100, required=False, label='Número de guía')
    transportadora = forms.CharField(max_length=100, required=False, label='Transportadora')


class SolicitudReemplazoForm(forms.Form):
    activo_id = forms.IntegerField(label='Activo')
    motivo = forms.CharField(max_length=200, required=False, label='Motivo')
    justificacion = forms.CharField(required=False, label='Justificación')
    imagen = forms.FileField(required=False, label='Imagen')


class RespuestaReemplazoForm(forms.Form):
    estado = forms.ChoiceField(
        choices=[
            (SolicitudReemplazo.APROBADO, 'Aprobar'),
            (SolicitudReemplazo.RECHAZADO, 'Rechazar'),
        ],
        label='Respuesta'
    )


class IniciarDevolucionForm(forms.Form):
    empleado_id = forms.IntegerField(required=False, label='Empleado')


class BajaForm(forms.Form):
    """
    Baja de un activo devuelto. `evidencia_url` permite reintentar con una
    imagen ya subida.
    """

    justificacion = forms.CharField(required=False, label='Justificación')
    evidencia = forms.FileField(required=False, label='Imagen de evidencia')
    evidencia_url = forms.CharField(max_length=500, required=False)


class InvitacionForm(forms.Form):
    email = forms.CharField(max_length=254, label='Correo')
    rol = forms.ChoiceField(choices=PerfilUsuario.ROLES, label='Rol')
