"""
API JSON de activos fijos.

Cada vista traduce la petición a una operación de los services y la
respuesta a JSON. Los errores de negocio los convierte ApiMixin.
"""
import logging

from django.http import JsonResponse
from django.views import View

from .exceptions import ErrorNegocio, ErrorValidacion
from .forms import (
    ActualizarActivoForm, AgregarStockForm, BajaForm, EnvioForm, IniciarDevolucionForm,
    InvitacionForm, MotivoForm, ResolverReemplazoForm, RespuestaReemplazoForm,
    SolicitudReemplazoForm,
)
from .mixins import ApiMixin, respuesta_error
from .models import PerfilUsuario
from .services import activos, devoluciones, identidad, solicitudes

logger = logging.getLogger(__name__)

MASTER = PerfilUsuario.MASTER
LOGISTICA = PerfilUsuario.LOGISTICA


# ============================================================================
# SERIALIZACIÓN
# ============================================================================

def perfil_a_dict(perfil):
    return {
        'id': perfil.id,
        'nombre': perfil.nombre,
        'email': perfil.email,
        'rol': perfil.rol,
        'estado': perfil.estado,
    }


def activo_a_dict(activo):
    return {
        'id': activo.id,
        'referencia': activo.referencia,
        'nombre': activo.nombre,
        'serial': activo.serial,
        'ubicacion': activo.ubicacion,
        'estado': activo.estado,
        'estado_display': activo.get_estado_display(),
        'tipo': activo.tipo,
        'stock': activo.stock,
        'empleado_id': activo.empleado_id,
        'empleado_nombre': activo.empleado_nombre,
        'fecha_asignacion': activo.fecha_asignacion,
        'motivo_rechazo': activo.motivo_rechazo,
        'motivo_baja': activo.motivo_baja,
        'evidencia_url': activo.evidencia_url,
    }


def evento_a_dict(evento):
    return {
        'id': evento.id,
        'evento': evento.evento,
        'descripcion': evento.descripcion,
        'actor': evento.actor_nombre,
        'fecha': evento.fecha,
    }


def solicitud_asignacion_a_dict(solicitud):
    return {
        'id': solicitud.id,
        'empleado_id': solicitud.empleado_id,
        'empleado_nombre': solicitud.empleado_nombre,
        'activo_id': solicitud.activo_id,
        'activo_nombre': solicitud.activo_nombre,
        'cantidad': solicitud.cantidad,
        'fecha': solicitud.fecha,
        'estado': solicitud.estado,
        'numero_guia': solicitud.numero_guia,
        'transportadora': solicitud.transportadora,
        'fecha_envio': solicitud.fecha_envio,
        'master_nombre': solicitud.master_nombre,
        'motivo_rechazo': solicitud.motivo_rechazo,
        'solicitud_reemplazo_origen_id': solicitud.solicitud_reemplazo_origen_id,
    }


def solicitud_reemplazo_a_dict(solicitud):
    return {
        'id': solicitud.id,
        'empleado_id': solicitud.empleado_id,
        'empleado_nombre': solicitud.empleado_nombre,
        'master_id': solicitud.master_id,
        'activo_id': solicitud.activo_id,
        'activo_nombre': solicitud.activo_nombre,
        'serial': solicitud.serial,
        'motivo': solicitud.motivo,
        'justificacion': solicitud.justificacion,
        'imagen_url': solicitud.imagen_url,
        'fecha': solicitud.fecha,
        'estado': solicitud.estado,
        'fecha_respuesta': solicitud.fecha_respuesta,
    }


def proceso_a_dict(proceso):
    return {
        'id': proceso.id,
        'empleado_id': proceso.empleado_id,
        'empleado_nombre': proceso.empleado_nombre,
        'estado': proceso.estado,
        'fecha': proceso.fecha,
        'fecha_completado': proceso.fecha_completado,
        'activos': [
            {
                'activo_id': entrada.activo_id,
                'nombre': entrada.nombre,
                'serial': entrada.serial,
                'verificado': entrada.verificado,
                'resultado': entrada.resultado,
            }
            for entrada in proceso.activos.all()
        ],
    }


# ============================================================================
# USUARIOS
# ============================================================================

class PerfilActualView(ApiMixin, View):
    """Rol y estado del usuario autenticado."""

    def get(self, request):
        if self.perfil is None:
            return JsonResponse({'perfil': None})
        return JsonResponse({'perfil': perfil_a_dict(self.perfil)})


class UsuarioListView(ApiMixin, View):
    """Listar usuarios (GET) o invitar uno nuevo (POST)."""

    roles = (MASTER, LOGISTICA)

    def get(self, request):
        self.verificar_rol()
        usuarios = identidad.listar_usuarios(rol=request.GET.get('rol'))
        return JsonResponse({'usuarios': [perfil_a_dict(u) for u in usuarios]})

    def post(self, request):
        datos = self.validar_formulario(InvitacionForm)
        perfil = identidad.invitar_usuario(self.perfil, datos['email'], datos['rol'])
        return JsonResponse(perfil_a_dict(perfil), status=201)


# ============================================================================
# ACTIVOS
# ============================================================================

class StockView(ApiMixin, View):
    """Filas en stock disponibles (GET) o ingreso de inventario (POST)."""

    roles = (MASTER, LOGISTICA)

    def get(self, request):
        self.verificar_rol()
        return JsonResponse({'activos': [activo_a_dict(a) for a in activos.listar_stock()]})

    def post(self, request):
        datos = self.validar_formulario(AgregarStockForm)
        fila = activos.agregar_stock(
            self.perfil,
            datos['nombre'],
            datos['cantidad'],
            serial=datos['serial'],
            ubicacion=datos['ubicacion'],
            tipo=datos['tipo'],
            referencia=datos['referencia'],
        )
        return JsonResponse(activo_a_dict(fila), status=201)


class InventarioView(ApiMixin, View):
    roles = (MASTER, LOGISTICA)

    def get(self, request):
        self.verificar_rol()
        inventario = activos.listar_inventario(
            estado=request.GET.get('estado'),
            tipo=request.GET.get('tipo'),
        )
        return JsonResponse({'activos': [activo_a_dict(a) for a in inventario]})


class MisActivosView(ApiMixin, View):
    def get(self, request):
        self.verificar_rol()
        return JsonResponse({'activos': [activo_a_dict(a) for a in activos.mis_activos(self.perfil)]})


class ActivoDetailView(ApiMixin, View):
    """Detalle con historial (GET) o edición administrativa (POST)."""

    roles = (MASTER, LOGISTICA)

    def get(self, request, pk):
        self.verificar_rol()
        datos = activo_a_dict(activos.obtener_activo(pk))
        datos['historial'] = [evento_a_dict(e) for e in activos.historial_activo(pk)]
        return JsonResponse(datos)

    def post(self, request, pk):
        form = self.formulario_valido(ActualizarActivoForm)
        activo = activos.actualizar_activo(self.perfil, pk, form.campos_enviados())
        return JsonResponse(activo_a_dict(activo))


class ActivoDeleteView(ApiMixin, View):
    def post(self, request, pk):
        activos.eliminar_activo(self.perfil, pk)
        return JsonResponse({'eliminado': pk})


class ConfirmarRecepcionView(ApiMixin, View):
    def post(self, request, pk):
        activo = activos.confirmar_recepcion(self.perfil, pk)
        return JsonResponse(activo_a_dict(activo))


class RechazarRecepcionView(ApiMixin, View):
    def post(self, request, pk):
        datos = self.validar_formulario(MotivoForm)
        activo = activos.rechazar_recepcion(self.perfil, pk, datos['motivo'])
        return JsonResponse(activo_a_dict(activo))


class ResolverReemplazoView(ApiMixin, View):
    """Logística decide el destino de un activo reemplazado."""

    def post(self, request, pk):
        datos = self.validar_formulario(ResolverReemplazoForm)
        activo = activos.resolver_reemplazo(self.perfil, pk, datos['destino'], datos['motivo'])
        return JsonResponse(activo_a_dict(activo))


# ============================================================================
# SOLICITUDES DE ASIGNACIÓN
# ============================================================================

class SolicitudAsignacionListView(ApiMixin, View):
    """
    Listar solicitudes (GET) o crear un lote (POST).

    Cuerpo del POST: {"empleado_id": 3, "filas": [{"activo_id": 1, "cantidad": 2}]}
    """

    def get(self, request):
        self.verificar_rol()
        empleado = self.perfil if self.perfil.es_empleado else None
        lista = solicitudes.listar_solicitudes_asignacion(
            estado=request.GET.get('estado'), empleado=empleado
        )
        return JsonResponse({'solicitudes': [solicitud_asignacion_a_dict(s) for s in lista]})

    def post(self, request):
        datos = self.get_datos()
        filas = datos.get('filas')
        if not isinstance(filas, list):
            raise ErrorValidacion('"filas" debe ser una lista de {activo_id, cantidad}.')
        try:
            filas = [(fila['activo_id'], fila['cantidad']) for fila in filas]
        except (KeyError, TypeError):
            raise ErrorValidacion('Cada fila debe tener "activo_id" y "cantidad".') from None
        creadas = solicitudes.crear_solicitudes_asignacion(self.perfil, datos.get('empleado_id'), filas)
        return JsonResponse(
            {'solicitudes': [solicitud_asignacion_a_dict(s) for s in creadas]},
            status=201
        )


class ProcesarSolicitudAsignacionView(ApiMixin, View):
    def post(self, request, pk):
        datos = self.validar_formulario(EnvioForm)
        solicitud = solicitudes.procesar_solicitud_asignacion(
            self.perfil, pk, datos['numero_guia'], datos['transportadora']
        )
        return JsonResponse(solicitud_asignacion_a_dict(solicitud))


class RevalidarSolicitudAsignacionView(ApiMixin, View):
    def post(self, request, pk):
        solicitud = solicitudes.revalidar_solicitud_por_stock(self.perfil, pk)
        return JsonResponse(solicitud_asignacion_a_dict(solicitud))


class ArchivarSolicitudAsignacionView(ApiMixin, View):
    def post(self, request, pk):
        solicitud = solicitudes.archivar_solicitud_asignacion(self.perfil, pk)
        return JsonResponse(solicitud_asignacion_a_dict(solicitud))


# ============================================================================
# SOLICITUDES DE REEMPLAZO
# ============================================================================

class SolicitudReemplazoListView(ApiMixin, View):
    """Listar solicitudes (GET) o pedir un reemplazo (POST, multipart con imagen)."""

    def get(self, request):
        self.verificar_rol()
        empleado = self.perfil if self.perfil.es_empleado else None
        lista = solicitudes.listar_solicitudes_reemplazo(
            estado=request.GET.get('estado'), empleado=empleado
        )
        return JsonResponse({'solicitudes': [solicitud_reemplazo_a_dict(s) for s in lista]})

    def post(self, request):
        datos = self.validar_formulario(SolicitudReemplazoForm)
        solicitud = solicitudes.crear_solicitud_reemplazo(
            self.perfil,
            datos['activo_id'],
            datos['motivo'],
            justificacion=datos['justificacion'],
            imagen=datos['imagen'],
        )
        return JsonResponse(solicitud_reemplazo_a_dict(solicitud), status=201)


class ResponderSolicitudReemplazoView(ApiMixin, View):
    def post(self, request, pk):
        datos = self.validar_formulario(RespuestaReemplazoForm)
        solicitud = solicitudes.actualizar_estado_reemplazo(self.perfil, pk, datos['estado'])
        return JsonResponse(solicitud_reemplazo_a_dict(solicitud))


# ============================================================================
# DEVOLUCIONES
# ============================================================================

class ProcesoDevolucionListView(ApiMixin, View):
    """Listar procesos (GET) o iniciar una devolución (POST)."""

    def get(self, request):
        self.verificar_rol()
        empleado = self.perfil if self.perfil.es_empleado else None
        procesos = devoluciones.listar_procesos_devolucion(
            estado=request.GET.get('estado'), empleado=empleado
        )
        return JsonResponse({'procesos': [proceso_a_dict(p) for p in procesos]})

    def post(self, request):
        datos = self.validar_formulario(IniciarDevolucionForm)
        proceso = devoluciones.iniciar_proceso_devolucion(self.perfil, datos['empleado_id'])
        return JsonResponse(proceso_a_dict(proceso), status=201)


class VerificarDevolucionView(ApiMixin, View):
    def post(self, request, pk, activo_id):
        proceso = devoluciones.verificar_devolucion(self.perfil, pk, activo_id)
        return JsonResponse(proceso_a_dict(proceso))


class DarDeBajaView(ApiMixin, View):
    """Baja con justificación e imagen de evidencia (multipart)."""

    def post(self, request, pk, activo_id):
        datos = self.validar_formulario(BajaForm)
        try:
            proceso = devoluciones.dar_de_baja(
                self.perfil, pk, activo_id,
                datos['justificacion'],
                evidencia=datos['evidencia'],
                evidencia_url=datos['evidencia_url'] or None,
            )
        except ErrorNegocio as e:
            evidencia_url = getattr(e, 'evidencia_url', None)
            if not evidencia_url:
                raise
            # La imagen ya quedó subida: el cliente reintenta enviando la URL
            logger.warning(f'Baja fallida con evidencia ya subida: {evidencia_url}')
            return respuesta_error(e, evidencia_url=evidencia_url)
        return JsonResponse(proceso_a_dict(proceso))


class CompletarDevolucionView(ApiMixin, View):
    def post(self, request, pk):
        proceso = devoluciones.completar_proceso_devolucion(self.perfil, pk)
        return JsonResponse(proceso_a_dict(proceso))
