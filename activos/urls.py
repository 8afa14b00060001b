from django.urls import path
from . import views

app_name = 'activos'

urlpatterns = [
    # Usuarios
    path('api/yo/', views.PerfilActualView.as_view(), name='perfil-actual'),
    path('api/usuarios/', views.UsuarioListView.as_view(), name='usuario-list'),

    # Activos
    path('api/stock/', views.StockView.as_view(), name='stock'),
    path('api/inventario/', views.InventarioView.as_view(), name='inventario'),
    path('api/mis-activos/', views.MisActivosView.as_view(), name='mis-activos'),
    path('api/activos/<int:pk>/', views.ActivoDetailView.as_view(), name='activo-detail'),
    path('api/activos/<int:pk>/eliminar/', views.ActivoDeleteView.as_view(), name='activo-delete'),
    path('api/activos/<int:pk>/confirmar/', views.ConfirmarRecepcionView.as_view(), name='activo-confirmar'),
    path('api/activos/<int:pk>/rechazar/', views.RechazarRecepcionView.as_view(), name='activo-rechazar'),
    path('api/activos/<int:pk>/resolver-reemplazo/', views.ResolverReemplazoView.as_view(), name='activo-resolver-reemplazo'),

    # Solicitudes de asignación
    path('api/asignaciones/', views.SolicitudAsignacionListView.as_view(), name='asignacion-list'),
    path('api/asignaciones/<int:pk>/procesar/', views.ProcesarSolicitudAsignacionView.as_view(), name='asignacion-procesar'),
    path('api/asignaciones/<int:pk>/revalidar/', views.RevalidarSolicitudAsignacionView.as_view(), name='asignacion-revalidar'),
    path('api/asignaciones/<int:pk>/archivar/', views.ArchivarSolicitudAsignacionView.as_view(), name='asignacion-archivar'),

    # Solicitudes de reemplazo
    path('api/reemplazos/', views.SolicitudReemplazoListView.as_view(), name='reemplazo-list'),
    path('api/reemplazos/<int:pk>/responder/', views.ResponderSolicitudReemplazoView.as_view(), name='reemplazo-responder'),

    # Devoluciones
    path('api/devoluciones/', views.ProcesoDevolucionListView.as_view(), name='devolucion-list'),
    path('api/devoluciones/<int:pk>/activos/<int:activo_id>/verificar/', views.VerificarDevolucionView.as_view(), name='devolucion-verificar'),
    path('api/devoluciones/<int:pk>/activos/<int:activo_id>/baja/', views.DarDeBajaView.as_view(), name='devolucion-baja'),
    path('api/devoluciones/<int:pk>/completar/', views.CompletarDevolucionView.as_view(), name='devolucion-completar'),
]
