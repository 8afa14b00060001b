from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.contrib.auth.models import User
from .models import (
    PerfilUsuario, Activo, HistorialActivo, SolicitudAsignacion,
    SolicitudReemplazo, ProcesoDevolucion, ActivoDevolucion
)


# ============================================================================
# INLINE PARA PERFIL DE USUARIO
# ============================================================================

class PerfilUsuarioInline(admin.StackedInline):
    model = PerfilUsuario
    can_delete = False
    verbose_name_plural = 'Perfil'
    fk_name = 'usuario'
    fields = ('nombre', 'email', 'rol', 'estado', 'invitado_por')
    readonly_fields = ('email', 'invitado_por')


class UserAdmin(BaseUserAdmin):
    inlines = (PerfilUsuarioInline,)
    list_display = ('username', 'email', 'first_name', 'last_name', 'get_rol', 'is_active')
    list_filter = BaseUserAdmin.list_filter + ('perfil__rol',)

    def get_rol(self, obj):
        if hasattr(obj, 'perfil'):
            return obj.perfil.get_rol_display()
        return '-'
    get_rol.short_description = 'Rol'


# Re-registrar UserAdmin
admin.site.unregister(User)
admin.site.register(User, UserAdmin)


# ============================================================================
# USUARIOS
# ============================================================================

@admin.register(PerfilUsuario)
class PerfilUsuarioAdmin(admin.ModelAdmin):
    list_display = ('nombre', 'email', 'rol', 'estado', 'invitado_por', 'total_activos', 'creado')
    list_filter = ('rol', 'estado')
    search_fields = ('nombre', 'email')
    readonly_fields = ('usuario', 'creado')
    ordering = ('nombre',)

    def total_activos(self, obj):
        return obj.activos.count()
    total_activos.short_description = 'Activos'


# ============================================================================
# ACTIVOS
# ============================================================================

class HistorialActivoInline(admin.TabularInline):
    model = HistorialActivo
    extra = 0
    can_delete = False
    fields = ('fecha', 'evento', 'descripcion', 'actor_nombre')
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Activo)
class ActivoAdmin(admin.ModelAdmin):
    list_display = ('nombre', 'serial', 'estado', 'tipo', 'stock', 'empleado_nombre', 'ubicacion', 'actualizado')
    list_filter = ('estado', 'tipo')
    search_fields = ('nombre', 'serial', 'referencia', 'empleado_nombre')
    readonly_fields = ('nombre_clave', 'version', 'creado', 'actualizado', 'solicitud_asignacion')
    inlines = (HistorialActivoInline,)

    fieldsets = (
        ('Identificación', {
            'fields': ('nombre', 'nombre_clave', 'referencia', 'serial', 'tipo')
        }),
        ('Estado', {
            'fields': ('estado', 'stock', 'ubicacion')
        }),
        ('Custodia', {
            'fields': ('empleado', 'empleado_nombre', 'fecha_asignacion', 'solicitud_asignacion')
        }),
        ('Rechazo y Baja', {
            'fields': ('motivo_rechazo', 'motivo_baja', 'evidencia_url'),
            'classes': ('collapse',)
        }),
        ('Control', {
            'fields': ('version', 'creado', 'actualizado'),
            'classes': ('collapse',)
        }),
    )

    def save_model(self, request, obj, form, change):
        # Las ediciones desde el admin también invalidan lecturas previas
        if change:
            obj.version += 1
        super().save_model(request, obj, form, change)


@admin.register(HistorialActivo)
class HistorialActivoAdmin(admin.ModelAdmin):
    list_display = ('fecha', 'activo_nombre', 'evento', 'actor_nombre')
    list_filter = ('evento',)
    search_fields = ('activo_nombre', 'descripcion', 'actor_nombre')
    readonly_fields = ('activo', 'activo_nombre', 'evento', 'descripcion', 'actor', 'actor_nombre', 'fecha')
    date_hierarchy = 'fecha'

    def has_add_permission(self, request):
        return False


# ============================================================================
# SOLICITUDES
# ============================================================================

@admin.register(SolicitudAsignacion)
class SolicitudAsignacionAdmin(admin.ModelAdmin):
    list_display = ('id', 'activo_nombre', 'cantidad', 'empleado_nombre', 'estado', 'master_nombre', 'fecha', 'numero_guia')
    list_filter = ('estado', 'transportadora')
    search_fields = ('activo_nombre', 'empleado_nombre', 'numero_guia')
    readonly_fields = ('empleado', 'activo', 'master', 'solicitud_reemplazo_origen', 'fecha', 'fecha_envio')
    date_hierarchy = 'fecha'


@admin.register(SolicitudReemplazo)
class SolicitudReemplazoAdmin(admin.ModelAdmin):
    list_display = ('id', 'activo_nombre', 'serial', 'empleado_nombre', 'motivo', 'estado', 'fecha')
    list_filter = ('estado',)
    search_fields = ('activo_nombre', 'serial', 'empleado_nombre', 'motivo')
    readonly_fields = ('empleado', 'master', 'activo', 'fecha', 'fecha_respuesta', 'version')
    date_hierarchy = 'fecha'


# ============================================================================
# DEVOLUCIONES
# ============================================================================

class ActivoDevolucionInline(admin.TabularInline):
    model = ActivoDevolucion
    extra = 0
    can_delete = False
    fields = ('activo_id', 'nombre', 'serial', 'verificado', 'resultado', 'fecha_verificacion', 'verificado_por')
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(ProcesoDevolucion)
class ProcesoDevolucionAdmin(admin.ModelAdmin):
    list_display = ('id', 'empleado_nombre', 'estado', 'fecha', 'fecha_completado', 'total_activos')
    list_filter = ('estado',)
    search_fields = ('empleado_nombre',)
    readonly_fields = ('empleado', 'fecha', 'fecha_completado', 'version')
    inlines = (ActivoDevolucionInline,)

    def total_activos(self, obj):
        return obj.activos.count()
    total_activos.short_description = 'Activos'
