"""
Capa de servicios (lógica de negocio).

Este paquete contiene la lógica de negocio separada de las vistas:
- persistencia: Acceso a colecciones, escritura versionada y transacciones con reintento
- politicas: Tabla de roles autorizados por operación
- identidad: Invitaciones, registro y resolución de rol por correo
- almacenamiento: Subida de imágenes de evidencia
- activos: Stock, recepción, reemplazo y administración de activos
- solicitudes: Solicitudes de asignación y de reemplazo
- devoluciones: Procesos de devolución y bajas

Todas las operaciones que modifican datos reciben el perfil del actor y
validan su rol antes de escribir.
"""
