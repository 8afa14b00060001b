"""
Pruebas automatizadas para el sistema de activos fijos FijosDN
==============================================================
Ejecutar con: python manage.py test activos   (o: pytest)
"""

import json
from io import BytesIO, StringIO
from unittest import mock

from django.contrib.auth.models import User
from django.core.exceptions import PermissionDenied, ValidationError
from django.core.files.uploadedfile import SimpleUploadedFile
from django.core.management import call_command
from django.db import IntegrityError, transaction
from django.db.models import F
from django.test import TestCase, override_settings
from django.urls import reverse
from django.utils import timezone
from PIL import Image

from .exceptions import (
    ColisionEscritura, ErrorConflicto, ErrorEstadoInvalido, ErrorNoEncontrado,
    ErrorPermiso, ErrorValidacion,
)
from .models import (
    Activo, HistorialActivo, PerfilUsuario, ProcesoDevolucion, SolicitudAsignacion,
    SolicitudReemplazo, normalizar_nombre,
)
from .services import activos, devoluciones, identidad, persistencia, politicas, solicitudes
from .validators import ImageValidator


# ============================================================================
# UTILIDADES
# ============================================================================

def crear_perfil(email, rol, nombre, invitado_por=None):
    """Invita el correo y crea la cuenta; la señal activa el perfil."""
    PerfilUsuario.objects.create(
        nombre=nombre, email=email, rol=rol, invitado_por=invitado_por
    )
    User.objects.create_user(username=email.split('@')[0], email=email, password='test123')
    return PerfilUsuario.objects.get(email=email.lower())


def imagen_png(nombre='evidencia.png'):
    buffer = BytesIO()
    Image.new('RGB', (4, 4), color='red').save(buffer, format='PNG')
    return SimpleUploadedFile(nombre, buffer.getvalue(), content_type='image/png')


def activo_asignado(empleado, nombre='Laptop Dell', serial='SN-1', estado=Activo.ACTIVO):
    return Activo.objects.create(
        nombre=nombre,
        serial=serial,
        estado=estado,
        empleado=empleado,
        empleado_nombre=empleado.nombre,
        fecha_asignacion=timezone.now(),
    )


class BaseActivosTestCase(TestCase):
    """Master, logística y dos empleados invitados por el master."""

    @classmethod
    def setUpTestData(cls):
        cls.master = crear_perfil('master@fijosdn.test', PerfilUsuario.MASTER, 'Marta Master')
        cls.logistica = crear_perfil(
            'logistica@fijosdn.test', PerfilUsuario.LOGISTICA, 'Luis Logística', cls.master
        )
        cls.empleado = crear_perfil(
            'empleado@fijosdn.test', PerfilUsuario.EMPLEADO, 'Elena Empleada', cls.master
        )
        cls.otro_empleado = crear_perfil(
            'otro@fijosdn.test', PerfilUsuario.EMPLEADO, 'Omar Otro', cls.master
        )


# ============================================================================
# PRUEBAS DE MODELOS
# ============================================================================

class ModelosTests(TestCase):
    """Pruebas para los modelos y sus invariantes"""

    def test_normalizar_nombre(self):
        """La clave de stock ignora mayúsculas y espacios repetidos"""
        self.assertEqual(normalizar_nombre('  Laptop   DELL '), 'laptop dell')
        self.assertEqual(normalizar_nombre(None), '')

    def test_save_calcula_nombre_clave(self):
        activo = Activo.objects.create(nombre='Taladro  Bosch', stock=2)
        self.assertEqual(activo.nombre_clave, 'taladro bosch')

    def test_email_de_perfil_en_minusculas(self):
        perfil = PerfilUsuario.objects.create(nombre='Ana', email=' Ana@Empresa.COM ')
        self.assertEqual(perfil.email, 'ana@empresa.com')

    def test_stock_no_admite_empleado(self):
        """Un activo en stock no puede tener empleado"""
        empleado = PerfilUsuario.objects.create(nombre='Ana', email='ana@empresa.com')
        activo = Activo(nombre='Laptop', estado=Activo.EN_STOCK, stock=1, empleado=empleado)
        with self.assertRaises(ValidationError):
            activo.clean()

    def test_estado_asignado_requiere_empleado(self):
        """Los estados de custodia exigen empleado"""
        for estado in Activo.ESTADOS_ASIGNADOS:
            with self.subTest(estado=estado):
                with self.assertRaises(ValidationError):
                    Activo(nombre='Laptop', estado=estado).clean()

    def test_una_sola_fila_de_stock_por_nombre(self):
        """La restricción parcial impide dos filas 'en stock' del mismo nombre"""
        Activo.objects.create(nombre='Laptop', stock=1)
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Activo.objects.create(nombre='LAPTOP', stock=3)

    def test_filas_no_stock_pueden_repetir_nombre(self):
        Activo.objects.create(nombre='Laptop', stock=1)
        Activo.objects.create(nombre='Laptop', estado=Activo.BAJA)
        Activo.objects.create(nombre='Laptop', estado=Activo.BAJA)
        self.assertEqual(Activo.objects.filter(nombre_clave='laptop').count(), 3)


# ============================================================================
# PRUEBAS DE POLÍTICAS
# ============================================================================

class PoliticasTests(BaseActivosTestCase):
    """Pruebas para la tabla de roles por operación"""

    def test_actor_inexistente(self):
        with self.assertRaises(ErrorPermiso):
            politicas.autorizar(None, 'agregar_stock')

    def test_perfil_invitado_no_autorizado(self):
        """Un perfil con registro incompleto no puede operar"""
        invitado = PerfilUsuario.objects.create(
            nombre='Pendiente', email='nuevo@fijosdn.test', rol=PerfilUsuario.MASTER
        )
        with self.assertRaises(ErrorPermiso):
            politicas.autorizar(invitado, 'invitar_usuario')

    def test_rol_no_permitido(self):
        with self.assertRaises(ErrorPermiso):
            politicas.autorizar(self.empleado, 'agregar_stock')
        with self.assertRaises(ErrorPermiso):
            politicas.autorizar(self.master, 'verificar_devolucion')

    def test_rol_permitido(self):
        politicas.autorizar(self.master, 'agregar_stock')
        politicas.autorizar(self.logistica, 'agregar_stock')
        self.assertTrue(politicas.puede(self.empleado, 'crear_solicitud_reemplazo'))

    def test_operacion_desconocida(self):
        with self.assertRaises(ValueError):
            politicas.autorizar(self.master, 'operacion_inventada')

    def test_error_permiso_es_permission_denied(self):
        """ErrorPermiso también es PermissionDenied de Django"""
        self.assertTrue(issubclass(ErrorPermiso, PermissionDenied))


# ============================================================================
# PRUEBAS DE PERSISTENCIA
# ============================================================================

class PersistenciaTests(TestCase):
    """Pruebas para la pasarela de persistencia y el reintento optimista"""

    def test_obtener_inexistente(self):
        with self.assertRaises(ErrorNoEncontrado):
            persistencia.obtener('activos', 999)

    def test_obtener_id_invalido(self):
        with self.assertRaises(ErrorNoEncontrado):
            persistencia.obtener('activos', 'abc')

    def test_coleccion_desconocida(self):
        with self.assertRaises(ValueError):
            persistencia.consultar('bodegas')

    def test_actualizar_incrementa_version(self):
        activo = Activo.objects.create(nombre='Laptop', stock=1)
        persistencia.actualizar(activo, ubicacion='Bodega A')
        self.assertEqual(activo.version, 1)
        activo.refresh_from_db()
        self.assertEqual(activo.ubicacion, 'Bodega A')
        self.assertEqual(activo.version, 1)

    def test_actualizar_con_version_vieja(self):
        """Escribir sobre una lectura desactualizada es una colisión"""
        activo = Activo.objects.create(nombre='Laptop', stock=1)
        copia = Activo.objects.get(pk=activo.pk)
        persistencia.actualizar(activo, ubicacion='Bodega A')
        with self.assertRaises(ColisionEscritura):
            persistencia.actualizar(copia, ubicacion='Bodega B')

    def test_actualizar_con_expresion(self):
        activo = Activo.objects.create(nombre='Laptop', stock=2)
        persistencia.actualizar(activo, stock=F('stock') + 3)
        self.assertEqual(activo.stock, 5)

    def test_reintenta_tras_colision(self):
        """Una colisión se reintenta y se registra como WARNING"""
        intentos = []

        def operacion():
            intentos.append(1)
            if len(intentos) == 1:
                raise ColisionEscritura('carrera simulada')
            return 'ok'

        with self.assertLogs('activos.services.persistencia', level='WARNING') as logs:
            self.assertEqual(persistencia.ejecutar_transaccion(operacion), 'ok')
        self.assertEqual(len(intentos), 2)
        self.assertIn('Colisión de escritura', logs.output[0])

    @override_settings(FIJOS_MAX_REINTENTOS=2)
    def test_agota_reintentos(self):
        """Agotados los intentos se lanza ErrorConflicto"""
        intentos = []

        def operacion():
            intentos.append(1)
            raise ColisionEscritura('carrera simulada')

        with self.assertLogs('activos.services.persistencia', level='WARNING'):
            with self.assertRaises(ErrorConflicto):
                persistencia.ejecutar_transaccion(operacion)
        self.assertEqual(len(intentos), 2)

    def test_error_deshace_la_transaccion(self):
        """Un error de negocio deshace lo escrito y no se reintenta"""
        intentos = []

        def operacion():
            intentos.append(1)
            Activo.objects.create(nombre='Fantasma', stock=1)
            raise ErrorValidacion('falla')

        with self.assertRaises(ErrorValidacion):
            persistencia.ejecutar_transaccion(operacion)
        self.assertEqual(len(intentos), 1)
        self.assertFalse(Activo.objects.filter(nombre='Fantasma').exists())


# ============================================================================
# PRUEBAS DE IDENTIDAD
# ============================================================================

class IdentidadTests(BaseActivosTestCase):
    """Pruebas para invitaciones y registro"""

    def test_invitar_usuario(self):
        perfil = identidad.invitar_usuario(self.master, ' Nuevo@FijosDN.test ', PerfilUsuario.EMPLEADO)
        self.assertEqual(perfil.email, 'nuevo@fijosdn.test')
        self.assertEqual(perfil.estado, PerfilUsuario.INVITADO)
        self.assertEqual(perfil.invitado_por, self.master)

    def test_invitar_correo_duplicado(self):
        with self.assertRaises(ErrorConflicto):
            identidad.invitar_usuario(self.master, 'EMPLEADO@fijosdn.test', PerfilUsuario.EMPLEADO)

    def test_invitar_rol_invalido(self):
        with self.assertRaises(ErrorValidacion):
            identidad.invitar_usuario(self.master, 'x@fijosdn.test', 'gerente')

    def test_invitar_correo_vacio(self):
        with self.assertRaises(ErrorValidacion):
            identidad.invitar_usuario(self.master, '   ', PerfilUsuario.EMPLEADO)

    def test_solo_master_invita(self):
        with self.assertRaises(ErrorPermiso):
            identidad.invitar_usuario(self.logistica, 'x@fijosdn.test', PerfilUsuario.EMPLEADO)

    def test_registro_activa_invitacion(self):
        """Crear la cuenta con el correo invitado (otra capitalización) activa el perfil"""
        identidad.invitar_usuario(self.master, 'nueva@fijosdn.test', PerfilUsuario.LOGISTICA)
        usuario = User.objects.create_user(
            'nueva', email='Nueva@FijosDN.test', password='test123',
            first_name='Nora', last_name='Nueva'
        )
        perfil = identidad.resolver_rol('NUEVA@fijosdn.test')
        self.assertEqual(perfil.estado, PerfilUsuario.ACTIVO)
        self.assertEqual(perfil.usuario, usuario)
        self.assertEqual(perfil.nombre, 'Nora Nueva')

    def test_completar_registro_sin_invitacion(self):
        usuario = User.objects.create_user('intruso', email='intruso@fijosdn.test')
        with self.assertRaises(ErrorNoEncontrado):
            identidad.completar_registro(usuario)

    def test_completar_registro_idempotente(self):
        usuario = self.empleado.usuario
        perfil = identidad.completar_registro(usuario, nombre='Elena E.')
        self.assertEqual(perfil.pk, self.empleado.pk)
        self.assertEqual(perfil.nombre, 'Elena E.')

    def test_invitacion_ya_utilizada(self):
        otra_cuenta = User.objects.create_user('clon', email='clon@otro.test')
        otra_cuenta.email = 'empleado@fijosdn.test'
        with self.assertRaises(ErrorConflicto):
            identidad.completar_registro(otra_cuenta)

    def test_resolver_rol_desconocido(self):
        self.assertIsNone(identidad.resolver_rol('nadie@fijosdn.test'))
        self.assertIsNone(identidad.resolver_rol(''))

    def test_listar_usuarios_por_rol(self):
        empleados = identidad.listar_usuarios(rol=PerfilUsuario.EMPLEADO)
        self.assertEqual(set(empleados), {self.empleado, self.otro_empleado})


# ============================================================================
# PRUEBAS DE STOCK
# ============================================================================

class StockTests(BaseActivosTestCase):
    """Pruebas para el ingreso y la fusión de stock"""

    def test_agregar_dos_veces_fusiona(self):
        """Dos ingresos del mismo nombre quedan en una sola fila"""
        activos.agregar_stock(self.logistica, 'X', 5)
        fila = activos.agregar_stock(self.logistica, 'X', 5)
        self.assertEqual(fila.stock, 10)
        self.assertEqual(Activo.objects.filter(estado=Activo.EN_STOCK).count(), 1)

    def test_fusion_ignora_mayusculas_y_espacios(self):
        activos.agregar_stock(self.master, 'Laptop', 3)
        fila = activos.agregar_stock(self.master, '  laptop ', 4)
        self.assertEqual(fila.stock, 7)
        self.assertEqual(fila.nombre, 'Laptop')

    def test_cantidad_invalida(self):
        for cantidad in (0, -2, 'muchas', None):
            with self.subTest(cantidad=cantidad):
                with self.assertRaises(ErrorValidacion):
                    activos.agregar_stock(self.logistica, 'Laptop', cantidad)
        self.assertFalse(Activo.objects.exists())

    def test_nombre_vacio(self):
        with self.assertRaises(ErrorValidacion):
            activos.agregar_stock(self.logistica, '   ', 1)

    def test_tipo_invalido(self):
        with self.assertRaises(ErrorValidacion):
            activos.agregar_stock(self.logistica, 'Laptop', 1, tipo='vehiculo')

    def test_empleado_no_agrega_stock(self):
        with self.assertRaises(ErrorPermiso):
            activos.agregar_stock(self.empleado, 'Laptop', 1)

    def test_registra_historial(self):
        fila = activos.agregar_stock(self.logistica, 'Pulidora', 2, tipo=Activo.HERRAMIENTA_ELECTRICA)
        evento = fila.historial.get()
        self.assertEqual(evento.evento, 'Ingreso a stock')
        self.assertEqual(evento.actor, self.logistica)

    def test_listar_stock_omite_filas_vacias(self):
        activos.agregar_stock(self.logistica, 'Laptop', 1)
        Activo.objects.create(nombre='Martillo', stock=0, tipo=Activo.HERRAMIENTA_MANUAL)
        self.assertEqual([a.nombre for a in activos.listar_stock()], ['Laptop'])

    def test_creacion_concurrente_se_fusiona(self):
        """
        Si otra transacción crea la fila del mismo nombre entre la lectura y la
        escritura, la restricción única provoca un reintento que fusiona.
        """
        Activo.objects.create(nombre='Laptop', stock=3)
        buscar = activos.fila_de_stock
        llamadas = []

        def fila_no_vista_la_primera_vez(*args, **kwargs):
            llamadas.append(args)
            if len(llamadas) == 1:
                return None
            return buscar(*args, **kwargs)

        with mock.patch('activos.services.activos.fila_de_stock', side_effect=fila_no_vista_la_primera_vez):
            with self.assertLogs('activos.services.persistencia', level='WARNING') as logs:
                fila = activos.agregar_stock(self.logistica, 'Laptop', 4)

        self.assertEqual(fila.stock, 7)
        self.assertEqual(len(llamadas), 2)
        self.assertIn('Colisión de escritura', logs.output[0])
        filas = Activo.objects.filter(estado=Activo.EN_STOCK, nombre_clave='laptop')
        self.assertEqual(filas.count(), 1)
        self.assertEqual(filas.get().historial.filter(evento='Ingreso a stock').count(), 1)


# ============================================================================
# PRUEBAS DE ADMINISTRACIÓN DE ACTIVOS
# ============================================================================

class AdministracionActivoTests(BaseActivosTestCase):
    """Pruebas para la edición y eliminación administrativa"""

    def test_actualizar_activo(self):
        fila = activos.agregar_stock(self.master, 'Laptop', 2)
        activo = activos.actualizar_activo(self.master, fila.pk, {'ubicacion': 'Estante 4', 'stock': 9})
        self.assertEqual(activo.stock, 9)
        self.assertEqual(activo.ubicacion, 'Estante 4')
        self.assertTrue(activo.historial.filter(evento='Edición administrativa').exists())

    def test_renombrar_recalcula_clave(self):
        fila = activos.agregar_stock(self.master, 'Laptop', 2)
        activos.actualizar_activo(self.master, fila.pk, {'nombre': 'Portátil  HP'})
        fila.refresh_from_db()
        self.assertEqual(fila.nombre_clave, 'portátil hp')

    def test_renombrar_a_stock_existente(self):
        """No se pueden tener dos filas de stock con el mismo nombre"""
        activos.agregar_stock(self.master, 'Laptop', 2)
        otra = activos.agregar_stock(self.master, 'Monitor', 1)
        with self.assertRaises(ErrorConflicto):
            activos.actualizar_activo(self.master, otra.pk, {'nombre': 'laptop'})

    def test_campo_no_editable(self):
        fila = activos.agregar_stock(self.master, 'Laptop', 2)
        with self.assertRaises(ErrorValidacion):
            activos.actualizar_activo(self.master, fila.pk, {'version': 40})

    def test_solo_master_edita(self):
        fila = activos.agregar_stock(self.master, 'Laptop', 2)
        with self.assertRaises(ErrorPermiso):
            activos.actualizar_activo(self.logistica, fila.pk, {'stock': 1})
        with self.assertRaises(ErrorPermiso):
            activos.eliminar_activo(self.logistica, fila.pk)

    def test_eliminar_conserva_historial(self):
        fila = activos.agregar_stock(self.master, 'Laptop', 2)
        activos.eliminar_activo(self.master, fila.pk)
        self.assertFalse(Activo.objects.filter(pk=fila.pk).exists())
        self.assertTrue(
            HistorialActivo.objects.filter(activo__isnull=True, activo_nombre='Laptop', evento='Eliminado').exists()
        )

    def test_eliminar_inexistente(self):
        with self.assertRaises(ErrorNoEncontrado):
            activos.eliminar_activo(self.master, 12345)

    def test_unidad_asignada_no_pasa_a_stock(self):
        """Una unidad con empleado no puede quedar 'en stock'"""
        unidad = activo_asignado(self.empleado)
        with self.assertRaises(ErrorValidacion):
            activos.actualizar_activo(self.master, unidad.pk, {'estado': Activo.EN_STOCK})
        unidad.refresh_from_db()
        self.assertEqual(unidad.estado, Activo.ACTIVO)
        self.assertEqual(unidad.empleado, self.empleado)
        self.assertEqual(unidad.version, 0)

    def test_fila_de_stock_no_pasa_a_estado_de_custodia(self):
        """Un estado de custodia exige empleado"""
        fila = activos.agregar_stock(self.master, 'Laptop', 2)
        with self.assertRaises(ErrorValidacion):
            activos.actualizar_activo(self.master, fila.pk, {'estado': Activo.ACTIVO})
        fila.refresh_from_db()
        self.assertEqual(fila.estado, Activo.EN_STOCK)
        self.assertEqual(fila.stock, 2)

    def test_unidad_a_baja(self):
        unidad = activo_asignado(self.empleado)
        activo = activos.actualizar_activo(self.master, unidad.pk, {'estado': Activo.BAJA})
        self.assertEqual(activo.estado, Activo.BAJA)


# ============================================================================
# PRUEBAS DE SOLICITUDES DE ASIGNACIÓN
# ============================================================================

class SolicitudAsignacionTests(BaseActivosTestCase):
    """Pruebas para la creación, envío y archivo de asignaciones"""

    def setUp(self):
        self.laptops = activos.agregar_stock(self.logistica, 'Laptop Dell', 3, serial='DELL')

    def test_asignacion_con_stock_suficiente(self):
        """Con stock suficiente la solicitud reserva unidades para el empleado"""
        [solicitud] = solicitudes.crear_solicitudes_asignacion(
            self.master, self.empleado.pk, [(self.laptops.pk, 2)]
        )
        self.assertEqual(solicitud.estado, SolicitudAsignacion.PENDIENTE_ENVIO)
        self.assertEqual(solicitud.master, self.master)

        self.laptops.refresh_from_db()
        self.assertEqual(self.laptops.stock, 1)

        unidades = Activo.objects.filter(solicitud_asignacion=solicitud)
        self.assertEqual(unidades.count(), 2)
        for unidad in unidades:
            self.assertEqual(unidad.estado, Activo.RECIBIDO_PENDIENTE)
            self.assertEqual(unidad.empleado, self.empleado)
            self.assertEqual(unidad.empleado_nombre, self.empleado.nombre)
            self.assertTrue(unidad.serial.startswith('DELL-'))

    def test_asignacion_sin_stock_suficiente(self):
        [solicitud] = solicitudes.crear_solicitudes_asignacion(
            self.master, self.empleado.pk, [(self.laptops.pk, 5)]
        )
        self.assertEqual(solicitud.estado, SolicitudAsignacion.PENDIENTE_STOCK)
        self.laptops.refresh_from_db()
        self.assertEqual(self.laptops.stock, 3)
        self.assertFalse(solicitud.unidades.exists())

    def test_lote_usa_una_sola_lectura_de_stock(self):
        """Las filas del lote no se reservan entre sí; el stock no baja de cero"""
        with self.assertLogs('activos.services.solicitudes', level='WARNING') as logs:
            creadas = solicitudes.crear_solicitudes_asignacion(
                self.master, self.empleado.pk,
                [(self.laptops.pk, 2), (self.laptops.pk, 2)]
            )
        self.assertEqual(
            [s.estado for s in creadas],
            [SolicitudAsignacion.PENDIENTE_ENVIO, SolicitudAsignacion.PENDIENTE_ENVIO]
        )
        self.assertIn('Sobreasignación', logs.output[0])
        self.laptops.refresh_from_db()
        self.assertEqual(self.laptops.stock, 0)

    def test_solo_a_empleados(self):
        with self.assertRaises(ErrorValidacion):
            solicitudes.crear_solicitudes_asignacion(
                self.master, self.logistica.pk, [(self.laptops.pk, 1)]
            )

    def test_activo_fuera_de_stock(self):
        unidad = activo_asignado(self.otro_empleado)
        with self.assertRaises(ErrorNoEncontrado):
            solicitudes.crear_solicitudes_asignacion(self.master, self.empleado.pk, [(unidad.pk, 1)])
        self.assertFalse(SolicitudAsignacion.objects.exists())

    def test_filas_invalidas(self):
        for filas in ([], [(self.laptops.pk, 0)], [('x', 1)], [(self.laptops.pk,)]):
            with self.subTest(filas=filas):
                with self.assertRaises(ErrorValidacion):
                    solicitudes.crear_solicitudes_asignacion(self.master, self.empleado.pk, filas)

    def test_logistica_no_crea_asignaciones(self):
        with self.assertRaises(ErrorPermiso):
            solicitudes.crear_solicitudes_asignacion(
                self.logistica, self.empleado.pk, [(self.laptops.pk, 1)]
            )

    def test_procesar_envio(self):
        [solicitud] = solicitudes.crear_solicitudes_asignacion(
            self.master, self.empleado.pk, [(self.laptops.pk, 1)]
        )
        solicitud = solicitudes.procesar_solicitud_asignacion(
            self.logistica, solicitud.pk, numero_guia='GU-778', transportadora='Servientrega'
        )
        self.assertEqual(solicitud.estado, SolicitudAsignacion.ENVIADO)
        self.assertEqual(solicitud.numero_guia, 'GU-778')
        self.assertIsNotNone(solicitud.fecha_envio)

    def test_procesar_pendiente_por_stock(self):
        [solicitud] = solicitudes.crear_solicitudes_asignacion(
            self.master, self.empleado.pk, [(self.laptops.pk, 10)]
        )
        with self.assertRaises(ErrorEstadoInvalido):
            solicitudes.procesar_solicitud_asignacion(self.logistica, solicitud.pk)

    def test_revalidar_con_stock_nuevo(self):
        """Al llegar stock, la solicitud pendiente pasa a envío y reserva"""
        [solicitud] = solicitudes.crear_solicitudes_asignacion(
            self.master, self.empleado.pk, [(self.laptops.pk, 5)]
        )
        activos.agregar_stock(self.logistica, 'laptop dell', 4)
        solicitud = solicitudes.revalidar_solicitud_por_stock(self.logistica, solicitud.pk)
        self.assertEqual(solicitud.estado, SolicitudAsignacion.PENDIENTE_ENVIO)
        self.assertEqual(solicitud.unidades.count(), 5)
        self.laptops.refresh_from_db()
        self.assertEqual(self.laptops.stock, 2)

    def test_revalidar_sin_stock_no_cambia(self):
        [solicitud] = solicitudes.crear_solicitudes_asignacion(
            self.master, self.empleado.pk, [(self.laptops.pk, 5)]
        )
        solicitud = solicitudes.revalidar_solicitud_por_stock(self.logistica, solicitud.pk)
        self.assertEqual(solicitud.estado, SolicitudAsignacion.PENDIENTE_STOCK)
        self.assertFalse(solicitud.unidades.exists())

    def test_archivar(self):
        [solicitud] = solicitudes.crear_solicitudes_asignacion(
            self.master, self.empleado.pk, [(self.laptops.pk, 1)]
        )
        with self.assertRaises(ErrorEstadoInvalido):
            solicitudes.archivar_solicitud_asignacion(self.master, solicitud.pk)
        solicitudes.procesar_solicitud_asignacion(self.logistica, solicitud.pk)
        solicitud = solicitudes.archivar_solicitud_asignacion(self.master, solicitud.pk)
        self.assertEqual(solicitud.estado, SolicitudAsignacion.ARCHIVADO)

    def test_listar_por_estado(self):
        solicitudes.crear_solicitudes_asignacion(
            self.master, self.empleado.pk, [(self.laptops.pk, 1), (self.laptops.pk, 10)]
        )
        pendientes = solicitudes.listar_solicitudes_asignacion(estado=SolicitudAsignacion.PENDIENTE_STOCK)
        self.assertEqual(pendientes.count(), 1)


# ============================================================================
# PRUEBAS DE RECEPCIÓN
# ============================================================================

class RecepcionTests(BaseActivosTestCase):
    """Pruebas para la confirmación y el rechazo de entregas"""

    def setUp(self):
        stock = activos.agregar_stock(self.logistica, 'Laptop Dell', 2)
        [self.solicitud] = solicitudes.crear_solicitudes_asignacion(
            self.master, self.empleado.pk, [(stock.pk, 1)]
        )
        self.unidad = self.solicitud.unidades.get()

    def test_confirmar_recepcion(self):
        activo = activos.confirmar_recepcion(self.empleado, self.unidad.pk)
        self.assertEqual(activo.estado, Activo.ACTIVO)
        self.assertIsNotNone(activo.fecha_asignacion)
        self.assertEqual(list(activos.mis_activos(self.empleado)), [activo])

    def test_confirmar_activo_dado_de_baja(self):
        """Confirmar un activo en baja es un estado inválido"""
        baja = Activo.objects.create(nombre='Laptop vieja', estado=Activo.BAJA)
        with self.assertRaises(ErrorEstadoInvalido):
            activos.confirmar_recepcion(self.empleado, baja.pk)

    def test_confirmar_activo_ajeno(self):
        with self.assertRaises(ErrorPermiso):
            activos.confirmar_recepcion(self.otro_empleado, self.unidad.pk)

    def test_confirmar_dos_veces(self):
        activos.confirmar_recepcion(self.empleado, self.unidad.pk)
        with self.assertRaises(ErrorEstadoInvalido):
            activos.confirmar_recepcion(self.empleado, self.unidad.pk)

    def test_rechazar_sin_motivo(self):
        with self.assertRaises(ErrorValidacion):
            activos.rechazar_recepcion(self.empleado, self.unidad.pk, '  ')
        self.unidad.refresh_from_db()
        self.assertEqual(self.unidad.estado, Activo.RECIBIDO_PENDIENTE)

    def test_rechazar_recepcion(self):
        """El rechazo deja el activo en disputa y la solicitud rechazada"""
        activo = activos.rechazar_recepcion(self.empleado, self.unidad.pk, 'Llegó con la pantalla rota')
        self.assertEqual(activo.estado, Activo.EN_DISPUTA)
        self.assertEqual(activo.motivo_rechazo, 'Llegó con la pantalla rota')
        self.assertEqual(activo.empleado, self.empleado)
        self.solicitud.refresh_from_db()
        self.assertEqual(self.solicitud.estado, SolicitudAsignacion.RECHAZADO)
        self.assertEqual(self.solicitud.motivo_rechazo, 'Llegó con la pantalla rota')

    def test_historial_de_la_unidad(self):
        activos.confirmar_recepcion(self.empleado, self.unidad.pk)
        eventos = [e.evento for e in activos.historial_activo(self.unidad.pk)]
        self.assertEqual(eventos, ['Recepción confirmada', 'Asignado'])


# ============================================================================
# PRUEBAS DE SOLICITUDES DE REEMPLAZO
# ============================================================================

class SolicitudReemplazoTests(BaseActivosTestCase):
    """Pruebas para el flujo de reemplazo"""

    def setUp(self):
        self.activo = activo_asignado(self.empleado)

    def test_crear_solicitud(self):
        """La solicitud queda pendiente para el master que invitó al empleado"""
        solicitud = solicitudes.crear_solicitud_reemplazo(
            self.empleado, self.activo.pk, 'Daño', justificacion='No enciende'
        )
        self.assertEqual(solicitud.estado, SolicitudReemplazo.PENDIENTE)
        self.assertEqual(solicitud.master, self.master)
        self.assertEqual(solicitud.serial, 'SN-1')
        self.activo.refresh_from_db()
        self.assertEqual(self.activo.estado, Activo.ACTIVO)

    def test_segunda_solicitud_pendiente(self):
        """Solo puede haber una solicitud pendiente por activo"""
        solicitudes.crear_solicitud_reemplazo(self.empleado, self.activo.pk, 'Daño')
        with self.assertRaises(ErrorConflicto):
            solicitudes.crear_solicitud_reemplazo(self.empleado, self.activo.pk, 'Robo')
        self.assertEqual(
            SolicitudReemplazo.objects.filter(activo=self.activo, estado=SolicitudReemplazo.PENDIENTE).count(), 1
        )

    def test_motivo_obligatorio(self):
        with self.assertRaises(ErrorValidacion):
            solicitudes.crear_solicitud_reemplazo(self.empleado, self.activo.pk, '')

    def test_activo_no_en_uso(self):
        pendiente = activo_asignado(self.empleado, serial='SN-2', estado=Activo.RECIBIDO_PENDIENTE)
        with self.assertRaises(ErrorEstadoInvalido):
            solicitudes.crear_solicitud_reemplazo(self.empleado, pendiente.pk, 'Daño')

    def test_activo_ajeno(self):
        with self.assertRaises(ErrorPermiso):
            solicitudes.crear_solicitud_reemplazo(self.otro_empleado, self.activo.pk, 'Daño')

    def test_solicitud_con_imagen(self):
        solicitud = solicitudes.crear_solicitud_reemplazo(
            self.empleado, self.activo.pk, 'Daño', imagen=imagen_png('golpe.png')
        )
        self.assertIn('reemplazos/', solicitud.imagen_url)

    def test_imagen_invalida(self):
        falsa = SimpleUploadedFile('golpe.png', b'esto no es una imagen', content_type='image/png')
        with self.assertRaises(ErrorValidacion):
            solicitudes.crear_solicitud_reemplazo(self.empleado, self.activo.pk, 'Daño', imagen=falsa)
        self.assertFalse(SolicitudReemplazo.objects.exists())

    def test_aprobar_con_stock(self):
        """Al aprobar, el activo va a logística y se asigna uno del stock"""
        stock = activos.agregar_stock(self.logistica, 'laptop dell', 2)
        solicitud = solicitudes.crear_solicitud_reemplazo(self.empleado, self.activo.pk, 'Daño')

        solicitud = solicitudes.actualizar_estado_reemplazo(
            self.master, solicitud.pk, SolicitudReemplazo.APROBADO
        )
        self.assertEqual(solicitud.estado, SolicitudReemplazo.APROBADO)
        self.assertIsNotNone(solicitud.fecha_respuesta)
        self.activo.refresh_from_db()
        self.assertEqual(self.activo.estado, Activo.REEMPLAZO_EN_LOGISTICA)

        asignacion = solicitud.asignaciones.get()
        self.assertEqual(asignacion.cantidad, 1)
        self.assertEqual(asignacion.estado, SolicitudAsignacion.PENDIENTE_ENVIO)
        self.assertEqual(asignacion.activo, stock)
        self.assertEqual(asignacion.unidades.get().empleado, self.empleado)

    def test_aprobar_sin_stock(self):
        solicitud = solicitudes.crear_solicitud_reemplazo(self.empleado, self.activo.pk, 'Robo')
        solicitudes.actualizar_estado_reemplazo(self.master, solicitud.pk, SolicitudReemplazo.APROBADO)
        asignacion = SolicitudAsignacion.objects.get(solicitud_reemplazo_origen=solicitud)
        self.assertEqual(asignacion.estado, SolicitudAsignacion.PENDIENTE_STOCK)
        self.assertIsNone(asignacion.activo)
        self.assertEqual(asignacion.activo_nombre, 'Laptop Dell')

    def test_rechazar_no_cambia_activo(self):
        solicitud = solicitudes.crear_solicitud_reemplazo(self.empleado, self.activo.pk, 'Desgaste')
        solicitud = solicitudes.actualizar_estado_reemplazo(
            self.master, solicitud.pk, SolicitudReemplazo.RECHAZADO
        )
        self.assertEqual(solicitud.estado, SolicitudReemplazo.RECHAZADO)
        self.activo.refresh_from_db()
        self.assertEqual(self.activo.estado, Activo.ACTIVO)
        self.assertFalse(SolicitudAsignacion.objects.exists())

    def test_responder_dos_veces(self):
        solicitud = solicitudes.crear_solicitud_reemplazo(self.empleado, self.activo.pk, 'Daño')
        solicitudes.actualizar_estado_reemplazo(self.master, solicitud.pk, SolicitudReemplazo.RECHAZADO)
        with self.assertRaises(ErrorEstadoInvalido):
            solicitudes.actualizar_estado_reemplazo(self.master, solicitud.pk, SolicitudReemplazo.APROBADO)

    def test_respuesta_invalida(self):
        solicitud = solicitudes.crear_solicitud_reemplazo(self.empleado, self.activo.pk, 'Daño')
        with self.assertRaises(ErrorValidacion):
            solicitudes.actualizar_estado_reemplazo(self.master, solicitud.pk, 'quizás')

    def test_aprobacion_se_deshace_si_falla(self):
        """Si falla la asignación del reemplazo, la solicitud sigue pendiente"""
        solicitud = solicitudes.crear_solicitud_reemplazo(self.empleado, self.activo.pk, 'Daño')
        with mock.patch(
            'activos.services.solicitudes._asignar_reemplazo',
            side_effect=ErrorEstadoInvalido('sin stock')
        ):
            with self.assertRaises(ErrorEstadoInvalido):
                solicitudes.actualizar_estado_reemplazo(
                    self.master, solicitud.pk, SolicitudReemplazo.APROBADO
                )
        solicitud.refresh_from_db()
        self.activo.refresh_from_db()
        self.assertEqual(solicitud.estado, SolicitudReemplazo.PENDIENTE)
        self.assertEqual(self.activo.estado, Activo.ACTIVO)

    def test_resolver_reemplazo_a_stock(self):
        stock = activos.agregar_stock(self.logistica, 'Laptop Dell', 1)
        self.activo.estado = Activo.REEMPLAZO_EN_LOGISTICA
        self.activo.save()
        fila = activos.resolver_reemplazo(self.logistica, self.activo.pk, Activo.EN_STOCK)
        self.assertEqual(fila.pk, stock.pk)
        self.assertEqual(fila.stock, 2)
        self.assertFalse(Activo.objects.filter(pk=self.activo.pk).exists())

    def test_resolver_reemplazo_a_baja(self):
        self.activo.estado = Activo.REEMPLAZO_EN_LOGISTICA
        self.activo.save()
        activo = activos.resolver_reemplazo(self.logistica, self.activo.pk, Activo.BAJA, 'Sin reparación')
        self.assertEqual(activo.estado, Activo.BAJA)
        self.assertEqual(activo.motivo_baja, 'Sin reparación')
        self.assertIsNone(activo.empleado)

    def test_resolver_reemplazo_estado_invalido(self):
        with self.assertRaises(ErrorEstadoInvalido):
            activos.resolver_reemplazo(self.logistica, self.activo.pk, Activo.EN_STOCK)

    def test_resolver_a_stock_conserva_solicitud(self):
        """La solicitud aprobada sobrevive a la fusión del activo con el stock"""
        activos.agregar_stock(self.logistica, 'Laptop Dell', 2)
        solicitud = solicitudes.crear_solicitud_reemplazo(self.empleado, self.activo.pk, 'Daño')
        solicitudes.actualizar_estado_reemplazo(self.master, solicitud.pk, SolicitudReemplazo.APROBADO)

        activos.resolver_reemplazo(self.logistica, self.activo.pk, Activo.EN_STOCK)

        self.assertFalse(Activo.objects.filter(pk=self.activo.pk).exists())
        solicitud.refresh_from_db()
        self.assertEqual(solicitud.estado, SolicitudReemplazo.APROBADO)
        self.assertIsNone(solicitud.activo)
        self.assertEqual(solicitud.serial, 'SN-1')
        self.assertEqual(solicitud.asignaciones.count(), 1)

    def test_aprobar_solicitud_de_activo_ya_devuelto(self):
        """Una solicitud pendiente cuyo activo volvió al stock no se puede aprobar"""
        activos.agregar_stock(self.logistica, 'Laptop Dell', 1)
        solicitud = solicitudes.crear_solicitud_reemplazo(self.empleado, self.activo.pk, 'Daño')
        proceso = devoluciones.iniciar_proceso_devolucion(self.empleado)
        devoluciones.verificar_devolucion(self.logistica, proceso.pk, self.activo.pk)

        solicitud.refresh_from_db()
        self.assertEqual(solicitud.estado, SolicitudReemplazo.PENDIENTE)
        with self.assertRaises(ErrorEstadoInvalido):
            solicitudes.actualizar_estado_reemplazo(self.master, solicitud.pk, SolicitudReemplazo.APROBADO)

        solicitud = solicitudes.actualizar_estado_reemplazo(
            self.master, solicitud.pk, SolicitudReemplazo.RECHAZADO
        )
        self.assertEqual(solicitud.estado, SolicitudReemplazo.RECHAZADO)

    def test_sin_master_si_lo_invito_logistica(self):
        """Solo un master que invitó al empleado queda como aprobador"""
        tercero = crear_perfil(
            'tercero@fijosdn.test', PerfilUsuario.EMPLEADO, 'Tina Tercera', self.logistica
        )
        activo = activo_asignado(tercero, serial='SN-9')
        solicitud = solicitudes.crear_solicitud_reemplazo(tercero, activo.pk, 'Daño')
        self.assertIsNone(solicitud.master)


# ============================================================================
# PRUEBAS DE DEVOLUCIONES
# ============================================================================

class DevolucionTests(BaseActivosTestCase):
    """Pruebas para el proceso de devolución (paz y salvo)"""

    def setUp(self):
        self.stock = activos.agregar_stock(self.logistica, 'Laptop Dell', 1)
        self.activo_a = activo_asignado(self.empleado, nombre='Laptop Dell', serial='A')
        self.activo_b = activo_asignado(self.empleado, nombre='Laptop Dell', serial='B')

    def iniciar(self):
        return devoluciones.iniciar_proceso_devolucion(self.empleado)

    def test_iniciar_devolucion(self):
        """Todos los activos en uso entran al proceso sin verificar"""
        proceso = self.iniciar()
        self.assertEqual(proceso.estado, ProcesoDevolucion.INICIADO)
        entradas = list(proceso.activos.all())
        self.assertEqual(len(entradas), 2)
        self.assertFalse(any(e.verificado for e in entradas))
        for activo in (self.activo_a, self.activo_b):
            activo.refresh_from_db()
            self.assertEqual(activo.estado, Activo.EN_DEVOLUCION)

    def test_iniciar_sin_activos(self):
        with self.assertRaises(ErrorValidacion):
            devoluciones.iniciar_proceso_devolucion(self.otro_empleado)
        self.assertFalse(ProcesoDevolucion.objects.exists())

    def test_empleado_no_inicia_devolucion_ajena(self):
        with self.assertRaises(ErrorPermiso):
            devoluciones.iniciar_proceso_devolucion(self.otro_empleado, self.empleado.pk)

    def test_master_inicia_para_empleado(self):
        proceso = devoluciones.iniciar_proceso_devolucion(self.master, self.empleado.pk)
        self.assertEqual(proceso.empleado, self.empleado)

    def test_verificar_una_entrada(self):
        proceso = self.iniciar()
        proceso = devoluciones.verificar_devolucion(self.logistica, proceso.pk, self.activo_a.pk)
        self.assertEqual(proceso.estado, ProcesoDevolucion.VERIFICADO_LOGISTICA)

        self.stock.refresh_from_db()
        self.assertEqual(self.stock.stock, 2)
        self.assertFalse(Activo.objects.filter(pk=self.activo_a.pk).exists())
        entrada = proceso.activos.get(activo_id=self.activo_a.pk)
        self.assertTrue(entrada.verificado)
        self.assertEqual(entrada.resultado, Activo.EN_STOCK)
        self.assertEqual(entrada.verificado_por, self.logistica)

    def test_verificar_todas_completa(self):
        """Verificar cada entrada completa el proceso y suma al stock"""
        proceso = self.iniciar()
        devoluciones.verificar_devolucion(self.logistica, proceso.pk, self.activo_a.pk)
        proceso = devoluciones.verificar_devolucion(self.logistica, proceso.pk, self.activo_b.pk)
        self.assertEqual(proceso.estado, ProcesoDevolucion.COMPLETADO)
        self.assertIsNotNone(proceso.fecha_completado)
        self.stock.refresh_from_db()
        self.assertEqual(self.stock.stock, 3)
        self.assertEqual(Activo.objects.filter(estado=Activo.EN_STOCK).count(), 1)

    def test_historial_pasa_a_la_fila_de_stock(self):
        proceso = self.iniciar()
        devoluciones.verificar_devolucion(self.logistica, proceso.pk, self.activo_a.pk)
        eventos = set(self.stock.historial.values_list('evento', flat=True))
        self.assertIn('Devolución iniciada', eventos)
        self.assertIn('Devuelto a stock', eventos)

    def test_verificar_sin_fila_de_stock(self):
        """Sin fila de stock del nombre, la unidad se convierte en ella"""
        taladro = activo_asignado(self.otro_empleado, nombre='Taladro', serial='T1')
        proceso = devoluciones.iniciar_proceso_devolucion(self.otro_empleado)
        devoluciones.verificar_devolucion(self.logistica, proceso.pk, taladro.pk)
        taladro.refresh_from_db()
        self.assertEqual(taladro.estado, Activo.EN_STOCK)
        self.assertEqual(taladro.stock, 1)
        self.assertIsNone(taladro.empleado)
        self.assertEqual(taladro.empleado_nombre, '')

    def test_verificar_dos_veces(self):
        proceso = self.iniciar()
        devoluciones.verificar_devolucion(self.logistica, proceso.pk, self.activo_a.pk)
        with self.assertRaises(ErrorEstadoInvalido):
            devoluciones.verificar_devolucion(self.logistica, proceso.pk, self.activo_a.pk)

    def test_verificar_activo_fuera_del_proceso(self):
        proceso = self.iniciar()
        with self.assertRaises(ErrorNoEncontrado):
            devoluciones.verificar_devolucion(self.logistica, proceso.pk, self.stock.pk)

    def test_solo_logistica_verifica(self):
        proceso = self.iniciar()
        with self.assertRaises(ErrorPermiso):
            devoluciones.verificar_devolucion(self.master, proceso.pk, self.activo_a.pk)

    def test_baja_sin_justificacion(self):
        """Sin justificación no hay baja y el activo no cambia"""
        proceso = self.iniciar()
        with self.assertRaises(ErrorValidacion):
            devoluciones.dar_de_baja(self.logistica, proceso.pk, self.activo_a.pk, '', imagen_png())
        self.activo_a.refresh_from_db()
        self.assertEqual(self.activo_a.estado, Activo.EN_DEVOLUCION)

    def test_baja_sin_evidencia(self):
        proceso = self.iniciar()
        with self.assertRaises(ErrorValidacion):
            devoluciones.dar_de_baja(self.logistica, proceso.pk, self.activo_a.pk, 'Pantalla rota')

    def test_dar_de_baja(self):
        proceso = self.iniciar()
        proceso = devoluciones.dar_de_baja(
            self.logistica, proceso.pk, self.activo_a.pk, 'Pantalla rota', imagen_png()
        )
        self.assertEqual(proceso.estado, ProcesoDevolucion.VERIFICADO_LOGISTICA)
        self.activo_a.refresh_from_db()
        self.assertEqual(self.activo_a.estado, Activo.BAJA)
        self.assertEqual(self.activo_a.motivo_baja, 'Pantalla rota')
        self.assertIn('evidencias/', self.activo_a.evidencia_url)
        self.assertIsNone(self.activo_a.empleado)
        entrada = proceso.activos.get(activo_id=self.activo_a.pk)
        self.assertEqual(entrada.resultado, Activo.BAJA)
        self.stock.refresh_from_db()
        self.assertEqual(self.stock.stock, 1)

    def test_baja_fallida_conserva_evidencia(self):
        """Si la escritura falla, el error lleva la URL ya subida para reintentar"""
        proceso = self.iniciar()
        with mock.patch(
            'activos.services.devoluciones.persistencia.ejecutar_transaccion',
            side_effect=ErrorConflicto('carrera perdida')
        ):
            with self.assertRaises(ErrorConflicto) as contexto:
                devoluciones.dar_de_baja(
                    self.logistica, proceso.pk, self.activo_a.pk, 'Pantalla rota', imagen_png()
                )
        evidencia_url = contexto.exception.evidencia_url
        self.assertIn('evidencias/', evidencia_url)

        devoluciones.dar_de_baja(
            self.logistica, proceso.pk, self.activo_a.pk, 'Pantalla rota',
            evidencia_url=evidencia_url
        )
        self.activo_a.refresh_from_db()
        self.assertEqual(self.activo_a.evidencia_url, evidencia_url)

    def test_baja_y_retorno_completan(self):
        proceso = self.iniciar()
        devoluciones.dar_de_baja(self.logistica, proceso.pk, self.activo_a.pk, 'Golpe', imagen_png())
        proceso = devoluciones.verificar_devolucion(self.logistica, proceso.pk, self.activo_b.pk)
        self.assertEqual(proceso.estado, ProcesoDevolucion.COMPLETADO)

    def test_baja_no_sube_evidencia_si_el_activo_cambio(self):
        """Si el activo ya no está en devolución no se sube la imagen"""
        proceso = self.iniciar()
        activos.actualizar_activo(self.master, self.activo_a.pk, {'estado': Activo.BAJA})
        with mock.patch('activos.services.devoluciones.almacenamiento.subir') as subir:
            with self.assertRaises(ErrorEstadoInvalido):
                devoluciones.dar_de_baja(
                    self.logistica, proceso.pk, self.activo_a.pk, 'Pantalla rota', imagen_png()
                )
        subir.assert_not_called()

    def test_verificar_conserva_solicitudes_de_reemplazo(self):
        """Fusionar la unidad con el stock no borra sus solicitudes de reemplazo"""
        solicitud = solicitudes.crear_solicitud_reemplazo(self.empleado, self.activo_a.pk, 'Desgaste')
        solicitudes.actualizar_estado_reemplazo(self.master, solicitud.pk, SolicitudReemplazo.RECHAZADO)

        proceso = self.iniciar()
        devoluciones.verificar_devolucion(self.logistica, proceso.pk, self.activo_a.pk)

        self.assertFalse(Activo.objects.filter(pk=self.activo_a.pk).exists())
        solicitud.refresh_from_db()
        self.assertEqual(solicitud.estado, SolicitudReemplazo.RECHAZADO)
        self.assertIsNone(solicitud.activo)
        self.assertEqual(solicitud.activo_nombre, 'Laptop Dell')
        self.assertEqual(solicitud.serial, 'A')

    def test_completar_con_pendientes(self):
        proceso = self.iniciar()
        with self.assertRaises(ErrorEstadoInvalido):
            devoluciones.completar_proceso_devolucion(self.logistica, proceso.pk)

    def test_completar_proceso_completado_no_hace_nada(self):
        proceso = self.iniciar()
        devoluciones.verificar_devolucion(self.logistica, proceso.pk, self.activo_a.pk)
        proceso = devoluciones.verificar_devolucion(self.logistica, proceso.pk, self.activo_b.pk)
        version = proceso.version
        proceso = devoluciones.completar_proceso_devolucion(self.logistica, proceso.pk)
        self.assertEqual(proceso.estado, ProcesoDevolucion.COMPLETADO)
        self.assertEqual(proceso.version, version)

    def test_verificar_en_proceso_completado(self):
        proceso = self.iniciar()
        devoluciones.verificar_devolucion(self.logistica, proceso.pk, self.activo_a.pk)
        devoluciones.verificar_devolucion(self.logistica, proceso.pk, self.activo_b.pk)
        with self.assertRaises(ErrorEstadoInvalido):
            devoluciones.verificar_devolucion(self.logistica, proceso.pk, self.activo_a.pk)

    def test_listar_procesos(self):
        self.iniciar()
        self.assertEqual(devoluciones.listar_procesos_devolucion(empleado=self.empleado).count(), 1)
        self.assertEqual(devoluciones.listar_procesos_devolucion(estado=ProcesoDevolucion.COMPLETADO).count(), 0)


# ============================================================================
# PRUEBAS DEL VALIDADOR DE IMÁGENES
# ============================================================================

class ValidadorImagenTests(TestCase):
    """Pruebas para el validador de imágenes"""

    def test_imagen_valida(self):
        validator = ImageValidator()
        try:
            validator(imagen_png())
        except ValidationError as e:
            self.fail(f"Validador lanzó excepción inesperada: {e}")

    def test_extension_invalida(self):
        archivo = SimpleUploadedFile('test.exe', b'contenido malicioso', content_type='application/octet-stream')
        with self.assertRaises(ValidationError):
            ImageValidator()(archivo)

    def test_tamaño_excedido(self):
        archivo = SimpleUploadedFile('test.jpg', b'x' * (6 * 1024 * 1024), content_type='image/jpeg')
        with self.assertRaises(ValidationError):
            ImageValidator(max_size=5 * 1024 * 1024)(archivo)

    def test_contenido_no_es_imagen(self):
        """Un archivo renombrado como .png se rechaza"""
        archivo = SimpleUploadedFile('falsa.png', b'%PDF-1.4 documento', content_type='image/png')
        with self.assertRaises(ValidationError):
            ImageValidator()(archivo)


# ============================================================================
# PRUEBAS DE LA API
# ============================================================================

class APITests(BaseActivosTestCase):
    """Pruebas de la API JSON y del mapeo de errores a códigos HTTP"""

    def login(self, perfil):
        self.client.force_login(perfil.usuario)

    def post_json(self, url, datos):
        return self.client.post(url, data=json.dumps(datos), content_type='application/json')

    def test_requiere_autenticacion(self):
        response = self.client.get(reverse('activos:stock'))
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['error'], 'no_autenticado')

    def test_usuario_sin_invitacion(self):
        usuario = User.objects.create_user('sinrol', email='sinrol@fijosdn.test', password='test123')
        self.client.force_login(usuario)
        self.assertEqual(self.client.get(reverse('activos:perfil-actual')).json(), {'perfil': None})
        response = self.client.get(reverse('activos:stock'))
        self.assertEqual(response.status_code, 403)

    def test_perfil_actual(self):
        self.login(self.logistica)
        response = self.client.get(reverse('activos:perfil-actual'))
        self.assertEqual(response.json()['perfil']['rol'], PerfilUsuario.LOGISTICA)

    def test_agregar_stock(self):
        self.login(self.logistica)
        response = self.post_json(reverse('activos:stock'), {'nombre': 'Laptop', 'cantidad': 3})
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['stock'], 3)
        response = self.client.get(reverse('activos:stock'))
        self.assertEqual(len(response.json()['activos']), 1)

    def test_cantidad_invalida_es_400(self):
        self.login(self.logistica)
        response = self.post_json(reverse('activos:stock'), {'nombre': 'Laptop', 'cantidad': 0})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'validacion')

    def test_json_invalido_es_400(self):
        self.login(self.logistica)
        response = self.client.post(reverse('activos:stock'), data='{no es json', content_type='application/json')
        self.assertEqual(response.status_code, 400)

    def test_permiso_denegado_es_403(self):
        self.login(self.empleado)
        response = self.post_json(reverse('activos:stock'), {'nombre': 'Laptop', 'cantidad': 1})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()['error'], 'permiso_denegado')

    def test_estado_invalido_es_409(self):
        baja = Activo.objects.create(nombre='Laptop vieja', estado=Activo.BAJA)
        self.login(self.empleado)
        response = self.client.post(reverse('activos:activo-confirmar', args=[baja.pk]))
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()['error'], 'estado_invalido')

    def test_no_encontrado_es_404(self):
        self.login(self.master)
        response = self.client.get(reverse('activos:activo-detail', args=[9999]))
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error'], 'no_encontrado')

    def test_conflicto_es_409(self):
        activo = activo_asignado(self.empleado)
        self.login(self.empleado)
        url = reverse('activos:reemplazo-list')
        self.assertEqual(self.client.post(url, {'activo_id': activo.pk, 'motivo': 'Daño'}).status_code, 201)
        response = self.client.post(url, {'activo_id': activo.pk, 'motivo': 'Robo'})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()['error'], 'conflicto')

    def test_lote_de_asignaciones(self):
        stock = activos.agregar_stock(self.logistica, 'Laptop', 2)
        self.login(self.master)
        response = self.post_json(reverse('activos:asignacion-list'), {
            'empleado_id': self.empleado.pk,
            'filas': [{'activo_id': stock.pk, 'cantidad': 1}, {'activo_id': stock.pk, 'cantidad': 5}],
        })
        self.assertEqual(response.status_code, 201)
        estados = [s['estado'] for s in response.json()['solicitudes']]
        self.assertEqual(estados, [SolicitudAsignacion.PENDIENTE_ENVIO, SolicitudAsignacion.PENDIENTE_STOCK])

    def test_empleado_solo_ve_sus_solicitudes(self):
        stock = activos.agregar_stock(self.logistica, 'Laptop', 5)
        solicitudes.crear_solicitudes_asignacion(self.master, self.empleado.pk, [(stock.pk, 1)])
        solicitudes.crear_solicitudes_asignacion(self.master, self.otro_empleado.pk, [(stock.pk, 1)])
        self.login(self.otro_empleado)
        response = self.client.get(reverse('activos:asignacion-list'))
        self.assertEqual(len(response.json()['solicitudes']), 1)

    def test_flujo_de_devolucion_con_baja(self):
        activo = activo_asignado(self.empleado)
        self.login(self.empleado)
        response = self.post_json(reverse('activos:devolucion-list'), {})
        self.assertEqual(response.status_code, 201)
        proceso_id = response.json()['id']

        self.login(self.logistica)
        response = self.client.post(
            reverse('activos:devolucion-baja', args=[proceso_id, activo.pk]),
            {'justificacion': 'Pantalla rota', 'evidencia': imagen_png()}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['estado'], ProcesoDevolucion.COMPLETADO)

    def test_baja_fallida_devuelve_evidencia_url(self):
        activo = activo_asignado(self.empleado)
        proceso = devoluciones.iniciar_proceso_devolucion(self.empleado)
        self.login(self.logistica)
        with mock.patch(
            'activos.services.devoluciones.persistencia.ejecutar_transaccion',
            side_effect=ErrorConflicto('carrera perdida')
        ):
            response = self.client.post(
                reverse('activos:devolucion-baja', args=[proceso.pk, activo.pk]),
                {'justificacion': 'Pantalla rota', 'evidencia': imagen_png()}
            )
        self.assertEqual(response.status_code, 409)
        self.assertIn('evidencias/', response.json()['evidencia_url'])

    def test_invitar_usuario(self):
        self.login(self.master)
        response = self.post_json(
            reverse('activos:usuario-list'), {'email': 'nuevo@fijosdn.test', 'rol': PerfilUsuario.EMPLEADO}
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['estado'], PerfilUsuario.INVITADO)

    def test_editar_activo(self):
        fila = activos.agregar_stock(self.master, 'Laptop', 2)
        self.login(self.master)
        response = self.post_json(reverse('activos:activo-detail', args=[fila.pk]), {'ubicacion': 'Bodega 2'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['ubicacion'], 'Bodega 2')
        self.assertEqual(response.json()['stock'], 2)

    def test_metodo_no_permitido(self):
        self.login(self.empleado)
        response = self.client.get(reverse('activos:activo-confirmar', args=[1]))
        self.assertEqual(response.status_code, 405)


# ============================================================================
# PRUEBAS DE ADMIN Y COMANDOS
# ============================================================================

class AdminTests(BaseActivosTestCase):
    """El admin muestra todas las entidades"""

    def test_changelists(self):
        admin_user = User.objects.create_superuser('admin', 'admin@fijosdn.test', 'admin123')
        self.client.force_login(admin_user)
        activo_asignado(self.empleado)
        for modelo in ('activo', 'perfilusuario', 'historialactivo', 'solicitudasignacion',
                       'solicitudreemplazo', 'procesodevolucion'):
            with self.subTest(modelo=modelo):
                response = self.client.get(reverse(f'admin:activos_{modelo}_changelist'))
                self.assertEqual(response.status_code, 200)


class CrearMasterCommandTests(TestCase):
    """Pruebas del comando crear_master"""

    def test_crea_invitacion_master(self):
        salida = StringIO()
        call_command('crear_master', 'Jefe@FijosDN.test', '--nombre', 'Jefe', stdout=salida)
        perfil = PerfilUsuario.objects.get(email='jefe@fijosdn.test')
        self.assertEqual(perfil.rol, PerfilUsuario.MASTER)
        self.assertEqual(perfil.estado, PerfilUsuario.INVITADO)
        self.assertIn('creado', salida.getvalue())

    def test_enlaza_cuenta_existente(self):
        usuario = User.objects.create_user('jefe', email='jefe@fijosdn.test', password='test123')
        call_command('crear_master', 'jefe@fijosdn.test', stdout=StringIO())
        perfil = PerfilUsuario.objects.get(email='jefe@fijosdn.test')
        self.assertEqual(perfil.usuario, usuario)
        self.assertEqual(perfil.estado, PerfilUsuario.ACTIVO)
