"""
Comando para registrar al primer master del sistema.

Sin un master nadie puede invitar usuarios; este comando crea (o activa) el
perfil master de un correo y, si ya existe una cuenta con ese correo, la
enlaza.
"""

from django.contrib.auth.models import User
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from activos.models import PerfilUsuario


class Command(BaseCommand):
    help = 'Crea o promueve el perfil master de un correo'

    def add_arguments(self, parser):
        parser.add_argument('email', type=str)
        parser.add_argument('--nombre', type=str, default='Administrador')

    def handle(self, *args, **options):
        email = options['email'].strip().lower()
        if '@' not in email:
            raise CommandError(f'Correo inválido: {email}')

        with transaction.atomic():
            perfil, creado = PerfilUsuario.objects.select_for_update().get_or_create(
                email=email,
                defaults={'nombre': options['nombre'], 'rol': PerfilUsuario.MASTER},
            )
            perfil.rol = PerfilUsuario.MASTER
            perfil.nombre = options['nombre']

            usuario = User.objects.filter(email__iexact=email).first()
            if usuario and perfil.usuario_id is None:
                perfil.usuario = usuario
            if perfil.usuario_id:
                perfil.estado = PerfilUsuario.ACTIVO
            perfil.save()

        if creado:
            self.stdout.write(self.style.SUCCESS(f'✓ Master {email} creado ({perfil.estado})'))
        else:
            self.stdout.write(self.style.SUCCESS(f'✓ Perfil {email} actualizado a master ({perfil.estado})'))
        if perfil.estado == PerfilUsuario.INVITADO:
            self.stdout.write('  El perfil se activa cuando se registre una cuenta con este correo.')
