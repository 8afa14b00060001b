import logging

from django.db.models.signals import post_save
from django.dispatch import receiver
from django.contrib.auth.models import User

from .models import PerfilUsuario
from .services import identidad

logger = logging.getLogger(__name__)


# ============================================================================
# SEÑALES PARA REGISTRO DE USUARIOS
# ============================================================================

@receiver(post_save, sender=User)
def activar_invitacion(sender, instance, created, **kwargs):
    """
    Al crearse una cuenta, la enlaza con la invitación de su correo.

    Las cuentas sin invitación (superusuarios del admin, por ejemplo) se
    crean igual; simplemente no obtienen rol.
    """
    if not created or not instance.email:
        return
    email = instance.email.strip().lower()
    if not PerfilUsuario.objects.filter(email=email, usuario__isnull=True).exists():
        logger.info(f'Cuenta {email} creada sin invitación pendiente')
        return
    identidad.completar_registro(instance)
