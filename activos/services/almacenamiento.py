"""
Almacenamiento de imágenes subidas.

Usa el storage por defecto de Django (MEDIA_ROOT en desarrollo); solo expone
subir() y retorna la URL pública del archivo guardado.
"""
import logging
import os

from django.core.exceptions import ValidationError
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from django.utils import timezone

from activos.exceptions import ErrorValidacion
from activos.validators import validate_image

logger = logging.getLogger(__name__)

CARPETA_EVIDENCIAS = 'evidencias'
CARPETA_REEMPLAZOS = 'reemplazos'


def validar_imagen(archivo):
    """Valida una imagen subida; los errores llegan como ErrorValidacion."""
    try:
        validate_image(archivo)
    except ValidationError as e:
        raise ErrorValidacion(' '.join(e.messages)) from e


def subir(contenido, nombre, carpeta=CARPETA_EVIDENCIAS):
    """
    Guarda `contenido` (bytes o archivo) y retorna su URL.

    Si ya existe un archivo con el mismo nombre el storage agrega un sufijo,
    nunca sobrescribe.
    """
    if isinstance(contenido, bytes):
        contenido = ContentFile(contenido)
    ruta = f'{carpeta}/{timezone.now():%Y/%m}/{os.path.basename(nombre)}'
    guardado = default_storage.save(ruta, contenido)
    url = default_storage.url(guardado)
    logger.info(f'Archivo almacenado: {guardado}')
    return url
