"""
Validadores de archivos subidos (imágenes de evidencia y de reemplazo).

Verifican extensión, tamaño, tipo MIME real (python-magic) y que Pillow
pueda abrir la imagen.
"""
import logging

from django.core.exceptions import ValidationError
from django.utils.deconstruct import deconstructible
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)


ALLOWED_IMAGE_EXTENSIONS = ['jpg', 'jpeg', 'png', 'gif', 'webp']

ALLOWED_IMAGE_MIME_TYPES = [
    'image/jpeg',
    'image/png',
    'image/gif',
    'image/webp',
]

MAX_IMAGE_SIZE = 5 * 1024 * 1024  # 5MB


@deconstructible
class ImageValidator:
    """
    Validador de imágenes:
    - Extensión del archivo
    - Tamaño máximo
    - Tipo MIME real (python-magic) y contenido legible por Pillow
    """

    def __init__(self, allowed_extensions=None, allowed_mime_types=None, max_size=None):
        self.allowed_extensions = allowed_extensions or ALLOWED_IMAGE_EXTENSIONS
        self.allowed_mime_types = allowed_mime_types or ALLOWED_IMAGE_MIME_TYPES
        self.max_size = max_size or MAX_IMAGE_SIZE

    def __call__(self, value):
        if not value:
            return

        self._validate_extension(value)
        self._validate_size(value)
        self._validate_mime_type(value)
        self._validate_content(value)

    def _validate_extension(self, value):
        ext = value.name.split('.')[-1].lower() if '.' in value.name else ''
        if ext not in self.allowed_extensions:
            raise ValidationError(
                f'Extensión de archivo no permitida: .{ext}. '
                f'Extensiones válidas: {", ".join(self.allowed_extensions)}'
            )

    def _validate_size(self, value):
        if value.size > self.max_size:
            max_mb = self.max_size / (1024 * 1024)
            file_mb = value.size / (1024 * 1024)
            raise ValidationError(
                f'El archivo es demasiado grande ({file_mb:.1f}MB). '
                f'Tamaño máximo permitido: {max_mb:.0f}MB'
            )

    def _validate_mime_type(self, value):
        """
        Detecta el tipo MIME por el contenido, no por el nombre.
        Evita que se suban archivos renombrados como imagen.
        """
        try:
            import magic
        except ImportError as e:
            # libmagic no está instalada en el sistema: queda la verificación con Pillow
            logger.warning(f'Validación MIME omitida, python-magic no disponible: {e}')
            return

        file_content = value.read(2048)
        value.seek(0)
        mime = magic.from_buffer(file_content, mime=True)
        if mime not in self.allowed_mime_types:
            raise ValidationError(
                f'Tipo de archivo no permitido: {mime}. '
                f'Solo se permiten imágenes ({", ".join(self.allowed_extensions)})'
            )

    def _validate_content(self, value):
        try:
            with Image.open(value) as imagen:
                imagen.verify()
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            raise ValidationError(f'El archivo no es una imagen válida: {e}') from e
        finally:
            value.seek(0)

    def __eq__(self, other):
        return (
            isinstance(other, ImageValidator) and
            self.allowed_extensions == other.allowed_extensions and
            self.allowed_mime_types == other.allowed_mime_types and
            self.max_size == other.max_size
        )


validate_image = ImageValidator()
