from django.apps import AppConfig


class ActivosConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'activos'
    verbose_name = 'Activos Fijos'

    def ready(self):
        """Importar signals cuando la app esté lista."""
        import activos.signals  # noqa
