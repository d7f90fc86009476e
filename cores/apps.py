from django.apps import AppConfig


class CoresConfig(AppConfig):
    name = 'cores'

    def ready(self):
        from . import receivers  # noqa: F401
