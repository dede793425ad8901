# mirandacoast/core/apps.py

from django.apps import AppConfig

class CoreConfig(AppConfig):
    name = 'mirandacoast.core'
    label = 'core'
    verbose_name = 'Checkout e Expedição (Core)'

    # Camada pura: sem modelos. Registrada apenas pelos comandos de gerenciamento.
    default_auto_field = 'django.db.models.BigAutoField'
