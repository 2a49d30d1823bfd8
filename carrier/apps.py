from django.apps import AppConfig


class CarrierConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'carrier'
    verbose_name = 'Carrier mobile API'
