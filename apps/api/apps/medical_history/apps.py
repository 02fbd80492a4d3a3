"""Medical history app configuration."""
from django.apps import AppConfig


class MedicalHistoryAppConfig(AppConfig):
    """Configuration for medical history app."""
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.medical_history'
    verbose_name = 'Medical History'
