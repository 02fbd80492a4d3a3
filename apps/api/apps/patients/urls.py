"""
Patient URLs.
"""
from django.urls import path

from .views import PatientDocumentView

urlpatterns = [
    path('<uuid:patient_id>/', PatientDocumentView.as_view(), name='patient-document'),
]
