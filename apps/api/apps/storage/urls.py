"""
Storage URLs.
"""
from django.urls import path

from .views import BatchDeleteView, FileView

urlpatterns = [
    path('', FileView.as_view(), name='files'),
    path('batch-delete/', BatchDeleteView.as_view(), name='files-batch-delete'),
]
