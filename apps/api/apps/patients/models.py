"""
Patient models - clinic-scoped patient document with embedded medical history.
"""
import uuid

from django.db import models
from django.utils.translation import gettext_lazy as _


class Patient(models.Model):
    """
    Patient document.

    ``history`` is a JSON list of medical history entries:
    ``{"timestamp": ISO-8601, "notes": str, "document_urls": [file ref, ...]}``
    where each file ref is an object key handed out by the storage API.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    clinic_id = models.CharField(_('Clinic'), max_length=64, db_index=True)

    # Identity
    name = models.CharField(_('Name'), max_length=255)
    hn_code = models.CharField(_('HN Code'), max_length=64, help_text=_('Hospital number'))
    id_code = models.CharField(_('ID Code'), max_length=64, blank=True, help_text=_('National ID'))

    # Medical history
    last_visit = models.DateTimeField(_('Last Visit'), null=True, blank=True)
    history = models.JSONField(_('History'), default=list, blank=True)

    # Metadata
    created_at = models.DateTimeField(_('Created At'), auto_now_add=True)
    updated_at = models.DateTimeField(_('Updated At'), auto_now=True)

    class Meta:
        db_table = 'patients'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['clinic_id', 'hn_code'], name='patients_clinic_hn_idx'),
            models.Index(fields=['-created_at'], name='patients_created_idx'),
        ]
        verbose_name = _('Patient')
        verbose_name_plural = _('Patients')

    def __str__(self):
        return f"{self.hn_code} ({self.clinic_id})"

    @property
    def document_refs(self):
        """Every file ref referenced by the history."""
        refs = []
        for entry in self.history or []:
            refs.extend(entry.get('document_urls') or [])
        return refs
