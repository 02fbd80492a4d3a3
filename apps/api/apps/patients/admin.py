from django.contrib import admin

from .models import Patient


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ['id', 'hn_code', 'clinic_id', 'last_visit', 'created_at']
    list_filter = ['clinic_id', 'created_at']
    search_fields = ['hn_code', 'id_code']
    readonly_fields = ['created_at', 'updated_at']
    fieldsets = [
        ('Identity', {
            'fields': ['clinic_id', 'name', 'hn_code', 'id_code']
        }),
        ('Medical History', {
            'fields': ['last_visit', 'history']
        }),
        ('Metadata', {
            'fields': ['created_at', 'updated_at']
        }),
    ]
