"""
Patient serializers.

Field names follow the patient document wire format (``HN_code``,
``ID_code``, ``lastVisit``, ``clinicId``) consumed by the medical history
editor.
"""
from rest_framework import serializers

from .models import Patient


class HistoryEntrySerializer(serializers.Serializer):
    """One medical history entry."""
    timestamp = serializers.DateTimeField()
    notes = serializers.CharField(allow_blank=True, required=False, default='')
    document_urls = serializers.ListField(
        child=serializers.CharField(),
        required=False,
        default=list
    )


class PatientDocumentSerializer(serializers.ModelSerializer):
    """
    Patient document serializer.
    """
    clinicId = serializers.CharField(source='clinic_id', read_only=True)
    HN_code = serializers.CharField(source='hn_code', max_length=64)
    ID_code = serializers.CharField(source='id_code', max_length=64, allow_blank=True, required=False)
    lastVisit = serializers.DateTimeField(source='last_visit', allow_null=True, required=False)
    history = HistoryEntrySerializer(many=True, required=False)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = Patient
        fields = [
            'id',
            'clinicId',
            'name',
            'HN_code',
            'ID_code',
            'lastVisit',
            'history',
            'createdAt',
            'updatedAt',
        ]
        read_only_fields = ['id', 'clinicId', 'createdAt', 'updatedAt']

    def validate_name(self, value):
        if not value.strip():
            raise serializers.ValidationError('Name is required')
        return value

    def validate_HN_code(self, value):
        if not value.strip():
            raise serializers.ValidationError('HN code is required')
        return value

    def validate_history(self, value):
        # Nested entries inherit partial=True from a PATCH; history is replaced whole.
        entries = HistoryEntrySerializer(data=self.initial_data.get('history'), many=True)
        if not entries.is_valid():
            raise serializers.ValidationError(entries.errors)
        return entries.validated_data

    def update(self, instance, validated_data):
        history = validated_data.pop('history', None)
        if history is not None:
            instance.history = [
                {
                    'timestamp': entry['timestamp'].isoformat().replace('+00:00', 'Z'),
                    'notes': entry.get('notes') or '',
                    'document_urls': list(entry.get('document_urls') or []),
                }
                for entry in history
            ]
        return super().update(instance, validated_data)
