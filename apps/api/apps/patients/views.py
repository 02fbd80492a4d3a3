"""
Patient views.
"""
import logging

from django.db import transaction
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import Patient
from .serializers import PatientDocumentSerializer

logger = logging.getLogger(__name__)


class PatientDocumentView(APIView):
    """
    Read or patch one patient document within a clinic.

    - GET   /patients/{id}/?clinicId=...
    - PATCH /patients/{id}/?clinicId=...

    A patient that exists in another clinic is reported as not found.
    """
    permission_classes = [IsAuthenticated]

    def _get_patient(self, request, patient_id):
        clinic_id = request.query_params.get('clinicId')
        if not clinic_id:
            return None, Response({'error': 'clinicId is required'}, status=status.HTTP_400_BAD_REQUEST)

        patient = Patient.objects.filter(id=patient_id, clinic_id=clinic_id).first()
        if patient is None:
            return None, Response({'error': 'Patient not found'}, status=status.HTTP_404_NOT_FOUND)
        return patient, None

    def get(self, request, patient_id):
        patient, error = self._get_patient(request, patient_id)
        if error is not None:
            return error
        return Response(PatientDocumentSerializer(patient).data)

    def patch(self, request, patient_id):
        patient, error = self._get_patient(request, patient_id)
        if error is not None:
            return error

        serializer = PatientDocumentSerializer(patient, data=request.data, partial=True)
        if not serializer.is_valid():
            logger.info(
                "Patient update rejected",
                extra={'patient_id': str(patient.id), 'fields': sorted(serializer.errors)}
            )
            return Response(
                {'error': 'Invalid patient data', 'details': serializer.errors},
                status=status.HTTP_400_BAD_REQUEST
            )

        with transaction.atomic():
            serializer.save()

        logger.info(
            "Patient document updated",
            extra={
                'patient_id': str(patient.id),
                'clinic_id': patient.clinic_id,
                'history_count': len(patient.history or []),
            }
        )
        return Response(serializer.data)
