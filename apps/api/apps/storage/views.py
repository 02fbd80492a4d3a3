"""
File storage REST API endpoints.

Endpoints:
- POST   /files/                multipart upload -> {fileRef, filename, size, type}
- DELETE /files/?ref=<fileRef>  hard delete      -> {success}
- POST   /files/batch-delete/   {refs: [...]}    -> {success, results: [...]}
"""
import logging

from rest_framework import status
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.observability import log_orphaned_file, metrics
from apps.medical_history.conf import get_config
from apps.medical_history.exceptions import FileRejected
from apps.medical_history.validation import guess_content_type, validate_file

from .utils_storage import (
    StorageError,
    delete_object,
    delete_objects,
    generate_object_key,
    get_bucket_name,
    is_valid_object_key,
    upload_object,
)

logger = logging.getLogger(__name__)


class FileView(APIView):
    """Upload one file or delete one file by ref."""
    permission_classes = [IsAuthenticated]
    parser_classes = [MultiPartParser, FormParser]

    def post(self, request):
        """
        Upload a document.

        Request body (multipart/form-data):
        - file: the document (required)
        - clinicId: owning clinic (required)
        - patientId: owning patient (optional)
        """
        file = request.FILES.get('file')
        clinic_id = request.data.get('clinicId')
        patient_id = request.data.get('patientId') or None

        if not file:
            metrics.storage_requests_total.labels(operation='upload', status='400').inc()
            return Response({'error': 'file is required'}, status=status.HTTP_400_BAD_REQUEST)
        if not clinic_id:
            metrics.storage_requests_total.labels(operation='upload', status='400').inc()
            return Response({'error': 'clinicId is required'}, status=status.HTTP_400_BAD_REQUEST)

        content_type = (file.content_type or guess_content_type(file.name)).lower()
        try:
            validate_file(file.name, file.size, content_type, get_config())
        except FileRejected as e:
            metrics.storage_requests_total.labels(operation='upload', status='400').inc()
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        object_key = generate_object_key(clinic_id, file.name, patient_id=patient_id)
        file.seek(0)
        data = file.read()

        try:
            upload_object(get_bucket_name(), object_key, data, content_type)
        except StorageError as e:
            metrics.storage_requests_total.labels(operation='upload', status='502').inc()
            logger.error("Upload to object storage failed", extra={'file_ref': object_key, 'error': str(e)})
            return Response({'error': 'Failed to store file'}, status=status.HTTP_502_BAD_GATEWAY)

        metrics.storage_requests_total.labels(operation='upload', status='201').inc()
        logger.info(
            "File stored",
            extra={'file_ref': object_key, 'clinic_id': clinic_id, 'byte_size': len(data)}
        )
        return Response({
            'fileRef': object_key,
            'filename': file.name,
            'size': len(data),
            'type': content_type,
        }, status=status.HTTP_201_CREATED)

    def delete(self, request):
        file_ref = request.query_params.get('ref')
        if not is_valid_object_key(file_ref):
            metrics.storage_requests_total.labels(operation='delete', status='400').inc()
            return Response(
                {'success': False, 'error': 'Invalid file ref'},
                status=status.HTTP_400_BAD_REQUEST
            )

        try:
            delete_object(get_bucket_name(), file_ref)
        except StorageError as e:
            metrics.storage_requests_total.labels(operation='delete', status='502').inc()
            log_orphaned_file(file_ref, str(e), phase='storage_api')
            return Response(
                {'success': False, 'error': 'Failed to delete file'},
                status=status.HTTP_502_BAD_GATEWAY
            )

        metrics.storage_requests_total.labels(operation='delete', status='200').inc()
        logger.info("File deleted", extra={'file_ref': file_ref})
        return Response({'success': True})


class BatchDeleteView(APIView):
    """
    Best-effort delete of many files.

    Every ref gets its own result; an invalid ref or a failed delete never
    aborts the rest of the batch.
    """
    permission_classes = [IsAuthenticated]
    parser_classes = [JSONParser]

    def post(self, request):
        refs = request.data.get('refs') if isinstance(request.data, dict) else None
        if not isinstance(refs, list):
            metrics.storage_requests_total.labels(operation='batch_delete', status='400').inc()
            return Response(
                {'success': False, 'error': 'refs must be a list'},
                status=status.HTTP_400_BAD_REQUEST
            )

        results = {}
        valid_refs = []
        for ref in refs:
            if not is_valid_object_key(ref):
                results[str(ref)] = {'ref': ref, 'success': False, 'error': 'Invalid file ref'}
            elif ref not in valid_refs:
                valid_refs.append(ref)

        if valid_refs:
            try:
                failed = delete_objects(get_bucket_name(), valid_refs)
            except StorageError as e:
                failed = {ref: str(e) for ref in valid_refs}

            for ref in valid_refs:
                if ref in failed:
                    results[ref] = {'ref': ref, 'success': False, 'error': failed[ref]}
                    log_orphaned_file(ref, failed[ref], phase='storage_api')
                else:
                    results[ref] = {'ref': ref, 'success': True}

        ordered = list(results.values())
        success = all(item['success'] for item in ordered)
        metrics.storage_requests_total.labels(operation='batch_delete', status='200').inc()
        logger.info(
            "Batch delete processed",
            extra={
                'requested': len(refs),
                'deleted': len([item for item in ordered if item['success']]),
            }
        )
        return Response({'success': success, 'results': ordered})
