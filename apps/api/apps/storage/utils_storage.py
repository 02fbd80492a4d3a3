"""
MinIO Storage utilities for medical history documents.

A file ref handed out by the storage API is the object key inside the
``MINIO_MEDICAL_BUCKET`` bucket.
"""
import io
import uuid

from django.conf import settings
from minio import Minio
from minio.deleteobjects import DeleteObject
from minio.error import S3Error
from urllib3.exceptions import HTTPError

OBJECT_KEY_ROOT = 'clinics'


class StorageError(Exception):
    """A MinIO operation failed."""
    pass


# S3 error responses and connection failures (MaxRetryError, ProtocolError)
STORAGE_ERRORS = (S3Error, HTTPError)


def get_minio_client():
    """Get configured MinIO client instance."""
    return Minio(
        settings.MINIO_ENDPOINT,
        access_key=settings.MINIO_ACCESS_KEY,
        secret_key=settings.MINIO_SECRET_KEY,
        secure=settings.MINIO_USE_SSL
    )


def get_bucket_name() -> str:
    return settings.MINIO_MEDICAL_BUCKET


def _safe_segment(value: str) -> str:
    return "".join(c for c in str(value) if c.isalnum() or c in "_-")


def generate_object_key(clinic_id: str, filename: str, patient_id: str = None) -> str:
    """
    Generate unique object key for MinIO storage.

    Args:
        clinic_id: Owning clinic
        filename: Original filename
        patient_id: Owning patient, when known

    Returns:
        ``clinics/<clinic>/[patients/<patient>/]<hex>_<safe-name>``
    """
    unique_id = uuid.uuid4().hex[:12]
    # Sanitize filename
    safe_filename = "".join(c for c in filename if c.isalnum() or c in "._-")
    prefix = f"{OBJECT_KEY_ROOT}/{_safe_segment(clinic_id)}"
    if patient_id:
        prefix = f"{prefix}/patients/{_safe_segment(patient_id)}"
    return f"{prefix}/{unique_id}_{safe_filename}"


def is_valid_object_key(object_key) -> bool:
    """Only keys this service could have generated may be deleted."""
    if not isinstance(object_key, str) or not object_key:
        return False
    parts = object_key.split('/')
    if parts[0] != OBJECT_KEY_ROOT or len(parts) < 3:
        return False
    return all(part and part not in ('.', '..') for part in parts)


def upload_object(bucket_name: str, object_key: str, data: bytes, content_type: str) -> None:
    """
    Store ``data`` under ``object_key``.

    Raises:
        StorageError: If MinIO operation fails
    """
    client = get_minio_client()
    try:
        client.put_object(
            bucket_name=bucket_name,
            object_name=object_key,
            data=io.BytesIO(data),
            length=len(data),
            content_type=content_type
        )
    except STORAGE_ERRORS as e:
        raise StorageError(f"Failed to upload object to MinIO: {e}") from e


def delete_object(bucket_name: str, object_key: str) -> None:
    """
    Delete an object from MinIO storage (hard delete).

    Raises:
        StorageError: If MinIO operation fails
    """
    client = get_minio_client()
    try:
        client.remove_object(bucket_name=bucket_name, object_name=object_key)
    except STORAGE_ERRORS as e:
        raise StorageError(f"Failed to delete object from MinIO: {e}") from e


def delete_objects(bucket_name: str, object_keys) -> dict:
    """
    Delete many objects in one request.

    Returns:
        Mapping of object key -> error message for the keys MinIO could not
        delete. Keys not in the mapping were deleted.

    Raises:
        StorageError: If the request itself fails
    """
    client = get_minio_client()
    failed = {}
    try:
        errors = client.remove_objects(
            bucket_name,
            [DeleteObject(key) for key in object_keys]
        )
        # remove_objects is lazy; iterating sends the request
        for error in errors:
            failed[error.name] = error.message or error.code
    except STORAGE_ERRORS as e:
        raise StorageError(f"Failed to delete objects from MinIO: {e}") from e
    return failed
