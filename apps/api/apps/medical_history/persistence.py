"""
Patient Record Persistence Adapter.

``PatientRepository`` is the read/update contract the editor session needs;
``HttpPatientRepository`` talks to the patient API:

- GET   {base}/patients/{id}/?clinicId=...  -> patient document
- PATCH {base}/patients/{id}/?clinicId=...  -> updated document or {"error": ...}

``update`` is atomic from the caller's point of view: the service applies
the whole patch or none of it.
"""
import logging

import requests

from apps.core.observability.correlation import REQUEST_ID_HEADER, get_request_id

from .conf import get_config
from .exceptions import NetworkError, PatientNotFound, PatientValidationError
from .records import PatientRecord

logger = logging.getLogger(__name__)


class PatientRepository:
    """Contract for loading and saving patient documents."""

    def fetch(self, clinic_id: str, patient_id: str) -> PatientRecord:
        raise NotImplementedError

    def update(self, clinic_id: str, patient_id: str, patch: dict) -> PatientRecord:
        raise NotImplementedError


class HttpPatientRepository(PatientRepository):

    def __init__(self, base_url=None, session=None, timeout=None, headers=None, config=None):
        config = config or get_config()
        self.base_url = (base_url or config.api_base_url or '').rstrip('/')
        if not self.base_url:
            raise ValueError("HttpPatientRepository needs a base_url or MEDICAL_HISTORY['API_BASE_URL']")
        self.session = session or requests.Session()
        self.timeout = timeout or config.http_timeout
        self.headers = dict(headers or {})

    def _headers(self):
        headers = dict(self.headers)
        request_id = get_request_id()
        if request_id:
            headers[REQUEST_ID_HEADER] = request_id
        return headers

    def _url(self, patient_id):
        return f"{self.base_url}/patients/{patient_id}/"

    @staticmethod
    def _body(response):
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    def fetch(self, clinic_id: str, patient_id: str) -> PatientRecord:
        try:
            response = self.session.get(
                self._url(patient_id),
                params={'clinicId': clinic_id},
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise NetworkError(f"Could not reach patient service: {e}") from e

        body = self._body(response)
        if response.status_code == 404:
            raise PatientNotFound(body.get('error') or f"Patient {patient_id} not found")
        if response.status_code != 200:
            raise NetworkError(f"Patient service returned HTTP {response.status_code}: {body.get('error', '')}")

        return PatientRecord.from_document(body.get('patient', body), clinic_id=clinic_id)

    def update(self, clinic_id: str, patient_id: str, patch: dict) -> PatientRecord:
        try:
            response = self.session.patch(
                self._url(patient_id),
                params={'clinicId': clinic_id},
                json=patch,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise NetworkError(f"Could not reach patient service: {e}") from e

        body = self._body(response)
        if response.status_code == 404:
            raise PatientNotFound(body.get('error') or f"Patient {patient_id} not found")
        if response.status_code == 400:
            raise PatientValidationError(body.get('error') or 'Patient update rejected', details=body.get('details'))
        if response.status_code != 200:
            raise NetworkError(f"Patient service returned HTTP {response.status_code}: {body.get('error', '')}")

        logger.info(
            "Patient document updated",
            extra={'clinic_id': clinic_id, 'patient_id': patient_id, 'history_count': len(patch.get('history') or [])}
        )
        return PatientRecord.from_document(body.get('patient', body), clinic_id=clinic_id)
