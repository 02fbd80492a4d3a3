"""
Tests for the HTTP gateway and repository clients.

requests.Session is mocked; no network traffic.
"""
from unittest.mock import Mock

import pytest
import requests

from apps.core.observability.correlation import clear_request_context, set_request_id
from apps.medical_history.exceptions import (
    DeleteFailed,
    NetworkError,
    PatientNotFound,
    PatientValidationError,
    UploadFailed,
)
from apps.medical_history.gateway import HttpFileGateway
from apps.medical_history.persistence import HttpPatientRepository
from apps.medical_history.records import FileOwner
from apps.medical_history.temp_files import TemporaryFileStore
from tests.fakes import CLINIC_ID, DOC_A, DOC_B, PATIENT_ID, make_file

BASE_URL = 'http://storage.test/api/v1'


def json_response(status_code, body):
    response = Mock(status_code=status_code, text=str(body))
    response.json.return_value = body
    return response


@pytest.fixture
def http():
    return Mock(spec=requests.Session)


@pytest.fixture
def staged(config):
    return TemporaryFileStore(config).create(make_file('scan.pdf'), record_index=0)


class TestHttpFileGateway:

    def test_upload_posts_multipart(self, http, staged, config):
        http.post.return_value = json_response(201, {'fileRef': DOC_A, 'filename': 'scan.pdf'})
        gateway = HttpFileGateway(BASE_URL, session=http, config=config)

        file_ref = gateway.upload(staged, FileOwner(CLINIC_ID, PATIENT_ID))

        assert file_ref == DOC_A
        args, kwargs = http.post.call_args
        assert args[0] == f'{BASE_URL}/files/'
        assert kwargs['data'] == {'clinicId': CLINIC_ID, 'patientId': PATIENT_ID}
        assert kwargs['files']['file'] == ('scan.pdf', staged.read(), 'application/pdf')

    def test_upload_forwards_request_id(self, http, staged, config):
        http.post.return_value = json_response(201, {'fileRef': DOC_A})
        gateway = HttpFileGateway(BASE_URL, session=http, config=config)
        set_request_id('req-42')
        try:
            gateway.upload(staged, FileOwner(CLINIC_ID))
        finally:
            clear_request_context()

        assert http.post.call_args.kwargs['headers']['X-Request-ID'] == 'req-42'

    def test_upload_error_status(self, http, staged, config):
        http.post.return_value = json_response(400, {'error': 'Unsupported file type'})
        gateway = HttpFileGateway(BASE_URL, session=http, config=config)

        with pytest.raises(UploadFailed) as exc_info:
            gateway.upload(staged, FileOwner(CLINIC_ID))

        assert 'Unsupported file type' in exc_info.value.reason
        assert exc_info.value.temp_id == staged.id

    def test_upload_connection_error(self, http, staged, config):
        http.post.side_effect = requests.ConnectionError('refused')
        gateway = HttpFileGateway(BASE_URL, session=http, config=config)

        with pytest.raises(UploadFailed):
            gateway.upload(staged, FileOwner(CLINIC_ID))

    def test_upload_without_file_ref(self, http, staged, config):
        http.post.return_value = json_response(201, {})
        gateway = HttpFileGateway(BASE_URL, session=http, config=config)

        with pytest.raises(UploadFailed):
            gateway.upload(staged, FileOwner(CLINIC_ID))

    def test_delete(self, http, config):
        http.delete.return_value = json_response(200, {'success': True})
        gateway = HttpFileGateway(BASE_URL, session=http, config=config)

        gateway.delete(DOC_A)

        assert http.delete.call_args.kwargs['params'] == {'ref': DOC_A}

    def test_delete_failure(self, http, config):
        http.delete.return_value = json_response(502, {'success': False, 'error': 'Failed to delete file'})
        gateway = HttpFileGateway(BASE_URL, session=http, config=config)

        with pytest.raises(DeleteFailed) as exc_info:
            gateway.delete(DOC_A)

        assert exc_info.value.file_ref == DOC_A

    def test_batch_delete_maps_results(self, http, config):
        http.post.return_value = json_response(200, {
            'success': False,
            'results': [
                {'ref': DOC_A, 'success': True},
                {'ref': DOC_B, 'success': False, 'error': 'AccessDenied'},
            ],
        })
        gateway = HttpFileGateway(BASE_URL, session=http, config=config)

        result = gateway.batch_delete([DOC_A, DOC_B, DOC_A])

        assert http.post.call_args.kwargs['json'] == {'refs': [DOC_A, DOC_B]}
        assert result.succeeded == {DOC_A}
        assert result.failed == {DOC_B: 'AccessDenied'}

    def test_batch_delete_unreported_ref_counts_as_failed(self, http, config):
        http.post.return_value = json_response(200, {'success': True, 'results': [{'ref': DOC_A, 'success': True}]})
        gateway = HttpFileGateway(BASE_URL, session=http, config=config)

        result = gateway.batch_delete([DOC_A, DOC_B])

        assert DOC_B in result.failed

    def test_batch_delete_connection_error_fails_every_ref(self, http, config):
        http.post.side_effect = requests.Timeout('timed out')
        gateway = HttpFileGateway(BASE_URL, session=http, config=config)

        result = gateway.batch_delete([DOC_A, DOC_B])

        assert set(result.failed) == {DOC_A, DOC_B}
        assert not result.ok

    def test_batch_delete_empty_makes_no_call(self, http, config):
        gateway = HttpFileGateway(BASE_URL, session=http, config=config)

        assert gateway.batch_delete([]).ok
        http.post.assert_not_called()


class TestHttpPatientRepository:

    DOCUMENT = {
        'id': PATIENT_ID,
        'clinicId': CLINIC_ID,
        'name': 'Somchai Jaidee',
        'HN_code': 'HN-0001',
        'ID_code': '',
        'lastVisit': None,
        'history': [
            {'timestamp': '2024-03-01T09:00:00Z', 'notes': 'Follow-up', 'document_urls': [DOC_A]},
        ],
        'createdAt': '2024-01-01T00:00:00Z',
        'updatedAt': '2024-03-01T00:00:00Z',
    }

    def test_fetch_parses_document(self, http, config):
        http.get.return_value = json_response(200, self.DOCUMENT)
        repository = HttpPatientRepository(BASE_URL, session=http, config=config)

        patient = repository.fetch(CLINIC_ID, PATIENT_ID)

        assert http.get.call_args.args[0] == f'{BASE_URL}/patients/{PATIENT_ID}/'
        assert http.get.call_args.kwargs['params'] == {'clinicId': CLINIC_ID}
        assert patient.hn_code == 'HN-0001'
        assert patient.history[0].document_refs == [DOC_A]
        assert patient.history[0].notes == 'Follow-up'

    def test_fetch_not_found(self, http, config):
        http.get.return_value = json_response(404, {'error': 'Patient not found'})
        repository = HttpPatientRepository(BASE_URL, session=http, config=config)

        with pytest.raises(PatientNotFound):
            repository.fetch(CLINIC_ID, PATIENT_ID)

    def test_fetch_server_error(self, http, config):
        http.get.return_value = json_response(500, {})
        repository = HttpPatientRepository(BASE_URL, session=http, config=config)

        with pytest.raises(NetworkError):
            repository.fetch(CLINIC_ID, PATIENT_ID)

    def test_fetch_connection_error(self, http, config):
        http.get.side_effect = requests.ConnectionError('refused')
        repository = HttpPatientRepository(BASE_URL, session=http, config=config)

        with pytest.raises(NetworkError):
            repository.fetch(CLINIC_ID, PATIENT_ID)

    def test_update_sends_patch(self, http, config):
        http.patch.return_value = json_response(200, self.DOCUMENT)
        repository = HttpPatientRepository(BASE_URL, session=http, config=config)
        patch = {'name': 'Somchai Jaidee', 'HN_code': 'HN-0001', 'history': []}

        patient = repository.update(CLINIC_ID, PATIENT_ID, patch)

        assert http.patch.call_args.kwargs['json'] == patch
        assert patient.updated_at == '2024-03-01T00:00:00Z'

    def test_update_rejected(self, http, config):
        http.patch.return_value = json_response(400, {'error': 'Invalid patient data', 'details': {'name': ['required']}})
        repository = HttpPatientRepository(BASE_URL, session=http, config=config)

        with pytest.raises(PatientValidationError) as exc_info:
            repository.update(CLINIC_ID, PATIENT_ID, {'name': ''})

        assert exc_info.value.details == {'name': ['required']}

    def test_requires_base_url(self, config):
        with pytest.raises(ValueError):
            HttpPatientRepository(config=config.__class__())
