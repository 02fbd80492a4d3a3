"""
Global test fixtures for pytest.

Provides reusable fixtures for API and edit-session testing:
- Authenticated API clients
- In-memory gateway/repository doubles (see tests/fakes.py)
- Sample patient documents
"""
import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from apps.medical_history.conf import get_config
from apps.medical_history.records import HistoryRecord, PatientRecord
from apps.medical_history.session import MedicalHistoryEditorSession
from apps.patients.models import Patient
from tests.fakes import (
    CLINIC_ID,
    DOC_A,
    DOC_B,
    DOC_C,
    PATIENT_ID,
    FakeFileGateway,
    FakePatientRepository,
    ts,
)


# ============================================================================
# API Clients
# ============================================================================

@pytest.fixture
def api_client():
    """Unauthenticated DRF API client."""
    return APIClient()


@pytest.fixture
def staff_user(db):
    User = get_user_model()
    return User.objects.create_user(
        username='reception',
        email='reception@test.com',
        password='testpass123',
        is_active=True
    )


@pytest.fixture
def authenticated_client(staff_user):
    """Authenticated API client."""
    client = APIClient()
    client.force_authenticate(user=staff_user)
    return client


# ============================================================================
# Edit sessions
# ============================================================================

@pytest.fixture
def patient_record():
    """Patient with two history records, newest first."""
    return PatientRecord(
        id=PATIENT_ID,
        clinic_id=CLINIC_ID,
        name='Somchai Jaidee',
        hn_code='HN-0001',
        id_code='1100000000001',
        history=[
            HistoryRecord(timestamp=ts('2024-03-01T09:00:00'), notes='Follow-up', document_refs=[DOC_A, DOC_B]),
            HistoryRecord(timestamp=ts('2024-01-05T09:00:00'), notes='First visit', document_refs=[DOC_C]),
        ],
    )


@pytest.fixture
def gateway():
    return FakeFileGateway(stored=[DOC_A, DOC_B, DOC_C])


@pytest.fixture
def repository(patient_record):
    return FakePatientRepository(patient_record)


@pytest.fixture
def config():
    return get_config()


@pytest.fixture
def session(repository, gateway, config):
    """Deferred-upload edit session on the sample patient."""
    return MedicalHistoryEditorSession.open(repository, gateway, CLINIC_ID, PATIENT_ID, config=config)


@pytest.fixture
def eager_session(repository, gateway, config):
    """Eager-upload edit session on the sample patient."""
    return MedicalHistoryEditorSession.open(
        repository, gateway, CLINIC_ID, PATIENT_ID,
        config=config, upload_strategy='eager'
    )


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
def db_patient(db):
    """Patient row in the database."""
    return Patient.objects.create(
        clinic_id=CLINIC_ID,
        name='Somchai Jaidee',
        hn_code='HN-0001',
        id_code='1100000000001',
        history=[
            {'timestamp': '2024-03-01T09:00:00Z', 'notes': 'Follow-up', 'document_urls': [DOC_A, DOC_B]},
        ],
    )
