"""
In-memory doubles for the remote file gateway and the patient repository.
"""
import threading
from datetime import datetime, timezone

from apps.medical_history.exceptions import DeleteFailed, PatientNotFound, UploadFailed
from apps.medical_history.gateway import RemoteFileGateway
from apps.medical_history.persistence import PatientRepository
from apps.medical_history.records import PatientRecord, UploadCandidate


CLINIC_ID = 'clinic-1'
PATIENT_ID = 'patient-1'

DOC_A = f'clinics/{CLINIC_ID}/patients/{PATIENT_ID}/aaaa_lab.pdf'
DOC_B = f'clinics/{CLINIC_ID}/patients/{PATIENT_ID}/bbbb_xray.png'
DOC_C = f'clinics/{CLINIC_ID}/patients/{PATIENT_ID}/cccc_referral.pdf'


class FakeFileGateway(RemoteFileGateway):
    """
    Gateway double that keeps files in a set and records every call.

    ``fail_uploads`` holds display names whose upload fails; ``fail_deletes``
    holds refs whose delete fails.
    """

    def __init__(self, stored=None):
        self.stored = set(stored or [])
        self.uploads = []
        self.deletes = []
        self.fail_uploads = set()
        self.fail_deletes = set()
        self._lock = threading.Lock()
        self._counter = 0

    @property
    def call_count(self):
        return len(self.uploads) + len(self.deletes)

    def upload(self, file, owner):
        with self._lock:
            self.uploads.append(file.display_name)
            if file.display_name in self.fail_uploads:
                raise UploadFailed('storage unavailable', temp_id=file.id)
            self._counter += 1
            file_ref = f"clinics/{owner.clinic_id}/patients/{owner.patient_id}/{self._counter:04d}_{file.display_name}"
            self.stored.add(file_ref)
            return file_ref

    def delete(self, file_ref):
        with self._lock:
            self.deletes.append(file_ref)
            if file_ref in self.fail_deletes:
                raise DeleteFailed(file_ref, 'access denied')
            self.stored.discard(file_ref)


class FakePatientRepository(PatientRepository):

    def __init__(self, *patients):
        self.patients = {patient.id: patient.clone() for patient in patients}
        self.fetches = []
        self.updates = []
        self.fail_next_update = None

    @property
    def call_count(self):
        return len(self.fetches) + len(self.updates)

    def fetch(self, clinic_id, patient_id):
        self.fetches.append(patient_id)
        patient = self.patients.get(patient_id)
        if patient is None or patient.clinic_id != clinic_id:
            raise PatientNotFound(f"Patient {patient_id} not found")
        return patient.clone()

    def update(self, clinic_id, patient_id, patch):
        self.updates.append(patch)
        if self.fail_next_update is not None:
            error, self.fail_next_update = self.fail_next_update, None
            raise error
        stored = PatientRecord.from_document(
            dict(patch, id=patient_id, clinicId=clinic_id, updatedAt='2024-06-01T00:00:00Z')
        )
        self.patients[patient_id] = stored
        return stored.clone()


def make_file(name='scan.pdf', size=1024, content_type='application/pdf'):
    return UploadCandidate(name=name, content=b'x' * size, content_type=content_type)


def ts(value):
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)
