"""
Medical History Editor Session.

One session per patient edit. It owns a working copy of the patient, a
snapshot of the loaded state, a PendingOperationLedger and a
TemporaryFileStore. Record edits are local; document edits go through the
ledger; nothing touches remote storage until ``save()`` (commit, then
persist) or ``discard()`` (rollback).

States:
    LOADING -> READY -> SAVING -> READY | CLOSED_SAVED
                     -> DISCARDING -> CLOSED_DISCARDED
"""
import logging
import threading
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from apps.core.observability import log_domain_event, metrics

from .conf import UPLOAD_STRATEGY_DEFERRED, UPLOAD_STRATEGY_EAGER, get_config
from .exceptions import (
    MedicalHistoryError,
    NetworkError,
    OperationInProgress,
    PartialUploadFailure,
    PatientNotFound,
    PatientValidationError,
    SessionClosed,
    ValidationFailed,
)
from .ledger import PendingOperationLedger
from .records import (
    CommitResult,
    FileOwner,
    FileRef,
    HistoryRecord,
    PatientRecord,
    RecordStatus,
    RollbackResult,
    SaveResult,
    TemporaryFile,
    coerce_timestamp,
    is_temporary,
)
from .temp_files import TemporaryFileStore

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    LOADING = 'loading'
    READY = 'ready'
    SAVING = 'saving'
    DISCARDING = 'discarding'
    CLOSED_SAVED = 'closed_saved'
    CLOSED_DISCARDED = 'closed_discarded'


class UploadStrategy(str, Enum):
    DEFERRED = UPLOAD_STRATEGY_DEFERRED
    EAGER = UPLOAD_STRATEGY_EAGER


CLOSED_STATES = (SessionState.CLOSED_SAVED, SessionState.CLOSED_DISCARDED)

ConfirmCallback = Callable[[str, int], bool]


def always_confirm(message: str, pending_file_count: int) -> bool:
    return True


def _sort_order(history: List[HistoryRecord]) -> List[int]:
    # sorted() keeps equal timestamps in list order, reverse=True included
    return sorted(range(len(history)), key=lambda i: history[i].timestamp, reverse=True)


class MedicalHistoryEditorSession:

    def __init__(self, gateway, repository, upload_strategy=None,
                 confirm: Optional[ConfirmCallback] = None, config=None):
        self.config = config or get_config()
        self.gateway = gateway
        self.repository = repository
        self.upload_strategy = UploadStrategy(upload_strategy or self.config.upload_strategy)
        self.confirm = confirm or always_confirm

        self.ledger = PendingOperationLedger()
        self.temp_store = TemporaryFileStore(self.config)

        self.original_patient: Optional[PatientRecord] = None
        self.working_patient: Optional[PatientRecord] = None
        self.state = SessionState.LOADING

        self._lock = threading.Lock()
        self._unpersisted_commit: Optional[CommitResult] = None

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def open(cls, repository, gateway, clinic_id: str, patient_id: str, **kwargs):
        """Fetch the patient and return a READY session."""
        session = cls(gateway, repository, **kwargs)
        session.load(clinic_id, patient_id)
        return session

    def load(self, clinic_id: str, patient_id: str) -> None:
        """
        Raises:
            PatientNotFound, NetworkError
        """
        if self.state != SessionState.LOADING:
            raise MedicalHistoryError("Session is already loaded")
        self.start(self.repository.fetch(clinic_id, patient_id))

    def start(self, patient: PatientRecord) -> None:
        """Begin editing an already fetched patient."""
        if self.state != SessionState.LOADING:
            raise MedicalHistoryError("Session is already loaded")

        patient = patient.clone()
        order = _sort_order(patient.history)
        patient.history = [patient.history[i] for i in order]

        self.original_patient = patient
        self.working_patient = patient.clone()
        self.state = SessionState.READY

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @property
    def owner(self) -> FileOwner:
        return FileOwner(clinic_id=self.working_patient.clinic_id, patient_id=self.working_patient.id)

    @property
    def history(self) -> List[HistoryRecord]:
        return self.working_patient.history

    @property
    def is_closed(self) -> bool:
        return self.state in CLOSED_STATES

    def _ensure_ready(self):
        if self.state in CLOSED_STATES:
            raise SessionClosed(f"Edit session is {self.state.value}")
        if self.state == SessionState.LOADING:
            raise MedicalHistoryError("Edit session has not been loaded")
        if self.state in (SessionState.SAVING, SessionState.DISCARDING):
            raise OperationInProgress(f"Edit session is {self.state.value}")

    def _record(self, index: int, active=True) -> HistoryRecord:
        if index < 0 or index >= len(self.history):
            raise IndexError(f"No history record at index {index}")
        record = self.history[index]
        if active and not record.is_active:
            raise MedicalHistoryError(f"History record {index} is marked for deletion")
        return record

    def _resort(self) -> Dict[int, int]:
        """Sort history newest first and move ledger entries along."""
        order = _sort_order(self.history)
        mapping = {old: new for new, old in enumerate(order)}
        if any(old != new for old, new in mapping.items()):
            self.working_patient.history = [self.history[i] for i in order]
            self.ledger.remap_records(mapping)
            self.temp_store.remap_records(mapping)
        return mapping

    def _is_persisted(self, file_ref) -> bool:
        """True when the saved patient already references ``file_ref``."""
        if is_temporary(file_ref):
            return False
        return any(file_ref in record.document_refs for record in self.original_patient.history)

    def _apply_uploads(self, uploaded: Dict[str, str]) -> None:
        """Swap staged files in the working copy for their durable refs."""
        if not uploaded:
            return
        for record in self.history:
            record.document_refs = [
                uploaded.get(ref.id, ref) if is_temporary(ref) else ref
                for ref in record.document_refs
            ]

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    def visible_records(self) -> List[Tuple[int, HistoryRecord]]:
        """(index, record) pairs for records not marked for deletion."""
        return [(index, record) for index, record in enumerate(self.history) if record.is_active]

    def has_unsaved_changes(self) -> bool:
        if self.working_patient is None:
            return False
        return self.working_patient != self.original_patient or self.ledger.pending_count() > 0

    def pending_file_count(self) -> int:
        return self.ledger.pending_file_count()

    def should_warn_before_unload(self) -> bool:
        return not self.is_closed and self.ledger.pending_count() > 0

    def unload_warning(self) -> Optional[str]:
        """Message for the host's blocking leave-page confirmation, if one is needed."""
        if not self.should_warn_before_unload():
            return None
        return (
            f"You have {self.pending_file_count()} pending file operation(s). "
            f"Leave without saving?"
        )

    # ------------------------------------------------------------------
    # Record verbs
    # ------------------------------------------------------------------

    def add_record(self, record: HistoryRecord) -> int:
        """
        Append a record and re-sort. Returns the record's new index.

        Attachments already on the record (staged through ``stage_file`` or
        uploaded eagerly) are tracked as pending adds.
        """
        self._ensure_ready()
        self.history.append(record)
        index = len(self.history) - 1
        for ref in record.document_refs:
            if is_temporary(ref):
                ref.record_index = index
            self.ledger.record_add(index, ref, persisted=self._is_persisted(ref))
        return self._resort()[index]

    def update_record(self, index: int, record: HistoryRecord) -> int:
        """Replace a record's date and notes. Attachments change only via the document verbs."""
        self._ensure_ready()
        current = self._record(index)
        current.notes = record.notes
        if current.timestamp != record.timestamp:
            current.timestamp = record.timestamp
            return self._resort()[index]
        return index

    def update_record_date(self, index: int, value) -> int:
        self._ensure_ready()
        self._record(index).timestamp = coerce_timestamp(value)
        return self._resort()[index]

    def update_record_notes(self, index: int, notes: Optional[str]) -> None:
        self._ensure_ready()
        self._record(index).notes = notes

    def remove_record(self, index: int, confirm: Optional[ConfirmCallback] = None) -> bool:
        """
        Mark a record for deletion after confirmation.

        The record stays in the working list, tagged PENDING_DELETION, until
        the session is saved or discarded. Returns False when the user
        declined.
        """
        self._ensure_ready()
        record = self._record(index, active=False)
        if not record.is_active:
            return True

        file_count = len(record.document_refs)
        message = (
            f"Delete this medical record? {file_count} attached file(s) "
            f"will be deleted when you save."
        )
        if not (confirm or self.confirm)(message, file_count):
            return False

        self.ledger.record_delete_entire_record(index, record.document_refs)
        record.status = RecordStatus.PENDING_DELETION
        return True

    def undo_record_deletion(self, index: int) -> bool:
        self._ensure_ready()
        record = self._record(index, active=False)
        if record.is_active:
            return False
        self.ledger.undo_record_deletion(index)
        record.status = RecordStatus.ACTIVE
        return True

    # ------------------------------------------------------------------
    # Document verbs
    # ------------------------------------------------------------------

    def stage_file(self, file, record_index: int = -1) -> TemporaryFile:
        """
        Validate and stage a file without attaching it yet.

        Used for attachments picked while a new record is being composed;
        pass the staged files in the record given to ``add_record``.
        Only valid with the deferred upload strategy.
        """
        self._ensure_ready()
        if self.upload_strategy != UploadStrategy.DEFERRED:
            raise MedicalHistoryError("Staging files requires the deferred upload strategy")
        return self.temp_store.create(file, record_index)

    def add_document(self, record_index: int, file) -> FileRef:
        """
        Attach a picked file to a record.

        Deferred strategy: the file is staged and uploaded on save.
        Eager strategy: the file is uploaded now; a discard deletes it.

        Raises:
            FileTooLarge, UnsupportedType, UploadFailed (eager only)
        """
        self._ensure_ready()
        record = self._record(record_index)
        temp_file = self.temp_store.create(file, record_index)

        if self.upload_strategy == UploadStrategy.DEFERRED:
            file_ref = temp_file
        else:
            try:
                file_ref = self.gateway.upload(temp_file, self.owner)
            finally:
                self.temp_store.release(temp_file)

        record.document_refs.append(file_ref)
        self.ledger.record_add(record_index, file_ref)
        return file_ref

    def remove_document(self, record_index: int, document_index: int) -> FileRef:
        """Detach a document; it disappears from the record immediately."""
        self._ensure_ready()
        record = self._record(record_index)
        if document_index < 0 or document_index >= len(record.document_refs):
            raise IndexError(f"No document at index {document_index} of record {record_index}")

        file_ref = record.document_refs.pop(document_index)
        self.ledger.record_remove(record_index, document_index, file_ref, temp_store=self.temp_store)
        return file_ref

    def restore_document(self, record_index: int, file_ref: str) -> None:
        """
        Re-attach a document whose removal is still pending on the same record.

        Raises:
            MedicalHistoryError: no removal of ``file_ref`` is pending for
                ``record_index``
        """
        self._ensure_ready()
        record = self._record(record_index)
        if not self.ledger.has_pending_removal(record_index, file_ref):
            raise MedicalHistoryError(
                f"No pending removal of {file_ref} on history record {record_index}"
            )
        record.document_refs.append(file_ref)
        self.ledger.record_add(record_index, file_ref, persisted=self._is_persisted(file_ref))

    # ------------------------------------------------------------------
    # Save / discard
    # ------------------------------------------------------------------

    def _validate(self) -> Dict[str, str]:
        errors = {}
        if not (self.working_patient.name or '').strip():
            errors['name'] = 'Name is required'
        if not (self.working_patient.hn_code or '').strip():
            errors['HN_code'] = 'HN code is required'
        return errors

    def save(self, close: bool = True) -> SaveResult:
        """
        Commit the ledger, then persist the patient document.

        A failed upload phase (PartialUploadFailure) or a failed persistence
        write leaves the session READY. In the second case the ledger is
        already committed, so a retry only repeats the write.

        Raises:
            ValidationFailed, PartialUploadFailure, NetworkError,
            PatientValidationError, PatientNotFound, OperationInProgress
        """
        self._ensure_ready()
        if not self._lock.acquire(blocking=False):
            raise OperationInProgress("A save or discard is already running")
        try:
            errors = self._validate()
            if errors:
                metrics.medical_history_saves_total.labels(result='validation_failed').inc()
                raise ValidationFailed(errors)

            self.state = SessionState.SAVING
            try:
                return self._save(close)
            finally:
                if self.state == SessionState.SAVING:
                    self.state = SessionState.READY
        finally:
            self._lock.release()

    def _save(self, close: bool) -> SaveResult:
        try:
            commit = self.ledger.commit(self.gateway, self.temp_store, self.owner)
        except PartialUploadFailure as e:
            self._apply_uploads(e.uploaded)
            metrics.medical_history_saves_total.labels(result='commit_failed').inc()
            raise

        self._apply_uploads(commit.uploaded)
        self.working_patient.history = [record for record in self.history if record.is_active]

        if self._unpersisted_commit is not None:
            previous = self._unpersisted_commit
            previous.uploaded.update(commit.uploaded)
            previous.durable_refs |= commit.durable_refs
            previous.deleted |= commit.deleted
            previous.delete_failures.extend(commit.delete_failures)
            commit = previous
        self._unpersisted_commit = commit

        patient = self.working_patient
        try:
            saved = self.repository.update(patient.clinic_id, patient.id, patient.to_payload())
        except (NetworkError, PatientValidationError, PatientNotFound) as e:
            metrics.medical_history_saves_total.labels(result='persist_failed').inc()
            logger.warning(
                "Patient write failed after ledger commit",
                extra={'patient_id': patient.id, 'clinic_id': patient.clinic_id, 'error': str(e)}
            )
            raise

        self._unpersisted_commit = None
        patient.created_at = saved.created_at
        patient.updated_at = saved.updated_at
        self.original_patient = patient.clone()
        self.ledger.clear()
        self.temp_store.clear()
        self.state = SessionState.CLOSED_SAVED if close else SessionState.READY

        metrics.medical_history_saves_total.labels(result='success').inc()
        log_domain_event(
            'medical_history_saved',
            entity_type='Patient',
            entity_id=patient.id,
            entity_ids={'clinic_id': patient.clinic_id},
            result='partial' if commit.delete_failures else 'success',
            history_count=len(patient.history),
            uploaded=len(commit.uploaded),
            deleted=len(commit.deleted),
            orphaned=len(commit.delete_failures),
        )
        return SaveResult(patient=patient.clone(), commit=commit)

    def discard(self, confirm: Optional[ConfirmCallback] = None) -> Optional[RollbackResult]:
        """
        Abandon the edit.

        Without unsaved changes the session closes at once. Otherwise the
        user must confirm; the ledger is rolled back and the working copy
        reset to the loaded snapshot. Returns None when the user declined.
        """
        self._ensure_ready()
        if not self._lock.acquire(blocking=False):
            raise OperationInProgress("A save or discard is already running")
        try:
            had_changes = self.has_unsaved_changes()
            if had_changes:
                pending = self.pending_file_count()
                message = (
                    f"Discard all changes? {pending} pending file operation(s) "
                    f"will be abandoned."
                )
                if not (confirm or self.confirm)(message, pending):
                    return None

            self.state = SessionState.DISCARDING
            result = self.ledger.rollback(self.gateway, self.temp_store)
            result.released += self.temp_store.clear()
            self.working_patient = self.original_patient.clone()
            self.state = SessionState.CLOSED_DISCARDED

            metrics.medical_history_discards_total.labels(had_changes=str(had_changes).lower()).inc()
            log_domain_event(
                'medical_history_discarded',
                entity_type='Patient',
                entity_id=self.working_patient.id,
                entity_ids={'clinic_id': self.working_patient.clinic_id},
                result='partial' if result.failures else 'success',
                undone_uploads=len(result.undone_uploads),
                orphaned=len(result.failures),
            )
            return result
        finally:
            self._lock.release()
