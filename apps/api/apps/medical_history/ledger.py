"""
Pending Operation Ledger.

Tracks document-level intents that have not reached remote storage yet:

- AddDocument:    a file attached to a record (staged or eagerly uploaded)
- RemoveDocument: an existing document detached from a record
- RemoveRecord:   a whole record removed, carrying its attachments

Invariants:
- at most one Add/Remove entry per (record_index, file) pair; adding then
  removing the same uncommitted file cancels both entries
- a RemoveRecord owns every per-document entry of its record (they are
  stashed on it, not left in the ledger)
- commit uploads everything before deleting anything
- rollback never raises because of a remote failure
"""
import itertools
import logging
import uuid
from typing import Dict, Iterable, List, Optional, Tuple

from apps.core.observability import log_domain_event, log_orphaned_file, metrics

from .exceptions import MedicalHistoryError, PartialUploadFailure, UploadFailed
from .records import (
    AddDocument,
    BatchDeleteResult,
    CommitResult,
    FileOwner,
    FileRef,
    PendingOperation,
    RemoveDocument,
    RemoveRecord,
    RollbackResult,
    TemporaryFile,
    is_temporary,
    ref_key,
)

logger = logging.getLogger(__name__)


class PendingOperationLedger:

    def __init__(self):
        self._entries: List[PendingOperation] = []
        self._sequence = itertools.count(1)

    # ------------------------------------------------------------------
    # Bookkeeping helpers
    # ------------------------------------------------------------------

    def _new_ids(self, prefix):
        sequence = next(self._sequence)
        return f"{prefix}_{sequence}_{uuid.uuid4().hex[:8]}", sequence

    def _find(self, kind, record_index, key=None):
        for entry in self._entries:
            if not isinstance(entry, kind) or entry.record_index != record_index:
                continue
            if key is None or entry.key == key:
                return entry
        return None

    @property
    def entries(self) -> Tuple[PendingOperation, ...]:
        return tuple(self._entries)

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    def record_add(self, record_index: int, file_ref: FileRef,
                   persisted: bool = False) -> Optional[AddDocument]:
        """
        Track a file attached to ``record_index``.

        Re-adding a file whose removal is pending cancels that removal and
        records nothing. A ``persisted`` file (one the saved patient already
        references) is never tracked as an add: rollback deletes adds, and a
        saved file must survive a discard. Returns the live AddDocument
        entry, or None when nothing was recorded.
        """
        key = ref_key(file_ref)

        pending_remove = self._find(RemoveDocument, record_index, key)
        if pending_remove is not None:
            self._entries.remove(pending_remove)
            if pending_remove.uploaded_in_session:
                # The file was uploaded earlier in this session; it is an add again.
                return self._append_add(record_index, file_ref)
            logger.debug(
                "Re-added document cancels pending removal",
                extra={'record_index': record_index, 'file_ref': key}
            )
            return None

        existing = self._find(AddDocument, record_index, key)
        if existing is not None:
            return existing

        if persisted:
            return None

        return self._append_add(record_index, file_ref)

    def _append_add(self, record_index, file_ref):
        op_id, sequence = self._new_ids('add')
        entry = AddDocument(record_index=record_index, file_ref=file_ref, op_id=op_id, sequence=sequence)
        self._entries.append(entry)
        return entry

    def record_remove(self, record_index: int, document_index: int, file_ref: FileRef,
                      temp_store=None) -> Optional[RemoveDocument]:
        """
        Track a document detached from ``record_index``.

        When the file was added in this session and never uploaded, both
        entries cancel and the staged file is released right away: no
        network call is ever made for it. An eagerly uploaded file becomes
        a removal that must be deleted whether the session is saved or
        discarded.

        Add-then-remove leaving no entry behind holds only for files that
        were never uploaded; an uploaded one leaves a single RemoveDocument
        so the remote copy is not orphaned.
        """
        key = ref_key(file_ref)

        pending_add = self._find(AddDocument, record_index, key)
        if pending_add is not None:
            self._entries.remove(pending_add)
            if pending_add.is_temporary:
                if temp_store is not None:
                    temp_store.release(pending_add.file_ref)
                logger.debug(
                    "Removed staged document cancels pending add",
                    extra={'record_index': record_index, 'file_ref': key}
                )
                return None
            return self._append_remove(record_index, document_index, pending_add.file_ref,
                                       uploaded_in_session=True)

        existing = self._find(RemoveDocument, record_index, key)
        if existing is not None:
            return existing

        if is_temporary(file_ref):
            # Staged file with no add entry: nothing remote to delete.
            if temp_store is not None:
                temp_store.release(file_ref)
            return None

        return self._append_remove(record_index, document_index, file_ref)

    def _append_remove(self, record_index, document_index, file_ref, uploaded_in_session=False):
        op_id, sequence = self._new_ids('remove')
        entry = RemoveDocument(
            record_index=record_index,
            document_index=document_index,
            file_ref=file_ref,
            op_id=op_id,
            sequence=sequence,
            uploaded_in_session=uploaded_in_session,
        )
        self._entries.append(entry)
        return entry

    def record_delete_entire_record(self, record_index: int, file_refs: Iterable[FileRef]) -> RemoveRecord:
        """
        Track removal of a whole record.

        Per-document entries of the record are superseded and stashed on
        the new entry, so each remote file is deleted at most once.
        """
        existing = self._find(RemoveRecord, record_index)
        if existing is not None:
            return existing

        superseded = [
            entry for entry in self._entries
            if isinstance(entry, (AddDocument, RemoveDocument)) and entry.record_index == record_index
        ]
        for entry in superseded:
            self._entries.remove(entry)

        refs = [ref for ref in file_refs if not is_temporary(ref)]
        refs.extend(entry.file_ref for entry in superseded if isinstance(entry, RemoveDocument))
        refs.extend(
            entry.file_ref for entry in superseded
            if isinstance(entry, AddDocument) and not entry.is_temporary
        )

        op_id, sequence = self._new_ids('remove_record')
        entry = RemoveRecord(
            record_index=record_index,
            file_refs=tuple(dict.fromkeys(refs)),
            op_id=op_id,
            sequence=sequence,
            superseded=tuple(superseded),
        )
        self._entries.append(entry)
        return entry

    def undo_record_deletion(self, record_index: int) -> Optional[RemoveRecord]:
        """Drop the record removal and restore the entries it superseded."""
        entry = self._find(RemoveRecord, record_index)
        if entry is None:
            return None

        self._entries.remove(entry)
        self._entries.extend(entry.superseded)
        self._entries.sort(key=lambda e: e.sequence)
        return entry

    def remap_records(self, mapping: Dict[int, int]) -> None:
        """Move entries along with their records after a re-sort."""
        for entry in self._entries:
            entry.record_index = mapping.get(entry.record_index, entry.record_index)
            if isinstance(entry, RemoveRecord):
                for stashed in entry.superseded:
                    stashed.record_index = mapping.get(stashed.record_index, stashed.record_index)

    def clear(self) -> None:
        self._entries = []

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    def is_pending_deletion(self, file_ref: FileRef) -> bool:
        key = ref_key(file_ref)
        for entry in self._entries:
            if isinstance(entry, RemoveDocument) and entry.key == key:
                return True
            if isinstance(entry, RemoveRecord) and key in entry.file_refs:
                return True
        return False

    def has_pending_removal(self, record_index: int, file_ref: FileRef) -> bool:
        return self._find(RemoveDocument, record_index, ref_key(file_ref)) is not None

    def is_record_marked_for_deletion(self, record_index: int) -> bool:
        return self._find(RemoveRecord, record_index) is not None

    def pending_count(self) -> int:
        return len(self._entries)

    def pending_deletions(self) -> List[Tuple[int, str]]:
        """(record_index, file_ref) for every file that will be deleted on commit."""
        deletions = []
        for entry in self._entries:
            if isinstance(entry, RemoveDocument):
                deletions.append((entry.record_index, entry.file_ref))
            elif isinstance(entry, RemoveRecord):
                deletions.extend((entry.record_index, ref) for ref in entry.file_refs)
        return deletions

    def pending_uploads(self) -> List[TemporaryFile]:
        return [
            entry.file_ref for entry in self._entries
            if isinstance(entry, AddDocument) and entry.is_temporary
        ]

    def operations_for_record(self, record_index: int) -> List[PendingOperation]:
        return [entry for entry in self._entries if entry.record_index == record_index]

    def pending_file_count(self) -> int:
        """Number of files a save or discard would touch."""
        return len(self.pending_deletions()) + len([
            entry for entry in self._entries if isinstance(entry, AddDocument)
        ])

    # ------------------------------------------------------------------
    # Commit / rollback
    # ------------------------------------------------------------------

    @metrics.track_duration(metrics.ledger_commit_duration_seconds)
    def commit(self, gateway, temp_store, owner: FileOwner) -> CommitResult:
        """
        Apply every pending intent to remote storage.

        Upload phase first: staged files are uploaded and their entries
        become durable adds. If any upload fails, PartialUploadFailure is
        raised before anything is deleted and the ledger keeps its entries
        (already uploaded ones stay durable so a retry does not repeat them).

        Deletion phase: one best-effort batch delete. Failures are returned
        in ``delete_failures`` and logged as orphaned files; they do not fail
        the commit.
        """
        result = CommitResult()
        failures: List[UploadFailed] = []

        for entry in self._entries:
            if not isinstance(entry, AddDocument) or not entry.is_temporary:
                continue
            temp_file = entry.file_ref
            try:
                file_ref = gateway.upload(temp_file, owner)
            except UploadFailed as e:
                e.temp_id = e.temp_id or temp_file.id
                failures.append(e)
                continue
            entry.file_ref = file_ref
            result.uploaded[temp_file.id] = file_ref
            temp_store.release(temp_file)

        if failures:
            metrics.ledger_commits_total.labels(result='partial_upload_failure').inc()
            log_domain_event(
                'ledger_commit_aborted',
                entity_type='PatientHistory',
                entity_ids={'clinic_id': owner.clinic_id, 'patient_id': owner.patient_id or '-'},
                result='failure',
                failed_uploads=len(failures),
                uploaded=len(result.uploaded),
            )
            raise PartialUploadFailure(failures, uploaded=result.uploaded)

        to_delete = []
        for entry in self._entries:
            if isinstance(entry, RemoveDocument):
                to_delete.append(entry.file_ref)
            elif isinstance(entry, RemoveRecord):
                to_delete.extend(entry.file_refs)
                for stashed in entry.superseded:
                    if isinstance(stashed, AddDocument) and stashed.is_temporary:
                        temp_store.release(stashed.file_ref)

        batch = gateway.batch_delete(to_delete) if to_delete else BatchDeleteResult()
        result.deleted = set(batch.succeeded)
        result.delete_failures = batch.failures()
        for failure in result.delete_failures:
            metrics.orphaned_files_total.labels(phase='commit').inc()
            log_orphaned_file(failure.file_ref, failure.reason, phase='commit')

        result.durable_refs = {
            entry.file_ref for entry in self._entries if isinstance(entry, AddDocument)
        }

        self._entries = []
        metrics.ledger_commits_total.labels(result='success').inc()
        log_domain_event(
            'ledger_committed',
            entity_type='PatientHistory',
            entity_ids={'clinic_id': owner.clinic_id, 'patient_id': owner.patient_id or '-'},
            result='partial' if result.delete_failures else 'success',
            uploaded=len(result.uploaded),
            deleted=len(result.deleted),
            orphaned=len(result.delete_failures),
        )
        return result

    def rollback(self, gateway, temp_store) -> RollbackResult:
        """
        Abandon every pending intent.

        Staged files are released; files uploaded during the session are
        deleted again (best effort). Removals are simply dropped since
        nothing was deleted yet. Entries are cleared whatever happens.
        """
        result = RollbackResult()
        to_undo = []

        def settle(entry):
            if isinstance(entry, AddDocument):
                if entry.is_temporary:
                    temp_store.release(entry.file_ref)
                    result.released += 1
                else:
                    to_undo.append(entry.file_ref)
            elif isinstance(entry, RemoveDocument) and entry.uploaded_in_session:
                to_undo.append(entry.file_ref)

        for entry in self._entries:
            if isinstance(entry, RemoveRecord):
                for stashed in entry.superseded:
                    settle(stashed)
            else:
                settle(entry)

        self._entries = []

        if to_undo:
            try:
                batch = gateway.batch_delete(to_undo)
            except MedicalHistoryError as e:
                batch = BatchDeleteResult(failed={ref: str(e) for ref in to_undo})
            result.undone_uploads = set(batch.succeeded)
            result.failures = batch.failures()

        for failure in result.failures:
            metrics.orphaned_files_total.labels(phase='rollback').inc()
            log_orphaned_file(failure.file_ref, failure.reason, phase='rollback')

        metrics.ledger_rollbacks_total.labels(
            result='with_failures' if result.failures else 'clean'
        ).inc()
        log_domain_event(
            'ledger_rolled_back',
            entity_type='PatientHistory',
            result='partial' if result.failures else 'success',
            released=result.released,
            undone_uploads=len(result.undone_uploads),
            orphaned=len(result.failures),
        )
        return result
