"""
Tests for the pending operation ledger.

Covers cancellation rules, the one-entry-per-file invariant, record
removal supersession, commit ordering and rollback of eager uploads.
"""
import pytest

from apps.medical_history.exceptions import PartialUploadFailure
from apps.medical_history.ledger import PendingOperationLedger
from apps.medical_history.records import (
    AddDocument,
    FileOwner,
    RemoveDocument,
    RemoveRecord,
)
from apps.medical_history.temp_files import TemporaryFileStore
from tests.fakes import CLINIC_ID, DOC_A, DOC_B, DOC_C, PATIENT_ID, FakeFileGateway, make_file

OWNER = FileOwner(clinic_id=CLINIC_ID, patient_id=PATIENT_ID)


@pytest.fixture
def ledger():
    return PendingOperationLedger()


@pytest.fixture
def temp_store(config):
    return TemporaryFileStore(config)


class TestCancellation:

    def test_add_then_remove_temp_file_cancels(self, ledger, temp_store, gateway):
        temp_file = temp_store.create(make_file(), record_index=0)

        ledger.record_add(0, temp_file)
        ledger.record_remove(0, 2, temp_file, temp_store=temp_store)

        assert ledger.pending_count() == 0
        assert temp_file.released

        ledger.commit(gateway, temp_store, OWNER)
        assert gateway.call_count == 0

    def test_remove_then_readd_durable_cancels(self, ledger, gateway, temp_store):
        ledger.record_remove(0, 0, DOC_A)
        ledger.record_add(0, DOC_A)

        assert ledger.pending_count() == 0
        assert not ledger.is_pending_deletion(DOC_A)

        ledger.commit(gateway, temp_store, OWNER)
        assert gateway.call_count == 0

    def test_persisted_file_is_never_an_add(self, ledger, gateway, temp_store):
        assert ledger.record_add(1, DOC_A, persisted=True) is None
        assert ledger.pending_count() == 0
        assert ledger.has_pending_removal(1, DOC_A) is False

        ledger.rollback(gateway, temp_store)
        assert gateway.deletes == []

    def test_has_pending_removal_is_per_record(self, ledger):
        ledger.record_remove(0, 0, DOC_A)

        assert ledger.has_pending_removal(0, DOC_A)
        assert not ledger.has_pending_removal(1, DOC_A)

    def test_eager_upload_then_remove_becomes_session_upload_removal(self, ledger):
        ledger.record_add(0, 'clinics/clinic-1/0001_new.pdf')
        entry = ledger.record_remove(0, 2, 'clinics/clinic-1/0001_new.pdf')

        assert isinstance(entry, RemoveDocument)
        assert entry.uploaded_in_session
        assert ledger.pending_count() == 1

    def test_readding_session_upload_is_an_add_again(self, ledger):
        ref = 'clinics/clinic-1/0001_new.pdf'
        ledger.record_add(0, ref)
        ledger.record_remove(0, 2, ref)

        entry = ledger.record_add(0, ref)

        assert isinstance(entry, AddDocument)
        assert ledger.entries == (entry,)


class TestOneEntryPerFile:

    @pytest.mark.parametrize('calls', [
        ['add', 'add'],
        ['remove', 'remove'],
        ['add', 'remove', 'add'],
        ['remove', 'add', 'remove'],
        ['add', 'remove', 'add', 'remove', 'remove'],
    ])
    def test_at_most_one_entry(self, ledger, calls):
        for call in calls:
            if call == 'add':
                ledger.record_add(0, DOC_A)
            else:
                ledger.record_remove(0, 0, DOC_A)

        matching = [
            entry for entry in ledger.entries
            if entry.record_index == 0 and entry.file_ref == DOC_A
        ]
        assert len(matching) <= 1

    def test_same_file_in_different_records_is_tracked_separately(self, ledger):
        ledger.record_remove(0, 0, DOC_A)
        ledger.record_remove(1, 0, DOC_A)

        assert ledger.pending_count() == 2


class TestRecordRemoval:

    def test_supersedes_document_entries(self, ledger, temp_store):
        temp_file = temp_store.create(make_file(), record_index=0)
        ledger.record_add(0, temp_file)
        ledger.record_remove(0, 1, DOC_B)

        entry = ledger.record_delete_entire_record(0, [DOC_A, temp_file])

        assert isinstance(entry, RemoveRecord)
        assert ledger.entries == (entry,)
        assert set(entry.file_refs) == {DOC_A, DOC_B}
        assert len(entry.superseded) == 2
        assert ledger.is_record_marked_for_deletion(0)
        assert ledger.is_pending_deletion(DOC_B)

    def test_undo_restores_superseded_entries(self, ledger):
        ledger.record_remove(0, 1, DOC_B)
        ledger.record_delete_entire_record(0, [DOC_A])

        ledger.undo_record_deletion(0)

        assert not ledger.is_record_marked_for_deletion(0)
        assert len(ledger.entries) == 1
        assert ledger.entries[0].file_ref == DOC_B

    def test_undo_without_removal_is_noop(self, ledger):
        assert ledger.undo_record_deletion(3) is None

    def test_commit_deletes_each_file_once(self, ledger, gateway, temp_store):
        ledger.record_remove(0, 1, DOC_B)
        ledger.record_delete_entire_record(0, [DOC_A, DOC_B])

        result = ledger.commit(gateway, temp_store, OWNER)

        assert sorted(gateway.deletes) == sorted([DOC_A, DOC_B])
        assert result.deleted == {DOC_A, DOC_B}

    def test_commit_releases_superseded_temp_files(self, ledger, gateway, temp_store):
        temp_file = temp_store.create(make_file(), record_index=0)
        ledger.record_add(0, temp_file)
        ledger.record_delete_entire_record(0, [temp_file])

        ledger.commit(gateway, temp_store, OWNER)

        assert temp_file.released
        assert gateway.uploads == []


class TestCommit:

    def test_uploads_then_deletes(self, ledger, gateway, temp_store):
        temp_file = temp_store.create(make_file('new.pdf'), record_index=0)
        ledger.record_add(0, temp_file)
        ledger.record_remove(1, 0, DOC_C)

        result = ledger.commit(gateway, temp_store, OWNER)

        assert gateway.uploads == ['new.pdf']
        assert gateway.deletes == [DOC_C]
        new_ref = result.uploaded[temp_file.id]
        assert result.durable_refs == {new_ref}
        assert new_ref in gateway.stored
        assert temp_file.released
        assert ledger.pending_count() == 0

    def test_upload_failure_deletes_nothing(self, ledger, gateway, temp_store):
        good = temp_store.create(make_file('good.pdf'), record_index=0)
        bad = temp_store.create(make_file('bad.pdf'), record_index=0)
        gateway.fail_uploads.add('bad.pdf')
        ledger.record_add(0, good)
        ledger.record_add(0, bad)
        ledger.record_remove(1, 0, DOC_C)

        with pytest.raises(PartialUploadFailure) as exc_info:
            ledger.commit(gateway, temp_store, OWNER)

        assert gateway.deletes == []
        assert DOC_C in gateway.stored
        assert [f.temp_id for f in exc_info.value.failures] == [bad.id]
        assert good.id in exc_info.value.uploaded
        assert ledger.pending_count() == 3
        assert not bad.released

    def test_retry_after_upload_failure_does_not_reupload(self, ledger, gateway, temp_store):
        good = temp_store.create(make_file('good.pdf'), record_index=0)
        bad = temp_store.create(make_file('bad.pdf'), record_index=0)
        gateway.fail_uploads.add('bad.pdf')
        ledger.record_add(0, good)
        ledger.record_add(0, bad)
        with pytest.raises(PartialUploadFailure):
            ledger.commit(gateway, temp_store, OWNER)

        gateway.fail_uploads.clear()
        ledger.commit(gateway, temp_store, OWNER)

        assert gateway.uploads == ['good.pdf', 'bad.pdf', 'bad.pdf']

    def test_partial_delete_failure_does_not_fail_commit(self, ledger, gateway, temp_store):
        refs = [f'clinics/clinic-1/patients/patient-1/{i}_doc.pdf' for i in range(5)]
        gateway.stored.update(refs)
        gateway.fail_deletes.add(refs[2])
        for i, ref in enumerate(refs):
            ledger.record_remove(0, i, ref)

        result = ledger.commit(gateway, temp_store, OWNER)

        assert len(result.deleted) == 4
        assert [f.file_ref for f in result.delete_failures] == [refs[2]]
        assert result.delete_failures[0].reason == 'access denied'
        assert ledger.pending_count() == 0


class TestRollback:

    def test_removals_are_dropped_without_network_calls(self, ledger, gateway, temp_store):
        ledger.record_remove(0, 0, DOC_A)
        ledger.record_delete_entire_record(1, [DOC_C])

        result = ledger.rollback(gateway, temp_store)

        assert gateway.call_count == 0
        assert result.failures == []
        assert ledger.pending_count() == 0

    def test_eager_uploads_are_deleted(self, ledger, gateway, temp_store):
        uploaded = 'clinics/clinic-1/patients/patient-1/0001_new.pdf'
        removed_again = 'clinics/clinic-1/patients/patient-1/0002_other.pdf'
        gateway.stored.update([uploaded, removed_again])
        ledger.record_add(0, uploaded)
        ledger.record_add(0, removed_again)
        ledger.record_remove(0, 3, removed_again)

        result = ledger.rollback(gateway, temp_store)

        assert sorted(gateway.deletes) == sorted([uploaded, removed_again])
        assert result.undone_uploads == {uploaded, removed_again}

    def test_stashed_entries_are_settled(self, ledger, gateway, temp_store):
        temp_file = temp_store.create(make_file(), record_index=0)
        eager_ref = 'clinics/clinic-1/patients/patient-1/0001_new.pdf'
        ledger.record_add(0, temp_file)
        ledger.record_add(0, eager_ref)
        ledger.record_delete_entire_record(0, [DOC_A, temp_file, eager_ref])

        result = ledger.rollback(gateway, temp_store)

        assert temp_file.released
        assert result.released == 1
        assert gateway.deletes == [eager_ref]

    def test_delete_failures_are_reported_not_raised(self, ledger, gateway, temp_store):
        ref = 'clinics/clinic-1/patients/patient-1/0001_new.pdf'
        gateway.fail_deletes.add(ref)
        ledger.record_add(0, ref)

        result = ledger.rollback(gateway, temp_store)

        assert [f.file_ref for f in result.failures] == [ref]
        assert ledger.pending_count() == 0


def test_remap_moves_entries_and_stash(ledger):
    ledger.record_remove(0, 0, DOC_A)
    ledger.record_remove(1, 0, DOC_C)
    ledger.record_delete_entire_record(1, [DOC_C])

    ledger.remap_records({0: 1, 1: 0})

    assert ledger.is_record_marked_for_deletion(0)
    assert [op.file_ref for op in ledger.operations_for_record(1)] == [DOC_A]
    ledger.undo_record_deletion(0)
    assert [op.record_index for op in ledger.entries if op.file_ref == DOC_C] == [0]


def test_pending_file_count(ledger, temp_store):
    ledger.record_add(0, temp_store.create(make_file(), record_index=0))
    ledger.record_remove(0, 0, DOC_A)
    ledger.record_delete_entire_record(1, [DOC_B, DOC_C])

    assert ledger.pending_count() == 3
    assert ledger.pending_file_count() == 4
