"""
Value types for medical history edit sessions.

Patient and history records mirror the patient document served by the
patient API; pending operations are the ledger entries; the result classes
carry per-file diagnostics back to callers.
"""
import copy
import io
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone as dt_timezone
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple, Union

from django.utils.dateparse import parse_date, parse_datetime


TEMP_URL_SCHEME = 'temp://'


def coerce_timestamp(value) -> datetime:
    """
    Normalize a timestamp to an aware datetime.

    Accepts datetimes, dates and ISO-8601 strings. Naive values are UTC.
    """
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, date):
        result = datetime.combine(value, time.min)
    elif isinstance(value, str):
        result = parse_datetime(value)
        if result is None:
            parsed_date = parse_date(value)
            if parsed_date is None:
                raise ValueError(f"Invalid timestamp: {value!r}")
            result = datetime.combine(parsed_date, time.min)
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")

    if result.tzinfo is None:
        result = result.replace(tzinfo=dt_timezone.utc)
    return result


def isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(dt_timezone.utc).isoformat().replace('+00:00', 'Z')


class RecordStatus(str, Enum):
    ACTIVE = 'active'
    PENDING_DELETION = 'pending_deletion'


@dataclass(frozen=True)
class FileOwner:
    """Clinic/patient context attached to every upload."""
    clinic_id: str
    patient_id: Optional[str] = None


@dataclass
class UploadCandidate:
    """A file picked by the user, before it is staged."""
    name: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def size(self):
        return len(self.content)

    def read(self):
        return self.content


@dataclass(eq=False)
class TemporaryFile:
    """
    A picked file held in memory until it is uploaded or discarded.

    Identity is the ``id``; copies of a patient share the same handle.
    """
    id: str
    record_index: int
    display_name: str
    byte_size: int
    mime_type: str
    local_handle: Optional[io.BytesIO] = field(default=None, repr=False)
    released: bool = False

    @property
    def preview_url(self):
        return f"{TEMP_URL_SCHEME}{self.id}"

    def read(self) -> bytes:
        if self.released or self.local_handle is None:
            raise ValueError(f"Temporary file {self.id} has been released")
        return self.local_handle.getvalue()

    def __eq__(self, other):
        return isinstance(other, TemporaryFile) and other.id == self.id

    def __hash__(self):
        return hash(self.id)

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


FileRef = Union[str, TemporaryFile]


def ref_key(file_ref: FileRef) -> str:
    """Key used to match ledger entries that point at the same file."""
    if isinstance(file_ref, TemporaryFile):
        return file_ref.preview_url
    return file_ref


def is_temporary(file_ref: FileRef) -> bool:
    return isinstance(file_ref, TemporaryFile)


@dataclass
class HistoryRecord:
    timestamp: datetime
    notes: Optional[str] = None
    document_refs: List[FileRef] = field(default_factory=list)
    status: RecordStatus = RecordStatus.ACTIVE

    def __post_init__(self):
        self.timestamp = coerce_timestamp(self.timestamp)
        self.document_refs = list(self.document_refs or [])

    @property
    def is_active(self):
        return self.status == RecordStatus.ACTIVE

    def durable_refs(self) -> List[str]:
        return [ref for ref in self.document_refs if not is_temporary(ref)]

    def temporary_files(self) -> List[TemporaryFile]:
        return [ref for ref in self.document_refs if is_temporary(ref)]

    def to_document(self) -> dict:
        if self.temporary_files():
            raise ValueError("History record still holds files that were never uploaded")
        return {
            'timestamp': isoformat(self.timestamp),
            'notes': self.notes or '',
            'document_urls': list(self.document_refs),
        }

    @classmethod
    def from_document(cls, data: dict) -> 'HistoryRecord':
        return cls(
            timestamp=data['timestamp'],
            notes=data.get('notes') or None,
            document_refs=[ref for ref in data.get('document_urls') or [] if ref],
        )


@dataclass
class PatientRecord:
    id: str
    clinic_id: str
    name: str = ''
    hn_code: str = ''
    id_code: Optional[str] = None
    last_visit: Optional[datetime] = None
    history: List[HistoryRecord] = field(default_factory=list)
    created_at: Optional[str] = field(default=None, compare=False)
    updated_at: Optional[str] = field(default=None, compare=False)

    def active_history(self) -> List[HistoryRecord]:
        return [record for record in self.history if record.is_active]

    def to_payload(self) -> dict:
        """PATCH body for the patient service."""
        return {
            'name': self.name,
            'HN_code': self.hn_code,
            'ID_code': self.id_code or '',
            'lastVisit': isoformat(self.last_visit),
            'history': [record.to_document() for record in self.active_history()],
        }

    @classmethod
    def from_document(cls, data: dict, clinic_id: Optional[str] = None) -> 'PatientRecord':
        last_visit = data.get('lastVisit')
        return cls(
            id=str(data.get('id') or data.get('_id')),
            clinic_id=str(data.get('clinicId') or clinic_id or ''),
            name=data.get('name') or '',
            hn_code=data.get('HN_code') or '',
            id_code=data.get('ID_code') or None,
            last_visit=coerce_timestamp(last_visit) if last_visit else None,
            history=[HistoryRecord.from_document(item) for item in data.get('history') or []],
            created_at=data.get('createdAt'),
            updated_at=data.get('updatedAt'),
        )

    def clone(self) -> 'PatientRecord':
        return copy.deepcopy(self)


# ============================================================================
# Pending operations (ledger entries)
# ============================================================================

@dataclass
class AddDocument:
    """A file attached to a record, not yet durable in the saved document."""
    record_index: int
    file_ref: FileRef
    op_id: str
    sequence: int

    @property
    def is_temporary(self):
        return is_temporary(self.file_ref)

    @property
    def key(self):
        return ref_key(self.file_ref)


@dataclass
class RemoveDocument:
    """
    A document detached in the UI, remote copy still present.

    ``uploaded_in_session`` marks a file that was uploaded eagerly during
    this session and then removed again: it has to be deleted on rollback
    as well as on commit.
    """
    record_index: int
    document_index: int
    file_ref: str
    op_id: str
    sequence: int
    uploaded_in_session: bool = False

    @property
    def key(self):
        return ref_key(self.file_ref)


@dataclass
class RemoveRecord:
    """
    A whole record removed in the UI.

    ``file_refs`` are the durable files to delete on commit. ``superseded``
    holds the per-document entries this removal replaced, so an undo can
    restore them and commit/rollback can settle them.
    """
    record_index: int
    file_refs: Tuple[str, ...]
    op_id: str
    sequence: int
    superseded: Tuple[Union[AddDocument, RemoveDocument], ...] = ()


PendingOperation = Union[AddDocument, RemoveDocument, RemoveRecord]


# ============================================================================
# Results
# ============================================================================

@dataclass
class DeleteFailure:
    file_ref: str
    reason: str


@dataclass
class BatchDeleteResult:
    succeeded: Set[str] = field(default_factory=set)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self):
        return not self.failed

    def failures(self) -> List[DeleteFailure]:
        return [DeleteFailure(ref, reason) for ref, reason in sorted(self.failed.items())]


@dataclass
class CommitResult:
    uploaded: Dict[str, str] = field(default_factory=dict)
    durable_refs: Set[str] = field(default_factory=set)
    deleted: Set[str] = field(default_factory=set)
    delete_failures: List[DeleteFailure] = field(default_factory=list)


@dataclass
class RollbackResult:
    undone_uploads: Set[str] = field(default_factory=set)
    released: int = 0
    failures: List[DeleteFailure] = field(default_factory=list)


@dataclass
class SaveResult:
    patient: PatientRecord
    commit: CommitResult

    @property
    def delete_failures(self) -> List[DeleteFailure]:
        return self.commit.delete_failures
