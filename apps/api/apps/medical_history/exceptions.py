"""
Error taxonomy for medical history edit sessions.

Per-file gateway failures (UploadFailed, DeleteFailed) are usually collected
into result objects rather than raised to the user; the session-level errors
(ValidationFailed, PartialUploadFailure, NetworkError, OperationInProgress)
propagate to the caller.
"""


class MedicalHistoryError(Exception):
    """Base class for all edit-session errors."""
    pass


class ValidationFailed(MedicalHistoryError):
    """Required patient fields are missing; fixable by editing."""

    def __init__(self, errors):
        self.errors = dict(errors)
        fields = ', '.join(sorted(self.errors))
        super().__init__(f"Patient validation failed: {fields}")


class FileRejected(MedicalHistoryError):
    """A picked file cannot be staged. Pick another file."""
    pass


class FileTooLarge(FileRejected):
    def __init__(self, byte_size, max_bytes):
        self.byte_size = byte_size
        self.max_bytes = max_bytes
        super().__init__(
            f"File size {byte_size} bytes exceeds maximum of "
            f"{max_bytes / (1024 * 1024):g}MB"
        )


class UnsupportedType(FileRejected):
    def __init__(self, mime_type, extension):
        self.mime_type = mime_type
        self.extension = extension
        super().__init__(
            f"Unsupported file type: extension={extension or '-'} mime={mime_type or '-'}"
        )


class UploadFailed(MedicalHistoryError):
    """A single upload to remote storage failed."""

    def __init__(self, reason, temp_id=None):
        self.reason = reason
        self.temp_id = temp_id
        super().__init__(f"Upload failed: {reason}")


class DeleteFailed(MedicalHistoryError):
    """A single remote delete failed."""

    def __init__(self, file_ref, reason):
        self.file_ref = file_ref
        self.reason = reason
        super().__init__(f"Delete failed for {file_ref}: {reason}")


class PartialUploadFailure(MedicalHistoryError):
    """
    The upload phase of a commit failed for at least one file.

    Nothing was deleted and the ledger still holds every entry, so the
    caller may retry the save or discard the session.
    """

    def __init__(self, failures, uploaded=None):
        self.failures = list(failures)
        self.uploaded = dict(uploaded or {})
        super().__init__(
            f"{len(self.failures)} file(s) failed to upload; "
            f"{len(self.uploaded)} uploaded before the failure"
        )


class NetworkError(MedicalHistoryError):
    """A remote service could not be reached or answered with a server error."""
    pass


class PatientNotFound(MedicalHistoryError):
    pass


class PatientValidationError(MedicalHistoryError):
    """The patient service rejected an update."""

    def __init__(self, message, details=None):
        self.details = details
        super().__init__(message)


class OperationInProgress(MedicalHistoryError):
    """A save or discard is already running for this session."""
    pass


class SessionClosed(MedicalHistoryError):
    """The edit session has already been saved-and-closed or discarded."""
    pass
