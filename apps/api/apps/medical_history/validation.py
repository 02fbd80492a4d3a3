"""
File validation shared by the temporary file store and the storage API.
"""
import mimetypes

from .exceptions import FileTooLarge, UnsupportedType


def file_extension(filename):
    filename = (filename or '').lower()
    return filename.rsplit('.', 1)[-1] if '.' in filename else ''


def guess_content_type(filename):
    content_type, _ = mimetypes.guess_type(filename or '')
    return content_type or 'application/octet-stream'


def mime_allowed(mime_type, allowed_mime_types):
    mime_type = (mime_type or '').lower()
    for allowed in allowed_mime_types:
        if allowed.endswith('/*'):
            if mime_type.startswith(allowed[:-1]):
                return True
        elif mime_type == allowed:
            return True
    return False


def validate_file(filename, byte_size, mime_type, config):
    """
    Check a file against the configured size limit and type allow-lists.

    Raises:
        FileTooLarge: size exceeds ``config.max_upload_bytes``
        UnsupportedType: extension or MIME type not allow-listed
    """
    if byte_size > config.max_upload_bytes:
        raise FileTooLarge(byte_size, config.max_upload_bytes)

    extension = file_extension(filename)
    if extension not in config.allowed_extensions:
        raise UnsupportedType(mime_type, extension)

    if not mime_allowed(mime_type, config.allowed_mime_types):
        raise UnsupportedType(mime_type, extension)
