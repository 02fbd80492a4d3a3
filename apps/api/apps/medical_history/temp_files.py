"""
In-memory staging area for files picked during an edit session.

Nothing here talks to the network. Each handle is released exactly once,
either after a successful upload or when the session is discarded.
"""
import io
import logging
import uuid
from typing import Dict, List, Optional

from .conf import get_config
from .exceptions import FileTooLarge
from .records import TemporaryFile
from .validation import guess_content_type, validate_file

logger = logging.getLogger(__name__)


class TemporaryFileStore:

    def __init__(self, config=None):
        self.config = config or get_config()
        self._files: Dict[str, TemporaryFile] = {}

    def create(self, file, record_index: int) -> TemporaryFile:
        """
        Stage a picked file for ``record_index``.

        ``file`` needs ``name`` and ``read()``; ``content_type`` is optional
        and guessed from the name when missing.

        Raises:
            FileTooLarge, UnsupportedType
        """
        name = getattr(file, 'name', '') or ''
        declared_size = getattr(file, 'size', None)
        if isinstance(declared_size, int) and declared_size > self.config.max_upload_bytes:
            raise FileTooLarge(declared_size, self.config.max_upload_bytes)

        content = file.read()
        if isinstance(content, str):
            content = content.encode('utf-8')
        mime_type = (getattr(file, 'content_type', None) or guess_content_type(name)).lower()

        validate_file(name, len(content), mime_type, self.config)

        temp_file = TemporaryFile(
            id=f"tmp_{uuid.uuid4().hex}",
            record_index=record_index,
            display_name=name,
            byte_size=len(content),
            mime_type=mime_type,
            local_handle=io.BytesIO(content),
        )
        self._files[temp_file.id] = temp_file

        logger.debug(
            "Temporary file staged",
            extra={'temp_id': temp_file.id, 'record_index': record_index, 'byte_size': temp_file.byte_size}
        )
        return temp_file

    def release(self, temp_file: TemporaryFile) -> None:
        """Free the in-memory buffer. A second release is a no-op."""
        if temp_file.released:
            logger.debug("Temporary file already released", extra={'temp_id': temp_file.id})
            return

        if temp_file.local_handle is not None:
            temp_file.local_handle.close()
        temp_file.local_handle = None
        temp_file.released = True
        self._files.pop(temp_file.id, None)

    def get(self, temp_id: str) -> Optional[TemporaryFile]:
        return self._files.get(temp_id)

    def for_record(self, record_index: int) -> List[TemporaryFile]:
        return [f for f in self._files.values() if f.record_index == record_index]

    def pending(self) -> List[TemporaryFile]:
        return list(self._files.values())

    def remap_records(self, mapping: Dict[int, int]) -> None:
        """Follow records to their new positions after a re-sort."""
        for temp_file in self._files.values():
            temp_file.record_index = mapping.get(temp_file.record_index, temp_file.record_index)

    def clear(self) -> int:
        """Release every live handle. Returns how many were released."""
        live = list(self._files.values())
        for temp_file in live:
            self.release(temp_file)
        return len(live)

    def __len__(self):
        return len(self._files)

    def __contains__(self, temp_file):
        return getattr(temp_file, 'id', temp_file) in self._files
