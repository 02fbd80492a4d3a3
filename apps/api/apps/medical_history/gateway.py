"""
Remote File Gateway: upload/delete against the storage service.

``RemoteFileGateway`` is the contract the ledger depends on.
``HttpFileGateway`` speaks the storage API:

- POST   {base}/files/               multipart upload  -> {"fileRef": ...}
- DELETE {base}/files/?ref=<ref>                       -> {"success": bool}
- POST   {base}/files/batch-delete/  {"refs": [...]}   -> {"success", "results": [...]}

No call is retried here; retries are the caller's decision.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Iterable

import requests

from apps.core.observability import metrics
from apps.core.observability.correlation import REQUEST_ID_HEADER, get_request_id

from .conf import get_config
from .exceptions import DeleteFailed, NetworkError, UploadFailed
from .records import BatchDeleteResult, FileOwner, TemporaryFile

logger = logging.getLogger(__name__)


class RemoteFileGateway:
    """
    Contract for remote file storage.

    Subclasses implement ``upload`` and ``delete``. ``batch_delete`` fans
    ``delete`` out over a thread pool unless a subclass has a native batch
    endpoint.
    """

    max_workers = 4

    def upload(self, file: TemporaryFile, owner: FileOwner) -> str:
        """Upload a staged file. Returns the durable file ref or raises UploadFailed."""
        raise NotImplementedError

    def delete(self, file_ref: str) -> None:
        """Delete one remote file or raise DeleteFailed."""
        raise NotImplementedError

    def batch_delete(self, file_refs: Iterable[str]) -> BatchDeleteResult:
        """
        Best-effort delete of many files.

        A failure on one ref never stops the others; the result lists
        what succeeded and why the rest failed.
        """
        refs = list(dict.fromkeys(file_refs))
        result = BatchDeleteResult()
        if not refs:
            return result

        with ThreadPoolExecutor(max_workers=max(1, min(self.max_workers, len(refs)))) as executor:
            futures = {executor.submit(self.delete, ref): ref for ref in refs}
            for future in as_completed(futures):
                ref = futures[future]
                try:
                    future.result()
                    result.succeeded.add(ref)
                except DeleteFailed as e:
                    result.failed[ref] = e.reason
                except NetworkError as e:
                    result.failed[ref] = str(e)

        return result


def _json_body(response):
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _error_message(response):
    body = _json_body(response)
    if body.get('error'):
        return f"HTTP {response.status_code}: {body['error']}"
    return f"HTTP {response.status_code}: {response.text[:200]}"


class HttpFileGateway(RemoteFileGateway):
    """Gateway backed by the storage HTTP API."""

    def __init__(self, base_url=None, session=None, timeout=None, headers=None, config=None):
        config = config or get_config()
        self.base_url = (base_url or config.api_base_url or '').rstrip('/')
        if not self.base_url:
            raise ValueError("HttpFileGateway needs a base_url or MEDICAL_HISTORY['API_BASE_URL']")
        self.session = session or requests.Session()
        self.timeout = timeout or config.http_timeout
        self.headers = dict(headers or {})
        self.max_workers = config.delete_workers

    def _headers(self):
        headers = dict(self.headers)
        request_id = get_request_id()
        if request_id:
            headers[REQUEST_ID_HEADER] = request_id
        return headers

    def upload(self, file: TemporaryFile, owner: FileOwner) -> str:
        data = {'clinicId': owner.clinic_id}
        if owner.patient_id:
            data['patientId'] = owner.patient_id
        files = {'file': (file.display_name, file.read(), file.mime_type)}

        try:
            response = self.session.post(
                f"{self.base_url}/files/",
                data=data,
                files=files,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            metrics.file_gateway_calls_total.labels(operation='upload', result='error').inc()
            raise UploadFailed(str(e), temp_id=file.id) from e

        if response.status_code not in (200, 201):
            metrics.file_gateway_calls_total.labels(operation='upload', result='failure').inc()
            raise UploadFailed(_error_message(response), temp_id=file.id)

        file_ref = _json_body(response).get('fileRef')
        if not file_ref:
            metrics.file_gateway_calls_total.labels(operation='upload', result='failure').inc()
            raise UploadFailed("storage response carried no fileRef", temp_id=file.id)

        metrics.file_gateway_calls_total.labels(operation='upload', result='success').inc()
        logger.info("File uploaded", extra={'temp_id': file.id, 'file_ref': file_ref})
        return file_ref

    def delete(self, file_ref: str) -> None:
        try:
            response = self.session.delete(
                f"{self.base_url}/files/",
                params={'ref': file_ref},
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            metrics.file_gateway_calls_total.labels(operation='delete', result='error').inc()
            raise DeleteFailed(file_ref, str(e)) from e

        if response.status_code != 200 or not _json_body(response).get('success'):
            metrics.file_gateway_calls_total.labels(operation='delete', result='failure').inc()
            raise DeleteFailed(file_ref, _error_message(response))

        metrics.file_gateway_calls_total.labels(operation='delete', result='success').inc()

    def batch_delete(self, file_refs: Iterable[str]) -> BatchDeleteResult:
        refs = list(dict.fromkeys(file_refs))
        result = BatchDeleteResult()
        if not refs:
            return result

        try:
            response = self.session.post(
                f"{self.base_url}/files/batch-delete/",
                json={'refs': refs},
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            metrics.file_gateway_calls_total.labels(operation='batch_delete', result='error').inc()
            result.failed = {ref: str(e) for ref in refs}
            return result

        reported = _json_body(response).get('results')
        if response.status_code >= 400 and not reported:
            metrics.file_gateway_calls_total.labels(operation='batch_delete', result='failure').inc()
            reason = _error_message(response)
            result.failed = {ref: reason for ref in refs}
            return result

        for item in reported or []:
            ref = item.get('ref')
            if ref not in refs:
                continue
            if item.get('success'):
                result.succeeded.add(ref)
            else:
                result.failed[ref] = item.get('error') or 'delete failed'

        for ref in refs:
            if ref not in result.succeeded and ref not in result.failed:
                result.failed[ref] = 'no result reported by storage service'

        metrics.file_gateway_calls_total.labels(
            operation='batch_delete',
            result='success' if result.ok else 'partial',
        ).inc()
        return result
