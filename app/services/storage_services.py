"""Object storage for uploaded documents.

The pipeline only needs two things from storage: read a document's bytes and
hand the client a signed URL to upload one. `DocumentStore` is that contract;
`MinioDocumentStore` is the production implementation.
"""

from datetime import timedelta
from typing import Optional, Protocol

from minio import Minio
from minio.error import S3Error

from app.core.config import settings
from app.core.observability import log_outbound_call
from app.services.base import BaseService
from app.services.exceptions import (
    DocumentDownloadError,
    DocumentNotFoundError,
    DocumentTooLargeError,
    StorageConfigurationError,
)
from app.schemas.job import JobKind


_NOT_FOUND_CODES = {"NoSuchKey", "NoSuchObject", "NoSuchBucket"}


def bucket_for(kind: JobKind) -> str:
    return settings.CALLSHEET_BUCKET if JobKind(kind) == JobKind.CALLSHEET else settings.DOCUMENT_BUCKET


class DocumentStore(Protocol):
    def download(self, bucket: str, path: str, max_bytes: Optional[int] = None) -> bytes:
        ...

    def create_upload_url(self, bucket: str, path: str, expires: timedelta) -> str:
        ...


class MinioDocumentStore(BaseService):
    """MinIO-backed document store."""

    def __init__(
        self,
        client: Optional[Minio] = None,
        public_client: Optional[Minio] = None,
        correlation_id: Optional[str] = None
    ):
        super().__init__(correlation_id)
        self._client = client
        self._public_client = public_client

    @property
    def client(self) -> Minio:
        if self._client is None:
            from app.api.dependencies.storage import get_minio_client
            self._client = get_minio_client()
        if self._client is None:
            raise StorageConfigurationError("MinIO client is not configured", correlation_id=self.correlation_id)
        return self._client

    @property
    def public_client(self) -> Minio:
        if self._public_client is None:
            from app.api.dependencies.storage import get_public_minio_client
            self._public_client = get_public_minio_client()
        return self._public_client

    def download(self, bucket: str, path: str, max_bytes: Optional[int] = None) -> bytes:
        """Read a whole object.

        Raises:
            DocumentTooLargeError: object is larger than `max_bytes`
            DocumentNotFoundError: object or bucket does not exist
            DocumentDownloadError: any other storage failure
        """
        try:
            if max_bytes is not None:
                stat = log_outbound_call("minio", f"{bucket}/{path}", "stat_object", self.correlation_id,
                                         lambda: self.client.stat_object(bucket, path))
                if stat.size is not None and stat.size > max_bytes:
                    raise DocumentTooLargeError(path, stat.size, max_bytes, correlation_id=self.correlation_id)

            def _read() -> bytes:
                response = self.client.get_object(bucket, path)
                try:
                    return response.read()
                finally:
                    response.close()
                    response.release_conn()

            data = log_outbound_call("minio", f"{bucket}/{path}", "get_object", self.correlation_id, _read)
        except S3Error as e:
            if e.code in _NOT_FOUND_CODES:
                raise DocumentNotFoundError(bucket, path, correlation_id=self.correlation_id) from e
            raise DocumentDownloadError(bucket, path, f"{e.code}: {e.message}", correlation_id=self.correlation_id) from e
        except (DocumentTooLargeError, StorageConfigurationError):
            raise
        except Exception as e:
            raise DocumentDownloadError(bucket, path, str(e), correlation_id=self.correlation_id) from e

        self.log_operation("document_downloaded", bucket=bucket, path=path, size_bytes=len(data))
        return data

    def create_upload_url(self, bucket: str, path: str, expires: timedelta) -> str:
        url = log_outbound_call(
            "minio", f"{bucket}/{path}", "presigned_put_object", self.correlation_id,
            lambda: self.public_client.presigned_put_object(bucket, path, expires=expires)
        )
        self.log_operation("upload_url_created", bucket=bucket, path=path, expires_seconds=int(expires.total_seconds()))
        return url
