"""
Remote Storage Adapters for Rule Files

Provides a unified download interface over the managed backend's object
storage and Google Cloud Storage, plus the local filesystem reader used as
fallback.

Supports both the managed backend (default) and Google Cloud Storage
(CSOS_RULES_STORAGE=gcs).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import requests

from csos.common.config import Settings
from csos.utils.error_handling import StorageError

logger = logging.getLogger(__name__)


class RemoteStorage(ABC):
    """Abstract base class for remote object storage."""

    @abstractmethod
    def download(self, bucket_name: str, file_path: str) -> bytes:
        """Download an object's raw bytes. Raises StorageError on failure."""
        pass


class BackendStorage(RemoteStorage):
    """Object storage exposed by the managed backend over HTTP."""

    def __init__(self, base_url: str, service_key: str, timeout: float = 10,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _object_url(self, bucket_name: str, file_path: str) -> str:
        return f"{self.base_url}/storage/v1/object/{quote(bucket_name)}/{quote(file_path.lstrip('/'))}"

    def download(self, bucket_name: str, file_path: str) -> bytes:
        url = self._object_url(bucket_name, file_path)
        headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
        }
        try:
            response = self.session.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise StorageError(f"Storage request for {bucket_name}/{file_path} failed: {e}") from e

        if response.status_code != 200:
            raise StorageError(
                f"Storage download of {bucket_name}/{file_path} returned HTTP "
                f"{response.status_code}: {response.text[:200]}"
            )
        logger.debug(f"Downloaded {bucket_name}/{file_path} ({len(response.content)} bytes)")
        return response.content


class CloudStorage(RemoteStorage):
    """Google Cloud Storage adapter."""

    def __init__(self, project: Optional[str] = None, client=None):
        if client is None:
            from google.cloud import storage
            client = storage.Client(project=project)
        self.client = client
        logger.info("Cloud Storage rule source initialized")

    def download(self, bucket_name: str, file_path: str) -> bytes:
        try:
            blob = self.client.bucket(bucket_name).blob(file_path)
            if not blob.exists():
                raise StorageError(f"gs://{bucket_name}/{file_path} not found")
            return blob.download_as_bytes()
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"GCS download of gs://{bucket_name}/{file_path} failed: {e}") from e


def read_text_file(path: str) -> str:
    """Read a local file as UTF-8 text. Raises OSError if it cannot be read."""
    return Path(path).read_text(encoding="utf-8")


def get_remote_storage(settings: Settings) -> RemoteStorage:
    """Get appropriate remote storage based on configuration."""
    if settings.rules_storage == "gcs":
        return CloudStorage(project=settings.gcs_project)
    return BackendStorage(
        settings.backend_url,
        settings.service_role_key,
        timeout=settings.request_timeout_seconds,
    )
