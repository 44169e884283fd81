"""
Google Cloud Storage helpers.
"""

import io
from typing import Dict, Optional, Tuple

from google.api_core import exceptions as gcs_exceptions
from google.cloud import storage


class GCSClient:
    """Thin wrapper around google-cloud-storage for simple byte upload/download."""

    def __init__(self, bucket_name: str, client: Optional[storage.Client] = None):
        self.client = client or storage.Client()
        self.bucket = self.client.bucket(bucket_name)

    def upload_bytes(
        self,
        data: bytes,
        dest_blob: str,
        content_type: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        blob = self.bucket.blob(dest_blob)
        if metadata:
            blob.metadata = metadata
        blob.upload_from_file(io.BytesIO(data), size=len(data), content_type=content_type)
        return f"gs://{self.bucket.name}/{dest_blob}"

    def download_bytes(self, blob_path: str) -> Optional[Tuple[bytes, Dict[str, str]]]:
        """
        Download gs://bucket/key (or a bare key) with its custom metadata.

        Returns None when the object does not exist.
        """
        blob = self._resolve_blob(blob_path)
        try:
            data = blob.download_as_bytes()
        except gcs_exceptions.NotFound:
            return None
        # metadata is only populated after a reload
        try:
            blob.reload()
        except gcs_exceptions.NotFound:
            return None
        return data, dict(blob.metadata or {})

    def delete(self, blob_path: str) -> bool:
        """Delete an object; False when it was already gone."""
        blob = self._resolve_blob(blob_path)
        try:
            blob.delete()
        except gcs_exceptions.NotFound:
            return False
        return True

    def exists(self, blob_path: str) -> bool:
        return self._resolve_blob(blob_path).exists()

    def _resolve_blob(self, blob_path: str):
        # blob_path can be full gs://... or key
        if blob_path.startswith("gs://"):
            parts = blob_path.replace("gs://", "").split("/", 1)
            if len(parts) != 2:
                raise ValueError(f"Invalid GCS path: {blob_path}")
            bucket_name, key = parts
            if bucket_name != self.bucket.name:
                raise ValueError(f"Bucket mismatch: expected {self.bucket.name}, got {bucket_name}")
            return self.bucket.blob(key)
        return self.bucket.blob(blob_path)
