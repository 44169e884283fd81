"""
Tests for the GCS wrapper with a mocked storage client.
"""

from unittest.mock import MagicMock

import pytest
from google.api_core import exceptions as gcs_exceptions

from medhistory.web.storage import GCSClient


@pytest.fixture
def storage_client():
    client = MagicMock()
    client.bucket.return_value.name = "clinic-pdfs"
    return client


@pytest.fixture
def gcs(storage_client):
    return GCSClient("clinic-pdfs", client=storage_client)


def _blob(gcs):
    return gcs.bucket.blob.return_value


def test_upload_sets_metadata(gcs):
    uri = gcs.upload_bytes(b"%PDF", "pdfs/abc.pdf", content_type="application/pdf", metadata={"filename": "a.pdf"})

    blob = _blob(gcs)
    gcs.bucket.blob.assert_called_with("pdfs/abc.pdf")
    assert blob.metadata == {"filename": "a.pdf"}
    blob.upload_from_file.assert_called_once()
    assert blob.upload_from_file.call_args.kwargs == {"size": 4, "content_type": "application/pdf"}
    assert uri == "gs://clinic-pdfs/pdfs/abc.pdf"


def test_download_returns_bytes_and_metadata(gcs):
    blob = _blob(gcs)
    blob.download_as_bytes.return_value = b"%PDF"
    blob.metadata = {"filename": "a.pdf"}

    assert gcs.download_bytes("pdfs/abc.pdf") == (b"%PDF", {"filename": "a.pdf"})
    blob.reload.assert_called_once()


def test_download_missing_object(gcs):
    _blob(gcs).download_as_bytes.side_effect = gcs_exceptions.NotFound("gone")

    assert gcs.download_bytes("pdfs/abc.pdf") is None


def test_download_full_uri(gcs):
    _blob(gcs).download_as_bytes.return_value = b"%PDF"
    _blob(gcs).metadata = None

    assert gcs.download_bytes("gs://clinic-pdfs/pdfs/abc.pdf") == (b"%PDF", {})
    gcs.bucket.blob.assert_called_with("pdfs/abc.pdf")


@pytest.mark.parametrize("path", ["gs://other-bucket/pdfs/abc.pdf", "gs://clinic-pdfs"])
def test_rejects_bad_uri(gcs, path):
    with pytest.raises(ValueError):
        gcs.download_bytes(path)


def test_delete(gcs):
    assert gcs.delete("pdfs/abc.pdf") is True

    _blob(gcs).delete.side_effect = gcs_exceptions.NotFound("gone")
    assert gcs.delete("pdfs/abc.pdf") is False


def test_exists(gcs):
    _blob(gcs).exists.return_value = True
    assert gcs.exists("pdfs/abc.pdf") is True
