"""Tests for the blob storage backends."""

import pytest
from botocore.exceptions import ClientError

from vetscribe.services.errors import StorageWriteError
from vetscribe.services.storage import LocalBlobStorage, S3BlobStorage, settings


@pytest.fixture
def storage(tmp_path):
    return LocalBlobStorage(tmp_path / "blobs")


def test_write_and_read_back(storage):
    ref = storage.write_file(b"audio bytes", "dr-test/P1_Rex_20260101_120000_abcd1234.webm")

    with storage.open_file(ref) as f:
        assert f.read() == b"audio bytes"

    with storage.local_copy(ref) as path:
        assert path.read_bytes() == b"audio bytes"
    # The local backend hands out the stored file itself and keeps it.
    assert path.exists()


def test_delete_is_idempotent(storage):
    ref = storage.write_file(b"x", "a/b.webm")
    storage.delete_file(ref)
    storage.delete_file(ref)

    with pytest.raises(FileNotFoundError):
        storage.open_file(ref)


def test_write_failure_raises_storage_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_bytes(b"")
    storage = LocalBlobStorage(blocker)

    with pytest.raises(StorageWriteError):
        storage.write_file(b"x", "a/b.webm")


def test_health_check(storage):
    assert storage.health_check() is True
    assert storage.base_dir.is_dir()


def _client_error(operation: str) -> ClientError:
    return ClientError({"Error": {"Code": "500", "Message": "boom"}}, operation)


class FakeS3:
    """In-memory stand-in for the boto3 S3 client."""

    def __init__(self, fail_upload=False, fail_download=False):
        self.objects = {}
        self.fail_upload = fail_upload
        self.fail_download = fail_download

    def upload_fileobj(self, fileobj, bucket, key, ExtraArgs=None):
        if self.fail_upload:
            raise _client_error("PutObject")
        self.objects[(bucket, key)] = (fileobj.read(), (ExtraArgs or {}).get("ContentType"))

    def download_file(self, bucket, key, filename):
        if self.fail_download:
            raise _client_error("GetObject")
        with open(filename, "wb") as f:
            f.write(self.objects[(bucket, key)][0])

    def delete_object(self, Bucket, Key):
        self.objects.pop((Bucket, Key), None)

    def head_bucket(self, Bucket):
        return {}


@pytest.fixture
def s3_storage(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "conversion_dir", tmp_path / "conversion")
    storage = S3BlobStorage()
    storage._client = FakeS3()
    return storage


def test_s3_write_returns_key(s3_storage):
    key = "dr-test/P1_Rex_20260101_120000_abcd1234.webm"
    ref = s3_storage.write_file(b"audio bytes", key, "audio/webm")

    assert ref == key
    assert s3_storage.client.objects[(settings.minio_bucket, key)] == (b"audio bytes", "audio/webm")


def test_s3_write_failure_raises_storage_error(s3_storage):
    s3_storage._client = FakeS3(fail_upload=True)

    with pytest.raises(StorageWriteError):
        s3_storage.write_file(b"x", "a/b.webm")


def test_s3_local_copy_is_removed_afterwards(s3_storage, tmp_path):
    ref = s3_storage.write_file(b"audio bytes", "dr-test/visit.webm")

    with s3_storage.local_copy(ref) as path:
        assert path.name == "visit.webm"
        assert path.read_bytes() == b"audio bytes"
        assert path.parent.parent == tmp_path / "conversion"

    assert not path.parent.exists()
    assert list((tmp_path / "conversion").iterdir()) == []


def test_s3_failed_download_leaves_no_temp_dir(s3_storage, tmp_path):
    ref = s3_storage.write_file(b"audio bytes", "dr-test/visit.webm")
    s3_storage._client.fail_download = True

    with pytest.raises(ClientError):
        with s3_storage.local_copy(ref):
            pass

    assert list((tmp_path / "conversion").iterdir()) == []


def test_s3_delete_and_health(s3_storage):
    ref = s3_storage.write_file(b"x", "a/b.webm")
    s3_storage.delete_file(ref)

    assert s3_storage.client.objects == {}
    assert s3_storage.health_check() is True
