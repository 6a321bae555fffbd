import pytest

from app.marketplace.storage import LocalStorage, S3Storage, StorageError, storage_from_config


def test_local_storage_round_trip(tmp_path):
    storage = LocalStorage(root=tmp_path)
    storage.put_bytes("projects/1/client-brief/brief.pdf", b"%PDF-1.4")
    with storage.open("projects/1/client-brief/brief.pdf") as f:
        assert f.read() == b"%PDF-1.4"
    assert (tmp_path / "projects" / "1" / "client-brief" / "brief.pdf").exists()


def test_local_storage_rejects_missing_and_escaping_keys(tmp_path):
    storage = LocalStorage(root=tmp_path / "root")
    with pytest.raises(StorageError):
        storage.open("projects/1/missing.pdf")
    with pytest.raises(StorageError):
        storage.put_bytes("../outside.pdf", b"x")
    assert not (tmp_path / "outside.pdf").exists()


def test_storage_from_config(tmp_path):
    local = storage_from_config({"STORAGE_BACKEND": "local", "STORAGE_ROOT": str(tmp_path)})
    assert isinstance(local, LocalStorage)
    assert local.root == tmp_path

    s3 = storage_from_config({"STORAGE_BACKEND": "S3", "S3_BUCKET": "briefs", "S3_ENDPOINT": "nyc3.example.test"})
    assert isinstance(s3, S3Storage)
    assert s3.bucket == "briefs"
    assert s3.region == "nyc3"
