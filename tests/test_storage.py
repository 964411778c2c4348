import pytest

from app.studio.storage import LocalStorage, StorageError, clean_key, storage_from_config


def test_clean_key_rejects_traversal():
    assert clean_key("/kyc//author-1/selfie.png") == "kyc/author-1/selfie.png"
    for bad in ("", "../etc/passwd", "kyc/../../x", "kyc/./a"):
        with pytest.raises(StorageError):
            clean_key(bad)


def test_local_storage_round_trip(tmp_path):
    store = LocalStorage(root=tmp_path)
    store.put_bytes("kyc/author-1/doc_front-abc.png", b"png", content_type="image/png")
    assert store.exists("kyc/author-1/doc_front-abc.png")
    with store.open("kyc/author-1/doc_front-abc.png") as fh:
        assert fh.read() == b"png"
    # No temp files left behind.
    assert [p.name for p in (tmp_path / "kyc" / "author-1").iterdir()] == ["doc_front-abc.png"]

    assert not store.exists("kyc/author-1/missing.png")
    with pytest.raises(StorageError):
        store.open("kyc/author-1/missing.png")


def test_storage_from_config(tmp_path):
    store = storage_from_config({"STORAGE_BACKEND": "local", "STORAGE_DIR": str(tmp_path / "blobs")})
    assert isinstance(store, LocalStorage)
    assert store.root == (tmp_path / "blobs").resolve()
    with pytest.raises(RuntimeError):
        storage_from_config({"STORAGE_BACKEND": "ftp"})
