from __future__ import annotations

import hashlib
import threading

import pytest
from pydantic import ValidationError

from modstore.schemas import BlobRef
from modstore.storage import BlobCache


def test_blob_cache_write_is_content_addressed(tmp_path) -> None:
    cache = BlobCache(tmp_path / "blobs")

    first = cache.write(b"mod archive bytes")
    second = cache.write(bytes(bytearray(b"mod archive bytes")))

    assert first == second
    assert first.digest == hashlib.sha256(b"mod archive bytes").hexdigest()
    assert [path.name for path in (tmp_path / "blobs").iterdir()] == [first.digest]


def test_blob_cache_get_path_returns_written_content(tmp_path) -> None:
    cache = BlobCache(tmp_path / "blobs")
    ref = cache.write(b"\x00\x01payload")

    path = cache.get_path(ref)

    assert path is not None
    assert path.read_bytes() == b"\x00\x01payload"
    assert path.name == ref.digest


def test_blob_cache_creates_directory_lazily(tmp_path) -> None:
    directory = tmp_path / "blobs"
    cache = BlobCache(directory)

    assert not directory.exists()
    assert cache.get_path(BlobRef(hashlib.sha256(b"x").hexdigest())) is None
    assert not directory.exists()

    cache.write(b"x")
    assert directory.is_dir()


def test_blob_cache_concurrent_writes_leave_single_file(tmp_path) -> None:
    cache = BlobCache(tmp_path / "blobs")
    refs: list[BlobRef] = []
    lock = threading.Lock()

    def _write() -> None:
        ref = cache.write(b"same bytes" * 1000)
        with lock:
            refs.append(ref)

    threads = [threading.Thread(target=_write) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(set(refs)) == 1
    files = list((tmp_path / "blobs").iterdir())
    assert [path.name for path in files] == [refs[0].digest]


def test_blob_ref_rejects_non_digest_names() -> None:
    digest = hashlib.sha256(b"x").hexdigest()

    with pytest.raises(ValidationError):
        BlobRef(f".{digest}")
    with pytest.raises(ValidationError):
        BlobRef("not-a-digest")
    assert BlobRef(digest.upper()).digest == digest
