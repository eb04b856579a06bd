from __future__ import annotations

from pathlib import Path

from modstore import ModResolution, ModSpecification, ModStore, UnresolvableStatus


def test_file_provider_resolves_local_file_without_copy(monkeypatch, tmp_path) -> None:
    monkeypatch.chdir(tmp_path)
    local = tmp_path / "local"
    local.mkdir()
    (local / "mod.zip").write_bytes(b"PK\x03\x04 local mod")

    store = ModStore(tmp_path / "cache")
    spec = ModSpecification(url="./local/mod.zip")

    result = store.resolve_mods([spec])

    info = result[spec]
    assert info.provider == "file"
    assert info.name == "mod.zip"
    assert info.status == UnresolvableStatus(name="mod.zip")
    assert info.versions == [spec]
    assert info.suggested_dependencies == []

    paths = store.fetch_mods_ordered([ModResolution(url="./local/mod.zip")])
    assert paths == [Path("./local/mod.zip")]
    assert not (tmp_path / "cache" / "blobs").exists()


def test_file_provider_offline_queries(tmp_path) -> None:
    archive = tmp_path / "pack.pak"
    archive.write_bytes(b"pak")
    store = ModStore(tmp_path / "cache")
    spec = ModSpecification(url=str(archive))

    assert store.is_pinned(spec) is True
    assert store.get_version_name(spec) == "latest"
    assert store.get_mod_info(spec).name == "pack.pak"
