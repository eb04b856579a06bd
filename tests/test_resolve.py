from __future__ import annotations

import pytest

from conftest import GraphProvider, specs
from modstore import ModSpecification, RedirectLoopError, ResolutionError


def test_resolve_mods_empty_input_returns_empty_map(make_store) -> None:
    provider = GraphProvider()
    store = make_store(provider)

    assert store.resolve_mods([]) == {}
    assert provider.resolve_calls == []


def test_resolve_mods_keys_by_original_spec_after_redirects(make_store) -> None:
    provider = GraphProvider(
        redirects={
            "fake://cool": "fake://cool@latest",
            "fake://cool@latest": "fake://cool@1.2.0",
        }
    )
    store = make_store(provider)

    result = store.resolve_mods(specs("fake://cool", "fake://other", "fake://cool"))

    assert set(result) == set(specs("fake://cool", "fake://other"))
    cool = result[ModSpecification(url="fake://cool")]
    assert cool.spec == ModSpecification(url="fake://cool@1.2.0")
    assert cool.resolution.url == "fake://cool@1.2.0"
    assert provider.resolve_calls.count("fake://cool") == 1


def test_resolve_mods_collects_transitive_dependencies(make_store) -> None:
    provider = GraphProvider(
        dependencies={
            "fake://app": ["fake://lib", "fake://util"],
            "fake://lib": ["fake://util", "fake://core"],
            "fake://core": [],
        }
    )
    store = make_store(provider)

    result = store.resolve_mods(specs("fake://app"))

    assert set(result) == set(specs("fake://app", "fake://lib", "fake://util", "fake://core"))
    for info in result.values():
        for dependency in info.suggested_dependencies:
            assert dependency in result
    assert sorted(provider.resolve_calls) == sorted(
        ["fake://app", "fake://lib", "fake://util", "fake://core"]
    )


def test_resolve_mods_terminates_on_dependency_cycles(make_store) -> None:
    provider = GraphProvider(
        dependencies={
            "fake://a": ["fake://b"],
            "fake://b": ["fake://a"],
        }
    )
    store = make_store(provider)

    result = store.resolve_mods(specs("fake://a"))

    assert set(result) == set(specs("fake://a", "fake://b"))
    assert provider.resolve_calls.count("fake://a") == 1


def test_resolve_mods_aborts_whole_batch_on_error(make_store) -> None:
    provider = GraphProvider(
        dependencies={"fake://app": ["fake://broken"]},
        failures={"fake://broken"},
    )
    store = make_store(provider)

    with pytest.raises(ResolutionError, match="backend exploded"):
        store.resolve_mods(specs("fake://app", "fake://fine"))


def test_resolve_mod_detects_redirect_cycles(make_store) -> None:
    provider = GraphProvider(
        redirects={
            "fake://x": "fake://y",
            "fake://y": "fake://x",
        }
    )
    store = make_store(provider)

    with pytest.raises(RedirectLoopError) as excinfo:
        store.resolve_mods(specs("fake://x"))
    assert excinfo.value.spec == ModSpecification(url="fake://x")


def test_resolve_mod_caps_redirect_chain_length(make_store) -> None:
    provider = GraphProvider(
        redirects={f"fake://v{index}": f"fake://v{index + 1}" for index in range(10)}
    )
    store = make_store(provider, max_redirects=3)

    with pytest.raises(RedirectLoopError, match="more than 3 redirects"):
        store.resolve_mod(ModSpecification(url="fake://v0"))

    original, info = make_store(provider).resolve_mod(ModSpecification(url="fake://v0"))
    assert original.url == "fake://v0"
    assert info.spec.url == "fake://v10"


def test_resolve_mods_limits_concurrency_window(make_store) -> None:
    provider = GraphProvider(delay_seconds=0.05)
    store = make_store(provider)

    urls = [f"fake://mod{index}" for index in range(12)]
    result = store.resolve_mods(specs(*urls))

    assert len(result) == 12
    assert 1 <= provider.max_active <= 5


def test_resolve_mods_keys_dependency_on_already_resolved_target(make_store) -> None:
    provider = GraphProvider(
        redirects={"fake://cool": "fake://cool@1"},
        dependencies={"fake://app": ["fake://cool@1"]},
    )
    store = make_store(provider)

    result = store.resolve_mods(specs("fake://cool", "fake://app"))

    assert set(result) == set(specs("fake://cool", "fake://app", "fake://cool@1"))
    cool = result[ModSpecification(url="fake://cool")]
    assert result[ModSpecification(url="fake://cool@1")] == cool
    for info in result.values():
        for dependency in info.suggested_dependencies:
            assert dependency in result
    assert provider.resolve_calls.count("fake://cool@1") == 1
