"""
Tests for GNOME Shell search provider discovery and fan-out.

Provider descriptors are real .ini files; the session bus is replaced by
an in-memory fake with per-provider behaviour.
"""

import threading
import time

import pytest

from conftest import write_desktop
from sifter.errors import ProviderError
from sifter.search.handlers.providers import (
    ProviderInfo,
    SearchProvidersHandler,
    discover_providers,
    parse_icon,
    parse_provider_file,
)
from sifter.search.router import ProviderResult


class FakeBus:
    """In-memory stand-in for sifter.services.bus.SessionBus."""

    def __init__(self, names=(), ids=None, metas=None, hang=(), fail=()):
        self.names = set(names)
        self.ids = ids or {}
        self.metas = metas or {}
        self.hang = set(hang)
        self.fail = set(fail)
        self.release = threading.Event()
        self.activations = []
        self.meta_requests = []
        self.list_calls = 0

    def list_names(self):
        self.list_calls += 1
        return self.names

    def get_initial_result_set(self, provider, terms, timeout_ms):
        if provider.bus_name in self.hang:
            self.release.wait(5)
            return []
        if provider.bus_name in self.fail:
            raise ProviderError(provider.bus_name, "org.freedesktop.DBus.Error.NoReply")
        return self.ids.get(provider.bus_name, [])

    def get_result_metas(self, provider, ids, timeout_ms):
        self.meta_requests.append((provider.bus_name, list(ids)))
        metas = self.metas.get(provider.bus_name, {})
        return [metas[i] for i in ids if i in metas]

    def activate_result(self, provider, result_id, terms, timestamp, timeout_ms):
        self.activations.append((provider.bus_name, result_id, tuple(terms)))


def provider(name):
    return ProviderInfo(bus_name=f"org.example.{name}", object_path=f"/org/example/{name}")


def handler_for(bus, providers, timeout_ms=3000):
    handler = SearchProvidersHandler(bus, directories=[], timeout_ms=timeout_ms)
    handler._providers = list(providers)
    return handler


ALL_NAMES = {"org.example.Alpha", "org.example.Beta", "org.example.Gamma", "org.example.Old"}


class TestParseProviderFile:

    def test_reads_version_two(self, provider_dir):
        info = parse_provider_file(provider_dir / "org.example.Alpha.search-provider.ini", app_dirs=[])
        assert info.bus_name == "org.example.Alpha"
        assert info.object_path == "/org/example/Alpha/SearchProvider"
        assert info.desktop_id == "org.example.Alpha.desktop"

    def test_rejects_other_versions(self, provider_dir):
        assert parse_provider_file(provider_dir / "old.search-provider.ini", app_dirs=[]) is None

    def test_name_and_icon_from_desktop_file(self, provider_dir, tmp_path):
        apps = tmp_path / "apps"
        write_desktop(apps, "org.example.Alpha.desktop", "Alpha Notes", "alpha", icon="alpha-icon")

        info = parse_provider_file(provider_dir / "org.example.Alpha.search-provider.ini", app_dirs=[apps])
        assert info.display_name == "Alpha Notes"
        assert info.icon == "alpha-icon"

    def test_falls_back_to_desktop_id(self, provider_dir):
        info = parse_provider_file(provider_dir / "org.example.Beta.search-provider.ini", app_dirs=[])
        assert info.display_name == "org.example.Beta"
        assert info.icon == ""


class TestDiscovery:
    """Finding reachable providers."""

    def test_discovers_in_file_order(self, provider_dir):
        providers = discover_providers(FakeBus(ALL_NAMES), [provider_dir], app_dirs=[])
        assert [p.bus_name for p in providers] == [
            "org.example.Alpha", "org.example.Beta", "org.example.Gamma",
        ]

    def test_blacklist_by_desktop_id(self, provider_dir):
        providers = discover_providers(
            FakeBus(ALL_NAMES), [provider_dir], blacklist=["org.example.Beta.desktop"], app_dirs=[],
        )
        assert "org.example.Beta" not in [p.bus_name for p in providers]

    def test_unreachable_providers_are_skipped(self, provider_dir):
        bus = FakeBus({"org.example.Alpha", "org.example.Gamma"})
        providers = discover_providers(bus, [provider_dir], app_dirs=[])
        assert [p.bus_name for p in providers] == ["org.example.Alpha", "org.example.Gamma"]

    def test_bus_listing_failure_keeps_all(self, provider_dir):
        class BrokenBus(FakeBus):
            def list_names(self):
                raise ProviderError("org.freedesktop.DBus", "ListNames failed")

        providers = discover_providers(BrokenBus(), [provider_dir], app_dirs=[])
        assert len(providers) == 3

    def test_missing_directory_is_ignored(self, tmp_path):
        assert discover_providers(FakeBus(ALL_NAMES), [tmp_path / "nope"], app_dirs=[]) == []

    def test_handler_discovers_once(self, provider_dir):
        bus = FakeBus(ALL_NAMES)
        handler = SearchProvidersHandler(bus, directories=[provider_dir], app_dirs=[])
        first = handler.providers
        bus.names = set()
        assert handler.providers is first

    def test_search_before_discovery_touches_nothing(self, provider_dir):
        bus = FakeBus(ALL_NAMES, ids={"org.example.Alpha": ["a1"]})
        handler = SearchProvidersHandler(bus, directories=[provider_dir], app_dirs=[])

        assert handler.search("x", per_provider_limit=10) == []
        assert bus.list_calls == 0
        assert bus.meta_requests == []

    def test_search_after_discovery_does_not_list_names(self, provider_dir):
        bus = FakeBus(
            ALL_NAMES,
            ids={"org.example.Alpha": ["a1"]},
            metas={"org.example.Alpha": {"a1": {"id": "a1", "name": "A"}}},
        )
        handler = SearchProvidersHandler(bus, directories=[provider_dir], app_dirs=[])

        handler.discover()
        assert bus.list_calls == 1

        results = handler.search("x", per_provider_limit=10)
        handler.search("y", per_provider_limit=10)
        assert [r.activation_id for r in results] == ["a1"]
        assert bus.list_calls == 1


class TestParseIcon:

    @pytest.mark.parametrize("value, icon", [
        ("firefox", "firefox"),
        ("file:///tmp/thumb.png", "/tmp/thumb.png"),
        (("themed-icon", {"names": ["text-x-generic", "text-x-generic-symbolic"]}), "text-x-generic"),
        (("file-icon", {"file": "file:///tmp/doc.png"}), "/tmp/doc.png"),
        (("file-icon", "/tmp/doc.png"), "/tmp/doc.png"),
        ("", None),
        (42, None),
    ])
    def test_forms(self, value, icon):
        assert parse_icon(value) == icon


class TestSearch:
    """Concurrent fan-out and merge."""

    def _bus(self, **kwargs):
        return FakeBus(
            ALL_NAMES,
            ids={
                "org.example.Alpha": ["a1", "a2", "a3"],
                "org.example.Beta": ["b1"],
                "org.example.Gamma": ["g1", "g2"],
            },
            metas={
                "org.example.Alpha": {
                    "a1": {"id": "a1", "name": "Alpha one", "description": "first"},
                    "a2": {"id": "a2", "name": "Alpha two", "gicon": "alpha-doc"},
                    "a3": {"id": "a3", "name": "Alpha three"},
                },
                "org.example.Beta": {"b1": {"id": "b1", "name": "Beta one"}},
                "org.example.Gamma": {
                    "g1": {"id": "g1", "name": "Gamma one"},
                    "g2": {"id": "g2"},
                },
            },
            **kwargs,
        )

    def test_merges_in_provider_order(self):
        bus = self._bus()
        handler = handler_for(bus, [provider("Alpha"), provider("Beta"), provider("Gamma")])

        results = handler.search("report q3", per_provider_limit=10)

        assert [r.activation_id for r in results] == ["a1", "a2", "a3", "b1", "g1", "g2"]
        assert all(isinstance(r, ProviderResult) for r in results)
        assert results[0].terms == ("report", "q3")
        assert results[0].description == "first"
        assert results[1].icon == "alpha-doc"
        assert results[-1].title == "g2"

    def test_per_provider_limit_applies_to_metas(self):
        bus = self._bus()
        handler = handler_for(bus, [provider("Alpha")])

        results = handler.search("x", per_provider_limit=2)

        assert [r.activation_id for r in results] == ["a1", "a2"]
        assert bus.meta_requests == [("org.example.Alpha", ["a1", "a2"])]

    def test_hanging_provider_does_not_block_others(self):
        bus = self._bus(hang={"org.example.Beta"})
        handler = handler_for(bus, [provider("Alpha"), provider("Beta"), provider("Gamma")], timeout_ms=300)

        started = time.monotonic()
        try:
            results = handler.search("x", per_provider_limit=10)
        finally:
            bus.release.set()
        elapsed = time.monotonic() - started

        assert elapsed < 2.0
        assert {r.provider.bus_name for r in results} == {"org.example.Alpha", "org.example.Gamma"}

    def test_failing_provider_contributes_nothing(self):
        bus = self._bus(fail={"org.example.Alpha"})
        handler = handler_for(bus, [provider("Alpha"), provider("Beta")])

        results = handler.search("x", per_provider_limit=10)
        assert [r.activation_id for r in results] == ["b1"]

    def test_blank_query_skips_bus(self):
        bus = self._bus()
        handler = handler_for(bus, [provider("Alpha")])
        assert handler.search("   ", per_provider_limit=10) == []
        assert bus.meta_requests == []

    def test_no_providers(self):
        handler = handler_for(self._bus(), [])
        assert handler.search("x", per_provider_limit=10) == []


class TestActivate:

    def test_activation_is_forwarded(self):
        bus = FakeBus()
        handler = handler_for(bus, [])
        result = ProviderResult(provider=provider("Alpha"), activation_id="a1", title="A", terms=("q",))

        handler.activate(result).result(timeout=5)
        handler.close()

        assert bus.activations == [("org.example.Alpha", "a1", ("q",))]

    def test_activation_failure_is_not_raised_to_caller(self):
        class FailingBus(FakeBus):
            def activate_result(self, *args):
                raise ProviderError("org.example.Alpha", "gone")

        handler = handler_for(FailingBus(), [])
        result = ProviderResult(provider=provider("Alpha"), activation_id="a1", title="A")

        future = handler.activate(result)
        assert isinstance(future.exception(timeout=5), ProviderError)
        handler.close()
