"""
Search Providers Handler - GNOME Shell search providers over D-Bus.

Triggered by ":s <terms>". Providers are discovered once per session
from their .ini descriptors (Version=2 only), filtered by the settings
blacklist and by what the session bus can actually reach.

A search fans out one worker per provider:
  1. GetInitialResultSet(terms) -> result ids
  2. GetResultMetas(ids[:limit]) -> titles, descriptions, icons

Each provider gets its own timeout budget covering both calls. A provider
that errors or runs out of time contributes nothing and never holds up
the others. Results are merged in discovery order, keeping each
provider's own ordering.
"""

import configparser
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from loguru import logger

from sifter.errors import ProviderError
from sifter.search.router import ProviderResult
from sifter.services.desktop_entries import parse_desktop_file
from sifter.utils.helpers import expand_home

PROVIDER_DIRS = [
    "/usr/share/gnome-shell/search-providers",
    "~/.local/share/gnome-shell/search-providers",
]

APPLICATION_DIRS = [
    "/usr/share/applications",
    "~/.local/share/applications",
    "/usr/local/share/applications",
]

PROVIDER_SECTION = "Shell Search Provider"


@dataclass(frozen=True)
class ProviderInfo:
    """A reachable search provider."""
    bus_name: str
    object_path: str
    display_name: str = ""
    icon: str = ""
    desktop_id: str = ""


def parse_provider_file(path: Path, app_dirs: Sequence = APPLICATION_DIRS) -> Optional[ProviderInfo]:
    """Read one search-provider .ini file. Only Version=2 providers are supported."""
    parser = configparser.ConfigParser(interpolation=None, strict=False)
    parser.optionxform = str
    try:
        parser.read(path, encoding="utf-8")
    except (configparser.Error, UnicodeDecodeError, OSError) as e:
        logger.debug(f"Skipping unreadable provider file {path}: {e}")
        return None

    if not parser.has_section(PROVIDER_SECTION):
        return None
    section = parser[PROVIDER_SECTION]

    if section.get("Version", "").strip() != "2":
        return None
    bus_name = section.get("BusName", "").strip()
    object_path = section.get("ObjectPath", "").strip()
    desktop_id = section.get("DesktopId", "").strip()
    if not bus_name or not object_path or not desktop_id:
        return None

    display_name, icon = _resolve_desktop_id(desktop_id, app_dirs)
    return ProviderInfo(
        bus_name=bus_name,
        object_path=object_path,
        display_name=display_name,
        icon=icon,
        desktop_id=desktop_id,
    )


def _resolve_desktop_id(desktop_id: str, app_dirs: Sequence) -> tuple[str, str]:
    """Name and icon of the provider's application, from its .desktop file."""
    filename = desktop_id if desktop_id.endswith(".desktop") else f"{desktop_id}.desktop"
    for directory in app_dirs:
        record = parse_desktop_file(expand_home(str(directory)) / filename)
        if record is not None:
            return record["name"], record["icon"]
    return filename[:-len(".desktop")], ""


def discover_providers(
    bus,
    directories: Sequence = PROVIDER_DIRS,
    blacklist: Sequence = (),
    app_dirs: Sequence = APPLICATION_DIRS,
) -> list[ProviderInfo]:
    """
    Find installed providers that the session bus can reach.

    Args:
        bus: Bus collaborator (see sifter.services.bus.SessionBus)
        directories: Directories holding provider .ini files, in order
        blacklist: Desktop ids to exclude
        app_dirs: Where to look up provider names and icons

    Returns:
        Providers in directory order, then file name order
    """
    providers = []
    seen = set()
    for directory in directories:
        directory = expand_home(str(directory))
        if not directory.is_dir():
            continue
        for path in sorted(directory.glob("*.ini")):
            provider = parse_provider_file(path, app_dirs)
            if provider is None or provider.desktop_id in blacklist:
                continue
            if provider.bus_name in seen:
                continue
            seen.add(provider.bus_name)
            providers.append(provider)

    if not providers:
        return []

    try:
        reachable = bus.list_names()
    except ProviderError as e:
        logger.warning(f"Cannot list bus names, keeping all providers: {e}")
        return providers

    available = [p for p in providers if p.bus_name in reachable]
    for provider in providers:
        if provider.bus_name not in reachable:
            logger.debug(f"Provider {provider.bus_name} is not on the bus, skipping")
    return available


def parse_icon(value) -> Optional[str]:
    """
    Extract an icon from an unpacked serialized GIcon.

    Handles plain names, file:// URIs, ("themed-icon", names) and
    ("file-icon", path) forms. Returns a themed name or a file path.
    """
    if isinstance(value, str):
        if value.startswith("file://"):
            return value[len("file://"):]
        if value and " " not in value:
            return value
        return None

    if isinstance(value, (tuple, list)) and len(value) >= 2 and isinstance(value[0], str):
        kind, payload = value[0], value[1]
        if kind == "themed-icon":
            return _first_name(payload)
        if kind == "file-icon":
            return _file_path(payload)

    if isinstance(value, (tuple, list)):
        for item in value:
            icon = parse_icon(item)
            if icon:
                return icon
    return None


def _first_name(payload) -> Optional[str]:
    if isinstance(payload, str):
        return payload or None
    if isinstance(payload, dict):
        names = payload.get("names")
        if names is not None:
            return _first_name(names)
        for value in payload.values():
            name = _first_name(value)
            if name:
                return name
        return None
    if isinstance(payload, (list, tuple)):
        for item in payload:
            if isinstance(item, str) and item:
                return item
    return None


def _file_path(payload) -> Optional[str]:
    if isinstance(payload, str):
        return payload[len("file://"):] if payload.startswith("file://") else (payload or None)
    if isinstance(payload, dict):
        if "file" in payload:
            return _file_path(payload["file"])
        for value in payload.values():
            path = _file_path(value)
            if path:
                return path
    return None


class SearchProvidersHandler:
    """Fan-out/fan-in client for GNOME Shell search providers."""

    name = "providers"

    def __init__(
        self,
        bus,
        directories: Sequence = PROVIDER_DIRS,
        blacklist: Sequence = (),
        timeout_ms: int = 3000,
        app_dirs: Sequence = APPLICATION_DIRS,
    ):
        self.bus = bus
        self.directories = list(directories)
        self.blacklist = tuple(blacklist)
        self.timeout_ms = timeout_ms
        self.app_dirs = list(app_dirs)
        self._providers: Optional[list[ProviderInfo]] = None
        self._lock = threading.Lock()
        self._activation_pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="sifter-activate")

    def discover(self) -> list[ProviderInfo]:
        """
        Read the provider descriptors and check which names are on the bus.

        Runs once; later calls return the cached list. Call it at start-up
        on a worker thread, search() never does it on its own.
        """
        with self._lock:
            if self._providers is None:
                self._providers = discover_providers(
                    self.bus, self.directories, self.blacklist, self.app_dirs,
                )
                logger.info(f"Discovered {len(self._providers)} search providers")
            return self._providers

    @property
    def providers(self) -> list[ProviderInfo]:
        """Discovered providers, cached for the process lifetime."""
        return self.discover()

    def search(self, query: str, per_provider_limit: int) -> list[ProviderResult]:
        """
        Query every provider concurrently and merge their results.

        Blocks for at most the timeout budget; meant for a worker thread.
        """
        terms = tuple(query.split())
        providers = self._providers
        if providers is None:
            logger.warning("Provider search before discovery, returning no results")
            return []
        if not terms or not providers:
            return []

        pool = ThreadPoolExecutor(max_workers=len(providers), thread_name_prefix="sifter-provider")
        try:
            futures = [
                pool.submit(self._query_one, provider, terms, per_provider_limit)
                for provider in providers
            ]
            done, _not_done = wait(futures, timeout=self.timeout_ms / 1000)
        finally:
            # Stragglers are abandoned, not joined
            pool.shutdown(wait=False, cancel_futures=True)

        results = []
        for provider, future in zip(providers, futures):
            if future not in done:
                logger.warning(f"Provider {provider.bus_name} timed out after {self.timeout_ms}ms")
                continue
            try:
                results.extend(future.result())
            except ProviderError as e:
                logger.warning(f"Provider error: {e}")
            except Exception:
                logger.exception(f"Unexpected failure querying {provider.bus_name}")
        return results

    def _query_one(self, provider: ProviderInfo, terms: tuple, limit: int) -> list[ProviderResult]:
        started = time.monotonic()
        ids = self.bus.get_initial_result_set(provider, terms, self.timeout_ms)
        if not ids:
            return []

        remaining_ms = self.timeout_ms - (time.monotonic() - started) * 1000
        if remaining_ms <= 0:
            raise ProviderError(provider.bus_name, "no time left for GetResultMetas")

        metas = self.bus.get_result_metas(provider, list(ids)[:limit], int(remaining_ms))

        results = []
        for meta in metas:
            result_id = meta.get("id")
            if not result_id:
                continue
            icon = meta.get("icon")
            if icon is None:
                icon = meta.get("gicon")
            results.append(ProviderResult(
                provider=provider,
                activation_id=result_id,
                title=meta.get("name") or result_id,
                description=meta.get("description") or "",
                provider_icon=provider.icon,
                result_icon=parse_icon(icon) if icon is not None else None,
                terms=terms,
            ))
        return results

    def activate(self, result: ProviderResult):
        """
        Ask the owning provider to open a result. Fire-and-forget.

        Returns:
            The Future of the background call (failures are only logged)
        """
        timestamp = int(time.time()) & 0xFFFFFFFF
        future = self._activation_pool.submit(
            self.bus.activate_result,
            result.provider,
            result.activation_id,
            result.terms,
            timestamp,
            self.timeout_ms,
        )
        future.add_done_callback(lambda f, r=result: self._log_activation(f, r))
        return future

    def _log_activation(self, future, result: ProviderResult) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning(f"ActivateResult failed for {result.activation_id}: {error}")
        else:
            logger.debug(f"Activated {result.activation_id} via {result.provider.bus_name}")

    def close(self) -> None:
        self._activation_pool.shutdown(wait=False)
