"""
Application Index - Deduplicated, searchable application entries with a cache.

The index is built by scanning the configured directories in parallel,
merging them in configuration order (earlier directories win when two
entries launch the same program) and sorting by display name.

Cache policy is whole-cache invalidation:
  - The persisted index remembers which directories it was built from
    and when (built_at).
  - If the directory list changed, or any directory's mtime is newer
    than built_at, the entire index is rebuilt.
  - A cache that fails to deserialize is rebuilt unconditionally.

Indexes are immutable. A rebuild produces a new AppIndex that replaces
the old one in a single reference swap, so readers on other threads
never see a partially built index.
"""

import json
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

from loguru import logger

from sifter.errors import CacheError
from sifter.search.handlers.app_search import rank
from sifter.services.desktop_entries import scan_directory
from sifter.utils.helpers import clean_exec

CACHE_VERSION = 1

Collector = Callable[[Path], list]


@dataclass(frozen=True)
class IndexEntry:
    """One launchable application."""
    display_name: str
    exec_spec: str
    description: str = ""
    icon: str = ""
    requires_terminal: bool = False
    dedup_key: str = ""

    @classmethod
    def from_record(cls, record: dict) -> "IndexEntry":
        """Build an entry from a desktop-entry collector record."""
        exec_spec = record["exec"]
        return cls(
            display_name=record["name"],
            exec_spec=exec_spec,
            description=record.get("description", "") or "",
            icon=record.get("icon", "") or "",
            requires_terminal=bool(record.get("terminal", False)),
            dedup_key=make_dedup_key(exec_spec, fallback=record["name"]),
        )


@dataclass(frozen=True)
class AppIndex:
    """Immutable snapshot of the application index."""
    entries: tuple = ()
    source_directories: tuple = ()  # ((path, mtime or None), ...)
    built_at: float = 0.0

    @property
    def directories(self) -> list[str]:
        return [path for path, _mtime in self.source_directories]


def make_dedup_key(exec_spec: str, fallback: str = "") -> str:
    """
    Canonical launch target for an Exec line.

    Field codes are dropped and the program is reduced to its basename,
    so "/usr/bin/firefox %u" and "firefox" collapse to the same key.
    An Exec line with nothing left after that keys on `fallback`.
    """
    tokens = clean_exec(exec_spec).split()
    if not tokens:
        return fallback
    tokens[0] = os.path.basename(tokens[0].strip("\"'"))
    return " ".join(tokens)


def directory_mtime(path) -> Optional[float]:
    """Modification time of a directory, or None if it cannot be read."""
    try:
        return os.stat(path).st_mtime
    except OSError:
        return None


def build(
    directories: Sequence,
    collect: Collector = scan_directory,
    max_workers: Optional[int] = None,
) -> AppIndex:
    """
    Scan directories in parallel and merge them into a fresh index.

    Args:
        directories: Directories in precedence order
        collect: Desktop-entry collector, directory -> list of records
        max_workers: Thread pool size (defaults to one per directory)

    Returns:
        A new AppIndex
    """
    directories = [str(d) for d in directories]
    # Taken before scanning so changes made mid-scan invalidate the result
    built_at = time.time()

    def _collect(directory: str) -> list:
        try:
            return collect(Path(directory))
        except OSError as e:
            logger.debug(f"Skipping application directory {directory}: {e}")
            return []

    workers = max_workers or max(1, len(directories))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sifter-scan") as pool:
        # map() preserves input order, which is the precedence order
        per_directory = list(pool.map(_collect, directories))

    seen = set()
    entries = []
    for records in per_directory:
        for record in records:
            try:
                entry = IndexEntry.from_record(record)
            except (KeyError, TypeError) as e:
                logger.warning(f"Skipping malformed desktop record {record!r}: {e}")
                continue
            if entry.dedup_key in seen:
                continue
            seen.add(entry.dedup_key)
            entries.append(entry)

    entries.sort(key=lambda e: e.display_name.casefold())

    index = AppIndex(
        entries=tuple(entries),
        source_directories=tuple((d, directory_mtime(d)) for d in directories),
        built_at=built_at,
    )
    logger.debug(f"Built application index: {len(entries)} entries from {len(directories)} directories")
    return index


def validate(index: AppIndex, directories: Optional[Sequence] = None) -> bool:
    """
    Check whether a (cached) index is still valid.

    Args:
        index: Index to check
        directories: Currently configured directories. Defaults to the
            index's own directory list.

    Returns:
        False if the directory list changed or any directory was modified
        after the index was built
    """
    if directories is not None and [str(d) for d in directories] != index.directories:
        logger.debug("Application directories changed, index invalid")
        return False

    for directory in index.directories:
        mtime = directory_mtime(directory)
        if mtime is not None and mtime > index.built_at:
            logger.debug(f"{directory} modified after index was built, index invalid")
            return False
    return True


def search(index: AppIndex, query: str, limit: int) -> list:
    """Ranked AppResults for a query, at most limit of them."""
    return rank(index.entries, query, limit)


def serialize(index: AppIndex) -> str:
    """Encode an index as JSON."""
    return json.dumps({
        "version": CACHE_VERSION,
        "built_at": index.built_at,
        "source_directories": [list(pair) for pair in index.source_directories],
        "entries": [asdict(entry) for entry in index.entries],
    })


def deserialize(text: str) -> AppIndex:
    """
    Decode an index produced by serialize().

    Raises:
        CacheError: If the payload is not a valid index of this version
    """
    try:
        data = json.loads(text)
        if data.get("version") != CACHE_VERSION:
            raise CacheError(f"unsupported cache version {data.get('version')!r}")
        return AppIndex(
            entries=tuple(IndexEntry(**entry) for entry in data["entries"]),
            source_directories=tuple(
                (str(path), mtime) for path, mtime in data["source_directories"]
            ),
            built_at=float(data["built_at"]),
        )
    except CacheError:
        raise
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise CacheError(f"corrupt application cache: {e}") from e


class AppIndexService:
    """
    Owns the current AppIndex and its on-disk cache.

    Methods:
        load_or_build(): Load the cache if valid, otherwise scan
        refresh(): Rebuild if the current index is stale
        search(query, limit): Rank the current index
    """

    def __init__(
        self,
        directories: Sequence,
        cache_path: Optional[Path] = None,
        collect: Collector = scan_directory,
    ):
        self.directories = [str(d) for d in directories]
        self.cache_path = Path(cache_path) if cache_path else None
        self._collect = collect
        self._lock = threading.Lock()
        self._index = AppIndex()

    @property
    def current(self) -> AppIndex:
        """The current index snapshot. Safe to read from any thread."""
        return self._index

    def load_or_build(self) -> AppIndex:
        """Use the cached index when valid, otherwise rebuild and persist."""
        try:
            cached = self.load_cache()
        except CacheError as e:
            logger.info(f"Rebuilding application index: {e}")
            return self.rebuild()

        if not validate(cached, self.directories):
            logger.info("Application index cache is stale, rebuilding")
            return self.rebuild()

        self._replace(cached)
        logger.debug(f"Loaded {len(cached.entries)} entries from {self.cache_path}")
        return cached

    def refresh(self) -> bool:
        """
        Rebuild the index if it is no longer valid.

        Returns:
            True if a rebuild happened
        """
        if validate(self._index, self.directories) and self._index.built_at:
            return False
        self.rebuild()
        return True

    def rebuild(self) -> AppIndex:
        """Scan all directories, swap in the new index and persist it."""
        index = build(self.directories, collect=self._collect)
        self._replace(index)
        self.save_cache(index)
        return index

    def search(self, query: str, limit: int) -> list:
        return search(self._index, query, limit)

    def load_cache(self) -> AppIndex:
        """
        Read the persisted index.

        Raises:
            CacheError: If there is no cache or it cannot be decoded
        """
        if self.cache_path is None:
            raise CacheError("no cache path configured")
        try:
            text = self.cache_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise CacheError(f"cannot read {self.cache_path}: {e}") from e
        return deserialize(text)

    def save_cache(self, index: AppIndex) -> None:
        """Persist an index; failures are logged, never raised."""
        if self.cache_path is None:
            return
        tmp_path = self.cache_path.with_suffix(".tmp")
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(serialize(index), encoding="utf-8")
            os.replace(tmp_path, self.cache_path)
        except OSError:
            logger.exception(f"Failed to write application cache to {self.cache_path}")

    def _replace(self, index: AppIndex) -> None:
        with self._lock:
            self._index = index
