"""Application icon resolution for the window-manager bridge.

Maps an application name (the ``app`` field of a window) to the path of its
``.app`` bundle, from which the status bar loads the icon.

Lookup order:
1. Cache (no I/O)
2. Running processes with a matching name, via psutil
3. ``<dir>/<name>.app`` in the well-known application directories
4. Spotlight (``mdfind``) on a worker thread, deduplicated per name

Missing applications are not cached, so an app installed later is found on
the next lookup.
"""
from __future__ import annotations

import asyncio
import logging
import os
import threading
from concurrent.futures import Future, InvalidStateError, ThreadPoolExecutor
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, NamedTuple, Optional, Sequence

import psutil

from .config import DEFAULT_ICON_SEARCH_DIRS, BridgeConfig
from .errors import BridgeError, LookupNotFoundError
from .runner import CommandRunner

logger = logging.getLogger(__name__)

BUNDLE_SUFFIX = ".app"


class ReadWriteLock:
    """Many concurrent readers or one writer.

    Waiting writers block new readers so a steady stream of lookups cannot
    starve cache updates.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class IconLookup(NamedTuple):
    """Result of IconResolutionCache.icon().

    Attributes:
        path: Bundle path when it was available immediately, else None
        future: Resolves to the bundle path (or None) once the lookup ends
    """

    path: Optional[str]
    future: Future


def _resolved(path: Optional[str]) -> Future:
    future: Future = Future()
    future.set_result(path)
    return future


def bundle_for_executable(exe: Optional[str]) -> Optional[str]:
    """Outermost ``.app`` bundle containing an executable path."""
    if not exe:
        return None
    marker = exe.find(BUNDLE_SUFFIX + os.sep)
    if marker == -1:
        return None
    return exe[:marker + len(BUNDLE_SUFFIX)]


class IconResolutionCache:
    """Thread-safe application name -> bundle path cache.

    Safe to call from the event loop and from any thread. Concurrent slow
    lookups for the same name share one future and one mdfind process.

    Example:
        >>> cache = IconResolutionCache(runner)
        >>> lookup = cache.icon("Safari")
        >>> path = lookup.path or lookup.future.result(timeout=5)
    """

    def __init__(
        self,
        runner: CommandRunner,
        search_dirs: Optional[Sequence[str]] = None,
        mdfind_path: str = "mdfind",
        lookup_timeout: float = 5.0,
        max_workers: int = 2,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        """Initialize the cache.

        Args:
            runner: CommandRunner used for the mdfind search
            search_dirs: Directories checked for <name>.app bundles
            mdfind_path: Spotlight search executable
            lookup_timeout: Timeout for one mdfind call (seconds)
            max_workers: Worker threads when no executor is given
            executor: Shared executor (not shut down by close())
        """
        self.runner = runner
        self.search_dirs: List[str] = list(
            search_dirs if search_dirs is not None else DEFAULT_ICON_SEARCH_DIRS
        )
        self.mdfind_path = mdfind_path
        self.lookup_timeout = lookup_timeout

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="icon-lookup"
        )

        self._lock = ReadWriteLock()
        self._entries: Dict[str, str] = {}
        self._pending: Dict[str, Future] = {}
        self._epoch = 0
        self._closed = False

        self._stats_lock = threading.Lock()
        self._stats = {
            "hits": 0,
            "fast_hits": 0,
            "slow_lookups": 0,
            "slow_found": 0,
            "not_found": 0,
            "deduplicated": 0,
            "discarded": 0,
        }

    @classmethod
    def from_config(cls, runner: CommandRunner, config: BridgeConfig) -> "IconResolutionCache":
        return cls(
            runner,
            search_dirs=config.icon_search_dirs,
            mdfind_path=config.mdfind_path,
            lookup_timeout=config.icon_lookup_timeout,
            max_workers=config.icon_workers,
        )

    @property
    def epoch(self) -> int:
        return self._epoch

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self._stats[key] += 1

    def icon(self, app_name: str) -> IconLookup:
        """Look up the bundle path for an application.

        Never blocks on the slow search: when the name is neither cached nor
        found on the fast path, ``path`` is None and ``future`` completes
        when the background search finishes.
        """
        if not app_name:
            return IconLookup(None, _resolved(None))

        with self._lock.read_locked():
            cached = self._entries.get(app_name)
            pending = self._pending.get(app_name)

        if cached is not None:
            self._count("hits")
            return IconLookup(cached, _resolved(cached))
        if pending is not None:
            self._count("deduplicated")
            return IconLookup(None, pending)

        epoch = self._epoch
        path = self._fast_lookup(app_name)
        if path is not None:
            self._count("fast_hits")
            with self._lock.write_locked():
                if self._epoch == epoch:
                    self._entries[app_name] = path
            return IconLookup(path, _resolved(path))

        with self._lock.write_locked():
            # Another thread may have finished or started a lookup meanwhile
            cached = self._entries.get(app_name)
            if cached is not None:
                return IconLookup(cached, _resolved(cached))
            pending = self._pending.get(app_name)
            if pending is not None:
                self._count("deduplicated")
                return IconLookup(None, pending)
            if self._closed:
                return IconLookup(None, _resolved(None))

            future: Future = Future()
            self._pending[app_name] = future
            epoch = self._epoch

        self._count("slow_lookups")
        try:
            self._executor.submit(self._slow_lookup, app_name, future, epoch)
        except RuntimeError as e:
            # Executor shut down between the closed check and submit
            logger.debug(f"Icon lookup for {app_name!r} not started: {e}")
            with self._lock.write_locked():
                if self._pending.get(app_name) is future:
                    del self._pending[app_name]
            self._set_result(future, None)
        return IconLookup(None, future)

    async def resolve(self, app_name: str) -> Optional[str]:
        """Await the bundle path from asyncio code."""
        lookup = self.icon(app_name)
        if lookup.path is not None:
            return lookup.path
        # Shielded so a cancelled caller does not cancel the shared future
        return await asyncio.shield(asyncio.wrap_future(lookup.future))

    def clear_cache(self) -> None:
        """Drop every entry and pending marker and start a new epoch.

        Searches already running still resolve their futures but no longer
        write to the cache.
        """
        with self._lock.write_locked():
            dropped = len(self._entries)
            self._entries.clear()
            self._pending.clear()
            self._epoch += 1
        logger.info(f"Icon cache cleared ({dropped} entries, epoch {self._epoch})")

    def close(self, wait: bool = True) -> None:
        """Stop the worker pool. Unfinished lookups resolve to None."""
        with self._lock.write_locked():
            if self._closed:
                return
            self._closed = True

        if self._owns_executor:
            self._executor.shutdown(wait=wait, cancel_futures=True)

        with self._lock.write_locked():
            abandoned = list(self._pending.values())
            self._pending.clear()
        for future in abandoned:
            self._set_result(future, None)
        logger.debug(f"Icon cache closed ({len(abandoned)} lookups abandoned)")

    def _fast_lookup(self, app_name: str) -> Optional[str]:
        path = self._running_app_bundle(app_name)
        if path is not None:
            return path

        for directory in self.search_dirs:
            candidate = Path(directory).expanduser() / f"{app_name}{BUNDLE_SUFFIX}"
            if candidate.is_dir():
                return str(candidate)
        return None

    def _running_app_bundle(self, app_name: str) -> Optional[str]:
        try:
            for proc in psutil.process_iter(["name", "exe"]):
                info = proc.info
                if info.get("name") != app_name:
                    continue
                bundle = bundle_for_executable(info.get("exe"))
                if bundle and os.path.isdir(bundle):
                    return bundle
        except psutil.Error as e:
            logger.debug(f"Process scan failed for {app_name!r}: {e}")
        return None

    def _search(self, app_name: str) -> str:
        escaped = app_name.replace("\\", "\\\\").replace('"', '\\"')
        query = f'kMDItemKind == "Application" && kMDItemDisplayName == "{escaped}"'
        output = self.runner.run_sync([self.mdfind_path, query], timeout=self.lookup_timeout)

        first = next((line.strip() for line in output.splitlines() if line.strip()), None)
        if first and os.path.exists(first):
            return first
        raise LookupNotFoundError(app_name)

    def _slow_lookup(self, app_name: str, future: Future, epoch: int) -> None:
        path: Optional[str] = None
        try:
            path = self._search(app_name)
            self._count("slow_found")
            logger.debug(f"Found bundle for {app_name!r}: {path}")
        except LookupNotFoundError as e:
            self._count("not_found")
            logger.debug(e.message)
        except BridgeError as e:
            self._count("not_found")
            logger.warning(f"Icon search for {app_name!r} failed: {e.message}")
        except Exception as e:
            self._count("not_found")
            logger.error(f"Icon search for {app_name!r} failed: {e}", exc_info=True)
        finally:
            with self._lock.write_locked():
                if self._epoch == epoch:
                    if path is not None:
                        self._entries[app_name] = path
                    if self._pending.get(app_name) is future:
                        del self._pending[app_name]
                elif path is not None:
                    self._count("discarded")
            self._set_result(future, path)

    @staticmethod
    def _set_result(future: Future, path: Optional[str]) -> None:
        try:
            future.set_result(path)
        except InvalidStateError:
            pass

    def get_stats(self) -> dict:
        with self._stats_lock:
            stats = dict(self._stats)
        with self._lock.read_locked():
            stats["entries"] = len(self._entries)
            stats["pending"] = len(self._pending)
        stats["epoch"] = self._epoch
        return stats
