"""
IconResolutionCache tests.

psutil is patched so the running-application scan is deterministic; the
mdfind search goes through a FakeRunner whose output can be gated.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from conftest import FakeRunner
from wm_bridge.icons import IconResolutionCache, ReadWriteLock, bundle_for_executable


def fake_process(name, exe):
    return SimpleNamespace(info={"name": name, "exe": exe})


class GatedMdfind(FakeRunner):
    """Answers every mdfind query with one path after a gate opens."""

    def __init__(self, result_path: str):
        super().__init__()
        self.result_path = result_path
        self.gate = threading.Event()
        self.gate.set()

    def execute_sync(self, command, timeout=None):
        self.gate.wait(timeout=5)
        self.responses[" ".join(self.normalize(command)[1:])] = (f"{self.result_path}\n", 0)
        return super().execute_sync(command, timeout)


@pytest.fixture
def no_processes():
    with patch("wm_bridge.icons.psutil.process_iter", return_value=[]) as mock_iter:
        yield mock_iter


@pytest.fixture
def bundle(tmp_path):
    path = tmp_path / "Spotlight" / "Xcode.app"
    path.mkdir(parents=True)
    return path


class TestFastPath:

    def test_running_process_bundle(self, tmp_path):
        app = tmp_path / "Apps" / "Safari.app"
        (app / "Contents" / "MacOS").mkdir(parents=True)
        processes = [
            fake_process("launchd", "/sbin/launchd"),
            fake_process("Safari", str(app / "Contents" / "MacOS" / "Safari")),
        ]
        runner = FakeRunner()
        cache = IconResolutionCache(runner, search_dirs=[])

        with patch("wm_bridge.icons.psutil.process_iter", return_value=processes):
            lookup = cache.icon("Safari")

        assert lookup.path == str(app)
        assert lookup.future.result(timeout=1) == str(app)
        assert runner.calls == []
        cache.close()

    def test_search_directory_bundle(self, tmp_path, no_processes):
        apps = tmp_path / "Applications"
        (apps / "Notes.app").mkdir(parents=True)
        runner = FakeRunner()
        cache = IconResolutionCache(runner, search_dirs=[str(tmp_path / "missing"), str(apps)])

        lookup = cache.icon("Notes")

        assert lookup.path == str(apps / "Notes.app")
        assert runner.calls == []
        cache.close()

    def test_cached_lookup_does_no_io(self, tmp_path, no_processes):
        apps = tmp_path / "Applications"
        (apps / "Notes.app").mkdir(parents=True)
        cache = IconResolutionCache(FakeRunner(), search_dirs=[str(apps)])
        cache.icon("Notes")

        with patch("wm_bridge.icons.psutil.process_iter") as process_iter:
            lookup = cache.icon("Notes")

        process_iter.assert_not_called()
        assert lookup.path == str(apps / "Notes.app")
        assert cache.get_stats()["hits"] == 1
        cache.close()

    def test_empty_name(self):
        cache = IconResolutionCache(FakeRunner(), search_dirs=[])

        lookup = cache.icon("")

        assert lookup.path is None
        assert lookup.future.result(timeout=1) is None
        cache.close()


class TestSlowPath:

    def test_mdfind_result_cached(self, bundle, no_processes):
        runner = GatedMdfind(str(bundle))
        cache = IconResolutionCache(runner, search_dirs=[])

        lookup = cache.icon("Xcode")
        assert lookup.path is None
        assert lookup.future.result(timeout=5) == str(bundle)

        assert cache.icon("Xcode").path == str(bundle)
        query = runner.calls[0]
        assert query[0] == "mdfind"
        assert query[1] == 'kMDItemKind == "Application" && kMDItemDisplayName == "Xcode"'
        cache.close()

    def test_concurrent_lookups_share_one_search(self, bundle, no_processes):
        runner = GatedMdfind(str(bundle))
        runner.gate.clear()
        cache = IconResolutionCache(runner, search_dirs=[])

        with ThreadPoolExecutor(max_workers=8) as pool:
            lookups = list(pool.map(lambda _: cache.icon("Xcode"), range(16)))

        runner.gate.set()
        results = {lookup.future.result(timeout=5) for lookup in lookups}

        assert results == {str(bundle)}
        assert len(runner.calls) == 1
        assert len({id(lookup.future) for lookup in lookups}) == 1
        cache.close()

    def test_not_found_is_not_cached(self, tmp_path, no_processes):
        runner = FakeRunner()
        cache = IconResolutionCache(runner, search_dirs=[])

        assert cache.icon("Ghost").future.result(timeout=5) is None
        assert cache.icon("Ghost").future.result(timeout=5) is None

        assert len(runner.calls) == 2
        assert cache.get_stats()["not_found"] == 2
        cache.close()

    def test_nonexistent_path_from_search_rejected(self, tmp_path, no_processes):
        runner = GatedMdfind(str(tmp_path / "Gone.app"))
        cache = IconResolutionCache(runner, search_dirs=[])

        assert cache.icon("Gone").future.result(timeout=5) is None
        cache.close()

    def test_quotes_in_name_escaped(self, no_processes):
        runner = FakeRunner()
        cache = IconResolutionCache(runner, search_dirs=[])

        cache.icon('Say "Hi"').future.result(timeout=5)

        assert runner.calls[0][1].endswith('kMDItemDisplayName == "Say \\"Hi\\""')
        cache.close()

    @pytest.mark.asyncio
    async def test_resolve_from_asyncio(self, bundle, no_processes):
        cache = IconResolutionCache(GatedMdfind(str(bundle)), search_dirs=[])

        assert await cache.resolve("Xcode") == str(bundle)
        cache.close()


class TestCacheEpoch:

    def test_clear_cache_drops_entries(self, tmp_path, no_processes):
        apps = tmp_path / "Applications"
        (apps / "Notes.app").mkdir(parents=True)
        cache = IconResolutionCache(FakeRunner(), search_dirs=[str(apps)])
        cache.icon("Notes")

        cache.clear_cache()

        assert cache.epoch == 1
        assert cache.get_stats()["entries"] == 0
        cache.close()

    def test_lookup_from_older_epoch_does_not_populate(self, bundle, no_processes):
        runner = GatedMdfind(str(bundle))
        runner.gate.clear()
        cache = IconResolutionCache(runner, search_dirs=[])

        stale = cache.icon("Xcode")
        cache.clear_cache()
        runner.gate.set()

        assert stale.future.result(timeout=5) == str(bundle)
        stats = cache.get_stats()
        assert stats["entries"] == 0
        assert stats["discarded"] == 1
        cache.close()

    def test_close_resolves_unfinished_lookups(self, bundle, no_processes):
        runner = GatedMdfind(str(bundle))
        runner.gate.clear()
        cache = IconResolutionCache(runner, search_dirs=[], max_workers=1)

        first = cache.icon("Xcode")
        queued = cache.icon("Other")
        cache.close(wait=False)
        runner.gate.set()

        assert queued.future.result(timeout=5) is None
        assert first.future.result(timeout=5) in (None, str(bundle))
        assert cache.icon("Another").future.result(timeout=1) is None


class TestHelpers:

    def test_bundle_for_executable(self):
        exe = "/Applications/Xcode.app/Contents/Developer/Applications/Simulator.app/Contents/MacOS/Simulator"

        assert bundle_for_executable(exe) == "/Applications/Xcode.app"
        assert bundle_for_executable("/usr/bin/python3") is None
        assert bundle_for_executable(None) is None

    def test_read_write_lock_allows_concurrent_readers(self):
        lock = ReadWriteLock()
        inside = threading.Barrier(2, timeout=2)
        failures = []

        def reader():
            with lock.read_locked():
                try:
                    inside.wait()
                except threading.BrokenBarrierError:
                    failures.append("readers were serialized")

        threads = [threading.Thread(target=reader) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=3)

        assert failures == []

    def test_read_write_lock_writer_is_exclusive(self):
        lock = ReadWriteLock()
        events = []

        def writer(tag):
            with lock.write_locked():
                events.append(f"{tag}-in")
                events.append(f"{tag}-out")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=3)

        for i in range(0, len(events), 2):
            assert events[i].split("-")[0] == events[i + 1].split("-")[0]
