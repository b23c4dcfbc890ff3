from __future__ import annotations

import threading
import unittest
from pathlib import Path

from watchdog.events import DirModifiedEvent, FileModifiedEvent, FileMovedEvent

from clawdbay.fs.watch import NullConfigFileWatcher, _FileChangeHandler
from clawdbay.runtime_logging import DisabledLogger


class FileChangeHandlerTests(unittest.TestCase):
    def make_handler(self, callback, debounce_s: float = 0.05) -> _FileChangeHandler:  # noqa: ANN001
        return _FileChangeHandler(callback, file_name="config.toml", logger=DisabledLogger(), debounce_s=debounce_s)

    def test_matches_only_the_watched_file(self) -> None:
        handler = self.make_handler(lambda: None)
        self.assertTrue(handler.touches_file(FileModifiedEvent("/cfg/config.toml")))
        self.assertTrue(handler.touches_file(FileMovedEvent("/cfg/.config.toml.swp", "/cfg/config.toml")))
        self.assertFalse(handler.touches_file(FileModifiedEvent("/cfg/other.toml")))
        self.assertFalse(handler.touches_file(DirModifiedEvent("/cfg")))

    def test_burst_of_events_fires_once(self) -> None:
        fired: list[int] = []
        done = threading.Event()

        def callback() -> None:
            fired.append(1)
            done.set()

        handler = self.make_handler(callback)
        for _ in range(5):
            handler.on_any_event(FileModifiedEvent("/cfg/config.toml"))

        self.assertTrue(done.wait(timeout=2))
        done.clear()
        self.assertFalse(done.wait(timeout=0.2))
        self.assertEqual(fired, [1])

    def test_cancel_drops_pending_callback(self) -> None:
        done = threading.Event()
        handler = self.make_handler(done.set, debounce_s=0.1)
        handler.on_any_event(FileModifiedEvent("/cfg/config.toml"))
        handler.cancel()
        self.assertFalse(done.wait(timeout=0.3))

    def test_callback_errors_are_contained(self) -> None:
        done = threading.Event()

        def callback() -> None:
            done.set()
            raise RuntimeError("boom")

        handler = self.make_handler(callback)
        handler.on_any_event(FileModifiedEvent("/cfg/config.toml"))
        self.assertTrue(done.wait(timeout=2))


class NullWatcherTests(unittest.TestCase):
    def test_never_watches(self) -> None:
        watcher = NullConfigFileWatcher()
        self.assertFalse(watcher.watch(Path("/cfg/config.toml"), lambda: None))
        watcher.unwatch(Path("/cfg/config.toml"))
        watcher.close()


if __name__ == "__main__":
    unittest.main()
