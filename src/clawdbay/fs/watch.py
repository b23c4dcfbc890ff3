"""watchdog observer for config file edits, with event coalescing."""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path
from typing import Any, Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from clawdbay.runtime_logging import DisabledLogger, RuntimeLogger


class _FileChangeHandler(FileSystemEventHandler):
    """Fires ``callback`` once a burst of events on one file has settled.

    Editors often save through a temp file plus rename, so both the source
    and destination of a move count as touching the watched file.
    """

    def __init__(
        self,
        callback: Callable[[], None],
        *,
        file_name: str,
        logger: RuntimeLogger,
        debounce_s: float = 0.25,
    ) -> None:
        super().__init__()
        self.callback = callback
        self.file_name = file_name
        self.debounce_s = debounce_s
        self._logger = logger
        self._lock = threading.Lock()
        self._last_event_at = 0.0
        self._timer: threading.Timer | None = None

    def touches_file(self, event: FileSystemEvent) -> bool:
        if event.is_directory:
            return False
        names = {os.path.basename(os.fsdecode(event.src_path))}
        dest_path = getattr(event, "dest_path", "")
        if dest_path:
            names.add(os.path.basename(os.fsdecode(dest_path)))
        return self.file_name in names

    def on_any_event(self, event: FileSystemEvent) -> None:
        if not self.touches_file(event):
            return
        with self._lock:
            self._last_event_at = time.monotonic()
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce_s, self._fire_if_stable)
            self._timer.daemon = True
            self._timer.start()
        self._logger.debug(
            "watch.event",
            file_name=self.file_name,
            event_type=event.event_type,
            src_path=os.fsdecode(event.src_path),
        )

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _fire_if_stable(self) -> None:
        with self._lock:
            elapsed = time.monotonic() - self._last_event_at
            if elapsed < self.debounce_s:
                return
            self._timer = None
        try:
            self.callback()
            self._logger.debug("watch.callback.fired", file_name=self.file_name)
        except Exception as exc:
            self._logger.error("watch.callback.failed", file_name=self.file_name, error=str(exc))


class ConfigFileWatcher:
    """Watches single files by observing their parent directory non-recursively."""

    def __init__(self, *, logger: RuntimeLogger | None = None, debounce_s: float = 0.25) -> None:
        self._logger = logger or DisabledLogger()
        self._debounce_s = debounce_s
        self._observer = Observer()
        self._observer.daemon = True
        self._observer.start()
        self._handlers: dict[Path, _FileChangeHandler] = {}
        self._watches: dict[Path, Any] = {}
        self._logger.info("watch.observer.started")

    def watch(self, path: Path, callback: Callable[[], None]) -> bool:
        """Start watching ``path``; returns False when its directory is missing."""
        key = path.expanduser().absolute()
        if key in self._handlers:
            self._logger.debug("watch.file.already_watched", path=str(key))
            return True
        if not key.parent.is_dir():
            self._logger.info("watch.file.skipped", path=str(key), reason="directory missing")
            return False

        handler = _FileChangeHandler(
            callback,
            file_name=key.name,
            logger=self._logger,
            debounce_s=self._debounce_s,
        )
        self._handlers[key] = handler
        self._watches[key] = self._observer.schedule(handler, str(key.parent), recursive=False)
        self._logger.info("watch.file.watch", path=str(key))
        return True

    def unwatch(self, path: Path) -> None:
        key = path.expanduser().absolute()
        handler = self._handlers.pop(key, None)
        if handler is not None:
            handler.cancel()
        watch = self._watches.pop(key, None)
        if watch is not None:
            self._observer.unschedule(watch)
        self._logger.info("watch.file.unwatch", path=str(key))

    def close(self) -> None:
        for handler in self._handlers.values():
            handler.cancel()
        self._observer.stop()
        self._observer.join(timeout=2)
        self._handlers.clear()
        self._watches.clear()
        self._logger.info("watch.observer.closed")


class NullConfigFileWatcher:
    """No-op watcher for tests and restricted environments."""

    def watch(self, path: Path, callback: Callable[[], None]) -> bool:  # noqa: ARG002
        return False

    def unwatch(self, path: Path) -> None:  # noqa: ARG002
        return

    def close(self) -> None:
        return
