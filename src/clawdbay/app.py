"""ClawdBay Textual dashboard application."""

from __future__ import annotations

from pathlib import Path

from textual import events
from textual.app import App, ComposeResult
from textual.css.query import NoMatches

from clawdbay.dashboard.refresh import AddBackend, AddRequest, fetch_dashboard_data, perform_add
from clawdbay.dashboard.state import DashboardState, Selection
from clawdbay.dashboard.tree import DashboardMode
from clawdbay.discovery.service import DiscoveryService
from clawdbay.fs.watch import ConfigFileWatcher, NullConfigFileWatcher
from clawdbay.messages import AddCompleted, ConfigChanged, RefreshCompleted
from clawdbay.runtime_logging import RuntimeLogger, get_runtime_logger
from clawdbay.widgets.dashboard_view import DashboardView

REFRESH_INTERVAL_S = 3.0


class DashboardApp(App[Selection | None]):
    """Interactive session tree. Exits with the chosen session/window, if any."""

    TITLE = "ClawdBay"

    CSS = """
    Screen {
        align: center middle;
    }
    """

    def __init__(
        self,
        *,
        discovery: DiscoveryService,
        add_backend: AddBackend | None = None,
        mode: DashboardMode = DashboardMode.WORKTREE,
        config_file: Path | None = None,
        enable_watchers: bool = True,
        watcher: ConfigFileWatcher | NullConfigFileWatcher | None = None,
        refresh_interval: float = REFRESH_INTERVAL_S,
        logger: RuntimeLogger | None = None,
    ) -> None:
        self.logger = logger or get_runtime_logger()
        self.discovery = discovery
        self.add_backend = add_backend
        self.config_file = config_file or discovery.config_store.path
        self.refresh_interval = refresh_interval
        self.state = DashboardState(mode, logger=self.logger)
        if watcher is not None:
            self.watcher = watcher
        else:
            self.watcher = ConfigFileWatcher(logger=self.logger) if enable_watchers else NullConfigFileWatcher()
        self._watchers_closed = False

        self.logger.info(
            "app.initialized",
            mode=mode.value,
            config_file=str(self.config_file),
            enable_watchers=enable_watchers,
            refresh_interval=refresh_interval,
        )
        super().__init__()

    def compose(self) -> ComposeResult:
        yield DashboardView(id="dashboard")

    def on_mount(self) -> None:
        self.state.set_viewport(self.size.width, self.size.height)
        self.watcher.watch(self.config_file, self._config_changed_callback)
        self.set_interval(self.refresh_interval, self._on_tick)
        self.request_refresh()
        self.render_dashboard()
        self.logger.info("app.mounted", width=self.size.width, height=self.size.height)

    def on_resize(self, event: events.Resize) -> None:
        self.state.set_viewport(event.size.width, event.size.height)
        self.render_dashboard()

    def render_dashboard(self) -> None:
        try:
            view = self.query_one(DashboardView)
        except NoMatches:
            return
        view.render_state(self.state)

    def _on_tick(self) -> None:
        self.state.tick()
        self.request_refresh()
        self.render_dashboard()

    def request_refresh(self) -> None:
        generation = self.state.begin_refresh()
        mode = self.state.mode
        self.logger.debug("app.refresh.dispatched", generation=generation, mode=mode.value)
        # Non-exclusive: an in-flight refresh finishes and is discarded if stale.
        self.run_worker(
            lambda: self._refresh_worker(mode, generation),
            name=f"refresh-{generation}",
            group="refresh",
            thread=True,
        )

    def _refresh_worker(self, mode: DashboardMode, generation: int) -> None:
        result = fetch_dashboard_data(self.discovery, mode, generation)
        self.post_message(RefreshCompleted(result=result))

    def on_refresh_completed(self, message: RefreshCompleted) -> None:
        if self.state.apply_refresh(message.result):
            self.render_dashboard()

    def request_add(self, request: AddRequest) -> None:
        backend = self.add_backend
        if backend is None:
            self.state.status_message = "Error: tmux is not available"
            return
        self.logger.info("app.add.dispatched", kind=request.kind, name=request.name)
        self.run_worker(
            lambda: self.post_message(AddCompleted(result=perform_add(backend, request))),
            name=f"add-{request.kind}-{request.name}",
            group="add",
            thread=True,
        )

    def on_add_completed(self, message: AddCompleted) -> None:
        self.state.apply_add_result(message.result)
        self.request_refresh()
        self.render_dashboard()

    def _config_changed_callback(self) -> None:
        self.post_message(ConfigChanged())

    def on_config_changed(self, _message: ConfigChanged) -> None:
        self.logger.info("app.config.changed", config_file=str(self.config_file))
        self.request_refresh()

    def on_key(self, event: events.Key) -> None:
        event.stop()
        event.prevent_default()
        outcome = self.state.handle_key(event.key, event.character)
        if outcome.exit:
            self.logger.info(
                "app.exit.requested",
                selected=self.state.selection is not None,
            )
            self.exit(self.state.selection)
            return
        if outcome.add_request is not None:
            self.request_add(outcome.add_request)
        if outcome.refresh:
            self.request_refresh()
        self.render_dashboard()

    def on_unmount(self) -> None:
        self.close_watchers()

    def close_watchers(self) -> None:
        if self._watchers_closed:
            return
        self._watchers_closed = True
        self.watcher.unwatch(self.config_file)
        self.watcher.close()
        self.logger.info("app.exit", mode=self.state.mode.value)
