"""sshtop - Main Textual application."""

import argparse
import logging
import sys
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from rich.markup import escape
from rich.table import Table
from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal
from textual.css.query import NoMatches
from textual.logging import TextualHandler
from textual.timer import Timer
from textual.widgets import ContentSwitcher, Footer, Static

from sshtop.config import apply_overrides, dump_default_config, load_config
from sshtop.exceptions import ConfigError
from sshtop.models import SortKey, Workflow
from sshtop.poller import DEFAULT_POLL_RATE, PollingLoop
from sshtop.projection import ChartSeries, Frame
from sshtop.sampler import ParamikoSession, Sampler
from sshtop.state import (
    Cancel,
    ConnectRequest,
    CredentialForm,
    Event,
    Exit,
    FieldDelete,
    FieldEdit,
    FieldNext,
    FieldPrevious,
    FormField,
    MoveSelection,
    Quit,
    SessionState,
    SetSort,
    Submit,
    ToggleAuthMode,
)

logger = logging.getLogger(__name__)

BLOCKS = " ▁▂▃▄▅▆▇█"
REFRESH_RATE = 0.05  # seconds between redraws


def format_megabytes(size_mb: float) -> str:
    """Format a MiB figure as a human-readable string."""
    if size_mb >= 1024:
        return f"{size_mb / 1024:.1f}G"
    return f"{size_mb:.1f}M"


def decode_key(frame: Frame, key: str, character: str | None) -> Event | None:
    """Translate a key press into a structural event for the current workflow."""
    if key == "ctrl+q":
        return Quit()

    if frame.workflow is Workflow.ENTERING_CREDENTIALS:
        if key == "escape":
            return Quit()
        if key in ("tab", "down"):
            return FieldNext()
        if key in ("shift+tab", "up"):
            return FieldPrevious()
        if key == "enter":
            return Submit()
        if key == "backspace":
            return FieldDelete()
        if key == "space" and frame.form.active_field is FormField.USE_KEY:
            return ToggleAuthMode()
        if character is not None and len(character) == 1 and character.isprintable():
            return FieldEdit(character)
        return None

    if frame.workflow is Workflow.CONNECTING:
        return Cancel() if key == "escape" else None

    if key == "escape" or character in ("q", "Q"):
        return Exit()
    if character in ("c", "C"):
        return SetSort(SortKey.CPU)
    if character in ("r", "R"):
        return SetSort(SortKey.RAM)
    if key == "down":
        return MoveSelection(1)
    if key == "up":
        return MoveSelection(-1)
    return None


def render_chart(values: Sequence[float], upper: float, width: int, height: int) -> list[str]:
    """
    Render values as a block bar chart, top row first.

    The most recent ``width`` values are drawn, oldest on the left; each
    column fills in eighths of a row relative to ``upper``.
    """
    if width < 1 or height < 1:
        return []
    shown = list(values)[-width:]
    levels = len(BLOCKS) - 1
    rows: list[str] = []
    for row in range(height - 1, -1, -1):
        cells = []
        for value in shown:
            ratio = min(max(value / upper, 0.0), 1.0) if upper > 0 else 0.0
            cell = ratio * height * levels - row * levels
            cells.append(BLOCKS[int(min(max(cell, 0.0), levels))])
        rows.append("".join(cells).ljust(width))
    return rows


class CredentialView(Static):
    """The connection form."""

    DEFAULT_CSS = """
    CredentialView {
        height: 1fr;
        padding: 1 2;
    }
    """

    def show(self, frame: Frame) -> None:
        form = frame.form

        def line(field: FormField, text: str) -> str:
            if form.active_field is field:
                return f"[bold yellow]> {text}[/bold yellow]"
            return f"  {text}"

        checkbox = "\\[X]" if form.use_key else "\\[ ]"
        if form.use_key:
            secret = line(FormField.KEY_PATH, f"SSH Key Path: {escape(form.key_path)}")
        else:
            secret = line(FormField.PASSWORD, f"Password: {'*' * form.secret_length}")

        if frame.error:
            status = f"[bold red]Error: {escape(frame.error)}[/bold red]"
        elif form.is_valid:
            status = "[green]Press Enter to connect[/green]"
        else:
            status = "[yellow]Fill in all required fields[/yellow]"

        self.update(
            "\n".join(
                [
                    "[bold cyan]SSH Server Monitor - Configuration[/bold cyan]",
                    "",
                    line(FormField.HOST, f"Host: {escape(form.host)}"),
                    line(FormField.USERNAME, f"Username: {escape(form.username)}"),
                    line(FormField.USE_KEY, f"{checkbox} Use SSH Key (Space to toggle)"),
                    secret,
                    "",
                    "[green]Tab/Shift+Tab[/green]: Navigate fields",
                    "[green]Space[/green]: Toggle SSH Key",
                    "[green]Enter[/green]: Connect",
                    "[green]Esc[/green]: Quit",
                    "",
                    status,
                ]
            )
        )


class ConnectingView(Static):
    """Bouncing progress bar shown during the initial fetch."""

    DEFAULT_CSS = """
    ConnectingView {
        height: 1fr;
        padding: 1 2;
        content-align: center middle;
    }
    """

    def show(self, frame: Frame) -> None:
        bar_width = 40
        filled = min(bar_width, frame.loading_progress * bar_width // 100)
        bar = "[cyan]█[/cyan]" * filled + "[dim]░[/dim]" * (bar_width - filled)
        self.update(
            f"[bold]{escape(frame.loading_message)}[/bold]\n\n"
            f"\\[{bar}] {frame.loading_progress:3d}%\n\n"
            "[dim]Esc: cancel[/dim]"
        )


class UserTable(Static):
    """Per-user CPU/RAM table with the selected row highlighted."""

    DEFAULT_CSS = """
    UserTable {
        width: 1fr;
        height: 1fr;
        border: solid $primary;
    }
    """

    def show(self, frame: Frame) -> None:
        sort_label = {SortKey.CPU: "CPU", SortKey.RAM: "RAM"}[frame.sort_key]
        table = Table(expand=True, title=f"Users (sorted by {sort_label})")
        table.add_column("User")
        table.add_column("CPU%", justify="right")
        table.add_column("RAM", justify="right")
        table.add_column("Updated", justify="right")
        for index, user in enumerate(frame.users):
            table.add_row(
                escape(user.username),
                f"{user.cpu_percent:6.1f}",
                format_megabytes(user.ram_megabytes),
                user.sampled_at.strftime("%H:%M:%S"),
                style="reverse" if index == frame.selected_index else None,
            )
        self.update(table)


class HistoryChart(Static):
    """Block chart of one history series."""

    DEFAULT_CSS = """
    HistoryChart {
        height: 1fr;
        border: solid $secondary;
    }
    """

    def __init__(self, title: str, unit: Callable[[float], str], *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._title = title
        self._unit = unit

    def show(self, series: ChartSeries) -> None:
        label_width = 8
        width = max(self.size.width - label_width - 3, 10)
        height = max(self.size.height - 3, 2)
        rows = render_chart(series.values, series.upper_bound, width, height)
        lines = [f"[bold]{self._title}[/bold]"]
        for i, row in enumerate(rows):
            if i == 0:
                label = self._unit(series.upper_bound)
            elif i == len(rows) - 1:
                label = self._unit(series.lower_bound)
            else:
                label = ""
            lines.append(f"[dim]{label:>{label_width}}[/dim] [blue]{row}[/blue]")
        self.update("\n".join(lines))


class MonitorView(Container):
    """Table and history charts for a live session."""

    DEFAULT_CSS = """
    MonitorView {
        height: 1fr;
    }

    #monitor-status {
        height: 1;
        background: $surface;
    }

    #charts {
        width: 1fr;
        height: 1fr;
    }
    """

    def compose(self) -> ComposeResult:
        yield Static(id="monitor-status")
        with Horizontal():
            yield UserTable(id="user-table")
            with Container(id="charts"):
                yield HistoryChart("Total CPU %", lambda v: f"{v:.0f}%", id="cpu-chart")
                yield HistoryChart("Total RAM", format_megabytes, id="ram-chart")

    def show(self, frame: Frame) -> None:
        memory = (
            f" / {format_megabytes(frame.remote_total_memory_mb)}"
            if frame.remote_total_memory_mb > 0
            else ""
        )
        self.query_one("#monitor-status", Static).update(
            f" [bold]{escape(frame.form.username)}@{escape(frame.form.host)}[/bold]"
            f"  users: {len(frame.users)}"
            f"  cpu: {frame.cpu_total:.1f}%"
            f"  ram: {format_megabytes(frame.ram_total)}{memory}"
            "  [dim]c/r: sort  ↑/↓: select  q/Esc: disconnect[/dim]"
        )
        self.query_one(UserTable).show(frame)
        self.query_one("#cpu-chart", HistoryChart).show(frame.cpu_chart)
        self.query_one("#ram-chart", HistoryChart).show(frame.ram_chart)


class SshtopApp(App):
    """Main sshtop application."""

    TITLE = "sshtop"
    SUB_TITLE = "Remote per-user CPU/RAM monitor"

    CSS = """
    Screen {
        layout: vertical;
    }

    ContentSwitcher {
        height: 1fr;
    }
    """

    # Navigation keys are claimed before Textual's own focus handling
    BINDINGS = [
        Binding("ctrl+q", "route_key('ctrl+q')", "Quit", priority=True),
        Binding("tab", "route_key('tab')", show=False, priority=True),
        Binding("shift+tab", "route_key('shift+tab')", show=False, priority=True),
        Binding("up", "route_key('up')", show=False, priority=True),
        Binding("down", "route_key('down')", show=False, priority=True),
        Binding("enter", "route_key('enter')", show=False, priority=True),
        Binding("escape", "route_key('escape')", show=False, priority=True),
    ]

    def __init__(
        self,
        state: SessionState | None = None,
        sampler_factory: Callable[[], Sampler] = Sampler,
        poll_rate: float = DEFAULT_POLL_RATE,
        refresh_rate: float = REFRESH_RATE,
    ) -> None:
        """Initialize the SshtopApp."""
        super().__init__()
        self._state = state if state is not None else SessionState()
        self._sampler_factory = sampler_factory
        self._poll_rate = poll_rate
        self._refresh_rate = refresh_rate
        self._poller: PollingLoop | None = None
        self._refresh_timer: Timer | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        with ContentSwitcher(initial=Workflow.ENTERING_CREDENTIALS.value):
            yield CredentialView(id=Workflow.ENTERING_CREDENTIALS.value)
            yield ConnectingView(id=Workflow.CONNECTING.value)
            yield MonitorView(id=Workflow.MONITORING.value)
        yield Footer()

    def on_mount(self) -> None:
        """Draw the first frame and start the redraw timer."""
        self._refresh_frame()
        self._refresh_timer = self.set_interval(self._refresh_rate, self._refresh_frame)

    def on_unmount(self) -> None:
        """Stop redrawing and polling however the app is torn down."""
        if self._refresh_timer is not None:
            self._refresh_timer.stop()
            self._refresh_timer = None
        self._stop_polling()

    def _refresh_frame(self) -> None:
        """Advance the animation and redraw from a fresh snapshot."""
        self._state.tick()
        frame = self._state.snapshot()
        try:
            switcher = self.query_one(ContentSwitcher)
            switcher.current = frame.workflow.value
            if frame.workflow is Workflow.ENTERING_CREDENTIALS:
                self.query_one(CredentialView).show(frame)
            elif frame.workflow is Workflow.CONNECTING:
                self.query_one(ConnectingView).show(frame)
            else:
                self.query_one(MonitorView).show(frame)
        except NoMatches:
            # Views are already gone while the app shuts down
            logger.debug("Skipping redraw: views not mounted")

    def on_key(self, event: events.Key) -> None:
        """Route keys not claimed by a binding."""
        if self._route(event.key, event.character):
            event.stop()

    def action_route_key(self, key: str) -> None:
        self._route(key, None)

    def _route(self, key: str, character: str | None) -> bool:
        event = decode_key(self._state.snapshot(), key, character)
        if event is None:
            return False
        self.apply_event(event)
        return True

    def apply_event(self, event: Event) -> None:
        """Apply a structural event and act on its outcome."""
        request = self._state.handle(event)
        if isinstance(event, Quit):
            self.action_quit()
            return
        if request is not None:
            self._start_polling(request)
        self._refresh_frame()

    def _start_polling(self, request: ConnectRequest) -> None:
        if self._poller is not None:
            # The old loop sees the new generation and exits on its own
            self._poller.stop(timeout=0)
        self._poller = PollingLoop(
            self._state,
            self._sampler_factory(),
            request,
            poll_rate=self._poll_rate,
        )
        self._poller.start()

    def _stop_polling(self) -> None:
        self._state.request_stop()
        if self._poller is not None:
            self._poller.stop(timeout=1.0)

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._stop_polling()
        self.exit()


def configure_logging(settings: dict[str, Any]) -> None:
    """Send log records to a file, or to the Textual console when no file is set."""
    level = getattr(logging, str(settings.get("level", "INFO")).upper(), logging.INFO)
    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    log_file = settings.get("file") or ""
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        logging.basicConfig(filename=path, level=level, format=fmt)
    else:
        logging.basicConfig(handlers=[TextualHandler()], level=level, format=fmt)
    logging.getLogger("paramiko").setLevel(max(level, logging.WARNING))


def build_app(config: dict[str, Any]) -> SshtopApp:
    """Create the application from a merged configuration."""
    connection = config["connection"]
    monitor = config["monitor"]
    form = CredentialForm(
        values={
            FormField.HOST: connection["host"],
            FormField.USERNAME: connection["username"],
            FormField.KEY_PATH: connection["key_path"],
        },
        use_key=bool(connection["use_key"]),
    )
    if form.host and form.username:
        form.active_field = FormField.KEY_PATH if form.use_key else FormField.PASSWORD

    state = SessionState(
        form=form,
        history_size=int(monitor["history_size"]),
        port=int(connection["port"]),
    )
    timeout = float(connection["timeout"])
    return SshtopApp(
        state=state,
        sampler_factory=lambda: Sampler(ParamikoSession(timeout=timeout)),
        poll_rate=float(monitor["poll_interval"]),
    )


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for sshtop application."""
    parser = argparse.ArgumentParser(
        description="Live per-user CPU and memory usage of a remote host over SSH.",
    )
    parser.add_argument("--config", type=Path, default=None, metavar="PATH", help="Path to TOML config file")
    parser.add_argument("--host", default=None, help="Remote host to prefill")
    parser.add_argument("--user", default=None, help="Remote username to prefill")
    parser.add_argument("--port", type=int, default=None, help="SSH port (default: 22)")
    parser.add_argument("--key", default=None, metavar="PATH", help="Log in with this private key file")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between polls (default: 2)")
    parser.add_argument("--log-file", default=None, metavar="PATH", help="Log file ('' for the Textual console)")
    parser.add_argument("--log-level", default=None, help="Logging level (default: INFO)")
    parser.add_argument("--dump-config", action="store_true", help="Print the default config and exit")
    args = parser.parse_args(argv)

    if args.dump_config:
        print(dump_default_config(), end="")
        return

    try:
        config = load_config(args.config)
        config = apply_overrides(
            config,
            {
                "connection": {
                    "host": args.host,
                    "username": args.user,
                    "port": args.port,
                    "key_path": args.key,
                    "use_key": True if args.key else None,
                },
                "monitor": {"poll_interval": args.interval},
                "logging": {"file": args.log_file, "level": args.log_level},
            },
        )
    except ConfigError as e:
        print(f"sshtop: {e}", file=sys.stderr)
        raise SystemExit(1) from e

    configure_logging(config["logging"])
    app = build_app(config)
    app.run()
    raise SystemExit(app.return_code or 0)


if __name__ == "__main__":
    main()
