"""Shared session state and its transitions."""

import logging
import os
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from sshtop.history import MAX_HISTORY, HistoryBuffer
from sshtop.models import (
    Credentials,
    KeyFileAuth,
    PasswordAuth,
    SampleBatch,
    SortKey,
    UserSample,
    Workflow,
    sort_samples,
)
from sshtop.projection import Frame, build_frame

logger = logging.getLogger(__name__)


def default_key_path() -> str:
    """The conventional private key location for the current user."""
    return os.path.join(os.path.expanduser("~"), ".ssh", "id_rsa")


# ── Credential form ─────────────────────────────────────────────────────────


class FormField(Enum):
    """Fields of the credential form, in display order."""

    HOST = "host"
    USERNAME = "username"
    USE_KEY = "use_key"
    PASSWORD = "password"
    KEY_PATH = "key_path"


# Which text fields accept edits, given the current auth mode.
# USE_KEY is a checkbox and has no text.
_EDITABLE: dict[FormField, Callable[["CredentialForm"], bool]] = {
    FormField.HOST: lambda form: True,
    FormField.USERNAME: lambda form: True,
    FormField.PASSWORD: lambda form: not form.use_key,
    FormField.KEY_PATH: lambda form: form.use_key,
}


@dataclass
class CredentialForm:
    """Editable connection form. The password never leaves this object except as Credentials."""

    values: dict[FormField, str] = field(default_factory=dict)
    use_key: bool = False
    active_field: FormField = FormField.HOST

    def __post_init__(self) -> None:
        for form_field in _EDITABLE:
            self.values.setdefault(form_field, "")
        if not self.values[FormField.KEY_PATH]:
            self.values[FormField.KEY_PATH] = default_key_path()

    def __repr__(self) -> str:
        return (
            f"CredentialForm(host={self.host!r}, username={self.username!r}, "
            f"use_key={self.use_key}, active_field={self.active_field})"
        )

    @property
    def host(self) -> str:
        return self.values[FormField.HOST]

    @property
    def username(self) -> str:
        return self.values[FormField.USERNAME]

    @property
    def password(self) -> str:
        return self.values[FormField.PASSWORD]

    @property
    def key_path(self) -> str:
        return self.values[FormField.KEY_PATH]

    def _secret_field(self) -> FormField:
        return FormField.KEY_PATH if self.use_key else FormField.PASSWORD

    def next_field(self) -> None:
        """Move focus down; the last field depends on the auth mode."""
        order = [FormField.HOST, FormField.USERNAME, FormField.USE_KEY, self._secret_field()]
        if self.active_field not in order:
            self.active_field = FormField.HOST
            return
        self.active_field = order[(order.index(self.active_field) + 1) % len(order)]

    def previous_field(self) -> None:
        """Move focus up, wrapping from Host to the auth field."""
        order = [FormField.HOST, FormField.USERNAME, FormField.USE_KEY, self._secret_field()]
        if self.active_field not in order:
            self.active_field = FormField.USE_KEY
            return
        self.active_field = order[(order.index(self.active_field) - 1) % len(order)]

    def insert_char(self, char: str) -> None:
        """Append a character to the active text field, if it is editable."""
        editable = _EDITABLE.get(self.active_field)
        if editable is not None and editable(self):
            self.values[self.active_field] += char

    def delete_char(self) -> None:
        """Remove the last character of the active text field."""
        editable = _EDITABLE.get(self.active_field)
        if editable is not None and editable(self):
            self.values[self.active_field] = self.values[self.active_field][:-1]

    def toggle_auth_mode(self) -> None:
        """Switch between password and key-file login while the checkbox is focused."""
        if self.active_field is not FormField.USE_KEY:
            return
        self.use_key = not self.use_key
        if self.use_key:
            self.values[FormField.PASSWORD] = ""

    def is_valid(self) -> bool:
        """Host and username set, and a password unless a key file is used."""
        return bool(self.host) and bool(self.username) and (self.use_key or bool(self.password))

    def credentials(self, port: int = 22) -> Credentials:
        """Build Credentials carrying exactly one auth method."""
        auth = KeyFileAuth(os.path.expanduser(self.key_path)) if self.use_key else PasswordAuth(self.password)
        return Credentials(host=self.host, username=self.username, auth=auth, port=port)


# ── Connecting animation ────────────────────────────────────────────────────


@dataclass
class LoadingAnimation:
    """Bouncing progress indicator shown while connecting."""

    progress: int = 0
    direction: int = 1
    message: str = "Connecting to SSH server..."

    STEP = 2
    LIMIT = 100

    def advance(self) -> None:
        if self.direction > 0:
            self.progress = min(self.progress + self.STEP, self.LIMIT)
            if self.progress >= self.LIMIT:
                self.direction = -1
        elif self.progress <= self.STEP:
            self.progress = 0
            self.direction = 1
        else:
            self.progress -= self.STEP


# ── Structural events ───────────────────────────────────────────────────────


@dataclass(slots=True, frozen=True)
class FieldEdit:
    char: str


@dataclass(slots=True, frozen=True)
class FieldDelete:
    pass


@dataclass(slots=True, frozen=True)
class FieldNext:
    pass


@dataclass(slots=True, frozen=True)
class FieldPrevious:
    pass


@dataclass(slots=True, frozen=True)
class ToggleAuthMode:
    pass


@dataclass(slots=True, frozen=True)
class Submit:
    pass


@dataclass(slots=True, frozen=True)
class Cancel:
    pass


@dataclass(slots=True, frozen=True)
class Exit:
    pass


@dataclass(slots=True, frozen=True)
class MoveSelection:
    delta: int


@dataclass(slots=True, frozen=True)
class SetSort:
    key: SortKey


@dataclass(slots=True, frozen=True)
class Quit:
    pass


Event = (
    FieldEdit
    | FieldDelete
    | FieldNext
    | FieldPrevious
    | ToggleAuthMode
    | Submit
    | Cancel
    | Exit
    | MoveSelection
    | SetSort
    | Quit
)


@dataclass(slots=True, frozen=True)
class ConnectRequest:
    """Returned by a valid submit: start polling for this generation."""

    generation: int
    credentials: Credentials

    def __repr__(self) -> str:
        c = self.credentials
        return f"ConnectRequest(generation={self.generation}, target={c.username}@{c.host}:{c.port})"


# ── Session state ───────────────────────────────────────────────────────────


class SessionState:
    """
    The one shared mutable state of a running sshtop.

    Shared by the interactive thread and at most one live PollingLoop. Every
    read and write happens inside ``self._lock`` and no I/O is done while it
    is held. Readers outside this class get an immutable Frame from
    snapshot().

    ``generation`` identifies the current connection attempt. It advances on
    every submit, cancel and exit, and background results carrying an older
    generation are dropped.
    """

    def __init__(
        self,
        form: CredentialForm | None = None,
        history_size: int = MAX_HISTORY,
        port: int = 22,
    ) -> None:
        self._lock = threading.Lock()
        self._port = port
        self._workflow = Workflow.ENTERING_CREDENTIALS
        self._form = form if form is not None else CredentialForm()
        self._last_error: str | None = None
        self._loading = LoadingAnimation()
        self._users: list[UserSample] = []
        self._history = HistoryBuffer(history_size)
        self._sort_key = SortKey.CPU
        self._selected_index = 0
        self._remote_total_memory_mb = 0.0
        self._stop_requested = False
        self._generation = 0

        self._handlers: dict[Workflow, dict[type, Callable]] = {
            Workflow.ENTERING_CREDENTIALS: {
                FieldEdit: lambda e: self._form.insert_char(e.char),
                FieldDelete: lambda e: self._form.delete_char(),
                FieldNext: lambda e: self._form.next_field(),
                FieldPrevious: lambda e: self._form.previous_field(),
                ToggleAuthMode: lambda e: self._form.toggle_auth_mode(),
                Submit: lambda e: self._submit(),
            },
            Workflow.CONNECTING: {
                Cancel: lambda e: self._cancel(),
            },
            Workflow.MONITORING: {
                SetSort: lambda e: self._set_sort(e.key),
                MoveSelection: lambda e: self._move_selection(e.delta),
                Exit: lambda e: self._exit_monitoring(),
            },
        }

    # -- interactive side ----------------------------------------------------

    def handle(self, event: Event) -> ConnectRequest | None:
        """
        Apply one structural event.

        Events that do not apply to the current workflow are ignored.

        Returns:
            A ConnectRequest when a valid submit started a connection; the
            caller must start polling for it outside the lock.
        """
        with self._lock:
            if isinstance(event, Quit):
                self._stop_requested = True
                return None
            handler = self._handlers[self._workflow].get(type(event))
            if handler is None:
                return None
            return handler(event)

    def tick(self) -> None:
        """Advance the connecting animation; called once per interactive tick."""
        with self._lock:
            if self._workflow is Workflow.CONNECTING:
                self._loading.advance()

    def snapshot(self) -> Frame:
        """Return an immutable view of everything the renderer needs."""
        with self._lock:
            return build_frame(
                workflow=self._workflow,
                form=self._form,
                error=self._last_error,
                loading=self._loading,
                users=self._users,
                selected_index=self._selected_index,
                sort_key=self._sort_key,
                history=self._history,
                remote_total_memory_mb=self._remote_total_memory_mb,
            )

    def request_stop(self) -> None:
        with self._lock:
            self._stop_requested = True

    @property
    def stop_requested(self) -> bool:
        with self._lock:
            return self._stop_requested

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def _submit(self) -> ConnectRequest | None:
        if not self._form.is_valid():
            return None
        self._workflow = Workflow.CONNECTING
        self._loading = LoadingAnimation()
        self._generation += 1
        request = ConnectRequest(self._generation, self._form.credentials(self._port))
        logger.info("Connecting: %r", request)
        return request

    def _cancel(self) -> None:
        self._workflow = Workflow.ENTERING_CREDENTIALS
        self._generation += 1
        logger.info("Connection attempt cancelled")

    def _exit_monitoring(self) -> None:
        self._workflow = Workflow.ENTERING_CREDENTIALS
        self._users = []
        self._history.clear()
        self._selected_index = 0
        self._remote_total_memory_mb = 0.0
        self._generation += 1
        logger.info("Left monitoring")

    def _set_sort(self, key: SortKey) -> None:
        self._sort_key = key
        self._users = sort_samples(self._users, key)

    def _move_selection(self, delta: int) -> None:
        if not self._users:
            return
        self._selected_index = (self._selected_index + delta) % len(self._users)

    # -- polling side --------------------------------------------------------

    def _is_live(self, generation: int, workflow: Workflow) -> bool:
        return (
            not self._stop_requested
            and generation == self._generation
            and self._workflow is workflow
        )

    def should_continue(self, generation: int) -> bool:
        """Whether the loop for ``generation`` should keep polling."""
        with self._lock:
            return self._is_live(generation, Workflow.MONITORING)

    def commit_initial(self, generation: int, batch: SampleBatch) -> bool:
        """
        Apply the first successful fetch and enter Monitoring.

        Returns False (and changes nothing) if the attempt was cancelled or
        superseded in the meantime.
        """
        with self._lock:
            if not self._is_live(generation, Workflow.CONNECTING):
                return False
            self._workflow = Workflow.MONITORING
            self._last_error = None
            self._selected_index = 0
            self._apply(batch)
            return True

    def fail_initial(self, generation: int, message: str) -> bool:
        """Return to the credential form with ``message``; False if stale."""
        with self._lock:
            if not self._is_live(generation, Workflow.CONNECTING):
                return False
            self._workflow = Workflow.ENTERING_CREDENTIALS
            self._last_error = message
            return True

    def merge(self, generation: int, batch: SampleBatch) -> bool:
        """Apply a background batch; False if it arrived after Monitoring ended."""
        with self._lock:
            if not self._is_live(generation, Workflow.MONITORING):
                return False
            self._apply(batch)
            return True

    def _apply(self, batch: SampleBatch) -> None:
        self._remote_total_memory_mb = batch.total_memory_mb
        self._users = sort_samples(batch.users, self._sort_key)
        if self._users and self._selected_index >= len(self._users):
            self._selected_index = len(self._users) - 1
        self._history.push(batch.aggregate())
