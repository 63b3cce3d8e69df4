"""Read-only view of the session state, built once per frame for the renderer."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sshtop.history import HistoryBuffer
from sshtop.models import SortKey, UserSample, Workflow

if TYPE_CHECKING:
    from sshtop.state import CredentialForm, FormField, LoadingAnimation


@dataclass(slots=True, frozen=True)
class FormView:
    """The credential form as the renderer may see it: no raw password."""

    host: str
    username: str
    secret_length: int
    use_key: bool
    key_path: str
    active_field: FormField
    is_valid: bool


@dataclass(slots=True, frozen=True)
class ChartSeries:
    """One history chart: (index, value) points and the axis range."""

    points: tuple[tuple[float, float], ...]
    lower_bound: float
    upper_bound: float

    @property
    def values(self) -> list[float]:
        return [value for _, value in self.points]


@dataclass(slots=True, frozen=True)
class Frame:
    """Everything needed to draw one frame."""

    workflow: Workflow
    form: FormView
    error: str | None
    loading_progress: int
    loading_message: str
    users: tuple[UserSample, ...]
    selected_index: int
    sort_key: SortKey
    cpu_chart: ChartSeries
    ram_chart: ChartSeries
    remote_total_memory_mb: float

    @property
    def selected_user(self) -> UserSample | None:
        if 0 <= self.selected_index < len(self.users):
            return self.users[self.selected_index]
        return None

    @property
    def cpu_total(self) -> float:
        return sum(u.cpu_percent for u in self.users)

    @property
    def ram_total(self) -> float:
        return sum(u.ram_megabytes for u in self.users)


def build_frame(
    *,
    workflow: Workflow,
    form: CredentialForm,
    error: str | None,
    loading: LoadingAnimation,
    users: Sequence[UserSample],
    selected_index: int,
    sort_key: SortKey,
    history: HistoryBuffer,
    remote_total_memory_mb: float,
) -> Frame:
    """
    Copy the renderer-relevant parts of the state into a Frame.

    Must be called with the state lock held. Users are already sorted, so
    this only copies; nothing is re-sorted per frame.
    """
    form_view = FormView(
        host=form.host,
        username=form.username,
        secret_length=len(form.password),
        use_key=form.use_key,
        key_path=form.key_path,
        active_field=form.active_field,
        is_valid=form.is_valid(),
    )
    return Frame(
        workflow=workflow,
        form=form_view,
        error=error,
        loading_progress=loading.progress,
        loading_message=loading.message,
        users=tuple(users),
        selected_index=selected_index,
        sort_key=sort_key,
        cpu_chart=ChartSeries(
            points=tuple(history.cpu_series()),
            lower_bound=0.0,
            upper_bound=history.cpu_upper_bound(),
        ),
        ram_chart=ChartSeries(
            points=tuple(history.ram_series()),
            lower_bound=0.0,
            upper_bound=history.ram_upper_bound(remote_total_memory_mb),
        ),
        remote_total_memory_mb=remote_total_memory_mb,
    )
