"""Tests for the renderer's Frame projection."""

import dataclasses

import pytest

from sshtop.history import HistoryBuffer
from sshtop.models import SortKey, Workflow
from sshtop.projection import ChartSeries, Frame, FormView, build_frame
from sshtop.state import CredentialForm, FormField, LoadingAnimation

from conftest import make_batch


def frame_for(form=None, users=(), selected_index=0, history=None, total=0.0) -> Frame:
    return build_frame(
        workflow=Workflow.MONITORING,
        form=form if form is not None else CredentialForm(),
        error=None,
        loading=LoadingAnimation(),
        users=list(users),
        selected_index=selected_index,
        sort_key=SortKey.CPU,
        history=history if history is not None else HistoryBuffer(),
        remote_total_memory_mb=total,
    )


def test_form_view_has_no_password():
    """Test the projected form exposes only the password length."""
    form = CredentialForm(values={FormField.HOST: "h", FormField.USERNAME: "u", FormField.PASSWORD: "hunter2"})
    frame = frame_for(form=form)

    assert frame.form.secret_length == 7
    assert frame.form.is_valid
    assert "password" not in {f.name for f in dataclasses.fields(FormView)}
    assert "hunter2" not in repr(frame)


def test_frame_is_frozen():
    """Test the Frame cannot be modified by the renderer."""
    frame = frame_for()
    with pytest.raises(dataclasses.FrozenInstanceError):
        frame.selected_index = 3


def test_users_copied():
    """Test later changes to the state's list do not reach the Frame."""
    users = list(make_batch(("alice", 1.0, 2.0)).users)
    frame = frame_for(users=users)
    users.clear()

    assert len(frame.users) == 1


def test_selected_user_and_totals():
    """Test the selected row and totals derive from the users."""
    batch = make_batch(("alice", 12.5, 200.0), ("bob", 3.0, 50.0))
    frame = frame_for(users=batch.users, selected_index=1)

    assert frame.selected_user.username == "bob"
    assert frame.cpu_total == 15.5
    assert frame.ram_total == 250.0


def test_selected_user_empty():
    """Test no user is selected when the list is empty."""
    assert frame_for().selected_user is None


def test_chart_bounds():
    """Test chart series carry the history bounds."""
    history = HistoryBuffer()
    history.push(make_batch(("alice", 12.5, 200.0), ("bob", 3.0, 50.0)).aggregate())
    frame = frame_for(history=history, total=4096.0)

    assert frame.cpu_chart.points == ((0.0, 15.5),)
    assert frame.cpu_chart.lower_bound == 0.0
    assert frame.cpu_chart.upper_bound == pytest.approx(17.05)
    assert frame.ram_chart.upper_bound == pytest.approx(4505.6)
    assert frame.ram_chart.values == [250.0]


def test_chart_series_values():
    """Test values drops the indices."""
    series = ChartSeries(points=((0.0, 1.0), (1.0, 2.0)), lower_bound=0.0, upper_bound=11.0)
    assert series.values == [1.0, 2.0]
