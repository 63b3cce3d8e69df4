"""Pytest configuration and shared fixtures."""

import threading
import time
from collections.abc import Callable
from datetime import datetime

import pytest

from sshtop.exceptions import ExecError
from sshtop.models import Credentials, SampleBatch, UserSample
from sshtop.state import CredentialForm, FormField, SessionState

SAMPLED_AT = datetime(2024, 5, 1, 12, 0, 0)


def make_batch(*users: tuple[str, float, float], total_memory_mb: float = 0.0) -> SampleBatch:
    """Build a SampleBatch from (username, cpu, ram) tuples."""
    return SampleBatch(
        users=tuple(
            UserSample(username=name, cpu_percent=cpu, ram_megabytes=ram, sampled_at=SAMPLED_AT)
            for name, cpu, ram in users
        ),
        total_memory_mb=total_memory_mb,
        sampled_at=SAMPLED_AT,
    )


class FakeSampler:
    """Sampler stand-in returning scripted batches or raising scripted errors."""

    def __init__(self, results=(), default=None, gate: threading.Event | None = None) -> None:
        self._results = list(results)
        self._default = default
        self.gate = gate
        self.credentials: list[Credentials] = []
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.credentials)

    def fetch(self, credentials: Credentials) -> SampleBatch:
        self.credentials.append(credentials)
        if self.gate is not None:
            self.gate.wait(timeout=5.0)
        result = self._results.pop(0) if self._results else self._default
        if result is None:
            raise ExecError("no scripted result")
        if isinstance(result, BaseException):
            raise result
        return result

    def close(self) -> None:
        self.closed = True


def wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    """Poll predicate until it holds or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def batch_factory():
    """Provide make_batch to tests."""
    return make_batch


@pytest.fixture
def fake_sampler_cls():
    """Provide the FakeSampler class to tests."""
    return FakeSampler


@pytest.fixture
def wait():
    """Provide wait_until to tests."""
    return wait_until


@pytest.fixture
def filled_form() -> CredentialForm:
    """A valid password form for host h, user u."""
    return CredentialForm(
        values={FormField.HOST: "h", FormField.USERNAME: "u", FormField.PASSWORD: "p"},
    )


@pytest.fixture
def session(filled_form: CredentialForm) -> SessionState:
    """Session state whose form is ready to submit."""
    return SessionState(form=filled_form)
