"""Data models for sshtop."""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Workflow(Enum):
    """Connection lifecycle of one monitoring session."""

    ENTERING_CREDENTIALS = "credentials"
    CONNECTING = "connecting"
    MONITORING = "monitoring"


class SortKey(Enum):
    """Sort keys for the user table."""

    CPU = "cpu"
    RAM = "ram"


@dataclass(slots=True, frozen=True)
class UserSample:
    """Aggregated CPU and memory reading for one remote account."""

    username: str
    cpu_percent: float  # summed over processes, may exceed 100.0
    ram_megabytes: float
    sampled_at: datetime


@dataclass(slots=True, frozen=True)
class AggregatePoint:
    """One point of the history series: totals across a whole batch."""

    cpu_total: float
    ram_total: float
    captured_at: datetime

    @classmethod
    def from_samples(cls, samples: Iterable[UserSample], captured_at: datetime) -> "AggregatePoint":
        """Sum CPU and RAM over a batch of samples."""
        cpu_total = 0.0
        ram_total = 0.0
        for sample in samples:
            cpu_total += sample.cpu_percent
            ram_total += sample.ram_megabytes
        return cls(cpu_total=cpu_total, ram_total=ram_total, captured_at=captured_at)


@dataclass(slots=True, frozen=True)
class SampleBatch:
    """Everything one successful poll produced, applied as a unit."""

    users: tuple[UserSample, ...]
    total_memory_mb: float  # 0.0 when the remote host did not report it
    sampled_at: datetime

    def aggregate(self) -> AggregatePoint:
        """Return the history point for this batch."""
        return AggregatePoint.from_samples(self.users, self.sampled_at)


@dataclass(slots=True, frozen=True)
class PasswordAuth:
    """Authenticate with a password."""

    password: str

    def __repr__(self) -> str:
        return "PasswordAuth(password='***')"


@dataclass(slots=True, frozen=True)
class KeyFileAuth:
    """Authenticate with a private key file."""

    key_path: str


Auth = PasswordAuth | KeyFileAuth


@dataclass(slots=True, frozen=True)
class Credentials:
    """Where to connect and how to log in."""

    host: str
    username: str
    auth: Auth
    port: int = 22


def sort_samples(samples: Sequence[UserSample], key: SortKey) -> list[UserSample]:
    """
    Sort samples descending by the given key.

    Python's sort is stable (also with reverse=True), so samples with equal
    values keep their batch order.
    """
    if key is SortKey.CPU:
        return sorted(samples, key=lambda s: s.cpu_percent, reverse=True)
    return sorted(samples, key=lambda s: s.ram_megabytes, reverse=True)
