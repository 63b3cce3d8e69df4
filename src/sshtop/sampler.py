"""Remote sampling of per-user CPU and memory usage over SSH."""

import logging
import math
import socket
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any, Protocol

import paramiko
from paramiko.pkey import UnknownKeyType

from sshtop.exceptions import AuthError, ConnectError, ExecError, SampleError
from sshtop.models import Auth, Credentials, KeyFileAuth, PasswordAuth, SampleBatch, UserSample

logger = logging.getLogger(__name__)

# Sums %CPU and RSS (KiB) per account over the live process table and prints
# one "user cpu mem_mb" line per account.
USER_STATS_COMMAND = (
    "ps aux | awk 'NR>1 {cpu[$1]+=$3; rss[$1]+=$6} "
    'END {for (u in cpu) printf "%s %.2f %.2f\\n", u, cpu[u], rss[u]/1024}\''
)

# Installed memory in MiB.
TOTAL_MEMORY_COMMAND = "free -m | awk 'NR==2 {print $2}'"

DEFAULT_TIMEOUT = 10.0

_READ_CHUNK = 32768
_DRAIN_WAIT = 0.05


class RemoteSession(Protocol):
    """The remote-shell operations the Sampler needs."""

    def connect(self, host: str, port: int) -> Any:
        """Open a connection; raise ConnectError on failure."""
        ...

    def authenticate(self, connection: Any, username: str, auth: Auth) -> None:
        """Log in on an open connection; raise AuthError on rejection."""
        ...

    def execute(self, connection: Any, command: str) -> str:
        """Run a command and return its stdout; raise ExecError on failure."""
        ...

    def close(self, connection: Any) -> None:
        """Release the connection. Never raises."""
        ...


class ParamikoSession:
    """RemoteSession backed by a paramiko Transport."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._timeout = timeout

    def connect(self, host: str, port: int) -> paramiko.Transport:
        try:
            sock = socket.create_connection((host, port), timeout=self._timeout)
        except OSError as e:
            raise ConnectError(f"cannot reach {host}:{port}: {e}", cause=e) from e

        transport = paramiko.Transport(sock)
        try:
            transport.start_client(timeout=self._timeout)
        except (paramiko.SSHException, OSError, EOFError) as e:
            transport.close()
            raise ConnectError(f"SSH handshake with {host}:{port} failed: {e}", cause=e) from e

        # The host key is not checked against known_hosts; its fingerprint is
        # only logged.
        logger.info(
            "Connected to %s:%d, host key %s",
            host,
            port,
            transport.get_remote_server_key().fingerprint,
        )
        return transport

    def authenticate(self, connection: paramiko.Transport, username: str, auth: Auth) -> None:
        try:
            if isinstance(auth, KeyFileAuth):
                key = self._load_key(auth.key_path)
                connection.auth_publickey(username, key)
            else:
                connection.auth_password(username, auth.password)
        except paramiko.AuthenticationException as e:
            raise AuthError(f"authentication rejected for {username}: {e}", cause=e) from e
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise AuthError(f"authentication failed for {username}: {e}", cause=e) from e

        if not connection.is_authenticated():
            raise AuthError(f"authentication incomplete for {username}")

    def _load_key(self, key_path: str) -> paramiko.PKey:
        try:
            return paramiko.PKey.from_path(key_path)
        except paramiko.PasswordRequiredException as e:
            raise AuthError(f"key {key_path} is passphrase protected", cause=e) from e
        except (OSError, paramiko.SSHException, UnknownKeyType, ValueError) as e:
            raise AuthError(f"cannot load key {key_path}: {e}", cause=e) from e

    def execute(self, connection: paramiko.Transport, command: str) -> str:
        try:
            channel = connection.open_session(timeout=self._timeout)
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise ExecError(f"cannot open channel: {e}", cause=e) from e

        try:
            channel.settimeout(self._timeout)
            channel.exec_command(command)
            stdout, stderr = self._drain(channel)
            status = channel.recv_exit_status()
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise ExecError(f"command failed: {e}", cause=e) from e
        finally:
            channel.close()

        if status != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise ExecError(f"command exited with status {status}: {detail}")
        return stdout.decode("utf-8", errors="replace")

    def _drain(self, channel: paramiko.Channel) -> tuple[bytes, bytes]:
        """
        Collect stdout and stderr together until the command exits.

        Both streams share the channel window, so neither may be left
        unread while waiting on the other.
        """
        stdout = bytearray()
        stderr = bytearray()
        deadline = time.monotonic() + self._timeout
        while True:
            idle = True
            if channel.recv_ready():
                stdout += channel.recv(_READ_CHUNK)
                idle = False
            if channel.recv_stderr_ready():
                stderr += channel.recv_stderr(_READ_CHUNK)
                idle = False
            if not idle:
                continue
            if channel.exit_status_ready():
                break
            if time.monotonic() > deadline:
                raise ExecError(f"command timed out after {self._timeout:.0f}s")
            channel.status_event.wait(_DRAIN_WAIT)

        # Output received before the exit status may still be buffered
        while channel.recv_ready():
            stdout += channel.recv(_READ_CHUNK)
        while channel.recv_stderr_ready():
            stderr += channel.recv_stderr(_READ_CHUNK)
        return bytes(stdout), bytes(stderr)

    def close(self, connection: paramiko.Transport) -> None:
        connection.close()


def _parse_metric(token: str) -> float:
    """Parse a metric value; anything unusable reads as 0.0."""
    try:
        value = float(token)
    except ValueError:
        return 0.0
    if not math.isfinite(value) or value < 0:
        return 0.0
    return value


def parse_user_stats(output: str, sampled_at: datetime) -> list[UserSample]:
    """
    Parse "username cpu mem_mb" lines into UserSamples.

    Lines with fewer than three tokens are skipped and bad numbers read as
    0.0, so one malformed line never spoils the batch. Repeated usernames are
    summed into their first occurrence.
    """
    totals: dict[str, tuple[float, float]] = {}
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 3:
            if parts:
                logger.debug("Skipping short stats line: %r", line)
            continue

        username = parts[0]
        cpu = _parse_metric(parts[1])
        ram = _parse_metric(parts[2])
        if username in totals:
            prev_cpu, prev_ram = totals[username]
            cpu += prev_cpu
            ram += prev_ram
        totals[username] = (cpu, ram)

    return [
        UserSample(username=name, cpu_percent=cpu, ram_megabytes=ram, sampled_at=sampled_at)
        for name, (cpu, ram) in totals.items()
    ]


def parse_total_memory(output: str) -> float:
    """Parse the installed-memory figure; 0.0 means unknown."""
    parts = output.split()
    if not parts:
        return 0.0
    return _parse_metric(parts[0])


class Sampler:
    """
    Fetches one batch of per-user metrics from a remote host.

    The authenticated connection is kept for later fetches with the same
    credentials and dropped on any failure, so the next fetch reconnects.
    A Sampler is used by one polling thread at a time.
    """

    def __init__(
        self,
        session: RemoteSession | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._session: RemoteSession = session if session is not None else ParamikoSession()
        self._clock = clock
        self._connection: Any = None
        self._credentials: Credentials | None = None

    @property
    def is_connected(self) -> bool:
        """Whether an authenticated connection is being held."""
        return self._connection is not None

    def fetch(self, credentials: Credentials) -> SampleBatch:
        """
        Run both remote commands and return the parsed batch.

        Raises:
            SampleError: ConnectError, AuthError or ExecError with a
                human-readable cause.
        """
        connection = self._ensure_connection(credentials)
        try:
            users_output = self._session.execute(connection, USER_STATS_COMMAND)
            sampled_at = self._clock()
            memory_output = self._session.execute(connection, TOTAL_MEMORY_COMMAND)
        except SampleError:
            self.close()
            raise

        users = parse_user_stats(users_output, sampled_at)
        total_memory_mb = parse_total_memory(memory_output)
        return SampleBatch(users=tuple(users), total_memory_mb=total_memory_mb, sampled_at=sampled_at)

    def _ensure_connection(self, credentials: Credentials) -> Any:
        if self._connection is not None and self._credentials == credentials:
            return self._connection
        self.close()

        connection = self._session.connect(credentials.host, credentials.port)
        try:
            self._session.authenticate(connection, credentials.username, credentials.auth)
        except SampleError:
            self._session.close(connection)
            raise

        logger.info("Authenticated as %s@%s", credentials.username, credentials.host)
        self._connection = connection
        self._credentials = credentials
        return connection

    def close(self) -> None:
        """Drop the held connection, if any."""
        if self._connection is not None:
            self._session.close(self._connection)
        self._connection = None
        self._credentials = None
