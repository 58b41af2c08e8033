"""Execution transports: local child processes and SSH sessions.

Both run the command as a child process with a hard deadline. On POSIX the
child leads its own process group, so a timeout or cancel also reaches
anything it spawned. The SSH transport wraps the command in an ``ssh``
invocation, so killing the child tears down the remote session as well.
"""

import logging
import os
import shlex
import signal
import subprocess
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from dispatcher.config import RemoteChannelConfig
from dispatcher.errors import TransportError
from dispatcher.models.worker import Worker, WorkerKind

logger = logging.getLogger(__name__)

# ssh reserves this exit code for its own failures
SSH_FAILURE_EXIT_CODE = 255

_POSIX = os.name == "posix"

# Seconds to wait for exit after SIGTERM, then after SIGKILL
_GRACE_PERIOD = 2.0


@dataclass(frozen=True)
class CommandResult:
    """What a transport reports back for one command."""
    exit_code: Optional[int]
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    timed_out: bool = False
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled


class Transport(ABC):
    """Remote-execution channel contract shared by local and remote workers."""

    @abstractmethod
    def submit(
        self,
        command: str,
        timeout: float,
        cancelled: Optional[Callable[[], bool]] = None,
    ) -> CommandResult:
        """Run ``command`` to completion or until ``timeout`` seconds pass."""
        ...

    def probe(self, timeout: float) -> bool:
        """True if the channel can currently reach its endpoint."""
        return True


class LocalTransport(Transport):
    """Runs commands as child processes of this one."""

    def __init__(self, poll_interval: float = 0.05, env: Optional[dict[str, str]] = None):
        self.poll_interval = poll_interval
        self.env = env

    def submit(self, command, timeout, cancelled=None) -> CommandResult:
        try:
            argv = split_command(command)
        except ValueError as error:
            return CommandResult(exit_code=2, stderr=f"cannot parse command {command!r}: {error}")
        try:
            return run_process(argv, timeout, cancelled, self.poll_interval, self.env)
        except FileNotFoundError as error:
            return CommandResult(exit_code=127, stderr=f"command not found: {argv[0]} ({error})")
        except (OSError, ValueError) as error:
            return CommandResult(exit_code=126, stderr=f"cannot start {argv[0]}: {error}")


class SshTransport(Transport):
    """Runs commands on a remote host through the ``ssh`` client."""

    def __init__(
        self,
        host: str,
        user: Optional[str] = None,
        port: Optional[int] = None,
        channel: Optional[RemoteChannelConfig] = None,
        poll_interval: float = 0.05,
    ):
        self.host = host
        self.user = user
        self.port = port
        self.channel = channel or RemoteChannelConfig()
        self.poll_interval = poll_interval

    @property
    def target(self) -> str:
        return f"{self.user}@{self.host}" if self.user else self.host

    def build_argv(self, command: str) -> list[str]:
        argv = [
            self.channel.ssh_binary,
            "-o", "BatchMode=yes",
            "-o", f"ConnectTimeout={self.channel.connect_timeout}",
        ]
        for option in self.channel.options:
            argv += ["-o", option]
        if self.port is not None:
            argv += ["-p", str(self.port)]
        argv += [self.target, command]
        return argv

    def submit(self, command, timeout, cancelled=None) -> CommandResult:
        try:
            result = run_process(self.build_argv(command), timeout, cancelled, self.poll_interval)
        except OSError as error:
            raise TransportError(
                f"cannot start {self.channel.ssh_binary} for {self.target}: {error}"
            ) from error

        if result.exit_code == SSH_FAILURE_EXIT_CODE:
            raise TransportError(
                f"ssh session to {self.target} failed",
                exit_code=result.exit_code,
                output=result.stderr,
            )
        return result

    def probe(self, timeout: float) -> bool:
        try:
            return self.submit("true", timeout).ok
        except TransportError as error:
            logger.debug("Probe of %s failed: %s", self.target, error)
            return False


def build_transport(worker: Worker, channel: Optional[RemoteChannelConfig] = None) -> Transport:
    """Transport matching the worker's kind."""
    if worker.kind == WorkerKind.REMOTE:
        return SshTransport(worker.address, user=worker.user, port=worker.port, channel=channel)
    return LocalTransport()


def split_command(command: str) -> list[str]:
    argv = shlex.split(command, posix=os.name != "nt")
    if not argv:
        raise ValueError("empty command")
    return argv


def run_process(
    argv: list[str],
    timeout: float,
    cancelled: Optional[Callable[[], bool]] = None,
    poll_interval: float = 0.05,
    env: Optional[dict[str, str]] = None,
) -> CommandResult:
    """Run a child process with a hard deadline and a cancellation check.

    Raises OSError if the process cannot be started, ValueError if ``argv``
    cannot be passed to the OS (e.g. an embedded null byte).
    """
    started = time.monotonic()
    deadline = started + timeout
    process = subprocess.Popen(  # noqa: S603
        argv,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        stdin=subprocess.DEVNULL,
        env=env,
        text=True,
        errors="replace",
        start_new_session=_POSIX,
    )

    while True:
        remaining = deadline - time.monotonic()
        try:
            stdout, stderr = process.communicate(timeout=max(0.0, min(poll_interval, remaining)))
        except subprocess.TimeoutExpired:
            pass
        else:
            return CommandResult(
                exit_code=process.returncode,
                stdout=stdout,
                stderr=stderr,
                duration=time.monotonic() - started,
            )

        timed_out = time.monotonic() >= deadline
        was_cancelled = cancelled is not None and cancelled()
        if timed_out or was_cancelled:
            stdout, stderr = _terminate_process(process)
            return CommandResult(
                exit_code=process.returncode,
                stdout=stdout,
                stderr=stderr,
                duration=time.monotonic() - started,
                timed_out=timed_out and not was_cancelled,
                cancelled=was_cancelled,
            )


def _terminate_process(process: subprocess.Popen) -> tuple[str, str]:
    """Stop the child and its descendants; never blocks past the grace periods."""
    for kill in (False, True):
        _signal_group(process, kill)
        try:
            return process.communicate(timeout=_GRACE_PERIOD)
        except subprocess.TimeoutExpired:
            continue

    # Something outside the group still holds the pipes open
    logger.warning("Process %d left descendants holding its output; abandoning it", process.pid)
    for stream in (process.stdout, process.stderr):
        if stream is not None:
            stream.close()
    process.wait()
    return "", ""


def _signal_group(process: subprocess.Popen, kill: bool) -> None:
    try:
        if _POSIX:
            os.killpg(process.pid, signal.SIGKILL if kill else signal.SIGTERM)
        elif kill:
            process.kill()
        else:
            process.terminate()
    except OSError:
        # group already gone
        pass
