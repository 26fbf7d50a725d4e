"""Process pair — split into a controller and a worker bound to the PTY.

:func:`spawn` returns the role the current process plays after the split
instead of a raw pid, so callers branch on a type and tests can inject a
fake fork.
"""

from __future__ import annotations

import contextlib
import fcntl
import logging
import os
import signal
import termios
import traceback
from dataclasses import dataclass
from typing import Callable, NoReturn, Sequence, Union

from keyhook.errors import ExecError, SpawnError
from keyhook.pty.session import PtyPair

logger = logging.getLogger(__name__)

# Exit status of a worker that failed before reaching exec.
WORKER_SETUP_FAILED = 125
EXEC_NOT_FOUND = 127
EXEC_NOT_EXECUTABLE = 126

_STDIO_FDS = (0, 1, 2)

# Python starts with these ignored, and an ignored disposition survives exec.
_INHERITED_IGNORED = tuple(
    getattr(signal, name) for name in ("SIGPIPE", "SIGXFSZ") if hasattr(signal, name)
)


@dataclass(frozen=True)
class Controller:
    """This process keeps the PTY master and supervises ``child_pid``."""

    child_pid: int


@dataclass(frozen=True)
class Worker:
    """This process owns the subordinate side and is about to exec."""


Role = Union[Controller, Worker]


def spawn(pair: PtyPair, fork: Callable[[], int] = os.fork) -> Role:
    """Fork, and release the PTY side the resulting process does not use."""
    try:
        pid = fork()
    except OSError as e:
        raise SpawnError(f"cannot fork worker process: {e}") from e

    if pid == 0:
        pair.release_master()
        return Worker()

    pair.release_subordinate()
    logger.info("Worker started: pid=%d", pid)
    return Controller(child_pid=pid)


def exec_worker(
    pair: PtyPair,
    command: str,
    args: Sequence[str] = (),
    new_session: bool = True,
) -> NoReturn:
    """Bind the subordinate to stdio and replace this image with ``command``.

    Signals Python ignores at startup get their default action back first,
    so ``command`` runs as it would from a shell.

    Only returns by raising: ``ExecError`` if the command cannot be run,
    ``OSError`` if the descriptors cannot be set up.
    """
    for sig in _INHERITED_IGNORED:
        signal.signal(sig, signal.SIG_DFL)

    fd = pair.subordinate_fd
    if new_session:
        os.setsid()
        # The PTY becomes the controlling terminal of the new session.
        with contextlib.suppress(OSError):
            fcntl.ioctl(fd, termios.TIOCSCTTY, 0)

    for target in _STDIO_FDS:
        os.dup2(fd, target)
    if fd not in _STDIO_FDS:
        pair.release_subordinate()

    argv = [command, *args]
    try:
        os.execvp(command, argv)
    except FileNotFoundError as e:
        raise ExecError(command, "command not found", EXEC_NOT_FOUND) from e
    except OSError as e:
        raise ExecError(command, e.strerror or str(e), EXEC_NOT_EXECUTABLE) from e


def run_worker(
    pair: PtyPair,
    command: str,
    args: Sequence[str] = (),
    new_session: bool = True,
) -> NoReturn:
    """Worker entry point; never returns to the caller's control flow.

    A failure to start the command is visible only through the exit
    status: 127 not found, 126 not executable, 125 setup failure.
    """
    status = WORKER_SETUP_FAILED
    try:
        exec_worker(pair, command, args, new_session=new_session)
    except ExecError as e:
        status = e.status
        _report(f"keyhook: {e}\n")
    except OSError as e:
        _report(f"keyhook: cannot prepare worker: {e}\n")
    except Exception:
        traceback.print_exc()
    finally:
        os._exit(status)


def _report(message: str) -> None:
    with contextlib.suppress(OSError):
        os.write(2, message.encode("utf-8", errors="replace"))


def exit_code_from_status(status: int) -> int:
    """Translate a wait status into a shell-style exit code.

    Signal-terminated workers map to 128 + signal number.
    """
    code = os.waitstatus_to_exitcode(status)
    if code < 0:
        return 128 - code
    return code
