"""Controller loop: relay bytes between the real terminal and the PTY master.

Keystrokes read from standard input go through the key map before they are
written to the master; everything the worker writes comes back verbatim.
The loop wakes at least every ``timeout`` seconds to notice a worker that
exited without closing the PTY.
"""

from __future__ import annotations

import enum
import errno
import logging
import os
import select
from dataclasses import dataclass

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from keyhook.errors import RelayReadError, RelayWriteError
from keyhook.pty.process import exit_code_from_status
from keyhook.pty.session import PtyPair
from keyhook.remap import KeyMap, transform

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 0.1
DEFAULT_READ_SIZE = 16 * 1024
# Upper bound on reads when collecting output left behind by an exited worker.
_DRAIN_LIMIT = 64


class LoopOutcome(enum.Enum):
    """Why the controller loop stopped."""

    WORKER_EXITED = "worker_exited"
    INPUT_CLOSED = "input_closed"
    PTY_CLOSED = "pty_closed"


@dataclass(frozen=True)
class RelayResult:
    """Terminal state of the loop plus the worker's raw wait status."""

    outcome: LoopOutcome
    status: int | None

    @property
    def exit_code(self) -> int:
        if self.status is None:
            return 1
        return exit_code_from_status(self.status)


@retry(
    retry=retry_if_exception_type(BlockingIOError),
    stop=stop_after_attempt(20),
    wait=wait_exponential(multiplier=0.001, max=0.05),
    before_sleep=before_sleep_log(logger, logging.DEBUG),
    reraise=True,
)
def _write_some(fd: int, data: memoryview) -> int:
    return os.write(fd, data)


def write_all(fd: int, data: bytes) -> None:
    """Write every byte of ``data`` to ``fd``, looping over short writes.

    EINTR is retried by ``os.write`` itself; EAGAIN on a non-blocking
    descriptor is retried with a short backoff.

    Raises:
        RelayWriteError: the write failed or stopped making progress.
    """
    view = memoryview(data)
    while view:
        try:
            written = _write_some(fd, view)
        except OSError as e:
            raise RelayWriteError(f"write to fd {fd} failed: {e}") from e
        if written <= 0:
            raise RelayWriteError(f"write to fd {fd} made no progress")
        view = view[written:]


class Relay:
    """The I/O multiplexer run by the controller process.

    The relay takes over the master side of ``pair``: it is closed when
    :meth:`run` finishes. Unless the loop itself saw the worker exit, the
    worker is reaped with a blocking wait after the master is closed, so no
    zombie is left behind and its status is always known.
    """

    def __init__(
        self,
        stdin_fd: int,
        stdout_fd: int,
        pair: PtyPair,
        keymap: KeyMap,
        child_pid: int,
        timeout: float = DEFAULT_TIMEOUT,
        read_size: int = DEFAULT_READ_SIZE,
    ) -> None:
        self.stdin_fd = stdin_fd
        self.stdout_fd = stdout_fd
        self.pair = pair
        self.master_fd = pair.master_fd
        self.keymap = keymap
        self.child_pid = child_pid
        self.timeout = timeout
        self.read_size = read_size
        self._status: int | None = None
        self._reaped = False

    def run(self) -> RelayResult:
        try:
            outcome = self._loop()
            if outcome is LoopOutcome.WORKER_EXITED:
                self._drain_master()
        finally:
            self.pair.release_master()
            if not self._reaped:
                self._reap()

        result = RelayResult(outcome=outcome, status=self._status)
        logger.info(
            "Session ended: %s (exit code %d)", outcome.value, result.exit_code
        )
        return result

    def _loop(self) -> LoopOutcome:
        fds = [self.stdin_fd, self.master_fd]
        while True:
            try:
                ready, _, _ = select.select(fds, [], [], self.timeout)
            except InterruptedError:
                ready = []
            except OSError as e:
                raise RelayReadError(f"select failed: {e}") from e

            if self._poll_worker():
                return LoopOutcome.WORKER_EXITED

            if self.stdin_fd in ready:
                data = self._read(self.stdin_fd)
                if data == b"":
                    return LoopOutcome.INPUT_CLOSED
                if data:
                    write_all(self.master_fd, transform(data, self.keymap))

            if self.master_fd in ready:
                data = self._read(self.master_fd)
                if data == b"":
                    return LoopOutcome.PTY_CLOSED
                if data:
                    write_all(self.stdout_fd, data)

    def _read(self, fd: int) -> bytes | None:
        """Read from ``fd``; ``None`` means nothing this round, ``b""`` is EOF."""
        try:
            return os.read(fd, self.read_size)
        except (InterruptedError, BlockingIOError):
            return None
        except OSError as e:
            # Linux reports a master whose subordinate side is gone as EIO.
            if fd == self.master_fd and e.errno == errno.EIO:
                return b""
            raise RelayReadError(f"read from fd {fd} failed: {e}") from e

    def _poll_worker(self) -> bool:
        try:
            pid, status = os.waitpid(self.child_pid, os.WNOHANG)
        except ChildProcessError:
            logger.warning("Worker %d was reaped elsewhere", self.child_pid)
            self._reaped = True
            return True
        if pid == 0:
            return False
        self._status = status
        self._reaped = True
        return True

    def _reap(self) -> None:
        logger.debug("Waiting for worker %d", self.child_pid)
        try:
            _, self._status = os.waitpid(self.child_pid, 0)
        except ChildProcessError:
            logger.warning("Worker %d was reaped elsewhere", self.child_pid)
        self._reaped = True

    def _drain_master(self) -> None:
        for _ in range(_DRAIN_LIMIT):
            try:
                ready, _, _ = select.select([self.master_fd], [], [], 0)
            except OSError:
                return
            if not ready:
                return
            data = self._read(self.master_fd)
            if not data:
                return
            write_all(self.stdout_fd, data)
