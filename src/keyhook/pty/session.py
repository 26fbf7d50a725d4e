"""A master/subordinate pseudo-terminal pair and who owns each side."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field

from keyhook.errors import PtyAllocationError
from keyhook.pty.terminal import WindowSize

logger = logging.getLogger(__name__)


@dataclass
class PtyPair:
    """The two descriptors of a pseudo-terminal.

    After the process split, the controller owns ``master_fd`` and the
    worker owns ``subordinate_fd``; each side releases the other's
    descriptor straight away so end-of-file is seen when the worker goes.
    A released side reads as -1. Code on other threads that uses
    ``master_fd`` holds ``lock`` so the descriptor cannot be closed under it.
    """

    master_fd: int = -1
    subordinate_fd: int = -1
    lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False
    )

    @classmethod
    def allocate(cls, window_size: WindowSize | None = None) -> PtyPair:
        """Open a new PTY pair, sizing the subordinate to ``window_size``."""
        try:
            master_fd, subordinate_fd = os.openpty()
        except OSError as e:
            raise PtyAllocationError(f"cannot allocate a pseudo-terminal: {e}") from e

        pair = cls(master_fd=master_fd, subordinate_fd=subordinate_fd)
        if window_size is not None:
            try:
                window_size.apply(subordinate_fd)
            except OSError as e:
                pair.close()
                raise PtyAllocationError(
                    f"cannot size the pseudo-terminal: {e}"
                ) from e

        logger.debug(
            "PTY allocated: master=%d subordinate=%d size=%dx%d",
            master_fd,
            subordinate_fd,
            window_size.columns if window_size else 0,
            window_size.rows if window_size else 0,
        )
        return pair

    def release_master(self) -> None:
        with self.lock:
            self.master_fd = _close(self.master_fd)

    def release_subordinate(self) -> None:
        self.subordinate_fd = _close(self.subordinate_fd)

    def close(self) -> None:
        self.release_master()
        self.release_subordinate()


def _close(fd: int) -> int:
    if fd >= 0:
        try:
            os.close(fd)
        except OSError as e:
            logger.debug("Error closing fd %d: %s", fd, e)
    return -1
