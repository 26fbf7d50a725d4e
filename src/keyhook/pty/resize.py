"""Keep the worker's PTY the size of the real terminal."""

from __future__ import annotations

import logging
import signal
import threading
from typing import Callable

from keyhook.pty.session import PtyPair
from keyhook.pty.terminal import WindowSize

logger = logging.getLogger(__name__)


def block_resize_signal() -> set[signal.Signals]:
    """Block SIGWINCH in the calling thread and return the previous mask.

    Threads started afterwards inherit the mask, so the notification is
    only ever consumed by :func:`wait_for_resize`. Call this in the
    controller after the fork: a blocked mask survives exec.
    """
    return signal.pthread_sigmask(signal.SIG_BLOCK, {signal.SIGWINCH})


def restore_signal_mask(mask: set[signal.Signals]) -> None:
    signal.pthread_sigmask(signal.SIG_SETMASK, mask)


def wait_for_resize() -> bool:
    signal.sigwait({signal.SIGWINCH})
    return True


class ResizeForwarder:
    """Copies the size of ``source_fd`` onto the PTY master on every notification.

    Runs as a daemon thread with no way to stop it. Once the master is
    released it no longer resizes anything and leaves at the next
    notification. Failures are logged and otherwise ignored.
    """

    def __init__(
        self,
        source_fd: int,
        pair: PtyPair,
        wait: Callable[[], bool] | None = None,
    ) -> None:
        self.source_fd = source_fd
        self.pair = pair
        self._wait = wait or wait_for_resize

    def forward(self) -> WindowSize | None:
        """Re-read the terminal size and apply it to the master."""
        with self.pair.lock:
            if self.pair.master_fd < 0:
                return None
            try:
                size = WindowSize.read(self.source_fd)
                size.apply(self.pair.master_fd)
            except OSError as e:
                logger.debug("Resize forwarding failed: %s", e)
                return None
        logger.debug("Window resized to %dx%d", size.columns, size.rows)
        return size

    def start(self) -> threading.Thread:
        thread = threading.Thread(
            target=self._run, name="keyhook-resize", daemon=True
        )
        thread.start()
        return thread

    def _run(self) -> None:
        # ``wait`` returning False ends the thread; the default never does.
        while self._wait():
            if self.pair.master_fd < 0:
                logger.debug("Session over, resize forwarding stopped")
                return
            self.forward()
