"""Session orchestration — run one command under a remapping PTY."""

from __future__ import annotations

import logging
import os
from typing import Callable, Sequence

from keyhook.config import KeyhookConfig
from keyhook.pty.process import Controller, run_worker, spawn
from keyhook.pty.relay import Relay
from keyhook.pty.resize import ResizeForwarder, block_resize_signal, restore_signal_mask
from keyhook.pty.session import PtyPair
from keyhook.pty.terminal import TerminalConfiguration, WindowSize, capture, raw_mode
from keyhook.remap import KeyMap

logger = logging.getLogger(__name__)


def run_session(
    command: str,
    args: Sequence[str],
    keymap: KeyMap,
    config: KeyhookConfig | None = None,
    stdin_fd: int = 0,
    stdout_fd: int = 1,
    fork: Callable[[], int] = os.fork,
) -> int:
    """Run ``command`` attached to a new PTY and return its exit code.

    Order of events: the terminal configuration is captured, the PTY is
    allocated at the current window size, and the process splits. The
    worker execs ``command``; the controller relays in raw mode until the
    session ends and then restores the captured configuration.

    Raises:
        TerminalQueryError: ``stdin_fd`` is not a terminal.
        PtyAllocationError: no PTY could be allocated.
        SpawnError: the fork failed.
        RelayError: the relay failed; the worker has been reaped.
        TerminalRestoreError: the terminal could not be restored. Raised
            last, after any other error.
    """
    config = config or KeyhookConfig()

    saved = capture(stdin_fd)
    window = WindowSize.query(stdout_fd)
    pair = PtyPair.allocate(window)
    logger.info("Starting %s", " ".join([command, *args]))
    try:
        role = spawn(pair, fork=fork)
    except BaseException:
        pair.close()
        raise

    if isinstance(role, Controller):
        return _supervise(role, pair, saved, keymap, config, stdin_fd, stdout_fd)

    # Nothing between the fork and exec may take locks another thread holds.
    run_worker(pair, command, args, new_session=config.new_session)


def _supervise(
    role: Controller,
    pair: PtyPair,
    saved: TerminalConfiguration,
    keymap: KeyMap,
    config: KeyhookConfig,
    stdin_fd: int,
    stdout_fd: int,
) -> int:
    logger.info(
        "Controlling worker %d with %d key rules", role.child_pid, len(keymap)
    )
    old_mask = block_resize_signal()
    try:
        with raw_mode(stdin_fd, saved):
            ResizeForwarder(stdout_fd, pair).start()
            relay = Relay(
                stdin_fd,
                stdout_fd,
                pair,
                keymap,
                role.child_pid,
                timeout=config.select_timeout,
                read_size=config.read_size,
            )
            result = relay.run()
    finally:
        pair.close()
        restore_signal_mask(old_mask)
    return result.exit_code
