"""PTY session control — run a command on a pseudo-terminal we own.

The controller keeps the master side, puts the real terminal in raw mode,
relays bytes in both directions and forwards window resizes; the worker
execs the target command on the subordinate side.
"""

from keyhook.pty.controller import run_session
from keyhook.pty.process import Controller, Worker, spawn
from keyhook.pty.relay import LoopOutcome, Relay, RelayResult
from keyhook.pty.resize import ResizeForwarder
from keyhook.pty.session import PtyPair
from keyhook.pty.terminal import TerminalConfiguration, WindowSize, raw_mode

__all__ = [
    "Controller",
    "LoopOutcome",
    "PtyPair",
    "Relay",
    "RelayResult",
    "ResizeForwarder",
    "TerminalConfiguration",
    "WindowSize",
    "Worker",
    "raw_mode",
    "run_session",
    "spawn",
]
