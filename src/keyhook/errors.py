"""Error hierarchy for keyhook sessions."""

from __future__ import annotations


class KeyhookError(Exception):
    """Base class for every error raised by keyhook."""


class ConfigurationError(KeyhookError):
    """A remap rule or configuration value could not be decoded."""


class TerminalQueryError(KeyhookError):
    """The controlling terminal's attributes could not be read."""


class TerminalRestoreError(KeyhookError):
    """The saved terminal configuration could not be reapplied.

    ``pending`` holds the error that was already ending the session when
    the restore failed, if any.
    """

    pending: BaseException | None = None


class PtyAllocationError(KeyhookError):
    """The OS could not provide a pseudo-terminal pair."""


class ExecError(KeyhookError):
    """The worker could not replace its image with the target command.

    ``status`` is the exit status the worker leaves with: 127 when the
    command was not found, 126 when it was found but is not executable.
    """

    def __init__(self, command: str, reason: str, status: int = 127) -> None:
        super().__init__(f"{command}: {reason}")
        self.command = command
        self.reason = reason
        self.status = status


class RelayError(KeyhookError):
    """The controller loop could not move bytes between its endpoints."""


class RelayReadError(RelayError):
    """A persistent read failure on standard input or the PTY master."""


class RelayWriteError(RelayError):
    """A write to the PTY master or standard output did not complete."""


class SpawnError(KeyhookError):
    """The controller could not split into controller and worker processes."""
