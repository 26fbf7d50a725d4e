"""Terminal modes: capture, raw mode, restore and window size."""

from __future__ import annotations

import contextlib
import copy
import fcntl
import logging
import struct
import termios
from dataclasses import dataclass
from typing import Iterator

from keyhook.errors import TerminalQueryError, TerminalRestoreError

logger = logging.getLogger(__name__)

# termios attribute list indices: iflag, oflag, cflag, lflag, ispeed, ospeed, cc
_IFLAG, _OFLAG, _CFLAG, _LFLAG, _ISPEED, _OSPEED, _CC = range(7)

_WINSIZE_FORMAT = "HHHH"
DEFAULT_ROWS = 24
DEFAULT_COLUMNS = 80


@dataclass(frozen=True)
class TerminalConfiguration:
    """Snapshot of a terminal's line-discipline settings.

    Treat as opaque: it is only ever handed back to :func:`restore`.
    """

    attributes: tuple

    @classmethod
    def from_attributes(cls, attrs: list) -> TerminalConfiguration:
        attrs = copy.deepcopy(attrs)
        attrs[_CC] = tuple(attrs[_CC])
        return cls(attributes=tuple(attrs))

    def to_attributes(self) -> list:
        attrs = list(self.attributes)
        attrs[_CC] = list(attrs[_CC])
        return attrs


def capture(fd: int) -> TerminalConfiguration:
    """Read the current configuration of the terminal on ``fd``."""
    try:
        attrs = termios.tcgetattr(fd)
    except (termios.error, OSError) as e:
        raise TerminalQueryError(f"cannot query terminal on fd {fd}: {e}") from e
    return TerminalConfiguration.from_attributes(attrs)


def apply_raw_mode(fd: int) -> None:
    """Switch ``fd`` to raw input: every byte delivered at once, unprocessed.

    Turns off CR-to-NL translation and XON/XOFF flow control, output
    post-processing, canonical mode, echo and signal-generating characters;
    a read returns as soon as one byte is available.
    """
    try:
        attrs = termios.tcgetattr(fd)
    except (termios.error, OSError) as e:
        raise TerminalQueryError(f"cannot query terminal on fd {fd}: {e}") from e

    attrs[_IFLAG] &= ~(termios.ICRNL | termios.IXON)
    attrs[_OFLAG] &= ~termios.OPOST
    attrs[_LFLAG] &= ~(termios.ICANON | termios.ECHO | termios.ISIG)
    attrs[_CC][termios.VMIN] = 1
    attrs[_CC][termios.VTIME] = 0

    try:
        termios.tcsetattr(fd, termios.TCSANOW, attrs)
    except (termios.error, OSError) as e:
        raise TerminalQueryError(f"cannot enter raw mode on fd {fd}: {e}") from e


def restore(fd: int, configuration: TerminalConfiguration) -> None:
    """Reapply ``configuration`` to ``fd`` immediately."""
    try:
        termios.tcsetattr(fd, termios.TCSANOW, configuration.to_attributes())
    except (termios.error, OSError) as e:
        raise TerminalRestoreError(
            f"cannot restore terminal settings on fd {fd}: {e}"
        ) from e


@contextlib.contextmanager
def raw_mode(
    fd: int, saved: TerminalConfiguration | None = None
) -> Iterator[TerminalConfiguration]:
    """Hold ``fd`` in raw mode for the duration of the block.

    The configuration (``saved`` if the caller captured it earlier) is
    taken before anything is changed and restored exactly once on the way
    out, whether the block returns or raises.
    """
    if saved is None:
        saved = capture(fd)
    try:
        apply_raw_mode(fd)
        logger.debug("Terminal on fd %d in raw mode", fd)
        yield saved
    except BaseException as exc:
        try:
            restore(fd, saved)
        except TerminalRestoreError as e:
            e.pending = exc
            raise
        raise
    else:
        restore(fd, saved)
    logger.debug("Terminal on fd %d restored", fd)


@dataclass(frozen=True)
class WindowSize:
    """Terminal dimensions as carried by TIOCGWINSZ/TIOCSWINSZ."""

    rows: int = DEFAULT_ROWS
    columns: int = DEFAULT_COLUMNS
    xpixel: int = 0
    ypixel: int = 0

    def pack(self) -> bytes:
        return struct.pack(
            _WINSIZE_FORMAT, self.rows, self.columns, self.xpixel, self.ypixel
        )

    @classmethod
    def unpack(cls, data: bytes) -> WindowSize:
        rows, columns, xpixel, ypixel = struct.unpack(_WINSIZE_FORMAT, data)
        return cls(rows=rows, columns=columns, xpixel=xpixel, ypixel=ypixel)

    @classmethod
    def read(cls, fd: int) -> WindowSize:
        """Read the size of the terminal on ``fd``; raises OSError."""
        packed = fcntl.ioctl(fd, termios.TIOCGWINSZ, b"\x00" * 8)
        return cls.unpack(packed)

    @classmethod
    def query(cls, fd: int) -> WindowSize:
        """Like :meth:`read`, but falls back to 24x80 when ``fd`` has no size."""
        try:
            size = cls.read(fd)
        except OSError as e:
            logger.debug("No window size on fd %d (%s), using defaults", fd, e)
            return cls()
        if not size.rows or not size.columns:
            return cls()
        return size

    def apply(self, fd: int) -> None:
        """Set the size of the terminal on ``fd``; raises OSError."""
        fcntl.ioctl(fd, termios.TIOCSWINSZ, self.pack())
