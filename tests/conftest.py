"""Shared fixtures: a pseudo-terminal standing in for the user's terminal."""

from __future__ import annotations

import os
from collections.abc import Iterator
from dataclasses import dataclass

import pytest


@dataclass
class FakeTerminal:
    """``tty_fd`` is what keyhook sees as its terminal; ``driver_fd`` is the user."""

    driver_fd: int
    tty_fd: int


@pytest.fixture
def terminal() -> Iterator[FakeTerminal]:
    driver_fd, tty_fd = os.openpty()
    try:
        yield FakeTerminal(driver_fd=driver_fd, tty_fd=tty_fd)
    finally:
        for fd in (driver_fd, tty_fd):
            try:
                os.close(fd)
            except OSError:
                pass
