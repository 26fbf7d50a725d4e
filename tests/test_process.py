"""Tests for keyhook.pty.process (roles, worker exec, exit status)."""

from __future__ import annotations

import os
import signal
from collections.abc import Iterator
from typing import Any

import pytest

from keyhook.errors import ExecError, SpawnError
from keyhook.pty import process
from keyhook.pty.process import (
    Controller,
    Worker,
    exec_worker,
    exit_code_from_status,
    run_worker,
    spawn,
)
from keyhook.pty.session import PtyPair


class Execd(Exception):
    """Stands in for a successful exec: the image would be gone."""


class WorkerExit(Exception):
    def __init__(self, status: int) -> None:
        super().__init__(status)
        self.status = status


class FakeOS:
    """Replacement for the ``os`` module as seen from keyhook.pty.process."""

    def __init__(self, exec_error: BaseException | None = None) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.written = b""
        self._exec_error = exec_error

    def setsid(self) -> None:
        self.calls.append(("setsid",))

    def dup2(self, fd: int, target: int) -> None:
        self.calls.append(("dup2", fd, target))

    def execvp(self, file: str, argv: list[str]) -> None:
        self.calls.append(("execvp", file, argv))
        raise self._exec_error or Execd()

    def write(self, fd: int, data: bytes) -> int:
        self.written += data
        return len(data)

    def _exit(self, status: int) -> None:
        raise WorkerExit(status)

    def __getattr__(self, name: str) -> Any:
        return getattr(os, name)


class FakeSignal:
    """Records disposition changes instead of applying them to pytest itself."""

    def __init__(self) -> None:
        self.calls: list[tuple[int, Any]] = []

    def signal(self, sig: int, handler: Any) -> None:
        self.calls.append((sig, handler))

    def __getattr__(self, name: str) -> Any:
        return getattr(signal, name)


class FakeFcntl:
    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []

    def ioctl(self, fd: int, request: int, arg: int) -> None:
        self.calls.append((fd, request, arg))


@pytest.fixture
def pair() -> Iterator[PtyPair]:
    p = PtyPair.allocate()
    yield p
    p.close()


@pytest.fixture(autouse=True)
def fake_signal(monkeypatch: pytest.MonkeyPatch) -> FakeSignal:
    fake = FakeSignal()
    monkeypatch.setattr(process, "signal", fake)
    return fake


# ---------------------------------------------------------------------------
# spawn
# ---------------------------------------------------------------------------


class TestSpawn:
    def test_controller_branch(self, pair: PtyPair) -> None:
        role = spawn(pair, fork=lambda: 4242)
        assert role == Controller(child_pid=4242)
        assert pair.subordinate_fd == -1
        assert pair.master_fd >= 0

    def test_worker_branch(self, pair: PtyPair) -> None:
        role = spawn(pair, fork=lambda: 0)
        assert isinstance(role, Worker)
        assert pair.master_fd == -1
        assert pair.subordinate_fd >= 0

    def test_fork_failure(self, pair: PtyPair) -> None:
        def broken_fork() -> int:
            raise OSError(11, "Resource temporarily unavailable")

        with pytest.raises(SpawnError):
            spawn(pair, fork=broken_fork)


# ---------------------------------------------------------------------------
# exec_worker / run_worker
# ---------------------------------------------------------------------------


class TestExecWorker:
    def test_binds_stdio_then_execs(
        self, pair: PtyPair, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        fake = FakeOS()
        monkeypatch.setattr(process, "os", fake)
        sub = pair.subordinate_fd

        with pytest.raises(Execd):
            exec_worker(pair, "vim", ["-u", "NONE"], new_session=False)

        assert fake.calls == [
            ("dup2", sub, 0),
            ("dup2", sub, 1),
            ("dup2", sub, 2),
            ("execvp", "vim", ["vim", "-u", "NONE"]),
        ]
        assert pair.subordinate_fd == -1

    def test_restores_default_signals(
        self,
        pair: PtyPair,
        fake_signal: FakeSignal,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(process, "os", FakeOS())

        with pytest.raises(Execd):
            exec_worker(pair, "sh", new_session=False)

        assert fake_signal.calls == [
            (signal.SIGPIPE, signal.SIG_DFL),
            (signal.SIGXFSZ, signal.SIG_DFL),
        ]

    def test_new_session(self, pair: PtyPair, monkeypatch: pytest.MonkeyPatch) -> None:
        fake = FakeOS()
        fake_fcntl = FakeFcntl()
        monkeypatch.setattr(process, "os", fake)
        monkeypatch.setattr(process, "fcntl", fake_fcntl)
        sub = pair.subordinate_fd

        with pytest.raises(Execd):
            exec_worker(pair, "sh", new_session=True)

        assert fake.calls[0] == ("setsid",)
        assert fake_fcntl.calls == [(sub, process.termios.TIOCSCTTY, 0)]

    def test_not_found(self, pair: PtyPair, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(process, "os", FakeOS(FileNotFoundError(2, "nope")))
        with pytest.raises(ExecError) as info:
            exec_worker(pair, "no-such-cmd", new_session=False)
        assert info.value.status == 127
        assert "no-such-cmd" in str(info.value)

    def test_not_executable(self, pair: PtyPair, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(
            process, "os", FakeOS(PermissionError(13, "Permission denied"))
        )
        with pytest.raises(ExecError) as info:
            exec_worker(pair, "/etc/passwd", new_session=False)
        assert info.value.status == 126
        assert "Permission denied" in str(info.value)


class TestRunWorker:
    def test_exec_error_exit_status(
        self, pair: PtyPair, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        fake = FakeOS(FileNotFoundError(2, "nope"))
        monkeypatch.setattr(process, "os", fake)
        with pytest.raises(WorkerExit) as info:
            run_worker(pair, "no-such-cmd", new_session=False)
        assert info.value.status == 127
        assert b"no-such-cmd: command not found" in fake.written

    def test_setup_failure_exit_status(
        self, pair: PtyPair, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        fake = FakeOS()

        def broken_dup2(fd: int, target: int) -> None:
            raise OSError(9, "Bad file descriptor")

        fake.dup2 = broken_dup2  # type: ignore[method-assign]
        monkeypatch.setattr(process, "os", fake)
        with pytest.raises(WorkerExit) as info:
            run_worker(pair, "sh", new_session=False)
        assert info.value.status == process.WORKER_SETUP_FAILED
        assert b"cannot prepare worker" in fake.written


# ---------------------------------------------------------------------------
# exit_code_from_status
# ---------------------------------------------------------------------------


class TestExitCode:
    def test_success(self) -> None:
        assert exit_code_from_status(0) == 0

    def test_exit_code(self) -> None:
        assert exit_code_from_status(3 << 8) == 3

    def test_signal(self) -> None:
        assert exit_code_from_status(signal.SIGKILL) == 128 + signal.SIGKILL
        assert exit_code_from_status(signal.SIGTERM) == 143
