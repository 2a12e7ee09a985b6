"""Shared pytest fixtures for command execution and CLI checks."""

from __future__ import annotations

import io
import os
import subprocess
import sys
import textwrap
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from collections.abc import Callable

PACKAGE_ROOT = Path(__file__).resolve().parents[1]

posix_only = pytest.mark.skipif(
    sys.platform == "win32",
    reason="child command lines are built for POSIX argv semantics",
)


class FailingRawReader(io.RawIOBase):
    """Raw stream whose every read fails, as a dying source file or socket would."""

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:  # noqa: ANN001
        raise OSError("input source vanished")


def failing_payload() -> io.BufferedReader:
    return io.BufferedReader(FailingRawReader())


@dataclass(frozen=True, slots=True)
class CliResult:
    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str


@dataclass(slots=True)
class LineRecorder:
    """Thread-safe listener recording `(stream, line)` pairs."""

    lines: list[tuple[str, str]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def __call__(self, stream: str, line: str) -> None:
        with self._lock:
            self.lines.append((stream, line))

    def on(self, stream: str) -> list[str]:
        with self._lock:
            return [line for tag, line in self.lines if tag == stream]


@pytest.fixture
def package_root() -> Path:
    return PACKAGE_ROOT


@pytest.fixture
def recorder() -> LineRecorder:
    return LineRecorder()


@pytest.fixture
def python_script(tmp_path: Path) -> Callable[[str], list[str]]:
    """Write a Python script to tmp_path and return the argv that runs it."""

    counter = 0

    def _write(source: str) -> list[str]:
        nonlocal counter
        counter += 1
        script = tmp_path / f"child_{counter}.py"
        script.write_text(textwrap.dedent(source), encoding="utf-8")
        return [sys.executable, str(script)]

    return _write


@pytest.fixture
def cli_env(package_root: Path) -> dict[str, str]:
    env = os.environ.copy()
    existing = env.get("PYTHONPATH", "")
    root = str(package_root / "src")
    env["PYTHONPATH"] = root if not existing else f"{root}{os.pathsep}{existing}"
    for key in tuple(env):
        if key.startswith("SYSEXEC_"):
            env.pop(key)
    return env


@pytest.fixture
def run_sysexec(
    tmp_path: Path, cli_env: dict[str, str]
) -> Callable[..., CliResult]:
    def _run(args: list[str], timeout: float = 30.0) -> CliResult:
        completed = subprocess.run(
            [sys.executable, "-m", "sysexec", *args],
            cwd=tmp_path,
            env=cli_env,
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
        )
        return CliResult(
            args=tuple(args),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )

    return _run
