"""Retried command runs against real child processes."""

from __future__ import annotations

import io

import pytest

from sysexec.lib.exec.command import SystemCommand
from sysexec.lib.exec.errors import NonZeroExitError, default_exception_filter
from sysexec.lib.ops import run_text, run_with_retry
from sysexec.lib.retry import RetriableError, RetryPolicy


def _flaky_script(python_script, tmp_path, *, fail_times: int) -> list[str]:
    counter = tmp_path / "attempts.txt"
    return python_script(
        f"""
        import pathlib
        import sys
        counter = pathlib.Path({str(counter)!r})
        seen = int(counter.read_text()) if counter.exists() else 0
        counter.write_text(str(seen + 1))
        if seen < {fail_times}:
            print(f"attempt {{seen + 1}} failed: try again", file=sys.stderr)
            raise SystemExit(75)
        print("finally worked")
        """
    )


def test_run_with_retry_recovers_from_non_zero_exits(python_script, tmp_path, recorder) -> None:
    command = SystemCommand(*_flaky_script(python_script, tmp_path, fail_times=2))
    command.add_output_listener(recorder)

    exit_code = run_with_retry(command, policy=RetryPolicy(max_retries=3))

    assert exit_code == 0
    assert (tmp_path / "attempts.txt").read_text() == "3"
    assert recorder.on("STDOUT") == ["finally worked"]
    assert command.error_listeners == ()


def test_run_with_retry_exhaustion_keeps_exit_failures(python_script, tmp_path) -> None:
    command = SystemCommand(*_flaky_script(python_script, tmp_path, fail_times=10))

    with pytest.raises(RetriableError, match="maximum number of retries") as info:
        run_with_retry(command, policy=RetryPolicy(max_retries=2))

    assert len(info.value.causes) == 3
    last = info.value.causes[-1]
    assert isinstance(last, NonZeroExitError)
    assert last.exit_code == 75
    assert last.stderr == "attempt 3 failed: try again"


def test_run_with_retry_can_return_non_zero(python_script) -> None:
    command = SystemCommand(*python_script("raise SystemExit(4)"))

    assert run_with_retry(command, fail_on_nonzero=False) == 4


def test_run_with_retry_filter_stops_on_unrecoverable_output(python_script) -> None:
    argv = python_script(
        """
        import sys
        print("tool: permission denied", file=sys.stderr)
        raise SystemExit(1)
        """
    )
    command = SystemCommand(*argv)
    policy = RetryPolicy(exception_filter=default_exception_filter)

    with pytest.raises(RetriableError, match="preventing execution retry") as info:
        run_with_retry(command, policy=policy)

    assert len(info.value.causes) == 1


def test_run_with_retry_rewinds_seekable_stdin(python_script, tmp_path, recorder) -> None:
    counter = tmp_path / "count.txt"
    argv = python_script(
        f"""
        import pathlib
        import sys
        counter = pathlib.Path({str(counter)!r})
        seen = int(counter.read_text()) if counter.exists() else 0
        counter.write_text(str(seen + 1))
        print(sys.stdin.read().strip())
        raise SystemExit(0 if seen else 1)
        """
    )
    command = SystemCommand(*argv)
    command.add_output_listener(recorder)

    exit_code = run_with_retry(
        command, policy=RetryPolicy(max_retries=1), stdin=io.BytesIO(b"payload\n")
    )

    assert exit_code == 0
    assert recorder.on("STDOUT") == ["payload", "payload"]


def test_run_text_collects_both_streams(python_script) -> None:
    argv = python_script(
        """
        import sys
        print("to out")
        print("to err", file=sys.stderr)
        raise SystemExit(2)
        """
    )
    command = SystemCommand(*argv)

    exit_code, stdout, stderr = run_text(command)

    assert (exit_code, stdout, stderr) == (2, "to out\n", "to err\n")
    assert command.output_listeners == ()
    assert command.error_listeners == ()
