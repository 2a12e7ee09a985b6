from __future__ import annotations

import pytest

from sysexec.lib.exec.errors import (
    CommandAlreadyRunningError,
    CommandConfigError,
    ErrorCategory,
    ExecError,
    NonZeroExitError,
    ProcessInterruptedError,
    SystemCommandError,
    classify_exception,
    default_exception_filter,
    iter_exception_chain,
)
from sysexec.lib.retry import RetriableError


def _chained(outer: BaseException, inner: BaseException) -> BaseException:
    try:
        try:
            raise inner
        except BaseException as exc:
            raise outer from exc
    except BaseException as exc:
        return exc


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        pytest.param(ExecError("Connection reset by peer"), ErrorCategory.RETRYABLE, id="reset"),
        pytest.param(TimeoutError("operation timed out"), ErrorCategory.RETRYABLE, id="timeout"),
        pytest.param(
            ExecError("connection refused: host not found"),
            ErrorCategory.RETRYABLE,
            id="transient-marker-wins",
        ),
        pytest.param(
            RuntimeError("Permission denied on /srv"), ErrorCategory.UNRECOVERABLE, id="denied"
        ),
        pytest.param(CommandConfigError("No command specified."), ErrorCategory.UNRECOVERABLE, id="config"),
        pytest.param(
            CommandAlreadyRunningError("Command is already running: x"),
            ErrorCategory.UNRECOVERABLE,
            id="already-running",
        ),
        pytest.param(
            ProcessInterruptedError("Process was interrupted."),
            ErrorCategory.UNRECOVERABLE,
            id="interrupted",
        ),
        pytest.param(FileNotFoundError(2, "missing"), ErrorCategory.UNRECOVERABLE, id="fnf"),
        pytest.param(ValueError("something odd"), ErrorCategory.RETRYABLE, id="unknown-default"),
    ],
)
def test_classify_exception(exc: BaseException, expected: ErrorCategory) -> None:
    assert classify_exception(exc) == expected


def test_classify_follows_the_cause_chain() -> None:
    exc = _chained(SystemCommandError("Could not execute command: prog"), FileNotFoundError("prog"))

    assert classify_exception(exc) == ErrorCategory.UNRECOVERABLE
    assert default_exception_filter(exc) is False


def test_classify_reads_non_zero_exit_stderr() -> None:
    transient = NonZeroExitError(75, "fetch", stderr="Resource temporarily unavailable")
    fatal = NonZeroExitError(127, "fetch", stderr="fetch: command not found")

    assert default_exception_filter(transient) is True
    assert default_exception_filter(fatal) is False


def test_non_zero_exit_error_message() -> None:
    error = NonZeroExitError(3, "prog --flag", stderr="  bad flag\n")

    assert error.exit_code == 3
    assert str(error) == "Command exited with status 3: prog --flag: bad flag"
    assert str(NonZeroExitError(1, "prog")) == "Command exited with status 1: prog"


def test_iter_exception_chain_stops_on_cycles() -> None:
    first = RuntimeError("first")
    second = RuntimeError("second")
    first.__cause__ = second
    second.__cause__ = first

    assert list(iter_exception_chain(first)) == [first, second]


def test_command_config_error_is_a_value_error() -> None:
    assert issubclass(CommandConfigError, SystemCommandError)
    assert issubclass(CommandConfigError, ValueError)
    assert issubclass(ProcessInterruptedError, ExecError)


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        pytest.param(
            NonZeroExitError(1, "grep 'not found' app.log"),
            ErrorCategory.RETRYABLE,
            id="permanent-words-in-arguments",
        ),
        pytest.param(
            NonZeroExitError(
                2, "curl --connect-timeout 5 http://host", "curl: permission denied"
            ),
            ErrorCategory.UNRECOVERABLE,
            id="transient-words-in-arguments",
        ),
        pytest.param(
            RetriableError.wrap(NonZeroExitError(1, "ls /no/such/path/not/found")),
            ErrorCategory.RETRYABLE,
            id="wrapped-arguments",
        ),
        pytest.param(
            RetriableError.wrap(NonZeroExitError(1, "make", "make: Text file busy")),
            ErrorCategory.RETRYABLE,
            id="wrapped-stderr",
        ),
    ],
)
def test_non_zero_exit_is_judged_by_stderr_not_command_line(
    exc: BaseException, expected: ErrorCategory
) -> None:
    assert classify_exception(exc) == expected


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("[Errno 11] Resource temporarily unavailable", ErrorCategory.RETRYABLE),
        ("[Errno 24] Too many open files", ErrorCategory.RETRYABLE),
        ("[Errno 32] Broken pipe", ErrorCategory.RETRYABLE),
        ("[Errno 8] Exec format error", ErrorCategory.UNRECOVERABLE),
        ("[Errno 21] Is a directory", ErrorCategory.UNRECOVERABLE),
    ],
)
def test_os_error_wording(message: str, expected: ErrorCategory) -> None:
    assert classify_exception(ExecError(message)) == expected
