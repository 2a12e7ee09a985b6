"""Cyclopts CLI entry point for sysexec."""

from __future__ import annotations

import sys
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

from cyclopts import App, Parameter

from sysexec import __version__
from sysexec.lib.config.settings import load_config
from sysexec.lib.exec.command import SystemCommand
from sysexec.lib.exec.errors import (
    CommandConfigError,
    NonZeroExitError,
    SystemCommandError,
    default_exception_filter,
)
from sysexec.lib.exec.shell import build_command_line, tokenize
from sysexec.lib.exec.watcher import STDERR
from sysexec.lib.logging import bound_log_context, configure_logging
from sysexec.lib.ops.run import run_with_retry
from sysexec.lib.retry.policy import RetryPolicy
from sysexec.lib.retry.retrier import RetriableError, format_exception_chain

if TYPE_CHECKING:
    from collections.abc import Sequence

EXIT_RETRY_EXHAUSTED = 1
EXIT_CONFIG_ERROR = 2

app = App(name="sysexec", help="Run system commands with retries.", version=__version__)

_ECHO_LOCK = threading.Lock()


def _echo_line(stream: str, line: str) -> None:
    target = sys.stderr if stream == STDERR else sys.stdout
    with _ECHO_LOCK:
        target.write(line)
        target.write("\n")
        target.flush()


def _parse_env(pairs: Sequence[str]) -> dict[str, str]:
    env: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise CommandConfigError(f"Invalid --env value {pair!r}: expected KEY=VALUE.")
        env[key.strip()] = value
    return env


@app.command(name="run")
def run_command(
    *command: str,
    retries: Annotated[
        int | None,
        Parameter(name=["--retries", "-r"], help="Retries after the first attempt."),
    ] = None,
    delay: Annotated[
        float | None,
        Parameter(name="--delay", help="Seconds to wait between attempts."),
    ] = None,
    max_causes: Annotated[
        int | None,
        Parameter(name="--max-causes", help="Failures kept for the final error report."),
    ] = None,
    cwd: Annotated[
        Path | None,
        Parameter(name="--cwd", help="Working directory for the command."),
    ] = None,
    env: Annotated[
        tuple[str, ...],
        Parameter(
            name="--env",
            help="Replace the environment with KEY=VALUE pairs (repeatable).",
            negative_iterable=(),
        ),
    ] = (),
    stdin_file: Annotated[
        Path | None,
        Parameter(name="--stdin-file", help="File fed to the command's standard input."),
    ] = None,
    fail_on_nonzero: Annotated[
        bool,
        Parameter(
            name="--fail-on-nonzero",
            help="Treat a non-zero exit status as a failed (retryable) attempt.",
        ),
    ] = True,
    retry_all: Annotated[
        bool,
        Parameter(name="--retry-all", help="Retry every failure, not only transient ones."),
    ] = False,
    config: Annotated[
        Path | None,
        Parameter(name="--config", help="Path to a sysexec.toml file."),
    ] = None,
) -> int:
    """Run COMMAND, echoing its output, and exit with its status."""

    settings = load_config(config)
    base = RetryPolicy.from_config(
        settings, exception_filter=None if retry_all else default_exception_filter
    )
    builder = RetryPolicy.builder(base)
    if retries is not None:
        builder.max_retries(retries)
    if delay is not None:
        builder.retry_delay(delay)
    if max_causes is not None:
        builder.max_causes(max_causes)
    policy = builder.build()

    system_command = SystemCommand(
        *command,
        workdir=cwd,
        env=_parse_env(env) if env else None,
        config=settings,
    )
    system_command.add_listener(_echo_line)

    with bound_log_context(command=str(system_command)):
        if stdin_file is None:
            return run_with_retry(system_command, policy=policy, fail_on_nonzero=fail_on_nonzero)
        with stdin_file.open("rb") as handle:
            return run_with_retry(
                system_command,
                policy=policy,
                stdin=handle,
                fail_on_nonzero=fail_on_nonzero,
            )


@app.command(name="tokenize")
def tokenize_command(command_line: str) -> int:
    """Show how a command line is split and escaped before execution."""

    for token in tokenize(command_line):
        print(token)
    print("--")
    print(" ".join(build_command_line([command_line])))
    return 0


def _exit_code_for(exc: RetriableError) -> int:
    last = exc.last_cause
    if isinstance(last, NonZeroExitError):
        return last.exit_code
    if isinstance(last, CommandConfigError):
        return EXIT_CONFIG_ERROR
    return EXIT_RETRY_EXHAUSTED


def _extract_logging_flags(argv: Sequence[str]) -> tuple[list[str], bool, int]:
    """Pull `--json` and `-v/--verbose` out of the arguments before `--`."""

    json_mode = False
    verbosity = 0
    cleaned: list[str] = []
    for index, arg in enumerate(argv):
        if arg == "--":
            cleaned.extend(argv[index:])
            break
        if arg == "--json":
            json_mode = True
            continue
        if arg in {"--verbose", "-v"}:
            verbosity += 1
            continue
        if arg == "-vv":
            verbosity += 2
            continue
        cleaned.append(arg)
    return cleaned, json_mode, verbosity


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point used by `sysexec` and `python -m sysexec`."""

    args, json_mode, verbosity = _extract_logging_flags(
        list(sys.argv[1:] if argv is None else argv)
    )
    # Configure logging early so diagnostics go to stderr, not the echoed stdout.
    configure_logging(json_mode=json_mode, verbosity=verbosity)
    try:
        result = app(args)
    except RetriableError as exc:
        print(f"error: {exc} ({len(exc.causes)} cause(s) kept)", file=sys.stderr)
        if exc.last_cause is not None:
            print(format_exception_chain(exc.last_cause), file=sys.stderr)
        raise SystemExit(_exit_code_for(exc)) from None
    except CommandConfigError as exc:
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(EXIT_CONFIG_ERROR) from None
    except (SystemCommandError, ValueError, OSError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(1) from None
    if isinstance(result, int):
        raise SystemExit(result)
