"""Command-line tokenizing, escaping and OS interpreter wrapping."""

from __future__ import annotations

import platform
import re
from collections.abc import Sequence
from enum import Enum
from typing import Final

from sysexec.lib.exec.errors import CommandConfigError

WINDOWS_LEGACY_PREFIX: Final[tuple[str, ...]] = ("command.com", "/C")
WINDOWS_CURRENT_PREFIX: Final[tuple[str, ...]] = ("cmd.exe", "/C")

_WINDOWS_LEGACY_RELEASES = frozenset({"95", "98", "me"})
_FULLY_QUOTED = re.compile(r'^\s*".*"\s*$')
_SEPARATORS = frozenset({"'", '"', " "})


class _QuoteState(Enum):
    NORMAL = "normal"
    IN_QUOTE = "in_quote"
    IN_DOUBLE_QUOTE = "in_double_quote"


def _split_keep_separators(text: str) -> list[str]:
    pieces: list[str] = []
    current: list[str] = []
    for char in text:
        if char in _SEPARATORS:
            if current:
                pieces.append("".join(current))
                current.clear()
            pieces.append(char)
        else:
            current.append(char)
    if current:
        pieces.append("".join(current))
    return pieces


def tokenize(command_line: str) -> list[str]:
    """Split a full command line into tokens, honoring single and double quotes.

    Quoted text (embedded spaces included) becomes a single token without its
    quotes; an explicitly quoted empty string yields an empty token.

    Raises:
        CommandConfigError: the command line has unbalanced quotes.
    """

    state = _QuoteState.NORMAL
    current: list[str] = []
    tokens: list[str] = []
    last_token_quoted = False

    def resolve_last_token() -> None:
        if last_token_quoted or current:
            tokens.append("".join(current))
            current.clear()

    for piece in _split_keep_separators(command_line):
        if state is _QuoteState.NORMAL:
            if piece == "'":
                state = _QuoteState.IN_QUOTE
            elif piece == '"':
                state = _QuoteState.IN_DOUBLE_QUOTE
            elif piece == " ":
                resolve_last_token()
            else:
                current.append(piece)
            last_token_quoted = False
        elif (state is _QuoteState.IN_DOUBLE_QUOTE and piece == '"') or (
            state is _QuoteState.IN_QUOTE and piece == "'"
        ):
            last_token_quoted = True
            state = _QuoteState.NORMAL
        else:
            current.append(piece)

    resolve_last_token()
    if state is not _QuoteState.NORMAL:
        raise CommandConfigError(f"Unbalanced quotes in {command_line}")
    return tokens


def escape(command: Sequence[str]) -> list[str]:
    """Quote command parts containing spaces, unless already fully quoted.

    A single-element command is taken as a whole command line and tokenized
    first, since there is no other way to tell argument spaces apart from
    separators.
    """

    tokens = list(command)
    if len(tokens) == 1:
        command_line = tokens[0]
        tokens = tokenize(command_line) if command_line else []

    return [
        f'"{token}"' if " " in token and not _FULLY_QUOTED.match(token) else token
        for token in tokens
    ]


def is_windows(system: str | None = None) -> bool:
    name = platform.system() if system is None else system
    return name.lower().startswith("windows")


def interpreter_prefix(
    system: str | None = None,
    release: str | None = None,
) -> tuple[str, ...]:
    """Return the command interpreter prefix for the host OS (empty off Windows)."""

    if not is_windows(system):
        return ()
    resolved_release = platform.release() if release is None else release
    if resolved_release.strip().lower() in _WINDOWS_LEGACY_RELEASES:
        return WINDOWS_LEGACY_PREFIX
    return WINDOWS_CURRENT_PREFIX


def strip_prefix(tokens: Sequence[str], prefix: Sequence[str]) -> list[str]:
    """Remove a leading copy of `prefix` from `tokens` (case-insensitive).

    Prefix parts are removed one at a time while they match, so a command
    already starting with `cmd.exe` but missing `/C` loses only `cmd.exe`.
    """

    remaining = list(tokens)
    for part in prefix:
        if not remaining or remaining[0].lower() != part.lower():
            break
        remaining.pop(0)
    return remaining


def wrap_command(tokens: Sequence[str], prefix: Sequence[str]) -> list[str]:
    """Wrap escaped tokens behind an interpreter prefix as one quoted argument.

    `cmd.exe /C` needs arguments with spaces quoted *and* everything after
    `/C` quoted once more.
    """

    if not prefix:
        return list(tokens)
    remainder = strip_prefix(tokens, prefix)
    return [*prefix, '"' + " ".join(remainder) + '"']


def build_command_line(
    command: Sequence[str],
    *,
    system: str | None = None,
    release: str | None = None,
) -> list[str]:
    """Tokenize, escape and wrap a configured command for the host OS.

    Raises:
        CommandConfigError: no command was specified or quotes are unbalanced.
    """

    if not command:
        raise CommandConfigError("No command specified.")
    escaped = escape(command)
    if not escaped:
        raise CommandConfigError("No command specified.")
    return wrap_command(escaped, interpreter_prefix(system, release))


def unescaped_argv(command: Sequence[str]) -> list[str]:
    """Return the argument vector for a direct (non-interpreter) exec.

    Single-string commands are tokenized; multi-token commands are used as
    given, since no shell will re-split them.
    """

    if not command:
        raise CommandConfigError("No command specified.")
    tokens = list(command)
    if len(tokens) == 1:
        tokens = tokenize(tokens[0]) if tokens[0] else []
    if not tokens:
        raise CommandConfigError("No command specified.")
    return tokens
