"""Operational config loader for command execution and retries."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import cast

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "sysexec.toml"
CONFIG_PATH_ENV = "SYSEXEC_CONFIG"


@dataclass(frozen=True, slots=True)
class ExecConfig:
    """Resolved operational configuration for sysexec."""

    max_retries: int = 10
    retry_delay_seconds: float = 0.0
    max_causes: int = 10
    kill_grace_seconds: float = 2.0
    encoding: str = "utf-8"
    stream_chunk_size: int = 1024
    stream_join_timeout_seconds: float = 5.0


_SECTION_KEY_MAP: dict[str, dict[str, str]] = {
    "retry": {
        "max_retries": "max_retries",
        "delay_seconds": "retry_delay_seconds",
        "retry_delay_seconds": "retry_delay_seconds",
        "max_causes": "max_causes",
    },
    "exec": {
        "kill_grace_seconds": "kill_grace_seconds",
        "encoding": "encoding",
        "chunk_size": "stream_chunk_size",
        "stream_chunk_size": "stream_chunk_size",
        "join_timeout_seconds": "stream_join_timeout_seconds",
        "stream_join_timeout_seconds": "stream_join_timeout_seconds",
    },
}

_TOP_LEVEL_KEY_MAP: dict[str, str] = {field.name: field.name for field in fields(ExecConfig)}

_ENV_OVERRIDE_MAP: dict[str, str] = {
    "SYSEXEC_MAX_RETRIES": "max_retries",
    "SYSEXEC_RETRY_DELAY_SECONDS": "retry_delay_seconds",
    "SYSEXEC_MAX_CAUSES": "max_causes",
    "SYSEXEC_KILL_GRACE_SECONDS": "kill_grace_seconds",
    "SYSEXEC_ENCODING": "encoding",
    "SYSEXEC_STREAM_CHUNK_SIZE": "stream_chunk_size",
    "SYSEXEC_STREAM_JOIN_TIMEOUT_SECONDS": "stream_join_timeout_seconds",
}

_INT_FIELDS = frozenset({"max_retries", "max_causes", "stream_chunk_size"})
_FLOAT_FIELDS = frozenset(
    {"retry_delay_seconds", "kill_grace_seconds", "stream_join_timeout_seconds"}
)


def _coerce_file_value(*, field_name: str, raw_value: object, source: str) -> object:
    if field_name in _INT_FIELDS:
        # TOML booleans are ints to Python.
        if isinstance(raw_value, bool) or not isinstance(raw_value, int):
            raise ValueError(
                f"Invalid value for '{source}': expected int, got "
                f"{type(raw_value).__name__} ({raw_value!r})."
            )
        return raw_value

    if field_name in _FLOAT_FIELDS:
        if isinstance(raw_value, bool) or not isinstance(raw_value, int | float):
            raise ValueError(
                f"Invalid value for '{source}': expected float, got "
                f"{type(raw_value).__name__} ({raw_value!r})."
            )
        return float(raw_value)

    if not isinstance(raw_value, str) or not raw_value.strip():
        raise ValueError(
            f"Invalid value for '{source}': expected non-empty str, got {raw_value!r}."
        )
    return raw_value.strip()


def _coerce_env_value(*, field_name: str, raw_value: str, env_name: str) -> object:
    normalized = raw_value.strip()
    converter: type[int] | type[float] | None = (
        int if field_name in _INT_FIELDS else float if field_name in _FLOAT_FIELDS else None
    )
    if converter is None:
        if not normalized:
            raise ValueError(
                f"Invalid environment override '{env_name}': expected non-empty string."
            )
        return normalized
    try:
        return converter(normalized)
    except ValueError as error:
        raise ValueError(
            f"Invalid environment override '{env_name}': expected "
            f"{converter.__name__}, got {raw_value!r}."
        ) from error


def _default_values() -> dict[str, object]:
    defaults = ExecConfig()
    return {field.name: getattr(defaults, field.name) for field in fields(ExecConfig)}


def _apply_toml_payload(
    *,
    values: dict[str, object],
    payload: dict[str, object],
    path: Path,
) -> None:
    for key, raw_value in payload.items():
        section_map = _SECTION_KEY_MAP.get(key)
        if section_map is not None:
            if not isinstance(raw_value, dict):
                raise ValueError(f"Invalid value for '{key}' in '{path}': expected table.")
            for section_key, section_value in cast("dict[str, object]", raw_value).items():
                field_name = section_map.get(section_key)
                if field_name is None:
                    logger.warning(
                        "Ignoring unknown sysexec config key '%s.%s'.",
                        key,
                        section_key,
                    )
                    continue
                values[field_name] = _coerce_file_value(
                    field_name=field_name,
                    raw_value=section_value,
                    source=f"{key}.{section_key}",
                )
            continue

        field_name = _TOP_LEVEL_KEY_MAP.get(key)
        if field_name is None:
            logger.warning("Ignoring unknown sysexec config key '%s'.", key)
            continue
        values[field_name] = _coerce_file_value(
            field_name=field_name,
            raw_value=raw_value,
            source=key,
        )


def _apply_env_overrides(values: dict[str, object]) -> None:
    for env_name, field_name in _ENV_OVERRIDE_MAP.items():
        raw_value = os.getenv(env_name)
        if raw_value is None:
            continue
        values[field_name] = _coerce_env_value(
            field_name=field_name,
            raw_value=raw_value,
            env_name=env_name,
        )


def _build_config(values: dict[str, object]) -> ExecConfig:
    config = ExecConfig(
        max_retries=cast("int", values["max_retries"]),
        retry_delay_seconds=cast("float", values["retry_delay_seconds"]),
        max_causes=cast("int", values["max_causes"]),
        kill_grace_seconds=cast("float", values["kill_grace_seconds"]),
        encoding=cast("str", values["encoding"]),
        stream_chunk_size=cast("int", values["stream_chunk_size"]),
        stream_join_timeout_seconds=cast("float", values["stream_join_timeout_seconds"]),
    )
    if config.max_retries < 0:
        raise ValueError(f"Invalid max_retries: expected >= 0, got {config.max_retries}.")
    if config.max_causes < 1:
        raise ValueError(f"Invalid max_causes: expected >= 1, got {config.max_causes}.")
    if config.stream_chunk_size < 1:
        raise ValueError(
            f"Invalid stream_chunk_size: expected >= 1, got {config.stream_chunk_size}."
        )
    for name in _FLOAT_FIELDS:
        if cast("float", getattr(config, name)) < 0:
            raise ValueError(f"Invalid {name}: expected >= 0, got {getattr(config, name)}.")
    try:
        "".encode(config.encoding)
    except LookupError as error:
        raise ValueError(f"Invalid encoding: unknown codec {config.encoding!r}.") from error
    return config


def resolve_config_path(path: Path | None = None) -> Path:
    """Return the config file to read: explicit path, `$SYSEXEC_CONFIG`, or `./sysexec.toml`."""

    if path is not None:
        return path
    env_path = os.getenv(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return Path.cwd() / CONFIG_FILENAME


def load_config(path: Path | None = None) -> ExecConfig:
    """Load the TOML config file (if present) and apply environment overrides."""

    values = _default_values()
    config_path = resolve_config_path(path)
    if config_path.is_file():
        payload_obj = tomllib.loads(config_path.read_text(encoding="utf-8"))
        payload = cast("dict[str, object]", payload_obj)
        _apply_toml_payload(values=values, payload=payload, path=config_path)
    elif path is not None:
        raise FileNotFoundError(f"Config file not found: {config_path}")

    _apply_env_overrides(values)
    return _build_config(values)
