"""Operational configuration."""

from sysexec.lib.config.settings import ExecConfig, load_config, resolve_config_path

__all__ = ["ExecConfig", "load_config", "resolve_config_path"]
