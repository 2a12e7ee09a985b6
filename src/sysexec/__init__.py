"""Run external commands under supervision, with bounded retries."""

__version__ = "0.1.0"
