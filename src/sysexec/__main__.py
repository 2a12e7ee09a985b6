"""Module entry point for `python -m sysexec`."""

from sysexec.cli.main import main

if __name__ == "__main__":
    main()
