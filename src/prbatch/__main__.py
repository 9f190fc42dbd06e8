"""Module entrypoint for ``python -m prbatch``."""

from __future__ import annotations

from prbatch.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
