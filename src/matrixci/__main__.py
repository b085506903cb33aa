"""Module entrypoint for ``python -m matrixci``."""

from __future__ import annotations

from matrixci.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
