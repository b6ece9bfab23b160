"""Module entrypoint for ``python -m intentforge``."""

from __future__ import annotations

from intentforge.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
