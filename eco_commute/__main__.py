"""Module entry point: python -m eco_commute ..."""

from __future__ import annotations

from eco_commute.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
