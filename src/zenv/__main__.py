"""Module entrypoint for `python -m zenv`."""

from zenv.cli import run

if __name__ == "__main__":
    raise SystemExit(run())
