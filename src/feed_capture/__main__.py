"""Module entrypoint so `python -m feed_capture` works."""

from __future__ import annotations

from feed_capture.cli import app


def main() -> None:
    app()


if __name__ == "__main__":
    main()
