"""Entry point for launching the CloudPlay GUI or CLI from a source checkout."""

from __future__ import annotations

import sys
import os


def main(argv: list[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)

    # Check for --debug flag BEFORE any imports that use logging
    if "--debug" in args:
        os.environ["CLOUDPLAY_DEBUG"] = "1"
        args.remove("--debug")

    if args:
        from cloudplay.cli import main as cli_main

        return cli_main(args)
    return _launch_gui()


def _launch_gui() -> int:
    from cloudplay.app import run as run_gui

    return run_gui()


if __name__ == "__main__":
    raise SystemExit(main())
