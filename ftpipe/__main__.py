#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Unified CLI entry point for ftpipe."""
from __future__ import annotations

import sys
from textwrap import dedent

from .cli import detect_main, train_main

_COMMANDS = {
    "detect": detect_main,
    "train": train_main,
}

_DEFAULT_COMMAND = "detect"


def _print_help() -> None:
    msg = dedent(
        """
        Usage:
          python -m ftpipe [command] [args...]

        Commands:
          detect              Run keypoints, segmentation and line finding (default)
          train               Label candidates from annotations and train the classifiers
          help                Show this message

        Examples:
          python -m ftpipe detect --images scene.jpg --out-dir out
          python -m ftpipe train --images a.jpg b.jpg --annotations boxes.json --model-dir models
        """
    ).strip()
    print(msg)


def main(argv: list[str] | None = None) -> None:
    if argv is None:
        argv = sys.argv[1:]
    if not argv:
        _print_help()
        return
    cmd = argv[0]
    if cmd in {"-h", "--help", "help"}:
        _print_help()
        return
    command = _COMMANDS.get(cmd)
    if command is None:
        command = _COMMANDS[_DEFAULT_COMMAND]
        args = argv
    else:
        args = argv[1:]
    command(args)


if __name__ == "__main__":
    main()
