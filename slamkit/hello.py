"""The smallest possible command: a greeting."""

from __future__ import annotations

import argparse
import sys


def hello_message() -> str:
    """Return the greeting text."""
    return "Hello SLAM"


def _student_lines(year: int) -> list[str]:
    suffix = {1: "st", 2: "nd", 3: "rd"}.get(
        year if year % 100 not in (11, 12, 13) else 0, "th"
    )
    return ["Damn, boy!", f"You are a {year}{suffix} year student!"]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="slamkit-hello", description="Print a greeting.")
    parser.add_argument(
        "--student",
        action="store_true",
        help="print the student greeting instead of the plain one",
    )
    parser.add_argument(
        "--year",
        type=int,
        default=2,
        help="year shown in the student greeting (default: 2)",
    )
    return parser


def main(argv=None) -> int:
    """Parse the command line and print the chosen greeting."""
    args = _build_parser().parse_args(sys.argv[1:] if argv is None else argv)
    lines = _student_lines(args.year) if args.student else [hello_message()]
    sys.stdout.write("".join(f"{line}\n" for line in lines))
    return 0