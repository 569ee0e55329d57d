"""
Console prompts for interactive runs.
"""

from __future__ import annotations

import getpass
from typing import Callable, Optional, Sequence

_YES = {"y", "yes"}
_NO = {"n", "no"}


def prompt_text(
    message: str,
    default: str = "",
    required: bool = True,
    input_fn: Callable[[str], str] = input,
) -> str:
    """Ask for a free-text value, re-asking while a required value is empty."""
    suffix = f" [{default}]" if default else ""
    while True:
        answer = input_fn(f"{message}{suffix}: ").strip()
        if not answer:
            answer = default
        if answer or not required:
            return answer
        print("  A value is required.")


def prompt_secret(message: str, getpass_fn: Callable[[str], str] = getpass.getpass) -> str:
    """Ask for a secret without echoing it."""
    return getpass_fn(f"{message}: ")


def confirm(
    message: str,
    default: bool = False,
    input_fn: Callable[[str], str] = input,
) -> bool:
    """Y/N question. Empty input returns the default."""
    hint = "[Y/n]" if default else "[y/N]"
    while True:
        answer = input_fn(f"{message} {hint} ").strip().lower()
        if not answer:
            return default
        if answer in _YES:
            return True
        if answer in _NO:
            return False
        print("  Please answer 'y' or 'n'.")


def choose(
    message: str,
    options: Sequence[str],
    input_fn: Callable[[str], str] = input,
) -> Optional[int]:
    """Numbered menu. Returns the chosen index, or None for an empty answer."""
    if not options:
        return None
    print(message)
    for i, option in enumerate(options, start=1):
        print(f"  {i}) {option}")
    while True:
        answer = input_fn(f"Select 1-{len(options)}: ").strip()
        if not answer:
            return None
        if answer.isdigit() and 1 <= int(answer) <= len(options):
            return int(answer) - 1
        print(f"  Enter a number between 1 and {len(options)}.")
