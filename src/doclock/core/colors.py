"""ANSI styling for doclock CLI output.

Styling is on only when stdout is a terminal and ``NO_COLOR`` is unset;
``--no-color`` turns it off for the rest of the process.
"""

import os
import sys


def _terminal_supports_color() -> bool:
    if os.environ.get("NO_COLOR") or not sys.stdout.isatty():
        return False
    return os.name != "nt" or bool(os.environ.get("TERM"))


class ConsoleColors:
    """Wraps status lines in ANSI codes when the console supports them."""

    GREEN = "\033[92m"
    RED = "\033[91m"
    YELLOW = "\033[93m"
    BOLD = "\033[1m"
    RESET = "\033[0m"

    _enabled = _terminal_supports_color()

    @classmethod
    def configure(cls, no_color: bool = False) -> None:
        if no_color:
            cls._enabled = False

    @classmethod
    def is_enabled(cls) -> bool:
        return cls._enabled

    @classmethod
    def style(cls, text: str, code: str) -> str:
        return f"{code}{text}{cls.RESET}" if cls._enabled else text

    @classmethod
    def success(cls, text: str) -> str:
        return cls.style(text, cls.GREEN)

    @classmethod
    def error(cls, text: str) -> str:
        return cls.style(text, cls.RED)

    @classmethod
    def warning(cls, text: str) -> str:
        return cls.style(text, cls.YELLOW)
