"""Common utility functions for the project."""

import re
from enum import Enum
from typing import Any

_WHITESPACE = re.compile(r"\s+")


class AnsiColors(Enum):
    """
    ANSI color codes for terminal output.
    """

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[33m"
    BLUE = "\033[94m"


def colored_print(text: str, color: AnsiColors, *args: Any, **kwargs: Any) -> None:
    """
    Print text in color.

    Args:
        text: The text to print
        color: The color to use (AnsiColors enum)
        args: Additional positional arguments for print
        kwargs: Additional keyword arguments for print
    """
    print(f"{color.value}{text}\033[0m", *args, **kwargs)  # ANSI reset at the end


def slugify(text: str) -> str:
    """Lower-case *text* and replace every whitespace run with a hyphen."""
    return _WHITESPACE.sub("-", text.lower())
