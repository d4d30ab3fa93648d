"""Console helpers shared by the session loop, diagnostics and startup code."""

from enum import Enum
from typing import (
    Any,
    Iterable,
)


class AnsiColors(Enum):
    """
    ANSI color codes for terminal output.
    """

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[33m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    GRAY = "\033[90m"

    def __str__(self) -> str:
        return self.value


RULE = "━" * 47
BOX_WIDTH = 62


def colored_print(text: str, color: AnsiColors, *args: Any, **kwargs: Any) -> None:
    """
    Print text in color.

    Args:
        text: The text to print
        color: The color to use (AnsiColors enum)
        args: Additional positional arguments for print
        kwargs: Additional keyword arguments for print
    """
    print(f"{color}{text}\033[0m", *args, **kwargs)  # ANSI reset at the end


def box_lines(title: str, sections: Iterable[Iterable[str]], indent: str = "    ") -> list[str]:
    """
    Lay out a framed diagnostic block.

    Each section is a group of rows; sections are separated by a thin rule.
    """
    lines = [
        f"{indent}╔{'═' * BOX_WIDTH}",
        f"{indent}║ {title}",
        f"{indent}╠{'═' * BOX_WIDTH}",
    ]
    for i, rows in enumerate(sections):
        if i:
            lines.append(f"{indent}║ {'─' * (BOX_WIDTH - 2)}")
        lines.extend(f"{indent}║ {row}".rstrip() for row in rows)
    lines.append(f"{indent}╚{'═' * BOX_WIDTH}")
    return lines


def truncate(text: str, limit: int) -> str:
    """Cut *text* to *limit* characters, marking the cut with an ellipsis."""
    return text if len(text) <= limit else text[:limit] + "..."
