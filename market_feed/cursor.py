"""
Source position tracking.
Keeps line/column of the consumed part of the feed text.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Position:
    """1-based line and column of a character in the feed."""
    line: int = 1
    column: int = 1

    def advanced(self, text: str) -> 'Position':
        """Return the position right after ``text`` when it starts here."""
        newlines = text.count('\n')
        if newlines:
            return Position(self.line + newlines, len(text) - text.rfind('\n'))
        return Position(self.line, self.column + len(text))

    def __str__(self) -> str:
        return f"{self.line}:{self.column}"


class Cursor:
    """Mutable position that moves forward as the tokenizer consumes text."""

    def __init__(self):
        self.line = 1
        self.column = 1

    def advance(self, text: str) -> None:
        if not text:
            return
        newlines = text.count('\n')
        if newlines:
            self.line += newlines
            self.column = len(text) - text.rfind('\n')
        else:
            self.column += len(text)

    @property
    def position(self) -> Position:
        return Position(self.line, self.column)
