from __future__ import annotations

from typing import Optional


class FormulaLabError(Exception):
    """Base class for every error raised by formula_engines."""


class ParseError(FormulaLabError):
    """A formula line could not be parsed.

    Inside `parse_all` this is recorded per line and never aborts the batch.
    """

    def __init__(self, reason: str, text: str = "", line: Optional[int] = None):
        self.reason = reason
        self.text = text
        self.line = line
        where = f"line {line}: " if line is not None else ""
        super().__init__(f"{where}{reason} ({text!r})" if text else f"{where}{reason}")


class DuplicateFormula(FormulaLabError):
    """Same normalized formula repeated in one batch (recorded, not fatal)."""

    def __init__(self, text: str, line: int, first_line: int):
        self.text = text
        self.line = line
        self.first_line = first_line
        super().__init__(f"line {line}: duplicate of line {first_line} ({text!r})")


class ElementUnknown(FormulaLabError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"unknown element: {name!r}")


class InvalidExpressionSyntax(FormulaLabError):
    def __init__(self, expression: str):
        self.expression = expression
        super().__init__(f"invalid expression after substitution: {expression!r}")


class HistoryError(FormulaLabError):
    """Malformed draw history input."""


class WorkerError(FormulaLabError):
    """Failure reported across the worker boundary."""
