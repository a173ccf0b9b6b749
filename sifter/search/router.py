"""
Query Router - Classifies raw input into a search mode.

Every input string maps to exactly one mode, checked in order:
  :name arg   -> Command (named template, the notes vault for ":ob"/":obg",
                 or the provider bus for ":s")
  7/3         -> Calculator (only when enabled and the text is arithmetic)
  anything    -> AppSearch (always the fallback)

Also defines the result item variants every backend produces.
"""

import math
import os
import re
from dataclasses import dataclass
from typing import Optional, Union

COMMAND_PREFIX = ":"

# Digits, whitespace and the operators the calculator understands
ARITHMETIC_RE = re.compile(r"^[0-9\s.+\-*/%^()]+$")

# grep/rg style "path:line:content" output
GREP_LINE_RE = re.compile(r"^(?P<path>[^:\n]+):(?P<line>\d+):(?P<content>.*)$")


@dataclass(frozen=True)
class Query:
    """A submitted query and the generation it was tagged with."""
    text: str
    generation: int


@dataclass(frozen=True)
class AppSearch:
    text: str


@dataclass(frozen=True)
class Calculator:
    text: str


@dataclass(frozen=True)
class Command:
    name: str
    argument: Optional[str] = None


Mode = Union[AppSearch, Calculator, Command]


def detect_mode(text: str, calculator_enabled: bool = True) -> Mode:
    """
    Classify raw input into a mode. Pure, never fails.

    Args:
        text: Raw query text
        calculator_enabled: Whether arithmetic input goes to the calculator

    Returns:
        AppSearch, Calculator or Command
    """
    if text.startswith(COMMAND_PREFIX):
        rest = text[len(COMMAND_PREFIX):]
        parts = rest.split(None, 1)
        if not parts or rest[:1].isspace():
            # ":" alone, or ": foo" with no name before the whitespace
            argument = rest.strip() or None
            return Command("", argument)
        name = parts[0]
        argument = parts[1].strip() if len(parts) > 1 else ""
        return Command(name, argument or None)

    if calculator_enabled and text.strip() and ARITHMETIC_RE.match(text):
        return Calculator(text)

    return AppSearch(text)


class ResultItem:
    """Base class for a single result from any backend."""

    result_type = "generic"

    @property
    def rank(self) -> float:
        """Higher ranks sort first. Only app results carry a real score."""
        return 0.0


@dataclass(frozen=True)
class AppResult(ResultItem):
    entry: object
    score: float

    result_type = "app"

    @property
    def rank(self) -> float:
        return self.score

    @property
    def title(self) -> str:
        return self.entry.display_name

    @property
    def description(self) -> str:
        return self.entry.description

    @property
    def icon(self) -> str:
        return self.entry.icon or "application-x-executable"


@dataclass(frozen=True)
class CalcResult(ResultItem):
    expression: str
    value: Optional[float] = None
    error: Optional[str] = None

    result_type = "calculator"

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def display(self) -> str:
        """The value formatted for humans: 42, 2.333333, 0.5."""
        if self.value is None:
            return ""
        if not math.isfinite(self.value):
            return str(self.value)
        if abs(self.value - round(self.value)) < 1e-10:
            return str(int(round(self.value)))
        return f"{self.value:.6f}".rstrip("0").rstrip(".")

    @property
    def title(self) -> str:
        return f"= {self.display}" if self.ok else "Invalid expression"

    @property
    def description(self) -> str:
        return self.expression if self.ok else self.error

    @property
    def icon(self) -> str:
        return "accessories-calculator" if self.ok else "dialog-error"


@dataclass(frozen=True)
class CommandResult(ResultItem):
    raw_line: str
    path: Optional[str] = None
    line_number: Optional[int] = None
    content: Optional[str] = None

    result_type = "command"

    @classmethod
    def from_line(cls, line: str) -> "CommandResult":
        """Parse path:line:content output into structured fields."""
        match = GREP_LINE_RE.match(line)
        if match:
            return cls(
                raw_line=line,
                path=match.group("path"),
                line_number=int(match.group("line")),
                content=match.group("content"),
            )
        return cls(raw_line=line)

    @property
    def title(self) -> str:
        if self.path:
            return os.path.basename(self.path) or self.path
        if self.raw_line.startswith("/"):
            return os.path.basename(self.raw_line.rstrip("/")) or self.raw_line
        return self.raw_line

    @property
    def description(self) -> str:
        if self.path:
            return f"{self.line_number}: {self.content.strip()}"
        if self.raw_line.startswith("/"):
            return os.path.dirname(self.raw_line)
        return ""

    @property
    def icon(self) -> str:
        return "text-x-generic" if self.path or self.raw_line.startswith("/") else "system-search"


@dataclass(frozen=True)
class ProviderResult(ResultItem):
    provider: object
    activation_id: str
    title: str
    description: str = ""
    provider_icon: str = ""
    result_icon: Optional[str] = None
    terms: tuple = ()

    result_type = "provider"

    @property
    def icon(self) -> str:
        return self.result_icon or self.provider_icon or "system-search"


@dataclass(frozen=True)
class VaultResult(CommandResult):
    """A file or line found inside the notes vault."""
    vault: str = ""

    result_type = "vault"

    @classmethod
    def from_vault_line(cls, line: str, vault: str) -> "VaultResult":
        parsed = CommandResult.from_line(line)
        return cls(
            raw_line=parsed.raw_line,
            path=parsed.path,
            line_number=parsed.line_number,
            content=parsed.content,
            vault=vault,
        )

    @property
    def description(self) -> str:
        if self.path:
            return f"{self.line_number}: {self.content.strip()}"
        relative = os.path.relpath(self.raw_line, self.vault) if self.vault else self.raw_line
        return os.path.dirname(relative)

    @property
    def icon(self) -> str:
        return "text-markdown" if (self.path or self.raw_line).endswith(".md") else "text-x-generic"


@dataclass(frozen=True)
class ErrorResult(ResultItem):
    """A backend that cannot run explains why instead of returning nothing."""
    message: str

    result_type = "error"

    @property
    def title(self) -> str:
        return self.message

    @property
    def description(self) -> str:
        return ""

    @property
    def icon(self) -> str:
        return "dialog-error"
