"""Build output log and the compiler warnings and errors found in it."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

_INT = re.compile(r"[+-]?[0-9]+")
_INT_MIN = -0x80000000
_INT_MAX = 0x7FFFFFFF

EDITOR_NOT_SET = (
    "You have to set the editor to be able to jump to issues:\n\n"
    "Settings -> Set Text Editor"
)


class IssueType(enum.Enum):
    WARNING = "warning"
    ERROR = "error"


@dataclass
class Issue:
    """A warning or error located in a source file."""

    message: str
    path: str
    line: int
    column: int
    kind: IssueType

    @property
    def text(self) -> str:
        """The text shown for the issue in a list."""
        return f"{self.message}\n{self.path}, Line {self.line}"


def _to_int(text: str) -> Optional[int]:
    text = text.strip()
    if not _INT.fullmatch(text):
        return None
    value = int(text)
    return value if _INT_MIN <= value <= _INT_MAX else None


def parse_issue(text: str, kind: IssueType, remove_label: bool = True) -> Optional[Issue]:
    """Read a ``path:line[:column]: label: message`` line; None if it has no location.

    With ``remove_label`` the word after the location (such as ``error:``) is dropped.
    """
    index = text.find(" ")
    location = text if index <= 0 else text[: index - 1]
    segments = location.split(":")
    if len(segments) < 2:
        return None
    path = segments[0]
    line = _to_int(segments[1]) or 0
    column = 0
    if len(segments) >= 3:
        parsed = _to_int(segments[2])
        if parsed is not None:
            column = parsed
    start = text.find(" ", index + 1) if remove_label else index + 1
    message = text[max(start, 0):]
    return Issue(message, path, line, column, kind)


def build_editor_command(template: str, issue: Issue) -> Optional[Tuple[str, List[str]]]:
    """Turn an editor command template into a program and its arguments.

    ``%path%``, ``%line%`` and ``%column%`` are replaced from ``issue``. Returns
    None for an issue without a path; raises ValueError if no template is set.
    """
    if not template:
        raise ValueError(EDITOR_NOT_SET)
    if not issue.path:
        return None
    command_line = (
        template.replace("%path%", issue.path)
        .replace("%line%", str(issue.line))
        .replace("%column%", str(issue.column))
    )
    index = command_line.find(" ")
    program = command_line if index < 0 else command_line[:index]
    arguments = [part for part in command_line[index + 1:].split(" ") if part]
    return program, arguments


@dataclass
class IssueLog:
    """The build output and the issues picked out of it."""

    output: List[str] = field(default_factory=list)
    issues: List[Issue] = field(default_factory=list)

    @property
    def title(self) -> str:
        """The label of the issue list: "Issues", or "Issues (n)" once some were found."""
        return f"Issues ({len(self.issues)})" if self.issues else "Issues"

    def append_output(self, category: str, text: str, show_category: bool = False) -> Optional[Issue]:
        """Add build output; return the issue it reports, if any."""
        log_text = text[:-1] if text.endswith("\n") else text
        if show_category:
            log_text = f"[{category}] {log_text}"
        self.output.append(log_text)

        for line in text.split("\n"):
            lower = line.lower()
            if "warning" in lower:
                return self._add_issue(log_text, IssueType.WARNING)
            if "error" in lower:
                return self._add_issue(log_text, IssueType.ERROR)
            if "undefined reference to" in lower:
                return self._add_issue(log_text, IssueType.ERROR, remove_label=False)
        return None

    def _add_issue(self, text: str, kind: IssueType, remove_label: bool = True) -> Optional[Issue]:
        issue = parse_issue(text, kind, remove_label)
        if issue is not None:
            self.issues.append(issue)
        return issue

    def clear(self) -> None:
        """Forget the output and the issues."""
        self.output.clear()
        self.issues.clear()