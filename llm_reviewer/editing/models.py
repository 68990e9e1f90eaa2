"""
Typed change set produced by the edit-script parser.

Line actions and file changes are small frozen dataclasses, one per variant,
joined by the ``LineAction`` / ``FileChange`` unions.  All line numbers are
1-based and refer to the file as it was before any action of the same batch
was applied.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import ClassVar, Optional, Union


def split_new_text(text: str) -> list[str]:
    """Split a (possibly multi-line) replacement string into file lines.

    A single trailing newline terminates the last line rather than
    introducing an empty one, so ``"a\\nb\\n"`` yields two lines.
    """
    lines = text.split("\n")
    if len(lines) > 1 and lines[-1] == "":
        lines.pop()
    return lines


class _ActionBase:
    """Behaviour shared by every line action variant."""

    keyword: ClassVar[str] = ""
    # Ordering among actions sharing the same anchor line.
    tie_rank: ClassVar[int] = 1
    _line_fields: ClassVar[tuple[str, ...]] = ("line",)

    @property
    def anchor(self) -> int:
        return getattr(self, self._line_fields[0])

    @property
    def span(self) -> Optional[tuple[int, int]]:
        """Inclusive range of original lines rewritten or removed."""
        return None

    @property
    def gap(self) -> Optional[int]:
        """For inserts: new text lands between lines ``gap`` and ``gap + 1``."""
        return None

    def inserted_lines(self) -> list[str]:
        return []

    @property
    def removed_count(self) -> int:
        if self.span is None:
            return 0
        start, end = self.span
        return end - start + 1

    @property
    def delta(self) -> int:
        """Net change in file length once this action is applied."""
        return len(self.inserted_lines()) - self.removed_count

    @property
    def is_multi_line(self) -> bool:
        return len(self.inserted_lines()) > 1 or self.removed_count > 1

    def shifted(self, offset: int):
        """Return a copy with every line reference moved by ``offset``."""
        changes = {name: getattr(self, name) + offset for name in self._line_fields}
        return dataclasses.replace(self, **changes)

    def conflicts_with(self, other: "_ActionBase") -> bool:
        mine, theirs = self.span, other.span
        if mine is not None and theirs is not None:
            return mine[0] <= theirs[1] and theirs[0] <= mine[1]
        if mine is None and theirs is None:
            return self.gap == other.gap
        # One insert, one rewrite: the insert's anchor line must survive.
        insert, rewrite = (self, other) if mine is None else (other, self)
        start, end = rewrite.span
        return start <= insert.anchor <= end

    def describe(self) -> str:
        refs = "-".join(str(getattr(self, name)) for name in self._line_fields)
        return f"{self.keyword} @ {refs}"


@dataclass(frozen=True)
class Replace(_ActionBase):
    line: int
    expected_old: str
    new: str

    keyword: ClassVar[str] = "replace"

    @property
    def span(self):
        return (self.line, self.line)

    def inserted_lines(self) -> list[str]:
        return split_new_text(self.new)


@dataclass(frozen=True)
class InsertAfter(_ActionBase):
    line: int
    new: str

    keyword: ClassVar[str] = "insert_after"
    tie_rank: ClassVar[int] = 2

    @property
    def gap(self):
        return self.line

    def inserted_lines(self) -> list[str]:
        return split_new_text(self.new)


@dataclass(frozen=True)
class InsertBefore(_ActionBase):
    line: int
    new: str

    keyword: ClassVar[str] = "insert_before"
    tie_rank: ClassVar[int] = 0

    @property
    def gap(self):
        return self.line - 1

    def inserted_lines(self) -> list[str]:
        return split_new_text(self.new)


@dataclass(frozen=True)
class Delete(_ActionBase):
    line: int

    keyword: ClassVar[str] = "delete"

    @property
    def span(self):
        return (self.line, self.line)


@dataclass(frozen=True)
class ReplaceRange(_ActionBase):
    start: int
    end: int
    expected_old_lines: tuple[str, ...]
    new_lines: tuple[str, ...]

    keyword: ClassVar[str] = "replace_range"
    _line_fields: ClassVar[tuple[str, ...]] = ("start", "end")

    def __post_init__(self):
        # Accept lists from callers; store tuples so instances stay hashable.
        object.__setattr__(self, "expected_old_lines", tuple(self.expected_old_lines))
        object.__setattr__(self, "new_lines", tuple(self.new_lines))

    @property
    def span(self):
        return (self.start, self.end)

    def inserted_lines(self) -> list[str]:
        return list(self.new_lines)

    @property
    def is_multi_line(self) -> bool:
        return True


@dataclass(frozen=True)
class InsertManyAfter(_ActionBase):
    line: int
    new_lines: tuple[str, ...]

    keyword: ClassVar[str] = "insert_many_after"
    tie_rank: ClassVar[int] = 2

    def __post_init__(self):
        object.__setattr__(self, "new_lines", tuple(self.new_lines))

    @property
    def gap(self):
        return self.line

    def inserted_lines(self) -> list[str]:
        return list(self.new_lines)

    @property
    def is_multi_line(self) -> bool:
        return True


@dataclass(frozen=True)
class InsertManyBefore(_ActionBase):
    line: int
    new_lines: tuple[str, ...]

    keyword: ClassVar[str] = "insert_many_before"
    tie_rank: ClassVar[int] = 0

    def __post_init__(self):
        object.__setattr__(self, "new_lines", tuple(self.new_lines))

    @property
    def gap(self):
        return self.line - 1

    def inserted_lines(self) -> list[str]:
        return list(self.new_lines)

    @property
    def is_multi_line(self) -> bool:
        return True


@dataclass(frozen=True)
class DeleteMany(_ActionBase):
    start: int
    end: int

    keyword: ClassVar[str] = "delete_many"
    _line_fields: ClassVar[tuple[str, ...]] = ("start", "end")

    @property
    def span(self):
        return (self.start, self.end)

    @property
    def is_multi_line(self) -> bool:
        return True


LineAction = Union[
    Replace, InsertAfter, InsertBefore, Delete,
    ReplaceRange, InsertManyAfter, InsertManyBefore, DeleteMany,
]

ACTION_TYPES: dict[str, type] = {
    cls.keyword: cls
    for cls in (Replace, InsertAfter, InsertBefore, Delete,
                ReplaceRange, InsertManyAfter, InsertManyBefore, DeleteMany)
}


# ── File-level changes ──


@dataclass
class ModifyFile:
    path: str
    reason: str
    severity: str
    category: str
    actions: list[LineAction] = field(default_factory=list)

    keyword: ClassVar[str] = "modify_file"


@dataclass
class CreateFile:
    path: str
    reason: str
    severity: str
    category: str
    content: str = ""

    keyword: ClassVar[str] = "create_file"


@dataclass
class DeleteFile:
    path: str
    reason: str
    severity: str
    category: str

    keyword: ClassVar[str] = "delete_file"


FileChange = Union[ModifyFile, CreateFile, DeleteFile]


# ── Technology stack ──

# Script field -> attribute name, in canonical output order.
STACK_FIELDS: dict[str, str] = {
    "PRIMARY_LANGUAGE": "primary_language",
    "FRAMEWORK": "framework",
    "RUNTIME": "runtime",
    "PACKAGE_MANAGER": "package_manager",
    "DATABASE": "database",
    "ORM": "orm",
    "TESTING": "testing",
    "BUILD_TOOLS": "build_tools",
    "LINTING": "linting",
    "CONTAINERIZATION": "containerization",
    "CLOUD_SERVICES": "cloud_services",
    "AUTHENTICATION": "authentication",
    "API_TYPE": "api_type",
    "ARCHITECTURE_PATTERN": "architecture_pattern",
}


@dataclass
class TechnologyStack:
    """Repository technology stack reported ahead of the analysis summary."""
    primary_language: Optional[str] = None
    framework: Optional[str] = None
    runtime: Optional[str] = None
    package_manager: Optional[str] = None
    database: Optional[str] = None
    orm: Optional[str] = None
    testing: Optional[str] = None
    build_tools: Optional[str] = None
    linting: Optional[str] = None
    containerization: Optional[str] = None
    cloud_services: Optional[str] = None
    authentication: Optional[str] = None
    api_type: Optional[str] = None
    architecture_pattern: Optional[str] = None
    dependencies: dict[str, str] = field(default_factory=dict)
    critical_configs: dict[str, str] = field(default_factory=dict)


# ── Change set ──


@dataclass
class ChangeSet:
    """One parsed analysis response."""
    summary: str = ""
    changes: list[FileChange] = field(default_factory=list)
    technology_stack: Optional[TechnologyStack] = None
    # Soft errors from blocks the parser dropped; not part of equality.
    parse_errors: list = field(default_factory=list, compare=False)

    def paths(self) -> list[str]:
        """Affected paths in first-seen order."""
        seen: dict[str, None] = {}
        for change in self.changes:
            seen.setdefault(change.path, None)
        return list(seen)

    def for_path(self, path: str) -> list[FileChange]:
        return [c for c in self.changes if c.path == path]

    def subset(self, indices) -> "ChangeSet":
        """Return a change set holding only the changes at ``indices``."""
        picked = [self.changes[i] for i in sorted(set(indices))]
        return ChangeSet(
            summary=self.summary,
            changes=picked,
            technology_stack=self.technology_stack,
        )
