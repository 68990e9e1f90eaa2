"""
Edit applicator — validates a batch of line actions against the current file
contents and applies it with drift accounting and atomic writes.

Each file is handled in three phases: static validation of every action
against the file as read from disk, a dry run that shifts line numbers for
earlier edits, and the real write.  A failure in one file never stops the
others.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..errors import FileOperationError, ReviewerError, ValidationError
from .drift import PlannedEdit, apply_plan, bounds_problem, find_conflicts, plan_batch
from .models import (
    ChangeSet, CreateFile, DeleteFile, FileChange, InsertManyAfter,
    InsertManyBefore, LineAction, ModifyFile, Replace, ReplaceRange,
)

logger = logging.getLogger(__name__)

TRAILING_NEWLINE_POLICIES = ("preserve", "always", "never")
INSERT_AFTER_ZERO_POLICIES = ("prepend", "error")


class _PathLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


# Advisory in-process locks keyed by absolute path.  An entry lives only
# while some thread holds or waits for it.
_path_locks: dict[str, _PathLock] = {}
_path_locks_guard = threading.Lock()


@contextmanager
def path_lock(path: str):
    """Hold the advisory lock for ``path`` for the duration of the block."""
    key = os.path.normcase(os.path.abspath(path))
    with _path_locks_guard:
        entry = _path_locks.get(key)
        if entry is None:
            entry = _path_locks[key] = _PathLock()
        entry.users += 1
    try:
        with entry.lock:
            yield
    finally:
        with _path_locks_guard:
            entry.users -= 1
            if entry.users == 0:
                del _path_locks[key]


@dataclass
class FileLines:
    """A text file as bare lines plus how to put it back together."""
    lines: list[str]
    trailing_newline: bool = True
    newline: str = "\n"


def split_file_text(text: str) -> FileLines:
    """Split file text into lines without their terminators.

    A final newline does not add a line.  The file counts as CRLF when most
    of its terminated lines end in ``\\r\\n``; the last line only takes part
    when a newline follows it.  For CRLF files one ``\\r`` is dropped from
    every terminated line so edits work on bare text.
    """
    if text == "":
        return FileLines(lines=[])
    trailing = text.endswith("\n")
    body = text[:-1] if trailing else text
    lines = body.split("\n")
    terminated = len(lines) if trailing else len(lines) - 1
    crlf = sum(1 for line in lines[:terminated] if line.endswith("\r"))
    if terminated == 0 or crlf * 2 <= terminated:
        return FileLines(lines=lines, trailing_newline=trailing)

    bare = [line[:-1] if i < terminated and line.endswith("\r") else line
            for i, line in enumerate(lines)]
    return FileLines(lines=bare, trailing_newline=trailing, newline="\r\n")


def join_file_lines(lines: list[str], trailing_newline: bool,
                    newline: str = "\n") -> str:
    if not lines:
        return ""
    text = newline.join(lines)
    if trailing_newline:
        text += newline
    return text


@dataclass
class FileApplyResult:
    """Outcome for one file."""
    path: str
    applied: bool
    operation: str = "modify"
    reason: Optional[str] = None
    lines_before: Optional[int] = None
    lines_after: Optional[int] = None
    error: Optional[Exception] = field(default=None, repr=False, compare=False)


@dataclass
class ApplyReport:
    """Per-file results of applying (part of) a change set."""
    results: list[FileApplyResult] = field(default_factory=list)

    @property
    def applied_count(self) -> int:
        return sum(1 for r in self.results if r.applied)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.applied)

    @property
    def success(self) -> bool:
        return self.failed_count == 0

    def by_path(self) -> dict[str, FileApplyResult]:
        return {r.path: r for r in self.results}


class EditApplicator:
    """Apply parsed file changes to a working tree."""

    def __init__(
        self,
        repo_root: str = ".",
        allow_overwrite: bool = False,
        insert_after_zero: str = "prepend",
        trailing_newline: str = "preserve",
        ignore_leading_whitespace: bool = False,
    ) -> None:
        if trailing_newline not in TRAILING_NEWLINE_POLICIES:
            raise ValueError(f"trailing_newline must be one of {TRAILING_NEWLINE_POLICIES}")
        if insert_after_zero not in INSERT_AFTER_ZERO_POLICIES:
            raise ValueError(f"insert_after_zero must be one of {INSERT_AFTER_ZERO_POLICIES}")
        self._root = os.path.abspath(repo_root)
        self._allow_overwrite = allow_overwrite
        self._allow_prepend = insert_after_zero == "prepend"
        self._trailing_newline = trailing_newline
        self._ignore_leading_ws = ignore_leading_whitespace

    @classmethod
    def from_config(cls, cfg, repo_root: str = ".") -> "EditApplicator":
        return cls(
            repo_root=repo_root,
            allow_overwrite=cfg.ALLOW_OVERWRITE,
            insert_after_zero=cfg.INSERT_AFTER_ZERO,
            trailing_newline=cfg.TRAILING_NEWLINE,
            ignore_leading_whitespace=cfg.IGNORE_LEADING_WHITESPACE,
        )

    # ------------------------------------------------------------------
    # Change-set level
    # ------------------------------------------------------------------

    def apply_change_set(self, changes: ChangeSet | Iterable[FileChange]) -> ApplyReport:
        """Apply every change, grouping all modifications of a path into one
        batch.  Failures are recorded per file and never abort siblings.
        """
        if isinstance(changes, ChangeSet):
            changes = changes.changes

        batches: dict[str, list[LineAction]] = {}
        order: list = []
        for change in changes:
            if isinstance(change, ModifyFile):
                if change.path not in batches:
                    batches[change.path] = []
                    order.append(change.path)
                batches[change.path].extend(change.actions)
            else:
                order.append(change)

        report = ApplyReport()
        for entry in order:
            if isinstance(entry, str):
                report.results.append(self.apply_file(entry, batches[entry]))
            else:
                report.results.append(self.apply_change(entry))

        logger.info(
            "[Apply] %d file(s) applied, %d failed",
            report.applied_count, report.failed_count,
        )
        return report

    def dry_run_change_set(self, change_set: ChangeSet) -> ApplyReport:
        """Check every change against the working tree without writing."""
        report = ApplyReport()
        for path in change_set.paths():
            changes = change_set.for_path(path)
            modifications = [c for c in changes if isinstance(c, ModifyFile)]
            for change in changes:
                if not isinstance(change, ModifyFile):
                    report.results.append(self._dry_run_file_change(change))
            if modifications:
                actions = [a for c in modifications for a in c.actions]
                report.results.append(self._dry_run_modify(path, actions))
        return report

    def _dry_run_modify(self, path: str, actions: list[LineAction]) -> FileApplyResult:
        try:
            plan = self.dry_run(path, actions)
        except ReviewerError as exc:
            return FileApplyResult(path, False, "modify", reason=str(exc), error=exc)
        delta = sum(step.delta for step in plan)
        return FileApplyResult(
            path, True, "modify",
            reason=f"dry run, {len(plan)} action(s), {delta:+d} lines")

    def _dry_run_file_change(self, change: FileChange) -> FileApplyResult:
        operation = "create" if isinstance(change, CreateFile) else "delete"
        try:
            full_path = self.resolve(change.path)
            if isinstance(change, CreateFile):
                self._check_create(change.path, full_path)
            elif not os.path.exists(full_path):
                return FileApplyResult(change.path, True, operation,
                                       reason="dry run, already absent")
        except ReviewerError as exc:
            return FileApplyResult(change.path, False, operation, reason=str(exc), error=exc)
        return FileApplyResult(change.path, True, operation, reason="dry run")

    def apply_change(self, change: FileChange) -> FileApplyResult:
        """Apply a single file change, reporting failure instead of raising."""
        if isinstance(change, ModifyFile):
            return self.apply_file(change.path, change.actions)
        operation = "create" if isinstance(change, CreateFile) else "delete"
        try:
            if isinstance(change, CreateFile):
                return self.create_file(change)
            return self.delete_file(change)
        except ReviewerError as exc:
            logger.warning("[Apply] %s failed for %s: %s", operation, change.path, exc)
            return FileApplyResult(change.path, False, operation, reason=str(exc), error=exc)

    def apply_file(self, path: str, actions: list[LineAction]) -> FileApplyResult:
        """Apply one batch of line actions, reporting failure instead of raising."""
        try:
            return self.apply_actions(path, actions)
        except ReviewerError as exc:
            logger.warning("[Apply] Failed to apply changes to %s: %s", path, exc)
            return FileApplyResult(path, False, "modify", reason=str(exc), error=exc)

    # ------------------------------------------------------------------
    # Single-file modification
    # ------------------------------------------------------------------

    def apply_actions(self, path: str, actions: list[LineAction]) -> FileApplyResult:
        """Validate, dry-run and apply ``actions`` to ``path``.

        Raises
        ------
        ValidationError
            If any action is out of range, mismatches the file, or conflicts
            with another action.  Nothing is written in that case.
        FileOperationError
            If the file cannot be read or written.
        """
        full_path = self.resolve(path)
        with path_lock(full_path):
            file_lines = split_file_text(self._read_text(full_path, path))
            lines = file_lines.lines
            before = len(lines)

            if not actions:
                return FileApplyResult(path, True, "modify", reason="no actions",
                                       lines_before=before, lines_after=before)

            self.validate_actions(lines, actions, path)
            plan = self._plan(actions, before, path)
            new_lines = apply_plan(list(lines), plan)

            content = join_file_lines(new_lines, self._keep_trailing_newline(file_lines),
                                      file_lines.newline)
            self._safe_write(full_path, content)

        logger.info(
            "[Apply] %s: %d action(s), %d -> %d lines",
            path, len(actions), before, len(new_lines),
        )
        return FileApplyResult(path, True, "modify",
                               lines_before=before, lines_after=len(new_lines))

    def dry_run(self, path: str, actions: list[LineAction]) -> list[PlannedEdit]:
        """Run phases 1 and 2 only and return the shifted plan."""
        full_path = self.resolve(path)
        with path_lock(full_path):
            lines = split_file_text(self._read_text(full_path, path)).lines
            self.validate_actions(lines, actions, path)
            return self._plan(actions, len(lines), path)

    def validate_actions(self, lines: list[str], actions: list[LineAction],
                         path: str | None = None) -> None:
        """Phase 1: check every action against the original file contents."""
        where = f" in {path}" if path else ""
        for index, action in enumerate(actions, start=1):
            problem = bounds_problem(action, len(lines), self._allow_prepend)
            if problem:
                raise ValidationError(
                    f"Change {index} ({action.describe()}){where}: {problem}",
                    path=path, line=action.anchor,
                )
            if isinstance(action, (InsertManyAfter, InsertManyBefore)) and not action.new_lines:
                raise ValidationError(
                    f"Change {index} ({action.describe()}){where}: "
                    "cannot insert an empty list of lines",
                    path=path, line=action.line,
                )
            if isinstance(action, Replace):
                self._check_line(lines, action.line, action.expected_old, path)
            elif isinstance(action, ReplaceRange):
                expected_count = action.end - action.start + 1
                if len(action.expected_old_lines) != expected_count:
                    raise ValidationError(
                        f"Change {index} ({action.describe()}){where}: range covers "
                        f"{expected_count} line(s) but {len(action.expected_old_lines)} "
                        "old line(s) were given",
                        path=path, line=action.start,
                    )
                for offset, expected in enumerate(action.expected_old_lines):
                    self._check_line(lines, action.start + offset, expected, path)

        for first, second in find_conflicts(actions):
            raise ValidationError(
                f"Conflicting line changes{where}: "
                f"{first.describe()} and {second.describe()}",
                path=path, line=second.anchor,
            )

    # ------------------------------------------------------------------
    # Create / delete
    # ------------------------------------------------------------------

    def create_file(self, change: CreateFile) -> FileApplyResult:
        full_path = self.resolve(change.path)
        with path_lock(full_path):
            self._check_create(change.path, full_path)
            try:
                os.makedirs(os.path.dirname(full_path), exist_ok=True)
            except OSError as exc:
                raise FileOperationError(change.path, "create", str(exc)) from exc
            content = self._finish_created_content(change.content)
            self._safe_write(full_path, content)

        logger.info("[Apply] Created %s", change.path)
        lines_after = len(split_file_text(content).lines)
        return FileApplyResult(change.path, True, "create", lines_after=lines_after)

    def delete_file(self, change: DeleteFile) -> FileApplyResult:
        full_path = self.resolve(change.path)
        with path_lock(full_path):
            if not os.path.exists(full_path):
                logger.info("[Apply] %s already absent, nothing to delete", change.path)
                return FileApplyResult(change.path, True, "delete", reason="already absent")
            try:
                os.remove(full_path)
            except OSError as exc:
                raise FileOperationError(change.path, "delete", str(exc)) from exc

        logger.info("[Apply] Deleted %s", change.path)
        return FileApplyResult(change.path, True, "delete")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def resolve(self, path: str) -> str:
        """Resolve ``path`` under the repository root, refusing escapes."""
        if not path or os.path.isabs(path):
            raise ValidationError(f"Path must be relative to the repository: {path!r}",
                                  path=path)
        full_path = os.path.normpath(os.path.join(self._root, path))
        if os.path.commonpath([self._root, full_path]) != self._root:
            raise ValidationError(f"Path escapes the repository: {path!r}", path=path)
        return full_path

    def _check_create(self, path: str, full_path: str) -> None:
        if os.path.isdir(full_path):
            raise FileOperationError(path, "create", "path is a directory")
        if os.path.exists(full_path) and not self._allow_overwrite:
            raise ValidationError(f"File already exists: {path}", path=path)

    def _plan(self, actions, line_count: int, path: str) -> list[PlannedEdit]:
        try:
            return plan_batch(actions, line_count, self._allow_prepend)
        except ValidationError as exc:
            exc.path = path
            raise

    def _same_line(self, expected: str, actual: str) -> bool:
        expected, actual = expected.rstrip(), actual.rstrip()
        if self._ignore_leading_ws:
            expected, actual = expected.lstrip(), actual.lstrip()
        return expected == actual

    def _check_line(self, lines: list[str], line_number: int,
                    expected: str, path: str | None) -> None:
        actual = lines[line_number - 1].rstrip("\r")
        if not self._same_line(expected, actual):
            raise ValidationError(
                f"Line {line_number} content mismatch.\n"
                f"Expected: '{expected}'\nActual: '{actual}'",
                path=path, line=line_number, expected=expected, actual=actual,
            )

    def _keep_trailing_newline(self, file_lines: FileLines) -> bool:
        if self._trailing_newline == "always":
            return True
        if self._trailing_newline == "never":
            return False
        return file_lines.trailing_newline

    def _finish_created_content(self, content: str) -> str:
        if self._trailing_newline == "always" and content and not content.endswith("\n"):
            return content + "\n"
        if self._trailing_newline == "never":
            return content.rstrip("\n")
        return content

    @staticmethod
    def _read_text(full_path: str, path: str) -> str:
        """Read a UTF-8 text file, rejecting binaries."""
        if not os.path.isfile(full_path):
            raise FileOperationError(path, "read", "file does not exist")
        try:
            with open(full_path, "rb") as f:
                data = f.read()
        except OSError as exc:
            raise FileOperationError(path, "read", str(exc)) from exc
        if b"\x00" in data:
            raise FileOperationError(path, "read", "binary file rejected")
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise FileOperationError(path, "read", f"not valid UTF-8 ({exc.reason})") from exc

    @staticmethod
    def _safe_write(full_path: str, content: str) -> None:
        """Write content atomically via temp file + rename."""
        directory = os.path.dirname(full_path)
        try:
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".llm_reviewer_",
                                            suffix=".tmp")
        except OSError as exc:
            raise FileOperationError(full_path, "write", str(exc)) from exc

        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(content)
            if os.path.exists(full_path):
                shutil.copymode(full_path, tmp_path)
            os.replace(tmp_path, full_path)
        except OSError as exc:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise FileOperationError(full_path, "write", str(exc)) from exc
