"""
Drift arithmetic — orders a batch of line actions and shifts each one by the
net line delta of everything applied before it.

All functions here are pure: they never touch the filesystem, which keeps the
invariant easy to exercise with randomised batches.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from ..errors import ValidationError
from .models import (
    Delete, DeleteMany, InsertAfter, InsertBefore, InsertManyAfter,
    InsertManyBefore, LineAction, Replace, ReplaceRange,
)

_AFTER_TYPES = (InsertAfter, InsertManyAfter)
_BEFORE_TYPES = (InsertBefore, InsertManyBefore)
_SINGLE_TYPES = (Replace, Delete)
_RANGE_TYPES = (ReplaceRange, DeleteMany)


@dataclass(frozen=True)
class PlannedEdit:
    """One action of a batch with its line references shifted for drift."""
    action: LineAction
    shifted: LineAction
    delta: int


def sort_actions(actions: Iterable[LineAction]) -> list[LineAction]:
    """Ascending by target line; at the same line ``*_before`` inserts go
    first and ``*_after`` inserts last."""
    return sorted(actions, key=lambda a: (a.anchor, a.tie_rank))


def expected_line_count(line_count: int, actions: Iterable[LineAction]) -> int:
    return line_count + sum(a.delta for a in actions)


def find_conflicts(
    actions: Sequence[LineAction],
) -> list[tuple[LineAction, LineAction]]:
    """Return every pair of actions whose affected ranges overlap."""
    pairs = []
    for i, first in enumerate(actions):
        for second in actions[i + 1:]:
            if first.conflicts_with(second):
                pairs.append((first, second))
    return pairs


def bounds_problem(action: LineAction, length: int,
                   allow_prepend: bool = True) -> str | None:
    """Describe why ``action`` does not fit a file of ``length`` lines.

    Returns None when every line reference is in range.
    """
    if isinstance(action, _AFTER_TYPES):
        low = 0 if allow_prepend else 1
        if not low <= action.line <= length:
            return f"line {action.line} is out of range ({low}-{length})"
    elif isinstance(action, _BEFORE_TYPES):
        if not 1 <= action.line <= length + 1:
            return f"line {action.line} is out of range (1-{length + 1})"
    elif isinstance(action, _SINGLE_TYPES):
        if not 1 <= action.line <= length:
            return f"line {action.line} is out of range (1-{length})"
    elif isinstance(action, _RANGE_TYPES):
        if action.start > action.end:
            return f"range {action.start}-{action.end} is inverted"
        if action.start < 1 or action.end > length:
            return (f"range {action.start}-{action.end} is out of range "
                    f"(1-{length})")
    else:
        return f"unsupported action {type(action).__name__}"
    return None


def plan_batch(actions: Iterable[LineAction], line_count: int,
               allow_prepend: bool = True) -> list[PlannedEdit]:
    """Dry-run a batch against a file of ``line_count`` lines.

    Walks the sorted actions keeping a running ``offset`` (lines added minus
    lines removed so far) and the simulated file length.  Each action is
    shifted by the offset and re-checked against the simulated length.

    Raises
    ------
    ValidationError
        On the first action whose shifted reference falls outside the file.
    """
    plan: list[PlannedEdit] = []
    offset = 0
    simulated_length = line_count

    for index, action in enumerate(sort_actions(actions), start=1):
        shifted = action.shifted(offset)
        problem = bounds_problem(shifted, simulated_length, allow_prepend)
        if problem:
            raise ValidationError(
                f"After applying previous changes, change {index} "
                f"({action.describe()}) would be invalid: {problem} "
                f"(file has {simulated_length} lines)",
                line=action.anchor,
            )
        delta = action.delta
        plan.append(PlannedEdit(action=action, shifted=shifted, delta=delta))
        offset += delta
        simulated_length += delta

    return plan


def apply_plan(lines: list[str], plan: Iterable[PlannedEdit]) -> list[str]:
    """Apply a plan to bare ``lines`` in place and return the same list.

    Inserted text loses any carriage return; the caller joins lines with the
    file's own newline.
    """
    for step in plan:
        action = step.shifted
        new = [text.rstrip("\r") for text in action.inserted_lines()]
        span = action.span
        if span is not None:
            start, end = span
            lines[start - 1:end] = new
        else:
            lines[action.gap:action.gap] = new
    return lines
