"""
Render a :class:`ChangeSet` back into edit-script text.

The output uses the canonical form of the grammar, so feeding it to
:func:`parse_edit_script` yields an equal change set.
"""

from __future__ import annotations

import dataclasses

from .models import (
    STACK_FIELDS, ChangeSet, CreateFile, Delete, DeleteMany, FileChange,
    InsertAfter, InsertBefore, InsertManyAfter, InsertManyBefore, LineAction,
    ModifyFile, Replace, ReplaceRange, TechnologyStack,
)


def _block(name: str, lines) -> list[str]:
    return [f"{name}:", *lines, f"END_{name}"]


def _new_text(text: str) -> list[str]:
    if "\n" in text:
        return _block("NEW_LINES", text.split("\n"))
    return [f"NEW: {text}"]


def format_action(action: LineAction) -> list[str]:
    """Return the script lines for one line action, ``ACTION:`` first."""
    out = [f"ACTION: {action.keyword}"]
    if isinstance(action, Replace):
        out += [f"LINE: {action.line}", f"OLD: {action.expected_old}"]
        out += _new_text(action.new)
    elif isinstance(action, (InsertAfter, InsertBefore)):
        out.append(f"LINE: {action.line}")
        out += _new_text(action.new)
    elif isinstance(action, Delete):
        out.append(f"LINE: {action.line}")
    elif isinstance(action, ReplaceRange):
        out += [f"START_LINE: {action.start}", f"END_LINE: {action.end}"]
        out += _block("OLD_LINES", action.expected_old_lines)
        out += _block("NEW_LINES", action.new_lines)
    elif isinstance(action, (InsertManyAfter, InsertManyBefore)):
        out.append(f"LINE: {action.line}")
        out += _block("NEW_LINES", action.new_lines)
    elif isinstance(action, DeleteMany):
        out += [f"START_LINE: {action.start}", f"END_LINE: {action.end}"]
    else:
        raise TypeError(f"Unsupported line action: {type(action).__name__}")
    return out


def format_change(change: FileChange) -> list[str]:
    out = [
        f"CHANGE: {change.keyword}",
        f"FILE: {change.path}",
        f"REASON: {change.reason}",
        f"SEVERITY: {change.severity}",
        f"CATEGORY: {change.category}",
    ]
    if isinstance(change, ModifyFile):
        for action in change.actions:
            out += format_action(action)
    elif isinstance(change, CreateFile):
        out += _block("CONTENT", change.content.split("\n"))
    out.append("END_CHANGE")
    return out


def format_stack(stack: TechnologyStack) -> list[str]:
    out = ["TECHNOLOGY_STACK:"]
    for name, attr in STACK_FIELDS.items():
        value = getattr(stack, attr)
        if value is not None:
            out.append(f"{name}: {value}")
    if stack.dependencies:
        out += _block("DEPENDENCIES", (f"{k}: {v}" for k, v in stack.dependencies.items()))
    if stack.critical_configs:
        out += _block("CRITICAL_CONFIGS",
                      (f"{k}: {v}" for k, v in stack.critical_configs.items()))
    out.append("END_TECHNOLOGY_STACK")
    return out


def serialize_change_set(change_set: ChangeSet) -> str:
    """Render ``change_set`` as edit-script text."""
    out: list[str] = []
    if change_set.technology_stack is not None:
        out += format_stack(change_set.technology_stack)
        out.append("")
    out.append("ANALYSIS_SUMMARY:")
    if change_set.summary:
        out += change_set.summary.split("\n")
    for change in change_set.changes:
        out.append("")
        out += format_change(change)
    return "\n".join(out) + "\n"


def change_set_to_dict(change_set: ChangeSet) -> dict:
    """JSON-ready view of a change set, including dropped blocks."""
    changes = []
    for change in change_set.changes:
        entry = {
            "kind": change.keyword,
            "path": change.path,
            "reason": change.reason,
            "severity": change.severity,
            "category": change.category,
        }
        if isinstance(change, ModifyFile):
            entry["actions"] = [
                {"action": a.keyword, **dataclasses.asdict(a)} for a in change.actions
            ]
        elif isinstance(change, CreateFile):
            entry["content"] = change.content
        changes.append(entry)

    stack = change_set.technology_stack
    return {
        "summary": change_set.summary,
        "technology_stack": dataclasses.asdict(stack) if stack is not None else None,
        "changes": changes,
        "parse_errors": [
            {"kind": e.kind.value, "line": e.line, "field": e.field,
             "lexeme": e.lexeme, "message": e.message}
            for e in change_set.parse_errors
        ],
    }
