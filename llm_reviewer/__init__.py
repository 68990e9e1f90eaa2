"""
llm_reviewer — parse, score and apply code-review edit scripts produced by
streaming LLM providers.

Library usage::

    from llm_reviewer import parse_edit_script, EditApplicator

    change_set = parse_edit_script(reply_text)
    report = EditApplicator(repo_root=".").apply_change_set(change_set)
"""

from .editing import (
    ChangeSet, EditApplicator, EditScriptParser, compute_statistics,
    parse_edit_script, serialize_change_set,
)

__all__ = [
    "ChangeSet", "EditApplicator", "EditScriptParser", "compute_statistics",
    "parse_edit_script", "serialize_change_set",
]
