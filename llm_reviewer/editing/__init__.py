"""Edit scripts — parse LLM analysis responses and apply them to files."""

from .models import (
    ChangeSet, CreateFile, DeleteFile, FileChange, LineAction, ModifyFile,
    TechnologyStack, Replace, InsertAfter, InsertBefore, Delete, ReplaceRange,
    InsertManyAfter, InsertManyBefore, DeleteMany,
)
from .script_parser import EditScriptParser, parse_edit_script
from .serializer import serialize_change_set, format_action, change_set_to_dict
from .drift import PlannedEdit, plan_batch, apply_plan, find_conflicts
from .applicator import EditApplicator, FileApplyResult, ApplyReport
from .statistics import (
    ChangeStatistics, ApplicationStrategy, PriorityRecommendation,
    compute_statistics,
)

__all__ = [
    "ChangeSet", "CreateFile", "DeleteFile", "FileChange", "LineAction",
    "ModifyFile", "TechnologyStack", "Replace", "InsertAfter", "InsertBefore",
    "Delete", "ReplaceRange", "InsertManyAfter", "InsertManyBefore", "DeleteMany",
    "EditScriptParser", "parse_edit_script",
    "serialize_change_set", "format_action", "change_set_to_dict",
    "PlannedEdit", "plan_batch", "apply_plan", "find_conflicts",
    "EditApplicator", "FileApplyResult", "ApplyReport",
    "ChangeStatistics", "ApplicationStrategy", "PriorityRecommendation",
    "compute_statistics",
]
