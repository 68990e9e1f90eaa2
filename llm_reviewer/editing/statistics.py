"""
Change statistics — scores a change set by severity, category and size and
recommends how to apply it.

Everything here is pure: no I/O, no logging.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from .models import ChangeSet, CreateFile, DeleteFile, FileChange, ModifyFile

SEVERITY_WEIGHTS = {"critical": 25, "high": 15, "medium": 8, "low": 3}
SECURITY_BONUS = 10
BUG_BONUS = 8
MULTI_LINE_BONUS = 2
MAX_RISK_SCORE = 100

CATEGORIES = (
    "SECURITY", "BUGS", "PERFORMANCE", "CLEAN_CODE", "ARCHITECTURE", "DUPLICATE_CODE",
)
_CATEGORY_ALIASES = {"BUG": "BUGS"}
HIGH_IMPACT_CATEGORIES = ("SECURITY", "BUGS")


class ApplicationStrategy(str, Enum):
    PRIORITY_BASED = "priority_based"
    SECURITY_FIRST = "security_first"
    CATEGORY_BASED = "category_based"
    ALL_AT_ONCE = "all_at_once"


class PriorityRecommendation(str, Enum):
    IMMEDIATE = "immediate"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def normalize_severity(severity: str) -> str:
    value = severity.strip().lower()
    return value if value in SEVERITY_WEIGHTS else "unknown"


def normalize_category(category: str) -> str:
    value = category.strip().upper().replace(" ", "_").replace("-", "_")
    value = _CATEGORY_ALIASES.get(value, value)
    return value if value in CATEGORIES else "OTHER"


@dataclass
class CategoryStats:
    category: str
    count: int
    percentage: int
    is_high_impact: bool


@dataclass
class ChangeStatistics:
    """Aggregate counts over one change set."""
    total_count: int = 0
    total_line_changes: int = 0
    multi_line_changes: int = 0

    modify_count: int = 0
    create_count: int = 0
    delete_count: int = 0

    severity_counts: dict[str, int] = field(default_factory=lambda: {
        "critical": 0, "high": 0, "medium": 0, "low": 0, "unknown": 0,
    })
    category_counts: dict[str, int] = field(default_factory=lambda: {
        **{name: 0 for name in CATEGORIES}, "OTHER": 0,
    })

    # path -> number of line actions (modify) or 1 (create/delete)
    files_affected: dict[str, int] = field(default_factory=dict)
    largest_file_impact: Optional[tuple[str, int]] = None
    # BUGS changes with critical or high severity
    high_priority_bug_count: int = 0

    @property
    def security_count(self) -> int:
        return self.category_counts["SECURITY"]

    @property
    def bugs_count(self) -> int:
        return self.category_counts["BUGS"]

    @property
    def high_priority_count(self) -> int:
        return self.severity_counts["critical"] + self.severity_counts["high"]

    @property
    def security_and_bugs_count(self) -> int:
        return self.security_count + self.bugs_count

    @property
    def code_quality_count(self) -> int:
        counts = self.category_counts
        return counts["CLEAN_CODE"] + counts["ARCHITECTURE"] + counts["DUPLICATE_CODE"]

    @property
    def risk_score(self) -> int:
        score = sum(self.severity_counts[name] * weight
                    for name, weight in SEVERITY_WEIGHTS.items())
        score += self.security_count * SECURITY_BONUS
        score += self.bugs_count * BUG_BONUS
        score += self.multi_line_changes * MULTI_LINE_BONUS
        return min(score, MAX_RISK_SCORE)

    @property
    def risk_level(self) -> str:
        score = self.risk_score
        if score >= 80:
            return "CRITICAL"
        if score >= 60:
            return "HIGH"
        if score >= 40:
            return "MEDIUM"
        if score >= 20:
            return "LOW"
        return "MINIMAL"

    @property
    def priority_recommendation(self) -> PriorityRecommendation:
        score = self.risk_score
        if score >= 80 or self.security_and_bugs_count >= 5:
            return PriorityRecommendation.IMMEDIATE
        if score >= 60 or self.high_priority_count >= 3:
            return PriorityRecommendation.HIGH
        if score >= 40 or self.total_count >= 10:
            return PriorityRecommendation.MEDIUM
        return PriorityRecommendation.LOW

    @property
    def application_strategy(self) -> ApplicationStrategy:
        if self.risk_score >= 80 or self.security_and_bugs_count >= 5:
            return ApplicationStrategy.PRIORITY_BASED
        if self.security_count > 0:
            if self.high_priority_bug_count == 0:
                return ApplicationStrategy.SECURITY_FIRST
            return ApplicationStrategy.PRIORITY_BASED
        if self.total_count > 20:
            return ApplicationStrategy.CATEGORY_BASED
        return ApplicationStrategy.ALL_AT_ONCE

    def category_stats(self, category: str) -> CategoryStats:
        name = normalize_category(category)
        count = self.category_counts[name]
        percentage = count * 100 // self.total_count if self.total_count else 0
        return CategoryStats(
            category=name,
            count=count,
            percentage=percentage,
            is_high_impact=count > 0 and name in HIGH_IMPACT_CATEGORIES,
        )

    def to_dict(self) -> dict:
        return {
            "total_count": self.total_count,
            "total_line_changes": self.total_line_changes,
            "multi_line_changes": self.multi_line_changes,
            "by_kind": {
                "modify_file": self.modify_count,
                "create_file": self.create_count,
                "delete_file": self.delete_count,
            },
            "by_severity": dict(self.severity_counts),
            "by_category": dict(self.category_counts),
            "files_affected": dict(self.files_affected),
            "largest_file_impact": (
                list(self.largest_file_impact) if self.largest_file_impact else None
            ),
            "high_priority_count": self.high_priority_count,
            "high_priority_bug_count": self.high_priority_bug_count,
            "risk_score": self.risk_score,
            "risk_level": self.risk_level,
            "priority_recommendation": self.priority_recommendation.value,
            "application_strategy": self.application_strategy.value,
        }


def compute_statistics(changes: ChangeSet | Iterable[FileChange]) -> ChangeStatistics:
    """Score a change set."""
    if isinstance(changes, ChangeSet):
        changes = changes.changes

    stats = ChangeStatistics()
    for change in changes:
        stats.total_count += 1
        severity = normalize_severity(change.severity)
        category = normalize_category(change.category)
        stats.severity_counts[severity] += 1
        stats.category_counts[category] += 1
        if category == "BUGS" and severity in ("critical", "high"):
            stats.high_priority_bug_count += 1

        if isinstance(change, ModifyFile):
            stats.modify_count += 1
            impact = len(change.actions)
            stats.total_line_changes += impact
            stats.multi_line_changes += sum(1 for a in change.actions if a.is_multi_line)
        else:
            if isinstance(change, CreateFile):
                stats.create_count += 1
            elif isinstance(change, DeleteFile):
                stats.delete_count += 1
            impact = 1
        stats.files_affected[change.path] = stats.files_affected.get(change.path, 0) + impact

    for path, count in stats.files_affected.items():
        if stats.largest_file_impact is None or count > stats.largest_file_impact[1]:
            stats.largest_file_impact = (path, count)
    return stats
