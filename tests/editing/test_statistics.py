"""Tests for change statistics and strategy recommendation."""

from llm_reviewer.editing.models import (
    ChangeSet, CreateFile, DeleteFile, InsertManyAfter, ModifyFile, Replace,
)
from llm_reviewer.editing.statistics import (
    ApplicationStrategy, PriorityRecommendation, compute_statistics,
    normalize_category, normalize_severity,
)


def _modify(path, severity, category, actions=None):
    return ModifyFile(path, "r", severity, category,
                      actions or [Replace(1, "a", "b")])


MIXED = ChangeSet(summary="s", changes=[
    _modify("a.py", "critical", "SECURITY",
            [Replace(1, "a", "b"), InsertManyAfter(2, ["x", "y"])]),
    _modify("b.py", "high", "BUGS"),
    CreateFile("c.py", "r", "low", "CLEAN_CODE", "pass\n"),
    DeleteFile("d.py", "r", "Medium ", "Bug"),
])


class TestNormalisation:
    def test_severity(self):
        assert normalize_severity(" HIGH ") == "high"
        assert normalize_severity("urgent") == "unknown"

    def test_category(self):
        assert normalize_category("clean-code") == "CLEAN_CODE"
        assert normalize_category("bug") == "BUGS"
        assert normalize_category("Style") == "OTHER"


class TestCounts:
    def test_mixed_change_set(self):
        stats = compute_statistics(MIXED)

        assert stats.total_count == 4
        assert (stats.modify_count, stats.create_count, stats.delete_count) == (2, 1, 1)
        assert stats.severity_counts == {
            "critical": 1, "high": 1, "medium": 1, "low": 1, "unknown": 0}
        assert stats.bugs_count == 2
        assert stats.security_count == 1
        assert stats.code_quality_count == 1
        assert stats.high_priority_count == 2
        assert stats.high_priority_bug_count == 1
        assert stats.total_line_changes == 3
        assert stats.multi_line_changes == 1
        assert stats.largest_file_impact == ("a.py", 2)

    def test_same_path_accumulates(self):
        stats = compute_statistics([_modify("a.py", "low", "BUGS"),
                                    _modify("a.py", "low", "BUGS")])
        assert stats.files_affected == {"a.py": 2}

    def test_category_stats(self):
        bugs = compute_statistics(MIXED).category_stats("bugs")

        assert (bugs.category, bugs.count, bugs.percentage) == ("BUGS", 2, 50)
        assert bugs.is_high_impact

    def test_category_stats_on_empty_set(self):
        perf = compute_statistics([]).category_stats("PERFORMANCE")
        assert (perf.count, perf.percentage, perf.is_high_impact) == (0, 0, False)


class TestRisk:
    def test_mixed_score(self):
        stats = compute_statistics(MIXED)

        # 25 + 15 + 8 + 3 severity, +10 security, +2 * 8 bugs, +2 multi-line
        assert stats.risk_score == 79
        assert stats.risk_level == "HIGH"
        assert stats.priority_recommendation == PriorityRecommendation.HIGH
        assert stats.application_strategy == ApplicationStrategy.PRIORITY_BASED

    def test_score_is_capped(self):
        stats = compute_statistics(
            [_modify(f"f{i}.py", "critical", "SECURITY") for i in range(5)])

        assert stats.risk_score == 100
        assert stats.risk_level == "CRITICAL"
        assert stats.priority_recommendation == PriorityRecommendation.IMMEDIATE

    def test_empty_change_set(self):
        stats = compute_statistics(ChangeSet())

        assert stats.risk_score == 0
        assert stats.risk_level == "MINIMAL"
        assert stats.priority_recommendation == PriorityRecommendation.LOW
        assert stats.application_strategy == ApplicationStrategy.ALL_AT_ONCE


class TestStrategy:
    def test_security_first_without_urgent_bugs(self):
        stats = compute_statistics([_modify("a.py", "low", "SECURITY"),
                                    _modify("b.py", "low", "BUGS")])
        assert stats.application_strategy == ApplicationStrategy.SECURITY_FIRST

    def test_security_with_urgent_bug_is_priority_based(self):
        stats = compute_statistics([_modify("a.py", "low", "SECURITY"),
                                    _modify("b.py", "critical", "BUGS")])
        assert stats.application_strategy == ApplicationStrategy.PRIORITY_BASED

    def test_many_small_changes_are_grouped_by_category(self):
        stats = compute_statistics(
            [_modify(f"f{i}.py", "low", "CLEAN_CODE") for i in range(21)])
        assert stats.application_strategy == ApplicationStrategy.CATEGORY_BASED

    def test_five_security_or_bug_changes_need_immediate_attention(self):
        stats = compute_statistics(
            [_modify(f"f{i}.py", "low", "BUGS") for i in range(5)])
        assert stats.priority_recommendation == PriorityRecommendation.IMMEDIATE

    def test_to_dict(self):
        data = compute_statistics(MIXED).to_dict()

        assert data["by_kind"] == {"modify_file": 2, "create_file": 1, "delete_file": 1}
        assert data["largest_file_impact"] == ["a.py", 2]
        assert data["application_strategy"] == "priority_based"
        assert data["risk_level"] == "HIGH"
