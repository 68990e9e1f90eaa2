import logging
import os
import sys
import threading
from datetime import datetime


class TokenTracker:
    """Global tracker for token usage and cost across all LLM calls."""

    def __init__(self, pricing: dict | None = None):
        self.total_prompt_tokens = 0
        self.total_completion_tokens = 0
        self.total_cost = 0.0
        self.call_count = 0
        self.pricing = pricing or {}
        self._lock = threading.Lock()

    def record(self, prompt_tokens: int, completion_tokens: int, model_name: str | None = None):
        with self._lock:
            self.total_prompt_tokens += prompt_tokens
            self.total_completion_tokens += completion_tokens
            self.call_count += 1

            if model_name:
                self._calculate_cost(model_name, prompt_tokens, completion_tokens)

    def _calculate_cost(self, model_name: str, prompt: int, completion: int):
        price_entry = None
        for pattern, prices in self.pricing.items():
            if pattern in model_name.lower():
                price_entry = prices
                break

        if price_entry:
            # Pricing is per 1M tokens
            cost = (prompt * price_entry["input"] / 1_000_000) + \
                   (completion * price_entry["output"] / 1_000_000)
            self.total_cost += cost

    def reset(self):
        with self._lock:
            self.total_prompt_tokens = 0
            self.total_completion_tokens = 0
            self.total_cost = 0.0
            self.call_count = 0

    @property
    def total_tokens(self):
        return self.total_prompt_tokens + self.total_completion_tokens


# Global singleton (pricing will be injected during CLI init)
token_tracker = TokenTracker()

# Package logger; handlers are attached by setup_logger().
log = logging.getLogger("llm_reviewer")


def setup_logger(log_dir: str = ".llm_reviewer/logs",
                 verbose: bool = False) -> logging.Logger:
    """Attach a timestamped file handler (and a console handler when
    ``verbose``) to the package logger."""
    os.makedirs(log_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = os.path.join(log_dir, f"reviewer_{timestamp}.log")

    logger = logging.getLogger("llm_reviewer")
    logger.setLevel(logging.DEBUG)

    # Replace handlers from an earlier call in the same process
    for handler in [h for h in logger.handlers if getattr(h, "_llm_reviewer", False)]:
        logger.removeHandler(handler)
        handler.close()

    # File handler gets every record, DEBUG included
    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S"
    ))
    fh._llm_reviewer = True
    logger.addHandler(fh)

    if verbose:
        ch = logging.StreamHandler(sys.stderr)
        ch.setLevel(logging.INFO)
        ch.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
        ch._llm_reviewer = True
        logger.addHandler(ch)

    return logger


# ── Report rendering ──

C_ORANGE = "\033[38;5;208m"
C_CYAN   = "\033[38;5;81m"
C_GREEN  = "\033[38;5;114m"
C_RED    = "\033[38;5;203m"
C_YELLOW = "\033[38;5;221m"
C_DIM    = "\033[38;5;243m"
C_BOLD   = "\033[1m"
C_RESET  = "\033[0m"

_RISK_COLORS = {
    "CRITICAL": C_RED, "HIGH": C_ORANGE, "MEDIUM": C_YELLOW,
    "LOW": C_GREEN, "MINIMAL": C_DIM,
}

_STRATEGY_ADVICE = {
    "priority_based": [
        "Apply security and bug fixes first",
        "Then apply high-severity changes",
        "Finally apply code quality improvements",
    ],
    "security_first": [
        "Focus on security issues immediately",
        "Review and apply other changes as time permits",
    ],
    "category_based": [
        "Group changes by category for easier review",
        "Apply in batches to manage complexity",
    ],
    "all_at_once": [
        "Changes are manageable - can apply all at once",
        "Review carefully before applying",
    ],
}


def _use_color(stream) -> bool:
    return hasattr(stream, "isatty") and stream.isatty() and "NO_COLOR" not in os.environ


def _paint(text: str, color: str, enabled: bool) -> str:
    return f"{color}{text}{C_RESET}" if enabled else text


def format_statistics(stats, color: bool = False) -> str:
    """Render a :class:`ChangeStatistics` as a terminal report."""
    B = C_BOLD if color else ""
    R = C_RESET if color else ""
    rule = _paint("═" * 48, C_ORANGE, color)
    level = stats.risk_level
    lines = [
        rule,
        f"{B}Change Analysis Summary{R}",
        rule,
        "Overview:",
        f"   Total Changes:      {stats.total_count}",
        f"   Total Line Changes: {stats.total_line_changes}",
        f"   Multi-line Changes: {stats.multi_line_changes}",
        f"   Files Affected:     {len(stats.files_affected)}",
        "Risk Assessment:",
        f"   Risk Score: {stats.risk_score}/100 "
        f"({_paint(level, _RISK_COLORS[level], color)})",
        f"   Priority:   {stats.priority_recommendation.value}",
        f"   Strategy:   {stats.application_strategy.value}",
        "By Change Type:",
        f"   Modify: {stats.modify_count}  Create: {stats.create_count}  "
        f"Delete: {stats.delete_count}",
        "By Severity:",
    ]
    for name, count in stats.severity_counts.items():
        if count or name != "unknown":
            lines.append(f"   {name.capitalize():<9} {count}")
    lines.append("By Category:")
    for name, count in stats.category_counts.items():
        if count:
            lines.append(f"   {name:<15} {count}")

    insights = []
    if stats.security_and_bugs_count:
        insights.append(f"{stats.security_and_bugs_count} security/bug issues need "
                        "immediate attention")
    if stats.high_priority_count:
        insights.append(f"{stats.high_priority_count} high-priority changes should "
                        "be applied first")
    if stats.multi_line_changes:
        pct = stats.multi_line_changes * 100 // max(stats.total_line_changes, 1)
        insights.append(f"{pct}% of line changes affect multiple lines")
    if stats.largest_file_impact:
        path, count = stats.largest_file_impact
        insights.append(f"Most impacted file: {path} ({count} changes)")
    if insights:
        lines.append("Key Insights:")
        lines.extend(f"   - {text}" for text in insights)

    lines.append("Recommendations:")
    for i, text in enumerate(_STRATEGY_ADVICE[stats.application_strategy.value], 1):
        lines.append(f"   {i}. {text}")
    lines.append(rule)
    return "\n".join(lines)


def format_change_set(change_set, color: bool = False) -> str:
    """One line per change, numbered for ``apply --only``."""
    lines = [change_set.summary, ""] if change_set.summary else []
    for index, change in enumerate(change_set.changes):
        detail = ""
        if getattr(change, "actions", None):
            detail = f" ({len(change.actions)} action(s))"
        tag = _paint(f"[{change.severity}/{change.category}]", C_CYAN, color)
        lines.append(f"{index:>3}  {change.keyword:<12} {change.path} {tag}{detail}")
        if change.reason:
            lines.append(f"     {_paint(change.reason, C_DIM, color)}")
    for error in change_set.parse_errors:
        lines.append(_paint(f"  skipped: {error}", C_YELLOW, color))
    return "\n".join(lines)


def format_apply_report(report, color: bool = False) -> str:
    lines = []
    for result in report.results:
        if result.applied:
            mark = _paint("✔", C_GREEN, color)
            note = f" ({result.reason})" if result.reason else ""
            lines.append(f"{mark}  {result.operation:<7} {result.path}{note}")
        else:
            mark = _paint("✘", C_RED, color)
            lines.append(f"{mark}  {result.operation:<7} {result.path}: {result.reason}")
    lines.append(f"{report.applied_count} applied, {report.failed_count} failed")
    return "\n".join(lines)


def token_summary_line() -> str:
    t = token_tracker
    line = (f"Tokens: {t.total_tokens:,} (input {t.total_prompt_tokens:,}, "
            f"output {t.total_completion_tokens:,})")
    if t.total_cost > 0:
        line += f"  Estimated cost: ${t.total_cost:.4f}"
    return line


def print_report(text: str, stream=None) -> None:
    stream = stream or sys.stdout
    stream.write(text + "\n")
    stream.flush()


def color_enabled(stream=None) -> bool:
    return _use_color(stream or sys.stdout)
