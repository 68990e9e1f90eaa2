"""
Edit-script parser — parses the line-oriented analysis format returned by the
LLM into a typed :class:`ChangeSet`.

The parser recovers at ``CHANGE:`` block boundaries: a malformed block is
logged, recorded in ``ChangeSet.parse_errors`` and skipped, and parsing
resumes at the next block.
"""

from __future__ import annotations

import logging
import re

from ..errors import ParseError, ParseErrorKind
from .models import (
    ACTION_TYPES, STACK_FIELDS, ChangeSet, CreateFile, Delete, DeleteFile,
    DeleteMany, InsertAfter, InsertBefore, InsertManyAfter, InsertManyBefore,
    LineAction, ModifyFile, Replace, ReplaceRange, TechnologyStack,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_VERBATIM_LINES = 10_000

# Markers
_SUMMARY = "ANALYSIS_SUMMARY:"
_CHANGE = "CHANGE:"
_END_CHANGE = "END_CHANGE"
_ACTION = "ACTION:"
_CONTENT = "CONTENT:"
_END_CONTENT = "END_CONTENT"
_STACK = "TECHNOLOGY_STACK:"
_END_STACK = "END_TECHNOLOGY_STACK"
_DEPENDENCIES = "DEPENDENCIES:"
_END_DEPENDENCIES = "END_DEPENDENCIES"
_CRITICAL_CONFIGS = "CRITICAL_CONFIGS:"
_END_CRITICAL_CONFIGS = "END_CRITICAL_CONFIGS"

_META_FIELDS = ("FILE", "REASON", "SEVERITY", "CATEGORY")
_CHANGE_KINDS = ("modify_file", "create_file", "delete_file")

# Action fields: single-line numbers, single-line text, verbatim blocks.
_NUMBER_FIELDS = ("START_LINE", "END_LINE", "LINE")
_TEXT_FIELDS = ("OLD", "NEW")
_BLOCK_FIELDS = {"OLD_LINES": "END_OLD_LINES", "NEW_LINES": "END_NEW_LINES"}

_NUMBER_RE = re.compile(r"^[0-9]+$")


def _field_value(line: str, name: str) -> str | None:
    """Return the raw text after ``NAME:`` or None if the line is not that field."""
    body = line.lstrip()
    marker = name + ":"
    if body.startswith(marker):
        return body[len(marker):]
    return None


def _is_marker(line: str, marker: str) -> bool:
    return line.lstrip().startswith(marker)


def _drop_separator(value: str) -> str:
    """Drop the single space that separates ``OLD:``/``NEW:`` from its text."""
    return value[1:] if value.startswith(" ") else value


class _LineReader:
    """Cursor over the input split on ``\\n``."""

    def __init__(self, lines: list[str]):
        self.lines = lines
        self.pos = 0

    @property
    def eof(self) -> bool:
        return self.pos >= len(self.lines)

    @property
    def line_no(self) -> int:
        return self.pos + 1

    def peek(self) -> str:
        return self.lines[self.pos]

    def advance(self) -> str:
        line = self.lines[self.pos]
        self.pos += 1
        return line

    def skip_to_next_change(self) -> None:
        """Move to the next ``CHANGE:`` header, or just past the next
        ``END_CHANGE``, whichever comes first."""
        while not self.eof:
            line = self.peek()
            if _is_marker(line, _CHANGE):
                return
            self.pos += 1
            if line.strip() == _END_CHANGE:
                return


class EditScriptParser:
    """Parse edit scripts from LLM responses."""

    def __init__(self, max_verbatim_lines: int = DEFAULT_MAX_VERBATIM_LINES):
        if max_verbatim_lines < 1:
            raise ValueError("max_verbatim_lines must be positive")
        self.max_verbatim_lines = max_verbatim_lines

    def parse(self, text: str) -> ChangeSet:
        """Parse an analysis response.

        Parameters
        ----------
        text:
            The raw LLM response text.

        Returns
        -------
        ChangeSet
            Successfully parsed changes; dropped blocks are listed in
            ``parse_errors``.

        Raises
        ------
        ParseError
            With kind ``MISSING_SUMMARY`` when the response has no
            ``ANALYSIS_SUMMARY:`` marker at all.
        """
        lines = text.split("\n")
        summary_index = next(
            (i for i, line in enumerate(lines) if _is_marker(line, _SUMMARY)),
            None,
        )
        if summary_index is None:
            raise ParseError(
                ParseErrorKind.MISSING_SUMMARY, line=max(len(lines), 1),
                message=f"{_SUMMARY} marker not found",
            )

        result = ChangeSet()
        result.technology_stack = self._parse_stack_region(
            lines, summary_index, result.parse_errors,
        )

        reader = _LineReader(lines)
        reader.pos = summary_index
        result.summary = self._parse_summary(reader)

        while not reader.eof:
            line = reader.peek()
            if not _is_marker(line, _CHANGE):
                if line.strip():
                    logger.debug(
                        "[EditScript] Ignoring stray line %d: %r",
                        reader.line_no, line,
                    )
                reader.advance()
                continue

            header_pos = reader.pos
            try:
                result.changes.append(self._parse_change(reader))
            except ParseError as exc:
                logger.warning(
                    "[EditScript] Skipping malformed change at line %d: %s",
                    header_pos + 1, exc,
                )
                result.parse_errors.append(exc)
                if reader.pos <= header_pos:
                    reader.pos = header_pos + 1
                reader.skip_to_next_change()

        logger.info(
            "[EditScript] Parsed %d change(s), %d dropped",
            len(result.changes), len(result.parse_errors),
        )
        return result

    # ------------------------------------------------------------------
    # Summary and technology stack
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_summary(reader: _LineReader) -> str:
        first = _field_value(reader.advance(), _SUMMARY[:-1])
        parts = [first.strip()]
        while not reader.eof and not _is_marker(reader.peek(), _CHANGE):
            parts.append(reader.advance().strip())
        return "\n".join(parts).strip()

    def _parse_stack_region(self, lines: list[str], summary_index: int,
                            errors: list) -> TechnologyStack | None:
        start = next(
            (i for i in range(summary_index) if _is_marker(lines[i], _STACK)),
            None,
        )
        if start is None:
            return None
        try:
            return self._parse_stack(lines, start, summary_index)
        except ParseError as exc:
            logger.warning("[EditScript] Ignoring technology stack: %s", exc)
            errors.append(exc)
            return None

    @staticmethod
    def _parse_stack(lines: list[str], start: int, stop: int) -> TechnologyStack:
        stack = TechnologyStack()
        pos = start + 1
        while pos < stop:
            line = lines[pos].strip()
            if line == _END_STACK:
                return stack
            if line.startswith(_DEPENDENCIES):
                pos = _parse_key_values(lines, pos + 1, stop, _END_DEPENDENCIES,
                                        stack.dependencies)
                continue
            if line.startswith(_CRITICAL_CONFIGS):
                pos = _parse_key_values(lines, pos + 1, stop, _END_CRITICAL_CONFIGS,
                                        stack.critical_configs)
                continue
            for name, attr in STACK_FIELDS.items():
                value = _field_value(line, name)
                if value is not None:
                    setattr(stack, attr, value.strip())
                    break
            pos += 1

        raise ParseError(
            ParseErrorKind.UNEXPECTED_EOF, line=start + 1, field=_STACK[:-1],
            message=f"{_END_STACK} not found before {_SUMMARY}",
        )

    # ------------------------------------------------------------------
    # Change blocks
    # ------------------------------------------------------------------

    def _parse_change(self, reader: _LineReader):
        header_line = reader.line_no
        kind = _field_value(reader.advance(), _CHANGE[:-1]).strip()
        if kind not in _CHANGE_KINDS:
            raise ParseError(ParseErrorKind.UNKNOWN_CHANGE_TYPE, line=header_line,
                             field="CHANGE", lexeme=kind)

        meta: dict[str, str] = {}
        actions: list[LineAction] = []
        content: str | None = None

        while True:
            if reader.eof:
                raise ParseError(ParseErrorKind.UNEXPECTED_EOF, line=reader.line_no,
                                 message=f"{_END_CHANGE} not found")
            line = reader.peek()
            stripped = line.strip()

            if not stripped:
                reader.advance()
                continue
            if stripped == _END_CHANGE:
                break
            if _is_marker(line, _CHANGE):
                raise ParseError(ParseErrorKind.INVALID_FORMAT, line=reader.line_no,
                                 lexeme=stripped,
                                 message=f"{_END_CHANGE} missing before next change")

            meta_field = self._meta_field(line)
            if meta_field is not None:
                name, value = meta_field
                meta[name] = value
                reader.advance()
            elif _is_marker(line, _ACTION):
                if kind != "modify_file":
                    raise ParseError(ParseErrorKind.INVALID_FORMAT, line=reader.line_no,
                                     lexeme=stripped,
                                     message=f"actions are not allowed in {kind}")
                actions.append(self._parse_action(reader))
            elif _is_marker(line, _CONTENT):
                if kind != "create_file":
                    raise ParseError(ParseErrorKind.INVALID_FORMAT, line=reader.line_no,
                                     lexeme=stripped,
                                     message=f"content is not allowed in {kind}")
                reader.advance()
                content = "\n".join(self._read_verbatim(reader, _END_CONTENT, "CONTENT"))
            else:
                raise ParseError(ParseErrorKind.INVALID_FORMAT, line=reader.line_no,
                                 lexeme=stripped, message="unexpected line")

        end_line = reader.line_no
        reader.advance()

        for name in _META_FIELDS:
            if name not in meta:
                raise ParseError(ParseErrorKind.MISSING_FIELD, line=header_line,
                                 field=name, message=f"{name} is required")

        fields = dict(path=meta["FILE"], reason=meta["REASON"],
                      severity=meta["SEVERITY"], category=meta["CATEGORY"])
        if kind == "modify_file":
            if not actions:
                raise ParseError(ParseErrorKind.INVALID_FORMAT, line=end_line,
                                 lexeme=_END_CHANGE,
                                 message="modify_file change has no actions")
            return ModifyFile(actions=actions, **fields)
        if kind == "create_file":
            if content is None:
                raise ParseError(ParseErrorKind.MISSING_FIELD, line=header_line,
                                 field="CONTENT", message="create_file requires CONTENT")
            return CreateFile(content=content, **fields)
        return DeleteFile(**fields)

    @staticmethod
    def _meta_field(line: str) -> tuple[str, str] | None:
        for name in _META_FIELDS:
            value = _field_value(line, name)
            if value is not None:
                return name, value.strip()
        return None

    def _parse_action(self, reader: _LineReader) -> LineAction:
        action_line = reader.line_no
        keyword = _field_value(reader.advance(), _ACTION[:-1]).strip()
        if keyword not in ACTION_TYPES:
            raise ParseError(ParseErrorKind.UNKNOWN_ACTION_TYPE, line=action_line,
                             field="ACTION", lexeme=keyword)

        values: dict = {}
        while not reader.eof:
            line = reader.peek()
            if not line.strip():
                reader.advance()
                continue
            field_line = reader.line_no
            parsed = self._action_field(reader, line)
            if parsed is None:
                break
            name, value = parsed
            if name in values:
                raise ParseError(ParseErrorKind.INVALID_FORMAT, line=field_line,
                                 field=name, lexeme=line.strip(),
                                 message=f"duplicate {name} in one action")
            values[name] = value

        return self._build_action(keyword, values, action_line)

    def _action_field(self, reader: _LineReader, line: str):
        """Consume one action field at the cursor, or return None."""
        for name in _NUMBER_FIELDS:
            value = _field_value(line, name)
            if value is not None:
                lexeme = value.strip()
                if not _NUMBER_RE.match(lexeme):
                    raise ParseError(ParseErrorKind.INVALID_NUMBER, line=reader.line_no,
                                     field=name, lexeme=lexeme)
                reader.advance()
                return name, int(lexeme)
        for name in _TEXT_FIELDS:
            value = _field_value(line, name)
            if value is not None:
                reader.advance()
                return name, _drop_separator(value)
        for name, end_marker in _BLOCK_FIELDS.items():
            if _field_value(line, name) is not None:
                reader.advance()
                return name, self._read_verbatim(reader, end_marker, name)
        return None

    @staticmethod
    def _build_action(keyword: str, values: dict, line: int) -> LineAction:
        def need(name: str):
            if name not in values:
                raise ParseError(ParseErrorKind.MISSING_FIELD, line=line, field=name,
                                 message=f"{keyword} requires {name}")
            return values[name]

        def new_text() -> str:
            if "NEW" in values:
                return values["NEW"]
            if "NEW_LINES" in values:
                return "\n".join(values["NEW_LINES"])
            return need("NEW")

        def line_range() -> tuple[int, int]:
            start, end = need("START_LINE"), need("END_LINE")
            if start > end:
                raise ParseError(ParseErrorKind.INVALID_RANGE, line=line,
                                 field="START_LINE", lexeme=f"{start}-{end}",
                                 message="start line is after end line")
            return start, end

        if keyword == "replace":
            return Replace(line=need("LINE"), expected_old=need("OLD"), new=new_text())
        if keyword == "insert_after":
            return InsertAfter(line=need("LINE"), new=new_text())
        if keyword == "insert_before":
            return InsertBefore(line=need("LINE"), new=new_text())
        if keyword == "delete":
            return Delete(line=need("LINE"))
        if keyword == "replace_range":
            start, end = line_range()
            return ReplaceRange(start=start, end=end,
                                expected_old_lines=need("OLD_LINES"),
                                new_lines=need("NEW_LINES"))
        if keyword == "insert_many_after":
            return InsertManyAfter(line=need("LINE"), new_lines=need("NEW_LINES"))
        if keyword == "insert_many_before":
            return InsertManyBefore(line=need("LINE"), new_lines=need("NEW_LINES"))
        start, end = line_range()
        return DeleteMany(start=start, end=end)

    def _read_verbatim(self, reader: _LineReader, end_marker: str,
                       field: str) -> list[str]:
        """Collect lines up to ``end_marker`` exactly as written.

        On failure the cursor is rewound to the first body line so recovery
        can still find later ``CHANGE:`` headers inside the runaway block.
        """
        body_start = reader.pos
        body: list[str] = []
        while not reader.eof:
            line = reader.peek()
            if line.strip() == end_marker:
                reader.advance()
                return body
            if len(body) >= self.max_verbatim_lines:
                reader.pos = body_start
                raise ParseError(
                    ParseErrorKind.CONTENT_TOO_LARGE, line=body_start + 1, field=field,
                    message=f"{field} exceeds {self.max_verbatim_lines} lines "
                            f"without {end_marker}",
                )
            body.append(reader.advance())

        reader.pos = body_start
        raise ParseError(ParseErrorKind.UNEXPECTED_EOF, line=body_start + 1, field=field,
                         message=f"{end_marker} not found")


def _parse_key_values(lines: list[str], pos: int, stop: int,
                      end_marker: str, target: dict[str, str]) -> int:
    """Fill ``target`` from ``key: value`` lines; return the position after
    ``end_marker`` (or ``stop`` when it is missing)."""
    while pos < stop:
        line = lines[pos].strip()
        pos += 1
        if line == end_marker:
            break
        if ":" in line:
            key, value = line.split(":", 1)
            target[key.strip()] = value.strip()
    return pos


def parse_edit_script(text: str,
                      max_verbatim_lines: int = DEFAULT_MAX_VERBATIM_LINES) -> ChangeSet:
    """Shortcut for ``EditScriptParser(max_verbatim_lines).parse(text)``."""
    return EditScriptParser(max_verbatim_lines).parse(text)
