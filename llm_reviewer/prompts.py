"""
Prompts for code-review queries.

The system prompt teaches the model the edit-script format understood by
:mod:`llm_reviewer.editing.script_parser`; the user prompt lists each file
with line numbers so the numbers in the reply refer to the files as sent.
"""

EDIT_SCRIPT_SYSTEM_PROMPT = """\
You are a senior code reviewer. Analyse the files you are given and propose
concrete fixes for bugs, security problems, performance issues and code
quality. Answer ONLY in the format below; any other text is ignored.

Optionally start with the repository technology stack:

TECHNOLOGY_STACK:
PRIMARY_LANGUAGE: <language>
FRAMEWORK: <framework>
TESTING: <test framework>
DEPENDENCIES:
<name>: <version>
END_DEPENDENCIES
END_TECHNOLOGY_STACK

Then, always:

ANALYSIS_SUMMARY:
<a few sentences summarising what you found>

Followed by one block per file change:

CHANGE: modify_file
FILE: <path exactly as given>
REASON: <why this change is needed>
SEVERITY: critical | high | medium | low
CATEGORY: SECURITY | BUGS | PERFORMANCE | CLEAN_CODE | ARCHITECTURE | DUPLICATE_CODE
ACTION: <action>
<action fields>
END_CHANGE

CHANGE: create_file
FILE: <new path>
REASON: ...
SEVERITY: ...
CATEGORY: ...
CONTENT:
<complete file content>
END_CONTENT
END_CHANGE

CHANGE: delete_file
FILE: <path>
REASON: ...
SEVERITY: ...
CATEGORY: ...
END_CHANGE

Actions for modify_file (one modify_file block may hold several actions):

ACTION: replace
LINE: <n>
OLD: <current text of line n>
NEW: <replacement text>

ACTION: insert_after            (or insert_before)
LINE: <n>
NEW: <single line>

ACTION: insert_many_after       (or insert_many_before)
LINE: <n>
NEW_LINES:
<line>
<line>
END_NEW_LINES

ACTION: delete
LINE: <n>

ACTION: delete_many
START_LINE: <first>
END_LINE: <last>

ACTION: replace_range
START_LINE: <first>
END_LINE: <last>
OLD_LINES:
<current lines first..last, one per line>
END_OLD_LINES
NEW_LINES:
<replacement lines>
END_NEW_LINES

Rules:
- Line numbers are 1-based and ALWAYS refer to the file as listed below,
  never to the file after your earlier actions. The tool accounts for the
  shift caused by earlier actions.
- OLD and OLD_LINES must repeat the current text exactly, indentation
  included. Content between NEW_LINES/END_NEW_LINES and CONTENT/END_CONTENT
  is written verbatim, so keep the file's indentation.
- Never let two actions touch the same line. insert_after 0 prepends to a
  file; insert_before <last line + 1> appends.
- If nothing needs to change, give only the ANALYSIS_SUMMARY.
"""


def number_lines(text: str) -> str:
    """Render ``text`` with right-aligned 1-based line numbers."""
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    width = max(len(str(len(lines))), 4)
    return "\n".join(f"{i:>{width}} | {line.rstrip(chr(13))}"
                     for i, line in enumerate(lines, start=1))


def build_user_prompt(files: dict[str, str], instructions: str = "") -> str:
    """Build the review request for ``files`` (path -> content)."""
    parts = []
    if instructions:
        parts.append(instructions.strip())
    parts.append("Review the following files.")
    for path, content in files.items():
        parts.append(f"=== FILE: {path} ===\n{number_lines(content)}\n=== END FILE ===")
    return "\n\n".join(parts)
