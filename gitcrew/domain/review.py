"""Reviewer sessions: the prompt they get and how their verdict is read back.

A reviewer runs in its own session inside the task's worktree. Its
terminal output is captured to the review log; when it exits, the text
after the last REVIEW_RESULT_MARKER becomes a comment on the task.
"""
from __future__ import annotations

import re
import string

REVIEW_RESULT_MARKER = "---REVIEW_RESULT---"
REVIEWER_AUTHOR = "reviewer"
DEFAULT_REVIEW_REQUEST = "Please review this task."

REVIEW_PROMPT = string.Template("""\
You are a code reviewer for gitcrew task #$task_id: $title

$description

Review the changes on branch $branch against $base_branch
(run `git diff $base_branch...HEAD` in this directory).

Checklist:
1. Correctness: does the code work as intended?
2. Tests: are edge cases covered?
3. Architecture: does it follow the project's patterns?
4. Error handling: are errors handled appropriately?
5. Readability: will future developers understand this?

$request

When you are done, print the marker line below and then your review.
Start the review with "LGTM", "Minor issues" or "Needs changes", then
list specific issues with file:line references.

""" + REVIEW_RESULT_MARKER + "\n")

# CSI and OSC sequences tmux passes through pipe-pane.
_ESCAPES = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)|\x1b[@-Z\\-_]")


def review_prompt(
    task_id: int,
    title: str,
    description: str,
    *,
    branch: str,
    base_branch: str,
    request: str = "",
) -> str:
    return REVIEW_PROMPT.substitute(
        task_id=task_id,
        title=title,
        description=description or "(no description)",
        branch=branch,
        base_branch=base_branch,
        request=request.strip() or DEFAULT_REVIEW_REQUEST,
    )


def strip_terminal_codes(text: str) -> str:
    return _ESCAPES.sub("", text).replace("\r", "")


def extract_review_result(output: str) -> str:
    """Text after the last marker, or the whole output when there is none."""
    output = strip_terminal_codes(output)
    index = output.rfind(REVIEW_RESULT_MARKER)
    if index != -1:
        output = output[index + len(REVIEW_RESULT_MARKER):]
    return output.strip()
