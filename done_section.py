"""Done-section extractor — pulls completed task titles out of a Kanban board.

A board is a markdown note whose columns are level-two headings.  Only the
lines between the ``## Done`` heading and the next ``## `` heading are read;
each line that carries a wiki-link contributes the first link's text as a
completed task.

Example board:

    ## Doing
    - [ ] [[Write report]]

    ## Done
    - [x] [[Buy milk]]
    - [x] [[Call Alice]] about [[Q1 numbers]]

yields ``[TaskRecord("Buy milk"), TaskRecord("Call Alice")]``.
"""

import re
from dataclasses import dataclass

DONE_HEADING = "## Done"
HEADING_PREFIX = "## "

WIKI_LINK_RE = re.compile(r"\[\[(.*?)\]\]")


@dataclass(frozen=True)
class TaskRecord:
    """One completed task found in the Done column."""

    title: str


def extract_done_section(content: str, heading: str = DONE_HEADING) -> list[TaskRecord]:
    """Return the wiki-linked tasks under ``heading``, in document order.

    Returns an empty list when the heading is missing or the column is empty.
    """
    in_done = False
    tasks: list[TaskRecord] = []

    for line in content.split("\n"):
        if line.strip() == heading:
            in_done = True
            continue

        if not in_done:
            continue

        if line.startswith(HEADING_PREFIX):
            break

        if "[[" in line:
            match = WIKI_LINK_RE.search(line)
            if match:
                tasks.append(TaskRecord(title=match.group(1).strip()))

    return tasks


def has_done_section(content: str, heading: str = DONE_HEADING) -> bool:
    return any(line.strip() == heading for line in content.split("\n"))
