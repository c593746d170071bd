# goalfile.py
# Goal files: title, description and Definition of Done, separated by lines
# consisting of "---".

import re
from pathlib import Path

from goal_engine.errors import GoalFileError
from goal_engine.models import Goal

DELIMITER = re.compile(r"^[ \t]*---[ \t]*$", re.MULTILINE)


def parse_goal_text(text: str) -> Goal:
    """Raises GoalFileError unless there are exactly three sections."""
    sections = [section.strip() for section in DELIMITER.split(text)]
    if len(sections) != 3:
        raise GoalFileError(
            f"Goal file must have exactly 3 sections (title, description, DoD) "
            f"separated by '---'; found {len(sections)}."
        )
    title, description, dod = sections
    if not title:
        raise GoalFileError("Goal file has an empty title section.")
    return Goal(title=title, description=description, dod=dod)


def load_goal_file(path: str | Path) -> Goal:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise GoalFileError(f"Cannot read goal file {path}: {exc}") from exc
    return parse_goal_text(text)
