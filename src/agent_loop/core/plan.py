"""Read-only checks against the plan file."""

import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

UNCHECKED_MARKER = "- [ ]"


def resolve_plan_path(plan_file: Optional[str]) -> Optional[Path]:
    """Return where the plan lives now.

    Completed plans get moved to a completed/ directory next to the original;
    the original location wins when both exist.
    """
    if not plan_file:
        return None
    original = Path(plan_file)
    try:
        if original.exists():
            return original
    except OSError:
        return original

    moved = original.parent / "completed" / original.name
    if moved.exists():
        return moved
    return original


def has_uncompleted_tasks(plan_file: Optional[str]) -> bool:
    """True when the plan still has an unchecked '- [ ]' item.

    An unreadable plan counts as incomplete.
    """
    path = resolve_plan_path(plan_file)
    if path is None:
        return True
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.debug(f"Cannot read plan file {path}: {e}")
        return True

    return any(line.strip().startswith(UNCHECKED_MARKER) for line in content.splitlines())
