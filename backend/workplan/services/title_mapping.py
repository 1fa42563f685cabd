"""Part-title helpers and the title mapping sent alongside candidate schedules."""
from __future__ import annotations

import re
from typing import Dict, List

from workplan.api.schemas.work_plan import Schedule, StoryMappingEntry

PART_SUFFIX_RE = re.compile(r"\s*\(part \d+ of \d+\)\s*$", re.IGNORECASE)
PART_INDICATOR_RE = re.compile(r"\(part \d+ of \d+\)", re.IGNORECASE)


def part_title(title: str, part_number: int, total_parts: int) -> str:
    return f"{title} (Part {part_number} of {total_parts})"


def is_split_part_title(title: str) -> bool:
    return bool(PART_INDICATOR_RE.search(title))


def base_title(title: str) -> str:
    """Strip a trailing ``(Part X of Y)`` marker."""
    return PART_SUFFIX_RE.sub("", title).strip()


def normalize_title(title: str) -> str:
    return re.sub(r"\s+", " ", base_title(title).lower()).strip()


def build_story_mapping(schedule: Schedule) -> List[StoryMappingEntry]:
    """Link every block and task title in ``schedule`` to its original title.

    The acceptance endpoint uses this table to correlate renamed split parts
    with the tasks it was originally given.
    """
    seen: Dict[str, str] = {}
    for block in schedule.story_blocks:
        seen.setdefault(block.title, block.title)
        for box in block.time_boxes:
            for task in box.tasks:
                original = task.title
                if task.split_info and task.split_info.original_title:
                    original = task.split_info.original_title
                elif is_split_part_title(task.title):
                    original = base_title(task.title)
                seen.setdefault(task.title, original)
    return [StoryMappingEntry(possible_title=title, original_title=original) for title, original in seen.items()]
