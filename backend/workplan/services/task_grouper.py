"""Sort raw tasks by priority and bucket them into story groups by title prefix."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from workplan.api.schemas.work_plan import SplitInfo, Story, Task
from workplan.services.duration_rules import SPLIT_THRESHOLD, difficulty_weight, round_to_nearest_block
from workplan.services.timebox_allocator import TimeBoxAllocator

logger = logging.getLogger(__name__)

STORY_DELIMITERS = (":", " - ")


@dataclass
class StoryGroup:
    title: str
    tasks: List[Task] = field(default_factory=list)

    @property
    def suggested_duration(self) -> int:
        return sum(task.duration for task in self.tasks)

    @property
    def has_frog(self) -> bool:
        return any(task.is_frog for task in self.tasks)


def derive_story_title(title: str) -> str:
    """Return the text before the first ``:`` or `` - `` delimiter, else the full title."""
    cut = len(title)
    for delimiter in STORY_DELIMITERS:
        index = title.find(delimiter)
        if index != -1:
            cut = min(cut, index)
    prefix = title[:cut].strip()
    return prefix or title.strip()


def analyze_and_group_tasks(tasks: Iterable[Task], *, split_threshold: int = SPLIT_THRESHOLD) -> List[StoryGroup]:
    """Group ``tasks`` into stories, frog tasks and frog stories first.

    Within each priority class tasks are ordered by descending difficulty.
    Oversized tasks are flagged for splitting but left whole.
    """
    ordered = sorted(
        (task.model_copy(deep=True) for task in tasks),
        key=lambda task: (not task.is_frog, -difficulty_weight(task.difficulty)),
    )

    groups: Dict[str, StoryGroup] = {}
    for task in ordered:
        story_title = derive_story_title(task.title)
        group = groups.setdefault(story_title, StoryGroup(title=story_title))
        if task.duration > split_threshold:
            task.needs_splitting = True
            task.split_info = SplitInfo(
                is_parent=True,
                original_duration=task.duration,
                original_title=task.title,
            )
        group.tasks.append(task)

    result = sorted(groups.values(), key=lambda group: not group.has_frog)
    singletons = sum(1 for group in result if len(group.tasks) == 1)
    logger.debug("Grouped %d tasks into %d stories (%d singletons)", len(ordered), len(result), singletons)
    return result


def groups_to_stories(groups: Iterable[StoryGroup], *, allocator: Optional[TimeBoxAllocator] = None) -> List[Story]:
    """Build stories whose estimate covers work, breaks and the closing debrief."""
    allocator = allocator or TimeBoxAllocator()
    stories: List[Story] = []
    for group in groups:
        story = Story(title=group.title, tasks=[task.model_copy(deep=True) for task in group.tasks])
        story.estimated_duration = round_to_nearest_block(allocator.estimate_story_duration(story))
        stories.append(story)
    return stories
