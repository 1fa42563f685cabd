"""Tests for time box allocation."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from workplan.api.schemas.work_plan import Story, Task
from workplan.core.errors import StructureError
from workplan.services.timebox_allocator import TimeBoxAllocator, measure_frogs, reflow_schedule, verify_schedule

START = datetime(2024, 5, 6, 9, 0, tzinfo=timezone.utc)


def _story(title: str, *durations: int, frog_index: int | None = None) -> Story:
    tasks = [
        Task(title=f"{title}: step {index + 1}", duration=duration, is_frog=index == frog_index)
        for index, duration in enumerate(durations)
    ]
    return Story(title=title, tasks=tasks)


def _longest_work_run(boxes) -> int:
    longest = run = 0
    for box in boxes:
        if box.type == "work":
            run += box.duration
            longest = max(longest, run)
        else:
            run = 0
    return longest


def test_single_short_task_gets_work_and_debrief() -> None:
    schedule = TimeBoxAllocator().allocate([_story("Write", 45)], start_time=START)

    boxes = schedule.story_blocks[0].time_boxes
    assert [(box.type, box.duration) for box in boxes] == [("work", 45), ("debrief", 5)]
    assert [box.start_offset for box in boxes] == [0, 45]
    assert schedule.total_duration == 50
    assert schedule.end_time == START + timedelta(minutes=50)


def test_two_hour_task_is_split_with_breaks() -> None:
    schedule = TimeBoxAllocator().allocate([_story("Deep work", 120)], start_time=START)

    boxes = schedule.story_blocks[0].time_boxes
    assert [box.type for box in boxes] == ["work", "short-break", "work", "long-break", "work", "debrief"]
    assert [box.duration for box in boxes if box.type == "work"] == [45, 25, 30]
    assert sum(box.duration for box in boxes if box.type != "debrief") == 120
    assert schedule.story_blocks[0].total_duration == 125
    titles = [box.tasks[0].title for box in boxes if box.type == "work"]
    assert titles[0] == "Deep work: step 1 (Part 1 of 3)"
    assert all(box.tasks[0].split_info.total_parts == 3 for box in boxes if box.type == "work")


def test_seventy_minute_task_gets_break_between_parts() -> None:
    schedule = TimeBoxAllocator().allocate([_story("Report", 70)], start_time=START)

    boxes = schedule.story_blocks[0].time_boxes
    assert [box.type for box in boxes] == ["work", "short-break", "work", "debrief"]
    assert all(box.duration <= 45 for box in boxes if box.type == "work")


def test_totals_and_continuous_work_hold_across_stories() -> None:
    stories = [
        _story("Refactor API", 50, 60, 30, frog_index=1),
        _story("Docs", 20, 25, 15),
        _story("Research", 180),
        _story("Reviews", 30, 30, 30, 30, frog_index=0),
    ]
    schedule = TimeBoxAllocator().allocate(stories, start_time=START)

    for block in schedule.story_blocks:
        assert sum(box.duration for box in block.time_boxes) == block.total_duration
        assert _longest_work_run(block.time_boxes) <= 90
        assert block.time_boxes[-1].type == "debrief"
    assert sum(block.total_duration for block in schedule.story_blocks) == schedule.total_duration
    assert schedule.frog_metrics.total == 2
    assert schedule.frog_metrics.scheduled == 2
    verify_schedule(schedule)


def test_start_offsets_are_contiguous() -> None:
    schedule = TimeBoxAllocator().allocate([_story("A", 30, 30), _story("B", 45)], start_time=START)

    cursor = 0
    for block in schedule.story_blocks:
        for box in block.time_boxes:
            assert box.start_offset == cursor
            cursor += box.duration
    assert cursor == schedule.total_duration


def test_input_stories_are_not_mutated() -> None:
    story = _story("Deep work", 120)
    TimeBoxAllocator().allocate([story], start_time=START)

    assert len(story.tasks) == 1
    assert story.tasks[0].title == "Deep work: step 1"
    assert story.tasks[0].split_info is None


def test_early_frog_counts_within_target() -> None:
    schedule = TimeBoxAllocator().allocate([_story("Frog", 30, frog_index=0), _story("Other", 60)], start_time=START)

    assert schedule.frog_metrics.scheduled_within_target == 1
    assert schedule.warnings == []


def _late_frog_stories() -> list[Story]:
    return [_story("Backlog", 60, 60, 60), _story("Frog", 30, frog_index=0)]


def test_late_frog_is_a_warning_by_default() -> None:
    schedule = TimeBoxAllocator().allocate(_late_frog_stories(), start_time=START)

    assert schedule.frog_metrics.scheduled == schedule.frog_metrics.total == 1
    assert schedule.frog_metrics.scheduled_within_target == 0
    assert len(schedule.warnings) == 1
    assert "first-third" in schedule.warnings[0]


def test_late_frog_fails_with_strict_policy() -> None:
    with pytest.raises(StructureError):
        TimeBoxAllocator(frog_policy="fail").allocate(_late_frog_stories(), start_time=START)


def test_unknown_frog_policy_is_rejected() -> None:
    with pytest.raises(ValueError):
        TimeBoxAllocator(frog_policy="ignore")


def test_verify_schedule_detects_block_mismatch() -> None:
    schedule = TimeBoxAllocator().allocate([_story("A", 30)], start_time=START)
    schedule.story_blocks[0].total_duration += 5

    with pytest.raises(StructureError) as exc_info:
        verify_schedule(schedule)
    assert exc_info.value.details["block"] == "A"


def test_reflow_and_measure_after_manual_edit() -> None:
    schedule = TimeBoxAllocator().allocate([_story("A", 30, frog_index=0), _story("B", 45)], start_time=START)
    schedule.story_blocks[0].time_boxes[0].duration = 40

    reflow_schedule(schedule)

    assert schedule.story_blocks[0].total_duration == 45
    assert schedule.story_blocks[1].time_boxes[0].start_offset == 45
    assert schedule.total_duration == 95
    assert schedule.end_time == START + timedelta(minutes=95)
    metrics = measure_frogs(schedule)
    assert metrics.scheduled == 1
    assert metrics.scheduled_within_target == 1
