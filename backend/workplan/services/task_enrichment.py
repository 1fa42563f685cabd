"""Turn free-form task lines into stories, via OpenAI when configured."""
from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Dict, List, Optional, Sequence

import openai
from pydantic import ValidationError

from workplan.api.schemas.work_plan import Story, Task
from workplan.core.config import settings
from workplan.observability.metrics import log_metric
from workplan.observability.tracing import trace
from workplan.services.duration_rules import MIN_DURATION, derive_difficulty, round_to_nearest_block
from workplan.services.task_grouper import analyze_and_group_tasks, groups_to_stories

logger = logging.getLogger(__name__)

DEFAULT_TASK_MINUTES = MIN_DURATION

DURATION_HINT_RE = re.compile(
    r"\(?\b(?P<value>\d+(?:\.\d+)?)\s*(?P<unit>h|hr|hrs|hours?|m|min|mins|minutes?)\b\)?",
    re.IGNORECASE,
)
FROG_MARKERS = ("!", "[frog]", "urgent", "asap", "important")
CATEGORY_KEYWORDS = {
    "learning": ("learn", "study", "read", "course", "tutorial"),
    "review": ("review", "feedback", "audit", "check"),
    "research": ("research", "investigate", "explore", "compare", "spike"),
}

SYSTEM_PROMPT = (
    "You organize a brain dump of tasks into cohesive stories. Group related tasks, "
    "estimate durations in minutes, and flag the most important tasks as frogs."
)


def normalize_task_fields(raw_task: Dict[str, Any]) -> Dict[str, Any]:
    """Fill a missing duration with the minimum and a missing difficulty from the duration."""
    task = dict(raw_task)
    duration = task.get("duration")
    if not isinstance(duration, (int, float)) or duration <= 0:
        duration = DEFAULT_TASK_MINUTES
    task["duration"] = round_to_nearest_block(duration)
    if not task.get("difficulty"):
        task["difficulty"] = derive_difficulty(task["duration"])
    if "taskCategory" in task and "category" not in task:
        task["category"] = task.pop("taskCategory")
    return task


def normalize_enriched_stories(raw_stories: Sequence[Dict[str, Any]]) -> List[Story]:
    stories: List[Story] = []
    for raw in raw_stories:
        payload = dict(raw)
        payload["tasks"] = [normalize_task_fields(task) for task in raw.get("tasks") or []]
        story = Story.model_validate(payload)
        if story.estimated_duration <= 0:
            story.estimated_duration = round_to_nearest_block(sum(task.duration for task in story.tasks))
        stories.append(story)
    return stories


def parse_task_line(line: str) -> Task:
    """Heuristic parse of one brain-dump line: duration hints, frog markers, category keywords."""
    text = line.strip()
    lowered = text.lower()

    duration = DEFAULT_TASK_MINUTES
    match = DURATION_HINT_RE.search(text)
    if match:
        value = float(match.group("value"))
        minutes = value * 60 if match.group("unit").lower().startswith("h") else value
        duration = round_to_nearest_block(minutes)
        text = (text[: match.start()] + text[match.end() :]).strip()

    is_frog = any(marker in lowered for marker in FROG_MARKERS)
    title = re.sub(r"\s+", " ", text.replace("[frog]", "").replace("[FROG]", "")).rstrip("!").strip() or line.strip()

    category = "focus"
    for name, keywords in CATEGORY_KEYWORDS.items():
        if any(keyword in lowered for keyword in keywords):
            category = name
            break

    return Task(
        title=title,
        duration=duration,
        category=category,
        is_frog=is_frog,
        difficulty=derive_difficulty(duration),
    )


def fallback_enrichment(lines: Sequence[str]) -> List[Story]:
    """Deterministic enrichment used when no LLM is available."""
    tasks = [parse_task_line(line) for line in lines if line.strip()]
    return groups_to_stories(analyze_and_group_tasks(tasks))


class TaskEnricher:
    """Raw task strings to stories. Falls back to heuristics without an API key or on any LLM failure."""

    def __init__(self, client: Optional["openai.OpenAI"] = None, *, model: Optional[str] = None) -> None:
        self.model = model or settings.openai_model
        if client is None:
            api_key = os.environ.get("OPENAI_API_KEY")
            client = openai.OpenAI(api_key=api_key) if api_key else None
        self.client = client

    def enrich(self, lines: Sequence[str]) -> List[Story]:
        cleaned = [line.strip() for line in lines if line and line.strip()]
        if not cleaned:
            return []
        with trace("task_enrichment.enrich", metadata={"lines": len(cleaned), "llm": self.client is not None}):
            if self.client is None:
                logger.info("OPENAI_API_KEY missing; using heuristic enrichment.")
                return fallback_enrichment(cleaned)
            try:
                stories = self._enrich_with_llm(cleaned)
            except (openai.OpenAIError, ValueError, ValidationError, KeyError, IndexError) as exc:
                logger.warning("LLM enrichment failed, falling back to heuristics: %s", exc)
                log_metric("task_enrichment.fallback", 1)
                return fallback_enrichment(cleaned)
            log_metric("task_enrichment.llm_stories", len(stories))
            return stories

    def _enrich_with_llm(self, lines: Sequence[str]) -> List[Story]:
        user_prompt = (
            "Create a structured plan from these tasks:\n"
            + "\n".join(lines)
            + "\n\nReturn a JSON object {\"stories\": [...]} where every story has 'title', 'summary', "
            "'icon', 'type' (timeboxed|flexible|milestone), 'project', 'category' and 'tasks'. "
            "Every task has 'title', 'duration' (integer minutes, multiple of 5, at least 15), "
            "'isFrog', 'category' (focus|learning|review|research) and 'difficulty' (low|medium|high)."
        )
        completion = self.client.chat.completions.create(
            model=self.model,
            response_format={"type": "json_object"},
            temperature=0.3,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
        )
        content = completion.choices[0].message.content or "{}"
        payload = json.loads(content)
        raw_stories = payload.get("stories")
        if not isinstance(raw_stories, list) or not raw_stories:
            raise ValueError("LLM response contained no stories")
        return normalize_enriched_stories(raw_stories)
