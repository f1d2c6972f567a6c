"""
Turns free-form agent replies into structured work items.

The model is asked for ``{"tasks": [...]}``; whatever comes back is parsed
leniently and every item is normalized into the board's enums. Extraction
never raises: a failed call or malformed output yields no items.
"""

import json
import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional, Protocol

from agentboard.domain import Agent, TaskPriority, TaskStatus
from agentboard.logging import get_logger, log_extra
from agentboard.metrics import metrics

log = get_logger(__name__)

EXTRACTION_PROMPT = """You are a task extraction assistant integrated with our project management API. Extract tasks and features from the following text and format them for our API.

For each task or feature, identify the following properties:
- title (required): A clear, specific title for the task
- description (optional): Detailed description of what needs to be done
- priority (optional): One of "low", "medium", "high", or "critical" (default is "medium")
- status (optional): One of "todo", "in_progress", "review", "done", "blocked" (default is "todo")
- estimatedTime (optional): Numeric value in hours for the estimated completion time
- assignedTo (optional): Agent ID number to assign the task to
- isFeature (optional): Boolean value indicating whether this is a feature (higher-level item) rather than a regular task. Set to true for major features.
- parentId (optional): The ID of the parent feature that this task belongs to, if applicable

The system will automatically add the current projectId to each task/feature.

Format your response as a JSON object with a 'tasks' array containing task objects. Example:
{
  "tasks": [
    {
      "title": "User Authentication System",
      "description": "Implement complete authentication system with login/signup",
      "priority": "high",
      "status": "todo",
      "estimatedTime": 8,
      "assignedTo": 2,
      "isFeature": true
    },
    {
      "title": "Implement login form",
      "description": "Create login form with email/password fields and validation",
      "priority": "medium",
      "status": "todo",
      "estimatedTime": 2,
      "assignedTo": 2,
      "parentId": 1
    }
  ]
}

Respond with this JSON structure only, without any additional text."""


def build_extraction_prompt(agents: Iterable[Agent], base: str = EXTRACTION_PROMPT) -> str:
    """Append the agent roster so ``assignedTo`` can name a real agent."""
    roster = ", ".join(f"{agent.id}={agent.name} ({agent.role})" for agent in agents)
    if not roster:
        return base
    return (
        f"{base}\n\n"
        f"Available agents for assignedTo (ID=name): {roster}. "
        "Only use these IDs; omit assignedTo when no listed agent fits."
    )


class JsonCompletion(Protocol):
    def complete_json(self, system_prompt: str, text: str) -> str: ...


class OpenAIJsonCompletion:
    """Chat completion constrained to a single JSON object."""

    def __init__(
        self,
        client: Any = None,
        model: str = "gpt-4o",
        temperature: float = 0.1,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._base_url = base_url
        self.model = model
        self.temperature = temperature

    @property
    def client(self) -> Any:
        if self._client is None:
            from openai import OpenAI

            self._client = OpenAI(api_key=self._api_key, base_url=self._base_url)
        return self._client

    def complete_json(self, system_prompt: str, text: str) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": text},
            ],
            response_format={"type": "json_object"},
            temperature=self.temperature,
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


@dataclass
class WorkItem:
    title: str
    description: Optional[str]
    priority: str
    status: str
    estimated_time: Optional[int]
    assigned_to: Optional[int]
    is_feature: bool
    parent_id: Optional[int]
    project_id: int

    def asdict(self) -> Dict[str, Any]:
        return asdict(self)


def _pick(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def _positive_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    number = int(round(value))
    return number if number > 0 else None


def _estimate_hours(value: Any) -> Optional[int]:
    """Whole hours, rounded up so a short estimate (0.25h) still counts as one hour."""
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value) and value > 0:
        return int(math.ceil(value))
    if isinstance(value, str):
        try:
            return _estimate_hours(float(value.strip()))
        except ValueError:
            return None
    return None


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def normalize_work_item(raw: Any, project_id: int) -> Optional[WorkItem]:
    """
    Coerce one raw item into a WorkItem. Returns None when the item has no
    usable title.
    """
    if not isinstance(raw, dict):
        return None
    title = raw.get("title")
    if not isinstance(title, str) or not title.strip():
        return None
    description = raw.get("description")
    status = raw.get("status")
    priority = raw.get("priority")
    return WorkItem(
        title=title.strip(),
        description=description if isinstance(description, str) and description else None,
        priority=priority if priority in TaskPriority.ALL else TaskPriority.MEDIUM,
        status=status if status in TaskStatus.BOARD else TaskStatus.TODO,
        estimated_time=_estimate_hours(_pick(raw, "estimatedTime", "estimated_time")),
        assigned_to=_positive_int(_pick(raw, "assignedTo", "assigned_to")),
        is_feature=_flag(_pick(raw, "isFeature", "is_feature")),
        parent_id=_positive_int(_pick(raw, "parentId", "parent_id")),
        project_id=project_id,
    )


def parse(content: str) -> List[Any]:
    """Raw items from model output; ``[]`` for anything that is not a task list."""
    if not content or not content.strip():
        return []
    try:
        parsed = json.loads(content)
    except ValueError:
        return []
    if isinstance(parsed, dict):
        tasks = parsed.get("tasks")
        return tasks if isinstance(tasks, list) else []
    if isinstance(parsed, list):
        return parsed
    return []


class TaskExtractor:
    def __init__(self, completion: JsonCompletion, system_prompt: str = EXTRACTION_PROMPT) -> None:
        self.completion = completion
        self.system_prompt = system_prompt

    def extract(self, text: str, project_id: int, agents: Optional[Iterable[Agent]] = None) -> List[WorkItem]:
        system_prompt = build_extraction_prompt(agents or (), self.system_prompt)
        try:
            content = self.completion.complete_json(system_prompt, text)
        except Exception as exc:
            metrics.inc_model_call("extract", "error")
            log.warning(
                "extraction_call_failed",
                extra=log_extra(project_id=project_id, error=str(exc), error_type=exc.__class__.__name__),
            )
            return []
        metrics.inc_model_call("extract", "ok")
        raw_items = parse(content)
        if not raw_items and content and content.strip():
            log.info("extraction_no_items", extra=log_extra(project_id=project_id, output_chars=len(content)))
        items = []
        for raw in raw_items:
            item = normalize_work_item(raw, project_id)
            if item is None:
                log.info("extraction_item_dropped", extra=log_extra(project_id=project_id))
                continue
            items.append(item)
        return items
