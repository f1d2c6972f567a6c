"""
Assembles what an agent is told about the world before it replies.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from agentboard.domain import Agent, Log, LogType, Project, Task
from agentboard.logging import get_logger, log_extra
from agentboard.storage import BaseDatabase

log = get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 10


@dataclass
class ContextBundle:
    project: Optional[Project] = None
    related_tasks: List[Task] = field(default_factory=list)
    conversation_history: Optional[str] = None
    all_projects: List[Project] = field(default_factory=list)
    agents: List[Agent] = field(default_factory=list)
    task: Optional[Task] = None
    parent_task: Optional[Task] = None


def _format_time(timestamp: Optional[str]) -> str:
    if not timestamp:
        return "Unknown time"
    try:
        return datetime.fromisoformat(timestamp).strftime("%H:%M:%S")
    except (TypeError, ValueError):
        return "Unknown time"


def _speaker(entry: Log, agents_by_id: Dict[int, Agent]) -> str:
    if entry.agent_id is None:
        return "User"
    agent = agents_by_id.get(entry.agent_id)
    if agent is None:
        return f"Agent #{entry.agent_id}"
    return f"Agent {agent.name} ({agent.role})"


def format_conversation_history(logs: Iterable[Log], agents: Iterable[Agent], limit: int = DEFAULT_HISTORY_LIMIT) -> str:
    """
    Render the most recent conversation logs as numbered lines:
    ``[n] HH:MM:SS - Speaker: message``, separated by blank lines.
    """
    agents_by_id = {agent.id: agent for agent in agents}
    conversation = [entry for entry in logs if entry.type == LogType.CONVERSATION]
    recent = conversation[-limit:] if limit > 0 else []
    lines = []
    for index, entry in enumerate(recent, start=1):
        lines.append(f"[{index}] {_format_time(entry.timestamp)} - {_speaker(entry, agents_by_id)}: {entry.message}")
    return "\n\n".join(lines)


class ContextBuilder:
    def __init__(self, db: BaseDatabase, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self.db = db
        self.history_limit = history_limit

    def build_for_project(self, project_id: int) -> ContextBundle:
        project = self.db.get_project(project_id)
        agents = self.db.list_agents()
        history = format_conversation_history(
            self.db.list_conversation_logs(project_id),
            agents,
            limit=self.history_limit,
        )
        bundle = ContextBundle(
            project=project,
            related_tasks=self.db.list_tasks_by_project(project_id),
            conversation_history=history or None,
            all_projects=self.db.list_projects(),
            agents=agents,
        )
        log.debug(
            "context_built",
            extra=log_extra(project_id=project_id, tasks=len(bundle.related_tasks), agents=len(agents)),
        )
        return bundle

    def build_for_task(self, task: Task) -> ContextBundle:
        project = None
        related: List[Task] = []
        if task.project_id is not None:
            try:
                project = self.db.get_project(task.project_id)
            except KeyError:
                log.warning("context_project_missing", extra=log_extra(project_id=task.project_id, task_id=task.id))
            else:
                related = self.db.list_tasks_by_project(task.project_id)
        parent = None
        if task.parent_id is not None:
            try:
                parent = self.db.get_task(task.parent_id)
            except KeyError:
                parent = None
        return ContextBundle(project=project, related_tasks=related, task=task, parent_task=parent)
