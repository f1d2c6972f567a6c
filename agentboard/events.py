"""
Broadcast event catalog.

Each event renders to the envelope dashboard clients receive over the push
channel: ``{"type": <event type>, **payload}``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from agentboard.domain import Agent, Log, Project, Task


class ProcessingState:
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class BroadcastEvent:
    type = "event"

    def payload(self) -> Dict[str, Any]:
        return {}

    def to_message(self) -> Dict[str, Any]:
        return {"type": self.type, **self.payload()}


@dataclass
class LogCreated(BroadcastEvent):
    log: Log
    type = "log_created"

    def payload(self) -> Dict[str, Any]:
        return {"log": self.log.to_payload()}


@dataclass
class TaskCreated(BroadcastEvent):
    task: Task
    type = "task_created"

    def payload(self) -> Dict[str, Any]:
        return {"task": self.task.to_payload()}


@dataclass
class FeatureCreated(TaskCreated):
    type = "feature_created"


@dataclass
class TaskUpdated(TaskCreated):
    type = "task_updated"


@dataclass
class AgentCreated(BroadcastEvent):
    agent: Agent
    type = "agent_created"

    def payload(self) -> Dict[str, Any]:
        return {"agent": self.agent.to_payload()}


@dataclass
class AgentUpdated(AgentCreated):
    type = "agent_updated"


@dataclass
class ProjectUpdated(BroadcastEvent):
    project: Project
    type = "project_updated"

    def payload(self) -> Dict[str, Any]:
        return {"project": self.project.to_payload()}


@dataclass
class ProjectDeleted(BroadcastEvent):
    project_id: int
    type = "project_deleted"

    def payload(self) -> Dict[str, Any]:
        return {"projectId": self.project_id}


@dataclass
class ProcessingStatus(BroadcastEvent):
    """Lifecycle of a client-visible message job, keyed by the caller's jobId."""

    status: str
    job_id: str
    error: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    type = "agent_query_processing"

    def payload(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"status": self.status, "jobId": self.job_id, "timestamp": self.timestamp}
        if self.error is not None:
            data["error"] = self.error
        return data


def task_created_event(task: Task) -> TaskCreated:
    return FeatureCreated(task) if task.is_feature else TaskCreated(task)
