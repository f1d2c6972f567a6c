from dataclasses import dataclass, fields
from typing import Any, Dict, Optional


class ProjectStatus:
    PLANNING = "planning"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AgentRole:
    COORDINATOR = "coordinator"
    DEVELOPER = "developer"
    QA = "qa"
    TESTER = "tester"
    DESIGNER = "designer"

    ALL = (COORDINATOR, DEVELOPER, QA, TESTER, DESIGNER)


class AgentStatus:
    ONLINE = "online"
    OFFLINE = "offline"
    BUSY = "busy"
    IDLE = "idle"


class TaskStatus:
    # Board statuses (what the extractor may emit)
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    DONE = "done"
    BLOCKED = "blocked"
    # Execution aliases used by the task run state machine
    QUEUED = "queued"
    DEBUGGING = "debugging"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    FAILED = "failed"

    BOARD = (TODO, IN_PROGRESS, REVIEW, DONE, BLOCKED)
    ALL = BOARD + (QUEUED, DEBUGGING, VERIFYING, COMPLETED, FAILED)
    FINISHED = (DONE, COMPLETED)


class TaskPriority:
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    ALL = (LOW, MEDIUM, HIGH, CRITICAL)


class LogType:
    CONVERSATION = "conversation"
    INFO = "info"
    WARNING = "warning"
    SUCCESS = "success"
    ERROR = "error"
    SYSTEM = "system"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


class _Payload:
    """Mixin rendering a dataclass as the camelCase dict clients receive."""

    def to_payload(self) -> Dict[str, Any]:
        return {_camel(f.name): getattr(self, f.name) for f in fields(self)}  # type: ignore[arg-type]


@dataclass
class Project(_Payload):
    id: int
    name: str
    description: Optional[str]
    status: str
    github_repo: Optional[str]
    github_branch: Optional[str]
    created_at: str
    updated_at: str

    @property
    def repository(self) -> Optional[tuple]:
        """(owner, repo) when the project is bound to an external repository."""
        if not self.github_repo or "/" not in self.github_repo:
            return None
        owner, _, repo = self.github_repo.partition("/")
        if not owner or not repo:
            return None
        return owner, repo


@dataclass
class Agent(_Payload):
    id: int
    name: str
    role: str
    status: str
    description: Optional[str]
    created_at: str


@dataclass
class Task(_Payload):
    id: int
    project_id: Optional[int]
    parent_id: Optional[int]
    title: str
    description: Optional[str]
    status: str
    priority: str
    assigned_to: Optional[int]
    progress: int
    estimated_time: Optional[int]
    is_feature: bool
    created_at: str
    updated_at: str


@dataclass
class Log(_Payload):
    id: int
    project_id: Optional[int]
    agent_id: Optional[int]
    target_agent_id: Optional[int]
    type: str
    message: str
    details: Optional[str]
    timestamp: Optional[str]


@dataclass
class Issue(_Payload):
    id: int
    task_id: int
    type: str
    title: str
    description: str
    code: Optional[str]
    solution: Optional[str]
    resolved: bool
    created_at: str
