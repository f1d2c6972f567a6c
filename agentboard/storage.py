import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List, Optional, Protocol

from agentboard.errors import ValidationError

from .domain import Agent, AgentStatus, Issue, Log, LogType, Project, ProjectStatus, Task, TaskPriority, TaskStatus


SCHEMA_SQLITE = """
CREATE TABLE IF NOT EXISTS projects (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'planning',
    github_repo TEXT,
    github_branch TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS agents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    role TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'offline',
    description TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER REFERENCES projects(id),
    parent_id INTEGER REFERENCES tasks(id),
    title TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'todo',
    priority TEXT NOT NULL DEFAULT 'medium',
    assigned_to INTEGER REFERENCES agents(id),
    progress INTEGER NOT NULL DEFAULT 0,
    estimated_time INTEGER,
    is_feature INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER REFERENCES projects(id),
    agent_id INTEGER,
    target_agent_id INTEGER,
    type TEXT NOT NULL DEFAULT 'info',
    message TEXT NOT NULL,
    details TEXT,
    timestamp TEXT
);

CREATE TABLE IF NOT EXISTS issues (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id INTEGER NOT NULL REFERENCES tasks(id),
    type TEXT NOT NULL DEFAULT 'info',
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    code TEXT,
    solution TEXT,
    resolved INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id);
CREATE INDEX IF NOT EXISTS idx_logs_project_ts ON logs(project_id, timestamp);
"""


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class BaseDatabase(Protocol):
    def init_schema(self) -> None: ...
    def create_project(self, name: str, description: Optional[str] = None, status: str = ProjectStatus.PLANNING, github_repo: Optional[str] = None, github_branch: Optional[str] = None) -> Project: ...
    def get_project(self, project_id: int) -> Project: ...
    def list_projects(self) -> List[Project]: ...
    def update_project_status(self, project_id: int, status: str) -> Project: ...
    def delete_project(self, project_id: int) -> None: ...
    def create_agent(self, name: str, role: str, status: str = AgentStatus.ONLINE, description: Optional[str] = None) -> Agent: ...
    def get_agent(self, agent_id: int) -> Agent: ...
    def list_agents(self) -> List[Agent]: ...
    def find_agent_by_role(self, role: str) -> Optional[Agent]: ...
    def update_agent_status(self, agent_id: int, status: str) -> Agent: ...
    def create_task(self, project_id: Optional[int], title: str, description: Optional[str] = None, status: str = TaskStatus.TODO, priority: str = TaskPriority.MEDIUM, assigned_to: Optional[int] = None, estimated_time: Optional[int] = None, parent_id: Optional[int] = None, is_feature: bool = False) -> Task: ...
    def create_feature(self, project_id: Optional[int], title: str, description: Optional[str] = None, status: str = TaskStatus.TODO, priority: str = TaskPriority.MEDIUM, assigned_to: Optional[int] = None, estimated_time: Optional[int] = None) -> Task: ...
    def get_task(self, task_id: int) -> Task: ...
    def list_tasks_by_project(self, project_id: int) -> List[Task]: ...
    def list_subtasks(self, feature_id: int) -> List[Task]: ...
    def update_task_status(self, task_id: int, status: str, progress: Optional[int] = None) -> Task: ...
    def update_task_progress(self, task_id: int, progress: int) -> Task: ...
    def create_log(self, type: str, message: str, project_id: Optional[int] = None, agent_id: Optional[int] = None, target_agent_id: Optional[int] = None, details: Optional[str] = None) -> Log: ...
    def list_logs_by_project(self, project_id: int) -> List[Log]: ...
    def list_conversation_logs(self, project_id: int) -> List[Log]: ...
    def list_logs_by_agent(self, agent_id: int) -> List[Log]: ...
    def create_issue(self, task_id: int, type: str, title: str, description: str, code: Optional[str] = None, solution: Optional[str] = None) -> Issue: ...
    def list_issues_by_task(self, task_id: int) -> List[Issue]: ...
    def resolve_issue(self, issue_id: int) -> Issue: ...


class Database:
    """
    Lightweight SQLite-backed persistence for projects, agents, tasks and logs.

    Every write is a single-row insert or update on its own connection; there
    are no multi-row transactions spanning pipeline steps.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def init_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(SCHEMA_SQLITE)
            conn.commit()

    def _fetchone(self, query: str, params: Iterable[Any]) -> Optional[sqlite3.Row]:
        with self._connect() as conn:
            cur = conn.execute(query, params)
            row = cur.fetchone()
        return row

    def _fetchall(self, query: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        with self._connect() as conn:
            cur = conn.execute(query, params)
            rows = cur.fetchall()
        return rows

    def _insert(self, query: str, params: Iterable[Any]) -> int:
        with self._connect() as conn:
            cur = conn.execute(query, params)
            row_id = cur.lastrowid
            conn.commit()
        return int(row_id)

    def _execute(self, query: str, params: Iterable[Any]) -> int:
        with self._connect() as conn:
            cur = conn.execute(query, params)
            conn.commit()
        return cur.rowcount

    # Projects

    def create_project(
        self,
        name: str,
        description: Optional[str] = None,
        status: str = ProjectStatus.PLANNING,
        github_repo: Optional[str] = None,
        github_branch: Optional[str] = None,
    ) -> Project:
        now = utc_now()
        project_id = self._insert(
            """
            INSERT INTO projects (name, description, status, github_repo, github_branch, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (name, description, status, github_repo, github_branch, now, now),
        )
        return self.get_project(project_id)

    def get_project(self, project_id: int) -> Project:
        row = self._fetchone("SELECT * FROM projects WHERE id = ?", (project_id,))
        if row is None:
            raise KeyError(f"Project {project_id} not found")
        return self._row_to_project(row)

    def list_projects(self) -> List[Project]:
        rows = self._fetchall("SELECT * FROM projects ORDER BY id")
        return [self._row_to_project(row) for row in rows]

    def update_project_status(self, project_id: int, status: str) -> Project:
        updated = self._execute(
            "UPDATE projects SET status = ?, updated_at = ? WHERE id = ?",
            (status, utc_now(), project_id),
        )
        if not updated:
            raise KeyError(f"Project {project_id} not found")
        return self.get_project(project_id)

    def delete_project(self, project_id: int) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM issues WHERE task_id IN (SELECT id FROM tasks WHERE project_id = ?)",
                (project_id,),
            )
            conn.execute("DELETE FROM tasks WHERE project_id = ?", (project_id,))
            conn.execute("DELETE FROM logs WHERE project_id = ?", (project_id,))
            cur = conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
            conn.commit()
        if not cur.rowcount:
            raise KeyError(f"Project {project_id} not found")

    # Agents

    def create_agent(
        self,
        name: str,
        role: str,
        status: str = AgentStatus.ONLINE,
        description: Optional[str] = None,
    ) -> Agent:
        agent_id = self._insert(
            "INSERT INTO agents (name, role, status, description, created_at) VALUES (?, ?, ?, ?, ?)",
            (name, role, status, description, utc_now()),
        )
        return self.get_agent(agent_id)

    def get_agent(self, agent_id: int) -> Agent:
        row = self._fetchone("SELECT * FROM agents WHERE id = ?", (agent_id,))
        if row is None:
            raise KeyError(f"Agent {agent_id} not found")
        return self._row_to_agent(row)

    def list_agents(self) -> List[Agent]:
        rows = self._fetchall("SELECT * FROM agents ORDER BY id")
        return [self._row_to_agent(row) for row in rows]

    def find_agent_by_role(self, role: str) -> Optional[Agent]:
        row = self._fetchone("SELECT * FROM agents WHERE role = ? ORDER BY id LIMIT 1", (role,))
        return self._row_to_agent(row) if row else None

    def update_agent_status(self, agent_id: int, status: str) -> Agent:
        updated = self._execute("UPDATE agents SET status = ? WHERE id = ?", (status, agent_id))
        if not updated:
            raise KeyError(f"Agent {agent_id} not found")
        return self.get_agent(agent_id)

    # Tasks

    def create_task(
        self,
        project_id: Optional[int],
        title: str,
        description: Optional[str] = None,
        status: str = TaskStatus.TODO,
        priority: str = TaskPriority.MEDIUM,
        assigned_to: Optional[int] = None,
        estimated_time: Optional[int] = None,
        parent_id: Optional[int] = None,
        is_feature: bool = False,
    ) -> Task:
        if not title or not title.strip():
            raise ValidationError("Task title is required")
        if status not in TaskStatus.ALL:
            raise ValidationError(f"Unknown task status {status!r}")
        if priority not in TaskPriority.ALL:
            raise ValidationError(f"Unknown task priority {priority!r}")
        if parent_id is not None:
            parent_row = self._fetchone("SELECT id, is_feature FROM tasks WHERE id = ?", (parent_id,))
            if parent_row is None:
                raise ValidationError(
                    f"Parent task {parent_id} does not exist",
                    metadata={"parent_id": parent_id},
                )
            if not parent_row["is_feature"]:
                raise ValidationError(
                    f"Parent task {parent_id} is not a feature",
                    metadata={"parent_id": parent_id},
                )
        now = utc_now()
        task_id = self._insert(
            """
            INSERT INTO tasks (
                project_id, parent_id, title, description, status, priority,
                assigned_to, progress, estimated_time, is_feature, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?, ?)
            """,
            (
                project_id,
                parent_id,
                title.strip(),
                description,
                status,
                priority,
                assigned_to,
                estimated_time,
                1 if is_feature else 0,
                now,
                now,
            ),
        )
        return self.get_task(task_id)

    def create_feature(
        self,
        project_id: Optional[int],
        title: str,
        description: Optional[str] = None,
        status: str = TaskStatus.TODO,
        priority: str = TaskPriority.MEDIUM,
        assigned_to: Optional[int] = None,
        estimated_time: Optional[int] = None,
    ) -> Task:
        return self.create_task(
            project_id,
            title,
            description=description,
            status=status,
            priority=priority,
            assigned_to=assigned_to,
            estimated_time=estimated_time,
            is_feature=True,
        )

    def get_task(self, task_id: int) -> Task:
        row = self._fetchone("SELECT * FROM tasks WHERE id = ?", (task_id,))
        if row is None:
            raise KeyError(f"Task {task_id} not found")
        return self._row_to_task(row)

    def list_tasks_by_project(self, project_id: int) -> List[Task]:
        rows = self._fetchall("SELECT * FROM tasks WHERE project_id = ? ORDER BY id", (project_id,))
        return [self._row_to_task(row) for row in rows]

    def list_subtasks(self, feature_id: int) -> List[Task]:
        rows = self._fetchall("SELECT * FROM tasks WHERE parent_id = ? ORDER BY id", (feature_id,))
        return [self._row_to_task(row) for row in rows]

    def update_task_status(self, task_id: int, status: str, progress: Optional[int] = None) -> Task:
        if status not in TaskStatus.ALL:
            raise ValidationError(f"Unknown task status {status!r}")
        if progress is None:
            updated = self._execute(
                "UPDATE tasks SET status = ?, updated_at = ? WHERE id = ?",
                (status, utc_now(), task_id),
            )
        else:
            updated = self._execute(
                "UPDATE tasks SET status = ?, progress = ?, updated_at = ? WHERE id = ?",
                (status, _clamp_progress(progress), utc_now(), task_id),
            )
        if not updated:
            raise KeyError(f"Task {task_id} not found")
        return self.get_task(task_id)

    def update_task_progress(self, task_id: int, progress: int) -> Task:
        updated = self._execute(
            "UPDATE tasks SET progress = ?, updated_at = ? WHERE id = ?",
            (_clamp_progress(progress), utc_now(), task_id),
        )
        if not updated:
            raise KeyError(f"Task {task_id} not found")
        return self.get_task(task_id)

    # Logs

    def create_log(
        self,
        type: str,
        message: str,
        project_id: Optional[int] = None,
        agent_id: Optional[int] = None,
        target_agent_id: Optional[int] = None,
        details: Optional[str] = None,
    ) -> Log:
        log_id = self._insert(
            """
            INSERT INTO logs (project_id, agent_id, target_agent_id, type, message, details, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (project_id, agent_id, target_agent_id, type, message, details, utc_now()),
        )
        row = self._fetchone("SELECT * FROM logs WHERE id = ?", (log_id,))
        return self._row_to_log(row)  # type: ignore[arg-type]

    def list_logs_by_project(self, project_id: int) -> List[Log]:
        """Logs for a project, oldest first. Timestamp is the only ordering signal."""
        rows = self._fetchall(
            "SELECT * FROM logs WHERE project_id = ? ORDER BY timestamp, id",
            (project_id,),
        )
        return [self._row_to_log(row) for row in rows]

    def list_conversation_logs(self, project_id: int) -> List[Log]:
        rows = self._fetchall(
            "SELECT * FROM logs WHERE project_id = ? AND type = ? ORDER BY timestamp, id",
            (project_id, LogType.CONVERSATION),
        )
        return [self._row_to_log(row) for row in rows]

    def list_logs_by_agent(self, agent_id: int) -> List[Log]:
        rows = self._fetchall(
            "SELECT * FROM logs WHERE agent_id = ? ORDER BY timestamp, id",
            (agent_id,),
        )
        return [self._row_to_log(row) for row in rows]

    # Issues

    def create_issue(
        self,
        task_id: int,
        type: str,
        title: str,
        description: str,
        code: Optional[str] = None,
        solution: Optional[str] = None,
    ) -> Issue:
        self.get_task(task_id)
        issue_id = self._insert(
            """
            INSERT INTO issues (task_id, type, title, description, code, solution, resolved, created_at)
            VALUES (?, ?, ?, ?, ?, ?, 0, ?)
            """,
            (task_id, type, title, description, code, solution, utc_now()),
        )
        return self._get_issue(issue_id)

    def list_issues_by_task(self, task_id: int) -> List[Issue]:
        rows = self._fetchall("SELECT * FROM issues WHERE task_id = ? ORDER BY id", (task_id,))
        return [self._row_to_issue(row) for row in rows]

    def resolve_issue(self, issue_id: int) -> Issue:
        updated = self._execute("UPDATE issues SET resolved = 1 WHERE id = ?", (issue_id,))
        if not updated:
            raise KeyError(f"Issue {issue_id} not found")
        return self._get_issue(issue_id)

    def _get_issue(self, issue_id: int) -> Issue:
        row = self._fetchone("SELECT * FROM issues WHERE id = ?", (issue_id,))
        if row is None:
            raise KeyError(f"Issue {issue_id} not found")
        return self._row_to_issue(row)

    @staticmethod
    def _row_to_project(row: Any) -> Project:
        return Project(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            status=row["status"],
            github_repo=row["github_repo"],
            github_branch=row["github_branch"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_agent(row: Any) -> Agent:
        return Agent(
            id=row["id"],
            name=row["name"],
            role=row["role"],
            status=row["status"],
            description=row["description"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_task(row: Any) -> Task:
        return Task(
            id=row["id"],
            project_id=row["project_id"],
            parent_id=row["parent_id"],
            title=row["title"],
            description=row["description"],
            status=row["status"],
            priority=row["priority"],
            assigned_to=row["assigned_to"],
            progress=int(row["progress"] or 0),
            estimated_time=row["estimated_time"],
            is_feature=bool(row["is_feature"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_log(row: Any) -> Log:
        return Log(
            id=row["id"],
            project_id=row["project_id"],
            agent_id=row["agent_id"],
            target_agent_id=row["target_agent_id"],
            type=row["type"],
            message=row["message"],
            details=row["details"],
            timestamp=row["timestamp"],
        )

    @staticmethod
    def _row_to_issue(row: Any) -> Issue:
        return Issue(
            id=row["id"],
            task_id=row["task_id"],
            type=row["type"],
            title=row["title"],
            description=row["description"],
            code=row["code"],
            solution=row["solution"],
            resolved=bool(row["resolved"]),
            created_at=row["created_at"],
        )


def _clamp_progress(progress: int) -> int:
    return max(0, min(100, int(progress)))


def create_database(db_path: Path) -> BaseDatabase:
    """
    Factory for the backing store. Callers depend on BaseDatabase so the
    SQLite implementation can be swapped without touching the pipeline.
    """
    return Database(db_path)
