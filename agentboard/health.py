from dataclasses import dataclass
from typing import Any, Literal, Optional

from agentboard.storage import BaseDatabase

Status = Literal["ok", "degraded", "error"]


@dataclass
class DBStatus:
    status: Status
    backend: str = "sqlite"
    detail: Optional[str] = None


@dataclass
class QueueStatus:
    status: Status
    detail: Optional[str] = None


def check_db(db: BaseDatabase) -> DBStatus:
    try:
        # minimal probe: list projects
        _ = db.list_projects()
        return DBStatus(status="ok")
    except Exception as exc:
        return DBStatus(status="error", detail=str(exc))


def check_queue(queue: Any) -> QueueStatus:
    try:
        queue.stats()
        return QueueStatus(status="ok")
    except Exception as exc:
        return QueueStatus(status="error", detail=str(exc))
