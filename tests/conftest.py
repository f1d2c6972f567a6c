import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import Mock

import pytest

# Ensure repository root is on sys.path so in-tree packages import cleanly.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from agentboard.domain import AgentRole  # noqa: E402
from agentboard.extractor import TaskExtractor  # noqa: E402
from agentboard.jobs import Job  # noqa: E402
from agentboard.pipeline import Pipeline  # noqa: E402
from agentboard.storage import Database  # noqa: E402


class FakeResponder:
    """Records prompts and answers with a fixed reply, or raises ``error``."""

    def __init__(self, reply: str = "Here is the plan.", error: Optional[Exception] = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def respond(self, agent, prompt, context) -> str:
        self.calls.append({"agent": agent, "prompt": prompt, "context": context})
        if self.error is not None:
            raise self.error
        return self.reply


class FakeCompletion:
    """JSON completion returning canned output."""

    def __init__(self, output: Any = "", error: Optional[Exception] = None) -> None:
        self.output = output if isinstance(output, str) else json.dumps(output)
        self.error = error
        self.calls: List[str] = []
        self.system_prompts: List[str] = []

    def complete_json(self, system_prompt: str, text: str) -> str:
        self.calls.append(text)
        self.system_prompts.append(system_prompt)
        if self.error is not None:
            raise self.error
        return self.output


class RecordingPublisher:
    def __init__(self) -> None:
        self.messages: List[Dict[str, Any]] = []

    def publish(self, event) -> int:
        self.messages.append(event.to_message())
        return 1

    def types(self) -> List[str]:
        return [message["type"] for message in self.messages]


class FakeCommitter:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def commit(self, owner, repo, path, content, message, branch) -> str:
        self.calls.append(
            {"owner": owner, "repo": repo, "path": path, "content": content, "message": message, "branch": branch}
        )
        if self.error is not None:
            raise self.error
        return "abc123"


@pytest.fixture
def db(tmp_path: Path) -> Database:
    database = Database(tmp_path / "agentboard.sqlite")
    database.init_schema()
    return database


@pytest.fixture
def seeded(db: Database) -> Dict[str, Any]:
    project = db.create_project("Storefront", description="Online shop")
    coordinator = db.create_agent("Orchestrator", AgentRole.COORDINATOR)
    developer = db.create_agent("Builder", AgentRole.DEVELOPER)
    qa = db.create_agent("Debugger", AgentRole.QA)
    return {"project": project, "coordinator": coordinator, "developer": developer, "qa": qa}


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def queue() -> Mock:
    queue = Mock()
    queue.enqueue.side_effect = lambda job_type, payload, queue=None: Job(
        job_id=f"job-{queue_counter()}", job_type=job_type, payload=payload
    )
    return queue


_counter = {"value": 0}


def queue_counter() -> int:
    _counter["value"] += 1
    return _counter["value"]


@pytest.fixture
def make_pipeline(db: Database, publisher: RecordingPublisher, queue: Mock) -> Callable[..., Pipeline]:
    def _make(
        responder: Optional[FakeResponder] = None,
        completion: Optional[FakeCompletion] = None,
        **kwargs: Any,
    ) -> Pipeline:
        return Pipeline(
            db=db,
            publisher=publisher,
            queue=queue,
            responder=responder or FakeResponder(),
            extractor=TaskExtractor(completion or FakeCompletion({"tasks": []})),
            **kwargs,
        )

    return _make
