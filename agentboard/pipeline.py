"""
Wiring for the orchestration pipeline.

``Pipeline`` owns every collaborator a job needs and is built explicitly,
either from ``Config`` or piece by piece in tests. Nothing here is a module
global; each worker process builds its own.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from agentboard.broadcast import EventPublisher, RedisBroadcaster
from agentboard.config import Config
from agentboard.context import DEFAULT_HISTORY_LIMIT, ContextBuilder
from agentboard.domain import Log, Task
from agentboard.errors import ValidationError
from agentboard.extractor import OpenAIJsonCompletion, TaskExtractor
from agentboard.github import GitHubCommitter, GitHubConfig, RepositoryCommitter
from agentboard.intent import ExtractionPolicy, IntentClassifier, RegexIntentClassifier
from agentboard.jobs import MESSAGE_JOB, TASK_JOB, BaseQueue, Job, create_queue, retry_policies_from_config
from agentboard.logging import get_logger, log_extra
from agentboard.responder import OpenAIResponder, Responder
from agentboard.services import AssignmentShortcut, MessageProcessor, QueueService, TaskRunProcessor
from agentboard.storage import BaseDatabase, create_database

log = get_logger(__name__)


@dataclass
class Pipeline:
    db: BaseDatabase
    publisher: EventPublisher
    queue: Optional[BaseQueue]
    responder: Responder
    extractor: TaskExtractor
    classifier: IntentClassifier = field(default_factory=RegexIntentClassifier)
    policy: ExtractionPolicy = ExtractionPolicy.ALWAYS
    committer: Optional[RepositoryCommitter] = None
    history_limit: int = DEFAULT_HISTORY_LIMIT

    def __post_init__(self) -> None:
        self.context_builder = ContextBuilder(self.db, history_limit=self.history_limit)
        self.queue_service = QueueService(self.queue) if self.queue is not None else None
        self.messages = MessageProcessor(
            db=self.db,
            publisher=self.publisher,
            responder=self.responder,
            extractor=self.extractor,
            queue_service=self.queue_service,
            context_builder=self.context_builder,
            classifier=self.classifier,
            policy=self.policy,
        )
        self.task_runs = TaskRunProcessor(
            db=self.db,
            publisher=self.publisher,
            responder=self.responder,
            context_builder=self.context_builder,
            committer=self.committer,
        )
        self.shortcut = AssignmentShortcut(
            db=self.db,
            publisher=self.publisher,
            responder=self.responder,
            context_builder=self.context_builder,
        )

    @classmethod
    def from_config(
        cls,
        config: Config,
        *,
        queue: Optional[BaseQueue] = None,
        publisher: Optional[EventPublisher] = None,
        responder: Optional[Responder] = None,
        extractor: Optional[TaskExtractor] = None,
        committer: Optional[RepositoryCommitter] = None,
    ) -> "Pipeline":
        db = create_database(config.db_path)
        db.init_schema()
        if queue is None:
            queue = create_queue(config.redis_url, policies=retry_policies_from_config(config))
        if publisher is None:
            publisher = RedisBroadcaster(queue.redis_connection, config.events_channel)  # type: ignore[attr-defined]
        if responder is None:
            responder = OpenAIResponder(
                model=config.responder_model,
                temperature=config.responder_temperature,
                max_tokens=config.responder_max_tokens,
                api_key=config.openai_api_key,
                base_url=config.openai_base_url,
            )
        if extractor is None:
            extractor = TaskExtractor(
                OpenAIJsonCompletion(
                    model=config.extractor_model,
                    temperature=config.extractor_temperature,
                    api_key=config.openai_api_key,
                    base_url=config.openai_base_url,
                )
            )
        if committer is None and config.github_enabled:
            committer = GitHubCommitter(GitHubConfig(token=config.github_token or "", api_url=config.github_api_url))
        return cls(
            db=db,
            publisher=publisher,
            queue=queue,
            responder=responder,
            extractor=extractor,
            policy=ExtractionPolicy(config.extraction_policy),
            committer=committer,
            history_limit=config.history_limit,
        )

    def _require_queue(self) -> QueueService:
        if self.queue_service is None:
            raise RuntimeError("Pipeline has no queue configured")
        return self.queue_service

    def enqueue_message(
        self,
        message: str,
        agent_id: Optional[int],
        project_id: int,
        target_agent_id: Optional[int] = None,
        job_id: Optional[str] = None,
    ) -> Job:
        return self._require_queue().enqueue_message(
            message,
            agent_id,
            project_id,
            target_agent_id=target_agent_id,
            job_id=job_id,
        )

    def enqueue_task_run(self, task_id: int, agent_id: int) -> Job:
        return self._require_queue().enqueue_task_run(task_id, agent_id)

    def auto_process_assignment(self, task: Task) -> Optional[Log]:
        return self.shortcut.process(task)

    def process(self, job: Job) -> Dict[str, Any]:
        if job.job_type == MESSAGE_JOB:
            return self.messages.process(job.payload, attempt=job.attempts)
        if job.job_type == TASK_JOB:
            return self.task_runs.process(job.payload)
        raise ValidationError(f"Unhandled job type {job.job_type}", metadata={"job_id": job.job_id})

    def on_job_succeeded(self, job: Job, result: Dict[str, Any]) -> None:
        log.info("job_succeeded", extra=log_extra(job_id=job.job_id, job_type=job.job_type, attempts=job.attempts + 1))

    def on_job_failed(self, job: Job, exc: BaseException) -> Dict[str, Any]:
        """Final failure of a job, after retries are exhausted or on a permanent error."""
        if job.job_type == MESSAGE_JOB:
            return self.messages.handle_failure(job.payload, exc)
        if job.job_type == TASK_JOB:
            return self.task_runs.handle_failure(job.payload, exc)
        return {"success": False, "error": str(exc)}
