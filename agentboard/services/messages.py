from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pydantic

from agentboard.broadcast import EventPublisher
from agentboard.context import ContextBuilder
from agentboard.domain import Agent, AgentRole, LogType, Task
from agentboard.errors import AgentNotFoundError, ProjectNotFoundError, ValidationError
from agentboard.events import LogCreated, ProcessingState, ProcessingStatus, task_created_event
from agentboard.extractor import TaskExtractor, WorkItem
from agentboard.intent import ExtractionPolicy, IntentClassifier, RegexIntentClassifier, should_extract
from agentboard.jobs import MessageJobPayload
from agentboard.logging import get_logger, log_context, log_extra
from agentboard.metrics import metrics
from agentboard.responder import Responder
from agentboard.storage import BaseDatabase

from .queue import QueueService

log = get_logger(__name__)


def parse_message_payload(payload: Dict[str, Any]) -> MessageJobPayload:
    try:
        return MessageJobPayload.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid message job payload: {exc}", metadata={"payload": payload}) from exc


@dataclass
class MessageProcessor:
    """Handles one Message Queue job: an agent replies and the reply becomes work.

    Steps, each persisted and broadcast before the next runs:
    1. Resolve the project and the responding agent (explicit target, else
       the first coordinator). Missing records are permanent failures.
    2. Build the project context and ask the Responder for a reply.
    3. Store the reply as a conversation log addressed to the inbound author.
    4. Depending on the extraction policy, extract work items from the reply,
       create them as tasks or features in the job's project and enqueue a
       task run for every item with a known assignee.

    Extraction problems never fail the job once the reply is stored: a bad
    item is skipped and an extraction crash is logged.

    Usage:
        processor = MessageProcessor(db, publisher, responder, extractor, queue_service, ContextBuilder(db))
        result = processor.process({"message": "create tasks for a login page", "agentId": None, "projectId": 1})
        # {"success": True, "logId": 12, "createdTaskIds": [4, 5]}
    """

    db: BaseDatabase
    publisher: EventPublisher
    responder: Responder
    extractor: TaskExtractor
    queue_service: Optional[QueueService]
    context_builder: ContextBuilder
    classifier: IntentClassifier = field(default_factory=RegexIntentClassifier)
    policy: ExtractionPolicy = ExtractionPolicy.ALWAYS

    def process(self, payload: Dict[str, Any], attempt: int = 0) -> Dict[str, Any]:
        """
        ``attempt`` counts earlier failed runs of the same job; the started
        status goes out on the first run only.
        """
        request = parse_message_payload(payload)
        with log_context(project_id=request.project_id, request_id=request.job_id):
            if request.job_id and attempt == 0:
                self.publisher.publish(ProcessingStatus(status=ProcessingState.STARTED, job_id=request.job_id))
            log.info("message_job_started", extra=log_extra(project_id=request.project_id, agent_id=request.agent_id))

            try:
                self.db.get_project(request.project_id)
            except KeyError as exc:
                raise ProjectNotFoundError(
                    f"Project {request.project_id} not found",
                    metadata={"project_id": request.project_id},
                ) from exc
            agent = self._resolve_responder(request.target_agent_id)

            context = self.context_builder.build_for_project(request.project_id)
            reply = self.responder.respond(agent, request.message, context)
            reply_log = self.db.create_log(
                LogType.CONVERSATION,
                reply,
                project_id=request.project_id,
                agent_id=agent.id,
                target_agent_id=request.agent_id,
            )
            self.publisher.publish(LogCreated(reply_log))
            log.info("agent_reply_stored", extra=log_extra(agent_id=agent.id, log_id=reply_log.id))

            created_ids = self._extract_work_items(request, reply, agent)

            if request.job_id:
                self.publisher.publish(ProcessingStatus(status=ProcessingState.COMPLETED, job_id=request.job_id))
            log.info(
                "message_job_completed",
                extra=log_extra(agent_id=agent.id, log_id=reply_log.id, created_tasks=len(created_ids)),
            )
            return {"success": True, "logId": reply_log.id, "createdTaskIds": created_ids}

    def handle_failure(self, payload: Dict[str, Any], exc: BaseException) -> Dict[str, Any]:
        """Final-failure hook: record the error where the project can see it."""
        error = str(exc)
        project_id = payload.get("projectId")
        client_job_id = payload.get("jobId")
        if isinstance(project_id, int) and not isinstance(exc, ProjectNotFoundError):
            try:
                self.db.get_project(project_id)
            except KeyError:
                project_id = None
            if project_id is not None:
                error_log = self.db.create_log(
                    LogType.ERROR,
                    f"Error processing message: {error}",
                    project_id=project_id,
                    details="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
                )
                self.publisher.publish(LogCreated(error_log))
        if client_job_id:
            self.publisher.publish(
                ProcessingStatus(status=ProcessingState.FAILED, job_id=str(client_job_id), error=error)
            )
        return {"success": False, "error": error}

    def _resolve_responder(self, target_agent_id: Optional[int]) -> Agent:
        if target_agent_id is not None:
            try:
                return self.db.get_agent(target_agent_id)
            except KeyError as exc:
                raise AgentNotFoundError(
                    f"Agent {target_agent_id} not found",
                    metadata={"agent_id": target_agent_id},
                ) from exc
        coordinator = self.db.find_agent_by_role(AgentRole.COORDINATOR)
        if coordinator is None:
            raise AgentNotFoundError("No coordinator agent available to respond")
        return coordinator

    def _extract_work_items(self, request: MessageJobPayload, reply: str, responder: Agent) -> List[int]:
        created: List[int] = []
        try:
            if not should_extract(self.policy, self.classifier, request.message, reply):
                log.info("extraction_skipped", extra=log_extra(policy=self.policy.value))
                return created
            agents = self.db.list_agents()
            items = self.extractor.extract(reply, request.project_id, agents=agents)
            known_agents = {agent.id for agent in agents}
            for item in items:
                task = self._create_work_item(item, request.project_id, known_agents, responder)
                if task is not None:
                    created.append(task.id)
        except Exception as exc:
            log.exception(
                "extraction_failed",
                extra=log_extra(error=str(exc), error_type=exc.__class__.__name__, created_tasks=len(created)),
            )
        return created

    def _create_work_item(self, item: WorkItem, project_id: int, known_agents: set, responder: Agent) -> Optional[Task]:
        assigned_to = item.assigned_to
        if assigned_to is not None and assigned_to not in known_agents:
            log.info("work_item_assignee_dropped", extra=log_extra(agent_id=assigned_to, title=item.title))
            assigned_to = None
        try:
            task = self.db.create_task(
                project_id,
                item.title,
                description=item.description,
                status=item.status,
                priority=item.priority,
                assigned_to=assigned_to,
                estimated_time=item.estimated_time,
                parent_id=item.parent_id,
                is_feature=item.is_feature,
            )
        except ValidationError as exc:
            log.warning("work_item_rejected", extra=log_extra(title=item.title, error=str(exc)))
            return None

        kind = "feature" if task.is_feature else "task"
        metrics.inc_work_item(kind)
        info_log = self.db.create_log(
            LogType.INFO,
            f"Created {kind}: {task.title}",
            project_id=project_id,
            agent_id=responder.id,
            details=task.description,
        )
        self.publisher.publish(task_created_event(task))
        self.publisher.publish(LogCreated(info_log))
        log.info("work_item_created", extra=log_extra(task_id=task.id, kind=kind, agent_id=task.assigned_to))

        if task.assigned_to is not None and self.queue_service is not None:
            self.queue_service.enqueue_task_run(task.id, task.assigned_to)
        return task
