from __future__ import annotations

import traceback
from dataclasses import dataclass
from typing import Any, Dict, Optional

import pydantic

from agentboard.broadcast import EventPublisher
from agentboard.context import ContextBuilder
from agentboard.domain import Agent, AgentRole, Log, LogType, Project, Task, TaskStatus
from agentboard.errors import AgentNotFoundError, TaskNotFoundError, ValidationError
from agentboard.events import LogCreated, TaskUpdated
from agentboard.github import RepositoryCommitter
from agentboard.jobs import TaskJobPayload
from agentboard.logging import get_logger, log_context, log_extra
from agentboard.responder import Responder
from agentboard.storage import BaseDatabase

log = get_logger(__name__)

MIDPOINT_PROGRESS = 50
COMMIT_PATH = "README.md"
DEFAULT_BRANCH = "main"

ROLE_PROGRESS_CHECKPOINTS = {
    AgentRole.COORDINATOR: 30,
    AgentRole.DEVELOPER: 50,
    AgentRole.DESIGNER: 60,
    AgentRole.QA: 70,
    AgentRole.TESTER: 90,
}


def parse_task_payload(payload: Dict[str, Any]) -> TaskJobPayload:
    try:
        return TaskJobPayload.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid task job payload: {exc}", metadata={"payload": payload}) from exc


def is_finished(task: Task) -> bool:
    return task.status in TaskStatus.FINISHED and task.progress >= 100


@dataclass
class TaskRunProcessor:
    """Drives one Task Queue job through the simulated execution state machine.

    in_progress -> agent reply -> 50% -> optional repository commit -> completed/100%

    Every transition is stored and broadcast as ``task_updated`` with a
    companion ``log_created``. A task that already finished is not run again;
    the replay is recorded and reported as skipped.

    Any failure inside the run writes an error log on the task's project and
    re-raises so the queue's retry policy applies. Commit failures are the
    exception: they are logged and the run carries on.
    """

    db: BaseDatabase
    publisher: EventPublisher
    responder: Responder
    context_builder: ContextBuilder
    committer: Optional[RepositoryCommitter] = None

    def process(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        request = parse_task_payload(payload)
        task = self._load_task(request.task_id)
        agent = self._load_agent(request.agent_id)

        with log_context(task_id=task.id, agent_id=agent.id, project_id=task.project_id):
            if is_finished(task):
                self._log(LogType.INFO, f"Task #{task.id} ({task.title}) already completed", task.project_id, agent_id=agent.id)
                log.info("task_run_skipped", extra=log_extra(status=task.status, progress=task.progress))
                return {"success": True, "taskId": task.id, "status": TaskStatus.COMPLETED, "skipped": True}

            try:
                self._run(task, agent)
            except Exception as exc:
                self._record_error(task, exc)
                raise
            return {"success": True, "taskId": task.id, "status": TaskStatus.COMPLETED}

    def handle_failure(self, payload: Dict[str, Any], exc: BaseException) -> Dict[str, Any]:
        log.error(
            "task_run_failed",
            extra=log_extra(task_id=payload.get("taskId"), agent_id=payload.get("agentId"), error=str(exc)),
        )
        return {"success": False, "error": str(exc)}

    def _run(self, task: Task, agent: Agent) -> None:
        task = self._transition(task, TaskStatus.IN_PROGRESS)
        self._log(LogType.INFO, f"{agent.name} started working on task: {task.title}", task.project_id, agent_id=agent.id)

        context = self.context_builder.build_for_task(task)
        prompt = f"I need to work on the task: {task.title}. {task.description or ''}".rstrip()
        reply = self.responder.respond(agent, prompt, context)
        self._log(LogType.CONVERSATION, reply, task.project_id, agent_id=agent.id)

        task = self.db.update_task_progress(task.id, MIDPOINT_PROGRESS)
        self.publisher.publish(TaskUpdated(task))
        self._log(LogType.INFO, f"{agent.name} is {MIDPOINT_PROGRESS}% through task: {task.title}", task.project_id, agent_id=agent.id)

        if agent.role == AgentRole.DEVELOPER and context.project is not None:
            self._commit(task, agent, context.project)

        task = self._transition(task, TaskStatus.COMPLETED, progress=100)
        self._log(LogType.INFO, f"{agent.name} completed task: {task.title}", task.project_id, agent_id=agent.id)
        log.info("task_run_completed", extra=log_extra(task_id=task.id))

    def _commit(self, task: Task, agent: Agent, project: Project) -> None:
        repository = project.repository
        if repository is None:
            return
        if self.committer is None:
            log.info("repository_commit_skipped", extra=log_extra(repo=project.github_repo, reason="no committer configured"))
            return
        owner, repo = repository
        branch = project.github_branch or DEFAULT_BRANCH
        message = f"Implement {task.title} [Task #{task.id}]"
        content = f"# Task Implementation\n\n## {task.title}\n\n{task.description or 'No description provided'}\n"
        try:
            sha = self.committer.commit(owner, repo, COMMIT_PATH, content, message, branch)
        except Exception as exc:
            log.warning("repository_commit_failed", extra=log_extra(repo=project.github_repo, error=str(exc)))
            self._log(
                LogType.ERROR,
                f"Failed to commit task #{task.id} to {owner}/{repo}: {exc}",
                task.project_id,
                agent_id=agent.id,
            )
            return
        self._log(
            LogType.INFO,
            f"Committed changes for task: {task.title}",
            task.project_id,
            agent_id=agent.id,
            details=f"{message} (branch {branch}, commit {sha})" if sha else f"{message} (branch {branch})",
        )

    def _transition(self, task: Task, status: str, progress: Optional[int] = None) -> Task:
        updated = self.db.update_task_status(task.id, status, progress=progress)
        self.publisher.publish(TaskUpdated(updated))
        return updated

    def _log(
        self,
        type: str,
        message: str,
        project_id: Optional[int],
        agent_id: Optional[int] = None,
        details: Optional[str] = None,
    ) -> Log:
        entry = self.db.create_log(type, message, project_id=project_id, agent_id=agent_id, details=details)
        self.publisher.publish(LogCreated(entry))
        return entry

    def _record_error(self, task: Task, exc: Exception) -> None:
        try:
            self._log(
                LogType.ERROR,
                f"Error processing task #{task.id}: {exc}",
                task.project_id,
                details=traceback.format_exc(),
            )
        except Exception:
            log.exception("task_run_error_log_failed", extra=log_extra(task_id=task.id))

    def _load_task(self, task_id: int) -> Task:
        try:
            return self.db.get_task(task_id)
        except KeyError as exc:
            raise TaskNotFoundError(f"Task {task_id} not found", metadata={"task_id": task_id}) from exc

    def _load_agent(self, agent_id: int) -> Agent:
        try:
            return self.db.get_agent(agent_id)
        except KeyError as exc:
            raise AgentNotFoundError(f"Agent {agent_id} not found", metadata={"agent_id": agent_id}) from exc


@dataclass
class AssignmentShortcut:
    """Immediate, synchronous reaction of an agent to a task assigned to it.

    Used by the CRUD layer when a task is created or moved to in_progress
    with an assignee. The agent's reply is stored as a conversation log and
    progress is raised to the role checkpoint when that is higher than the
    current value. Status is never touched and progress never goes down.
    Errors are logged and reported as ``None``.
    """

    db: BaseDatabase
    publisher: EventPublisher
    responder: Responder
    context_builder: ContextBuilder

    def process(self, task: Task) -> Optional[Log]:
        if task.assigned_to is None:
            log.info("assignment_shortcut_unassigned", extra=log_extra(task_id=task.id))
            return None
        try:
            agent = self.db.get_agent(task.assigned_to)
            context = self.context_builder.build_for_task(task)
            reply = self.responder.respond(agent, self._prompt(task, agent, context.project), context)
            entry = self.db.create_log(
                LogType.CONVERSATION,
                reply,
                project_id=task.project_id,
                agent_id=agent.id,
                details=f"Automatic response to task #{task.id}: {task.title}",
            )
            self.publisher.publish(LogCreated(entry))

            checkpoint = ROLE_PROGRESS_CHECKPOINTS.get(agent.role)
            current = self.db.get_task(task.id)
            if checkpoint is not None and checkpoint > (current.progress or 0):
                updated = self.db.update_task_progress(task.id, checkpoint)
                self.publisher.publish(TaskUpdated(updated))
            return entry
        except Exception as exc:
            log.exception(
                "assignment_shortcut_failed",
                extra=log_extra(task_id=task.id, agent_id=task.assigned_to, error=str(exc)),
            )
            return None

    @staticmethod
    def _prompt(task: Task, agent: Agent, project: Optional[Project]) -> str:
        lines = [
            "You are assigned to work on the following task:",
            "",
            f"Task: {task.title}",
            f"Description: {task.description or 'No description provided'}",
            f"Priority: {task.priority}",
        ]
        if project is not None:
            lines.append(f"Project: {project.name}")
            lines.append(f"Project Description: {project.description or 'No description provided'}")
        lines.append("")
        lines.append(
            f"Please provide your response to this task based on your role as the {agent.name} ({agent.role}). "
            "Include any questions, suggestions, or concerns you have."
        )
        return "\n".join(lines)
