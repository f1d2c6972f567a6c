from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from agentboard.jobs import MESSAGE_JOB, TASK_JOB, BaseQueue, Job, MessageJobPayload, TaskJobPayload
from agentboard.logging import get_logger, log_extra

log = get_logger(__name__)


@dataclass
class QueueService:
    """Enqueues the two pipeline job kinds with validated payloads.

    Message jobs go to the ``agent-messages`` queue and task runs to
    ``task-processing``; the retry policy for each is applied by the queue.

    Usage:
        queue_service = QueueService(queue)
        job = queue_service.enqueue_message("create tasks for a login page", None, project_id=1)
        job = queue_service.enqueue_task_run(task_id=7, agent_id=2)
    """

    queue: BaseQueue

    def enqueue_message(
        self,
        message: str,
        agent_id: Optional[int],
        project_id: int,
        target_agent_id: Optional[int] = None,
        job_id: Optional[str] = None,
    ) -> Job:
        payload = MessageJobPayload(
            message=message,
            agent_id=agent_id,
            project_id=project_id,
            target_agent_id=target_agent_id,
            job_id=job_id,
        )
        job = self.queue.enqueue(MESSAGE_JOB, payload.to_payload())
        log.info(
            "message_job_enqueued",
            extra=log_extra(job_id=job.job_id, project_id=project_id, agent_id=agent_id, client_job_id=job_id),
        )
        return job

    def enqueue_task_run(self, task_id: int, agent_id: int) -> Job:
        payload = TaskJobPayload(task_id=task_id, agent_id=agent_id)
        job = self.queue.enqueue(TASK_JOB, payload.to_payload())
        log.info("task_job_enqueued", extra=log_extra(job_id=job.job_id, task_id=task_id, agent_id=agent_id))
        return job
