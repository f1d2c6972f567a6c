import math
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

MESSAGE_JOB = "process_message_job"
TASK_JOB = "process_task_job"

MESSAGE_QUEUE = "agent-messages"
TASK_QUEUE = "task-processing"

JOB_QUEUES: Dict[str, str] = {MESSAGE_JOB: MESSAGE_QUEUE, TASK_JOB: TASK_QUEUE}

RQ_HANDLER = "agentboard.worker_runtime.rq_job_handler"


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attempts and backoff for one job type. ``delay_for(n)`` is the wait after
    the n-th failed attempt.
    """

    max_attempts: int
    backoff: str = "fixed"  # fixed | exponential
    delay_seconds: float = 1.0

    def delay_for(self, attempt: int) -> float:
        if self.backoff == "exponential":
            return self.delay_seconds * (2 ** max(attempt - 1, 0))
        return self.delay_seconds

    def intervals(self) -> List[int]:
        """Whole-second retry intervals in the form RQ's Retry expects."""
        return [max(1, int(math.ceil(self.delay_for(n)))) for n in range(1, self.max_attempts)]


DEFAULT_RETRY_POLICIES: Dict[str, RetryPolicy] = {
    MESSAGE_JOB: RetryPolicy(max_attempts=3, backoff="exponential", delay_seconds=1.0),
    TASK_JOB: RetryPolicy(max_attempts=2, backoff="fixed", delay_seconds=5.0),
}


def retry_policies_from_config(config: Any) -> Dict[str, RetryPolicy]:
    return {
        MESSAGE_JOB: RetryPolicy(
            max_attempts=config.message_max_attempts,
            backoff="exponential",
            delay_seconds=config.message_backoff_seconds,
        ),
        TASK_JOB: RetryPolicy(
            max_attempts=config.task_max_attempts,
            backoff="fixed",
            delay_seconds=config.task_backoff_seconds,
        ),
    }


class MessageJobPayload(BaseModel):
    """A user or agent said ``message`` in project ``projectId``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    message: str
    agent_id: Optional[int] = Field(default=None, alias="agentId")
    project_id: int = Field(alias="projectId")
    target_agent_id: Optional[int] = Field(default=None, alias="targetAgentId")
    job_id: Optional[str] = Field(default=None, alias="jobId")

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "message": self.message,
            "agentId": self.agent_id,
            "projectId": self.project_id,
        }
        if self.target_agent_id is not None:
            payload["targetAgentId"] = self.target_agent_id
        if self.job_id is not None:
            payload["jobId"] = self.job_id
        return payload


class TaskJobPayload(BaseModel):
    """Agent ``agentId`` should work on task ``taskId``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    task_id: int = Field(alias="taskId")
    agent_id: int = Field(alias="agentId")

    def to_payload(self) -> Dict[str, Any]:
        return {"taskId": self.task_id, "agentId": self.agent_id}


@dataclass
class Job:
    job_id: str
    job_type: str
    payload: Dict[str, Any]
    status: str = "queued"
    queue: str = "default"
    created_at: float = field(default_factory=time.time)
    attempts: int = 0
    max_attempts: int = 1
    started_at: Optional[float] = None
    ended_at: Optional[float] = None
    result: Optional[Any] = None
    error: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None

    def asdict(self) -> Dict[str, Any]:
        return asdict(self)


class BaseQueue(Protocol):
    def policy_for(self, job_type: str) -> RetryPolicy:
        ...

    def enqueue(self, job_type: str, payload: Dict[str, Any], queue: Optional[str] = None) -> Job:
        ...

    def stats(self) -> Dict[str, Any]:
        ...


# Every fakeredis:// queue in a process shares one in-memory server, so the API,
# an inline worker and the pipeline each worker job builds see the same queues
# and event channel.
_FAKE_SERVER = None


def _fake_redis():
    global _FAKE_SERVER
    import fakeredis

    if _FAKE_SERVER is None:
        _FAKE_SERVER = fakeredis.FakeServer()
    return fakeredis.FakeRedis(server=_FAKE_SERVER)


class RedisQueue:
    """
    Redis-backed queue using RQ. Message and task jobs live on separate RQ
    queues, each with its own retry policy; RQ workers run them through
    ``RQ_HANDLER`` and schedule the retries.
    """

    def __init__(self, redis_url: str, policies: Optional[Dict[str, RetryPolicy]] = None) -> None:
        import redis
        from rq import Queue, Retry

        if redis_url.startswith("fakeredis://"):
            self._redis = _fake_redis()
        else:
            self._redis = redis.Redis.from_url(redis_url)

        self._queue_cls = Queue
        self._retry_cls = Retry
        self._queues: Dict[str, Queue] = {}
        self.policies = dict(policies or DEFAULT_RETRY_POLICIES)

    def _get_queue(self, name: str):
        if name not in self._queues:
            self._queues[name] = self._queue_cls(name, connection=self._redis)
        return self._queues[name]

    def policy_for(self, job_type: str) -> RetryPolicy:
        return self.policies.get(job_type, RetryPolicy(max_attempts=1))

    def enqueue(self, job_type: str, payload: Dict[str, Any], queue: Optional[str] = None) -> Job:
        policy = self.policy_for(job_type)
        job = Job(
            job_id=str(uuid.uuid4()),
            job_type=job_type,
            payload=payload,
            queue=queue or JOB_QUEUES.get(job_type, "default"),
            max_attempts=policy.max_attempts,
        )
        q = self._get_queue(job.queue)
        enqueue_kwargs: Dict[str, Any] = {"job_id": job.job_id}
        if policy.max_attempts > 1:
            enqueue_kwargs["retry"] = self._retry_cls(max=policy.max_attempts - 1, interval=policy.intervals())
        # Jobs are processed by scripts/rq_worker.py
        q.enqueue(RQ_HANDLER, job.job_type, job.payload, **enqueue_kwargs)
        return job

    def stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {"backend": "redis-rq"}
        for name in (MESSAGE_QUEUE, TASK_QUEUE):
            self._get_queue(name)
        for name, q in self._queues.items():
            stats[name] = {
                "queued": q.count,
                "started": q.started_job_registry.count,
                "finished": q.finished_job_registry.count,
                "failed": q.failed_job_registry.count,
            }
        return stats

    def get_rq_queue(self, name: str):
        return self._get_queue(name)

    @property
    def redis_connection(self):
        return self._redis


def create_queue(redis_url: Optional[str], policies: Optional[Dict[str, RetryPolicy]] = None) -> RedisQueue:
    if not redis_url:
        raise RuntimeError("Redis queue required; set AGENTBOARD_REDIS_URL (use fakeredis:// for tests)")
    return RedisQueue(redis_url, policies=policies)
