import threading
import time
from contextlib import nullcontext
from typing import Any, Dict

from agentboard.config import load_config
from agentboard.errors import AgentboardError
from agentboard.jobs import MESSAGE_QUEUE, TASK_QUEUE, Job, RedisQueue, RetryPolicy
from agentboard.logging import get_logger, json_logging_from_env, log_context, log_extra, setup_logging
from agentboard.metrics import metrics
from agentboard.pipeline import Pipeline

log = get_logger("agentboard.worker")


def process_job(job: Job, pipeline: Pipeline) -> Dict[str, Any]:
    """Dispatch a single job to its processor and return the processor's result."""
    context = log_extra(
        job_id=job.job_id,
        project_id=job.payload.get("projectId"),
        task_id=job.payload.get("taskId"),
        agent_id=job.payload.get("agentId"),
        job_type=job.job_type,
        attempt=job.attempts + 1,
    )
    log.info("job_start", extra=context)
    with log_context(job_id=job.job_id):
        result = pipeline.process(job)
    log.info("job_end", extra=context)
    return result


def run_job_with_handling(job: Job, pipeline: Pipeline) -> Job:
    """
    Run a job and settle its outcome.

    Retryable failures with attempts left are re-raised so RQ schedules the
    retry from the job's ``Retry``. Permanent failures and the last attempt
    call the pipeline's final-failure hook and leave its result on
    ``job.result`` without raising.
    """
    start = time.time()
    try:
        result = process_job(job, pipeline)
    except Exception as exc:
        job.attempts += 1
        retryable = True
        error_category = None
        if isinstance(exc, AgentboardError):
            retryable = exc.retryable
            error_category = exc.category
        context = log_extra(
            job_id=job.job_id,
            job_type=job.job_type,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            error=str(exc),
            error_type=exc.__class__.__name__,
            error_category=error_category,
        )
        if retryable and job.attempts < job.max_attempts:
            metrics.inc_job(job.job_type, "retried")
            metrics.observe_job_duration(job.job_type, "retried", time.time() - start)
            log.warning("Job failed; leaving retry to the queue", extra=context)
            raise
        job.status = "failed"
        job.ended_at = time.time()
        job.error = str(exc)
        log.error("Job failed permanently", extra=context)
        job.result = pipeline.on_job_failed(job, exc)
        metrics.inc_job(job.job_type, "failed")
        metrics.observe_job_duration(job.job_type, "failed", job.ended_at - start)
        return job
    job.status = "finished"
    job.ended_at = time.time()
    job.result = result
    pipeline.on_job_succeeded(job, result)
    metrics.inc_job(job.job_type, "completed")
    metrics.observe_job_duration(job.job_type, "completed", job.ended_at - start)
    return job


def _attempts_so_far(rq_job: Any, policy: RetryPolicy) -> int:
    retries_left = getattr(rq_job, "retries_left", None)
    if retries_left is None:
        return 0
    return max(0, policy.max_attempts - 1 - int(retries_left))


def rq_job_handler(job_type: str, payload: dict) -> Dict[str, Any]:
    """
    Entry point for RQ workers. Builds the pipeline from env config and
    processes a single job.
    """
    from rq import get_current_job

    config = load_config()
    setup_logging(config.log_level, json_output=json_logging_from_env())
    pipeline = Pipeline.from_config(config)
    policy = pipeline.queue.policy_for(job_type)  # type: ignore[union-attr]
    rq_job = get_current_job()
    job = Job(
        job_id=rq_job.id if rq_job is not None else str(payload.get("jobId", "")),
        job_type=job_type,
        payload=payload,
        attempts=_attempts_so_far(rq_job, policy),
        max_attempts=policy.max_attempts,
    )
    run_job_with_handling(job, pipeline)
    return job.result or {}


class RQWorkerThread:
    """
    Lightweight RQ SimpleWorker loop over both pipeline queues, for dev and
    tests with fakeredis.
    """

    def __init__(self, redis_queue: RedisQueue, poll_interval: float = 0.25) -> None:
        from rq import SimpleWorker

        self.redis_queue = redis_queue
        self.poll_interval = poll_interval
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, daemon=True)
        self._worker_cls = SimpleWorker

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        self._thread.join(timeout=2)

    def _loop(self) -> None:
        queues = [self.redis_queue.get_rq_queue(MESSAGE_QUEUE), self.redis_queue.get_rq_queue(TASK_QUEUE)]
        # Re-create worker each burst to avoid stale state in fakeredis and sidestep signal handling.
        while not self._stop.is_set():
            worker = self._worker_cls(queues, connection=self.redis_queue.redis_connection)
            try:
                # Signal handlers cannot be installed from background threads.
                worker._install_signal_handlers = lambda: None  # type: ignore[attr-defined]
                worker.death_penalty_class = lambda *args, **kwargs: nullcontext()  # type: ignore[assignment]
                worker.work(burst=True, with_scheduler=True)
            except Exception as exc:  # pragma: no cover - best effort
                log.warning("RQ worker loop error", extra={"error": str(exc)})
            self._stop.wait(self.poll_interval)
