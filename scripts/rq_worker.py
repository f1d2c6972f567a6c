#!/usr/bin/env python3
"""
Run an RQ worker to process agentboard message and task jobs from Redis.

Environment:
  - AGENTBOARD_REDIS_URL (required)
  - AGENTBOARD_DB_PATH (SQLite store shared with the API)
  - OPENAI_API_KEY (agent replies and work-item extraction)
"""

import os
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from rq import Queue, Worker  # type: ignore
import redis  # type: ignore

from agentboard.config import load_config  # noqa: E402
from agentboard.errors import ConfigError  # noqa: E402
from agentboard.jobs import MESSAGE_QUEUE, TASK_QUEUE  # noqa: E402
from agentboard.logging import EXIT_CONFIG_ERROR, EXIT_RUNTIME_ERROR, json_logging_from_env, log_extra, setup_logging  # noqa: E402


def main() -> None:
    log_level = os.environ.get("AGENTBOARD_LOG_LEVEL") or "INFO"
    logger = setup_logging(log_level, json_output=json_logging_from_env())
    try:
        config = load_config()
    except ConfigError as exc:
        logger.error("[rq-worker] invalid configuration", extra=log_extra(error=str(exc)))
        sys.exit(EXIT_CONFIG_ERROR)
    if not config.redis_url:
        logger.error("AGENTBOARD_REDIS_URL is required for RQ worker.")
        sys.exit(EXIT_CONFIG_ERROR)
    redis_conn = redis.from_url(config.redis_url)
    # Message replies are user-facing; drain them before task runs.
    queues = [Queue(MESSAGE_QUEUE, connection=redis_conn), Queue(TASK_QUEUE, connection=redis_conn)]
    worker = Worker(queues, connection=redis_conn)
    logger.info("[rq-worker] Listening", extra={"redis": config.redis_url, "queues": [q.name for q in queues]})
    try:
        worker.work(with_scheduler=True)
    except Exception as exc:  # pragma: no cover - runtime guard
        logger.error("[rq-worker] fatal error", extra=log_extra(error=str(exc), error_type=exc.__class__.__name__))
        sys.exit(EXIT_RUNTIME_ERROR)


if __name__ == "__main__":
    main()
