#!/usr/bin/env python3
"""
Run the agentboard pipeline API (FastAPI + SQLite + Redis).

Environment:
  - AGENTBOARD_API_HOST / AGENTBOARD_API_PORT (default 0.0.0.0:8010)
  - AGENTBOARD_REDIS_URL (required; fakeredis:// with AGENTBOARD_INLINE_RQ_WORKER=true for local dev)
"""

import os
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import uvicorn  # noqa: E402
from agentboard.logging import EXIT_RUNTIME_ERROR, json_logging_from_env, log_extra, setup_logging  # noqa: E402


def main() -> None:
    log_level = os.environ.get("AGENTBOARD_LOG_LEVEL") or "INFO"
    logger = setup_logging(log_level, json_output=json_logging_from_env())
    host = os.environ.get("AGENTBOARD_API_HOST") or "0.0.0.0"
    port = int(os.environ.get("AGENTBOARD_API_PORT") or "8010")
    try:
        # Let the central logging config drive output instead of uvicorn defaults.
        uvicorn.run("agentboard.api.app:app", host=host, port=port, reload=False, log_config=None)
    except Exception as exc:  # pragma: no cover - best effort
        logger.error("API server failed", extra=log_extra(error=str(exc), error_type=exc.__class__.__name__))
        sys.exit(EXIT_RUNTIME_ERROR)


if __name__ == "__main__":
    main()
