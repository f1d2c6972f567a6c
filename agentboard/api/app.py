import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Request, Response, WebSocket, WebSocketDisconnect

from agentboard import jobs
from agentboard.broadcast import Broadcaster, RedisEventRelay
from agentboard.config import load_config
from agentboard.domain import LogType
from agentboard.events import LogCreated
from agentboard.health import check_db, check_queue
from agentboard.logging import json_logging_from_env, log_context, log_extra, setup_logging
from agentboard.metrics import metrics
from agentboard.pipeline import Pipeline
from agentboard.storage import BaseDatabase
from agentboard.worker_runtime import RQWorkerThread

from . import schemas

logger = setup_logging(json_output=json_logging_from_env())


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = load_config()
    logger.setLevel(config.log_level.upper())
    logger.info("Starting API", extra={"request_id": "-", "env": config.environment})
    queue = jobs.create_queue(config.redis_url, policies=jobs.retry_policies_from_config(config))
    try:
        # Fail fast if Redis is unreachable
        queue.stats()
    except Exception as exc:  # pragma: no cover - runtime guard
        logger.error("Redis unavailable at startup", extra={"error": str(exc)})
        raise
    pipeline = Pipeline.from_config(config, queue=queue)
    broadcaster = Broadcaster()
    relay = RedisEventRelay(queue.redis_connection, config.events_channel, broadcaster)
    relay.start()
    app.state.config = config  # type: ignore[attr-defined]
    app.state.pipeline = pipeline  # type: ignore[attr-defined]
    app.state.db = pipeline.db  # type: ignore[attr-defined]
    app.state.queue = queue  # type: ignore[attr-defined]
    app.state.broadcaster = broadcaster  # type: ignore[attr-defined]
    app.state.worker = None  # type: ignore[attr-defined]
    worker = None
    if config.inline_rq_worker:
        worker = RQWorkerThread(queue)
        app.state.worker = worker  # type: ignore[attr-defined]
        worker.start()
    try:
        yield
    finally:
        if worker:
            worker.stop()
        relay.stop()
        logger.info("Shutting down API", extra={"request_id": "-"})


app = FastAPI(title="agentboard pipeline API", version="0.1.0", lifespan=lifespan)


def get_db(request: Request) -> BaseDatabase:
    return request.app.state.db  # type: ignore[attr-defined]


def get_pipeline(request: Request) -> Pipeline:
    return request.app.state.pipeline  # type: ignore[attr-defined]


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id  # type: ignore[attr-defined]
    metrics.inc_request()
    start = time.time()

    with log_context(request_id=request_id):
        response = await call_next(request)

    duration_s = time.time() - start
    metrics.observe_request(request.url.path, request.method, str(response.status_code), duration_s)
    response.headers["X-Request-ID"] = request_id
    logger.info(
        "request",
        extra={
            **log_extra(request_id=request_id),
            "path": request.url.path,
            "method": request.method,
            "status_code": int(response.status_code),
            "duration_ms": duration_s * 1000.0,
            "client": request.client.host if request.client else None,
        },
    )
    return response


@app.get("/health", response_model=schemas.Health)
def health(request: Request) -> schemas.Health:
    db_status = check_db(request.app.state.db)  # type: ignore[attr-defined]
    queue_status = check_queue(request.app.state.queue)  # type: ignore[attr-defined]
    status = "ok" if db_status.status == "ok" and queue_status.status == "ok" else "degraded"
    return schemas.Health(status=status, db=db_status.status, queue=queue_status.status)


@app.get("/metrics")
def metrics_endpoint():
    data = metrics.to_prometheus()
    return Response(content=data, media_type="text/plain; version=0.0.4")


@app.post("/agents/query", response_model=schemas.AgentQueryAccepted, status_code=202)
def agent_query(
    payload: schemas.AgentQuery,
    db: BaseDatabase = Depends(get_db),
    pipeline: Pipeline = Depends(get_pipeline),
) -> schemas.AgentQueryAccepted:
    """
    Record the user's message and queue the agent reply. The reply and any
    work items arrive over the websocket, tagged with the returned jobId.
    """
    try:
        db.get_project(payload.project_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc.args[0]))
    if payload.target_agent_id is not None:
        try:
            db.get_agent(payload.target_agent_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc.args[0]))
    user_log = db.create_log(
        LogType.CONVERSATION,
        payload.message,
        project_id=payload.project_id,
        target_agent_id=payload.target_agent_id,
    )
    pipeline.publisher.publish(LogCreated(user_log))
    client_job_id = str(uuid.uuid4())
    job = pipeline.enqueue_message(
        payload.message,
        None,
        payload.project_id,
        target_agent_id=payload.target_agent_id,
        job_id=client_job_id,
    )
    return schemas.AgentQueryAccepted(job_id=client_job_id, log_id=user_log.id, job=job.asdict())


@app.post("/tasks/{task_id}/run", response_model=schemas.ActionResponse, status_code=202)
def run_task(
    task_id: int,
    payload: Optional[schemas.TaskRunRequest] = Body(default=None),
    db: BaseDatabase = Depends(get_db),
    pipeline: Pipeline = Depends(get_pipeline),
) -> schemas.ActionResponse:
    try:
        task = db.get_task(task_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc.args[0]))
    agent_id = payload.agent_id if payload and payload.agent_id is not None else task.assigned_to
    if agent_id is None:
        raise HTTPException(status_code=400, detail="Task has no assigned agent")
    try:
        db.get_agent(agent_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc.args[0]))
    job = pipeline.enqueue_task_run(task.id, agent_id)
    return schemas.ActionResponse(message="Task run enqueued.", job=job.asdict())


@app.websocket("/ws")
async def events_ws(websocket: WebSocket) -> None:
    """Push every broadcast envelope to the connected client until it disconnects."""
    broadcaster: Broadcaster = websocket.app.state.broadcaster  # type: ignore[attr-defined]
    loop = asyncio.get_running_loop()
    outbox: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()

    def _deliver(message: Dict[str, Any]) -> None:
        loop.call_soon_threadsafe(outbox.put_nowait, message)

    subscription = broadcaster.subscribe(_deliver, name=f"ws-{uuid.uuid4().hex[:8]}")
    await websocket.accept()

    async def _send() -> None:
        while True:
            message = await outbox.get()
            await websocket.send_json(message)

    async def _receive() -> None:
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            return

    sender = asyncio.create_task(_send())
    receiver = asyncio.create_task(_receive())
    try:
        done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            if task is sender and task.exception() is not None:
                logger.info("websocket_send_failed", extra={"error": str(task.exception())})
    finally:
        broadcaster.unsubscribe(subscription)
