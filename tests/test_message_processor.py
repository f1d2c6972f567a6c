"""
Message Queue job scenarios: reply, extraction, fan-out and failure paths.
"""

import threading

import pytest

from agentboard.domain import LogType, TaskPriority, TaskStatus
from agentboard.errors import AgentNotFoundError, ProjectNotFoundError, ValidationError
from agentboard.intent import ExtractionPolicy
from agentboard.jobs import MESSAGE_JOB, TASK_JOB, Job

from conftest import FakeCompletion, FakeResponder

LOGIN_TASKS = {
    "tasks": [
        {"title": "Login feature", "isFeature": True, "priority": "high"},
        {"title": "Login form", "description": "Email and password", "priority": "urgent", "projectId": 99},
        {"title": "Session handling", "status": "in_progress", "assignedTo": 2},
    ]
}


def _payload(project_id, **extra):
    return {"message": "create tasks for a login page", "agentId": None, "projectId": project_id, **extra}


def test_login_page_scenario_creates_tasks_and_broadcasts(make_pipeline, db, seeded, publisher, queue) -> None:
    project = seeded["project"]
    developer = seeded["developer"]
    responder = FakeResponder("1. Login form\n2. Session handling")
    completion = FakeCompletion(LOGIN_TASKS)
    pipeline = make_pipeline(responder=responder, completion=completion)

    result = pipeline.messages.process(_payload(project.id))

    assert result["success"] is True
    assert len(result["createdTaskIds"]) == 3
    reply = [log for log in db.list_logs_by_project(project.id) if log.id == result["logId"]][0]
    assert reply.type == LogType.CONVERSATION
    assert reply.agent_id == seeded["coordinator"].id
    assert reply.target_agent_id is None

    types = publisher.types()
    assert types[0] == "log_created"
    assert types[1:] == ["feature_created", "log_created", "task_created", "log_created", "task_created", "log_created"]

    tasks = [db.get_task(task_id) for task_id in result["createdTaskIds"]]
    assert all(task.project_id == project.id for task in tasks)
    assert all(task.priority in TaskPriority.ALL for task in tasks)
    assert tasks[0].is_feature is True
    assert tasks[1].status == TaskStatus.TODO
    assert tasks[1].priority == TaskPriority.MEDIUM
    assert tasks[2].status == TaskStatus.IN_PROGRESS
    assert tasks[2].assigned_to == developer.id

    info_logs = [log for log in db.list_logs_by_project(project.id) if log.type == LogType.INFO]
    assert [log.message for log in info_logs] == [
        "Created feature: Login feature",
        "Created task: Login form",
        "Created task: Session handling",
    ]
    assert info_logs[1].details == "Email and password"
    assert {log.agent_id for log in info_logs} == {seeded["coordinator"].id}
    assert f"{developer.id}=Builder (developer)" in completion.system_prompts[0]

    queue.enqueue.assert_called_once_with(TASK_JOB, {"taskId": tasks[2].id, "agentId": developer.id})
    prompt_context = responder.calls[0]["context"]
    assert prompt_context.project == project


def test_target_agent_replies_and_reply_is_addressed_to_sender(make_pipeline, db, seeded) -> None:
    project = seeded["project"]
    pipeline = make_pipeline()
    result = pipeline.messages.process(
        {"message": "status?", "agentId": seeded["developer"].id, "projectId": project.id, "targetAgentId": seeded["qa"].id}
    )
    reply = db.list_conversation_logs(project.id)[-1]
    assert reply.id == result["logId"]
    assert reply.agent_id == seeded["qa"].id
    assert reply.target_agent_id == seeded["developer"].id


def test_missing_coordinator_is_permanent(make_pipeline, db, publisher) -> None:
    project = db.create_project("Lonely")
    responder = FakeResponder()
    pipeline = make_pipeline(responder=responder)

    with pytest.raises(AgentNotFoundError) as excinfo:
        pipeline.messages.process(_payload(project.id))
    assert excinfo.value.retryable is False
    assert responder.calls == []
    assert db.list_logs_by_project(project.id) == []


def test_unknown_target_agent_and_project_are_permanent(make_pipeline, seeded) -> None:
    pipeline = make_pipeline()
    with pytest.raises(AgentNotFoundError):
        pipeline.messages.process(_payload(seeded["project"].id, targetAgentId=404))
    with pytest.raises(ProjectNotFoundError):
        pipeline.messages.process(_payload(404))


def test_invalid_payload_is_a_validation_error(make_pipeline) -> None:
    with pytest.raises(ValidationError):
        make_pipeline().messages.process({"message": "hi"})


def test_non_json_extraction_still_succeeds(make_pipeline, db, seeded, publisher) -> None:
    pipeline = make_pipeline(completion=FakeCompletion("Sorry, I cannot do JSON today"))
    result = pipeline.messages.process(_payload(seeded["project"].id))
    assert result == {"success": True, "logId": result["logId"], "createdTaskIds": []}
    assert publisher.types() == ["log_created"]
    assert db.list_tasks_by_project(seeded["project"].id) == []


def test_bad_parent_skips_only_that_item(make_pipeline, db, seeded) -> None:
    project = seeded["project"]
    plain = db.create_task(project.id, "Not a feature")
    completion = FakeCompletion(
        {"tasks": [{"title": "Child", "parentId": plain.id}, {"title": "Sibling"}]}
    )
    result = make_pipeline(completion=completion).messages.process(_payload(project.id))
    assert [db.get_task(i).title for i in result["createdTaskIds"]] == ["Sibling"]


def test_unknown_assignee_is_dropped(make_pipeline, db, seeded, queue) -> None:
    completion = FakeCompletion({"tasks": [{"title": "Ghost work", "assignedTo": 77}]})
    result = make_pipeline(completion=completion).messages.process(_payload(seeded["project"].id))
    assert db.get_task(result["createdTaskIds"][0]).assigned_to is None
    queue.enqueue.assert_not_called()


def test_intent_policy_skips_small_talk(make_pipeline, seeded) -> None:
    completion = FakeCompletion(LOGIN_TASKS)
    pipeline = make_pipeline(
        responder=FakeResponder("Happy to help."),
        completion=completion,
        policy=ExtractionPolicy.INTENT,
    )
    result = pipeline.messages.process({"message": "hello there", "agentId": None, "projectId": seeded["project"].id})
    assert result["createdTaskIds"] == []
    assert completion.calls == []


def test_processing_status_events_bracket_the_job(make_pipeline, seeded, publisher) -> None:
    pipeline = make_pipeline()
    pipeline.messages.process(_payload(seeded["project"].id, jobId="client-1"))
    statuses = [m for m in publisher.messages if m["type"] == "agent_query_processing"]
    assert [(m["status"], m["jobId"]) for m in statuses] == [("started", "client-1"), ("completed", "client-1")]
    assert publisher.types()[0] == "agent_query_processing"
    assert publisher.types()[-1] == "agent_query_processing"


def test_final_failure_logs_error_and_publishes_failed_status(make_pipeline, db, seeded, publisher) -> None:
    project = seeded["project"]
    pipeline = make_pipeline()
    job = Job(job_id="rq-1", job_type=MESSAGE_JOB, payload=_payload(project.id, jobId="client-2"))

    result = pipeline.on_job_failed(job, RuntimeError("model unavailable"))

    assert result == {"success": False, "error": "model unavailable"}
    errors = [log for log in db.list_logs_by_project(project.id) if log.type == LogType.ERROR]
    assert len(errors) == 1
    assert "model unavailable" in errors[0].message
    failed = publisher.messages[-1]
    assert (failed["type"], failed["status"], failed["error"]) == ("agent_query_processing", "failed", "model unavailable")


def test_concurrent_jobs_for_one_project_keep_every_log(make_pipeline, db, seeded) -> None:
    project = seeded["project"]
    pipeline = make_pipeline(completion=FakeCompletion({"tasks": [{"title": "Shared work"}]}))
    results = []
    errors = []

    def run(text):
        try:
            results.append(pipeline.messages.process({"message": text, "agentId": None, "projectId": project.id}))
        except Exception as exc:  # pragma: no cover - surfaced by the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=run, args=(f"message {n}",)) for n in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    logs = db.list_logs_by_project(project.id)
    assert {r["logId"] for r in results} <= {log.id for log in logs}
    assert len(logs) == 4
    assert [log.timestamp for log in logs] == sorted(log.timestamp for log in logs)
    assert len(db.list_tasks_by_project(project.id)) == 2
