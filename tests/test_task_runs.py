import pytest

from agentboard.domain import AgentRole, LogType, TaskStatus
from agentboard.errors import AgentNotFoundError, RepositoryCommitError, ResponderError, TaskNotFoundError

from conftest import FakeCommitter, FakeResponder


def test_task_run_walks_the_state_machine(make_pipeline, db, seeded, publisher) -> None:
    project = seeded["project"]
    qa = seeded["qa"]
    task = db.create_task(project.id, "Review checkout", description="Look for edge cases", assigned_to=qa.id)
    responder = FakeResponder("Reviewed.")

    result = make_pipeline(responder=responder).task_runs.process({"taskId": task.id, "agentId": qa.id})

    assert result == {"success": True, "taskId": task.id, "status": "completed"}
    final = db.get_task(task.id)
    assert (final.status, final.progress) == (TaskStatus.COMPLETED, 100)
    assert responder.calls[0]["prompt"] == "I need to work on the task: Review checkout. Look for edge cases"
    assert responder.calls[0]["context"].task.id == task.id

    updates = [(m["task"]["status"], m["task"]["progress"]) for m in publisher.messages if m["type"] == "task_updated"]
    assert updates == [("in_progress", 0), ("in_progress", 50), ("completed", 100)]
    messages = [log.message for log in db.list_logs_by_project(project.id)]
    assert messages[0] == "Debugger started working on task: Review checkout"
    assert messages[1] == "Reviewed."
    assert messages[-1] == "Debugger completed task: Review checkout"


def test_developer_on_unbound_project_completes_without_committer(make_pipeline, db, seeded) -> None:
    developer = seeded["developer"]
    task = db.create_task(seeded["project"].id, "Build cart", assigned_to=developer.id)
    result = make_pipeline().task_runs.process({"taskId": task.id, "agentId": developer.id})
    assert result["success"] is True
    assert db.get_task(task.id).status == TaskStatus.COMPLETED


def test_developer_commits_to_bound_repository(make_pipeline, db, seeded) -> None:
    project = db.create_project("Bound", github_repo="acme/shop", github_branch="develop")
    developer = seeded["developer"]
    task = db.create_task(project.id, "Add search", description="Full text", assigned_to=developer.id)
    committer = FakeCommitter()

    make_pipeline(committer=committer).task_runs.process({"taskId": task.id, "agentId": developer.id})

    assert committer.calls == [
        {
            "owner": "acme",
            "repo": "shop",
            "path": "README.md",
            "content": "# Task Implementation\n\n## Add search\n\nFull text\n",
            "message": f"Implement Add search [Task #{task.id}]",
            "branch": "develop",
        }
    ]
    commit_log = [log for log in db.list_logs_by_project(project.id) if log.message.startswith("Committed")][0]
    assert f"Implement Add search [Task #{task.id}]" in commit_log.details
    assert "develop" in commit_log.details


def test_commit_failure_is_logged_and_run_continues(make_pipeline, db, seeded) -> None:
    project = db.create_project("Bound", github_repo="acme/shop")
    developer = seeded["developer"]
    task = db.create_task(project.id, "Add search", assigned_to=developer.id)
    committer = FakeCommitter(error=RepositoryCommitError("403 forbidden"))

    result = make_pipeline(committer=committer).task_runs.process({"taskId": task.id, "agentId": developer.id})

    assert result["success"] is True
    assert committer.calls[0]["branch"] == "main"
    assert db.get_task(task.id).status == TaskStatus.COMPLETED
    errors = [log for log in db.list_logs_by_project(project.id) if log.type == LogType.ERROR]
    assert len(errors) == 1 and "403 forbidden" in errors[0].message


def test_replay_of_completed_task_is_a_no_op(make_pipeline, db, seeded, publisher) -> None:
    developer = seeded["developer"]
    project = db.create_project("Bound", github_repo="acme/shop")
    task = db.create_task(project.id, "Done already", assigned_to=developer.id)
    db.update_task_status(task.id, TaskStatus.COMPLETED, progress=100)
    responder = FakeResponder()
    committer = FakeCommitter()

    result = make_pipeline(responder=responder, committer=committer).task_runs.process(
        {"taskId": task.id, "agentId": developer.id}
    )

    assert result["skipped"] is True
    assert responder.calls == []
    assert committer.calls == []
    final = db.get_task(task.id)
    assert (final.status, final.progress) == (TaskStatus.COMPLETED, 100)
    assert "task_updated" not in publisher.types()
    logs = db.list_logs_by_project(project.id)
    assert len(logs) == 1 and logs[0].message.endswith("already completed")


def test_failure_writes_error_log_and_propagates(make_pipeline, db, seeded) -> None:
    project = seeded["project"]
    qa = seeded["qa"]
    task = db.create_task(project.id, "Flaky", assigned_to=qa.id)
    pipeline = make_pipeline(responder=FakeResponder(error=ResponderError("model timeout")))

    with pytest.raises(ResponderError):
        pipeline.task_runs.process({"taskId": task.id, "agentId": qa.id})

    errors = [log for log in db.list_logs_by_project(project.id) if log.type == LogType.ERROR]
    assert errors[0].message == f"Error processing task #{task.id}: model timeout"
    assert errors[0].details
    assert db.get_task(task.id).status == TaskStatus.IN_PROGRESS


def test_missing_task_or_agent_is_permanent(make_pipeline, db, seeded) -> None:
    pipeline = make_pipeline()
    with pytest.raises(TaskNotFoundError):
        pipeline.task_runs.process({"taskId": 999, "agentId": seeded["qa"].id})
    task = db.create_task(seeded["project"].id, "Orphaned")
    with pytest.raises(AgentNotFoundError) as excinfo:
        pipeline.task_runs.process({"taskId": task.id, "agentId": 999})
    assert excinfo.value.retryable is False


def test_assignment_shortcut_raises_progress_to_role_checkpoint(make_pipeline, db, seeded, publisher) -> None:
    project = seeded["project"]
    designer = db.create_agent("UX Designer", AgentRole.DESIGNER)
    task = db.create_task(project.id, "Wireframes", assigned_to=designer.id, status=TaskStatus.IN_PROGRESS)
    responder = FakeResponder("Starting on wireframes.")

    entry = make_pipeline(responder=responder).auto_process_assignment(task)

    assert entry is not None
    assert entry.type == LogType.CONVERSATION
    assert entry.details == f"Automatic response to task #{task.id}: Wireframes"
    updated = db.get_task(task.id)
    assert (updated.status, updated.progress) == (TaskStatus.IN_PROGRESS, 60)
    assert "Task: Wireframes" in responder.calls[0]["prompt"]
    assert "Project: Storefront" in responder.calls[0]["prompt"]
    assert publisher.types() == ["log_created", "task_updated"]


def test_assignment_shortcut_never_lowers_progress(make_pipeline, db, seeded, publisher) -> None:
    coordinator = seeded["coordinator"]
    task = db.create_task(seeded["project"].id, "Plan", assigned_to=coordinator.id)
    db.update_task_progress(task.id, 80)

    make_pipeline().auto_process_assignment(db.get_task(task.id))

    assert db.get_task(task.id).progress == 80
    assert publisher.types() == ["log_created"]


def test_assignment_shortcut_swallows_errors(make_pipeline, db, seeded) -> None:
    task = db.create_task(seeded["project"].id, "Plan", assigned_to=seeded["coordinator"].id)
    pipeline = make_pipeline(responder=FakeResponder(error=ResponderError("down")))
    assert pipeline.auto_process_assignment(task) is None
    assert db.get_task(task.id).progress == 0
    unassigned = db.create_task(seeded["project"].id, "Nobody")
    assert pipeline.auto_process_assignment(unassigned) is None
