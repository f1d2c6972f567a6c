from unittest.mock import Mock

import pytest

from agentboard.context import ContextBuilder, ContextBundle, format_conversation_history
from agentboard.domain import Agent, AgentRole, Log, LogType
from agentboard.errors import ResponderError
from agentboard.responder import EMPTY_REPLY, OpenAIResponder, build_system_prompt


def _log(log_id, message, agent_id=None, type=LogType.CONVERSATION, timestamp="2024-05-01T09:15:30.000001+00:00"):
    return Log(
        id=log_id,
        project_id=1,
        agent_id=agent_id,
        target_agent_id=None,
        type=type,
        message=message,
        details=None,
        timestamp=timestamp,
    )


def test_history_renders_speakers_and_times() -> None:
    agents = [Agent(id=1, name="Orchestrator", role=AgentRole.COORDINATOR, status="online", description=None, created_at="")]
    logs = [
        _log(1, "Plan the shop"),
        _log(2, "ignored", type=LogType.INFO),
        _log(3, "On it", agent_id=1),
        _log(4, "Who am I?", agent_id=42, timestamp=None),
        _log(5, "Broken clock", timestamp="yesterday"),
    ]
    rendered = format_conversation_history(logs, agents)
    assert rendered.split("\n\n") == [
        "[1] 09:15:30 - User: Plan the shop",
        "[2] 09:15:30 - Agent Orchestrator (coordinator): On it",
        "[3] Unknown time - Agent #42: Who am I?",
        "[4] Unknown time - User: Broken clock",
    ]


def test_history_keeps_most_recent_entries() -> None:
    logs = [_log(i, f"message {i}") for i in range(1, 16)]
    rendered = format_conversation_history(logs, [], limit=10)
    lines = rendered.split("\n\n")
    assert len(lines) == 10
    assert lines[0].endswith("message 6")
    assert lines[-1].startswith("[10]")
    assert format_conversation_history([], []) == ""


def test_build_for_project_collects_roster_tasks_and_history(db, seeded) -> None:
    project = seeded["project"]
    db.create_project("Other")
    db.create_task(project.id, "Cart")
    db.create_log(LogType.CONVERSATION, "hello", project_id=project.id)

    bundle = ContextBuilder(db).build_for_project(project.id)
    assert bundle.project == project
    assert [t.title for t in bundle.related_tasks] == ["Cart"]
    assert len(bundle.agents) == 3
    assert len(bundle.all_projects) == 2
    assert "User: hello" in bundle.conversation_history


def test_build_for_task_includes_parent_feature(db, seeded) -> None:
    project = seeded["project"]
    feature = db.create_feature(project.id, "Checkout")
    task = db.create_task(project.id, "Pay", parent_id=feature.id)

    bundle = ContextBuilder(db).build_for_task(task)
    assert bundle.task == task
    assert bundle.parent_task == feature
    assert bundle.project == project
    assert {t.id for t in bundle.related_tasks} == {feature.id, task.id}


def test_system_prompt_marks_current_project(db, seeded) -> None:
    project = seeded["project"]
    db.create_project("Other")
    bundle = ContextBuilder(db).build_for_project(project.id)
    prompt = build_system_prompt(seeded["coordinator"], bundle)
    assert "AI Coordinator Agent named Orchestrator" in prompt
    assert "1. Breaking down project requirements" in prompt
    assert "This project currently has no tasks defined." in prompt
    assert f"Project #{project.id}: Storefront (Status: planning, CURRENT PROJECT)" in prompt


def test_system_prompt_lists_agent_roster(db, seeded) -> None:
    developer = seeded["developer"]
    bundle = ContextBuilder(db).build_for_project(seeded["project"].id)
    prompt = build_system_prompt(seeded["coordinator"], bundle)
    assert f"- Agent #{developer.id}: Builder (developer)" in prompt
    assert f"- Agent #{seeded['qa'].id}: Debugger (qa)" in prompt


def test_unknown_role_falls_back_to_description(db, seeded) -> None:
    agent = db.create_agent("Scribe", "writer", description="You write release notes.")
    prompt = build_system_prompt(agent, ContextBuilder(db).build_for_project(seeded["project"].id))
    assert prompt.startswith("You are an AI Agent named Scribe. You write release notes.")


def test_openai_responder_handles_empty_and_failed_calls(seeded) -> None:
    client = Mock()
    client.chat.completions.create.return_value = Mock(choices=[Mock(message=Mock(content=None))])
    responder = OpenAIResponder(client=client)
    agent = seeded["coordinator"]

    assert responder.respond(agent, "hi", ContextBundle()) == EMPTY_REPLY
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["temperature"] == 0.7
    assert kwargs["max_tokens"] == 1500
    assert kwargs["messages"][1] == {"role": "user", "content": "hi"}

    client.chat.completions.create.side_effect = RuntimeError("timeout")
    with pytest.raises(ResponderError) as excinfo:
        responder.respond(agent, "hi", ContextBundle())
    assert excinfo.value.retryable is True
