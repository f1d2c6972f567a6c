import json

import fakeredis

from agentboard.broadcast import Broadcaster, RedisBroadcaster, RedisEventRelay
from agentboard.domain import Agent, Log, Project, Task
from agentboard.events import (
    AgentCreated,
    AgentUpdated,
    LogCreated,
    ProcessingState,
    ProcessingStatus,
    ProjectDeleted,
    ProjectUpdated,
    task_created_event,
)


def _log() -> Log:
    return Log(
        id=5,
        project_id=1,
        agent_id=2,
        target_agent_id=None,
        type="conversation",
        message="hello",
        details=None,
        timestamp="2024-05-01T09:15:30+00:00",
    )


def test_envelopes_carry_type_and_camel_case_payload() -> None:
    assert LogCreated(_log()).to_message()["log"]["agentId"] == 2
    assert ProjectDeleted(3).to_message() == {"type": "project_deleted", "projectId": 3}
    status = ProcessingStatus(status=ProcessingState.FAILED, job_id="c-1", error="boom").to_message()
    assert status["type"] == "agent_query_processing"
    assert (status["status"], status["jobId"], status["error"]) == ("failed", "c-1", "boom")
    assert "timestamp" in status


def test_record_events_use_their_own_type_names() -> None:
    stamp = "2024-05-01T09:15:30+00:00"
    agent = Agent(id=2, name="Builder", role="developer", status="online", description=None, created_at=stamp)
    project = Project(
        id=1,
        name="Storefront",
        description=None,
        status="in_progress",
        github_repo="acme/shop",
        github_branch="main",
        created_at=stamp,
        updated_at=stamp,
    )
    feature = Task(
        id=4,
        project_id=1,
        parent_id=None,
        title="Checkout",
        description=None,
        status="todo",
        priority="high",
        assigned_to=None,
        progress=0,
        estimated_time=None,
        is_feature=True,
        created_at=stamp,
        updated_at=stamp,
    )

    assert AgentCreated(agent).to_message()["type"] == "agent_created"
    assert AgentUpdated(agent).to_message()["agent"]["createdAt"] == stamp
    assert ProjectUpdated(project).to_message()["project"]["githubRepo"] == "acme/shop"
    feature_message = task_created_event(feature).to_message()
    assert feature_message["type"] == "feature_created"
    assert feature_message["task"]["isFeature"] is True


def test_publish_reaches_every_subscriber_in_order() -> None:
    broadcaster = Broadcaster()
    seen = []
    broadcaster.subscribe(lambda message: seen.append(("a", message["type"])))
    broadcaster.subscribe(lambda message: seen.append(("b", message["type"])))

    assert broadcaster.publish(ProjectDeleted(1)) == 2
    assert broadcaster.publish(LogCreated(_log())) == 2
    assert seen == [("a", "project_deleted"), ("b", "project_deleted"), ("a", "log_created"), ("b", "log_created")]


def test_failing_subscriber_is_dropped() -> None:
    broadcaster = Broadcaster()
    received = []

    def broken(message):
        raise ConnectionError("socket closed")

    broadcaster.subscribe(broken, name="broken")
    broadcaster.subscribe(received.append)

    assert broadcaster.publish(ProjectDeleted(1)) == 1
    assert broadcaster.subscriber_count == 1
    assert broadcaster.publish(ProjectDeleted(2)) == 1
    assert [m["projectId"] for m in received] == [1, 2]


def test_unsubscribe_stops_delivery() -> None:
    broadcaster = Broadcaster()
    received = []
    subscription = broadcaster.subscribe(received.append)
    broadcaster.unsubscribe(subscription)
    assert broadcaster.publish(ProjectDeleted(1)) == 0
    assert received == []


def test_redis_relay_forwards_envelopes_to_local_subscribers() -> None:
    server = fakeredis.FakeServer()
    connection = fakeredis.FakeRedis(server=server)
    local = Broadcaster()
    received = []
    local.subscribe(received.append)

    relay = RedisEventRelay(connection, "agentboard:test", local)
    relay.subscribe()
    RedisBroadcaster(fakeredis.FakeRedis(server=server), "agentboard:test").publish(LogCreated(_log()))
    connection.publish("agentboard:test", "not json")

    assert relay.relay_pending() == 1
    assert received[0]["type"] == "log_created"
    assert received[0]["log"]["message"] == "hello"
    assert json.loads(json.dumps(received[0])) == received[0]
