"""
Integration tests for flow traversal: start, pause, resume and completion.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from chatflow.flow.context import create_context
from chatflow.flow.engine import FlowEngine
from chatflow.models import FlowStatus, IncomingMessage, SessionStatus
from chatflow.services.job_runner import JobRunner


def send(node_id, text):
    return {"id": node_id, "type": "sendMessage", "data": {"messages": [{"text": text}]}}


TRIGGER = {"id": "trigger", "type": "trigger", "data": {"triggerType": "keyword"}}


@pytest.fixture
def runner(repository, engine) -> JobRunner:
    return JobRunner(repository, engine)


def make_due(repository):
    """Move every pending job into the past."""
    for job_id, job in list(repository.jobs.items()):
        repository.jobs[job_id] = job.model_copy(
            update={"run_at": datetime.now(timezone.utc) - timedelta(seconds=1)}
        )


class TestStart:
    """Tests for starting a flow."""

    @pytest.mark.asyncio
    async def test_first_step_is_trigger_target(self, engine, repository, context):
        """The node after the trigger is executed first."""
        repository.add_flow("flow-1", [TRIGGER, send("hello", "Hi")], [("trigger", "hello")])

        session = await engine.start(context)

        executed = repository.events_of("node_executed")
        assert executed[0].metadata == {"nodeId": "hello", "nodeKind": "sendMessage"}
        assert repository.events_of("flow_started")[0].metadata == {"triggerId": "trigger-1"}
        assert session.status == SessionStatus.COMPLETED
        assert len(repository.events_of("flow_completed")) == 1

    @pytest.mark.asyncio
    async def test_unpublished_flow_is_noop(self, engine, repository, context):
        repository.add_flow("flow-1", [TRIGGER, send("hello", "Hi")], [("trigger", "hello")], status=FlowStatus.DRAFT)

        assert await engine.start(context) is None
        assert repository.sessions == {}

    @pytest.mark.asyncio
    async def test_trigger_without_edge_is_noop(self, engine, repository, context):
        repository.add_flow("flow-1", [TRIGGER, send("hello", "Hi")], [])
        assert await engine.start(context) is None
        assert repository.sessions == {}

    @pytest.mark.asyncio
    async def test_seed_variables_interpolated(self, engine, repository, gateway):
        repository.add_flow("flow-1", [TRIGGER, send("hello", "Hi {{first_name}}")], [("trigger", "hello")])
        context = create_context("flow-1", "ch-1", "contact-1", "conv-1", "ws-1", variables={"first_name": "Ana"})

        session = await engine.start(context)

        assert gateway.send_message.await_args.args[2] == "Hi Ana"
        assert session.variables == {"first_name": "Ana"}


class TestDelayScenario:
    """trigger -> Hi -> delay 5 minutes -> Following up."""

    @pytest.fixture
    def flow(self, repository):
        return repository.add_flow(
            "flow-1",
            [
                TRIGGER,
                send("hi", "Hi"),
                {"id": "wait", "type": "delay", "data": {"duration": 5, "unit": "minutes"}},
                send("follow", "Following up"),
            ],
            [("trigger", "hi"), ("hi", "wait"), ("wait", "follow")],
        )

    @pytest.mark.asyncio
    async def test_start_pauses_on_delay(self, engine, repository, context, flow):
        """Start sends Hi, schedules one job and leaves the session waiting."""
        session = await engine.start(context)

        assert len(repository.sessions) == 1
        assert session.status == SessionStatus.ACTIVE
        assert session.current_node_id == "wait"
        assert repository.outbound_texts() == ["Hi"]

        [job] = repository.jobs.values()
        expected = datetime.now(timezone.utc) + timedelta(minutes=5)
        assert abs((job.run_at - expected).total_seconds()) < 5
        assert repository.sessions[session.id].waiting_until == job.run_at
        assert repository.events_of("flow_completed") == []

    @pytest.mark.asyncio
    async def test_resume_completes(self, engine, repository, context, flow):
        """Resume sends Following up and completes exactly once."""
        session = await engine.start(context)

        resumed = await engine.resume(session, context)

        assert repository.outbound_texts() == ["Hi", "Following up"]
        assert resumed.status == SessionStatus.COMPLETED
        assert resumed.waiting_until is None
        assert len(repository.events_of("flow_completed")) == 1

    @pytest.mark.asyncio
    async def test_job_runner_resumes(self, engine, repository, context, flow, runner):
        """The scheduled job drives the resume end to end."""
        session = await engine.start(context)
        assert await runner.run_due_jobs() == {"processed": 0, "failed": 0, "total": 0}

        make_due(repository)
        assert await runner.run_due_jobs() == {"processed": 1, "failed": 0, "total": 1}

        assert repository.sessions[session.id].status == SessionStatus.COMPLETED
        assert repository.outbound_texts() == ["Hi", "Following up"]

    @pytest.mark.asyncio
    async def test_stale_job_is_noop(self, engine, repository, context, flow, runner):
        """A job for a session that ended elsewhere does nothing."""
        session = await engine.start(context)
        await repository.update_session(session.id, {"status": SessionStatus.CANCELLED})

        make_due(repository)
        summary = await runner.run_due_jobs()

        assert summary["processed"] == 1
        assert repository.outbound_texts() == ["Hi"]
        assert repository.sessions[session.id].status == SessionStatus.CANCELLED
        assert repository.events_of("flow_completed") == []

    @pytest.mark.asyncio
    async def test_resume_on_completed_session_is_noop(self, engine, repository, context, flow):
        session = await engine.start(context)
        await engine.resume(session, context)

        await engine.resume(session, context)

        assert repository.outbound_texts() == ["Hi", "Following up"]
        assert len(repository.events_of("flow_completed")) == 1

    @pytest.mark.asyncio
    async def test_resume_session_checks_parked_node(self, engine, repository, context, flow):
        session = await engine.start(context)

        await engine.resume_session(session.id, context, node_id="hi")
        assert repository.outbound_texts() == ["Hi"]

        await engine.resume_session(session.id, context, node_id="wait")
        assert repository.outbound_texts() == ["Hi", "Following up"]


class TestConditionScenario:
    """Condition on is_subscribed follows the labeled edge."""

    @pytest.mark.asyncio
    async def test_false_branch(self, engine, repository, context):
        repository.contacts["contact-1"] = repository.contacts["contact-1"].model_copy(update={"is_subscribed": False})
        repository.add_flow(
            "flow-1",
            [
                TRIGGER,
                {"id": "check", "type": "condition", "data": {
                    "conditions": [{"field": "is_subscribed", "operator": "equals", "value": "true"}],
                }},
                send("yes", "Subscribed"),
                send("no", "Not subscribed"),
            ],
            [("trigger", "check"), ("check", "yes", "true"), ("check", "no", "false")],
        )

        await engine.start(context)

        assert repository.outbound_texts() == ["Not subscribed"]
        visited = [e.metadata["nodeId"] for e in repository.events_of("node_executed")]
        assert visited == ["check", "no"]

    @pytest.mark.asyncio
    async def test_missing_handle_edge_completes(self, engine, repository, context):
        """No edge for the chosen handle ends the flow normally."""
        repository.add_flow(
            "flow-1",
            [TRIGGER, {"id": "check", "type": "condition", "data": {"conditions": []}}],
            [("trigger", "check")],
        )
        session = await engine.start(context)
        assert session.status == SessionStatus.COMPLETED


class TestHttpScenario:
    """http-request to an unreachable URL."""

    @pytest.mark.asyncio
    async def test_unreachable_url_does_not_stop_flow(self, engine, repository, context, monkeypatch):
        real_client = httpx.AsyncClient

        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        monkeypatch.setattr(
            httpx, "AsyncClient",
            lambda *args, **kwargs: real_client(transport=httpx.MockTransport(refuse))
        )
        repository.add_flow(
            "flow-1",
            [
                TRIGGER,
                {"id": "call", "type": "httpRequest", "data": {
                    "method": "POST", "url": "https://unreachable.invalid/hook", "responseVariable": "crm",
                }},
                send("after", "Done"),
            ],
            [("trigger", "call"), ("call", "after")],
        )

        session = await engine.start(context)

        assert repository.outbound_texts() == ["Done"]
        assert "crm" not in session.variables
        assert session.status == SessionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_response_variable_flows_into_later_nodes(self, engine, repository, context, gateway, monkeypatch):
        real_client = httpx.AsyncClient
        monkeypatch.setattr(
            httpx, "AsyncClient",
            lambda *args, **kwargs: real_client(transport=httpx.MockTransport(lambda r: httpx.Response(200, text="42")))
        )
        repository.add_flow(
            "flow-1",
            [
                TRIGGER,
                {"id": "call", "type": "httpRequest", "data": {"url": "https://crm.test/score", "responseVariable": "score"}},
                send("after", "Your score is {{score}}"),
            ],
            [("trigger", "call"), ("call", "after")],
        )

        session = await engine.start(context)

        assert gateway.send_message.await_args.args[2] == "Your score is 42"
        assert repository.sessions[session.id].variables["score"] == "42"


class TestSmartDelay:
    """Wait for input, with an optional timeout."""

    @pytest.fixture
    def flow(self, repository):
        return repository.add_flow(
            "flow-1",
            [
                TRIGGER,
                send("ask", "What's your email?"),
                {"id": "wait", "type": "smartDelay", "data": {"timeout": 1, "timeoutUnit": "hours"}},
                send("thanks", "Thanks!"),
            ],
            [("trigger", "ask"), ("ask", "wait"), ("wait", "thanks")],
        )

    @pytest.mark.asyncio
    async def test_inbound_message_resumes(self, engine, repository, context, flow):
        session = await engine.start_or_resume(context)
        assert repository.sessions[session.id].is_waiting

        reply = context.with_updates(incoming_message=IncomingMessage(text="ana@example.com"))
        resumed = await engine.start_or_resume(reply)

        assert resumed.id == session.id
        assert resumed.status == SessionStatus.COMPLETED
        assert repository.outbound_texts() == ["What's your email?", "Thanks!"]
        assert len(repository.sessions) == 1

    @pytest.mark.asyncio
    async def test_timeout_after_message_is_noop(self, engine, repository, context, flow, runner):
        """The message won the race, so the timeout job does nothing."""
        await engine.start_or_resume(context)
        await engine.start_or_resume(context)

        make_due(repository)
        await runner.run_due_jobs()

        assert repository.outbound_texts() == ["What's your email?", "Thanks!"]
        assert len(repository.events_of("flow_completed")) == 1

    @pytest.mark.asyncio
    async def test_timeout_resumes_when_no_message(self, engine, repository, context, flow, runner):
        session = await engine.start_or_resume(context)

        make_due(repository)
        await runner.run_due_jobs()

        stored = repository.sessions[session.id]
        assert stored.status == SessionStatus.COMPLETED
        assert stored.waiting_for_input is False
        assert repository.outbound_texts() == ["What's your email?", "Thanks!"]

    @pytest.mark.asyncio
    async def test_start_routes_to_waiting_session(self, engine, repository, context, flow):
        """A second start while a session waits resumes it instead."""
        first = await engine.start(context)
        second = await engine.start(context)

        assert second.id == first.id
        assert len(repository.sessions) == 1

    @pytest.mark.asyncio
    async def test_concurrent_events_do_not_interleave(self, engine, repository, context, flow):
        """Two events for one contact at once: one starts, the other resumes."""
        await asyncio.gather(engine.start_or_resume(context), engine.start_or_resume(context))

        assert len(repository.sessions) == 1
        assert repository.outbound_texts() == ["What's your email?", "Thanks!"]

    @pytest.mark.asyncio
    async def test_duplicate_reply_does_not_skip_later_delay(self, engine, repository, context):
        """A second delivery of the same reply must not resume past the next delay."""
        repository.add_flow(
            "flow-1",
            [
                TRIGGER,
                send("ask", "Email?"),
                {"id": "wait", "type": "smartDelay", "data": {}},
                send("a", "A"),
                {"id": "pause", "type": "delay", "data": {"duration": 5, "unit": "minutes"}},
                send("b", "B"),
            ],
            [("trigger", "ask"), ("ask", "wait"), ("wait", "a"), ("a", "pause"), ("pause", "b")],
        )
        await engine.start(context)
        waiting = await repository.find_waiting_session("contact-1", "ch-1")
        reply = context.with_updates(incoming_message=IncomingMessage(text="ana@example.com"))

        await asyncio.gather(engine.resume(waiting, reply), engine.resume(waiting, reply))

        stored = repository.sessions[waiting.id]
        assert repository.outbound_texts() == ["Email?", "A"]
        assert stored.status == SessionStatus.ACTIVE
        assert stored.current_node_id == "pause"


class TestGoToFlow:
    """Calls into other flows."""

    @pytest.mark.asyncio
    async def test_return_after_continues_in_caller(self, engine, repository, context):
        repository.add_flow(
            "flow-1",
            [TRIGGER, send("a", "A"), {"id": "call", "type": "goToFlow", "data": {"flowId": "flow-2", "returnAfter": True}}, send("c", "C")],
            [("trigger", "a"), ("a", "call"), ("call", "c")],
        )
        repository.add_flow("flow-2", [TRIGGER, send("b", "B")], [("trigger", "b")])

        session = await engine.start(context)

        assert repository.outbound_texts() == ["A", "B", "C"]
        assert session.status == SessionStatus.COMPLETED
        assert session.flow_id == "flow-1"
        assert session.flow_stack == []
        assert len(repository.events_of("flow_completed")) == 1

    @pytest.mark.asyncio
    async def test_return_after_survives_pause(self, engine, repository, context):
        """A callee that pauses keeps the caller frame on the session."""
        repository.add_flow(
            "flow-1",
            [TRIGGER, {"id": "call", "type": "goToFlow", "data": {"flowId": "flow-2", "returnAfter": True}}, send("c", "C")],
            [("trigger", "call"), ("call", "c")],
        )
        repository.add_flow(
            "flow-2",
            [TRIGGER, {"id": "wait", "type": "delay", "data": {"duration": 1, "unit": "minutes"}}, send("b", "B")],
            [("trigger", "wait"), ("wait", "b")],
        )

        session = await engine.start(context)
        paused = repository.sessions[session.id]
        assert paused.flow_id == "flow-2"
        assert [(f.flow_id, f.resume_node_id) for f in paused.flow_stack] == [("flow-1", "call")]

        resumed = await engine.resume(paused, context)

        assert repository.outbound_texts() == ["B", "C"]
        assert resumed.status == SessionStatus.COMPLETED
        assert resumed.flow_stack == []

    @pytest.mark.asyncio
    async def test_one_way_jump_starts_target(self, engine, repository, context):
        """Without returnAfter the target starts in its own session and the caller stops."""
        repository.add_flow(
            "flow-1",
            [TRIGGER, {"id": "jump", "type": "goToFlow", "data": {"flowId": "flow-2"}}, send("never", "Never")],
            [("trigger", "jump"), ("jump", "never")],
        )
        repository.add_flow("flow-2", [TRIGGER, send("b", "B")], [("trigger", "b")])

        caller = await engine.start(context)

        assert repository.outbound_texts() == ["B"]
        assert caller.status == SessionStatus.ACTIVE
        assert caller.current_node_id == "jump"
        flows = sorted(s.flow_id for s in repository.sessions.values())
        assert flows == ["flow-1", "flow-2"]

    @pytest.mark.asyncio
    async def test_missing_target_pauses(self, engine, repository, context):
        repository.add_flow(
            "flow-1",
            [TRIGGER, {"id": "jump", "type": "goToFlow", "data": {"flowId": "ghost", "returnAfter": True}}, send("x", "X")],
            [("trigger", "jump"), ("jump", "x")],
        )
        session = await engine.start(context)
        assert session.status == SessionStatus.ACTIVE
        assert repository.outbound_texts() == []


class TestSafety:
    """Step ceiling and terminal nodes."""

    @pytest.mark.asyncio
    async def test_step_ceiling_stops_cycles(self, repository, executor, analytics, context):
        engine = FlowEngine(repository, executor, analytics, max_steps=10)
        repository.add_flow(
            "flow-1",
            [
                TRIGGER,
                {"id": "tag", "type": "addTag", "data": {"tagName": "loop"}},
                {"id": "sub", "type": "subscribe", "data": {}},
            ],
            [("trigger", "tag"), ("tag", "sub"), ("sub", "tag")],
        )

        session = await engine.start(context)

        assert len(repository.events_of("node_executed")) == 10
        assert session.status == SessionStatus.ACTIVE
        assert repository.events_of("flow_completed") == []

    @pytest.mark.asyncio
    async def test_human_takeover_ends_traversal(self, engine, repository, context):
        repository.add_flow(
            "flow-1",
            [TRIGGER, {"id": "human", "type": "humanTakeover", "data": {}}, send("after", "After")],
            [("trigger", "human"), ("human", "after")],
        )

        session = await engine.start(context)

        assert repository.outbound_texts() == []
        assert repository.sessions[session.id].status == SessionStatus.COMPLETED
        assert repository.conversations["conv-1"].is_automation_paused

    @pytest.mark.asyncio
    async def test_unknown_node_is_skipped(self, engine, repository, context):
        repository.add_flow(
            "flow-1",
            [TRIGGER, {"id": "odd", "type": "carousel", "data": {}}, send("after", "After")],
            [("trigger", "odd"), ("odd", "after")],
        )
        await engine.start(context)
        assert repository.outbound_texts() == ["After"]
