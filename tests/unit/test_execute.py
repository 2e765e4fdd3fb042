import asyncio

import pytest
from pydantic import BaseModel

from durastep import PydanticSerializer, SerializationFailure, execute, new_context
from durastep.persistence import InMemoryCheckpointStore, StepStatus


class Boom(Exception):
    pass


class Ticket(BaseModel):
    ticket_id: int
    queue: str


@pytest.mark.asyncio
async def test_execute_runs_body_and_commits():
    store = InMemoryCheckpointStore()
    ctx = new_context("run-1", store=store)

    result = await execute(ctx, "create-record", lambda: {"record_id": 7})

    assert result == {"record_id": 7}
    record = await store.get_step("run-1", "create-record-0")
    assert record.status == StepStatus.COMPLETED
    assert record.output == '{"record_id": 7}'


@pytest.mark.asyncio
async def test_step_keys_follow_call_order():
    store = InMemoryCheckpointStore()
    ctx = new_context("run-1", store=store)

    await execute(ctx, "a", lambda: 1)
    await execute(ctx, "b", lambda: 2)
    await execute(ctx, "a", lambda: 3)

    steps = await store.list_steps("run-1")
    assert [s.step_key for s in steps] == ["a-0", "b-1", "a-2"]


@pytest.mark.asyncio
async def test_completed_step_is_replayed_without_running_body():
    store = InMemoryCheckpointStore()
    calls = []

    def body():
        calls.append("run")
        return "created"

    assert await execute(new_context("run-1", store=store), "create", body) == "created"
    assert await execute(new_context("run-1", store=store), "create", body) == "created"
    assert calls == ["run"]


@pytest.mark.asyncio
async def test_coroutine_bodies_are_awaited():
    store = InMemoryCheckpointStore()
    ctx = new_context("run-1", store=store)

    async def body():
        await asyncio.sleep(0)
        return [1, 2]

    assert await execute(ctx, "fetch", body) == [1, 2]


@pytest.mark.asyncio
async def test_body_failure_propagates_and_leaves_pending():
    store = InMemoryCheckpointStore()
    ctx = new_context("run-1", store=store)

    def body():
        raise Boom("laptop warehouse offline")

    with pytest.raises(Boom, match="warehouse offline"):
        await execute(ctx, "provision-laptop", body)

    record = await store.get_step("run-1", "provision-laptop-0")
    assert record.status == StepStatus.PENDING
    assert record.output is None


@pytest.mark.asyncio
async def test_pending_step_is_executed_again_and_committed():
    store = InMemoryCheckpointStore()
    await store.try_claim("run-1", "provision-access-0")
    calls = []

    def body():
        calls.append(1)
        return "granted"

    ctx = new_context("run-1", store=store)
    assert await execute(ctx, "provision-access", body) == "granted"
    assert calls == [1]
    record = await store.get_step("run-1", "provision-access-0")
    assert record.status == StepStatus.COMPLETED


@pytest.mark.asyncio
async def test_serialization_failure_skips_commit():
    store = InMemoryCheckpointStore()
    ctx = new_context("run-1", store=store)

    with pytest.raises(SerializationFailure):
        await execute(ctx, "open-socket", lambda: object())

    record = await store.get_step("run-1", "open-socket-0")
    assert record.status == StepStatus.PENDING


@pytest.mark.asyncio
async def test_losing_a_commit_race_returns_stored_result():
    store = InMemoryCheckpointStore()
    ctx = new_context("run-1", store=store)

    async def body():
        # A racing attempt commits while this body is still running.
        await store.commit("run-1", "send-email-0", '"sent-by-other"')
        return "sent-by-me"

    await store.try_claim("run-1", "send-email-0")
    assert await execute(ctx, "send-email", body) == "sent-by-other"


@pytest.mark.asyncio
async def test_typed_results_round_trip_through_replay():
    store = InMemoryCheckpointStore()
    serializer = PydanticSerializer(Ticket)

    first = await execute(
        new_context("run-1", store=store),
        "open-ticket",
        lambda: Ticket(ticket_id=5, queue="it"),
        serializer=serializer,
    )
    replayed = await execute(
        new_context("run-1", store=store),
        "open-ticket",
        lambda: Ticket(ticket_id=99, queue="never"),
        serializer=serializer,
    )
    assert replayed == first
    assert isinstance(replayed, Ticket)


@pytest.mark.asyncio
async def test_empty_step_id_is_rejected():
    ctx = new_context("run-1", store=InMemoryCheckpointStore())
    with pytest.raises(ValueError):
        await execute(ctx, "", lambda: None)


def test_new_context_requires_run_id():
    with pytest.raises(ValueError):
        new_context("", store=InMemoryCheckpointStore())


def test_new_context_falls_back_to_configured_store(tmp_path, monkeypatch):
    monkeypatch.setenv("DURASTEP_DATABASE_URL", f"sqlite://{tmp_path / 'cp.db'}")
    ctx = new_context("run-1")
    assert ctx.store.db_path == (tmp_path / "cp.db").resolve()


@pytest.mark.asyncio
async def test_first_run_returns_same_value_as_replay():
    store = InMemoryCheckpointStore()

    def body():
        return {1: ("a", "b"), "nested": {2: 3.5}}

    first = await execute(new_context("run-1", store=store), "lookup", body)
    replayed = await execute(new_context("run-1", store=store), "lookup", body)

    assert first == replayed
    assert first == {"1": ["a", "b"], "nested": {"2": 3.5}}


@pytest.mark.asyncio
async def test_nan_result_is_not_committed():
    store = InMemoryCheckpointStore()
    ctx = new_context("run-1", store=store)

    with pytest.raises(SerializationFailure):
        await execute(ctx, "score", lambda: {"score": float("nan")})

    record = await store.get_step("run-1", "score-0")
    assert record.status == StepStatus.PENDING
