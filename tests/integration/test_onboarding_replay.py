"""Crash and restart an employee onboarding run against a SQLite store."""

from collections import Counter

import pytest

from durastep import execute, new_context, run_parallel
from durastep.persistence import SQLiteCheckpointStore, StepStatus


class SimulatedCrash(Exception):
    pass


class CrashBeforeCommitStore(SQLiteCheckpointStore):
    """Dies right before committing any step whose key matches ``prefixes``."""

    def __init__(self, db_path, prefixes):
        super().__init__(db_path)
        self._prefixes = tuple(prefixes)

    async def commit(self, run_id, step_key, output):
        if step_key.startswith(self._prefixes):
            raise SimulatedCrash(step_key)
        return await super().commit(run_id, step_key, output)


class Onboarding:
    """Side effects of the onboarding workflow, counted per step."""

    def __init__(self):
        self.calls = Counter()

    def create_record(self):
        self.calls["create-record"] += 1
        return {"employee_id": "e-1001"}

    async def provision_laptop(self):
        self.calls["provision-laptop"] += 1
        return {"asset": "laptop-77"}

    def provision_access(self):
        self.calls["provision-access"] += 1
        return ["vpn", "email"]

    def send_email(self):
        self.calls["send-email"] += 1
        return "welcome sent"


async def onboard(ctx, effects):
    record = await execute(ctx, "create-record", effects.create_record)
    laptop, access = await run_parallel(
        ctx,
        [
            ("provision-laptop", effects.provision_laptop),
            ("provision-access", effects.provision_access),
        ],
    )
    email = await execute(ctx, "send-email", effects.send_email)
    return record, laptop, access, email


@pytest.mark.asyncio
async def test_restart_resumes_after_crash_before_parallel_commit(tmp_path):
    db_path = tmp_path / "onboarding.db"
    effects = Onboarding()

    crashing = CrashBeforeCommitStore(db_path, ["provision-"])
    with pytest.raises(SimulatedCrash):
        await onboard(new_context("onboarding-42", store=crashing), effects)
    await crashing.close()

    assert effects.calls == Counter(
        {"create-record": 1, "provision-laptop": 1, "provision-access": 1}
    )

    store = SQLiteCheckpointStore(db_path)
    result = await onboard(new_context("onboarding-42", store=store), effects)

    assert result == (
        {"employee_id": "e-1001"},
        {"asset": "laptop-77"},
        ["vpn", "email"],
        "welcome sent",
    )
    assert effects.calls == Counter(
        {
            "create-record": 1,
            "provision-laptop": 2,
            "provision-access": 2,
            "send-email": 1,
        }
    )

    steps = await store.list_steps("onboarding-42")
    assert [s.step_key for s in steps] == [
        "create-record-0",
        "provision-laptop-1",
        "provision-access-2",
        "send-email-3",
    ]
    assert all(s.status == StepStatus.COMPLETED for s in steps)


@pytest.mark.asyncio
async def test_completed_run_replays_without_side_effects(tmp_path):
    db_path = tmp_path / "onboarding.db"
    effects = Onboarding()

    first = await onboard(
        new_context("onboarding-7", store=SQLiteCheckpointStore(db_path)), effects
    )
    effects.calls.clear()
    second = await onboard(
        new_context("onboarding-7", store=SQLiteCheckpointStore(db_path)), effects
    )

    assert second == first
    assert sum(effects.calls.values()) == 0


@pytest.mark.asyncio
async def test_replay_skips_the_completed_prefix(tmp_path):
    db_path = tmp_path / "steps.db"
    executed = []

    async def driver(ctx, fail_at=None):
        for i in range(5):
            def body(i=i):
                executed.append(i)
                if i == fail_at:
                    raise RuntimeError(f"step {i} failed")
                return i * i

            await execute(ctx, f"step{i}", body)

    with pytest.raises(RuntimeError):
        await driver(new_context("run-k", store=SQLiteCheckpointStore(db_path)), fail_at=3)
    assert executed == [0, 1, 2, 3]

    executed.clear()
    await driver(new_context("run-k", store=SQLiteCheckpointStore(db_path)))
    assert executed == [3, 4]


@pytest.mark.asyncio
async def test_identical_drivers_produce_identical_keys(tmp_path):
    async def driver(ctx):
        await execute(ctx, "a", lambda: 1)
        await run_parallel(ctx, [("b", lambda: 2), ("c", lambda: 3)])
        await execute(ctx, "a", lambda: 4)

    first = SQLiteCheckpointStore(tmp_path / "one.db")
    second = SQLiteCheckpointStore(tmp_path / "two.db")
    await driver(new_context("same-run", store=first))
    await driver(new_context("same-run", store=second))

    keys_one = [s.step_key for s in await first.list_steps("same-run")]
    keys_two = [s.step_key for s in await second.list_steps("same-run")]
    assert keys_one == keys_two == ["a-0", "b-1", "c-2", "a-3"]
