from __future__ import annotations

import asyncio

import pytest
from fastapi import FastAPI

from app.services.recon_runner import ReconRunner, setup_recon_runner


class StubReconciler:
    def __init__(self) -> None:
        self.calls = 0

    async def poll_once(self):
        self.calls += 1
        return {"checked": 1, "updated": self.calls}


@pytest.mark.asyncio
async def test_run_once_delegates_and_records_result():
    stub = StubReconciler()
    runner = ReconRunner(stub, interval=1, enabled=True)

    result = await runner.run_once()

    assert result == {"checked": 1, "updated": 1}
    assert runner.last_result == result
    assert stub.calls == 1


@pytest.mark.asyncio
async def test_disabled_runner_does_not_start():
    runner = ReconRunner(StubReconciler(), interval=1, enabled=False)

    await runner.start()

    assert runner.running is False


@pytest.mark.asyncio
async def test_runner_polls_until_stopped():
    stub = StubReconciler()
    runner = ReconRunner(stub, interval=0.01, enabled=True)

    await runner.start()
    assert runner.running
    for _ in range(100):
        if stub.calls >= 2:
            break
        await asyncio.sleep(0.01)
    await runner.stop()

    assert stub.calls >= 2
    assert runner.running is False


@pytest.mark.asyncio
async def test_failed_pass_does_not_kill_the_loop():
    class Flaky(StubReconciler):
        async def poll_once(self):
            self.calls += 1
            if self.calls == 1:
                raise RuntimeError("boom")
            return {"checked": 0, "updated": 0}

    flaky = Flaky()
    runner = ReconRunner(flaky, interval=0.01, enabled=True)

    await runner.start()
    for _ in range(100):
        if flaky.calls >= 2:
            break
        await asyncio.sleep(0.01)
    await runner.stop()

    assert flaky.calls >= 2


def test_setup_attaches_runner_to_app():
    app = FastAPI()
    runner = ReconRunner(StubReconciler(), enabled=False)

    assert setup_recon_runner(app, runner) is runner
    assert app.state.recon_runner is runner


@pytest.mark.asyncio
async def test_settings_fall_back_to_runtime_config(state):
    runner = ReconRunner()

    assert runner.enabled is False
    assert runner.interval == 4.0
