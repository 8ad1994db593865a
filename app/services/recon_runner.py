from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import FastAPI

from services.reconciler import TradeReconciler, get_reconciler

from . import runtime

LOGGER = logging.getLogger(__name__)


class ReconRunner:
    """Background task that runs one reconciliation pass per interval."""

    def __init__(
        self,
        reconciler: TradeReconciler | None = None,
        *,
        interval: float | None = None,
        enabled: bool | None = None,
    ) -> None:
        self._reconciler = reconciler
        self._interval = interval
        self._enabled = enabled
        self._task: asyncio.Task[None] | None = None
        self._stop = asyncio.Event()
        self._last: dict[str, Any] | None = None

    @property
    def interval(self) -> float:
        if self._interval is not None:
            return float(self._interval)
        return runtime.get_state().config.recon.interval_sec

    @property
    def enabled(self) -> bool:
        if self._enabled is not None:
            return bool(self._enabled)
        return runtime.get_state().config.recon.enabled

    @property
    def reconciler(self) -> TradeReconciler:
        return self._reconciler or get_reconciler()

    @property
    def last_result(self) -> dict[str, Any] | None:
        return self._last

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if not self.enabled:
            LOGGER.info("reconciliation runner disabled by configuration")
            return
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:  # pragma: no cover - lifecycle cleanup
            pass
        finally:
            self._task = None

    async def run_once(self) -> dict[str, Any]:
        result = await self.reconciler.poll_once()
        self._last = result
        if result.get("updated"):
            LOGGER.info("reconciliation pass updated trades", extra=result)
        return result

    async def _run(self) -> None:
        interval = self.interval
        LOGGER.info("reconciliation runner started with interval=%ss", interval)
        while not self._stop.is_set():
            try:
                await self.run_once()
            except Exception:  # noqa: BLE001 - the loop outlives a failed pass
                LOGGER.exception("reconciliation pass failed")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
        LOGGER.info("reconciliation runner stopped")


_RUNNER = ReconRunner()


def get_runner() -> ReconRunner:
    return _RUNNER


def setup_recon_runner(app: FastAPI, runner: ReconRunner | None = None) -> ReconRunner:
    active = runner or _RUNNER
    app.state.recon_runner = active

    @app.on_event("startup")
    async def _start_runner() -> None:  # pragma: no cover - lifecycle wiring
        await active.start()

    @app.on_event("shutdown")
    async def _stop_runner() -> None:  # pragma: no cover - lifecycle wiring
        await active.stop()

    return active


__all__ = ["ReconRunner", "get_runner", "setup_recon_runner"]
