from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

from ..services.runtime import get_state
from ..version import APP_VERSION

router = APIRouter()


class HealthOut(BaseModel):
    ok: bool
    version: str
    symbol: str
    trades: int
    recon_running: bool


@router.get("/healthz", response_model=HealthOut, include_in_schema=False)
def health(request: Request) -> HealthOut:
    state = get_state()
    runner = getattr(request.app.state, "recon_runner", None)
    return HealthOut(
        ok=True,
        version=APP_VERSION,
        symbol=state.symbol,
        trades=len(state.trades),
        recon_running=bool(runner is not None and runner.running),
    )
