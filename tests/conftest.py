from __future__ import annotations

import os
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("ARB_CONFIG_PATH", "/tmp/arbdesk-tests-missing-config.yaml")
os.environ.setdefault("ARB_DB_URL", "sqlite:////tmp/arbdesk-tests.db")
os.environ.setdefault("POSITION_STATE_PATH", "/tmp/arbdesk-tests-position.json")

from app.core.config import AppConfig
from app.main import create_app
from app.persistence.trade_store import TradeStore
from app.services import runtime
from positions import PositionAggregator
from tests.fakes.fake_venues import FakePerpClient, FakeSpotClient, book

GATE_META = {"precision": 6, "amount_precision": 0, "min_base_amount": "1", "min_quote_amount": "3"}
MEXC_META = {"priceScale": 6, "volScale": 0, "contractSize": 10, "minVol": 1}


@pytest.fixture
def spot() -> FakeSpotClient:
    client = FakeSpotClient()
    client.meta = dict(GATE_META)
    client.book = book("0.0099", "5000", "0.01", "5000")
    return client


@pytest.fixture
def perp() -> FakePerpClient:
    client = FakePerpClient()
    client.meta = dict(MEXC_META)
    client.book = book("0.0102", "500", "0.0103", "500")
    return client


@pytest.fixture
def store(tmp_path: Path) -> TradeStore:
    return TradeStore(f"sqlite:///{tmp_path / 'app.db'}")


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig.model_validate(
        {
            "default_symbol": "BOXCAT_USDT",
            "execution": {"margin_pct": 0, "staleness_tolerance_pct": 1.0},
            "recon": {"enabled": False, "interval_sec": 4.0, "not_found_policy": "needs_review"},
        }
    )


@pytest.fixture
def state(tmp_path: Path, app_config: AppConfig, spot, perp, store) -> runtime.RuntimeState:
    position = PositionAggregator(tmp_path / "position_state.json")
    built = runtime.build_runtime(app_config, spot=spot, perp=perp, store=store, position=position)
    runtime.set_state(built)
    yield built
    runtime.set_state(None)


@pytest.fixture
def client(state) -> TestClient:
    return TestClient(create_app())
