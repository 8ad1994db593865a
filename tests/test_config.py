from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.core.config import AppConfig, load_app_config, validate_payload
from app.util.env import load_env_file, parse_env_lines


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "GATE_API_KEY",
        "GATE_API_SECRET",
        "MEXC_WEB_TOKEN",
        "MEXC_API_KEY",
        "MEXC_API_SECRET",
        "ARB_DB_URL",
        "POSITION_STATE_PATH",
    ):
        monkeypatch.delenv(name, raising=False)


def test_missing_file_yields_defaults(tmp_path):
    loaded = load_app_config(tmp_path / "absent.yaml")

    config = loaded.data
    assert config.default_symbol == "BOXCAT_USDT"
    assert config.execution.margin_pct == 10.0
    assert config.recon.interval_sec == 4.0
    assert config.recon.not_found_policy == "needs_review"
    assert config.venues.timeout_sec == 8.0
    assert config.mexc.open_type == 1


def test_yaml_values_and_env_secrets(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text(
        "default_symbol: pepe_usdt\n"
        "mexc:\n  leverage: 3\n  supported_symbols: [pepe_usdt]\n"
        "recon:\n  not_found_policy: assume_filled\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("MEXC_WEB_TOKEN", "web-token")
    monkeypatch.setenv("ARB_DB_URL", "sqlite:///tmp/x.db")

    config = load_app_config(path).data

    assert config.default_symbol == "PEPE_USDT"
    assert config.mexc.leverage == 3
    assert config.mexc.supported_symbols == ["PEPE_USDT"]
    assert config.mexc.web_auth_token == "web-token"
    assert config.recon.not_found_policy == "assume_filled"
    assert config.persistence.db_url == "sqlite:///tmp/x.db"


@pytest.mark.parametrize(
    "payload",
    [
        {"default_symbol": "BOXCAT"},
        {"mexc": {"leverage": 0}},
        {"mexc": {"open_type": 3}},
        {"recon": {"not_found_policy": "guess"}},
        {"execution": {"margin_pct": 100}},
    ],
)
def test_invalid_payloads_are_rejected(payload):
    with pytest.raises(ValidationError):
        AppConfig.model_validate(payload)
    assert validate_payload(payload)


def test_env_file_does_not_override_existing(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# comment\nexport GATE_API_KEY='from-file'\nGATE_API_SECRET=\"s3cret\"\nbroken line\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("GATE_API_KEY", "from-shell")
    monkeypatch.setenv("GATE_API_SECRET", "placeholder")
    monkeypatch.delenv("GATE_API_SECRET")

    applied = load_env_file(env_file)

    assert applied == {"GATE_API_SECRET": "s3cret"}
    assert parse_env_lines(["A=1", "=2", "B"]) == {"A": "1"}
