from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator


DEFAULT_CONFIG_PATH = "configs/config.yaml"


class GateConfig(BaseModel):
    api_key: str | None = None
    api_secret: str | None = None
    base_url: str = "https://api.gateio.ws"


class MexcConfig(BaseModel):
    web_auth_token: str | None = None
    api_key: str | None = None
    api_secret: str | None = None
    base_url: str = "https://contract.mexc.com"
    leverage: int = Field(1, ge=1)
    open_type: int = 1
    supported_symbols: List[str] = Field(default_factory=list)

    @field_validator("open_type")
    @classmethod
    def validate_open_type(cls, v: int) -> int:
        if v not in {1, 2}:
            raise ValueError("open_type must be 1 (isolated) or 2 (cross)")
        return v

    @field_validator("supported_symbols")
    @classmethod
    def upper_symbols(cls, v: List[str]) -> List[str]:
        return [str(item).upper() for item in v]


class ExecutionConfig(BaseModel):
    margin_pct: float = Field(10.0, ge=0, lt=100)
    staleness_tolerance_pct: float = Field(1.0, ge=0)


class ReconConfig(BaseModel):
    enabled: bool = True
    interval_sec: float = Field(4.0, gt=0)
    not_found_policy: str = "needs_review"

    @field_validator("not_found_policy")
    @classmethod
    def validate_policy(cls, v: str) -> str:
        allowed = {"needs_review", "assume_filled"}
        if v not in allowed:
            raise ValueError("not_found_policy must be needs_review or assume_filled")
        return v


class VenuesConfig(BaseModel):
    timeout_sec: float = Field(8.0, gt=0)


class PersistenceConfig(BaseModel):
    db_url: str = "sqlite:///data/app.db"
    position_path: str = "data/position_state.json"


class AppConfig(BaseModel):
    default_symbol: str = "BOXCAT_USDT"
    gate: GateConfig = Field(default_factory=GateConfig)
    mexc: MexcConfig = Field(default_factory=MexcConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    recon: ReconConfig = Field(default_factory=ReconConfig)
    venues: VenuesConfig = Field(default_factory=VenuesConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)

    @field_validator("default_symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        symbol = str(v).strip().upper()
        if "_" not in symbol:
            raise ValueError("default_symbol must look like BASE_QUOTE")
        return symbol


@dataclass
class LoadedConfig:
    path: Path
    data: AppConfig


# (section, field, environment variable)
_ENV_OVERRIDES = (
    ("gate", "api_key", "GATE_API_KEY"),
    ("gate", "api_secret", "GATE_API_SECRET"),
    ("mexc", "web_auth_token", "MEXC_WEB_TOKEN"),
    ("mexc", "api_key", "MEXC_API_KEY"),
    ("mexc", "api_secret", "MEXC_API_SECRET"),
    ("persistence", "db_url", "ARB_DB_URL"),
    ("persistence", "position_path", "POSITION_STATE_PATH"),
)


def config_path() -> Path:
    return Path(os.environ.get("ARB_CONFIG_PATH", DEFAULT_CONFIG_PATH))


def load_yaml(path: Path | str) -> dict[str, Any]:
    cfg_path = Path(path)
    with cfg_path.open("r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle) or {}
    if not isinstance(payload, dict):
        raise TypeError(f"Configuration root must be a mapping, got {type(payload)!r}")
    return payload


def apply_env_overrides(payload: dict[str, Any]) -> dict[str, Any]:
    """Environment values win over the file for secrets and storage paths."""

    merged = {key: dict(value) if isinstance(value, dict) else value for key, value in payload.items()}
    for section, field, env_name in _ENV_OVERRIDES:
        value = os.environ.get(env_name)
        if not value:
            continue
        block = merged.get(section)
        if not isinstance(block, dict):
            block = {}
        block[field] = value
        merged[section] = block
    return merged


def load_app_config(path: str | Path | None = None) -> LoadedConfig:
    cfg_path = Path(path) if path is not None else config_path()
    raw = load_yaml(cfg_path) if cfg_path.exists() else {}
    app_config = AppConfig.model_validate(apply_env_overrides(raw))
    return LoadedConfig(path=cfg_path, data=app_config)


def validate_payload(payload: Any) -> list[str]:
    """Return a list of validation errors for ``payload``.

    The function returns an empty list when the payload is valid.
    """

    errors: list[str] = []
    try:
        AppConfig.model_validate(payload)
    except ValidationError as exc:
        for entry in exc.errors():
            location = ".".join(str(part) for part in entry.get("loc", ()))
            message = str(entry.get("msg") or "invalid")
            errors.append(f"{location}: {message}" if location else message)
    return errors


__all__ = [
    "AppConfig",
    "ExecutionConfig",
    "GateConfig",
    "LoadedConfig",
    "MexcConfig",
    "PersistenceConfig",
    "ReconConfig",
    "VenuesConfig",
    "apply_env_overrides",
    "config_path",
    "load_app_config",
    "load_yaml",
    "validate_payload",
]
