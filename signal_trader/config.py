"""Configuration loading and validation."""

from __future__ import annotations

import datetime as dt
import os
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from signal_trader.models import OrderType, TradeType


class AccountConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str
    coin_id: str


class EaConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    symbols: list[str] = Field(default_factory=list)
    coins: list[str] = Field(default_factory=list)
    interval_sec: float = Field(gt=0)
    candlestick_unit: str = Field(default="5min", pattern=r"^\d+(min|hour|day)$")


class BacktestConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    test: bool = False
    date: dt.date | None = None
    interval_sec: int = Field(default=300, ge=1)


class TraderConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    host: str
    port: int = Field(ge=1, le=65535)
    timeout_sec: float = Field(default=10, gt=0)

    @property
    def order_url(self) -> str:
        return f"http://{self.host}:{self.port}/api/v1/order"


class SlackConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str = Field(pattern=r"^https?://")


class StoreConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: str = "data/trader.db"


class SessionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    timezone: str = "Asia/Tokyo"
    windows: list[tuple[dt.time, dt.time]] = Field(
        default_factory=lambda: [(dt.time(9, 0), dt.time(11, 30)), (dt.time(12, 30), dt.time(15, 0))]
    )
    weekdays: list[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4])

    @field_validator("windows", mode="before")
    @classmethod
    def _reject_sexagesimal(cls, value: object) -> object:
        # unquoted 12:30 is loaded by YAML 1.1 as the integer 750
        if isinstance(value, list):
            for window in value:
                if isinstance(window, (list, tuple)) and any(isinstance(item, int) for item in window):
                    raise ValueError("session times must be quoted strings, e.g. '12:30'")
        return value

    @field_validator("windows")
    @classmethod
    def _check_windows(cls, value: list[tuple[dt.time, dt.time]]) -> list[tuple[dt.time, dt.time]]:
        for start, end in value:
            if start >= end:
                raise ValueError(f"session window {start}-{end} is empty")
        return value

    @field_validator("weekdays")
    @classmethod
    def _check_weekdays(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("weekdays must be within 0..6 (Monday=0)")
        return value


class OrderTemplateConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    trade_type: TradeType = TradeType.MARGIN
    order_type: OrderType = OrderType.LIMIT
    amount: float = Field(default=100, gt=0)


class RulesConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    cooldown_sec: int = Field(default=600, ge=0)
    stock_profit_threshold: float = Field(default=7, ge=0)


class TradeUnitConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: float = Field(gt=0)
    settlement: str | None = None


class MarketsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    trade_units: dict[str, TradeUnitConfig] = Field(default_factory=dict)
    fees: dict[str, float] = Field(default_factory=dict)
    default_fee: float = Field(default=0.0, ge=0)
    default_coin_amount: float = Field(default=1.0, gt=0)


class KdjConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    period: int = Field(default=9, ge=2)
    k_smooth: int = Field(default=3, ge=1)
    d_smooth: int = Field(default=3, ge=1)
    oversold: float = Field(default=30, ge=0, le=100)
    overbought: float = Field(default=70, ge=0, le=100)
    lookback: int = Field(default=120, ge=10)


class RuntimeConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    shutdown_timeout_sec: float = Field(default=30, ge=0)
    log_level: str = Field(default="INFO", pattern=r"^(TRACE|DEBUG|INFO|SUCCESS|WARNING|ERROR|CRITICAL)$")
    log_dir: str = "logs"
    log_file: str = "trader.log"
    log_rotation: str = "5 MB"
    log_retention: int = Field(default=5, ge=1)


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account: AccountConfig
    ea: EaConfig
    backtest: BacktestConfig
    trader: TraderConfig
    slack: SlackConfig
    store: StoreConfig
    session: SessionConfig = Field(default_factory=SessionConfig)
    order: OrderTemplateConfig = Field(default_factory=OrderTemplateConfig)
    rules: RulesConfig = Field(default_factory=RulesConfig)
    markets: MarketsConfig = Field(default_factory=MarketsConfig)
    kdj: KdjConfig = Field(default_factory=KdjConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)


_ENV_OVERRIDES = {
    "SLACK_WEBHOOK_URL": ("slack", "url"),
    "TRADER_HOST": ("trader", "host"),
    "TRADER_PORT": ("trader", "port"),
}


def _apply_env_overrides(raw_data: dict) -> dict:
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if not value:
            continue
        section_data = raw_data.get(section)
        if not isinstance(section_data, dict):
            continue
        section_data[key] = value
    return raw_data


def load_config(path: str | Path = "config.yml") -> AppConfig:
    """Load configuration from YAML file, apply env overrides and validate schema."""
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file '{config_path}' not found. Copy config.yml.example to config.yml first."
        )

    load_dotenv(config_path.parent / ".env")
    with config_path.open("r", encoding="utf-8") as fh:
        raw_data = yaml.safe_load(fh) or {}

    if not isinstance(raw_data, dict):
        raise ValueError(f"Invalid config '{config_path}': top level must be a mapping")

    try:
        return AppConfig.model_validate(_apply_env_overrides(raw_data))
    except ValidationError as exc:
        raise ValueError(f"Invalid config '{config_path}': {exc}") from exc
