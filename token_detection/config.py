from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .address import is_valid_address
from .balances import MAX_BATCH_SIZE
from .errors import ConfigurationError
from .network import MAINNET_CHAIN_ID, normalize_chain_id
from .scheduler import DEFAULT_INTERVAL

log = logging.getLogger(__name__)

ENV_PREFIX = "TOKEN_DETECTION_"

# setting name -> environment variable
ENV_VARS: Dict[str, str] = {
    name: f"{ENV_PREFIX}{name.upper()}"
    for name in (
        "interval",
        "batch_size",
        "rpc_url",
        "rpc_timeout",
        "chain_id",
        "balance_checker_address",
        "metrics_url",
        "selected_address",
        "catalog_path",
        "log_level",
        "log_json",
    )
}


class DetectionSettings(BaseModel):
    """Schema for token detection settings."""

    model_config = ConfigDict(extra="ignore")

    interval: float = Field(default=DEFAULT_INTERVAL, ge=0)
    batch_size: int = Field(default=MAX_BATCH_SIZE, ge=1, le=MAX_BATCH_SIZE)
    rpc_url: Optional[AnyHttpUrl] = None
    rpc_timeout: float = Field(default=30.0, gt=0)
    chain_id: str = MAINNET_CHAIN_ID
    balance_checker_address: Optional[str] = None
    metrics_url: Optional[AnyHttpUrl] = None
    selected_address: Optional[str] = None
    catalog_path: Optional[Path] = None
    log_level: str = "INFO"
    log_json: bool = False

    @field_validator("chain_id", mode="before")
    @classmethod
    def _chain_id_hex(cls, value: Any) -> str:
        normalized = normalize_chain_id(value)
        if normalized is None:
            raise ValueError(f"invalid chain id: {value!r}")
        return normalized

    @field_validator("balance_checker_address", "selected_address")
    @classmethod
    def _valid_address(cls, value: Optional[str]) -> Optional[str]:
        if value in (None, ""):
            return None
        if not is_valid_address(value):
            raise ValueError(f"invalid address: {value!r}")
        return value.strip()

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = str(value).upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level: {value!r}")
        return level


def _read_toml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigurationError(f"cannot read settings file {path}: {exc}") from exc
    section = data.get("token_detection")
    if isinstance(section, dict):
        return dict(section)
    return data


def load_settings(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    **overrides: Any,
) -> DetectionSettings:
    """Load settings from an optional TOML file, the environment and overrides.

    Precedence, lowest first: file values, ``TOKEN_DETECTION_*`` environment
    variables, keyword ``overrides`` (``None`` values are ignored).
    """

    env = os.environ if env is None else env
    data: Dict[str, Any] = {}
    if path is not None:
        data.update(_read_toml(Path(path)))
    for key, env_name in ENV_VARS.items():
        value = env.get(env_name)
        if value not in (None, ""):
            data[key] = value
    data.update({key: value for key, value in overrides.items() if value is not None})
    try:
        settings = DetectionSettings.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid token detection settings: {exc}") from exc
    log.debug("Token detection settings: %s", settings.model_dump(exclude_none=True))
    return settings


__all__ = ["ENV_VARS", "DetectionSettings", "load_settings"]
