"""Run configuration: YAML file defaults overlaid with command-line flags."""

import logging
import socket
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InvalidConfiguration

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30


def _is_blank(item: Any) -> bool:
    return item is None or (isinstance(item, str) and not item.strip())


def _default_sender() -> str:
    return f"snapshot-cleanup@{socket.getfqdn()}"


class RunConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    retention_days: int = Field(default=DEFAULT_RETENTION_DAYS, ge=0)
    clusters: list[str] = Field(default_factory=list)
    mail_server: str = Field(min_length=1)
    mail_port: int = Field(default=25, gt=0, le=65535)
    mail_from: str = Field(default_factory=_default_sender)
    recipients: list[str] = Field(min_length=1)
    tags: Optional[list[str]] = None
    dry_run: bool = False
    interactive_mail_credentials: bool = False
    vcenter_user: Optional[str] = None
    validate_certs: bool = False

    @field_validator("clusters", "recipients", "tags", mode="before")
    @classmethod
    def _strip_blank(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, (list, tuple)):
            return value
        return [item.strip() if isinstance(item, str) else item for item in value if not _is_blank(item)]

    @field_validator("tags")
    @classmethod
    def _empty_tags_mean_no_filter(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if not value:
            return None
        return [tag.strip() for tag in value if tag.strip()] or None


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Load a YAML config file; the top level must be a mapping."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise InvalidConfiguration(f"Cannot read config file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidConfiguration(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    return data


def load_config(path: str | Path | None = None, overrides: dict[str, Any] | None = None) -> RunConfig:
    """Build a validated :class:`RunConfig`.

    Keys in *overrides* whose value is ``None`` or an empty sequence are
    treated as "not given" so that unset CLI flags do not mask file values.
    """
    data: dict[str, Any] = load_config_file(path) if path else {}
    for key, value in (overrides or {}).items():
        if value is None or (isinstance(value, (list, tuple)) and not value):
            continue
        data[key] = list(value) if isinstance(value, tuple) else value

    try:
        config = RunConfig.model_validate(data)
    except ValidationError as exc:
        raise InvalidConfiguration(str(exc)) from exc

    logger.debug(
        "Loaded config: retention_days=%s clusters=%s tags=%s dry_run=%s",
        config.retention_days,
        config.clusters,
        config.tags,
        config.dry_run,
    )
    return config
