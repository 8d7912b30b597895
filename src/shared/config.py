"""Configuration: environment settings, YAML-backed config dataclasses and
the config store that notifies listeners when the schedule changes."""
from __future__ import annotations

import logging
import re
import threading
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Callable

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings

from src.shared.constants import (
    DEFAULT_BASE_URL,
    DEFAULT_CRON,
    DEFAULT_EXCLUDE_PATTERN,
    DEFAULT_INCLUDE_PATTERN,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MODE,
    DEFAULT_RETRY_DELAY_S,
)

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Process-level settings read from the environment."""
    log_level: str = Field(default="info", validation_alias="LOG_LEVEL")
    token: str = Field(default="", validation_alias="ARMORCODE_TOKEN")
    base_url: str = Field(default="", validation_alias="ARMORCODE_BASE_URL")
    build_number: str = Field(default="0", validation_alias="BUILD_NUMBER")
    job_name: str = Field(default="", validation_alias="JOB_NAME")
    job_url: str = Field(default="", validation_alias="JOB_URL")
    jenkins_home: str = Field(default="", validation_alias="JENKINS_HOME")

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
    }


@dataclass
class GateConfig:
    """Per-invocation release gate parameters."""

    product: str = ""
    sub_products: Any = field(default_factory=list)
    environment: str = ""
    mode: str = DEFAULT_MODE
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY_S
    post_verdict_delay: float = 0
    target_url: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.max_retries, int) or self.max_retries < 1:
            self.max_retries = DEFAULT_MAX_RETRIES
        if self.mode is None:
            self.mode = DEFAULT_MODE


@dataclass
class DiscoveryConfig:
    """Job discovery settings."""

    monitoring_enabled: bool = False
    include_pattern: str = DEFAULT_INCLUDE_PATTERN
    exclude_pattern: str = DEFAULT_EXCLUDE_PATTERN
    job_filter: str = ""
    cron_expression: str = DEFAULT_CRON
    jenkins_home: str = ""

    def __post_init__(self) -> None:
        if not self.cron_expression or not self.cron_expression.strip():
            self.cron_expression = DEFAULT_CRON
        if self.include_pattern is None:
            self.include_pattern = DEFAULT_INCLUDE_PATTERN
        if self.exclude_pattern is None:
            self.exclude_pattern = DEFAULT_EXCLUDE_PATTERN
        if self.job_filter:
            convert_legacy_job_filter(self)


@dataclass
class ReleaseGateConfig:
    """Top-level configuration composing all sub-configs."""

    base_url: str = DEFAULT_BASE_URL
    gate: GateConfig = field(default_factory=GateConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)


def convert_legacy_job_filter(cfg: DiscoveryConfig) -> None:
    """Translate a legacy comma-separated ``job_filter`` into patterns.

    Entries prefixed with ``!`` become exclusions, the rest inclusions,
    each side joined with ``|``.  Only applied while both patterns still
    hold their defaults; the legacy field is cleared afterwards.
    """
    if not cfg.job_filter:
        return
    if cfg.include_pattern != DEFAULT_INCLUDE_PATTERN or cfg.exclude_pattern:
        return

    includes: list[str] = []
    excludes: list[str] = []
    for pattern in cfg.job_filter.split(","):
        pattern = pattern.strip()
        if not pattern:
            continue
        if pattern.startswith("!"):
            excludes.append(pattern[1:])
        else:
            includes.append(pattern)

    if includes:
        cfg.include_pattern = "|".join(includes)
    if excludes:
        cfg.exclude_pattern = "|".join(excludes)
    cfg.job_filter = ""
    logger.info(
        "Converted legacy job filter to include=%r exclude=%r",
        cfg.include_pattern,
        cfg.exclude_pattern,
    )


def _pick(data: dict[str, Any], cls: type) -> dict[str, Any]:
    """Filter *data* to only keys accepted by *cls*."""
    valid = {f.name for f in cls.__dataclass_fields__.values()}
    return {k: v for k, v in data.items() if k in valid}


def config_from_dict(raw: dict[str, Any]) -> ReleaseGateConfig:
    """Build a :class:`ReleaseGateConfig` from parsed YAML.

    Unknown keys are silently ignored so that forward-compatible config
    files work.
    """
    gate_raw = raw.get("gate") or {}
    discovery_raw = raw.get("discovery") or {}
    base_url = raw.get("base_url") or DEFAULT_BASE_URL
    return ReleaseGateConfig(
        base_url=str(base_url).rstrip("/"),
        gate=GateConfig(**_pick(gate_raw, GateConfig)),
        discovery=DiscoveryConfig(**_pick(discovery_raw, DiscoveryConfig)),
    )


def load_config(path: Path | str | None = None) -> ReleaseGateConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to config YAML.  If ``None`` or the file does not
              exist, returns full defaults.

    Returns:
        Populated configuration dataclass.
    """
    if path is None:
        return ReleaseGateConfig()

    path = Path(path)
    if not path.exists():
        return ReleaseGateConfig()

    with open(path, "r", encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f) or {}

    return config_from_dict(raw)


def save_config(cfg: ReleaseGateConfig, path: Path | str) -> None:
    """Persist *cfg* as YAML."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(asdict(cfg), f, sort_keys=False)


def validate_config(cfg: ReleaseGateConfig) -> list[str]:
    """Return human-readable problems with *cfg* (empty when valid).

    Cron validation lives with the scheduler; see
    :func:`src.discovery.scheduler.validate_cron_expression`.
    """
    problems: list[str] = []
    if not cfg.base_url:
        problems.append("Base URL must not be empty")
    elif not cfg.base_url.startswith("https://"):
        problems.append("Base URL must start with https://")

    for name in ("include_pattern", "exclude_pattern"):
        pattern = getattr(cfg.discovery, name)
        if not pattern:
            continue
        try:
            re.compile(pattern)
        except re.error as exc:
            problems.append(f"Invalid {name.replace('_', ' ')} {pattern!r}: {exc}")
    return problems


ConfigListener = Callable[[ReleaseGateConfig], None]


class ConfigStore:
    """Holds the current configuration and announces schedule changes.

    Readers take a :meth:`snapshot`; writers go through :meth:`update` or
    :meth:`reload`.  Listeners (the discovery scheduler) are notified
    whenever the cron expression or the monitoring flag changes.

    *base_url*, when given, takes precedence over the file's ``base_url``
    on every load (the ``ARMORCODE_BASE_URL`` environment override).
    """

    def __init__(
        self, path: Path | str | None = None, base_url: str | None = None
    ) -> None:
        self.path = Path(path) if path else None
        self.base_url_override = base_url.rstrip("/") if base_url else None
        self._lock = threading.Lock()
        self._config = self._load()
        self._listeners: list[ConfigListener] = []

    def _load(self) -> ReleaseGateConfig:
        cfg = load_config(self.path)
        if self.base_url_override:
            cfg = replace(cfg, base_url=self.base_url_override)
        return cfg

    def snapshot(self) -> ReleaseGateConfig:
        """Return a deep copy of the current configuration."""
        with self._lock:
            cfg = self._config
            return replace(
                cfg,
                gate=replace(cfg.gate),
                discovery=replace(cfg.discovery),
            )

    def add_listener(self, listener: ConfigListener) -> None:
        self._listeners.append(listener)

    def update(self, *, base_url: str | None = None, **discovery_changes: Any) -> ReleaseGateConfig:
        """Apply discovery changes (and optionally a new base URL), save,
        and notify listeners if the schedule moved."""
        with self._lock:
            old = self._config
            discovery = replace(old.discovery, **discovery_changes)
            new = replace(
                old,
                base_url=(base_url.rstrip("/") if base_url else old.base_url),
                discovery=discovery,
            )
            self._config = new
        if self.path is not None:
            save_config(new, self.path)
        self._notify_if_schedule_changed(old, new)
        return new

    def reload(self) -> bool:
        """Re-read the backing file.  Returns True if the schedule changed."""
        new = self._load()
        with self._lock:
            old = self._config
            self._config = new
        return self._notify_if_schedule_changed(old, new)

    def _notify_if_schedule_changed(
        self, old: ReleaseGateConfig, new: ReleaseGateConfig
    ) -> bool:
        changed = (
            old.discovery.cron_expression != new.discovery.cron_expression
            or old.discovery.monitoring_enabled != new.discovery.monitoring_enabled
        )
        if changed:
            logger.info(
                "Schedule changed: cron=%r monitoring=%s",
                new.discovery.cron_expression,
                new.discovery.monitoring_enabled,
            )
            for listener in self._listeners:
                listener(new)
        return changed
