"""Engine configuration, loaded from YAML.

A configuration file looks like::

    database_path: /var/lib/civicguard/civicguard.db
    geo:
      view_radius_km: 5
      report_radius_km: 10
    moderation:
      flag_threshold: 3
    notifications:
      webhooks:
        - url: https://hooks.example.org/civic
          secret: s3cret
          events: [issue.status_changed]

Every key is optional; missing keys fall back to the defaults below.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml

CONFIG_ENV_VAR = "CIVICGUARD_CONFIG"

FLAG_THRESHOLD = 3


@dataclass
class GeoConfig:
    """Radii used by the access guard and nearby search."""

    view_radius_km: float = 5.0
    report_radius_km: float = 10.0
    list_radius_min_km: float = 0.1
    list_radius_max_km: float = 5.0
    list_radius_default_km: float = 3.0
    list_limit_default: int = 50
    list_limit_max: int = 100


@dataclass
class LifecycleConfig:
    comment_min_length: int = 5
    comment_max_length: int = 1000


@dataclass
class ModerationConfig:
    """Flag thresholds and ban heuristic settings."""

    flag_threshold: int = FLAG_THRESHOLD
    reason_min_length: int = 3
    reason_max_length: int = 500
    review_comment_max_length: int = 1000
    ban_recent_window_days: int = 7
    ban_recent_flag_limit: int = 10
    ban_min_total_flags: int = 5
    ban_rejection_rate: float = 0.8


@dataclass
class WebhookConfig:
    url: str
    events: list[str] = field(default_factory=list)
    secret: str = ""
    timeout_seconds: float = 10.0


@dataclass
class NotificationConfig:
    webhooks: list[WebhookConfig] = field(default_factory=list)
    log_events: bool = True


@dataclass
class EngineConfig:
    """Top-level configuration for a CivicGuard deployment."""

    database_path: str = str(Path.home() / ".civicguard" / "civicguard.db")
    audit_log_dir: str = str(Path.home() / ".civicguard" / "admin_logs")
    busy_timeout_seconds: float = 5.0
    geo: GeoConfig = field(default_factory=GeoConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    moderation: ModerationConfig = field(default_factory=ModerationConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)


def _section(cls, data: Optional[dict[str, Any]]):
    """Build a flat dataclass from a mapping, ignoring unknown keys."""
    data = data or {}
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


def config_from_dict(data: Optional[dict[str, Any]]) -> EngineConfig:
    """Build an :class:`EngineConfig` from an already-parsed mapping."""
    data = data or {}
    defaults = EngineConfig()

    notif_data = data.get("notifications") or {}
    webhooks = [
        WebhookConfig(
            url=hook["url"],
            events=hook.get("events", []),
            secret=hook.get("secret", ""),
            timeout_seconds=float(hook.get("timeout_seconds", 10.0)),
        )
        for hook in notif_data.get("webhooks", [])
    ]

    return EngineConfig(
        database_path=str(data.get("database_path", defaults.database_path)),
        audit_log_dir=str(data.get("audit_log_dir", defaults.audit_log_dir)),
        busy_timeout_seconds=float(data.get("busy_timeout_seconds", defaults.busy_timeout_seconds)),
        geo=_section(GeoConfig, data.get("geo")),
        lifecycle=_section(LifecycleConfig, data.get("lifecycle")),
        moderation=_section(ModerationConfig, data.get("moderation")),
        notifications=NotificationConfig(
            webhooks=webhooks,
            log_events=notif_data.get("log_events", True),
        ),
    )


def load_config(path: str | Path | None = None) -> EngineConfig:
    """Load configuration from a YAML file.

    When *path* is omitted the ``CIVICGUARD_CONFIG`` environment variable is
    consulted; with neither set the built-in defaults are returned.
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR)
    if not path:
        return EngineConfig()

    with open(path) as f:
        data = yaml.safe_load(f)

    if data is not None and not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level")
    return config_from_dict(data)
