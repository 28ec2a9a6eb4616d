"""
Configuration
Settings are read from an optional YAML file, then overridden by
DEVICEWATCH_* environment variables.

    DEVICEWATCH_CONFIG=/etc/devicewatch.yml
    DEVICEWATCH_MAX_CONCURRENT_EXECUTIONS=20
    DEVICEWATCH_CORS_ORIGINS=http://localhost:3000,https://ops.example.com
    DEVICEWATCH_REALTIME_TOKENS='{"tok-1": {"user_id": "u1", "organization_id": "org-1"}}'
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, Field

ENV_PREFIX = "DEVICEWATCH_"
CONFIG_ENV = "DEVICEWATCH_CONFIG"


class TokenIdentity(BaseModel):
    """Who a realtime connection token belongs to"""
    user_id: str
    organization_id: str


class Settings(BaseModel):
    # App
    app_name: str = "DeviceWatch Engine"
    version: str = "1.0.0"
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    log_level: str = "INFO"
    cors_origins: List[str] = ["*"]

    # Executions
    max_concurrent_executions: int = Field(default=10, ge=1)
    default_execution_timeout: float = Field(default=300, gt=0)
    execution_retention_days: float = Field(default=30, ge=0)
    simulate_executions: bool = False

    # Alerts
    alert_history_size: int = Field(default=100, ge=1)
    sse_keepalive_sec: float = Field(default=30.0, gt=0)
    rules_file: Optional[str] = None

    # Notifications
    notification_timeout: float = Field(default=10.0, gt=0)
    smtp_host: Optional[str] = None
    smtp_port: int = 25
    smtp_sender: str = "alerts@devicewatch.local"
    channels_file: Optional[str] = None

    # Metrics feed
    metrics_feed_url: Optional[str] = None
    metrics_feed_autostart: bool = False
    metrics_feed_reconnect_delay: float = Field(default=5.0, ge=0)

    # Realtime
    realtime_tokens: Dict[str, TokenIdentity] = {}


_STRUCTURED_FIELDS = {"realtime_tokens"}
_LIST_FIELDS = {"cors_origins"}


def _parse_env(name: str, raw: str) -> Any:
    if name in _STRUCTURED_FIELDS:
        return yaml.safe_load(raw) or {}
    if name in _LIST_FIELDS:
        return [item.strip() for item in raw.split(",") if item.strip()]
    return raw


def load_settings(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Settings:
    environ = os.environ if environ is None else environ
    data: Dict[str, Any] = {}

    path = path or environ.get(CONFIG_ENV)
    if path:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    for name in Settings.model_fields:
        key = f"{ENV_PREFIX}{name.upper()}"
        if key in environ:
            data[name] = _parse_env(name, environ[key])

    return Settings(**data)


def load_seed_file(path: str, key: str) -> List[Dict[str, Any]]:
    """
    Read a YAML seed file holding a list under `key`:

        rules:
          - id: cpu-high
            metric: cpu
            ...
    """
    content = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if isinstance(content, list):
        return content
    return list(content.get(key) or [])
