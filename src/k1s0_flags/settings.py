"""クライアント設定（pydantic BaseModel）と YAML ローダー"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ConfigError

DEFAULT_BASE_URL = "https://api.kitbase.dev"


class FlagsConfig(BaseModel):
    """フラグクライアント設定。"""

    token: str = Field(min_length=1)
    base_url: str = DEFAULT_BASE_URL
    local_evaluation: bool = False
    polling_interval_seconds: float = Field(default=60.0, ge=0.0)
    streaming: bool = False
    stream_reconnect_delay_seconds: float = Field(default=3.0, ge=0.0)
    timeout_seconds: float = Field(default=30.0, gt=0.0)
    cache_ttl_seconds: float = Field(default=60.0, ge=0.0)
    enable_persistent_cache: bool = False


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """base と override をディープマージして新しい辞書を返す。override 優先。"""
    result: dict[str, Any] = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {path}", cause=e) from e
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML: {path}", cause=e) from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a mapping: {path}")
    return data


def load_config(base_path: Path, env_path: Path | None = None) -> FlagsConfig:
    """設定ファイルを読み込んで FlagsConfig を返す。

    base_path: ベース設定ファイルパス（必須）
    env_path: 環境別設定ファイルパス（オプション）。存在する場合はベースにマージ。
    設定はトップレベル、または "flags" セクション配下のどちらにも書ける。
    """
    data = _read_yaml(base_path)
    if env_path is not None and env_path.exists():
        data = deep_merge(data, _read_yaml(env_path))
    section = data.get("flags", data)
    try:
        return FlagsConfig.model_validate(section)
    except PydanticValidationError as e:
        raise ConfigError(f"Config validation failed: {e}", cause=e) from e
