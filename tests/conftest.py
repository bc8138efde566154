"""flags テスト共通フィクスチャ"""

from typing import Any

import pytest

BASE_URL = "http://flags-server:8080"
CONFIG_URL = f"{BASE_URL}/v1/feature-flags/config"
EVALUATE_URL = f"{BASE_URL}/v1/feature-flags/evaluate"
SNAPSHOT_URL = f"{BASE_URL}/v1/feature-flags/snapshot"
TOKEN = "sdk_test_key"


def make_config_payload(etag: str = "v1", **overrides: Any) -> dict[str, Any]:
    """premium-feature を含む設定レスポンスを作る。"""
    payload: dict[str, Any] = {
        "environmentId": "env-1",
        "schemaVersion": "1.0",
        "generatedAt": "2024-01-01T00:00:00Z",
        "etag": etag,
        "flags": [
            {
                "key": "premium-feature",
                "valueType": "boolean",
                "defaultEnabled": False,
                "defaultValue": False,
                "rules": [
                    {
                        "priority": 0,
                        "segmentKey": "premium-users",
                        "enabled": True,
                        "value": True,
                    }
                ],
            },
            {
                "key": "banner-text",
                "valueType": "string",
                "defaultEnabled": True,
                "defaultValue": "hello",
            },
            {
                "key": "max-items",
                "valueType": "number",
                "defaultEnabled": True,
                "defaultValue": 10,
            },
            {
                "key": "theme",
                "valueType": "json",
                "defaultEnabled": True,
                "defaultValue": {"color": "blue"},
            },
            {
                "key": "killed",
                "valueType": "string",
                "defaultEnabled": False,
                "defaultValue": "server-default",
            },
        ],
        "segments": [
            {
                "key": "premium-users",
                "name": "Premium users",
                "rules": [{"field": "plan", "operator": "eq", "value": "premium"}],
            }
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def config_payload() -> dict[str, Any]:
    return make_config_payload()
