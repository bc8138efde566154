"""FlagsHttpClient のユニットテスト（respx モック）"""

import json
from typing import Any

import httpx
import pytest
import respx
from conftest import BASE_URL, CONFIG_URL, EVALUATE_URL, TOKEN
from k1s0_flags.exceptions import (
    ApiError,
    AuthenticationError,
    FlagsErrorCodes,
    ParseError,
    RequestTimeoutError,
)
from k1s0_flags.http_client import EVALUATE_PATH, FlagsHttpClient


def make_client() -> FlagsHttpClient:
    return FlagsHttpClient(TOKEN, BASE_URL + "/", timeout_seconds=5.0)


@respx.mock
async def test_fetch_configuration_success(config_payload: dict[str, Any]) -> None:
    """設定取得成功。API キーヘッダーを送る。"""
    route = respx.get(CONFIG_URL).mock(return_value=httpx.Response(200, json=config_payload))
    configuration = await make_client().fetch_configuration()
    assert configuration is not None
    assert configuration.etag == "v1"
    assert len(configuration.flags) == 5
    request = route.calls.last.request
    assert request.headers["X-API-Key"] == TOKEN
    assert "If-None-Match" not in request.headers


@respx.mock
async def test_fetch_configuration_not_modified() -> None:
    """304 の場合は None。If-None-Match に etag を送る。"""
    route = respx.get(CONFIG_URL).mock(return_value=httpx.Response(304))
    assert await make_client().fetch_configuration("v1") is None
    assert route.calls.last.request.headers["If-None-Match"] == "v1"


@respx.mock
async def test_fetch_configuration_uses_etag_header(config_payload: dict[str, Any]) -> None:
    """ボディに etag がなければ ETag ヘッダーを使う。"""
    del config_payload["etag"]
    respx.get(CONFIG_URL).mock(
        return_value=httpx.Response(200, json=config_payload, headers={"ETag": '"abc"'})
    )
    configuration = await make_client().fetch_configuration()
    assert configuration is not None
    assert configuration.etag == '"abc"'


@respx.mock
async def test_fetch_configuration_unauthorized() -> None:
    """401 は AuthenticationError。"""
    respx.get(CONFIG_URL).mock(return_value=httpx.Response(401, json={"error": "bad key"}))
    with pytest.raises(AuthenticationError) as exc_info:
        await make_client().fetch_configuration()
    assert exc_info.value.code == FlagsErrorCodes.AUTHENTICATION


@respx.mock
async def test_fetch_configuration_server_error() -> None:
    """その他の失敗はステータスとボディ付きの ApiError。"""
    respx.get(CONFIG_URL).mock(
        return_value=httpx.Response(500, json={"message": "database down"})
    )
    with pytest.raises(ApiError) as exc_info:
        await make_client().fetch_configuration()
    assert exc_info.value.status_code == 500
    assert exc_info.value.body == {"message": "database down"}
    assert "database down" in str(exc_info.value)


@respx.mock
async def test_fetch_configuration_invalid_body() -> None:
    """設定として不正なボディは ParseError。"""
    respx.get(CONFIG_URL).mock(return_value=httpx.Response(200, json=["not", "a", "config"]))
    with pytest.raises(ParseError):
        await make_client().fetch_configuration()


@respx.mock
async def test_timeout() -> None:
    """タイムアウトは RequestTimeoutError。"""
    respx.get(CONFIG_URL).mock(side_effect=httpx.ReadTimeout("timed out"))
    with pytest.raises(RequestTimeoutError) as exc_info:
        await make_client().fetch_configuration()
    assert exc_info.value.code == FlagsErrorCodes.TIMEOUT


@respx.mock
async def test_network_error_is_api_error_with_status_zero() -> None:
    """通信エラーはステータス 0 の ApiError。"""
    respx.get(CONFIG_URL).mock(side_effect=httpx.ConnectError("refused"))
    with pytest.raises(ApiError) as exc_info:
        await make_client().fetch_configuration()
    assert exc_info.value.status_code == 0


@respx.mock
async def test_post_sends_bearer_token() -> None:
    """POST は Bearer トークンと JSON ボディを送る。"""
    route = respx.post(EVALUATE_URL).mock(
        return_value=httpx.Response(200, json={"flagKey": "a", "enabled": True})
    )
    data = await make_client().post(EVALUATE_PATH, {"flagKey": "a"})
    assert data["enabled"] is True
    request = route.calls.last.request
    assert request.headers["Authorization"] == f"Bearer {TOKEN}"
    assert json.loads(request.content) == {"flagKey": "a"}


@respx.mock
async def test_post_non_object_body() -> None:
    """オブジェクト以外のレスポンスは ApiError。"""
    respx.post(EVALUATE_URL).mock(return_value=httpx.Response(200, text="ok"))
    with pytest.raises(ApiError):
        await make_client().post(EVALUATE_PATH, {"flagKey": "a"})


def test_stream_endpoint() -> None:
    """ストリーム URL とヘッダー。"""
    client = make_client()
    assert client.stream_url() == f"{BASE_URL}/v1/feature-flags/config/stream"
    assert client.stream_headers()["X-API-Key"] == TOKEN
