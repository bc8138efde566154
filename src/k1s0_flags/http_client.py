"""フラグ API の HTTP クライアント実装"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog

from .configuration import Configuration, parse_configuration
from .exceptions import ApiError, AuthenticationError, FlagsError, RequestTimeoutError

logger = structlog.get_logger(__name__)

CONFIG_PATH = "/v1/feature-flags/config"
STREAM_PATH = "/v1/feature-flags/config/stream"
EVALUATE_PATH = "/v1/feature-flags/evaluate"
SNAPSHOT_PATH = "/v1/feature-flags/snapshot"


def _parse_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text or None


def _error_message(body: Any, fallback: str) -> str:
    if isinstance(body, dict):
        if "message" in body:
            return str(body["message"])
        if "error" in body:
            return str(body["error"])
    return fallback


class FlagsHttpClient:
    """httpx を使ったフラグ API クライアント。

    全リクエストに timeout_seconds の期限を設け、超過時は
    RequestTimeoutError に変換する。
    """

    def __init__(
        self,
        token: str,
        base_url: str,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    @property
    def base_url(self) -> str:
        return self._base_url

    def _make_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout_seconds,
            transport=self._transport,
        )

    def stream_url(self) -> str:
        return f"{self._base_url}{STREAM_PATH}"

    def stream_headers(self) -> dict[str, str]:
        return {"X-API-Key": self._token, "Accept": "text/event-stream"}

    def _handle_error(self, resp: httpx.Response, context: str) -> None:
        if resp.is_success:
            return
        body = _parse_body(resp)
        if resp.status_code == 401:
            raise AuthenticationError()
        raise ApiError(
            message=f"{context}: {_error_message(body, resp.reason_phrase or 'HTTP error')}",
            status_code=resp.status_code,
            body=body,
        )

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            async with self._make_client() as client:
                return await asyncio.wait_for(
                    client.request(method, path, **kwargs),
                    timeout=self._timeout_seconds,
                )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise RequestTimeoutError(cause=e) from e
        except FlagsError:
            raise
        except httpx.HTTPError as e:
            raise ApiError(
                message=f"{method} {path} failed: {e}",
                status_code=0,
                cause=e,
            ) from e

    async def fetch_configuration(self, etag: str | None = None) -> Configuration | None:
        """設定を条件付き GET で取得する。未変更 (304) なら None。

        Raises:
            AuthenticationError: 401 の場合
            ApiError: その他の失敗レスポンス・通信エラー
            RequestTimeoutError: 期限切れ
            ParseError: レスポンスが設定として不正な場合
        """
        headers = {"X-API-Key": self._token}
        if etag:
            headers["If-None-Match"] = etag
        resp = await self._send("GET", CONFIG_PATH, headers=headers)
        if resp.status_code == 304:
            logger.debug("Flag configuration not modified", etag=etag)
            return None
        self._handle_error(resp, "fetch_configuration")
        configuration = parse_configuration(_parse_body(resp))
        header_etag = resp.headers.get("ETag")
        if configuration.etag is None and header_etag:
            configuration = configuration.model_copy(update={"etag": header_etag})
        return configuration

    async def post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """認証付き JSON POST を送り、レスポンス辞書を返す。"""
        resp = await self._send(
            "POST",
            path,
            json=payload,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._token}",
            },
        )
        self._handle_error(resp, f"POST {path}")
        data = _parse_body(resp)
        if not isinstance(data, dict):
            raise ApiError(
                message=f"POST {path}: unexpected response body",
                status_code=resp.status_code,
                body=data,
            )
        return data
