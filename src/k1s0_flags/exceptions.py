"""flags ライブラリの例外型定義"""

from __future__ import annotations

from typing import Any


class FlagsError(Exception):
    """flags ライブラリのエラー基底クラス。"""

    def __init__(
        self,
        code: str,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"{self.code}: {super().__str__()}"


class FlagsErrorCodes:
    """FlagsError のエラーコード定数。"""

    VALIDATION: str = "VALIDATION_ERROR"
    AUTHENTICATION: str = "AUTHENTICATION_ERROR"
    API: str = "API_ERROR"
    TIMEOUT: str = "TIMEOUT"
    TYPE_MISMATCH: str = "TYPE_MISMATCH"
    PARSE: str = "PARSE_ERROR"
    CONFIG: str = "CONFIG_ERROR"


class ValidationError(FlagsError):
    """呼び出し側の入力不備（トークン・フラグキー未指定など）。"""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(FlagsErrorCodes.VALIDATION, message)
        self.field = field


class AuthenticationError(FlagsError):
    """API キーが拒否された。"""

    def __init__(self, message: str = "Invalid API key") -> None:
        super().__init__(FlagsErrorCodes.AUTHENTICATION, message)


class ApiError(FlagsError):
    """API が成功以外のレスポンスを返した。"""

    def __init__(
        self,
        message: str,
        status_code: int,
        body: Any = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(FlagsErrorCodes.API, message, cause)
        self.status_code = status_code
        self.body = body


class RequestTimeoutError(FlagsError):
    """リクエストの期限切れ。"""

    def __init__(self, message: str = "Request timed out", cause: Exception | None = None) -> None:
        super().__init__(FlagsErrorCodes.TIMEOUT, message, cause)


class TypeMismatchError(FlagsError):
    """要求した型とフラグの宣言型が一致しない。"""

    def __init__(self, flag_key: str, expected_type: str, actual_type: str) -> None:
        super().__init__(
            FlagsErrorCodes.TYPE_MISMATCH,
            f"Type mismatch for flag '{flag_key}': expected {expected_type}, got {actual_type}",
        )
        self.flag_key = flag_key
        self.expected_type = expected_type
        self.actual_type = actual_type


class ParseError(FlagsError):
    """フラグ設定のパースに失敗した。"""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(FlagsErrorCodes.PARSE, message, cause)


class ConfigError(FlagsError):
    """クライアント設定ファイルの読み込み・検証に失敗した。"""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(FlagsErrorCodes.CONFIG, message, cause)
