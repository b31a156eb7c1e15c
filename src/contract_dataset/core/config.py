"""
設定管理モジュール

環境変数と.envファイルからの設定読み込みを管理する。
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigError(Exception):
    """設定エラー（必須の認証情報・URLの欠落など）"""
    pass


class Settings(BaseSettings):
    """アプリケーション設定"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # データベース
    database_url: str = Field(
        default="sqlite:///data/contracts.db",
        description="データベース接続URL",
    )

    # ログ
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="ログレベル",
    )

    # Etherscan API設定
    etherscan_api_url: str = Field(
        default="https://api.etherscan.io/v2/api",
        description="Etherscan v2 APIエンドポイント",
    )
    etherscan_api_key: str | None = Field(
        default=None,
        description="Etherscan APIキー",
    )
    etherscan_requests_per_second: float = Field(
        default=5.0,
        gt=0,
        description="1秒あたりの最大リクエスト数",
    )
    etherscan_request_timeout: float = Field(
        default=30.0,
        description="リクエストタイムアウト（秒）",
    )
    etherscan_max_retries: int = Field(
        default=3,
        ge=1,
        description="1アドレスあたりの最大試行回数",
    )
    resolve_proxies: bool = Field(
        default=True,
        description="プロキシの実装コントラクトも取得するか",
    )

    # インポート設定
    import_batch_size: int = Field(
        default=50,
        ge=1,
        description="1トランザクションあたりのレコード数",
    )


def require_api_key(api_key: str | None = None, current: Settings | None = None) -> str:
    """
    APIキーを取得する（引数 → 環境変数の順）

    Raises:
        ConfigError: どこにもAPIキーが設定されていない場合
    """
    current = current or settings
    key = api_key or current.etherscan_api_key
    if not key:
        raise ConfigError(
            "ETHERSCAN_API_KEY が必要です（--api-key または環境変数で指定してください）"
        )
    return key


# グローバル設定インスタンス
settings = Settings()
