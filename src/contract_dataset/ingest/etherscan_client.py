"""
Etherscan APIクライアント

Etherscan v2（マルチチェーン）APIから検証済みソースコードとABIを取得する。
"""

import logging
from dataclasses import dataclass

import httpx
from pydantic import ValidationError
from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt

from contract_dataset.core.config import settings
from contract_dataset.core.models import (
    ADDRESS_PATTERN,
    AddressEntry,
    ContractRecord,
    EtherscanContract,
    EtherscanResponse,
    chain_id_to_name,
    detect_contract_type,
    normalize_address,
)
from contract_dataset.ingest.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

NOT_VERIFIED_ABI = "Contract source code not verified"


# =============================================================================
# エラー
# =============================================================================


class FetchError(Exception):
    """取得エラー（アドレス単位、処理全体は継続する）"""

    kind = "error"

    def __init__(self, message: str, address: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.address = address
        self.status_code = status_code


class NotVerifiedError(FetchError):
    """ソースコード未検証・コントラクトなし"""

    kind = "not_verified"


class TransportError(FetchError):
    """HTTP・ネットワークエラー、タイムアウト、レート超過"""

    kind = "transport"


class DecodeError(FetchError):
    """レスポンスのJSONが不正"""

    kind = "decode"


class ApiError(FetchError):
    """APIがリクエストを拒否（APIキー不正など）"""

    kind = "api"


RETRYABLE_ERRORS = (TransportError, DecodeError)


@dataclass
class FetchOutcome:
    """1アドレスの取得結果（成功または型付きエラー）"""

    address: str
    chain_id: int
    record: ContractRecord | None = None
    error: FetchError | None = None
    implementation: ContractRecord | None = None
    implementation_error: FetchError | None = None

    @property
    def ok(self) -> bool:
        return self.record is not None

    @property
    def records(self) -> list[ContractRecord]:
        """保存対象のレコード（プロキシの場合は実装コントラクトを含む）"""
        records = []
        if self.record is not None:
            records.append(self.record)
        if self.implementation is not None:
            records.append(self.implementation)
        return records


# =============================================================================
# クライアント
# =============================================================================


class EtherscanClient:
    """Etherscan APIクライアント"""

    def __init__(
        self,
        api_key: str,
        base_url: str = settings.etherscan_api_url,
        timeout: float = settings.etherscan_request_timeout,
        max_retries: int = settings.etherscan_max_retries,
        rate_limiter: RateLimiter | None = None,
        resolve_proxies: bool = settings.resolve_proxies,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.resolve_proxies = resolve_proxies
        self.rate_limiter = rate_limiter or RateLimiter.per_second(
            settings.etherscan_requests_per_second
        )
        self._client = httpx.Client(
            timeout=timeout,
            transport=transport,
            headers={
                "User-Agent": "ContractDataset/1.0",
            },
        )

    def __enter__(self) -> "EtherscanClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(self, params: dict[str, str]) -> dict:
        """
        APIリクエストを1回実行

        Raises:
            TransportError: 通信エラー・タイムアウト・4xx/5xx
            DecodeError: JSONとして解釈できない
        """
        self.rate_limiter.acquire()

        logger.debug(f"Etherscan API request: chainid={params.get('chainid')} address={params.get('address')}")

        try:
            response = self._client.get(self.base_url, params={**params, "apikey": self.api_key})
        except httpx.TimeoutException as e:
            raise TransportError(f"タイムアウト: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"通信エラー: {e}") from e

        logger.debug(f"Etherscan API response: status={response.status_code}")

        if response.status_code >= 400:
            raise TransportError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise DecodeError(f"JSONパースエラー: {e}") from e

        if not isinstance(data, dict):
            raise DecodeError(f"想定外のレスポンス形式: {type(data).__name__}")
        return data

    def _parse_source_response(self, data: dict) -> EtherscanContract:
        """getsourcecode のレスポンスを解釈"""
        try:
            parsed = EtherscanResponse.model_validate(data)
        except ValidationError as e:
            raise DecodeError(f"レスポンスの形式が不正です: {e}") from e

        if parsed.status != "1":
            message = parsed.result if isinstance(parsed.result, str) else parsed.message
            lowered = (message or "").lower()
            if "rate limit" in lowered:
                raise TransportError(f"レート制限超過: {message}")
            if "not verified" in lowered or "invalid address" in lowered or "not found" in lowered:
                raise NotVerifiedError(f"未検証: {message}")
            raise ApiError(f"API エラー: {message or parsed.message}")

        if isinstance(parsed.result, str):
            raise DecodeError(f"想定外の result: {parsed.result[:200]}")
        if not parsed.result:
            raise NotVerifiedError("コントラクトが見つかりません")

        contract = parsed.result[0]
        if not contract.source_code or contract.abi.startswith(NOT_VERIFIED_ABI):
            raise NotVerifiedError("ソースコードが検証されていません")
        return contract

    def _get_source_once(self, address: str, chain_id: int) -> EtherscanContract:
        data = self._request({
            "chainid": str(chain_id),
            "module": "contract",
            "action": "getsourcecode",
            "address": address,
        })
        return self._parse_source_response(data)

    def get_source(self, address: str, chain_id: int) -> EtherscanContract:
        """
        ソースコードとABIを取得（通信・デコードエラーはリトライ）

        Raises:
            FetchError: 最終的に取得できなかった場合
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(self._get_source_once, address, chain_id)

    def _to_record(
        self,
        address: str,
        chain_id: int,
        protocol: str | None,
        contract: EtherscanContract,
    ) -> ContractRecord:
        """APIレスポンスをレコードに変換"""
        implementation = contract.implementation.strip()
        has_implementation = bool(implementation) and implementation != "0x"
        is_proxy = contract.proxy == "1" or has_implementation

        return ContractRecord(
            address=address,
            chain=chain_id_to_name(chain_id),
            chain_id=chain_id,
            name=contract.contract_name,
            source_code=contract.source_code,
            abi=contract.abi,
            is_proxy=is_proxy,
            implementation_address=implementation if is_proxy and has_implementation else None,
            protocol=protocol,
            contract_type=detect_contract_type(contract.contract_name),
        )

    def fetch(self, address: str, chain_id: int, protocol: str | None = None) -> FetchOutcome:
        """
        コントラクトを取得

        エラーは例外ではなく FetchOutcome.error として返す。
        プロキシの場合は実装コントラクトも1段だけ取得する。
        """
        address = normalize_address(address)
        outcome = FetchOutcome(address=address, chain_id=chain_id)

        try:
            contract = self.get_source(address, chain_id)
        except FetchError as e:
            e.address = address
            outcome.error = e
            return outcome

        outcome.record = self._to_record(address, chain_id, protocol, contract)

        implementation = outcome.record.implementation_address
        if (
            self.resolve_proxies
            and implementation
            and implementation != address
            and ADDRESS_PATTERN.match(implementation)
        ):
            try:
                impl_contract = self.get_source(implementation, chain_id)
            except FetchError as e:
                e.address = implementation
                logger.warning(f"実装コントラクトの取得失敗: {address} -> {implementation}, {e}")
                outcome.implementation_error = e
            else:
                outcome.implementation = self._to_record(implementation, chain_id, protocol, impl_contract)

        return outcome

    def fetch_entry(self, entry: AddressEntry) -> FetchOutcome:
        """AddressEntry を取得"""
        return self.fetch(entry.address, entry.chain_id, entry.protocol)
