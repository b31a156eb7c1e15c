"""
データモデル定義

コントラクトレコードの共通スキーマとEtherscan APIレスポンスのモデルを定義する。
"""

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")

UNKNOWN_NAME = "Unknown"

CHAIN_NAMES: dict[int, str] = {
    1: "ethereum",
    10: "optimism",
    56: "bsc",
    137: "polygon",
    250: "fantom",
    8453: "base",
    42161: "arbitrum",
    43114: "avalanche",
    59144: "linea",
    534352: "scroll",
}

# 名前の部分一致で判定（先にマッチしたものを採用）
CONTRACT_TYPE_KEYWORDS: list[tuple[str, str]] = [
    ("proxy", "Proxy"),
    ("router", "Router"),
    ("factory", "Factory"),
    ("pool", "Pool"),
    ("vault", "Vault"),
    ("token", "Token"),
]


def chain_id_to_name(chain_id: int) -> str:
    """チェーンIDを人間向けのネットワーク名に変換"""
    return CHAIN_NAMES.get(chain_id, f"chain_{chain_id}")


def detect_contract_type(name: str | None) -> str | None:
    """コントラクト名から種別を推定"""
    if not name:
        return None
    name_lower = name.lower()
    for keyword, contract_type in CONTRACT_TYPE_KEYWORDS:
        if keyword in name_lower:
            return contract_type
    return None


def normalize_address(address: str) -> str:
    """アドレスを小文字に正規化"""
    return address.strip().lower()


# =============================================================================
# コントラクトモデル
# =============================================================================


class AddressEntry(BaseModel):
    """取得対象アドレス（アドレスリストの1行）"""

    model_config = ConfigDict(frozen=True)

    address: str
    chain_id: int = Field(gt=0)
    protocol: str | None = None

    @field_validator("address")
    @classmethod
    def _check_address(cls, v: str) -> str:
        v = v.strip()
        if not ADDRESS_PATTERN.match(v):
            raise ValueError(f"不正なアドレス形式です: {v!r}")
        return normalize_address(v)

    @field_validator("protocol", mode="before")
    @classmethod
    def _empty_protocol(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v


class ContractRecord(BaseModel):
    """正規化されたコントラクトレコード"""

    address: str
    chain: str = ""
    chain_id: int
    name: str = UNKNOWN_NAME
    symbol: str | None = None
    source_code: str | None = None
    abi: str | None = None
    is_proxy: bool = False
    implementation_address: str | None = None
    protocol: str | None = None
    contract_type: str | None = None
    version: str | None = None
    created_at: int | None = None
    updated_at: int | None = None

    @field_validator("address")
    @classmethod
    def _normalize_address(cls, v: str) -> str:
        v = normalize_address(v)
        if not v:
            raise ValueError("address が空です")
        return v

    @field_validator(
        "symbol",
        "source_code",
        "abi",
        "implementation_address",
        "protocol",
        "contract_type",
        "version",
        mode="before",
    )
    @classmethod
    def _empty_to_none(cls, v):
        # 空文字は「値なし」として扱う
        if isinstance(v, str) and v == "":
            return None
        return v

    @field_validator("name", mode="before")
    @classmethod
    def _default_name(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return UNKNOWN_NAME
        return v

    @model_validator(mode="after")
    def _fill_chain(self) -> "ContractRecord":
        if not self.chain:
            self.chain = chain_id_to_name(self.chain_id)
        # 実装アドレスはプロキシの場合のみ保持する
        if not self.is_proxy:
            self.implementation_address = None
        elif self.implementation_address:
            self.implementation_address = normalize_address(self.implementation_address)
        return self

    @property
    def key(self) -> tuple[int, str]:
        """自然キー (chain_id, address)"""
        return self.chain_id, self.address


class ImportStats(BaseModel):
    """インポート件数"""

    inserted: int = 0
    updated: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.updated

    def __add__(self, other: "ImportStats") -> "ImportStats":
        return ImportStats(
            inserted=self.inserted + other.inserted,
            updated=self.updated + other.updated,
        )


# =============================================================================
# Etherscan APIレスポンスモデル
# =============================================================================


class EtherscanContract(BaseModel):
    """getsourcecode の結果1件"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    source_code: str = Field(default="", alias="SourceCode")
    abi: str = Field(default="", alias="ABI")
    contract_name: str = Field(default="", alias="ContractName")
    compiler_version: str = Field(default="", alias="CompilerVersion")
    optimization_used: str = Field(default="", alias="OptimizationUsed")
    runs: str = Field(default="", alias="Runs")
    constructor_arguments: str = Field(default="", alias="ConstructorArguments")
    evm_version: str = Field(default="", alias="EVMVersion")
    library: str = Field(default="", alias="Library")
    license_type: str = Field(default="", alias="LicenseType")
    proxy: str = Field(default="0", alias="Proxy")
    implementation: str = Field(default="", alias="Implementation")
    swarm_source: str = Field(default="", alias="SwarmSource")


class EtherscanResponse(BaseModel):
    """Etherscan APIレスポンス"""

    status: str
    message: str = ""
    # status="0" の場合はエラーメッセージ文字列が入る
    result: list[EtherscanContract] | str = Field(default_factory=list)
