"""テスト用ヘルパー"""

import json

import httpx

from contract_dataset.core.models import ContractRecord
from contract_dataset.ingest.etherscan_client import EtherscanClient
from contract_dataset.ingest.rate_limiter import RateLimiter

ADDR_A = "0x" + "a" * 40
ADDR_B = "0x" + "b" * 40
ADDR_C = "0x" + "c" * 40
ADDR_IMPL = "0x" + "1" * 40


class FakeClock:
    """sleep で時間が進む偽の時計"""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_record(**overrides) -> ContractRecord:
    data = {
        "address": ADDR_A,
        "chain_id": 1,
        "name": "UniswapV2Router02",
        "source_code": "pragma solidity ^0.8.0;\ncontract Router {}",
        "abi": '[{"type":"function","name":"swap"}]',
        "protocol": "Uniswap",
        "contract_type": "Router",
    }
    data.update(overrides)
    return ContractRecord(**data)


def verified_payload(
    name: str = "UniswapV2Router02",
    source: str = "pragma solidity ^0.8.0;\ncontract Router {}",
    abi: str = '[{"type":"function","name":"swap"}]',
    proxy: str = "0",
    implementation: str = "",
) -> dict:
    return {
        "status": "1",
        "message": "OK",
        "result": [{
            "SourceCode": source,
            "ABI": abi,
            "ContractName": name,
            "CompilerVersion": "v0.8.19+commit.7dd6d404",
            "OptimizationUsed": "1",
            "Runs": "200",
            "ConstructorArguments": "",
            "EVMVersion": "Default",
            "Library": "",
            "LicenseType": "MIT",
            "Proxy": proxy,
            "Implementation": implementation,
            "SwarmSource": "",
        }],
    }


def unverified_payload() -> dict:
    return {
        "status": "1",
        "message": "OK",
        "result": [{
            "SourceCode": "",
            "ABI": "Contract source code not verified",
            "ContractName": "",
            "Proxy": "0",
            "Implementation": "",
        }],
    }


def json_response(payload: dict, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(payload).encode())


class CountingLimiter(RateLimiter):
    """acquire() の呼び出し回数を数えるリミッタ（待機なし）"""

    def __init__(self):
        super().__init__(0.0)
        self.calls = 0

    def acquire(self) -> None:
        self.calls += 1
        super().acquire()


def make_client(handler, **kwargs) -> EtherscanClient:
    kwargs.setdefault("rate_limiter", CountingLimiter())
    return EtherscanClient(
        api_key="test-key",
        base_url="https://api.etherscan.test/v2/api",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def address_router(responses: dict[str, dict]):
    """アドレスごとに固定レスポンスを返すハンドラ"""

    def handler(request: httpx.Request) -> httpx.Response:
        address = request.url.params["address"]
        return json_response(responses.get(address, unverified_payload()))

    return handler
