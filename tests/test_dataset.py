"""データセット・アドレスリストのテスト"""

import pytest

from contract_dataset.core.dataset import (
    DATASET_COLUMNS,
    DatasetWriter,
    InputError,
    parse_address_list,
    read_address_list,
    read_dataset,
    read_metadata_csv,
    summarize_dataset,
    write_dataset,
)
from tests.helpers import ADDR_A, ADDR_B, ADDR_C, ADDR_IMPL, make_record

HEADER = ",".join(DATASET_COLUMNS)


# =============================================================================
# データセット
# =============================================================================


def test_header_row_is_exact(tmp_path):
    path = write_dataset([make_record()], tmp_path / "contracts.csv")
    first_line = path.read_text(encoding="utf-8").splitlines()[0]
    assert first_line.replace('"', "") == HEADER


def test_round_trip_preserves_awkward_text(tmp_path):
    records = [
        make_record(
            source_code='// SPDX-License-Identifier: MIT\r\npragma solidity ^0.8.0;\n\ncontract A {\n  string s = "a, \\"b\\"";\n}\n',
            abi='[{"inputs":[],"name":"x,y","outputs":[{"type":"string"}],"type":"function"}]',
            symbol="UNI",
            version="v2",
        ),
        make_record(
            address=ADDR_B,
            chain_id=42161,
            name="TransparentUpgradeableProxy",
            is_proxy=True,
            implementation_address=ADDR_IMPL,
            protocol=None,
            contract_type="Proxy",
        ),
        make_record(address=ADDR_C, chain_id=999, name="Unknown", source_code=None, abi=None, protocol=None),
    ]

    path = write_dataset(records, tmp_path / "contracts.csv")
    assert read_dataset(path) == records


def test_round_trip_large_source(tmp_path):
    source = "// SPDX-License-Identifier: MIT\n" + "function f() public {}\n" * 10000
    assert len(source) > 200_000
    path = write_dataset([make_record(source_code=source)], tmp_path / "contracts.csv")

    [record] = read_dataset(path)
    assert record.source_code == source


def test_unterminated_quote_is_input_error(tmp_path):
    path = tmp_path / "bad.csv"
    path.write_text(f'{HEADER}\n"{ADDR_A}","ethereum","1","A\n', encoding="utf-8")

    with pytest.raises(InputError) as excinfo:
        read_dataset(path)
    assert excinfo.value.path == path


def test_implementation_dropped_for_non_proxy(tmp_path):
    path = tmp_path / "contracts.csv"
    path.write_text(
        f"address,chain_id,is_proxy,implementation_address\n"
        f"{ADDR_A},1,false,{ADDR_IMPL}\n"
        f"{ADDR_B},1,true,{ADDR_IMPL}\n",
        encoding="utf-8",
    )

    plain, proxy = read_dataset(path)
    assert plain.implementation_address is None
    assert proxy.implementation_address == ADDR_IMPL


def test_is_proxy_serialized_as_literal(tmp_path):
    path = write_dataset(
        [make_record(is_proxy=True, implementation_address=ADDR_IMPL), make_record(address=ADDR_B)],
        tmp_path / "contracts.csv",
    )
    text = path.read_text(encoding="utf-8")
    assert '"true"' in text
    assert '"false"' in text


def test_optional_fields_default_when_missing(tmp_path):
    path = tmp_path / "minimal.csv"
    path.write_text(f"address,chain_id\n{ADDR_A},10\n", encoding="utf-8")

    [record] = read_dataset(path)
    assert record.address == ADDR_A
    assert record.chain == "optimism"
    assert record.name == "Unknown"
    assert record.is_proxy is False
    assert record.symbol is None
    assert record.source_code is None


@pytest.mark.parametrize(
    "row",
    [
        '"","ethereum","1","A","","","","false","","","",""',
        f'"{ADDR_A}","ethereum","","A","","","","false","","","",""',
        f'"{ADDR_A}","ethereum","one","A","","","","false","","","",""',
        f'"{ADDR_A}","ethereum","1","A","","","","maybe","","","",""',
    ],
)
def test_malformed_rows_are_rejected(tmp_path, row):
    path = tmp_path / "bad.csv"
    path.write_text(f"{HEADER}\n{row}\n", encoding="utf-8")
    with pytest.raises(InputError):
        read_dataset(path)


def test_missing_required_column_is_rejected(tmp_path):
    path = tmp_path / "bad.csv"
    path.write_text(f"address,chain\n{ADDR_A},ethereum\n", encoding="utf-8")
    with pytest.raises(InputError, match="chain_id"):
        read_dataset(path)


def test_missing_dataset_file(tmp_path):
    with pytest.raises(InputError):
        read_dataset(tmp_path / "nope.csv")


def test_writer_flushes_each_row(tmp_path):
    path = tmp_path / "partial.csv"
    writer = DatasetWriter(path)
    writer.open()
    writer.append(make_record())
    # close 前でも書き込み済みの行は読める
    assert read_dataset(path) == [make_record()]
    writer.close()


# =============================================================================
# アドレスリスト
# =============================================================================


def test_parse_address_list_skips_comments_and_blanks():
    text = f"""
# curated addresses
{ADDR_A.upper().replace("0X", "0x")},1,Uniswap   # router

{ADDR_B},42161
   # indented comment
{ADDR_C}, 8453 , Aerodrome
"""
    entries = parse_address_list(text)

    assert [(e.address, e.chain_id, e.protocol) for e in entries] == [
        (ADDR_A, 1, "Uniswap"),
        (ADDR_B, 42161, None),
        (ADDR_C, 8453, "Aerodrome"),
    ]


@pytest.mark.parametrize(
    "line",
    [
        f"{ADDR_A}",
        f"{ADDR_A},mainnet",
        f"{ADDR_A},0",
        "0x1234,1",
        "not-an-address,1,Proto",
    ],
)
def test_malformed_address_lines_are_rejected(line):
    with pytest.raises(InputError) as exc:
        parse_address_list(f"# header\n{line}\n")
    assert exc.value.line == 2


def test_read_address_list_missing_file(tmp_path):
    with pytest.raises(InputError):
        read_address_list(tmp_path / "missing.txt")


def test_address_entry_is_immutable():
    [entry] = parse_address_list(f"{ADDR_A},1")
    with pytest.raises(Exception):
        entry.chain_id = 2


def test_read_metadata_csv(tmp_path):
    path = tmp_path / "contracts-metadata.csv"
    path.write_text(
        "address,chain,chain_id,name,symbol,is_proxy,implementation_address,protocol,contract_type,version\n"
        f"{ADDR_A},ethereum,1,Router,,false,,Uniswap,Router,\n"
        "n/a,ethereum,1,Broken,,false,,,,\n"
        f"{ADDR_B},base,8453,Pool,,false,,,Pool,\n",
        encoding="utf-8",
    )
    entries = read_metadata_csv(path)
    assert [(e.address, e.chain_id, e.protocol) for e in entries] == [
        (ADDR_A, 1, "Uniswap"),
        (ADDR_B, 8453, None),
    ]


# =============================================================================
# 統計
# =============================================================================


def test_summarize_dataset():
    records = [
        make_record(symbol="UNI"),
        make_record(address=ADDR_B, is_proxy=True, protocol="Aave"),
        make_record(address=ADDR_C, chain_id=10, protocol="Aave"),
        make_record(address=ADDR_IMPL, chain_id=10, protocol=None),
    ]
    stats = summarize_dataset(records)

    assert stats.total == 4
    assert stats.with_symbol == 1
    assert stats.proxies == 1
    assert stats.with_protocol == 3
    assert stats.by_protocol == [("Aave", 2), ("Uniswap", 1)]
    assert sorted(stats.by_chain) == [(1, "ethereum", 2), (10, "optimism", 2)]
