"""バッチインポート（upsert）のテスト"""

import pytest

from contract_dataset.core.config import ConfigError
from contract_dataset.core.database import (
    BatchImportError,
    count_contracts,
    get_contract,
    get_db_path,
    import_batch,
    list_contracts,
)
from tests.helpers import ADDR_A, ADDR_B, ADDR_C, make_record


def _snapshot(conn) -> list[dict]:
    rows = []
    for record in list_contracts(conn):
        data = record.model_dump()
        data.pop("updated_at")
        rows.append(data)
    return rows


def test_insert_sets_timestamps_and_defaults(conn):
    stats = import_batch([make_record(source_code=None, abi=None)], conn, now=100)

    assert (stats.inserted, stats.updated) == (1, 0)
    stored = get_contract(conn, 1, ADDR_A)
    assert stored.created_at == 100
    assert stored.updated_at == 100
    assert stored.source_code is None  # 空文字は None として読み戻される
    row = conn.execute("SELECT source_code, abi FROM contracts").fetchone()
    assert row["source_code"] == ""
    assert row["abi"] == "[]"


def test_update_refreshes_updated_at_only(conn):
    import_batch([make_record()], conn, now=100)
    stats = import_batch([make_record(name="UniswapV2Router03")], conn, now=200)

    assert (stats.inserted, stats.updated) == (0, 1)
    stored = get_contract(conn, 1, ADDR_A)
    assert stored.name == "UniswapV2Router03"
    assert stored.created_at == 100
    assert stored.updated_at == 200


def test_null_field_keeps_stored_value(conn):
    import_batch([make_record(symbol="UNI")], conn, now=100)
    import_batch([make_record(symbol=None)], conn, now=200)
    assert get_contract(conn, 1, ADDR_A).symbol == "UNI"


def test_non_null_field_overwrites_stored_value(conn):
    import_batch([make_record(symbol="UNI")], conn, now=100)
    import_batch([make_record(symbol="UNI-V2")], conn, now=200)
    assert get_contract(conn, 1, ADDR_A).symbol == "UNI-V2"


def test_import_is_idempotent(conn):
    records = [
        make_record(symbol="UNI"),
        make_record(address=ADDR_B, is_proxy=True, implementation_address=ADDR_C),
        make_record(address=ADDR_C, chain_id=8453, protocol=None),
    ]
    import_batch(records, conn, now=100)
    first = _snapshot(conn)

    stats = import_batch(records, conn, now=500)

    assert (stats.inserted, stats.updated) == (0, 3)
    assert _snapshot(conn) == first
    assert count_contracts(conn) == 3


def test_natural_key_is_unique(conn):
    records = [
        make_record(address=ADDR_A),
        make_record(address=ADDR_A.upper().replace("0X", "0x"), name="Again"),
        make_record(address=ADDR_A, chain_id=10),
    ]
    stats = import_batch(records, conn, now=100)

    assert (stats.inserted, stats.updated) == (2, 1)
    rows = conn.execute(
        "SELECT chain_id, address, COUNT(*) AS n FROM contracts GROUP BY chain_id, address"
    ).fetchall()
    assert all(row["n"] == 1 for row in rows)
    assert get_contract(conn, 1, ADDR_A).name == "Again"


def test_failed_batch_is_rolled_back(conn):
    conn.executescript(f"""
        CREATE TRIGGER reject_b BEFORE INSERT ON contracts
        WHEN NEW.address = '{ADDR_B}'
        BEGIN SELECT RAISE(ABORT, 'rejected'); END;
    """)
    import_batch([make_record(address=ADDR_C)], conn, now=100)

    with pytest.raises(BatchImportError) as exc:
        import_batch([make_record(address=ADDR_A), make_record(address=ADDR_B)], conn, now=200)

    assert exc.value.size == 2
    assert get_contract(conn, 1, ADDR_A) is None
    assert get_contract(conn, 1, ADDR_C) is not None


def test_unsupported_database_url():
    with pytest.raises(ConfigError):
        get_db_path("postgres://localhost/contracts")
