"""
データベース管理モジュール

SQLiteデータベースの初期化と、コントラクトのバッチupsertを提供する。
"""

import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Iterable

from contract_dataset.core.config import ConfigError, settings
from contract_dataset.core.models import ContractRecord, ImportStats

logger = logging.getLogger(__name__)


# =============================================================================
# DDL（テーブル定義）
# =============================================================================

DDL_STATEMENTS = """
-- contracts: 取得済みコントラクト
CREATE TABLE IF NOT EXISTS contracts (
    address TEXT NOT NULL,
    chain TEXT NOT NULL,
    chain_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    symbol TEXT,
    source_code TEXT NOT NULL,
    abi TEXT NOT NULL,
    is_proxy INTEGER NOT NULL DEFAULT 0,
    implementation_address TEXT,
    protocol TEXT,
    contract_type TEXT,
    version TEXT,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL,
    PRIMARY KEY (chain_id, address)
);

CREATE INDEX IF NOT EXISTS idx_contracts_chain_id ON contracts(chain_id);
CREATE INDEX IF NOT EXISTS idx_contracts_protocol ON contracts(protocol);
CREATE INDEX IF NOT EXISTS idx_contracts_is_proxy ON contracts(is_proxy);
"""


class BatchImportError(Exception):
    """バッチインポートエラー（トランザクションはロールバック済み）"""

    def __init__(self, message: str, size: int = 0):
        super().__init__(message)
        self.size = size


# =============================================================================
# データベース接続
# =============================================================================


def get_db_path(database_url: str | None = None) -> Path:
    """データベースファイルのパスを取得"""
    url = database_url or settings.database_url
    if url.startswith("sqlite:///"):
        path = Path(url.replace("sqlite:///", ""))
        path.parent.mkdir(parents=True, exist_ok=True)
        return path
    raise ConfigError(f"Unsupported database URL: {url}")


@contextmanager
def get_connection(database_url: str | None = None) -> Generator[sqlite3.Connection, None, None]:
    """データベース接続を取得（コンテキストマネージャ）"""
    db_path = get_db_path(database_url)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def create_schema(conn: sqlite3.Connection) -> None:
    """テーブルとインデックスを作成"""
    conn.executescript(DDL_STATEMENTS)
    conn.commit()


def init_db(database_url: str | None = None) -> None:
    """データベースを初期化（テーブル作成）"""
    with get_connection(database_url) as conn:
        create_schema(conn)


def get_db_stats(database_url: str | None = None) -> dict:
    """データベースの統計情報を取得"""
    with get_connection(database_url) as conn:
        stats = {"contracts": count_contracts(conn)}
        cursor = conn.execute("SELECT COUNT(*) FROM contracts WHERE is_proxy = 1")
        stats["proxies"] = cursor.fetchone()[0]
        cursor = conn.execute(
            "SELECT chain, chain_id, COUNT(*) AS n FROM contracts GROUP BY chain_id ORDER BY n DESC"
        )
        stats["by_chain"] = [(row["chain"], row["chain_id"], row["n"]) for row in cursor.fetchall()]
        return stats


def count_contracts(conn: sqlite3.Connection) -> int:
    cursor = conn.execute("SELECT COUNT(*) FROM contracts")
    return cursor.fetchone()[0]


def _row_to_record(row: sqlite3.Row) -> ContractRecord:
    return ContractRecord(
        address=row["address"],
        chain=row["chain"],
        chain_id=row["chain_id"],
        name=row["name"],
        symbol=row["symbol"],
        source_code=row["source_code"],
        abi=row["abi"],
        is_proxy=bool(row["is_proxy"]),
        implementation_address=row["implementation_address"],
        protocol=row["protocol"],
        contract_type=row["contract_type"],
        version=row["version"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def get_contract(conn: sqlite3.Connection, chain_id: int, address: str) -> ContractRecord | None:
    """自然キーでコントラクトを1件取得"""
    cursor = conn.execute(
        "SELECT * FROM contracts WHERE chain_id = ? AND address = ?",
        (chain_id, address.lower()),
    )
    row = cursor.fetchone()
    return _row_to_record(row) if row else None


def list_contracts(conn: sqlite3.Connection) -> list[ContractRecord]:
    cursor = conn.execute("SELECT * FROM contracts ORDER BY chain_id, address")
    return [_row_to_record(row) for row in cursor.fetchall()]


# =============================================================================
# upsert
# =============================================================================


def _now_epoch() -> int:
    """現在時刻をUNIX秒で取得"""
    return int(time.time())


def upsert_contract(conn: sqlite3.Connection, record: ContractRecord, now: int) -> bool:
    """
    コントラクトを1件upsert（コミットは呼び出し側）

    既存行はフィールド単位でマージする。値のある項目だけ上書きし、
    None の項目は既存値を残す。

    Returns:
        is_new: 新規挿入かどうか
    """
    cursor = conn.execute(
        "SELECT 1 FROM contracts WHERE chain_id = ? AND address = ?",
        (record.chain_id, record.address),
    )
    exists = cursor.fetchone() is not None

    if exists:
        # 更新
        conn.execute(
            """
            UPDATE contracts SET
                chain = COALESCE(?, chain),
                name = COALESCE(?, name),
                symbol = COALESCE(?, symbol),
                source_code = COALESCE(?, source_code),
                abi = COALESCE(?, abi),
                is_proxy = COALESCE(?, is_proxy),
                implementation_address = COALESCE(?, implementation_address),
                protocol = COALESCE(?, protocol),
                contract_type = COALESCE(?, contract_type),
                version = COALESCE(?, version),
                updated_at = ?
            WHERE chain_id = ? AND address = ?
            """,
            (
                record.chain,
                record.name,
                record.symbol,
                record.source_code,
                record.abi,
                int(record.is_proxy),
                record.implementation_address,
                record.protocol,
                record.contract_type,
                record.version,
                now,
                record.chain_id,
                record.address,
            ),
        )
        return False

    # 新規挿入
    conn.execute(
        """
        INSERT INTO contracts
        (address, chain, chain_id, name, symbol, source_code, abi,
         is_proxy, implementation_address, protocol, contract_type, version,
         created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            record.address,
            record.chain,
            record.chain_id,
            record.name,
            record.symbol,
            record.source_code if record.source_code is not None else "",
            record.abi if record.abi is not None else "[]",
            int(record.is_proxy),
            record.implementation_address,
            record.protocol,
            record.contract_type,
            record.version,
            now,
            now,
        ),
    )
    return True


def import_batch(
    records: Iterable[ContractRecord],
    conn: sqlite3.Connection,
    now: int | None = None,
) -> ImportStats:
    """
    レコード群を1トランザクションでupsert

    途中で失敗した場合はバッチ全体をロールバックし、BatchImportError を送出する。
    それ以前にコミット済みのバッチには影響しない。

    Returns:
        ImportStats: 新規・更新件数
    """
    records = list(records)
    now = now if now is not None else _now_epoch()
    stats = ImportStats()

    try:
        with conn:
            for record in records:
                if upsert_contract(conn, record, now):
                    stats.inserted += 1
                else:
                    stats.updated += 1
    except sqlite3.Error as e:
        raise BatchImportError(f"バッチのインポートに失敗しました: {e}", size=len(records)) from e

    logger.debug(f"バッチ保存完了: 新規={stats.inserted}件, 更新={stats.updated}件")
    return stats
