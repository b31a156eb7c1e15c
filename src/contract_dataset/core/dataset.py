"""
データセット（CSV）モジュール

コントラクトレコードのCSV読み書きと、取得対象アドレスリストの読み込みを提供する。
"""

import csv
import logging
import sys
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, TextIO

from pydantic import ValidationError

from contract_dataset.core.models import AddressEntry, ContractRecord

logger = logging.getLogger(__name__)

DATASET_COLUMNS = [
    "address",
    "chain",
    "chain_id",
    "name",
    "symbol",
    "source_code",
    "abi",
    "is_proxy",
    "implementation_address",
    "protocol",
    "contract_type",
    "version",
]

REQUIRED_COLUMNS = ("address", "chain_id")

# 標準の上限（131072文字）ではソースコードが収まらない
try:
    csv.field_size_limit(sys.maxsize)
except OverflowError:
    csv.field_size_limit(2**31 - 1)


class InputError(Exception):
    """入力エラー（アドレスリスト・データセットの形式不正）"""

    def __init__(self, message: str, path: Path | str | None = None, line: int | None = None):
        super().__init__(message)
        self.path = path
        self.line = line


# =============================================================================
# 書き込み
# =============================================================================


def record_to_row(record: ContractRecord) -> list[str]:
    """レコードをCSVの1行に変換"""
    return [
        record.address,
        record.chain,
        str(record.chain_id),
        record.name,
        record.symbol or "",
        record.source_code or "",
        record.abi or "",
        "true" if record.is_proxy else "false",
        record.implementation_address or "",
        record.protocol or "",
        record.contract_type or "",
        record.version or "",
    ]


class DatasetWriter:
    """
    データセットへの逐次書き込み

    オープン時にヘッダーを書き、append() ごとに1行書いてフラッシュする。
    途中で停止しても、ファイルには取得完了したレコードだけが残る。
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self.count = 0
        self._file: TextIO | None = None
        self._writer = None

    def __enter__(self) -> "DatasetWriter":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.path, "w", encoding="utf-8", newline="")
        self._writer = csv.writer(self._file, quoting=csv.QUOTE_ALL)
        self._writer.writerow(DATASET_COLUMNS)
        self._file.flush()

    def append(self, record: ContractRecord) -> None:
        if self._writer is None:
            raise RuntimeError("DatasetWriter is not open")
        self._writer.writerow(record_to_row(record))
        self._file.flush()
        self.count += 1

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
            self._writer = None


def write_dataset(records: Iterable[ContractRecord], path: Path | str) -> Path:
    """レコード一覧をデータセットとして書き出す"""
    with DatasetWriter(path) as writer:
        for record in records:
            writer.append(record)
    logger.debug(f"データセット書き込み完了: {path} ({writer.count}件)")
    return Path(path)


# =============================================================================
# 読み込み
# =============================================================================


def _parse_bool(value: str, line: int) -> bool:
    v = value.strip().lower()
    if v in ("", "false"):
        return False
    if v == "true":
        return True
    raise InputError(f"is_proxy の値が不正です: {value!r} (行 {line})", line=line)


def _check_header(reader: csv.DictReader, path: Path) -> None:
    try:
        fieldnames = reader.fieldnames or []
    except csv.Error as e:
        raise InputError(f"CSVの形式が不正です (行 {reader.line_num}): {e}", path=path, line=reader.line_num) from e
    missing = [c for c in REQUIRED_COLUMNS if c not in fieldnames]
    if missing:
        raise InputError(f"必須カラムがありません: {', '.join(missing)} ({path})", path=path)


def _iter_rows(reader: csv.DictReader, path: Path) -> Iterator[dict[str, str | None]]:
    """csv.Error を行番号付きの InputError に変換しながら行を返す"""
    while True:
        try:
            row = next(reader)
        except StopIteration:
            return
        except csv.Error as e:
            raise InputError(
                f"CSVの形式が不正です (行 {reader.line_num}): {e}", path=path, line=reader.line_num
            ) from e
        yield row


def row_to_record(row: dict[str, str | None], line: int) -> ContractRecord:
    """CSVの1行（辞書）をレコードに変換"""
    address = (row.get("address") or "").strip()
    chain_id_text = (row.get("chain_id") or "").strip()
    if not address or not chain_id_text:
        raise InputError(f"address または chain_id が欠落しています (行 {line})", line=line)

    try:
        chain_id = int(chain_id_text)
    except ValueError as e:
        raise InputError(f"chain_id が整数ではありません: {chain_id_text!r} (行 {line})", line=line) from e

    try:
        return ContractRecord(
            address=address,
            chain=row.get("chain") or "",
            chain_id=chain_id,
            name=row.get("name"),
            symbol=row.get("symbol"),
            source_code=row.get("source_code"),
            abi=row.get("abi"),
            is_proxy=_parse_bool(row.get("is_proxy") or "", line),
            implementation_address=row.get("implementation_address"),
            protocol=row.get("protocol"),
            contract_type=row.get("contract_type"),
            version=row.get("version"),
        )
    except ValidationError as e:
        raise InputError(f"レコードの形式が不正です (行 {line}): {e}", line=line) from e


def read_dataset(path: Path | str) -> list[ContractRecord]:
    """
    データセットを読み込む

    Raises:
        InputError: ファイルが存在しない、ヘッダーや行の形式が不正な場合
    """
    path = Path(path)
    if not path.exists():
        raise InputError(f"データセットが見つかりません: {path}", path=path)

    records = []
    with open(path, encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f, strict=True)
        _check_header(reader, path)

        for row in _iter_rows(reader, path):
            try:
                records.append(row_to_record(row, reader.line_num))
            except InputError as e:
                e.path = path
                raise

    logger.debug(f"データセット読み込み完了: {path} ({len(records)}件)")
    return records


# =============================================================================
# アドレスリスト
# =============================================================================


def parse_address_line(line: str, line_no: int = 0) -> AddressEntry | None:
    """
    アドレスリストの1行をパース

    形式: address,chain_id[,protocol]（# 以降はコメント）
    空行・コメント行は None を返す。
    """
    content = line.split("#", 1)[0].strip()
    if not content:
        return None

    parts = [p.strip() for p in content.split(",")]
    if len(parts) < 2 or not parts[1]:
        raise InputError(f"chain_id がありません (行 {line_no}): {content}", line=line_no)

    try:
        chain_id = int(parts[1])
    except ValueError as e:
        raise InputError(f"chain_id が整数ではありません (行 {line_no}): {parts[1]!r}", line=line_no) from e

    try:
        return AddressEntry(
            address=parts[0],
            chain_id=chain_id,
            protocol=parts[2] if len(parts) > 2 else None,
        )
    except ValidationError as e:
        raise InputError(f"不正な行です (行 {line_no}): {content}", line=line_no) from e


def parse_address_list(text: str) -> list[AddressEntry]:
    """アドレスリスト全体をパース"""
    entries = []
    for line_no, line in enumerate(text.splitlines(), start=1):
        entry = parse_address_line(line, line_no)
        if entry is not None:
            entries.append(entry)
    return entries


def read_address_list(path: Path | str) -> list[AddressEntry]:
    """アドレスリストファイルを読み込む"""
    path = Path(path)
    if not path.exists():
        raise InputError(f"アドレスリストが見つかりません: {path}", path=path)
    try:
        return parse_address_list(path.read_text(encoding="utf-8"))
    except InputError as e:
        e.path = path
        raise


def read_metadata_csv(path: Path | str) -> list[AddressEntry]:
    """
    メタデータCSVから取得対象アドレスを読み込む

    address, chain_id（任意で protocol）カラムを使い、0x で始まらない行は読み飛ばす。
    """
    path = Path(path)
    if not path.exists():
        raise InputError(f"メタデータCSVが見つかりません: {path}", path=path)

    entries = []
    with open(path, encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        _check_header(reader, path)

        for row in _iter_rows(reader, path):
            address = (row.get("address") or "").strip()
            if not address.startswith("0x"):
                logger.debug(f"アドレスでない行をスキップ: 行 {reader.line_num}")
                continue
            try:
                entries.append(AddressEntry(
                    address=address,
                    chain_id=int((row.get("chain_id") or "").strip()),
                    protocol=row.get("protocol"),
                ))
            except (ValueError, ValidationError) as e:
                raise InputError(
                    f"不正な行です (行 {reader.line_num}): {address}", path=path, line=reader.line_num
                ) from e

    return entries


# =============================================================================
# 統計
# =============================================================================


@dataclass
class DatasetStats:
    """データセット統計"""

    total: int = 0
    with_symbol: int = 0
    proxies: int = 0
    with_protocol: int = 0
    by_protocol: list[tuple[str, int]] = field(default_factory=list)
    by_chain: list[tuple[int, str, int]] = field(default_factory=list)


def summarize_dataset(records: list[ContractRecord]) -> DatasetStats:
    """データセットの統計情報を集計"""
    protocols = Counter(r.protocol for r in records if r.protocol)
    chains = Counter((r.chain_id, r.chain) for r in records)

    return DatasetStats(
        total=len(records),
        with_symbol=sum(1 for r in records if r.symbol),
        proxies=sum(1 for r in records if r.is_proxy),
        with_protocol=sum(1 for r in records if r.protocol),
        by_protocol=protocols.most_common(),
        by_chain=[(chain_id, chain, count) for (chain_id, chain), count in chains.most_common()],
    )
