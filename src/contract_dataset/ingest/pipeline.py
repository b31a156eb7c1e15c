"""
取得・インポートパイプライン

アドレスリストからEtherscanでコントラクトを取得してデータセット（またはDB）に書き出し、
データセットをバッチ単位でDBにupsertする。
"""

import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Iterator, Protocol

from contract_dataset.core.config import settings
from contract_dataset.core.database import BatchImportError, import_batch
from contract_dataset.core.dataset import DatasetWriter, read_address_list, read_dataset
from contract_dataset.core.models import AddressEntry, ContractRecord, ImportStats
from contract_dataset.ingest.etherscan_client import EtherscanClient, FetchOutcome

logger = logging.getLogger(__name__)

# (現在位置, 総数, 識別子)。開始時に現在位置 0 で一度呼ばれる
ProgressCallback = Callable[[int, int, str], None]


def chunked(items: list, size: int) -> Iterator[list]:
    """リストを size 件ずつに分割"""
    if size < 1:
        raise ValueError("size must be >= 1")
    for start in range(0, len(items), size):
        yield items[start:start + size]


# =============================================================================
# インポート
# =============================================================================


class ImportState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    IMPORTING = "importing"
    SUMMARIZING = "summarizing"
    DONE = "done"


@dataclass
class BatchOutcome:
    """1バッチの結果"""

    index: int
    size: int
    stats: ImportStats | None = None
    error: BatchImportError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ImportResult:
    """インポート結果"""

    inserted: int = 0
    updated: int = 0
    failed: int = 0
    batches: list[BatchOutcome] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.inserted + self.updated + self.failed

    @property
    def failed_batches(self) -> list[BatchOutcome]:
        return [b for b in self.batches if not b.ok]

    def add_batch(self, outcome: BatchOutcome) -> None:
        self.batches.append(outcome)
        if outcome.ok:
            self.inserted += outcome.stats.inserted
            self.updated += outcome.stats.updated
        else:
            self.failed += outcome.size

    def summary(self) -> str:
        return (
            f"対象: {self.attempted}件, "
            f"新規: {self.inserted}件, "
            f"更新: {self.updated}件, "
            f"失敗: {self.failed}件"
        )


def import_one_batch(
    conn: sqlite3.Connection,
    index: int,
    records: list[ContractRecord],
    now: int | None = None,
) -> BatchOutcome:
    """1バッチをインポートし、失敗も結果として返す"""
    try:
        stats = import_batch(records, conn, now=now)
    except BatchImportError as e:
        logger.error(f"バッチ{index}のインポート失敗 ({len(records)}件): {e}")
        for record in records:
            logger.error(f"  失敗: chain_id={record.chain_id} address={record.address}")
        return BatchOutcome(index=index, size=len(records), error=e)
    return BatchOutcome(index=index, size=len(records), stats=stats)


class ImportPipeline:
    """データセット → DB のバッチインポート"""

    def __init__(
        self,
        conn: sqlite3.Connection,
        batch_size: int = settings.import_batch_size,
        on_progress: ProgressCallback | None = None,
        clock: Callable[[], int] | None = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.conn = conn
        self.batch_size = batch_size
        self.on_progress = on_progress
        self.clock = clock
        self.state = ImportState.IDLE

    def run(self, dataset_path: Path | str) -> ImportResult:
        """
        データセットを読み込んでインポート

        Raises:
            InputError: データセットの形式が不正な場合（DB処理の前に中断）
        """
        self.state = ImportState.LOADING
        logger.info(f"データセット読み込み: {dataset_path}")
        records = read_dataset(dataset_path)
        logger.info(f"{len(records)}件のレコードを読み込みました")
        return self.import_records(records)

    def import_records(self, records: list[ContractRecord]) -> ImportResult:
        """読み込み済みのレコードをバッチ単位でインポート"""
        result = ImportResult()
        batches = list(chunked(records, self.batch_size))

        self.state = ImportState.IMPORTING
        done = 0
        if self.on_progress:
            self.on_progress(0, len(batches), f"0/{len(records)}")
        for index, batch in enumerate(batches, start=1):
            now = self.clock() if self.clock else None
            outcome = import_one_batch(self.conn, index, batch, now=now)
            result.add_batch(outcome)
            done += len(batch)
            logger.debug(f"インポート進捗: バッチ {index}/{len(batches)} ({done}/{len(records)}件)")
            if self.on_progress:
                self.on_progress(index, len(batches), f"{done}/{len(records)}")

        self.state = ImportState.SUMMARIZING
        if result.failed_batches:
            logger.warning(f"失敗したバッチ: {[b.index for b in result.failed_batches]}")
        logger.info(f"インポート完了: {result.summary()}")

        self.state = ImportState.DONE
        return result


def run_import(
    dataset_path: Path | str,
    conn: sqlite3.Connection,
    batch_size: int = settings.import_batch_size,
    on_progress: ProgressCallback | None = None,
) -> ImportResult:
    """データセットをDBにインポート"""
    return ImportPipeline(conn, batch_size=batch_size, on_progress=on_progress).run(dataset_path)


# =============================================================================
# 取得
# =============================================================================


class RecordSink(Protocol):
    """取得したレコードの書き出し先"""

    def append(self, record: ContractRecord) -> None: ...

    def close(self) -> None: ...


class StoreSink:
    """取得したレコードを batch_size 件ごとにDBへupsertする書き出し先"""

    def __init__(self, conn: sqlite3.Connection, batch_size: int = settings.import_batch_size):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.conn = conn
        self.batch_size = batch_size
        self.result = ImportResult()
        self._buffer: list[ContractRecord] = []

    def append(self, record: ContractRecord) -> None:
        self._buffer.append(record)
        if len(self._buffer) >= self.batch_size:
            self.flush()

    def flush(self) -> None:
        if not self._buffer:
            return
        outcome = import_one_batch(self.conn, len(self.result.batches) + 1, self._buffer)
        self.result.add_batch(outcome)
        if outcome.ok:
            logger.info(f"バッチ保存: 新規={outcome.stats.inserted}件, 更新={outcome.stats.updated}件")
        self._buffer = []

    def close(self) -> None:
        self.flush()


class FetchState(str, Enum):
    IDLE = "idle"
    READING = "reading"
    FETCHING = "fetching"
    WRITING = "writing"
    DONE = "done"


@dataclass
class FetchResult:
    """取得結果"""

    attempted: int = 0
    fetched: int = 0
    failed: int = 0
    written: int = 0
    duplicates: int = 0
    total: int = 0
    stopped: bool = False
    outcomes: list[FetchOutcome] = field(default_factory=list)
    import_result: ImportResult | None = None

    @property
    def failed_addresses(self) -> list[str]:
        return [o.address for o in self.outcomes if not o.ok]

    @property
    def failures_by_kind(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for o in self.outcomes:
            if o.error is not None:
                counts[o.error.kind] = counts.get(o.error.kind, 0) + 1
        return counts

    def add_outcome(self, outcome: FetchOutcome) -> None:
        self.attempted += 1
        self.outcomes.append(outcome)
        if outcome.ok:
            self.fetched += 1
        else:
            self.failed += 1

    def summary(self) -> str:
        text = (
            f"対象: {self.attempted}/{self.total}件, "
            f"取得: {self.fetched}件, "
            f"失敗: {self.failed}件, "
            f"書き出し: {self.written}件"
        )
        if self.duplicates:
            text += f", 重複スキップ: {self.duplicates}件"
        if self.stopped:
            text += " (中断)"
        return text


class FetchPipeline:
    """
    アドレスリスト → Etherscan → 書き出し先

    1アドレスずつ順番に取得する（APIのリクエスト上限がキー単位のため）。
    アドレス単位の失敗はログに残して次へ進み、停止要求は次のアドレスの手前で反映する。
    """

    def __init__(
        self,
        client: EtherscanClient,
        sink: RecordSink,
        on_progress: ProgressCallback | None = None,
        stop_event: threading.Event | None = None,
    ):
        self.client = client
        self.sink = sink
        self.on_progress = on_progress
        self.stop_event = stop_event or threading.Event()
        self.state = FetchState.IDLE

    def stop(self) -> None:
        """停止を要求（実行中のリクエストは完了させる）"""
        self.stop_event.set()

    def run(self, entries: Iterable[AddressEntry]) -> FetchResult:
        self.state = FetchState.READING
        entries = list(entries)
        result = FetchResult(total=len(entries))
        logger.info(f"取得開始: {len(entries)}件のアドレス")

        # 同じ (chain_id, address) は最初の1件だけ書き出す
        seen: set[tuple[int, str]] = set()

        self.state = FetchState.FETCHING
        try:
            if self.on_progress:
                self.on_progress(0, len(entries), "")
            for index, entry in enumerate(entries, start=1):
                if self.stop_event.is_set():
                    logger.warning(f"停止要求により中断: {index - 1}/{len(entries)}件で停止")
                    result.stopped = True
                    break

                outcome = self.client.fetch_entry(entry)
                result.add_outcome(outcome)

                if outcome.ok:
                    logger.info(f"✓ {outcome.record.name} - {outcome.address}")
                    for record in outcome.records:
                        if record.key in seen:
                            logger.debug(f"重複のためスキップ: {record.address} (chain_id={record.chain_id})")
                            result.duplicates += 1
                            continue
                        seen.add(record.key)
                        self.sink.append(record)
                        result.written += 1
                else:
                    logger.warning(
                        f"✗ {outcome.address} (chain_id={outcome.chain_id}) - "
                        f"{outcome.error.kind}: {outcome.error}"
                    )

                if self.on_progress:
                    self.on_progress(index, len(entries), entry.address)
        finally:
            self.state = FetchState.WRITING
            self.sink.close()

        if isinstance(self.sink, StoreSink):
            result.import_result = self.sink.result

        for address in result.failed_addresses:
            logger.info(f"失敗アドレス: {address}")
        logger.info(f"取得完了: {result.summary()}")

        self.state = FetchState.DONE
        return result


def run_fetch(
    input_path: Path | str,
    output_path: Path | str,
    client: EtherscanClient,
    on_progress: ProgressCallback | None = None,
    stop_event: threading.Event | None = None,
) -> FetchResult:
    """
    アドレスリストを取得してデータセットに書き出す

    Raises:
        InputError: アドレスリストの形式が不正な場合（通信の前に中断）
    """
    entries = read_address_list(input_path)
    with DatasetWriter(output_path) as writer:
        pipeline = FetchPipeline(client, writer, on_progress=on_progress, stop_event=stop_event)
        return pipeline.run(entries)


def run_fetch_to_db(
    entries: list[AddressEntry],
    client: EtherscanClient,
    conn: sqlite3.Connection,
    batch_size: int = settings.import_batch_size,
    on_progress: ProgressCallback | None = None,
    stop_event: threading.Event | None = None,
) -> FetchResult:
    """データセットを介さずに取得結果を直接DBへupsertする"""
    sink = StoreSink(conn, batch_size=batch_size)
    pipeline = FetchPipeline(client, sink, on_progress=on_progress, stop_event=stop_event)
    return pipeline.run(entries)
